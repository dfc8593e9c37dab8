"""
轮次数据模型
"""

import enum
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Enum, Text, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from imposter.core.database import Base
from imposter.core.exceptions import ValidationError

class RoundPhase(enum.Enum):
    """轮次阶段，定义顺序即推进顺序"""
    ROLE_REVEAL = "role_reveal"
    ANSWER_ENTRY = "answer_entry"
    REVEAL_CLUES = "reveal_clues"
    VOTE = "vote"
    IMPOSTER_GUESS = "imposter_guess"   # 可选阶段
    REVEAL = "reveal"
    DONE = "done"

    @property
    def order(self) -> int:
        return _PHASE_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self is RoundPhase.DONE

    def successor(self, guess_enabled: bool = True) -> "RoundPhase":
        """唯一确定的下一阶段"""
        if self.is_terminal:
            raise ValueError("done阶段没有后继阶段")
        nxt = _PHASE_ORDER[self.order + 1]
        if nxt is RoundPhase.IMPOSTER_GUESS and not guess_enabled:
            nxt = RoundPhase.REVEAL
        return nxt

    def at_least(self, other: "RoundPhase") -> bool:
        return self.order >= other.order

    @classmethod
    def parse(cls, value) -> "RoundPhase":
        """在边界处把字符串解析为阶段，兼容旧版本的阶段名"""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower() if value is not None else ""
        key = _LEGACY_ALIASES.get(key, key)
        for phase in cls:
            if phase.value == key:
                return phase
        raise ValidationError(f"未知的阶段: {value}", field="phase", value=value)


_PHASE_ORDER = list(RoundPhase)

# 旧版本客户端使用的阶段名
_LEGACY_ALIASES = {
    "role": "role_reveal",
    "clue": "answer_entry",
    "voting": "vote",
    "results": "reveal",
}


class RoundOutcome(enum.Enum):
    """投票结果"""
    CAUGHT = "caught"       # 卧底被抓
    ESCAPED = "escaped"     # 卧底逃脱（包括平票）


class Round(Base):
    """游戏轮次表"""
    __tablename__ = "rounds"
    __table_args__ = (UniqueConstraint("room_id", "round_number", name="uq_room_round_number"),)

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)         # 轮次编号
    phase = Column(Enum(RoundPhase), nullable=False, default=RoundPhase.ROLE_REVEAL)
    imposter_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    secret_prompt_index = Column(Integer, nullable=False)  # 秘密题目在本轮题目中的序号
    prompt_count = Column(Integer, nullable=False)
    guess_enabled = Column(Boolean, nullable=False, default=True)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    phase_deadline = Column(DateTime(timezone=True), nullable=True)
    force_complete_at = Column(DateTime(timezone=True), nullable=True)  # 房主确认强制结束答题后的生效时间
    imposter_guess = Column(Integer, nullable=True)
    outcome = Column(Enum(RoundOutcome), nullable=True)
    scored = Column(Boolean, nullable=False, default=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    # 关系
    room = relationship("Room")
    imposter = relationship("Player")
    prompts = relationship("RoundPrompt", back_populates="round", order_by="RoundPrompt.prompt_order")


class RoundPrompt(Base):
    """本轮的候选题目"""
    __tablename__ = "round_prompts"
    __table_args__ = (UniqueConstraint("round_id", "prompt_order", name="uq_round_prompt_order"),)

    id = Column(Integer, primary_key=True, index=True)
    round_id = Column(Integer, ForeignKey("rounds.id"), nullable=False, index=True)
    prompt_order = Column(Integer, nullable=False)  # 从0开始，与秘密序号、猜测序号一致
    prompt_text = Column(Text, nullable=False)

    # 关系
    round = relationship("Round", back_populates="prompts")

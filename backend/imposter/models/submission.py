"""
答案提交数据模型
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Text, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from imposter.core.database import Base

class Submission(Base):
    """玩家针对某道题目的回答"""
    __tablename__ = "submissions"
    __table_args__ = (
        UniqueConstraint("round_id", "player_id", "prompt_id", name="uq_round_player_prompt"),
    )

    id = Column(Integer, primary_key=True, index=True)
    round_id = Column(Integer, ForeignKey("rounds.id"), nullable=False, index=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    prompt_id = Column(Integer, ForeignKey("round_prompts.id"), nullable=False)
    text = Column(Text, nullable=False)
    submitted_at = Column(DateTime(timezone=True), server_default=func.now())

    # 关系
    round = relationship("Round")
    player = relationship("Player")
    prompt = relationship("RoundPrompt")

"""
投票数据模型
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from imposter.core.database import Base

class Vote(Base):
    """投票表，每个投票者每轮只保留一票"""
    __tablename__ = "votes"
    __table_args__ = (UniqueConstraint("round_id", "voter_id", name="uq_round_voter"),)

    id = Column(Integer, primary_key=True, index=True)
    round_id = Column(Integer, ForeignKey("rounds.id"), nullable=False, index=True)
    voter_id = Column(Integer, ForeignKey("players.id"), nullable=False)      # 投票者
    target_id = Column(Integer, ForeignKey("players.id"), nullable=False)     # 被投票者
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # 关系
    round = relationship("Round")
    voter = relationship("Player", foreign_keys=[voter_id])
    target = relationship("Player", foreign_keys=[target_id])

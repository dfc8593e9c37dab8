"""
得分记录数据模型
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from imposter.core.database import Base

class ScoreDelta(Base):
    """每轮结算产生的得分变化"""
    __tablename__ = "score_deltas"

    id = Column(Integer, primary_key=True, index=True)
    round_id = Column(Integer, ForeignKey("rounds.id"), nullable=False, index=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    points = Column(Integer, nullable=False)
    reason = Column(String(40), nullable=False)   # crew_caught_imposter, imposter_escaped, imposter_correct_guess
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # 关系
    round = relationship("Round")
    player = relationship("Player")

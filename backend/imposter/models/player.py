"""
玩家数据模型
"""

from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from imposter.core.database import Base

class Player(Base):
    """玩家表"""
    __tablename__ = "players"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    is_host = Column(Boolean, default=False)
    write_token = Column(String(64), nullable=False)   # 玩家写操作凭证
    total_score = Column(Integer, nullable=False, default=0)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    # 关系
    room = relationship("Room", back_populates="players")

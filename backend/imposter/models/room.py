"""
房间数据模型
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from imposter.core.database import Base

class Room(Base):
    """房间表（由大厅服务创建，轮次引擎只读取和更新状态）"""
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(10), unique=True, nullable=False)
    status = Column(String(20), default="lobby")       # lobby, playing, ended
    win_target = Column(Integer, nullable=False, default=5)
    current_round = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # 关系
    players = relationship("Player", back_populates="room")

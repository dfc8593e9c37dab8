"""
房间成员查询服务
"""

from typing import List
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from imposter.core.exceptions import NotFoundError, TransientStoreError
from imposter.models.player import Player


class PlayerDirectory:
    """按加入顺序返回房间成员，用于选择卧底和平票排序"""

    def __init__(self, db: Session):
        self.db = db

    def list_members(self, room_id: int) -> List[Player]:
        try:
            return self.db.query(Player).filter(
                Player.room_id == room_id
            ).order_by(Player.joined_at, Player.id).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransientStoreError("获取房间成员失败", details={"error": str(e)}) from e

    def member_ids(self, room_id: int) -> List[int]:
        return [getattr(p, 'id', 0) for p in self.list_members(room_id)]

    def get_member(self, room_id: int, player_id: int) -> Player:
        """获取房间内的玩家，不在房间内视为不存在"""
        for player in self.list_members(room_id):
            if player.id == player_id:
                return player
        raise NotFoundError("玩家", player_id)

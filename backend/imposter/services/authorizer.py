"""
操作权限校验
"""

import secrets
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from imposter.core.config import settings
from imposter.core.exceptions import TransientStoreError
from imposter.models.player import Player


class Authorizer:
    """根据玩家写令牌校验房主操作和玩家自身的写操作"""

    def __init__(self, db: Session, system_token: Optional[str] = None):
        self.db = db
        self.system_token = system_token or settings.SYSTEM_TIMER_TOKEN

    def is_system(self, actor_token: Optional[str]) -> bool:
        if not actor_token:
            return False
        # compare_digest 的 str 参数只能是ASCII
        return secrets.compare_digest(actor_token.encode("utf-8"), self.system_token.encode("utf-8"))

    def validate(self, actor_token: Optional[str], room_id: int) -> bool:
        """令牌属于该房间的房主"""
        if not actor_token:
            return False
        host = self._query(
            Player.room_id == room_id,
            Player.write_token == actor_token,
            Player.is_host.is_(True)
        )
        return host is not None

    def validate_player(self, actor_token: Optional[str], player_id: int) -> bool:
        """令牌属于该玩家本人"""
        if not actor_token:
            return False
        player = self._query(Player.id == player_id, Player.write_token == actor_token)
        return player is not None

    def _query(self, *conditions) -> Optional[Player]:
        try:
            return self.db.query(Player).filter(*conditions).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransientStoreError("权限校验失败", details={"error": str(e)}) from e

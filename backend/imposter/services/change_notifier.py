"""
轮次变更通知服务

投递语义为"至少一次"：同一事件可能被重复推送（例如周期性对账时重新广播当前阶段），
客户端应以 getRoundSnapshot 的结果为准。
"""

import asyncio
import json
import logging
from fastapi import WebSocket
from typing import Awaitable, Callable, Dict, List
from imposter.core.config import settings
from imposter.core.exceptions import TransientStoreError
from imposter.schemas.round_schemas import RoundEvent

logger = logging.getLogger(__name__)

Listener = Callable[[RoundEvent], Awaitable[None]]

class ChangeNotifier:
    """管理房间订阅（WebSocket连接和进程内监听器）并广播轮次事件"""

    def __init__(self, timeout: float = None):
        # 房间观察者连接
        self.room_connections: Dict[int, List[WebSocket]] = {}
        # 进程内监听器
        self.listeners: Dict[int, List[Listener]] = {}
        self.timeout = settings.NOTIFY_TIMEOUT_SECONDS if timeout is None else timeout

    async def connect(self, websocket: WebSocket, room_id: int):
        """连接观察者WebSocket"""
        await websocket.accept()
        if room_id not in self.room_connections:
            self.room_connections[room_id] = []

        # 检查是否已存在，避免重复连接
        if websocket not in self.room_connections[room_id]:
            self.room_connections[room_id].append(websocket)
            logger.info(f"新连接加入房间 {room_id}，当前连接数: {len(self.room_connections[room_id])}")

    def disconnect(self, websocket: WebSocket, room_id: int):
        """断开观察者连接"""
        if room_id in self.room_connections:
            if websocket in self.room_connections[room_id]:
                self.room_connections[room_id].remove(websocket)
                logger.info(f"连接断开房间 {room_id}，当前连接数: {len(self.room_connections[room_id])}")

    def subscribe(self, room_id: int, listener: Listener) -> Callable[[], None]:
        """注册进程内监听器，返回取消订阅函数"""
        self.listeners.setdefault(room_id, []).append(listener)

        def unsubscribe():
            if listener in self.listeners.get(room_id, []):
                self.listeners[room_id].remove(listener)

        return unsubscribe

    async def send_personal_message(self, message: dict, websocket: WebSocket):
        """发送个人消息"""
        try:
            await websocket.send_text(json.dumps(message, ensure_ascii=False))
        except Exception as e:
            logger.warning(f"发送个人消息失败: {e}")

    async def publish(self, event: RoundEvent):
        """发布事件；超过时限视为通知失败"""
        try:
            await asyncio.wait_for(self._deliver(event), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransientStoreError(
                f"通知超时: {event.type}",
                details={"room_id": event.room_id, "round_id": event.round_id}
            ) from e

    async def _deliver(self, event: RoundEvent):
        for listener in list(self.listeners.get(event.room_id, [])):
            await listener(event)
        await self.broadcast_to_room(event.model_dump(mode="json"), event.room_id)

    async def broadcast_to_room(self, message: dict, room_id: int):
        """向房间中的所有观察者广播消息"""
        connections = self.room_connections.get(room_id, []).copy()  # 创建副本进行迭代
        if not connections:
            logger.debug(f"房间 {room_id} 没有活跃连接，跳过广播")
            return

        message_text = json.dumps(message, ensure_ascii=False)
        failed_connections = []
        success_count = 0

        for connection in connections:
            try:
                await connection.send_text(message_text)
                success_count += 1
            except Exception as e:
                logger.warning(f"广播消息失败: {e}")
                failed_connections.append(connection)

        # 移除失败的连接
        for failed_connection in failed_connections:
            if failed_connection in self.room_connections[room_id]:
                self.room_connections[room_id].remove(failed_connection)

        logger.debug(f"📡 房间 {room_id} 广播 {message.get('type', 'unknown')}: {success_count} 成功, {len(failed_connections)} 失败")


# 使用全局通知器实例（只保存连接，不保存轮次状态）
_notifier = None

def get_change_notifier() -> ChangeNotifier:
    """获取全局通知器实例"""
    global _notifier
    if _notifier is None:
        _notifier = ChangeNotifier()
    return _notifier

"""
WebSocket API路由
"""

import json
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends
from sqlalchemy.orm import Session
from imposter.core.database import get_db
from imposter.core.exceptions import RoundEngineError
from imposter.services.change_notifier import get_change_notifier
from imposter.services.round_controller import RoundController
from imposter.services.round_store import RoundStore

logger = logging.getLogger(__name__)

router = APIRouter()


async def _send_snapshot(websocket: WebSocket, db: Session, room_id: int):
    """发送房间当前轮次的快照，客户端以快照为准对齐状态"""
    manager = get_change_notifier()
    active = RoundStore(db).get_active_round(room_id)
    if active is None:
        return
    snapshot = await RoundController(db).get_round_snapshot(active.id)
    await manager.send_personal_message({
        "type": "snapshot",
        "room_id": room_id,
        "snapshot": snapshot.model_dump(mode="json"),
    }, websocket)


@router.websocket("/room/{room_id}")
async def websocket_room_endpoint(
    websocket: WebSocket,
    room_id: int,
    db: Session = Depends(get_db)
):
    """房间订阅端点，推送轮次事件"""
    manager = get_change_notifier()
    await manager.connect(websocket, room_id)

    try:
        await manager.send_personal_message({
            "type": "connected",
            "message": f"已连接到房间 {room_id}",
            "room_id": room_id
        }, websocket)

        try:
            await _send_snapshot(websocket, db, room_id)
        except RoundEngineError as e:
            logger.warning(f"⚠️ 发送轮次快照失败: {e.message}")

        while True:
            data = await websocket.receive_text()
            try:
                message_data = json.loads(data)
            except json.JSONDecodeError:
                logger.debug(f"收到无效JSON消息: {data}")
                continue

            message_type = message_data.get("type") if isinstance(message_data, dict) else None
            if message_type == "ping":
                await manager.send_personal_message({
                    "type": "pong",
                    "timestamp": message_data.get("timestamp")
                }, websocket)
            elif message_type == "get_snapshot":
                # 客户端怀疑丢失事件时主动拉取
                try:
                    await _send_snapshot(websocket, db, room_id)
                except RoundEngineError as e:
                    await manager.send_personal_message({
                        "type": "error",
                        "detail": e.message,
                        "retryable": e.retryable,
                    }, websocket)

    except WebSocketDisconnect:
        manager.disconnect(websocket, room_id)

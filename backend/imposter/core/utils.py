"""
工具函数模块
"""

from typing import Optional
from datetime import datetime, timezone


def utcnow() -> datetime:
    """当前UTC时间（不带时区信息，与数据库中存储的时间保持一致）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_timestamp_with_timezone(timestamp: Optional[datetime]) -> Optional[str]:
    """格式化时间戳，确保包含UTC时区标识符"""
    if not timestamp:
        return None
    # 确保发送给前端的时间戳包含'Z'后缀，表示这是UTC时间
    return timestamp.isoformat() + 'Z'

"""
轮次引擎异常定义
"""

from typing import Any, Optional


class RoundEngineError(Exception):
    """所有轮次引擎错误的基类"""

    retryable = False

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(RoundEngineError):
    """输入格式错误：空答案、越界的猜测序号、未知阶段等"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value


class AuthorizationError(RoundEngineError):
    """令牌无效，或非房主调用了仅房主可用的操作"""

    pass


class StateError(RoundEngineError):
    """当前轮次状态不允许该操作"""

    def __init__(
        self,
        message: str,
        round_id: Optional[str] = None,
        expected_phase: Optional[str] = None,
        actual_phase: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.round_id = round_id
        self.expected_phase = expected_phase
        self.actual_phase = actual_phase


class NotFoundError(RoundEngineError):
    """房间、轮次、玩家或题目不存在"""

    def __init__(self, kind: str, identifier: Any, **kwargs: Any):
        super().__init__(f"{kind}不存在: {identifier}", **kwargs)
        self.kind = kind
        self.identifier = identifier


class TransientStoreError(RoundEngineError):
    """存储或通知暂时失败，可以退避后重试"""

    retryable = True

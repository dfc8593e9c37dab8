# 业务逻辑服务包
from .round_controller import RoundController
from .auto_advance import AutoAdvanceScheduler
from .change_notifier import ChangeNotifier

__all__ = ["RoundController", "AutoAdvanceScheduler", "ChangeNotifier"]

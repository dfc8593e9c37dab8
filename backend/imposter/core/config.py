"""
应用配置模块
"""

import secrets
from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """应用设置"""

    # 基础设置
    APP_NAME: str = "Imposter Round Engine"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # 服务器设置
    HOST: str = "0.0.0.0"
    PORT: int = 8001

    # 数据库设置
    DATABASE_URL: str = "sqlite:///./imposter_game.db"
    STORE_TIMEOUT_SECONDS: float = 5.0      # 单次存储操作的超时时间
    STORE_RETRY_ATTEMPTS: int = 3           # 可重试错误的最大重试次数
    STORE_RETRY_BASE_DELAY: float = 0.5     # 指数退避的初始间隔（秒）

    # 房间与轮次设置
    MIN_PLAYERS: int = 3                    # 开始一轮所需的最少玩家数
    MIN_PROMPTS: int = 3
    MAX_PROMPTS: int = 5
    DEFAULT_PROMPT_COUNT: int = 4
    DEFAULT_WIN_TARGET: int = 5             # 达到该总分即赢得整局游戏
    MAX_ANSWER_LENGTH: int = 100
    ENABLE_IMPOSTER_GUESS: bool = True      # 是否包含卧底猜词阶段
    ALLOW_SELF_VOTE: bool = False

    # 阶段时长（秒），未列出的阶段不限时
    ROLE_REVEAL_SECONDS: int = 10
    ANSWER_ENTRY_SECONDS: int = 60
    REVEAL_CLUES_SECONDS: int = 60
    VOTE_SECONDS: int = 45

    # 自动推进设置
    AUTO_ADVANCE_GRACE_SECONDS: float = 2.0     # 全部提交后留给玩家查看确认的时间
    GUESS_GRACE_SECONDS: float = 1.0
    FORCE_COMPLETE_THRESHOLD: float = 0.5
    FORCE_COMPLETE_COUNTDOWN_SECONDS: int = 10
    RECONCILE_INTERVAL_SECONDS: int = 5         # 周期性对账间隔

    # 系统计时器使用的推进令牌，默认每个进程随机生成
    SYSTEM_TIMER_TOKEN: str = Field(default_factory=lambda: secrets.token_urlsafe(32))

    # 通知设置
    NOTIFY_TIMEOUT_SECONDS: float = 5.0
    WS_HEARTBEAT_INTERVAL: int = 30

    class Config:
        env_file = ".env"
        case_sensitive = True

# 全局设置实例
settings = Settings()

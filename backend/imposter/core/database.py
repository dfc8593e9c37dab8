"""
数据库配置
"""
import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from imposter.core.config import settings

logger = logging.getLogger(__name__)


def _connect_args(database_url: str) -> dict:
    """SQLite需要关闭线程检查，并使用存储超时作为锁等待时间"""
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": settings.STORE_TIMEOUT_SECONDS}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
    echo=False  # 设置为True可以看到SQL查询日志
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db(bind=None):
    """初始化数据库"""
    # 导入所有模型，确保它们注册到Base.metadata
    from imposter.models.room import Room  # noqa: F401
    from imposter.models.player import Player  # noqa: F401
    from imposter.models.round_model import Round, RoundPrompt  # noqa: F401
    from imposter.models.submission import Submission  # noqa: F401
    from imposter.models.vote import Vote  # noqa: F401
    from imposter.models.score_delta import ScoreDelta  # noqa: F401

    # 创建所有表
    Base.metadata.create_all(bind=bind or engine)
    logger.info("✅ 数据库初始化完成")

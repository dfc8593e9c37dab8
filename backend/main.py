#!/usr/bin/env python3
"""
卧底轮次引擎 - 后端主入口
"""

import logging
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from imposter.core.config import settings
from imposter.api import api_router
from imposter.api.errors import register_exception_handlers
from imposter.core.database import init_db
from imposter.services.auto_advance import get_auto_advance_scheduler

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    description="卧底社交推理游戏的轮次引擎API",
    version=settings.VERSION
)

# CORS设置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],  # 前端开发服务器
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# 注册API路由
app.include_router(api_router, prefix="/api")

@app.on_event("startup")
async def startup_event():
    """应用启动时的初始化"""
    logger.info("🚀 启动卧底轮次引擎...")
    init_db()

    # 恢复中断的轮次：重新评估所有进行中轮次的截止时间和自动推进条件
    scheduler = get_auto_advance_scheduler()
    resumed = await scheduler.reconcile()
    if resumed:
        logger.info(f"🔄 已恢复 {resumed} 个进行中的轮次")
    scheduler.start()

@app.on_event("shutdown")
async def shutdown_event():
    """应用关闭时停止调度器"""
    get_auto_advance_scheduler().shutdown()
    logger.info("👋 卧底轮次引擎已停止")

@app.get("/")
async def root():
    """根路径健康检查"""
    return {"message": f"{settings.APP_NAME} 运行中", "status": "healthy"}

@app.get("/health")
async def health_check():
    """健康检查端点"""
    return {"status": "healthy", "service": "imposter-round-engine", "version": settings.VERSION}

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )

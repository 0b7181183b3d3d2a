#!/usr/bin/env python3
"""
在线课程播放服务 - FastAPI 主应用入口
Description: 提供WebSocket接口用于驱动内嵌视频播放器，REST API用于查询课程与学习进度
"""

import logging
import platform
from contextlib import asynccontextmanager

import psutil
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config.settings import settings
from app.utils.logger import setup_logging
from app.utils.database import init_db, check_db_connection
from app.utils.helpers import format_timestamp
from app.storage.local_store import get_local_store
from app.api.websocket_manager import websocket_manager

# 设置日志
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理
    - 启动时初始化数据库和本地存储
    - 关闭时清理连接
    """
    logger.info("初始化课程播放服务...")

    try:
        init_db()
        logger.info("数据库初始化完成")

        get_local_store()
        logger.info("课程播放服务启动完成")
    except Exception as e:
        logger.error(f"应用启动失败: {e}")
        raise

    yield  # 应用运行期间

    logger.info("正在关闭课程播放服务...")
    for session_key in websocket_manager.get_connected_sessions():
        websocket_manager.disconnect(session_key)
    logger.info("课程播放服务已安全关闭")


def create_application() -> FastAPI:
    """创建并配置FastAPI应用实例"""

    app = FastAPI(
        title=settings.APP_NAME,
        description="在线课程视频播放与学习进度同步",
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # 配置CORS中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 全局异常处理
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc):
        logger.error(f"未处理的异常: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "内部服务器错误"}
        )

    return app


# 创建应用实例
app = create_application()

# 导入并包含路由
from app.api.routes import lessons, progress, player

# 注册API路由
app.include_router(lessons.router, prefix="/api/v1/lessons", tags=["课程管理"])
app.include_router(progress.router, prefix="/api/v1/progress", tags=["学习进度"])

# WebSocket路由
app.add_api_websocket_route("/ws/player/{user_id}/{course_id}", player.player_websocket)


# 健康检查端点
@app.get("/")
async def root():
    """根端点 - 服务状态检查"""
    return {
        "status": "running",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": format_timestamp()
    }


@app.get("/health")
async def health_check():
    """健康检查端点"""
    db_status = check_db_connection()

    return {
        "status": "healthy" if db_status else "unhealthy",
        "database": "connected" if db_status else "disconnected",
        "timestamp": format_timestamp()
    }


@app.get("/api/v1/system/info")
async def system_info():
    """系统信息端点"""
    return {
        "python_version": platform.python_version(),
        "platform": platform.platform(),
        "cpu_usage": psutil.cpu_percent(),
        "memory_usage": psutil.virtual_memory().percent,
        "active_sessions": websocket_manager.get_connection_count(),
        "poll_interval": settings.POLL_INTERVAL_SECONDS,
        "embed_load_timeout": settings.EMBED_LOAD_TIMEOUT,
        "command_confirm_timeout": settings.COMMAND_CONFIRM_TIMEOUT,
        "embed_base_url": settings.EMBED_BASE_URL,
    }


if __name__ == "__main__":
    """开发环境直接运行"""
    uvicorn.run(
        "app.main:app",
        host=settings.WEBSOCKET_HOST,
        port=settings.WEBSOCKET_PORT,
        reload=True,  # 开发模式热重载
        log_level="info",
        ws_ping_interval=settings.WEBSOCKET_PING_INTERVAL,
        ws_ping_timeout=settings.WEBSOCKET_PING_TIMEOUT,
        timeout_keep_alive=5,
    )

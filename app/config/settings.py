from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    """应用配置"""

    # 应用配置
    APP_NAME: str = "在线课程播放服务"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # 数据库配置（远程进度存储）
    DATABASE_URL: str = "sqlite:///./course_player.db"
    SEED_DEMO_COURSE: bool = True

    # 本地持久化存储（进度兜底）
    LOCAL_STORE_URL: str = "sqlite:///./local_progress.db"

    # WebSocket配置
    WEBSOCKET_HOST: str = "0.0.0.0"
    WEBSOCKET_PORT: int = 8000
    WEBSOCKET_PING_INTERVAL: int = 20
    WEBSOCKET_PING_TIMEOUT: int = 20
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # 内嵌播放器配置
    EMBED_BASE_URL: str = "https://www.youtube-nocookie.com/embed/"
    EMBED_ALLOWED_ORIGIN: Optional[str] = None  # None 表示接受任意来源
    POLL_INTERVAL_SECONDS: float = 1.0
    EMBED_LOAD_TIMEOUT: float = 10.0
    COMMAND_CONFIRM_TIMEOUT: float = 3.0
    COMMAND_MAX_RETRIES: int = 1
    SEEK_STEP_SECONDS: float = 10.0
    SEEK_TOLERANCE_SECONDS: float = 2.0
    AVAILABLE_PLAYBACK_RATES: List[float] = [0.25, 0.5, 0.75, 1.0, 1.25, 1.5, 1.75, 2.0]

    # 进度与奖励配置
    REMOTE_WRITE_ATTEMPTS: int = 2
    LESSON_COMPLETION_XP: int = 50
    COURSE_COMPLETION_XP: int = 200
    XP_PER_LEVEL: int = 100
    NOTIFICATIONS_ENABLED: bool = True

    # 日志配置
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

# 创建全局配置实例
settings = Settings()

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
import logging

from app.config.settings import settings

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    """SQLite 需要允许跨线程使用连接（FastAPI 会在线程池中执行同步依赖）"""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_recycle": 3600}


# 创建数据库引擎
engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,  # 在DEBUG模式下输出SQL语句
    **_engine_kwargs(settings.DATABASE_URL),
)

# 创建SessionLocal类
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def get_db():
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"数据库会话错误: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def check_db_connection() -> bool:
    """检查数据库连接是否正常"""
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        return True
    except Exception as e:
        logger.error(f"数据库连接检查失败: {e}")
        return False

def init_db():
    """初始化数据库表"""
    try:
        from app.models.base import Base
        from app.models.course import Course
        from app.models.lesson import Lesson
        from app.models.lesson_progress import LessonProgress
        from app.models.course_progress import CourseProgress
        from app.models.streak_state import StreakState

        # 创建所有表
        Base.metadata.create_all(bind=engine)
        logger.info("数据库表初始化完成")

        if settings.SEED_DEMO_COURSE:
            init_demo_course()

    except Exception as e:
        logger.error(f"数据库初始化失败: {e}")
        raise


DEMO_COURSE = {
    "title": "Digital Marketing Foundations",
    "description": "演示课程，服务首次启动时写入",
}

DEMO_LESSONS = [
    {"title": "Welcome and course overview", "duration_hint": 312, "source_url": "https://www.youtube.com/watch?v=ysz5S6PUM-U"},
    {"title": "Finding your audience", "duration_hint": 600, "source_url": "https://youtu.be/jNQXAC9IVRw"},
    {"title": "Writing offers that convert", "duration_hint": 845, "source_url": "https://www.youtube.com/embed/aqz-KE-bpKQ"},
    {"title": "Measuring what matters", "duration_hint": 530, "source_url": "M7lc1UVf-VE"},
]


def init_demo_course():
    """
    初始化演示课程数据
    课程已存在时跳过
    """
    from app.repositories.course_repository import CourseRepository
    from app.repositories.lesson_repository import LessonRepository

    db = SessionLocal()

    try:
        course_repo = CourseRepository(db)
        lesson_repo = LessonRepository(db)

        if course_repo.get_first_by(title=DEMO_COURSE["title"]):
            logger.info("演示课程已存在，跳过初始化")
            return

        course = course_repo.create(**DEMO_COURSE)
        for order_index, lesson_data in enumerate(DEMO_LESSONS, start=1):
            lesson_repo.create(course_id=course.id, order_index=order_index, **lesson_data)

        logger.info(f"初始化演示课程: {course.id}, 课时数{len(DEMO_LESSONS)}")
    except Exception as e:
        db.rollback()
        logger.error(f"初始化演示课程失败: {e}")
        raise
    finally:
        db.close()

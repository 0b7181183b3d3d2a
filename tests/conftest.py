import json
from typing import Any, List, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models.base import Base
from app.models.course import Course
from app.models.lesson import Lesson
from app.models.lesson_progress import LessonProgress
from app.models.course_progress import CourseProgress
from app.models.streak_state import StreakState
from app.player.bridge import LessonRef
from app.player.embed_host import EmbedHost
from app.storage.local_store import LocalProgressStore

# 测试数据库（内存SQLite，所有连接共享同一个库）
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeEmbedHost(EmbedHost):
    """记录所有调用的嵌入页面"""

    def __init__(self):
        super().__init__()
        self.mounts: List[Tuple[str, str]] = []
        self.unmounts: List[str] = []
        self.posted: List[Tuple[str, str]] = []
        self.fullscreen_calls: List[bool] = []

    def mount(self, element_id: str, src: str):
        self.mounted_elements.add(element_id)
        self.mounts.append((element_id, src))

    def unmount(self, element_id: str):
        self.mounted_elements.discard(element_id)
        self.unmounts.append(element_id)

    def post_message(self, element_id: str, data: str):
        self.posted.append((element_id, data))

    def request_fullscreen(self):
        self.fullscreen_calls.append(True)

    def exit_fullscreen(self):
        self.fullscreen_calls.append(False)

    def commands(self, element_id: str = None) -> List[Tuple[str, list]]:
        """已发送的命令 (func, args)"""
        result = []
        for target, data in self.posted:
            if element_id is not None and target != element_id:
                continue
            message = json.loads(data)
            if message.get("event") == "command":
                result.append((message["func"], message["args"]))
        return result

    def command_names(self, element_id: str = None) -> List[str]:
        return [name for name, _ in self.commands(element_id)]

    def send(self, payload: Any, origin: str = "https://www.youtube-nocookie.com"):
        """模拟播放器向页面发消息"""
        data = payload if isinstance(payload, str) else json.dumps(payload)
        self.dispatch_message(origin, data)


def state_change(code: int) -> dict:
    return {"event": "onStateChange", "info": code}


def info_delivery(current_time: float = None, duration: float = None, player_state: int = None) -> dict:
    info = {}
    if current_time is not None:
        info["currentTime"] = current_time
    if duration is not None:
        info["duration"] = duration
    if player_state is not None:
        info["playerState"] = player_state
    return {"event": "infoDelivery", "info": info}


def make_lesson_ref(lesson_id: int = 1, course_id: int = 1, duration: int = 600,
                    order_index: int = 1, url: str = "https://www.youtube.com/watch?v=dQw4w9WgXcQ") -> LessonRef:
    return LessonRef(
        id=lesson_id,
        title=f"第{order_index}课",
        duration_hint=duration,
        source_url=url,
        order_index=order_index,
        course_id=course_id,
    )


def create_course(db, lesson_count: int = 4, duration: int = 600) -> Course:
    """创建一门包含若干课时的课程"""
    course = Course(title="测试课程", description="测试用", is_active=True)
    db.add(course)
    db.commit()
    db.refresh(course)
    for index in range(1, lesson_count + 1):
        db.add(Lesson(
            course_id=course.id,
            title=f"第{index}课",
            duration_hint=duration,
            source_url=f"https://youtu.be/video{index:06d}",
            order_index=index,
            is_active=True,
        ))
    db.commit()
    return course


@pytest.fixture
def db_session():
    """创建测试数据库会话"""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def host():
    return FakeEmbedHost()


@pytest.fixture
def local_store():
    return LocalProgressStore("sqlite://")

"""
本地持久化键值存储
仅用于在远程写入失败时保持进度展示的连续性，不作为进度的权威来源。
所有键都按用户区分；写入采用后写覆盖，不加锁（同一个键的并发写入方只有同一用户自己的会话）。
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytz
from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config.settings import settings

logger = logging.getLogger(__name__)

LocalBase = declarative_base()

RECENT_COURSE_ID = "recent_course_id"
RECENT_COURSE_PROGRESS = "recent_course_progress"
RECENT_COURSE_TIMESTAMP = "recent_course_timestamp"
RECENT_COURSE_COMPLETED = "recent_course_completed"


class LocalEntry(LocalBase):
    __tablename__ = "local_kv"

    key = Column(String(200), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=lambda: datetime.now(pytz.utc))


class LocalProgressStore:
    """本地进度存储"""

    def __init__(self, url: Optional[str] = None):
        url = url or settings.LOCAL_STORE_URL
        kwargs = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url == "sqlite://":
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)
        self._session_factory = sessionmaker(bind=self.engine, autoflush=False)
        LocalBase.metadata.create_all(bind=self.engine)
        logger.info("本地进度存储初始化完成")

    def get(self, key: str, default: Any = None) -> Any:
        with self._session_factory() as db:
            entry = db.get(LocalEntry, key)
            if entry is None:
                return default
            try:
                return json.loads(entry.value)
            except json.JSONDecodeError:
                logger.warning(f"本地存储数据损坏，忽略: {key}")
                return default

    def set(self, key: str, value: Any):
        with self._session_factory() as db:
            db.merge(LocalEntry(
                key=key,
                value=json.dumps(value),
                updated_at=datetime.now(pytz.utc),
            ))
            db.commit()

    def delete(self, key: str):
        with self._session_factory() as db:
            entry = db.get(LocalEntry, key)
            if entry is not None:
                db.delete(entry)
                db.commit()

    @staticmethod
    def _completed_key(user_id: str, course_id: int) -> str:
        return f"completed_lessons:{user_id}:{course_id}"

    def get_completed_lessons(self, user_id: str, course_id: int) -> List[int]:
        return list(self.get(self._completed_key(user_id, course_id), []))

    def add_completed_lesson(self, user_id: str, course_id: int, lesson_id: int) -> List[int]:
        """把课时加入本地已完成集合，返回更新后的集合"""
        completed = set(self.get_completed_lessons(user_id, course_id))
        completed.add(lesson_id)
        result = sorted(completed)
        self.set(self._completed_key(user_id, course_id), result)
        return result

    @staticmethod
    def _summary_key(name: str, user_id: str) -> str:
        return f"{name}:{user_id}"

    def save_course_summary(self, user_id: str, course_id: int, percent: int,
                            timestamp: Optional[datetime] = None):
        """写入用户最近学习课程的摘要"""
        timestamp = timestamp or datetime.now(pytz.utc)
        self.set(self._summary_key(RECENT_COURSE_ID, user_id), course_id)
        self.set(self._summary_key(RECENT_COURSE_PROGRESS, user_id), percent)
        self.set(self._summary_key(RECENT_COURSE_TIMESTAMP, user_id), timestamp.isoformat())
        self.set(self._summary_key(RECENT_COURSE_COMPLETED, user_id), percent >= 100)

    def get_course_summary(self, user_id: str) -> Dict[str, Any]:
        return {
            "course_id": self.get(self._summary_key(RECENT_COURSE_ID, user_id)),
            "percent": self.get(self._summary_key(RECENT_COURSE_PROGRESS, user_id)),
            "timestamp": self.get(self._summary_key(RECENT_COURSE_TIMESTAMP, user_id)),
            "completed": self.get(self._summary_key(RECENT_COURSE_COMPLETED, user_id), False),
        }


_store: Optional[LocalProgressStore] = None


def get_local_store() -> LocalProgressStore:
    """获取进程内共享的本地进度存储"""
    global _store
    if _store is None:
        _store = LocalProgressStore()
    return _store

from typing import Optional
from sqlalchemy.orm import Session

from app.models.course_progress import CourseProgress
from app.repositories.base import BaseRepository


class CourseProgressRepository(BaseRepository[CourseProgress]):
    def __init__(self, db: Session):
        super().__init__(db, CourseProgress)

    def get_user_course(self, user_id: str, course_id: int) -> Optional[CourseProgress]:
        return self.get_first_by(user_id=user_id, course_id=course_id)

    def upsert(self, user_id: str, course_id: int, **values) -> CourseProgress:
        """按 (user_id, course_id) 写入，已存在则覆盖"""
        record = self.get_user_course(user_id, course_id)
        if record:
            return self.update_instance(record, **values)
        return self.create(user_id=user_id, course_id=course_id, **values)

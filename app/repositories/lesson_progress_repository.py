from typing import List, Optional
from datetime import datetime
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.lesson import Lesson
from app.models.lesson_progress import LessonProgress
from app.repositories.base import BaseRepository


class LessonProgressRepository(BaseRepository[LessonProgress]):
    def __init__(self, db: Session):
        super().__init__(db, LessonProgress)

    def get_user_lesson(self, user_id: str, lesson_id: int) -> Optional[LessonProgress]:
        """按唯一键 (user_id, lesson_id) 获取记录"""
        return self.db.query(LessonProgress).filter(
            LessonProgress.user_id == user_id,
            LessonProgress.lesson_id == lesson_id
        ).first()

    def get_user_course_records(self, user_id: str, course_id: Optional[int] = None) -> List[LessonProgress]:
        """获取用户的课时进度（可按课程过滤）"""
        query = self.db.query(LessonProgress).filter(LessonProgress.user_id == user_id)
        if course_id is not None:
            query = query.filter(LessonProgress.course_id == course_id)
        return query.order_by(LessonProgress.completed_at.desc()).all()

    def count_completed(self, user_id: str, course_id: int) -> int:
        """统计课程中已完成且仍有效的课时数"""
        return self.db.query(LessonProgress).join(
            Lesson, Lesson.id == LessonProgress.lesson_id
        ).filter(
            LessonProgress.user_id == user_id,
            LessonProgress.course_id == course_id,
            LessonProgress.completed == True,
            Lesson.is_active == True
        ).count()

    def mark_completed(self, user_id: str, course_id: int, lesson_id: int,
                       completed_at: datetime, position: Optional[float] = None) -> bool:
        """
        幂等写入课时完成记录

        Returns:
            bool: 本次是否是新的完成（已完成的课时返回False）
        """
        record = self.get_user_lesson(user_id, lesson_id)
        if record and record.completed:
            return False

        values = {
            "completed": True,
            "completed_at": completed_at,
            "position": position if position is not None else 0.0,
        }
        if record:
            self.update_instance(record, **values)
            return True

        try:
            self.create(user_id=user_id, course_id=course_id, lesson_id=lesson_id, **values)
        except IntegrityError:
            # 并发写入已插入同一课时
            self.db.rollback()
            return False
        return True

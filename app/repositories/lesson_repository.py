from typing import List
from sqlalchemy.orm import Session
from app.models.lesson import Lesson
from app.repositories.base import BaseRepository

class LessonRepository(BaseRepository[Lesson]):
    def __init__(self, db: Session):
        super().__init__(db, Lesson)

    def get_course_lessons(self, course_id: int) -> List[Lesson]:
        """获取课程的所有有效课时（按顺序）"""
        return self.db.query(Lesson).filter(
            Lesson.course_id == course_id,
            Lesson.is_active == True
        ).order_by(Lesson.order_index).all()

    def count_course_lessons(self, course_id: int) -> int:
        """统计课程的有效课时数"""
        return self.count_by(course_id=course_id, is_active=True)

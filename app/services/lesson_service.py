import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models.course import Course
from app.models.lesson import Lesson
from app.player.bridge import LessonRef
from app.repositories.course_repository import CourseRepository
from app.repositories.lesson_repository import LessonRepository

logger = logging.getLogger(__name__)


def to_ref(lesson: Lesson) -> LessonRef:
    """把课时记录转换为播放时使用的不可变引用"""
    return LessonRef(
        id=lesson.id,
        title=lesson.title,
        duration_hint=lesson.duration_hint or 0,
        source_url=lesson.source_url,
        order_index=lesson.order_index,
        course_id=lesson.course_id,
    )


class LessonService:
    """课时服务，负责课程与课时的查询"""

    def __init__(self, db: Session):
        self.db = db
        self.course_repo = CourseRepository(db)
        self.lesson_repo = LessonRepository(db)
        logger.info("课时服务初始化完成")

    def get_course(self, course_id: int) -> Optional[Course]:
        course = self.course_repo.get_by_id(course_id)
        if course is None or not course.is_active:
            return None
        return course

    def get_course_lessons(self, course_id: int) -> List[Lesson]:
        """获取课程的有效课时（按顺序）"""
        return self.lesson_repo.get_course_lessons(course_id)

    def get_course_lesson_refs(self, course_id: int) -> List[LessonRef]:
        return [to_ref(lesson) for lesson in self.get_course_lessons(course_id)]

    def get_lesson_by_id(self, lesson_id: int) -> Optional[Lesson]:
        """根据ID获取课时"""
        lesson = self.lesson_repo.get_by_id(lesson_id)
        if lesson is None or not lesson.is_active:
            return None
        return lesson

    def get_lessons_count(self, course_id: int) -> int:
        return self.lesson_repo.count_course_lessons(course_id)

from sqlalchemy import Column, String, Integer, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from .base import BaseModel

"""
课时模型
课程中的一个可播放单元：标题、时长提示（秒）、视频地址和在课程中的顺序。
播放期间视为不可变。
"""
class Lesson(BaseModel):
    __tablename__ = "lessons"
    __table_args__ = (
        UniqueConstraint("course_id", "order_index", name="uq_lesson_course_order"),
    )

    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    duration_hint = Column(Integer, default=0)
    source_url = Column(String(500), nullable=False)
    order_index = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True)

    course = relationship("Course", backref="lessons")

    def to_dict(self):
        return {
            "id": self.id,
            "course_id": self.course_id,
            "title": self.title,
            "duration_hint": self.duration_hint,
            "source_url": self.source_url,
            "order_index": self.order_index,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None
        }

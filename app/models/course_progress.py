from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint
from .base import BaseModel

"""
课程进度模型
由 LessonProgress 推导出的聚合值，每次课时写入后重新计算；本身不是权威数据。
"""
class CourseProgress(BaseModel):
    __tablename__ = "course_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_course_progress_user_course"),
    )

    user_id = Column(String(64), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False)
    completed_count = Column(Integer, default=0, nullable=False)
    total_count = Column(Integer, default=0, nullable=False)
    percent = Column(Integer, default=0, nullable=False)
    status = Column(String(20), default="in_progress")  # in_progress, completed
    last_accessed_at = Column(DateTime)
    completed_at = Column(DateTime)

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "course_id": self.course_id,
            "completed_count": self.completed_count,
            "total_count": self.total_count,
            "percent": self.percent,
            "status": self.status,
            "last_accessed_at": self.last_accessed_at.isoformat() if self.last_accessed_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None
        }

from sqlalchemy import Column, String, Text, Boolean
from .base import BaseModel

"""
课程模型
一门课程由若干按顺序排列的视频课时组成，课程的编辑与发布不在本服务范围内。
"""
class Course(BaseModel):
    __tablename__ = "courses"

    title = Column(String(200), nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None
        }

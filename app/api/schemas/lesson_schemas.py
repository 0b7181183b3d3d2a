from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import datetime


class LessonBase(BaseModel):
    course_id: int
    title: str
    duration_hint: int = 0
    source_url: str
    order_index: int


class LessonResponse(LessonBase):
    id: int
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(
        from_attributes=True
    )


class CourseResponse(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    is_active: bool

    model_config = ConfigDict(
        from_attributes=True
    )


class CourseLessonsResponse(BaseModel):
    course: CourseResponse
    lessons: List[LessonResponse]
    total: int

from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import date, datetime


class LessonProgressResponse(BaseModel):
    id: int
    user_id: str
    course_id: int
    lesson_id: int
    completed: bool
    completed_at: Optional[datetime] = None
    position: Optional[float] = None

    model_config = ConfigDict(
        from_attributes=True
    )


class CourseProgressResponse(BaseModel):
    user_id: str
    course_id: int
    completed_count: int
    total_count: int
    percent: int
    last_accessed_at: Optional[datetime] = None


class LessonProgressListResponse(BaseModel):
    records: List[LessonProgressResponse]
    total: int


class StreakResponse(BaseModel):
    user_id: str
    current_streak: int = 0
    last_qualifying_day: Optional[date] = None
    xp: int = 0
    level: int = 1

    model_config = ConfigDict(
        from_attributes=True
    )

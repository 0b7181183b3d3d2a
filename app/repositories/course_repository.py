from sqlalchemy.orm import Session
from app.models.course import Course
from app.repositories.base import BaseRepository

class CourseRepository(BaseRepository[Course]):
    def __init__(self, db: Session):
        super().__init__(db, Course)

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.utils.database import get_db
from app.services.lesson_service import LessonService
from app.api.schemas.lesson_schemas import CourseLessonsResponse, LessonResponse


router = APIRouter()


@router.get("/course/{course_id}", response_model=CourseLessonsResponse)
async def get_course_lessons(course_id: int, db: Session = Depends(get_db)):
    """
    获取课程及其课时列表
    """
    lesson_service = LessonService(db)
    course = lesson_service.get_course(course_id)
    if not course:
        raise HTTPException(status_code=404, detail="课程不存在")

    lessons = lesson_service.get_course_lessons(course_id)
    return {"course": course, "lessons": lessons, "total": len(lessons)}


@router.get("/{lesson_id}", response_model=LessonResponse)
async def get_lesson(lesson_id: int, db: Session = Depends(get_db)):
    """
    根据ID获取课时
    """
    lesson_service = LessonService(db)
    lesson = lesson_service.get_lesson_by_id(lesson_id)
    if not lesson:
        raise HTTPException(status_code=404, detail="课时不存在")
    return lesson

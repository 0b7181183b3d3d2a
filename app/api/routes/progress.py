import logging
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Optional

from app.utils.database import get_db
from app.services.lesson_service import LessonService
from app.services.progress_service import ProgressService
from app.api.schemas.progress_schemas import (
    CourseProgressResponse, LessonProgressListResponse, StreakResponse
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{user_id}/courses/{course_id}", response_model=CourseProgressResponse)
async def get_course_progress(user_id: str, course_id: int, db: Session = Depends(get_db)):
    """
    获取课程进度（由课时完成记录重新计算）
    """
    lesson_service = LessonService(db)
    if not lesson_service.get_course(course_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="课程不存在"
        )

    try:
        progress_service = ProgressService(db)
        return progress_service.get_course_progress(user_id, course_id)
    except SQLAlchemyError as e:
        logger.error(f"获取课程进度失败: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="获取课程进度失败"
        )


@router.get("/{user_id}/lessons", response_model=LessonProgressListResponse)
async def get_lesson_progress(
    user_id: str,
    course_id: Optional[int] = Query(None, description="按课程过滤"),
    db: Session = Depends(get_db)
):
    """
    获取用户的课时完成记录
    """
    try:
        progress_service = ProgressService(db)
        records = progress_service.get_lesson_progress(user_id, course_id)
        return {"records": records, "total": len(records)}
    except SQLAlchemyError as e:
        logger.error(f"获取课时进度失败: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="获取课时进度失败"
        )


@router.get("/{user_id}/streak", response_model=StreakResponse)
async def get_streak(user_id: str, db: Session = Depends(get_db)):
    """
    获取连续学习天数与经验值
    """
    progress_service = ProgressService(db)
    state = progress_service.get_streak(user_id)
    if state is None:
        return StreakResponse(user_id=user_id)
    return state

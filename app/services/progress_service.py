import logging
from dataclasses import dataclass
from datetime import datetime, date
from typing import List, Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config.settings import settings
from app.models.course_progress import CourseProgress
from app.models.lesson_progress import LessonProgress
from app.models.streak_state import StreakState
from app.repositories.course_progress_repository import CourseProgressRepository
from app.repositories.lesson_progress_repository import LessonProgressRepository
from app.repositories.lesson_repository import LessonRepository
from app.repositories.streak_repository import StreakRepository
from app.utils.helpers import compute_percent, level_for_xp, next_streak

logger = logging.getLogger(__name__)


@dataclass
class XPAward:
    """经验值/连续天数更新结果"""
    xp: int
    level: int
    previous_level: int
    current_streak: int
    streak_extended: bool


class ProgressService:
    """
    远程进度存储
    提供按复合键的幂等写入、按条件统计和经验值/连续天数更新。
    每个调用独立提交，失败时回滚并把异常抛给调用方。
    """

    def __init__(self, db: Session):
        self.db = db
        self.lesson_repo = LessonRepository(db)
        self.lesson_progress_repo = LessonProgressRepository(db)
        self.course_progress_repo = CourseProgressRepository(db)
        self.streak_repo = StreakRepository(db)

    def _rollback(self):
        try:
            self.db.rollback()
        except SQLAlchemyError as e:
            logger.error(f"回滚失败: {e}")

    @retry(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(settings.REMOTE_WRITE_ATTEMPTS),
        wait=wait_exponential(multiplier=0.1, max=1),
        reraise=True,
    )
    async def upsert_lesson_completion(self, user_id: str, course_id: int, lesson_id: int,
                                       completed_at: datetime, position: Optional[float] = None) -> bool:
        """
        幂等写入课时完成记录，临时性数据库错误会重试（重试间隔在事件循环上等待）

        Returns:
            bool: 是否为新的完成记录
        """
        try:
            created = self.lesson_progress_repo.mark_completed(
                user_id, course_id, lesson_id, completed_at, position
            )
            logger.info(f"课时完成写入: 用户{user_id}, 课时{lesson_id}, 新完成: {created}")
            return created
        except SQLAlchemyError:
            self._rollback()
            raise

    def count_completed_lessons(self, user_id: str, course_id: int) -> int:
        return self.lesson_progress_repo.count_completed(user_id, course_id)

    def count_course_lessons(self, course_id: int) -> int:
        return self.lesson_repo.count_course_lessons(course_id)

    def save_course_progress(self, user_id: str, course_id: int, completed_count: int,
                             total_count: int, now: datetime) -> CourseProgress:
        """写入重新计算后的课程进度"""
        percent = compute_percent(completed_count, total_count)
        existing = self.course_progress_repo.get_user_course(user_id, course_id)
        values = {
            "completed_count": completed_count,
            "total_count": total_count,
            "percent": percent,
            "status": "completed" if percent >= 100 else "in_progress",
            "last_accessed_at": now,
        }
        if percent >= 100:
            values["completed_at"] = existing.completed_at if existing and existing.completed_at else now
        else:
            values["completed_at"] = None

        try:
            record = self.course_progress_repo.upsert(user_id, course_id, **values)
        except SQLAlchemyError:
            self._rollback()
            raise
        logger.info(f"课程进度更新: 用户{user_id}, 课程{course_id}, {completed_count}/{total_count} = {percent}%")
        return record

    def recompute_course_progress(self, user_id: str, course_id: int, now: datetime) -> CourseProgress:
        """从已完成课时集合重新推导课程进度并写入"""
        completed = self.count_completed_lessons(user_id, course_id)
        total = self.count_course_lessons(course_id)
        return self.save_course_progress(user_id, course_id, min(completed, total), total, now)

    def touch_course_access(self, user_id: str, course_id: int, now: datetime) -> CourseProgress:
        """记录课程访问时间，首次打开课程时建立课程进度记录"""
        existing = self.course_progress_repo.get_user_course(user_id, course_id)
        if existing is None:
            return self.recompute_course_progress(user_id, course_id, now)
        try:
            record = self.course_progress_repo.update_instance(existing, last_accessed_at=now)
        except SQLAlchemyError:
            self._rollback()
            raise
        logger.info(f"课程访问时间更新: 用户{user_id}, 课程{course_id}")
        return record

    def get_course_progress(self, user_id: str, course_id: int) -> dict:
        """读取课程进度（始终由课时记录重新推导，不信任缓存的百分比）"""
        completed = self.count_completed_lessons(user_id, course_id)
        total = self.count_course_lessons(course_id)
        completed = min(completed, total)
        cached = self.course_progress_repo.get_user_course(user_id, course_id)
        return {
            "user_id": user_id,
            "course_id": course_id,
            "completed_count": completed,
            "total_count": total,
            "percent": compute_percent(completed, total),
            "last_accessed_at": cached.last_accessed_at if cached else None,
        }

    def get_lesson_progress(self, user_id: str, course_id: Optional[int] = None) -> List[LessonProgress]:
        return self.lesson_progress_repo.get_user_course_records(user_id, course_id)

    def get_streak(self, user_id: str) -> Optional[StreakState]:
        return self.streak_repo.get_by_user(user_id)

    def award_xp_and_streak(self, user_id: str, xp_amount: int, today: date,
                            count_towards_streak: bool = True) -> XPAward:
        """
        增加经验值并更新连续学习天数

        Args:
            user_id: 用户ID
            xp_amount: 增加的经验值
            today: 计算连续天数使用的日期
            count_towards_streak: 是否计入连续天数（课程完成奖励不重复计入）
        """
        try:
            state = self.streak_repo.get_by_user(user_id)
            if state is None:
                state = self.streak_repo.create(user_id=user_id, current_streak=0, xp=0, level=1)

            previous_level = state.level or 1
            xp = (state.xp or 0) + xp_amount
            values = {"xp": xp, "level": level_for_xp(xp, settings.XP_PER_LEVEL)}

            streak, extended = state.current_streak or 0, False
            if count_towards_streak:
                streak, extended = next_streak(state.current_streak or 0, state.last_qualifying_day, today)
                values["current_streak"] = streak
                values["last_qualifying_day"] = today

            state = self.streak_repo.update_instance(state, **values)
        except SQLAlchemyError:
            self._rollback()
            raise

        logger.info(f"经验值更新: 用户{user_id}, +{xp_amount}XP, 总计{state.xp}, 等级{state.level}, 连续{state.current_streak}天")
        return XPAward(
            xp=state.xp,
            level=state.level,
            previous_level=previous_level,
            current_streak=state.current_streak,
            streak_extended=extended,
        )

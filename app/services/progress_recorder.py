import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import pytz

from app.config.settings import settings
from app.player.bridge import LessonRef
from app.services.notification_service import NotificationService
from app.services.progress_service import ProgressService
from app.storage.local_store import LocalProgressStore
from app.utils.helpers import compute_percent

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    """一次课时完成记录的结果"""
    lesson_id: int
    course_id: int
    percent: int
    newly_completed: bool = False
    remote_saved: bool = False
    local_saved: bool = False
    notified: bool = False
    xp_awarded: int = 0
    level: Optional[int] = None
    streak: Optional[int] = None
    course_completed: bool = False

    def to_dict(self):
        return {
            "lesson_id": self.lesson_id,
            "course_id": self.course_id,
            "percent": self.percent,
            "newly_completed": self.newly_completed,
            "remote_saved": self.remote_saved,
            "local_saved": self.local_saved,
            "xp_awarded": self.xp_awarded,
            "level": self.level,
            "streak": self.streak,
            "course_completed": self.course_completed,
        }


class ProgressRecorder:
    """
    课时完成记录流程

    1. 远程幂等写入课时完成
    2. 重新统计并写入课程进度
    3. 写入本地存储（远程失败时百分比由本地完成集合推导）
    4. 发送课时完成通知
    5. 新完成时发放经验值、更新连续天数，课程首次完成时发放奖励

    每一步单独捕获异常，整个流程不向调用方抛出异常。
    """

    def __init__(self, progress_service: ProgressService,
                 local_store: LocalProgressStore,
                 notifier: Optional[NotificationService] = None,
                 lesson_xp: Optional[int] = None,
                 course_xp: Optional[int] = None):
        self.progress_service = progress_service
        self.local_store = local_store
        self.notifier = notifier
        self.lesson_xp = settings.LESSON_COMPLETION_XP if lesson_xp is None else lesson_xp
        self.course_xp = settings.COURSE_COMPLETION_XP if course_xp is None else course_xp

    async def record_completion(self, user_id: str, lesson: LessonRef,
                                total_lessons: Optional[int] = None,
                                position: Optional[float] = None,
                                now: Optional[datetime] = None) -> CompletionResult:
        """
        记录课时完成

        Args:
            user_id: 用户ID
            lesson: 已播放结束的课时
            total_lessons: 课程课时总数（远程统计失败时用于本地推导）
            position: 结束时的播放位置
            now: 完成时间，默认当前UTC时间

        Returns:
            CompletionResult: 各步骤的执行结果
        """
        now = now or datetime.now(pytz.utc)
        result = CompletionResult(lesson_id=lesson.id, course_id=lesson.course_id, percent=0)

        # 课程奖励判断，读取失败时不发奖励
        try:
            was_complete = self._course_already_complete(user_id, lesson.course_id)
        except Exception as e:
            was_complete = True
            logger.error(f"读取课程完成状态失败: 用户{user_id}, 课程{lesson.course_id}, {e}")

        # 1. 幂等写入
        upserted = False
        try:
            result.newly_completed = await self.progress_service.upsert_lesson_completion(
                user_id, lesson.course_id, lesson.id, now, position
            )
            upserted = True
        except Exception as e:
            logger.error(f"远程写入课时完成失败: 用户{user_id}, 课时{lesson.id}, {e}")

        # 2. 重新统计课程进度
        if upserted:
            try:
                record = self.progress_service.recompute_course_progress(user_id, lesson.course_id, now)
                result.percent = record.percent
                total_lessons = record.total_count
                result.remote_saved = True
            except Exception as e:
                logger.error(f"远程写入课程进度失败: 用户{user_id}, 课程{lesson.course_id}, {e}")

        # 3. 本地存储
        try:
            completed = self.local_store.add_completed_lesson(user_id, lesson.course_id, lesson.id)
            if not result.remote_saved:
                result.percent = compute_percent(len(completed), total_lessons or 0)
            self.local_store.save_course_summary(user_id, lesson.course_id, result.percent, now)
            result.local_saved = True
        except Exception as e:
            logger.error(f"写入本地进度失败: 用户{user_id}, 课程{lesson.course_id}, {e}")

        # 4. 课时完成通知
        if self.notifier is not None:
            try:
                result.notified = await self.notifier.send_lesson_completed(
                    lesson.title, lesson.course_id, result.percent
                )
            except Exception as e:
                logger.error(f"发送课时完成通知失败: {e}")

        # 5. 经验值与连续天数
        if result.newly_completed:
            await self._award(user_id, lesson, result, now, was_complete)

        logger.info(
            f"课时完成记录结束: 用户{user_id}, 课时{lesson.id}, 进度{result.percent}%, "
            f"新完成: {result.newly_completed}, 远程: {result.remote_saved}, 本地: {result.local_saved}"
        )
        return result

    def _course_already_complete(self, user_id: str, course_id: int) -> bool:
        total = self.progress_service.count_course_lessons(course_id)
        completed = self.progress_service.count_completed_lessons(user_id, course_id)
        return total > 0 and completed >= total

    async def _award(self, user_id: str, lesson: LessonRef, result: CompletionResult,
                     now: datetime, was_complete: bool):
        today = now.astimezone(pytz.utc).date()
        try:
            award = self.progress_service.award_xp_and_streak(user_id, self.lesson_xp, today)
            result.xp_awarded += self.lesson_xp
            result.level = award.level
            result.streak = award.current_streak
            previous_level = award.previous_level
            streak_extended = award.streak_extended

            if result.remote_saved and result.percent >= 100 and not was_complete:
                award = self.progress_service.award_xp_and_streak(
                    user_id, self.course_xp, today, count_towards_streak=False
                )
                result.xp_awarded += self.course_xp
                result.level = award.level
                result.course_completed = True
                logger.info(f"课程首次完成: 用户{user_id}, 课程{lesson.course_id}")
        except Exception as e:
            logger.error(f"更新经验值失败: 用户{user_id}, {e}")
            return

        if self.notifier is None:
            return
        try:
            if result.course_completed:
                await self.notifier.send_course_completed(lesson.course_id, result.xp_awarded)
            if result.level is not None and result.level > previous_level:
                await self.notifier.send_level_up(result.level)
            if streak_extended and result.streak and result.streak > 1:
                await self.notifier.send_streak(result.streak)
        except Exception as e:
            logger.error(f"发送奖励通知失败: {e}")

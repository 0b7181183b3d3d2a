import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from app.config.settings import settings
from app.utils.helpers import format_timestamp

logger = logging.getLogger(__name__)

NotificationSender = Callable[[Dict[str, Any]], Awaitable[None]]

PERMISSION_GRANTED = "granted"
PERMISSION_DENIED = "denied"
PERMISSION_DEFAULT = "default"


class NotificationService:
    """
    学习提醒通知
    只有在开启通知且用户授权后才会发送；发送失败只记录日志。
    """

    def __init__(self, sender: Optional[NotificationSender] = None,
                 enabled: Optional[bool] = None,
                 permission: str = PERMISSION_DEFAULT):
        self.sender = sender
        self.enabled = settings.NOTIFICATIONS_ENABLED if enabled is None else enabled
        self.permission = permission

    def set_permission(self, permission: str):
        if permission not in (PERMISSION_GRANTED, PERMISSION_DENIED, PERMISSION_DEFAULT):
            raise ValueError(f"无效的通知权限: {permission}")
        self.permission = permission
        logger.info(f"通知权限已更新: {permission}")

    def is_enabled(self) -> bool:
        return self.enabled and self.permission == PERMISSION_GRANTED and self.sender is not None

    async def send_notification(self, title: str, body: str, tag: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """
        发送通知

        Returns:
            bool: 是否发送成功
        """
        if not self.is_enabled():
            logger.debug(f"通知未开启或未授权，跳过: {tag}")
            return False

        message = {
            "type": "notification",
            "title": title,
            "body": body,
            "tag": tag,
            "data": data or {},
            "timestamp": format_timestamp(),
        }
        try:
            await self.sender(message)
            return True
        except Exception as e:
            logger.error(f"发送通知失败: {tag}, {e}")
            return False

    async def send_lesson_completed(self, lesson_title: str, course_id: int, percent: int) -> bool:
        return await self.send_notification(
            "课时已完成",
            f"你已完成「{lesson_title}」，课程进度 {percent}%",
            "lesson-completed",
            {"course_id": course_id, "percent": percent},
        )

    async def send_course_completed(self, course_id: int, xp_earned: int) -> bool:
        return await self.send_notification(
            "课程已完成",
            f"恭喜完成整门课程！获得 {xp_earned} 经验值",
            "course-completed",
            {"course_id": course_id, "xp": xp_earned},
        )

    async def send_level_up(self, level: int) -> bool:
        return await self.send_notification(
            "等级提升",
            f"你已升到 {level} 级",
            "level-up",
            {"level": level},
        )

    async def send_streak(self, streak: int) -> bool:
        return await self.send_notification(
            "连续学习",
            f"已连续学习 {streak} 天，继续保持！",
            "streak",
            {"streak": streak},
        )

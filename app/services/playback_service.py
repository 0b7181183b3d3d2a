import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

import pytz
from sqlalchemy.orm import Session

from app.player.bridge import LessonRef, PlaybackBridge
from app.player.cleanup import SessionCleanup
from app.player.embed_host import EmbedHost
from app.player.state_machine import PlayerSession, PlayerState, PlayerStateMachine
from app.services.lesson_service import LessonService
from app.services.notification_service import NotificationService
from app.services.progress_recorder import CompletionResult, ProgressRecorder
from app.services.progress_service import ProgressService
from app.storage.local_store import LocalProgressStore
from app.utils.helpers import compute_percent

logger = logging.getLogger(__name__)

FrameEmitter = Callable[[Dict[str, Any]], None]


class PlaybackService:
    """
    播放会话控制器
    每个WebSocket连接一个实例：加载课程课时、挂载课时、转发用户操作、
    切换课时时清理旧挂载，并在课时播放结束后后台记录进度。
    """

    def __init__(self, user_id: str, course_id: int, host: EmbedHost, db: Session,
                 local_store: LocalProgressStore, emit: FrameEmitter,
                 notifier: Optional[NotificationService] = None,
                 poll_interval: Optional[float] = None,
                 load_timeout: Optional[float] = None,
                 confirm_timeout: Optional[float] = None):
        self.user_id = user_id
        self.course_id = course_id
        self.host = host
        self.emit = emit
        self.local_store = local_store

        self.lesson_service = LessonService(db)
        self.progress_service = ProgressService(db)
        self.notifier = notifier or NotificationService(sender=self._send_notification)

        self.bridge = PlaybackBridge(host, poll_interval=poll_interval)
        self.state_machine = PlayerStateMachine(
            self.bridge, confirm_timeout=confirm_timeout, load_timeout=load_timeout
        )
        self.recorder = ProgressRecorder(self.progress_service, local_store, self.notifier)

        self.lessons: List[LessonRef] = []
        self.completed_lesson_ids: Set[int] = set()
        self.current_index: Optional[int] = None
        self.cleanup: Optional[SessionCleanup] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

        self.state_machine.subscribe(self._on_state_change)
        self.state_machine.on_ended(self._on_lesson_ended)
        logger.info(f"播放会话初始化完成: 用户{user_id}, 课程{course_id}")

    @property
    def current_lesson(self) -> Optional[LessonRef]:
        if self.current_index is None:
            return None
        return self.lessons[self.current_index]

    def load_course(self, now: Optional[datetime] = None) -> List[LessonRef]:
        """
        加载课程的有效课时并记录课程访问

        访问时间写入远程课程进度，已完成课时从远程读取（失败时读本地），
        最近学习课程摘要写入本地存储。这些步骤各自捕获异常，不影响加载。
        """
        self.lessons = self.lesson_service.get_course_lesson_refs(self.course_id)
        logger.info(f"课程{self.course_id}共{len(self.lessons)}个课时")
        if not self.lessons:
            return self.lessons

        now = now or datetime.now(pytz.utc)
        try:
            self.progress_service.touch_course_access(self.user_id, self.course_id, now)
        except Exception as e:
            logger.error(f"记录课程访问失败: 用户{self.user_id}, 课程{self.course_id}, {e}")

        try:
            records = self.progress_service.get_lesson_progress(self.user_id, self.course_id)
            completed = {record.lesson_id for record in records if record.completed}
        except Exception as e:
            logger.error(f"读取课时进度失败，改用本地记录: 用户{self.user_id}, {e}")
            completed = self._local_completed_lessons()
        lesson_ids = {lesson.id for lesson in self.lessons}
        self.completed_lesson_ids = completed & lesson_ids

        try:
            self.local_store.save_course_summary(self.user_id, self.course_id, self.course_percent, now)
        except Exception as e:
            logger.error(f"写入本地课程摘要失败: 用户{self.user_id}, 课程{self.course_id}, {e}")
        return self.lessons

    def _local_completed_lessons(self) -> Set[int]:
        try:
            return set(self.local_store.get_completed_lessons(self.user_id, self.course_id))
        except Exception as e:
            logger.error(f"读取本地课时进度失败: 用户{self.user_id}, {e}")
            return set()

    @property
    def course_percent(self) -> int:
        return compute_percent(len(self.completed_lesson_ids), len(self.lessons))

    def lesson_summaries(self) -> List[Dict[str, Any]]:
        """课时列表及各课时的完成标记"""
        return [
            {"id": lesson.id, "title": lesson.title, "order_index": lesson.order_index,
             "duration_hint": lesson.duration_hint, "completed": lesson.id in self.completed_lesson_ids}
            for lesson in self.lessons
        ]

    # ------------------------------------------------------------------
    # 课时切换
    # ------------------------------------------------------------------

    def open_lesson(self, lesson_id: int) -> LessonRef:
        """
        挂载课时

        已有挂载时先执行清理，保证旧挂载的轮询和监听器不会残留。
        同一课时出错后再次调用即为重试。

        Raises:
            ValueError: 课时不属于当前课程
        """
        if self._closed:
            raise RuntimeError("播放会话已关闭")

        index = self._index_of(lesson_id)
        if index is None:
            raise ValueError(f"课时不存在: {lesson_id}")

        self._run_cleanup("navigation")

        lesson = self.lessons[index]
        self.current_index = index
        handle = self.state_machine.attach(lesson)
        self.cleanup = SessionCleanup(self.bridge, handle, self.state_machine)
        logger.info(f"打开课时: 用户{self.user_id}, 课时{lesson.id} ({index + 1}/{len(self.lessons)})")
        return lesson

    def next_lesson(self) -> Optional[LessonRef]:
        return self._open_relative(1)

    def previous_lesson(self) -> Optional[LessonRef]:
        return self._open_relative(-1)

    def _open_relative(self, step: int) -> Optional[LessonRef]:
        if self.current_index is None:
            if not self.lessons:
                return None
            return self.open_lesson(self.lessons[0].id)

        index = self.current_index + step
        if index < 0 or index >= len(self.lessons):
            logger.info(f"已经没有{'下' if step > 0 else '上'}一个课时")
            return None
        return self.open_lesson(self.lessons[index].id)

    def _index_of(self, lesson_id: int) -> Optional[int]:
        for index, lesson in enumerate(self.lessons):
            if lesson.id == lesson_id:
                return index
        return None

    def _run_cleanup(self, reason: str):
        if self.cleanup is not None:
            self.cleanup.run(reason)

    # ------------------------------------------------------------------
    # 用户操作
    # ------------------------------------------------------------------

    def handle_intent(self, action: str, value: Any = None) -> bool:
        """
        执行用户操作

        Raises:
            ValueError: 未知操作、缺少参数或不支持的倍速
        """
        sm = self.state_machine
        if action == "play":
            return sm.play()
        if action == "pause":
            return sm.pause()
        if action == "toggle_play":
            return sm.toggle_play()
        if action == "seek":
            return sm.seek(self._require_value(action, value))
        if action == "seek_forward":
            return sm.seek_forward()
        if action == "seek_backward":
            return sm.seek_backward()
        if action == "volume":
            sm.set_volume(self._require_value(action, value))
        elif action == "mute":
            sm.mute()
        elif action == "unmute":
            sm.unmute()
        elif action == "toggle_mute":
            sm.toggle_mute()
        elif action == "rate":
            sm.set_playback_rate(self._require_value(action, value))
        elif action == "fullscreen":
            if value is None:
                sm.toggle_fullscreen()
            elif value:
                sm.enter_fullscreen()
            else:
                sm.exit_fullscreen()
        elif action == "exit_fullscreen":
            sm.exit_fullscreen()
        else:
            raise ValueError(f"未知的操作: {action}")
        return True

    @staticmethod
    def _require_value(action: str, value: Any) -> float:
        if value is None or isinstance(value, bool):
            raise ValueError(f"操作{action}缺少数值参数")
        return float(value)

    def handle_embed_message(self, origin: str, data: Any):
        """嵌入页面转发上来的播放器消息"""
        self.host.dispatch_message(origin, data)

    def set_permission(self, permission: str):
        self.notifier.set_permission(permission)

    # ------------------------------------------------------------------
    # 状态与进度
    # ------------------------------------------------------------------

    def _on_state_change(self, state: PlayerState, session: PlayerSession):
        self.emit({"type": "player_state", **self.state_machine.get_state_data()})

        if state == PlayerState.ERROR and self.cleanup is not None and not self.cleanup.done:
            lesson = self.current_lesson
            self.emit({
                "type": "error",
                "message": session.error or "播放出错",
                "lesson_id": lesson.id if lesson else None,
                "retry": True,
            })
            self._run_cleanup("error")

    def _on_lesson_ended(self, lesson: LessonRef):
        if lesson is None:
            return
        position = self.state_machine.session.current_time
        task = asyncio.get_running_loop().create_task(self._record_completion(lesson, position))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _record_completion(self, lesson: LessonRef, position: float) -> CompletionResult:
        result = await self.recorder.record_completion(
            self.user_id, lesson, total_lessons=len(self.lessons), position=position
        )
        if result.remote_saved or result.local_saved:
            self.completed_lesson_ids.add(lesson.id)
        self.emit({"type": "lesson_completed", **result.to_dict()})
        return result

    async def _send_notification(self, message: Dict[str, Any]):
        self.emit(message)

    async def wait_for_pending(self):
        """等待后台进度记录完成"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self, reason: str = "session_end"):
        """结束会话：清理当前挂载，等待进度记录完成"""
        if self._closed:
            return
        self._closed = True
        self._run_cleanup(reason)
        self.state_machine.close()
        await self.wait_for_pending()
        logger.info(f"播放会话已关闭: 用户{self.user_id}, 课程{self.course_id}, 原因: {reason}")

    def get_status(self) -> Dict[str, Any]:
        lesson = self.current_lesson
        return {
            "user_id": self.user_id,
            "course_id": self.course_id,
            "lesson_id": lesson.id if lesson else None,
            "lesson_index": self.current_index,
            "lesson_count": len(self.lessons),
            "pending_records": len(self._tasks),
            **self.state_machine.get_state_data(),
        }

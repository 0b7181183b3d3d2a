import asyncio
import functools
import itertools
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence
from urllib.parse import quote, urlencode

from app.config.settings import settings
from app.player.embed_host import EmbedHost
from app.player.messages import (
    Command, CommandName, PlayerEvent, listening_message, parse_surface_message
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[PlayerEvent], None]

YOUTUBE_ID_PATTERN = re.compile(
    r"(?:youtube(?:-nocookie)?\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?)/|.*[?&]v=)|youtu\.be/)([^\"&?/\s]{11})"
)

EMBED_PLAYER_VARS = {
    "enablejsapi": 1,
    "controls": 0,
    "modestbranding": 1,
    "rel": 0,
    "playsinline": 1,
    "disablekb": 1,
    "fs": 0,
    "iv_load_policy": 3,
}


def extract_video_id(source_url: str) -> str:
    """从 watch/短链/embed 地址中提取视频ID，无法识别时原样返回"""
    match = YOUTUBE_ID_PATTERN.search(source_url)
    return match.group(1) if match else source_url.strip()


def build_embed_url(video_id: str, base_url: str) -> str:
    return f"{base_url.rstrip('/')}/{quote(video_id)}?{urlencode(EMBED_PLAYER_VARS)}"


@dataclass(frozen=True)
class LessonRef:
    """课程中的一个可播放课时"""
    id: int
    title: str
    duration_hint: int
    source_url: str
    order_index: int
    course_id: int


class AttachmentHandle:
    """
    一次挂载所持有的资源：轮询任务、消息监听器和嵌入元素
    生命周期结束于 PlaybackBridge.detach
    """

    def __init__(self, attachment_id: int, lesson: LessonRef, element_id: str):
        self.attachment_id = attachment_id
        self.lesson = lesson
        self.element_id = element_id
        self.poll_task: Optional[asyncio.Task] = None
        self.listener_id: Optional[int] = None
        self.is_loading = True
        self.detached = False

    @property
    def active(self) -> bool:
        return not self.detached

    def __repr__(self):
        return f"<AttachmentHandle {self.attachment_id} {self.element_id} active={self.active}>"


class PlaybackBridge:
    """
    内嵌播放器桥接
    把本地命令翻译成单向消息发往内嵌播放器，并把播放器发出的消息归一化为 PlayerEvent。
    命令不保证送达，调用方只能等待事件确认。
    """

    COMMANDS = {
        "play": CommandName.PLAY,
        "pause": CommandName.PAUSE,
        "seekTo": CommandName.SEEK_TO,
        "setVolume": CommandName.SET_VOLUME,
        "mute": CommandName.MUTE,
        "unmute": CommandName.UNMUTE,
        "setPlaybackRate": CommandName.SET_PLAYBACK_RATE,
    }
    FULLSCREEN_COMMANDS = ("enterFullscreen", "exitFullscreen")

    def __init__(self, host: EmbedHost,
                 poll_interval: Optional[float] = None,
                 allowed_origin: Optional[str] = None,
                 embed_base_url: Optional[str] = None):
        self.host = host
        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL_SECONDS
        self.allowed_origin = allowed_origin if allowed_origin is not None else settings.EMBED_ALLOWED_ORIGIN
        self.embed_base_url = embed_base_url or settings.EMBED_BASE_URL
        self._handle: Optional[AttachmentHandle] = None
        self._subscribers: List[EventCallback] = []
        self._attachment_ids = itertools.count(1)

    @property
    def current_handle(self) -> Optional[AttachmentHandle]:
        return self._handle

    def attach(self, lesson: LessonRef) -> AttachmentHandle:
        """
        挂载课时的内嵌播放器

        已有挂载时先强制卸载旧挂载，避免旧通道的定时器和监听器残留。

        Args:
            lesson: 课时引用

        Returns:
            AttachmentHandle: 本次挂载的句柄
        """
        if self._handle is not None and self._handle.active:
            logger.warning(f"重复挂载，先卸载旧挂载: {self._handle}")
            self.detach(self._handle)

        loop = asyncio.get_running_loop()
        attachment_id = next(self._attachment_ids)
        handle = AttachmentHandle(attachment_id, lesson, f"player-{lesson.id}-{attachment_id}")

        src = build_embed_url(extract_video_id(lesson.source_url), self.embed_base_url)
        self.host.mount(handle.element_id, src)
        handle.listener_id = self.host.add_message_listener(
            functools.partial(self._on_message, handle)
        )
        self._handle = handle

        self._post(handle, listening_message(handle.element_id))
        handle.poll_task = loop.create_task(self._poll(handle))

        logger.info(f"播放器已挂载: 课时{lesson.id}, 元素{handle.element_id}")
        return handle

    def command(self, name: str, args: Sequence[Any] = ()):
        """
        发送播放器命令（即发即忘）

        全屏命令由嵌入页面直接执行，不经过消息通道。
        """
        if name in self.FULLSCREEN_COMMANDS:
            try:
                if name == "enterFullscreen":
                    self.host.request_fullscreen()
                else:
                    self.host.exit_fullscreen()
            except Exception as e:
                logger.warning(f"全屏切换失败: {e}")
            return

        command_name = self.COMMANDS.get(name)
        if command_name is None:
            raise ValueError(f"未知的播放器命令: {name}")

        handle = self._handle
        if handle is None or not handle.active:
            logger.debug(f"没有活跃的挂载，丢弃命令: {name}")
            return

        command = Command(command_name, self._normalize_args(command_name, args))
        self._post(handle, command.to_message())
        logger.debug(f"已发送命令: {command.name.value} {command.args}")

    def on_event(self, callback: EventCallback) -> Callable[[], None]:
        """订阅归一化事件，返回取消订阅函数"""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def detach(self, handle: Optional[AttachmentHandle] = None) -> bool:
        """
        卸载挂载：停止轮询、移除监听器、移除嵌入元素（按此顺序）

        Returns:
            bool: 本次是否真正执行了卸载，重复调用返回False
        """
        handle = handle or self._handle
        if handle is None or handle.detached:
            return False

        handle.detached = True

        if handle.poll_task is not None and not handle.poll_task.done():
            handle.poll_task.cancel()

        if handle.listener_id is not None:
            self.host.remove_message_listener(handle.listener_id)

        try:
            self.host.unmount(handle.element_id)
        except Exception as e:
            logger.warning(f"移除嵌入元素失败: {handle.element_id}, {e}")

        if self._handle is handle:
            self._handle = None

        logger.info(f"播放器已卸载: {handle.element_id}")
        return True

    def _normalize_args(self, name: CommandName, args: Sequence[Any]) -> tuple:
        if name == CommandName.SEEK_TO:
            return (max(0.0, float(args[0])), True)
        if name == CommandName.SET_VOLUME:
            return (max(0, min(100, int(round(float(args[0]))))),)
        if name == CommandName.SET_PLAYBACK_RATE:
            return (float(args[0]),)
        return ()

    def _post(self, handle: AttachmentHandle, data: str):
        try:
            self.host.post_message(handle.element_id, data)
        except Exception as e:
            # 通道本身不保证送达，这里与消息丢失同等对待
            logger.warning(f"消息投递失败: {handle.element_id}, {e}")

    async def _poll(self, handle: AttachmentHandle):
        """按固定间隔请求播放位置；播放器未响应前重复发送握手"""
        try:
            while handle.active:
                await asyncio.sleep(self.poll_interval)
                if not handle.active:
                    break
                if handle.is_loading:
                    self._post(handle, listening_message(handle.element_id))
                self._post(handle, Command(CommandName.GET_CURRENT_TIME).to_message())
                self._post(handle, Command(CommandName.GET_DURATION).to_message())
        except asyncio.CancelledError:
            logger.debug(f"轮询已停止: {handle.element_id}")
            raise

    def _on_message(self, handle: AttachmentHandle, origin: str, data: Any):
        if not handle.active or handle is not self._handle:
            logger.debug(f"忽略已失效挂载的消息: {handle.element_id}")
            return

        if self.allowed_origin and origin != self.allowed_origin:
            logger.debug(f"忽略非预期来源的消息: {origin}")
            return

        events = parse_surface_message(data)
        if not events:
            return

        if handle.is_loading:
            handle.is_loading = False
            logger.info(f"内嵌播放器已响应: {handle.element_id}")

        for event in events:
            # 回调中可能触发卸载
            if not handle.active:
                break
            self._emit(event)

    def _emit(self, event: PlayerEvent):
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"处理播放器事件失败: {event.kind.value}, {e}", exc_info=True)

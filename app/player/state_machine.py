from enum import Enum
from typing import Callable, Dict, Any, List, Optional, Tuple
from dataclasses import dataclass, asdict, field
import asyncio
import logging

from app.config.settings import settings
from app.player.bridge import AttachmentHandle, LessonRef, PlaybackBridge
from app.player.messages import EventKind, PlayerEvent

logger = logging.getLogger(__name__)


class PlayerState(Enum):
    """播放状态枚举"""
    UNINITIALIZED = "uninitialized"   # 未挂载
    LOADING = "loading"               # 内嵌播放器加载中
    READY = "ready"                   # 就绪（暂停）
    PLAYING = "playing"               # 播放中
    SEEKING = "seeking"               # 跳转中（临时状态）
    ENDED = "ended"                   # 播放结束
    ERROR = "error"                   # 出错，需要重新挂载


@dataclass
class PlayerSession:
    """一次播放的临时状态，不做持久化"""
    current_time: float = 0.0
    duration: float = 0.0
    volume: int = 100
    muted: bool = False
    playback_rate: float = 1.0
    is_fullscreen: bool = False
    is_loading: bool = False
    is_playing: bool = False
    is_buffering: bool = False
    soft_error: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PendingIntent:
    """等待事件确认的本地意图"""
    action: str
    command: str
    args: Tuple[Any, ...] = ()
    retries: int = 0
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)


StateListener = Callable[[PlayerState, PlayerSession], None]
EndedListener = Callable[[LessonRef], None]


class PlayerStateMachine:
    """
    播放状态机
    本地意图乐观生效，播放器事件为准：后到的事件总是覆盖过期的乐观状态。
    结束状态只能由 ended 事件触发，轮询到的播放位置不参与判断。
    """

    def __init__(self, bridge: PlaybackBridge,
                 confirm_timeout: Optional[float] = None,
                 max_retries: Optional[int] = None,
                 load_timeout: Optional[float] = None,
                 seek_step: Optional[float] = None,
                 seek_tolerance: Optional[float] = None,
                 playback_rates: Optional[List[float]] = None):
        self.bridge = bridge
        self.confirm_timeout = confirm_timeout if confirm_timeout is not None else settings.COMMAND_CONFIRM_TIMEOUT
        self.max_retries = max_retries if max_retries is not None else settings.COMMAND_MAX_RETRIES
        self.load_timeout = load_timeout if load_timeout is not None else settings.EMBED_LOAD_TIMEOUT
        self.seek_step = seek_step if seek_step is not None else settings.SEEK_STEP_SECONDS
        self.seek_tolerance = seek_tolerance if seek_tolerance is not None else settings.SEEK_TOLERANCE_SECONDS
        self.playback_rates = playback_rates or list(settings.AVAILABLE_PLAYBACK_RATES)

        self.state = PlayerState.UNINITIALIZED
        self.session = PlayerSession()
        self.lesson: Optional[LessonRef] = None
        self.handle: Optional[AttachmentHandle] = None

        self._seek_origin: Optional[PlayerState] = None
        self._seek_target: Optional[float] = None
        self._pending: Dict[str, PendingIntent] = {}
        self._load_timer: Optional[asyncio.TimerHandle] = None
        self._listeners: List[StateListener] = []
        self._ended_listeners: List[EndedListener] = []

        self._unsubscribe = bridge.on_event(self.handle_event)
        logger.info("播放状态机初始化完成")

    # ------------------------------------------------------------------
    # 挂载与释放
    # ------------------------------------------------------------------

    def attach(self, lesson: LessonRef) -> AttachmentHandle:
        """
        挂载新课时并进入加载状态

        音量、静音、倍速和全屏作为用户偏好保留到新课时。
        """
        self.stop_timers()
        previous = self.session
        self.session = PlayerSession(
            duration=float(lesson.duration_hint or 0),
            volume=previous.volume,
            muted=previous.muted,
            playback_rate=previous.playback_rate,
            is_fullscreen=previous.is_fullscreen,
            is_loading=True,
        )
        self.lesson = lesson
        self._seek_origin = None
        self._seek_target = None

        self.handle = self.bridge.attach(lesson)
        self._set_state(PlayerState.LOADING)

        loop = asyncio.get_running_loop()
        self._load_timer = loop.call_later(self.load_timeout, self._on_load_timeout, self.handle)
        return self.handle

    def release(self):
        """停止计时器并放弃当前挂载；出错状态保留以便界面展示"""
        self.stop_timers()
        self.handle = None
        self._seek_origin = None
        self._seek_target = None
        self.session.is_playing = False
        self.session.is_buffering = False
        if self.state != PlayerState.ERROR:
            self._set_state(PlayerState.UNINITIALIZED)

    def stop_timers(self):
        if self._load_timer is not None:
            self._load_timer.cancel()
            self._load_timer = None
        for group in list(self._pending):
            self._cancel_pending(group)

    def close(self):
        """取消对桥接事件的订阅"""
        self.stop_timers()
        self._unsubscribe()

    # ------------------------------------------------------------------
    # 订阅
    # ------------------------------------------------------------------

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def on_ended(self, listener: EndedListener) -> Callable[[], None]:
        self._ended_listeners.append(listener)
        return lambda: self._ended_listeners.remove(listener) if listener in self._ended_listeners else None

    def get_current_state(self) -> PlayerState:
        return self.state

    def get_state_data(self) -> Dict[str, Any]:
        """获取状态数据"""
        return {
            "state": self.state.value,
            "lesson_id": self.lesson.id if self.lesson else None,
            "seek_target": self._seek_target,
            **asdict(self.session),
        }

    # ------------------------------------------------------------------
    # 播放器事件
    # ------------------------------------------------------------------

    def handle_event(self, event: PlayerEvent):
        """处理桥接层归一化后的事件"""
        if self.state in (PlayerState.UNINITIALIZED, PlayerState.ERROR):
            logger.debug(f"当前状态{self.state.value}，忽略事件: {event.kind.value}")
            return

        kind = event.kind
        if kind == EventKind.TIME:
            self._on_time(event)
        elif kind == EventKind.PLAYING:
            self._on_state_event(PlayerState.PLAYING)
        elif kind in (EventKind.PAUSED, EventKind.CUED):
            self._on_state_event(PlayerState.READY)
        elif kind == EventKind.READY:
            if self.state == PlayerState.LOADING:
                self._become_ready()
        elif kind == EventKind.BUFFERING:
            self.session.is_buffering = True
            self._notify()
        elif kind == EventKind.ENDED:
            self._on_ended()
        elif kind == EventKind.ERROR:
            code = int(event.value) if event.value is not None else None
            self._fail(f"内嵌播放器报错: {code}")

    def _on_time(self, event: PlayerEvent):
        if event.duration:
            self.session.duration = event.duration

        if self.state == PlayerState.SEEKING:
            # 跳转未确认前的旧位置不覆盖乐观位置
            if self._seek_target is not None and abs(event.value - self._seek_target) <= self.seek_tolerance:
                self.session.current_time = event.value
                self._finish_seek()
            return

        self.session.current_time = event.value
        if self.state == PlayerState.LOADING:
            self._become_ready()
        else:
            self._notify()

    def _on_state_event(self, target: PlayerState):
        self.session.is_buffering = False
        self.session.soft_error = None
        # 事件为准：收到状态事件后，尚未确认的播放/暂停意图失效
        self._cancel_pending("playback")

        if self.state == PlayerState.LOADING:
            self._become_ready(notify=False)

        self.session.is_playing = target == PlayerState.PLAYING
        if self.state == PlayerState.SEEKING:
            self._seek_origin = target
            self._notify()
            return
        self._set_state(target, force_notify=True)

    def _on_ended(self):
        if self.state == PlayerState.ENDED:
            return

        self._cancel_pending("playback")
        self._cancel_pending("seek")
        self._cancel_load_timer()
        self._seek_origin = None
        self._seek_target = None
        self.session.is_loading = False
        self.session.is_playing = False
        self.session.is_buffering = False
        self.session.soft_error = None
        self._set_state(PlayerState.ENDED, force_notify=True)

        logger.info(f"课时播放结束: {self.lesson.id if self.lesson else None}")
        for listener in list(self._ended_listeners):
            try:
                listener(self.lesson)
            except Exception as e:
                logger.error(f"处理播放结束回调失败: {e}", exc_info=True)

    def _become_ready(self, notify: bool = True):
        self._cancel_load_timer()
        self.session.is_loading = False
        self._apply_preferences()
        if notify:
            self._set_state(PlayerState.READY, force_notify=True)
        else:
            self.state = PlayerState.READY

    def _apply_preferences(self):
        """把保留下来的用户偏好同步给新播放器"""
        if self.session.muted:
            self.bridge.command("mute")
        if self.session.volume != 100:
            self.bridge.command("setVolume", (self.session.volume,))
        if self.session.playback_rate != 1.0:
            self.bridge.command("setPlaybackRate", (self.session.playback_rate,))

    def _on_load_timeout(self, handle: AttachmentHandle):
        self._load_timer = None
        if handle is not self.handle or not handle.active:
            return
        if self.state == PlayerState.LOADING:
            logger.warning(f"内嵌播放器加载超时: {handle.element_id}")
            self._fail("内嵌播放器加载超时")

    def _fail(self, message: str):
        self.stop_timers()
        self._seek_origin = None
        self._seek_target = None
        self.session.error = message
        self.session.is_loading = False
        self.session.is_playing = False
        self.session.is_buffering = False
        logger.error(f"播放出错: {message}")
        self._set_state(PlayerState.ERROR, force_notify=True)

    # ------------------------------------------------------------------
    # 用户意图
    # ------------------------------------------------------------------

    def _can_accept_intent(self, action: str) -> bool:
        if self.state in (PlayerState.UNINITIALIZED, PlayerState.LOADING, PlayerState.ERROR):
            logger.warning(f"播放器尚未就绪，忽略操作: {action} (状态{self.state.value})")
            return False
        return True

    def play(self) -> bool:
        if not self._can_accept_intent("play"):
            return False

        if self.state == PlayerState.SEEKING:
            self._seek_origin = PlayerState.PLAYING
            self.session.is_playing = True
            self._send_with_confirmation("playback", "play", "play")
            self._notify()
            return True

        if self.state == PlayerState.PLAYING:
            return False

        self.session.is_playing = True
        self._set_state(PlayerState.PLAYING)
        self._send_with_confirmation("playback", "play", "play")
        return True

    def pause(self) -> bool:
        if not self._can_accept_intent("pause"):
            return False

        if self.state == PlayerState.SEEKING and self._seek_origin == PlayerState.PLAYING:
            self._seek_origin = PlayerState.READY
            self.session.is_playing = False
            self._send_with_confirmation("playback", "pause", "pause")
            self._notify()
            return True

        if self.state != PlayerState.PLAYING:
            return False

        self.session.is_playing = False
        self._set_state(PlayerState.READY)
        self._send_with_confirmation("playback", "pause", "pause")
        return True

    def toggle_play(self) -> bool:
        if self.session.is_playing:
            return self.pause()
        return self.play()

    def seek(self, seconds: float) -> bool:
        """
        跳转到指定位置

        Args:
            seconds: 目标位置（秒），超出 [0, duration] 时截断

        Returns:
            bool: 是否发出了跳转命令
        """
        if not self._can_accept_intent("seek"):
            return False

        target = self._clamp_time(seconds)
        if self.state != PlayerState.SEEKING:
            self._seek_origin = PlayerState.READY if self.state == PlayerState.ENDED else self.state

        self._seek_target = target
        self.session.current_time = target
        self._set_state(PlayerState.SEEKING, force_notify=True)
        self._send_with_confirmation("seek", "seek", "seekTo", (target,))
        return True

    def seek_relative(self, delta: float) -> bool:
        return self.seek(self.session.current_time + delta)

    def seek_forward(self) -> bool:
        return self.seek_relative(self.seek_step)

    def seek_backward(self) -> bool:
        return self.seek_relative(-self.seek_step)

    def set_volume(self, volume: float):
        """设置音量（0-100）；静音状态下调高音量会自动取消静音"""
        if self.state == PlayerState.ERROR:
            return
        volume = max(0, min(100, int(round(float(volume)))))
        self.session.volume = volume
        if self.session.muted and volume > 0:
            self.session.muted = False
            self.bridge.command("unmute")
        self.bridge.command("setVolume", (volume,))
        self._notify()

    def mute(self):
        if self.state == PlayerState.ERROR or self.session.muted:
            return
        self.session.muted = True
        self.bridge.command("mute")
        self._notify()

    def unmute(self):
        if self.state == PlayerState.ERROR or not self.session.muted:
            return
        self.session.muted = False
        self.bridge.command("unmute")
        self._notify()

    def toggle_mute(self):
        if self.session.muted:
            self.unmute()
        else:
            self.mute()

    def set_playback_rate(self, rate: float):
        rate = float(rate)
        if rate not in self.playback_rates:
            raise ValueError(f"不支持的播放速度: {rate}")
        if self.state == PlayerState.ERROR:
            return
        self.session.playback_rate = rate
        self.bridge.command("setPlaybackRate", (rate,))
        self._notify()

    def enter_fullscreen(self):
        if self.session.is_fullscreen:
            return
        self.session.is_fullscreen = True
        self.bridge.command("enterFullscreen")
        self._notify()

    def exit_fullscreen(self):
        if not self.session.is_fullscreen:
            return
        self.session.is_fullscreen = False
        self.bridge.command("exitFullscreen")
        self._notify()

    def toggle_fullscreen(self):
        if self.session.is_fullscreen:
            self.exit_fullscreen()
        else:
            self.enter_fullscreen()

    # ------------------------------------------------------------------
    # 确认窗口
    # ------------------------------------------------------------------

    def _send_with_confirmation(self, group: str, action: str, command: str, args: Tuple[Any, ...] = ()):
        self._cancel_pending(group)
        self.bridge.command(command, args)

        intent = PendingIntent(action=action, command=command, args=tuple(args))
        loop = asyncio.get_running_loop()
        intent.timer = loop.call_later(self.confirm_timeout, self._on_confirm_timeout, group, intent)
        self._pending[group] = intent

    def _on_confirm_timeout(self, group: str, intent: PendingIntent):
        if self._pending.get(group) is not intent:
            return

        if intent.retries < self.max_retries:
            intent.retries += 1
            logger.warning(f"命令未确认，重新发送: {intent.command} (第{intent.retries}次)")
            self.bridge.command(intent.command, intent.args)
            loop = asyncio.get_running_loop()
            intent.timer = loop.call_later(self.confirm_timeout, self._on_confirm_timeout, group, intent)
            return

        # 不再重试，也不回滚乐观状态
        self._pending.pop(group, None)
        self.session.soft_error = f"播放器未响应操作: {intent.action}"
        logger.warning(f"命令最终未确认: {intent.command}")
        if group == "seek" and self.state == PlayerState.SEEKING:
            self._finish_seek()
        else:
            self._notify()

    def _cancel_pending(self, group: str):
        intent = self._pending.pop(group, None)
        if intent is not None and intent.timer is not None:
            intent.timer.cancel()

    def _cancel_load_timer(self):
        if self._load_timer is not None:
            self._load_timer.cancel()
            self._load_timer = None

    def _finish_seek(self):
        origin = self._seek_origin or PlayerState.READY
        self._cancel_pending("seek")
        self._seek_origin = None
        self._seek_target = None
        self.session.is_playing = origin == PlayerState.PLAYING
        self._set_state(origin, force_notify=True)

    def _clamp_time(self, seconds: float) -> float:
        seconds = max(0.0, float(seconds))
        if self.session.duration > 0:
            seconds = min(seconds, self.session.duration)
        return seconds

    # ------------------------------------------------------------------

    def _set_state(self, new_state: PlayerState, force_notify: bool = False):
        current = self.state
        if current != new_state:
            self.state = new_state
            logger.debug(f"状态转换: {current.value} -> {new_state.value}")
            self._notify()
        elif force_notify:
            self._notify()

    def _notify(self):
        for listener in list(self._listeners):
            try:
                listener(self.state, self.session)
            except Exception as e:
                logger.error(f"状态监听器执行失败: {e}", exc_info=True)

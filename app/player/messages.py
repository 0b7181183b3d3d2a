"""
内嵌播放器消息定义
与第三方播放器之间只有单向的 postMessage 通道：
- 发出: {"event": "command", "func": <名称>, "args": [...]}
- 收到: onStateChange / infoDelivery / onReady / onError
所有原始消息的解析和校验都集中在这里，其余模块只使用 Command 和 PlayerEvent。
"""

import json
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple

logger = logging.getLogger(__name__)


class CommandName(Enum):
    """通过消息通道发送的播放器命令"""
    PLAY = "playVideo"
    PAUSE = "pauseVideo"
    SEEK_TO = "seekTo"
    SET_VOLUME = "setVolume"
    MUTE = "mute"
    UNMUTE = "unMute"
    SET_PLAYBACK_RATE = "setPlaybackRate"
    GET_CURRENT_TIME = "getCurrentTime"
    GET_DURATION = "getDuration"


class EventKind(Enum):
    """归一化后的播放器事件类型"""
    UNSTARTED = "unstarted"
    ENDED = "ended"
    PLAYING = "playing"
    PAUSED = "paused"
    BUFFERING = "buffering"
    CUED = "cued"
    TIME = "time"
    READY = "ready"
    ERROR = "error"


# 播放器原始状态码: -1 未开始, 0 结束, 1 播放, 2 暂停, 3 缓冲, 5 已加载
STATE_CODES = {
    -1: EventKind.UNSTARTED,
    0: EventKind.ENDED,
    1: EventKind.PLAYING,
    2: EventKind.PAUSED,
    3: EventKind.BUFFERING,
    5: EventKind.CUED,
}


@dataclass(frozen=True)
class Command:
    """一条发往内嵌播放器的命令"""
    name: CommandName
    args: Tuple[Any, ...] = ()

    def to_message(self) -> str:
        return json.dumps({
            "event": "command",
            "func": self.name.value,
            "args": list(self.args),
        })


@dataclass(frozen=True)
class PlayerEvent:
    """归一化后的播放器事件"""
    kind: EventKind
    value: Optional[float] = None
    duration: Optional[float] = None


def listening_message(element_id: str) -> str:
    """握手消息，通知内嵌播放器开始向外推送事件"""
    return json.dumps({"event": "listening", "id": element_id})


def _as_state_code(info: Any) -> Optional[int]:
    if isinstance(info, bool):
        return None
    if isinstance(info, int):
        return info
    if isinstance(info, str):
        try:
            return int(info)
        except ValueError:
            return None
    return None


def _as_seconds(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value) or value < 0:
        return None
    return value


def _parse_info_delivery(info: Any) -> List[PlayerEvent]:
    if not isinstance(info, dict):
        return []

    events = []
    code = _as_state_code(info.get("playerState"))
    if code is not None and code in STATE_CODES:
        events.append(PlayerEvent(STATE_CODES[code]))

    current_time = _as_seconds(info.get("currentTime"))
    if current_time is not None:
        events.append(PlayerEvent(
            EventKind.TIME,
            value=current_time,
            duration=_as_seconds(info.get("duration")),
        ))
    return events


def parse_surface_message(raw: Any) -> List[PlayerEvent]:
    """
    解析内嵌播放器发出的原始消息

    Args:
        raw: JSON字符串或已解析的字典

    Returns:
        List[PlayerEvent]: 归一化事件列表，无法识别的消息返回空列表
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug(f"忽略无法解析的播放器消息: {raw!r:.120}")
            return []
    else:
        data = raw

    if not isinstance(data, dict):
        return []

    event_name = data.get("event")
    info = data.get("info")

    if event_name == "onStateChange":
        code = _as_state_code(info)
        if code not in STATE_CODES:
            logger.debug(f"忽略未知的播放器状态码: {info!r}")
            return []
        return [PlayerEvent(STATE_CODES[code])]

    if event_name == "infoDelivery":
        return _parse_info_delivery(info)

    if event_name == "onReady":
        return [PlayerEvent(EventKind.READY)]

    if event_name == "onError":
        code = _as_state_code(info)
        return [PlayerEvent(EventKind.ERROR, value=float(code) if code is not None else None)]

    return []

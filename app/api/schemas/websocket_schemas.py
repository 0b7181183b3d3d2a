from pydantic import BaseModel
from typing import Optional, Any, Literal, Union

IntentAction = Literal[
    "play", "pause", "toggle_play",
    "seek", "seek_forward", "seek_backward",
    "volume", "mute", "unmute", "toggle_mute",
    "rate", "fullscreen", "exit_fullscreen",
]


class WebSocketMessageBase(BaseModel):
    type: str
    session_id: Optional[str] = None


class OpenLessonMessage(WebSocketMessageBase):
    type: Literal["open_lesson"] = "open_lesson"
    lesson_id: int


class IntentMessage(WebSocketMessageBase):
    type: Literal["intent"] = "intent"
    action: IntentAction
    value: Optional[Union[float, bool]] = None


class NavigationMessage(WebSocketMessageBase):
    type: Literal["next_lesson", "previous_lesson"]


class EmbedMessage(WebSocketMessageBase):
    type: Literal["embed_message"] = "embed_message"
    origin: str = ""
    data: Any = None


class PermissionMessage(WebSocketMessageBase):
    type: Literal["permission"] = "permission"
    value: Literal["granted", "denied", "default"]


class HeartbeatMessage(WebSocketMessageBase):
    type: Literal["heartbeat"] = "heartbeat"


class SessionEndMessage(WebSocketMessageBase):
    type: Literal["session_end"] = "session_end"


INBOUND_MESSAGES = {
    "open_lesson": OpenLessonMessage,
    "intent": IntentMessage,
    "next_lesson": NavigationMessage,
    "previous_lesson": NavigationMessage,
    "embed_message": EmbedMessage,
    "permission": PermissionMessage,
    "heartbeat": HeartbeatMessage,
    "session_end": SessionEndMessage,
}


class ErrorMessage(BaseModel):
    type: str = "error"
    session_id: Optional[str] = None
    message: str
    retry: bool = False
    timestamp: str

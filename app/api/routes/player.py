import logging
import json
import uuid
from typing import Dict, Any, Optional

from fastapi import Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.api.schemas.websocket_schemas import INBOUND_MESSAGES
from app.api.websocket_embed_host import WebSocketEmbedHost
from app.api.websocket_manager import websocket_manager
from app.services.playback_service import PlaybackService
from app.storage.local_store import LocalProgressStore, get_local_store
from app.utils.database import get_db
from app.utils.helpers import format_timestamp

logger = logging.getLogger(__name__)


class PlayerWebSocketHandler:
    """播放器WebSocket路由处理器（每个连接一个实例）"""

    def __init__(self, websocket: WebSocket, user_id: str, course_id: int,
                 db: Session, local_store: LocalProgressStore):
        self.websocket = websocket
        self.user_id = user_id
        self.course_id = course_id
        self.db = db
        self.local_store = local_store
        self.session_key = f"{user_id}:{course_id}:{uuid.uuid4().hex[:8]}"
        self.host: Optional[WebSocketEmbedHost] = None
        self.playback: Optional[PlaybackService] = None

    async def handle_connection(self):
        """
        处理WebSocket连接
        """
        logger.info(f"用户 {self.user_id} 尝试连接播放器, 课程 {self.course_id}")

        self.host = WebSocketEmbedHost(self.session_key)
        self.playback = PlaybackService(
            self.user_id, self.course_id, self.host, self.db, self.local_store, self.host.enqueue
        )

        lessons = self.playback.load_course()
        if not lessons:
            await self.websocket.close(code=1008, reason="课程不存在或没有课时")
            return

        await self.websocket.accept()
        await websocket_manager.connect(self.websocket, self.session_key)
        self.host.start()

        try:
            self.host.enqueue({
                "type": "session_start",
                "user_id": self.user_id,
                "course_id": self.course_id,
                "lessons": self.playback.lesson_summaries(),
                "percent": self.playback.course_percent,
                "message": "播放会话已开始",
            })
            await self._handle_message_loop()

        except WebSocketDisconnect:
            logger.info(f"用户 {self.user_id} 播放器连接正常断开")
        except Exception as e:
            logger.error(f"用户 {self.user_id} 播放器连接异常: {e}", exc_info=True)
        finally:
            await self._cleanup_connection()

    async def _handle_message_loop(self):
        while True:
            try:
                data = await self.websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"用户 {self.user_id} 连接断开")
                break

            message = self._parse_message(data)
            if message is None:
                continue

            try:
                response = await self._process_message(message)
            except ValueError as e:
                response = self._build_error_response(str(e))
            if response:
                self.host.enqueue(response)

            if message.type == "session_end":
                break

    def _parse_message(self, data: str):
        """
        解析并校验上行消息，无效消息回复错误后忽略
        """
        try:
            raw = json.loads(data)
            message_type = raw.get("type") if isinstance(raw, dict) else None
            if message_type is None:
                raise ValueError("消息缺少type字段")
            model = INBOUND_MESSAGES.get(message_type)
            if model is None:
                raise ValueError(f"未知的消息类型: {message_type}")
            return model.model_validate(raw)
        except json.JSONDecodeError:
            logger.error(f"消息JSON解析失败: {data}")
            self.host.enqueue(self._build_error_response("消息不是有效的JSON"))
        except ValidationError as e:
            logger.warning(f"消息格式错误: {e.errors()}")
            self.host.enqueue(self._build_error_response("消息格式错误"))
        except ValueError as e:
            logger.warning(f"消息解析失败: {e}")
            self.host.enqueue(self._build_error_response(str(e)))
        return None

    async def _process_message(self, message) -> Optional[Dict[str, Any]]:
        message_type = message.type

        if message_type == "embed_message":
            self.playback.handle_embed_message(message.origin, message.data)
            return None

        if message_type == "intent":
            self.playback.handle_intent(message.action, message.value)
            return None

        if message_type == "open_lesson":
            self.playback.open_lesson(message.lesson_id)
            return None

        if message_type in ("next_lesson", "previous_lesson"):
            if message_type == "next_lesson":
                lesson = self.playback.next_lesson()
            else:
                lesson = self.playback.previous_lesson()
            if lesson is None:
                return self._build_error_response("没有可切换的课时")
            return None

        if message_type == "permission":
            self.playback.set_permission(message.value)
            return None

        if message_type == "heartbeat":
            return {
                "type": "heartbeat_ack",
                "status": self.playback.get_status(),
            }

        if message_type == "session_end":
            await self.playback.close("session_end")
            return {
                "type": "session_end_ack",
                "message": "会话已结束",
            }

        return self._build_error_response(f"未知的消息类型: {message_type}")

    def _build_error_response(self, error_msg: str, retry: bool = False) -> Dict[str, Any]:
        """构建错误响应"""
        return {
            "type": "error",
            "session_id": self.session_key,
            "message": error_msg,
            "retry": retry,
            "timestamp": format_timestamp(),
        }

    async def _cleanup_connection(self):
        """清理连接资源：卸载播放器、等待进度记录、清空发送队列"""
        try:
            await self.playback.close("unmount")
            await self.host.close()
        except Exception as e:
            logger.error(f"清理连接资源失败: {e}", exc_info=True)
        finally:
            websocket_manager.disconnect(self.session_key, self.websocket)
            logger.info(f"用户 {self.user_id} 会话 {self.session_key} 资源清理完成")


async def player_websocket(websocket: WebSocket, user_id: str, course_id: int,
                           db: Session = Depends(get_db),
                           local_store: LocalProgressStore = Depends(get_local_store)):
    """
    播放器WebSocket端点

    Args:
        websocket: WebSocket连接
        user_id: 用户ID
        course_id: 课程ID
    """
    handler = PlayerWebSocketHandler(websocket, user_id, course_id, db, local_store)
    await handler.handle_connection()

import logging
import json
from typing import Dict, List
from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketManager:
    """WebSocket连接管理器"""

    def __init__(self):
        # 存储活跃连接: session_key -> WebSocket
        self.active_connections: Dict[str, WebSocket] = {}
        logger.info("WebSocket管理器初始化完成")

    async def connect(self, websocket: WebSocket, session_key: str):
        """
        保存WebSocket连接到管理器

        同一会话键重复连接时，旧连接会被替换。

        Args:
            websocket: 已accept的WebSocket连接
            session_key: 播放会话键
        """
        self.active_connections[session_key] = websocket
        logger.info(f"WebSocket连接已建立: 会话{session_key}")

    def disconnect(self, session_key: str, websocket: WebSocket = None):
        """
        断开WebSocket连接

        Args:
            session_key: 播放会话键
            websocket: 只有当前登记的连接是它时才移除
        """
        current = self.active_connections.get(session_key)
        if current is None:
            return
        if websocket is not None and current is not websocket:
            return
        del self.active_connections[session_key]
        logger.info(f"WebSocket连接已断开: 会话{session_key}")

    async def send_message(self, session_key: str, message: Dict) -> bool:
        """
        向指定会话发送消息

        Returns:
            bool: 是否发送成功
        """
        websocket = self.active_connections.get(session_key)
        if not websocket:
            logger.warning(f"尝试向不存在的连接发送消息: 会话{session_key}")
            return False
        try:
            await websocket.send_text(json.dumps(message))
            logger.debug(f"消息已发送到会话{session_key}: {message.get('type', 'unknown')}")
            return True
        except Exception as e:
            logger.error(f"发送消息到会话{session_key}失败: {e}")
            self.disconnect(session_key)
            return False

    def get_connected_sessions(self) -> List[str]:
        return list(self.active_connections.keys())

    def is_connected(self, session_key: str) -> bool:
        return session_key in self.active_connections

    def get_connection_count(self) -> int:
        """
        获取连接数量

        Returns:
            int: 连接数量
        """
        return len(self.active_connections)


# 创建全局WebSocket管理器实例
websocket_manager = WebSocketManager()

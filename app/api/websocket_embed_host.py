import asyncio
import logging
from typing import Any, Dict, Optional

from app.api.websocket_manager import WebSocketManager, websocket_manager
from app.player.embed_host import EmbedHost
from app.utils.helpers import format_timestamp

logger = logging.getLogger(__name__)


class WebSocketEmbedHost(EmbedHost):
    """
    通过学员的WebSocket连接代理嵌入页面

    挂载、投递消息、全屏等操作都转换为下行帧，按调用顺序放入发送队列，
    由单独的写协程依次发出；页面收到的播放器消息由路由层调用 dispatch_message 转入。
    """

    def __init__(self, session_key: str, manager: Optional[WebSocketManager] = None):
        super().__init__()
        self.session_key = session_key
        self.manager = manager or websocket_manager
        self.is_fullscreen = False
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None

    def start(self):
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(self._write_loop())

    def enqueue(self, frame: Dict[str, Any]):
        """放入发送队列（不等待发送完成）"""
        frame.setdefault("session_id", self.session_key)
        frame.setdefault("timestamp", format_timestamp())
        self._outbox.put_nowait(frame)

    def mount(self, element_id: str, src: str):
        self.mounted_elements.add(element_id)
        self.enqueue({"type": "mount", "element_id": element_id, "src": src})

    def unmount(self, element_id: str):
        self.mounted_elements.discard(element_id)
        self.enqueue({"type": "unmount", "element_id": element_id})

    def post_message(self, element_id: str, data: str):
        if element_id not in self.mounted_elements:
            raise RuntimeError(f"元素未挂载: {element_id}")
        self.enqueue({"type": "post_message", "element_id": element_id, "data": data})

    def request_fullscreen(self):
        self.is_fullscreen = True
        self.enqueue({"type": "fullscreen", "value": True})

    def exit_fullscreen(self):
        self.is_fullscreen = False
        self.enqueue({"type": "fullscreen", "value": False})

    async def _write_loop(self):
        while True:
            frame = await self._outbox.get()
            if frame is None:
                break
            await self.manager.send_message(self.session_key, frame)

    async def close(self, timeout: float = 5.0):
        """发出队列中剩余的帧后停止写协程"""
        if self._writer is None:
            return
        self._outbox.put_nowait(None)
        try:
            await asyncio.wait_for(self._writer, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"发送队列未能及时清空: 会话{self.session_key}")
        finally:
            self._writer = None

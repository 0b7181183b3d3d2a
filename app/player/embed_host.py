import itertools
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Set

# (origin, data) -> None
MessageListener = Callable[[str, Any], None]


class EmbedHost(ABC):
    """
    嵌入页面
    负责挂载/移除播放器元素、向元素投递消息、分发收到的消息以及全屏控制。
    所有方法都是即发即忘的，不等待也不返回结果。
    """

    def __init__(self):
        self._listeners: Dict[int, MessageListener] = {}
        self._listener_ids = itertools.count(1)
        self.mounted_elements: Set[str] = set()

    @abstractmethod
    def mount(self, element_id: str, src: str):
        """挂载播放器元素"""

    @abstractmethod
    def unmount(self, element_id: str):
        """移除播放器元素"""

    @abstractmethod
    def post_message(self, element_id: str, data: str):
        """向播放器元素投递消息"""

    @abstractmethod
    def request_fullscreen(self):
        """进入全屏（嵌入页面自身的能力）"""

    @abstractmethod
    def exit_fullscreen(self):
        """退出全屏"""

    def add_message_listener(self, listener: MessageListener) -> int:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = listener
        return listener_id

    def remove_message_listener(self, listener_id: int) -> bool:
        return self._listeners.pop(listener_id, None) is not None

    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch_message(self, origin: str, data: Any):
        """把收到的消息分发给当前所有监听器"""
        for listener in list(self._listeners.values()):
            listener(origin, data)

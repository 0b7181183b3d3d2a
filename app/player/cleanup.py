import logging
from typing import Callable, List, Optional

from app.player.bridge import AttachmentHandle, PlaybackBridge
from app.player.state_machine import PlayerStateMachine

logger = logging.getLogger(__name__)


class SessionCleanup:
    """
    课时切换时的资源清理守卫

    每个挂载对应一个实例，run() 只会真正执行一次：
    先停止状态机计时器，再卸载挂载（轮询任务、消息监听器、嵌入元素），
    最后按后进先出顺序执行通过 defer() 登记的回调。
    """

    def __init__(self, bridge: PlaybackBridge, handle: AttachmentHandle,
                 state_machine: Optional[PlayerStateMachine] = None):
        self.bridge = bridge
        self.handle = handle
        self.state_machine = state_machine
        self.reason: Optional[str] = None
        self._callbacks: List[Callable[[], None]] = []
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def defer(self, callback: Callable[[], None]):
        """登记清理时需要执行的回调"""
        if self._done:
            callback()
            return
        self._callbacks.append(callback)

    def run(self, reason: str = "navigation") -> bool:
        """
        执行清理

        Args:
            reason: 清理原因（navigation / error / unmount / session_end）

        Returns:
            bool: 本次是否执行了清理，重复调用返回False
        """
        if self._done:
            return False
        self._done = True
        self.reason = reason

        if self.state_machine is not None and self.state_machine.handle is self.handle:
            self.state_machine.release()

        self.bridge.detach(self.handle)

        while self._callbacks:
            callback = self._callbacks.pop()
            try:
                callback()
            except Exception as e:
                logger.error(f"清理回调执行失败: {e}", exc_info=True)

        logger.info(f"会话资源清理完成: {self.handle.element_id}, 原因: {reason}")
        return True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.run("error" if exc_type else "unmount")
        return False

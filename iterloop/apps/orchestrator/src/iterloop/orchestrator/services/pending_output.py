"""PendingOutputBuffer -- 跨迭代的待投递文本

写入方：post-iteration / task-complete / error hook 回调、用户消息入队，
可能运行在不同线程或任务中；读取方：Orchestrator，每次迭代开始时 drain 一次。
"""

import threading


class PendingOutputBuffer:
    """带内部锁的 FIFO 文本累加器"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._parts: list[str] = []

    def append(self, text: str) -> None:
        """追加文本，空文本不产生任何效果"""
        if not text:
            return
        with self._lock:
            self._parts.append(text)

    def drain(self) -> str:
        """取出全部内容（以换行连接）并清空"""
        with self._lock:
            parts, self._parts = self._parts, []
        return "\n".join(parts)

    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._parts)

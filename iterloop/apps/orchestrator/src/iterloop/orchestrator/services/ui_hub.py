"""UIHub -- 内存中 UI 消息广播器

每个订阅者持有一个 asyncio.Queue；Orchestrator 通过 send() 广播，
队列已满的订阅者被移除（慢消费者不阻塞迭代循环）。
ConsoleSink 用于无界面运行，把消息写到终端。
"""

import asyncio
import sys
from typing import Protocol, TextIO

import structlog

from ..messages import (
    AgentFinished,
    AgentText,
    AgentThinking,
    FileChanged,
    IterationFinished,
    IterationStarted,
    LoopError,
    LoopPaused,
    LoopResumed,
    SessionCompleted,
    SessionReset,
    ToolCallUpdate,
    UIMessage,
)

log = structlog.get_logger()


class UISink(Protocol):
    """UI 消息接收方"""

    def send(self, message: UIMessage) -> None: ...


class UIHub:
    """UI 消息广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 1000) -> None:
        self._subscribers: set[asyncio.Queue] = set()
        self._sinks: list[UISink] = []
        self._queue_maxsize = queue_maxsize

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self) -> asyncio.Queue:
        """订阅消息流

        Returns:
            asyncio.Queue 实例，新消息会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers.add(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue) -> None:
        """取消订阅

        Args:
            queue: 之前订阅时返回的队列
        """
        self._subscribers.discard(queue)

    def add_sink(self, sink: UISink) -> None:
        """注册同步 sink（如 ConsoleSink），与队列订阅者一起接收消息"""
        self._sinks.append(sink)

    def send(self, message: UIMessage) -> None:
        """向所有订阅者广播消息

        Args:
            message: 要广播的消息
        """
        dead_queues = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                dead_queues.append(queue)

        # 清理已满的队列
        for q in dead_queues:
            self._subscribers.discard(q)
            log.warning("ui_subscriber_dropped", queue_size=q.qsize())

        for sink in self._sinks:
            try:
                sink.send(message)
            except Exception as e:
                log.warning("ui_sink_failed", kind=message.kind, error_type=e.__class__.__name__)


class ConsoleSink:
    """将 UI 消息写到终端（无界面模式）"""

    def __init__(self, stream: TextIO | None = None, show_thinking: bool = False) -> None:
        self._stream = stream or sys.stdout
        self._show_thinking = show_thinking
        # agent 文本为流式分块，换行前不插入前缀
        self._mid_line = False

    def send(self, message: UIMessage) -> None:
        if isinstance(message, AgentText):
            self._write(message.text)
            self._mid_line = not message.text.endswith("\n")
            return
        line = self._format(message)
        if line is None:
            return
        if self._mid_line:
            self._write("\n")
            self._mid_line = False
        self._write(line + "\n")

    def _format(self, message: UIMessage) -> str | None:
        if isinstance(message, AgentThinking):
            return f"· {message.text.strip()}" if self._show_thinking else None
        if isinstance(message, ToolCallUpdate):
            call = message.tool_call
            if call.status not in ("completed", "failed"):
                return None
            return f"[tool] {call.title or call.kind} ({call.status})"
        if isinstance(message, FileChanged):
            change = message.change
            marker = "+" if change.is_new else "~"
            return f"[file] {marker} {change.abs_path} (+{change.additions}/-{change.deletions})"
        if isinstance(message, IterationStarted):
            return f"=== iteration {message.number} ==="
        if isinstance(message, IterationFinished):
            if message.error:
                return f"=== iteration {message.number} failed: {message.error} ==="
            return f"=== iteration {message.number} done in {message.duration_ms / 1000:.1f}s ==="
        if isinstance(message, AgentFinished):
            if message.finish.stop_reason in ("end_turn", ""):
                return None
            return f"[agent] stopped: {message.finish.stop_reason}"
        if isinstance(message, SessionCompleted):
            return f"[session {message.session} complete]"
        if isinstance(message, LoopError):
            return f"[error] {message.error}"
        labels = {LoopPaused: "[paused]", LoopResumed: "[resumed]", SessionReset: "[session reset]"}
        return labels.get(type(message))

    def _write(self, text: str) -> None:
        self._stream.write(text)
        self._stream.flush()

"""Runner Protocol 接口定义

Orchestrator 只依赖 Runner / RunnerListener；
AgentTransport 让连接层可以替换为内存 agent。
"""

from typing import Protocol

from .models import FileChange, FinishEvent, ToolCallEvent


class RunnerListener(Protocol):
    """回调集合，每种流事件对应一个方法，按流顺序同步调用"""

    def on_text(self, text: str) -> None: ...

    def on_tool_call(self, event: ToolCallEvent) -> None: ...

    def on_thinking(self, text: str) -> None: ...

    def on_file_change(self, change: FileChange) -> None: ...

    def on_finish(self, event: FinishEvent) -> None: ...


class Runner(Protocol):
    """agent 驱动接口"""

    async def start(self) -> None:
        """启动子进程并握手；失败时不留下半启动状态"""
        ...

    async def run_iteration(self, prompt: str, hook_output: str = "") -> None:
        """在新会话中执行一次 prompt"""
        ...

    async def send_messages(self, texts: list[str]) -> None:
        """向当前会话发送用户消息"""
        ...

    async def stop(self) -> None:
        """终止子进程（幂等）"""
        ...


class AgentTransport(Protocol):
    """按行收发 JSON-RPC 消息的字节流"""

    async def open(self) -> None:
        """建立连接（启动子进程）"""
        ...

    async def send(self, message: str) -> None:
        """发送一行消息（不含换行符）"""
        ...

    async def receive(self) -> str | None:
        """读取一行消息，EOF 返回 None"""
        ...

    async def close(self) -> None:
        """关闭连接（幂等）"""
        ...

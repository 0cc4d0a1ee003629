"""Runner 包测试 fixtures"""

import pytest
from iterloop.runner.config import RunnerConfig
from iterloop.runner.echo_agent import EchoAgentTransport
from iterloop.runner.models import FileChange, FinishEvent, ToolCallEvent


class RecordingListener:
    """按到达顺序记录所有回调"""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def on_text(self, text: str) -> None:
        self.events.append(("text", text))

    def on_tool_call(self, event: ToolCallEvent) -> None:
        self.events.append(("tool_call", event))

    def on_thinking(self, text: str) -> None:
        self.events.append(("thinking", text))

    def on_file_change(self, change: FileChange) -> None:
        self.events.append(("file_change", change))

    def on_finish(self, event: FinishEvent) -> None:
        self.events.append(("finish", event))

    def of(self, kind: str) -> list:
        return [payload for k, payload in self.events if k == kind]


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def runner_config(tmp_path) -> RunnerConfig:
    """echo 模式配置，工作目录为临时目录"""
    return RunnerConfig(agent_mode="echo", work_dir=str(tmp_path), handshake_timeout_s=2)


@pytest.fixture
def echo_agent() -> EchoAgentTransport:
    return EchoAgentTransport()

"""apps/orchestrator 测试配置 -- 内存协作方 + 临时 SQLite SessionStore"""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from iterloop.core.session_store import SessionStore, open_session_store
from iterloop.orchestrator.config import OrchestratorConfig
from iterloop.orchestrator.messages import UIMessage
from iterloop.orchestrator.services.hooks import HookConfig, HookVariables
from iterloop.orchestrator.services.orchestrator import Orchestrator
from iterloop.runner.models import FinishEvent
from iterloop.runner.protocols import RunnerListener


class FakeRunner:
    """记录调用的 Runner；on_iteration 回调模拟 agent 在迭代中的行为"""

    def __init__(self) -> None:
        self.listener: RunnerListener | None = None
        self.started = False
        self.start_calls = 0
        self.stop_calls = 0
        self.iterations: list[tuple[str, str]] = []
        self.messages: list[list[str]] = []
        self.on_iteration: Callable[[int], Awaitable[None]] | None = None
        self.start_error: Exception | None = None
        self.send_error: Exception | None = None

    def bind(self, listener: RunnerListener) -> "FakeRunner":
        self.listener = listener
        return self

    async def start(self) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def stop(self) -> None:
        self.stop_calls += 1
        self.started = False

    async def run_iteration(self, prompt: str, hook_output: str = "") -> None:
        self.iterations.append((prompt, hook_output))
        if self.on_iteration is not None:
            await self.on_iteration(len(self.iterations))
        self.listener.on_finish(FinishEvent(stop_reason="end_turn"))

    async def send_messages(self, texts: list[str]) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.messages.append(list(texts))


class RecordingSink:
    def __init__(self) -> None:
        self.messages: list[UIMessage] = []

    def send(self, message: UIMessage) -> None:
        self.messages.append(message)

    def kinds(self) -> list[str]:
        return [m.kind for m in self.messages]

    def of(self, kind: str) -> list[UIMessage]:
        return [m for m in self.messages if m.kind == kind]


class RecordingHookExecutor:
    """按命令名返回预设输出，并记录 (command, variables)"""

    def __init__(self) -> None:
        self.outputs: dict[str, str] = {}
        self.calls: list[tuple[str, HookVariables]] = []

    async def _run(self, hooks: list[HookConfig], variables: HookVariables, piped: bool) -> str:
        outputs = []
        for hook in hooks:
            self.calls.append((hook.command, variables))
            output = self.outputs.get(hook.command, "")
            if output and (hook.pipe_output or not piped):
                outputs.append(output)
        return "\n".join(outputs)

    async def execute_all(
        self, hooks: list[HookConfig], work_dir: str, variables: HookVariables
    ) -> str:
        return await self._run(hooks, variables, piped=False)

    async def execute_all_piped(
        self, hooks: list[HookConfig], work_dir: str, variables: HookVariables
    ) -> str:
        return await self._run(hooks, variables, piped=True)

    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]


class RecordingCommitter:
    def __init__(self) -> None:
        self.commits: list[tuple[str, list[str], str]] = []

    async def commit(self, work_dir: str, paths: list[str], message: str) -> bool:
        self.commits.append((work_dir, paths, message))
        return True


@pytest_asyncio.fixture
async def session_store(tmp_path: Path) -> AsyncGenerator[SessionStore, None]:
    store = await open_session_store(tmp_path / "orchestrator_test.db")
    yield store
    await store.close()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def hook_executor() -> RecordingHookExecutor:
    return RecordingHookExecutor()


@pytest.fixture
def committer() -> RecordingCommitter:
    return RecordingCommitter()


@pytest.fixture
def make_orchestrator(tmp_path, session_store, fake_runner, sink, hook_executor, committer):
    """按配置覆盖项创建 Orchestrator（会话名 "test"，工作目录为临时目录）"""

    def _make(**overrides) -> Orchestrator:
        overrides.setdefault("session", "test")
        overrides.setdefault("work_dir", str(tmp_path))
        config = OrchestratorConfig(**overrides)
        return Orchestrator(
            config,
            session_store,
            fake_runner.bind,
            sink,
            hooks=hook_executor,
            committer=committer,
        )

    return _make


@pytest.fixture
def wait_until():
    """轮询等待条件成立"""

    async def _wait(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
        async with asyncio.timeout(timeout):
            while not predicate():
                await asyncio.sleep(0.01)

    return _wait

"""Orchestrator -- 迭代循环

每次迭代：记录开始 -> pre-iteration hook -> 拼接待投递输出 -> 构建 prompt
-> Runner.run_iteration -> 记录完成/失败 -> post-iteration hook -> 自动提交
-> 检查会话完成 -> 转发用户消息 -> 暂停等待。

停止信号贯穿所有阻塞调用（hook、prompt、用户消息、暂停等待），
stop() 可在任意时刻、任意次数、并发调用。
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, TypeVar

import structlog
from iterloop.core.models import Event, EventType, TaskAction, TaskStatus
from iterloop.core.projection import next_iteration_number
from iterloop.core.session_store import SessionStore
from iterloop.runner.exceptions import RunnerError
from iterloop.runner.models import FileChange, FinishEvent, ToolCallEvent
from iterloop.runner.protocols import Runner, RunnerListener

from ..config import OrchestratorConfig
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
)
from .commit import Committer, GitCommitter
from .hooks import HookConfig, HookExecutor, HookVariables, ShellHookExecutor
from .pending_output import PendingOutputBuffer
from .prompt import build_prompt, load_template
from .ui_hub import UISink

log = structlog.get_logger()

T = TypeVar("T")

RunnerFactory = Callable[[RunnerListener], Runner]


class LoopState(StrEnum):
    """循环状态"""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class ExitReason(StrEnum):
    """run() 的结束原因"""

    COMPLETE = "complete"
    MAX_ITERATIONS = "max_iterations"
    STOPPED = "stopped"
    ERROR = "error"


class _StopRequested(Exception):
    """停止信号在阻塞调用期间触发"""


class Orchestrator:
    """迭代循环

    同时作为 Runner 的 listener：agent 流式事件转发给 UI sink，
    文件变更记录下来用于自动提交。
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        store: SessionStore,
        runner_factory: RunnerFactory,
        ui: UISink,
        hooks: HookExecutor | None = None,
        committer: Committer | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._ui = ui
        self._hooks = hooks or ShellHookExecutor()
        self._committer = committer or GitCommitter()
        self._runner = runner_factory(self)

        self._state = LoopState.IDLE
        self._iteration = 0
        self._pending = PendingOutputBuffer()
        self._user_messages: list[str] = []
        self._file_changes: list[FileChange] = []
        self._runner_needs_restart = False

        self._stop_event = asyncio.Event()
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._loop_done: asyncio.Event | None = None
        self._stop_lock = asyncio.Lock()
        self._closed = False
        self._background: set[asyncio.Task] = set()

    @property
    def state(self) -> LoopState:
        """循环状态

        pause() 之后立即为 PAUSED，但正在执行的迭代仍会跑完，
        循环在该迭代结束后才阻塞等待 resume()。
        """
        return self._state

    @property
    def iteration(self) -> int:
        """当前（或最近一次）迭代序号"""
        return self._iteration

    @property
    def pending(self) -> PendingOutputBuffer:
        return self._pending

    @property
    def runner(self) -> Runner:
        return self._runner

    # ---- 循环 ----

    async def run(self) -> ExitReason:
        """运行迭代循环直到会话完成、达到迭代上限或 stop()

        Raises:
            RuntimeError: 重复调用 run()
        """
        if self._loop_done is not None:
            raise RuntimeError("orchestrator loop already started")
        self._loop_done = asyncio.Event()
        session = self._config.session
        self._store.add_listener(self._on_store_event)
        structlog.contextvars.bind_contextvars(session=session)
        entered = False
        try:
            if self._stop_event.is_set():
                return ExitReason.STOPPED
            self._state = LoopState.RUNNING
            entered = True

            try:
                await self._until_stopped(self._runner.start())
            except _StopRequested:
                return ExitReason.STOPPED
            except RunnerError as e:
                log.error("runner_start_failed", error_type=e.__class__.__name__, error=str(e))
                self._ui.send(LoopError(error=str(e)))
                return ExitReason.ERROR

            reason = await self._loop()
            log.info("orchestrator_loop_finished", reason=reason, iteration=self._iteration)

            if reason in (ExitReason.COMPLETE, ExitReason.MAX_ITERATIONS):
                await self._deliver_pending()
            return reason
        finally:
            if entered:
                await self._run_session_end_hooks()
            self._store.remove_listener(self._on_store_event)
            structlog.contextvars.unbind_contextvars("session")
            self._state = LoopState.STOPPED
            self._loop_done.set()

    async def _loop(self) -> ExitReason:
        session = self._config.session
        state = await self._store.load_state(session)
        if state.control.complete:
            log.info("session_already_complete")
            self._ui.send(SessionCompleted(session=session))
            return ExitReason.COMPLETE
        self._iteration = next_iteration_number(state) - 1

        try:
            start_output = await self._run_hooks(
                self._config.hooks.session_start, HookVariables(session=session)
            )
            self._pending.append(start_output)
        except _StopRequested:
            return ExitReason.STOPPED

        iterations_run = 0
        while True:
            if self._stop_event.is_set():
                return ExitReason.STOPPED
            max_iterations = self._config.max_iterations
            if max_iterations and iterations_run >= max_iterations:
                return ExitReason.MAX_ITERATIONS

            try:
                complete = await self._iterate(self._iteration + 1)
            except _StopRequested:
                return ExitReason.STOPPED
            iterations_run += 1
            if complete:
                self._ui.send(SessionCompleted(session=session))
                return ExitReason.COMPLETE

    async def _iterate(self, number: int) -> bool:
        """执行一次迭代，返回会话是否已完成"""
        session = self._config.session
        self._iteration = number
        self._file_changes = []
        await self._store_write(self._store.iteration_start(session, number))
        self._ui.send(IterationStarted(number=number))
        log.info("iteration_started", iteration=number)
        started = time.monotonic()

        variables = HookVariables(session=session, iteration=number)
        error = ""
        try:
            pre_output = await self._run_hooks(self._config.hooks.pre_iteration, variables)
            pending = self._pending.drain()
            hook_output = "\n".join(part for part in (pending, pre_output) if part)
            prompt = await self._build_prompt(number)
            await self._restart_runner_if_needed()
            await self._until_stopped(self._runner.run_iteration(prompt, hook_output))
        except _StopRequested:
            await self._store_write(self._store.iteration_error(session, number, "cancelled"))
            self._ui.send(IterationFinished(number=number, error="cancelled"))
            raise
        except Exception as e:
            # 迭代内的任何异常都转为迭代失败，循环继续
            error = str(e) or e.__class__.__name__
            if isinstance(e, RunnerError) and not e.recoverable:
                self._runner_needs_restart = True
            log.warning(
                "iteration_failed",
                iteration=number,
                error_type=e.__class__.__name__,
                error=error,
                restart_runner=self._runner_needs_restart,
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        if error:
            await self._store_write(self._store.iteration_error(session, number, error))
            self._ui.send(LoopError(error=error, iteration=number))
            error_vars = HookVariables(session=session, iteration=number, error=error)
            self._pending.append(await self._run_hooks(self._config.hooks.on_error, error_vars))
        else:
            await self._store_write(self._store.iteration_complete(session, number))
        self._ui.send(IterationFinished(number=number, error=error, duration_ms=duration_ms))
        log.info("iteration_finished", iteration=number, duration_ms=duration_ms, failed=bool(error))

        self._pending.append(await self._run_hooks(self._config.hooks.post_iteration, variables))

        if self._config.auto_commit and self._file_changes:
            await self._commit(number)

        try:
            state = await self._store.load_state(session)
        except Exception as e:
            log.warning("session_state_load_failed", error_type=e.__class__.__name__, error=str(e))
        else:
            if state.control.complete:
                return True

        await self._forward_user_messages()

        if self._state == LoopState.PAUSED:
            log.info("loop_paused_waiting", iteration=number)
            await self._until_stopped(self._resume_event.wait())
        return False

    async def _build_prompt(self, number: int) -> str:
        state = await self._store.load_state(self._config.session)
        return build_prompt(
            state,
            number,
            template=load_template(self._config.template_path or None),
            spec=self._config.read_spec(),
            extra=self._config.extra_instructions,
        )

    async def _restart_runner_if_needed(self) -> None:
        if not self._runner_needs_restart:
            return
        log.info("runner_restarting", iteration=self._iteration)
        await self._until_stopped(self._runner.stop())
        await self._until_stopped(self._runner.start())
        self._runner_needs_restart = False

    async def _until_stopped(self, awaitable: Awaitable[T]) -> T:
        """等待 awaitable 完成；停止信号先到达时取消它并抛出 _StopRequested"""
        task = asyncio.ensure_future(awaitable)
        stop_wait = asyncio.ensure_future(self._stop_event.wait())
        interrupted = True
        try:
            await asyncio.wait({task, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
            interrupted = not task.done()
        finally:
            stop_wait.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        if interrupted:
            raise _StopRequested()
        return task.result()

    async def _run_hooks(self, hooks: list[HookConfig], variables: HookVariables) -> str:
        """执行 hook 列表，返回需要送入 prompt 的输出；执行器异常只记录日志"""
        if not hooks:
            return ""
        try:
            return await self._until_stopped(
                self._hooks.execute_all_piped(hooks, self._config.work_dir, variables)
            )
        except _StopRequested:
            raise
        except Exception as e:
            log.warning("hooks_failed", error_type=e.__class__.__name__, error=str(e))
            return ""

    async def _run_session_end_hooks(self) -> None:
        # 停止后仍执行，耗时由 hook 自身的超时约束
        hooks = self._config.hooks.session_end
        if not hooks:
            return
        variables = HookVariables(session=self._config.session, iteration=self._iteration)
        try:
            output = await self._hooks.execute_all(hooks, self._config.work_dir, variables)
        except Exception as e:
            log.warning("session_end_hooks_failed", error_type=e.__class__.__name__, error=str(e))
            return
        log.info("session_end_hooks_completed", output_length=len(output))

    async def _commit(self, number: int) -> None:
        paths = list(dict.fromkeys(change.abs_path for change in self._file_changes))
        message = f"iterloop: {self._config.session} iteration {number}"
        try:
            await self._until_stopped(
                self._committer.commit(self._config.work_dir, paths, message)
            )
        except _StopRequested:
            raise
        except Exception as e:
            log.warning("auto_commit_failed", error_type=e.__class__.__name__, error=str(e))

    async def _forward_user_messages(self) -> None:
        messages, self._user_messages = self._user_messages, []
        if not messages:
            return
        try:
            await self._until_stopped(self._runner.send_messages(messages))
        except _StopRequested:
            raise
        except Exception as e:
            # 未送达的消息并入下一次 prompt
            log.warning(
                "user_messages_not_delivered",
                count=len(messages),
                error_type=e.__class__.__name__,
            )
            for message in messages:
                self._pending.append(message)

    async def _deliver_pending(self) -> None:
        """循环结束时把剩余待投递输出发送到当前 agent 会话

        尚未转发的用户消息一并投递。
        """
        messages, self._user_messages = self._user_messages, []
        for message in messages:
            self._pending.append(message)
        if not self._pending.has_pending():
            return
        text = self._pending.drain()
        try:
            await self._until_stopped(self._runner.send_messages([text]))
        except _StopRequested:
            log.info("final_delivery_cancelled")
        except Exception as e:
            log.warning(
                "final_delivery_failed",
                error_type=e.__class__.__name__,
                error=str(e),
                text_length=len(text),
            )

    async def _store_write(self, write: Awaitable[Any]) -> None:
        try:
            await write
        except Exception as e:
            log.warning("store_write_failed", error_type=e.__class__.__name__, error=str(e))

    # ---- 任务完成 hook ----

    def _on_store_event(self, event: Event) -> None:
        if event.session != self._config.session or event.type != EventType.TASK:
            return
        if event.action != TaskAction.STATUS or event.meta.get("status") != TaskStatus.COMPLETED:
            return
        if not self._config.hooks.on_task_complete or self._stop_event.is_set():
            return
        task = asyncio.get_running_loop().create_task(
            self._run_task_complete_hooks(str(event.meta.get("id", "")))
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_task_complete_hooks(self, task_id: str) -> None:
        session = self._config.session
        try:
            state = await self._store.load_state(session)
            task = state.tasks.get(task_id)
            variables = HookVariables(
                session=session,
                iteration=self._iteration,
                task_id=task_id,
                task_content=task.content if task else "",
            )
            output = await self._run_hooks(self._config.hooks.on_task_complete, variables)
        except _StopRequested:
            return
        except Exception as e:
            log.warning("task_complete_hooks_failed", task_id=task_id, error_type=e.__class__.__name__)
            return
        self._pending.append(output)

    # ---- UI 入站操作 ----

    async def pause(self) -> None:
        """请求暂停：状态立即变为 PAUSED，当前迭代结束后循环阻塞"""
        if self._state != LoopState.RUNNING:
            return
        self._state = LoopState.PAUSED
        self._resume_event.clear()
        await self._store_write(self._store.pause(self._config.session))
        self._ui.send(LoopPaused())
        log.info("loop_paused")

    async def resume(self) -> None:
        if self._state != LoopState.PAUSED:
            return
        self._state = LoopState.RUNNING
        self._resume_event.set()
        await self._store_write(self._store.resume(self._config.session))
        self._ui.send(LoopResumed())
        log.info("loop_resumed")

    async def reset(self) -> None:
        """重置会话 projection（事件日志保留）"""
        await self._store_write(self._store.reset(self._config.session))
        self._ui.send(SessionReset())
        log.info("session_reset")

    def queue_user_message(self, text: str) -> None:
        """排队用户消息，在当前迭代结束后发送给 agent"""
        if not text.strip():
            return
        self._user_messages.append(text)
        log.debug("user_message_queued", queued=len(self._user_messages))

    # ---- 停止 ----

    async def stop(self) -> None:
        """停止循环并释放 Runner 与 Store；可重复、可并发调用"""
        self._stop_event.set()
        async with self._stop_lock:
            if self._closed:
                return
            if self._loop_done is not None and not self._loop_done.is_set():
                await self._loop_done.wait()

            background = list(self._background)
            for task in background:
                task.cancel()
            await asyncio.gather(*background, return_exceptions=True)

            try:
                await self._runner.stop()
            except Exception as e:
                log.warning("runner_stop_failed", error_type=e.__class__.__name__, error=str(e))
            try:
                await self._store.close()
            except Exception as e:
                log.warning("store_close_failed", error_type=e.__class__.__name__, error=str(e))

            self._state = LoopState.STOPPED
            self._closed = True
            log.info("orchestrator_stopped", iteration=self._iteration)

    # ---- RunnerListener ----

    def on_text(self, text: str) -> None:
        self._ui.send(AgentText(text=text))

    def on_thinking(self, text: str) -> None:
        self._ui.send(AgentThinking(text=text))

    def on_tool_call(self, event: ToolCallEvent) -> None:
        self._ui.send(ToolCallUpdate(tool_call=event))

    def on_file_change(self, change: FileChange) -> None:
        self._file_changes.append(change)
        self._ui.send(FileChanged(change=change))

    def on_finish(self, event: FinishEvent) -> None:
        self._ui.send(AgentFinished(finish=event))
        log.debug(
            "agent_finished",
            stop_reason=event.stop_reason,
            duration_ms=event.duration_ms,
            iteration=self._iteration,
        )

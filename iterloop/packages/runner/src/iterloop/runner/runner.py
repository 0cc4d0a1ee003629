"""AgentRunner -- agent 子进程与逐迭代会话管理

生命周期：
  子进程：NotStarted -> Started -> Stopped（start 失败保持 NotStarted）
  会话：每次 run_iteration 新建会话（全新上下文），send_messages 复用当前会话

取消：调用方取消 run_iteration 所在任务时，向 agent 发送 session/cancel，
on_finish 收到 stop_reason="cancelled"，子进程保持可用。
"""

import asyncio
import time
from collections.abc import Callable

import structlog

from .config import RunnerConfig
from .connection import AcpConnection, extract_provider
from .echo_agent import EchoAgentTransport
from .exceptions import (
    AgentSpawnError,
    HandshakeError,
    ModelSetError,
    NoActiveSessionError,
    PromptError,
    RunnerBusyError,
    RunnerError,
    RunnerNotStartedError,
    SessionCreateError,
)
from .models import FinishEvent, StopReason
from .protocols import AgentTransport, RunnerListener
from .transport import SubprocessTransport

log = structlog.get_logger()

TransportFactory = Callable[[], AgentTransport]


def default_transport_factory(config: RunnerConfig) -> TransportFactory:
    """按 agent_mode 选择 transport"""
    if config.agent_mode == "echo":
        return EchoAgentTransport
    return lambda: SubprocessTransport(config.agent_command, cwd=config.work_dir)


class AgentRunner:
    """Runner 的 ACP 实现

    同一时刻只允许一个 prompt（run_iteration 或 send_messages）在执行。
    """

    def __init__(
        self,
        config: RunnerConfig,
        listener: RunnerListener,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._config = config
        self._listener = listener
        self._transport_factory = transport_factory or default_transport_factory(config)
        self._conn: AcpConnection | None = None
        self._session_id = ""
        self._lifecycle_lock = asyncio.Lock()
        self._prompt_lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._conn is not None and not self._conn.closed

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def model(self) -> str:
        return self._config.model

    async def start(self) -> None:
        """启动 agent 子进程并完成 initialize 握手

        Raises:
            AgentSpawnError: 子进程无法启动
            HandshakeError: 握手失败或超时
        """
        async with self._lifecycle_lock:
            if self.started:
                return
            conn = AcpConnection(self._transport_factory(), self._config.handshake_timeout_s)
            try:
                await conn.open()
                await conn.initialize()
            except AgentSpawnError:
                await conn.close()
                raise
            except (RunnerError, TimeoutError) as e:
                await conn.close()
                log.error("runner_handshake_failed", error_type=e.__class__.__name__)
                raise HandshakeError(str(e) or "timed out") from e
            self._conn = conn
            self._session_id = ""
            log.info("runner_started", agent_mode=self._config.agent_mode, model=self.model)

    async def stop(self) -> None:
        """终止子进程并释放连接；可重复、可并发调用"""
        async with self._lifecycle_lock:
            conn, self._conn = self._conn, None
            self._session_id = ""
            if conn is None:
                return
            await conn.close()
            log.info("runner_stopped")

    async def run_iteration(self, prompt: str, hook_output: str = "") -> None:
        """在新会话中执行一次迭代

        hook_output 非空时作为独立文本块放在 prompt 之前。

        Raises:
            RunnerNotStartedError: 未调用 start
            RunnerBusyError: 已有 prompt 在执行
            SessionCreateError / ModelSetError / PromptError: 对应阶段失败
        """
        conn = self._require_conn()
        if self._prompt_lock.locked():
            raise RunnerBusyError()
        async with self._prompt_lock:
            start_time = time.monotonic()
            try:
                try:
                    session_id = await conn.new_session(self._config.work_dir, self._mcp_servers())
                except RunnerError as e:
                    raise _wrap(SessionCreateError(str(e)), e) from e
                self._session_id = session_id

                if self.model:
                    try:
                        await conn.set_model(session_id, self.model)
                    except RunnerError as e:
                        raise _wrap(ModelSetError(self.model, str(e)), e) from e
            except asyncio.CancelledError:
                self._emit_finish(StopReason.CANCELLED, "cancelled", start_time)
                raise
            except RunnerError as e:
                log.warning("runner_session_setup_failed", error_type=e.__class__.__name__)
                self._emit_finish(StopReason.ERROR, str(e), start_time)
                raise

            texts = [hook_output] if hook_output else []
            texts.append(prompt)
            log.debug(
                "runner_prompt_start",
                session_id=session_id,
                block_count=len(texts),
                prompt_length=len(prompt),
            )
            await self._prompt(conn, session_id, texts)

    async def send_messages(self, texts: list[str]) -> None:
        """向当前会话发送用户消息，每条消息一个文本块

        Raises:
            RunnerNotStartedError: 未调用 start
            NoActiveSessionError: 尚无 run_iteration 创建的会话
            RunnerBusyError: 已有 prompt 在执行
            PromptError: prompt 失败
        """
        conn = self._require_conn()
        if not self._session_id:
            raise NoActiveSessionError()
        if not texts:
            return
        if self._prompt_lock.locked():
            raise RunnerBusyError()
        async with self._prompt_lock:
            log.debug("runner_send_messages", session_id=self._session_id, count=len(texts))
            await self._prompt(conn, self._session_id, texts)

    async def _prompt(self, conn: AcpConnection, session_id: str, texts: list[str]) -> None:
        start_time = time.monotonic()
        try:
            stop_reason = await conn.prompt(session_id, texts, self._listener)
        except asyncio.CancelledError:
            log.info("runner_prompt_cancelled", session_id=session_id)
            self._emit_finish(StopReason.CANCELLED, "prompt cancelled", start_time)
            raise
        except RunnerError as e:
            error = PromptError(str(e), recoverable=e.recoverable)
            log.warning(
                "runner_prompt_failed",
                session_id=session_id,
                error_type=e.__class__.__name__,
                recoverable=e.recoverable,
            )
            self._emit_finish(StopReason.ERROR, str(error), start_time)
            raise error from e
        self._emit_finish(stop_reason, "", start_time)

    def _emit_finish(self, stop_reason: str, error: str, start_time: float) -> None:
        event = FinishEvent(
            stop_reason=stop_reason,
            error=error,
            duration_ms=int((time.monotonic() - start_time) * 1000),
            model=self.model,
            provider=extract_provider(self.model),
        )
        try:
            self._listener.on_finish(event)
        except Exception as e:
            log.warning("runner_listener_failed", error_type=e.__class__.__name__, error=str(e))

    def _require_conn(self) -> AcpConnection:
        if self._conn is None:
            raise RunnerNotStartedError()
        return self._conn

    def _mcp_servers(self) -> list[dict]:
        if not self._config.mcp_url:
            return []
        return [
            {
                "type": "http",
                "name": self._config.mcp_name,
                "url": self._config.mcp_url,
                "headers": [],
            }
        ]


def _wrap(error: RunnerError, cause: RunnerError) -> RunnerError:
    # 底层连接不可用时，外层错误同样不可恢复
    error.recoverable = cause.recoverable
    return error

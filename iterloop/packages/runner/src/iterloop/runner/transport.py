"""SubprocessTransport -- agent 子进程的 stdin/stdout 行协议

stdout 按行读取 JSON-RPC 消息；stderr 单独消费并写入 debug 日志，
不继承到终端。关闭时先 terminate，超时后 kill。
"""

import asyncio
import os
from pathlib import Path

import structlog

from .exceptions import AgentSpawnError, TransportClosedError

log = structlog.get_logger()

# terminate 后等待退出的时间
TERMINATE_TIMEOUT_S = 5

# 单行消息上限（工具输出可能很长）
STREAM_LIMIT = 16 * 1024 * 1024


class SubprocessTransport:
    """通过 asyncio 子进程与 agent 通信"""

    def __init__(
        self,
        command: list[str],
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self._command = command
        self._cwd = str(cwd) if cwd is not None else None
        self._env = env
        self._proc: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    async def open(self) -> None:
        """启动子进程

        Raises:
            AgentSpawnError: 命令不存在或无法执行
        """
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                env={**os.environ, **(self._env or {})},
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            log.error(
                "agent_spawn_failed",
                command=self._command,
                error_type=e.__class__.__name__,
            )
            raise AgentSpawnError(self._command, e) from e

        self._stderr_task = asyncio.create_task(self._drain_stderr())
        log.debug("agent_process_started", command=self._command, pid=self._proc.pid)

    async def send(self, message: str) -> None:
        if self._proc is None or self._proc.stdin is None:
            raise TransportClosedError("agent process not running")
        try:
            self._proc.stdin.write(message.encode() + b"\n")
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportClosedError(f"agent stdin closed: {e}") from e

    async def receive(self) -> str | None:
        if self._proc is None or self._proc.stdout is None:
            return None
        try:
            line = await self._proc.stdout.readline()
        except (ValueError, ConnectionResetError) as e:
            # ValueError: 超过 STREAM_LIMIT 的单行
            raise TransportClosedError(f"agent stdout failed: {e}") from e
        if not line:
            return None
        return line.decode(errors="replace").rstrip("\r\n")

    async def close(self) -> None:
        """终止子进程（幂等）"""
        proc, self._proc = self._proc, None
        if proc is None:
            return

        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()

        if proc.returncode is None:
            try:
                proc.terminate()
                await asyncio.wait_for(proc.wait(), timeout=TERMINATE_TIMEOUT_S)
            except ProcessLookupError:
                pass
            except TimeoutError:
                log.warning("agent_terminate_timeout", pid=proc.pid)
                proc.kill()
                await proc.wait()

        if self._stderr_task is not None:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
            self._stderr_task = None

        log.debug("agent_process_stopped", pid=proc.pid, returncode=proc.returncode)

    async def _drain_stderr(self) -> None:
        proc = self._proc
        if proc is None or proc.stderr is None:
            return
        while True:
            line = await proc.stderr.readline()
            if not line:
                return
            log.debug("agent_stderr", line=line.decode(errors="replace").rstrip())

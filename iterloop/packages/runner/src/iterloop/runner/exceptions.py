"""Runner 异常体系

每个异常包装底层协议错误（raise ... from e），
recoverable=False 表示连接已不可用，需要 stop/start 重建。
"""


class RunnerError(Exception):
    """Runner 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 连接是否仍可用于下一次迭代
        """
        super().__init__(message)
        self.recoverable = recoverable


class AgentSpawnError(RunnerError):
    """agent 子进程启动失败（命令不存在、权限不足等）"""

    def __init__(self, command: list[str], original_error: Exception) -> None:
        super().__init__(
            f"failed to start agent {' '.join(command)!r}: {original_error}",
            recoverable=False,
        )
        self.command = command
        self.original_error = original_error


class HandshakeError(RunnerError):
    """initialize 握手失败，本次 start 作废"""

    def __init__(self, message: str) -> None:
        super().__init__(f"ACP initialize failed: {message}", recoverable=False)


class SessionCreateError(RunnerError):
    """session/new 失败"""

    def __init__(self, message: str) -> None:
        super().__init__(f"ACP new session failed: {message}")


class ModelSetError(RunnerError):
    """session/set_model 失败"""

    def __init__(self, model: str, message: str) -> None:
        super().__init__(f"ACP set model {model!r} failed: {message}")
        self.model = model


class PromptError(RunnerError):
    """session/prompt 失败"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        super().__init__(f"ACP prompt failed: {message}", recoverable=recoverable)


class RunnerNotStartedError(RunnerError):
    """start() 之前调用了 run_iteration / send_messages"""

    def __init__(self) -> None:
        super().__init__("agent subprocess not started - call start() first")


class NoActiveSessionError(RunnerError):
    """send_messages 之前没有 run_iteration 创建的会话"""

    def __init__(self) -> None:
        super().__init__("no active session - call run_iteration() first")


class RunnerBusyError(RunnerError):
    """已有 prompt 在执行，连接不支持并发 prompt"""

    def __init__(self) -> None:
        super().__init__("a prompt is already in flight on this connection")


class ProtocolError(RunnerError):
    """JSON-RPC error 响应"""

    def __init__(self, method: str, code: int, message: str) -> None:
        super().__init__(f"{method}: JSON-RPC error {code}: {message}")
        self.method = method
        self.code = code


class TransportClosedError(RunnerError):
    """子进程输出流已关闭（EOF）或写入失败"""

    def __init__(self, message: str = "agent transport closed") -> None:
        super().__init__(message, recoverable=False)

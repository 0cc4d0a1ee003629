"""iterloop Runner -- agent 子进程与 ACP 会话管理

packages/runner 的公开接口导出。
"""

# 配置
from .config import RunnerConfig, load_runner_config

# 核心组件
from .connection import AcpConnection, extract_file_changes, extract_provider
from .echo_agent import EchoAgentTransport

# 异常
from .exceptions import (
    AgentSpawnError,
    HandshakeError,
    ModelSetError,
    NoActiveSessionError,
    PromptError,
    ProtocolError,
    RunnerBusyError,
    RunnerError,
    RunnerNotStartedError,
    SessionCreateError,
    TransportClosedError,
)
from .listener import CallbackListener

# 数据模型
from .models import (
    DiffBlock,
    FileChange,
    FileDiff,
    FinishEvent,
    StopReason,
    ToolCallEvent,
    ToolCallStatus,
)
from .protocols import AgentTransport, Runner, RunnerListener
from .runner import AgentRunner
from .transport import SubprocessTransport

__all__ = [
    "DiffBlock",
    "FileChange",
    "FileDiff",
    "FinishEvent",
    "StopReason",
    "ToolCallEvent",
    "ToolCallStatus",
    "AgentTransport",
    "Runner",
    "RunnerListener",
    "AcpConnection",
    "AgentRunner",
    "CallbackListener",
    "EchoAgentTransport",
    "SubprocessTransport",
    "extract_file_changes",
    "extract_provider",
    "RunnerConfig",
    "load_runner_config",
    "RunnerError",
    "AgentSpawnError",
    "HandshakeError",
    "SessionCreateError",
    "ModelSetError",
    "PromptError",
    "RunnerNotStartedError",
    "NoActiveSessionError",
    "RunnerBusyError",
    "ProtocolError",
    "TransportClosedError",
]

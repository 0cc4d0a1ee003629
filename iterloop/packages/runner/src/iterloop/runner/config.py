"""RunnerConfig -- Runner 配置加载

从环境变量加载配置，不硬编码 agent 命令或模型名。
"""

import os
import shlex
from typing import Literal

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


class RunnerConfig(BaseModel):
    """Runner 包配置 -- 从环境变量加载

    环境变量:
        ITERLOOP_AGENT_COMMAND: agent 启动命令（默认 "opencode acp"）
        ITERLOOP_MODEL: 模型 ID，"provider/model" 形式（默认不设置）
        ITERLOOP_AGENT_MODE: 运行模式（acp/echo）
        ITERLOOP_MCP_URL: 会话中挂载的 MCP 工具服务地址
        ITERLOOP_MCP_NAME: MCP 服务名称
        ITERLOOP_HANDSHAKE_TIMEOUT_S: initialize 超时（秒，默认 30）
    """

    agent_command: list[str] = Field(
        default_factory=lambda: ["opencode", "acp"],
        min_length=1,
        description="agent 子进程命令行",
    )
    model: str = Field(default="", description="会话模型 ID，空表示使用 agent 默认")
    agent_mode: Literal["acp", "echo"] = Field(
        default="acp",
        description="运行模式：acp（子进程）/ echo（内存回声 agent）",
    )
    mcp_url: str = Field(default="", description="MCP 工具服务 URL，空表示不挂载")
    mcp_name: str = Field(default="iterloop-tools", description="MCP 工具服务名称")
    handshake_timeout_s: float = Field(default=30, gt=0, description="握手超时（秒）")
    work_dir: str = Field(default=".", description="agent 工作目录，同时作为会话 cwd")


def load_runner_config(work_dir: str | None = None) -> RunnerConfig:
    """从环境变量加载 Runner 配置

    Args:
        work_dir: agent 工作目录，None 时使用当前目录的绝对路径

    Returns:
        RunnerConfig 实例
    """
    kwargs: dict = {"work_dir": work_dir or os.getcwd()}

    if val := os.environ.get("ITERLOOP_AGENT_COMMAND"):
        command = shlex.split(val)
        if command:
            kwargs["agent_command"] = command

    if val := os.environ.get("ITERLOOP_MODEL"):
        kwargs["model"] = val

    if val := os.environ.get("ITERLOOP_AGENT_MODE"):
        if val in ("acp", "echo"):
            kwargs["agent_mode"] = val
        else:
            log.warning(
                "invalid_agent_mode_config",
                env_var="ITERLOOP_AGENT_MODE",
                value=val,
                fallback="acp",
            )

    if val := os.environ.get("ITERLOOP_MCP_URL"):
        kwargs["mcp_url"] = val

    if val := os.environ.get("ITERLOOP_MCP_NAME"):
        kwargs["mcp_name"] = val

    if val := os.environ.get("ITERLOOP_HANDSHAKE_TIMEOUT_S"):
        try:
            timeout = float(val)
            if timeout <= 0:
                raise ValueError(val)
            kwargs["handshake_timeout_s"] = timeout
        except ValueError:
            log.warning(
                "invalid_timeout_config",
                env_var="ITERLOOP_HANDSHAKE_TIMEOUT_S",
                value=val,
                fallback=30,
            )
            # 使用默认值，不阻塞启动

    return RunnerConfig(**kwargs)

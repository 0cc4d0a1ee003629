"""OrchestratorConfig -- 迭代循环配置加载

环境变量提供默认值，命令行参数（load_orchestrator_config 的关键字参数）优先。
"""

import os
from pathlib import Path
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

from .logging_config import LOG_FORMATS
from .services.hooks import HOOKS_FILE_NAME, HooksConfig, load_hooks_config

log = structlog.get_logger()

_TRUE_VALUES = ("1", "true", "yes", "on")


class OrchestratorConfig(BaseModel):
    """迭代循环配置

    环境变量:
        ITERLOOP_SESSION: 会话名称（默认 "default"）
        ITERLOOP_SPEC: spec 文件路径
        ITERLOOP_TEMPLATE: 自定义 prompt 模板路径
        ITERLOOP_EXTRA: 附加指令
        ITERLOOP_MAX_ITERATIONS: 最大迭代次数（0 表示不限）
        ITERLOOP_DATA_DIR / ITERLOOP_DB_PATH: 数据目录与数据库路径
        ITERLOOP_AUTO_COMMIT: 迭代产生文件变更后自动 git commit
        ITERLOOP_HEADLESS: 无界面运行，消息写到终端
        ITERLOOP_HOOKS_FILE: hook 配置文件（默认 <work_dir>/.iterloop.hooks.yml）
        ITERLOOP_LOG_FORMAT / ITERLOOP_LOG_LEVEL: 日志格式（dev / json）与级别
    """

    session: str = Field(default="default", min_length=1, description="会话名称")
    spec_path: str = Field(default="", description="spec 文件路径，空表示不附带 spec")
    template_path: str = Field(default="", description="自定义模板路径，空表示内置模板")
    extra_instructions: str = Field(default="", description="追加到 prompt 末尾的指令")
    max_iterations: int = Field(default=0, ge=0, description="最大迭代次数，0 表示不限")
    work_dir: str = Field(default=".", description="agent 与 hook 的工作目录")
    data_dir: str = Field(default=".iterloop", description="数据目录")
    db_path: str = Field(default="", description="SQLite 路径，空表示 <data_dir>/sqlite/events.db")
    auto_commit: bool = Field(default=False, description="是否自动提交文件变更")
    headless: bool = Field(default=True, description="是否无界面运行")
    hooks: HooksConfig = Field(default_factory=HooksConfig)
    log_format: Literal["dev", "json"] = Field(default="dev", description="日志格式")
    log_level: str = Field(default="INFO", description="日志级别名")

    def resolved_db_path(self) -> str:
        return self.db_path or str(Path(self.data_dir) / "sqlite" / "events.db")

    def read_spec(self) -> str:
        """读取 spec 文件内容，未配置返回空串"""
        if not self.spec_path:
            return ""
        path = Path(self.spec_path)
        if not path.is_absolute():
            path = Path(self.work_dir) / path
        return path.read_text(encoding="utf-8")


def _env_bool(name: str) -> bool | None:
    val = os.environ.get(name)
    if val is None:
        return None
    return val.strip().lower() in _TRUE_VALUES


def load_orchestrator_config(work_dir: str | None = None, **overrides: Any) -> OrchestratorConfig:
    """从环境变量加载配置，非 None 的 overrides 覆盖环境变量

    Args:
        work_dir: 工作目录，None 时使用当前目录的绝对路径
        **overrides: OrchestratorConfig 字段

    Returns:
        OrchestratorConfig 实例
    """
    work_dir = work_dir or os.getcwd()
    kwargs: dict[str, Any] = {"work_dir": work_dir}

    for field, env_var in (
        ("session", "ITERLOOP_SESSION"),
        ("spec_path", "ITERLOOP_SPEC"),
        ("template_path", "ITERLOOP_TEMPLATE"),
        ("extra_instructions", "ITERLOOP_EXTRA"),
        ("db_path", "ITERLOOP_DB_PATH"),
    ):
        if val := os.environ.get(env_var):
            kwargs[field] = val

    kwargs["data_dir"] = os.environ.get("ITERLOOP_DATA_DIR") or str(Path(work_dir) / ".iterloop")

    if val := os.environ.get("ITERLOOP_MAX_ITERATIONS"):
        try:
            max_iterations = int(val)
            if max_iterations < 0:
                raise ValueError(val)
            kwargs["max_iterations"] = max_iterations
        except ValueError:
            log.warning(
                "invalid_max_iterations_config",
                env_var="ITERLOOP_MAX_ITERATIONS",
                value=val,
                fallback=0,
            )

    if val := os.environ.get("ITERLOOP_LOG_FORMAT"):
        if val in LOG_FORMATS:
            kwargs["log_format"] = val
        else:
            log.warning(
                "invalid_log_format_config",
                env_var="ITERLOOP_LOG_FORMAT",
                value=val,
                fallback="dev",
            )
    if val := os.environ.get("ITERLOOP_LOG_LEVEL"):
        kwargs["log_level"] = val

    for field, env_var in (("auto_commit", "ITERLOOP_AUTO_COMMIT"), ("headless", "ITERLOOP_HEADLESS")):
        flag = _env_bool(env_var)
        if flag is not None:
            kwargs[field] = flag

    kwargs.update({key: value for key, value in overrides.items() if value is not None})

    if "hooks" not in kwargs:
        hooks_file = os.environ.get("ITERLOOP_HOOKS_FILE") or str(Path(work_dir) / HOOKS_FILE_NAME)
        kwargs["hooks"] = load_hooks_config(hooks_file)

    return OrchestratorConfig(**kwargs)

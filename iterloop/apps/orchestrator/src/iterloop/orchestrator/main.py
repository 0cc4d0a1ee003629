"""运行时装配 -- Store + Runner + UIHub + Orchestrator

create_runtime() 以异步上下文管理器形式管理生命周期：
进入时打开 Store 并装配组件，退出时调用 Orchestrator.stop() 释放全部资源。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from iterloop.core.session_store import SessionStore, open_session_store
from iterloop.runner import AgentRunner, RunnerConfig, RunnerListener, load_runner_config

from .config import OrchestratorConfig
from .services.hooks import HookExecutor
from .services.orchestrator import Orchestrator
from .services.ui_hub import ConsoleSink, UIHub

log = structlog.get_logger()


@dataclass
class Runtime:
    """已装配的运行时组件"""

    config: OrchestratorConfig
    store: SessionStore
    hub: UIHub
    orchestrator: Orchestrator


@asynccontextmanager
async def create_runtime(
    config: OrchestratorConfig,
    runner_config: RunnerConfig | None = None,
    hooks: HookExecutor | None = None,
) -> AsyncGenerator[Runtime, None]:
    """装配运行时

    Args:
        config: Orchestrator 配置
        runner_config: Runner 配置，None 时从环境变量加载（work_dir 取 config.work_dir）
        hooks: hook 执行器，None 时使用 shell 执行器
    """
    runner_config = runner_config or load_runner_config(config.work_dir)
    store = await open_session_store(config.resolved_db_path())

    hub = UIHub()
    if config.headless:
        hub.add_sink(ConsoleSink())

    def runner_factory(listener: RunnerListener) -> AgentRunner:
        return AgentRunner(runner_config, listener)

    orchestrator = Orchestrator(config, store, runner_factory, hub, hooks=hooks)
    log.info(
        "runtime_created",
        session=config.session,
        db_path=config.resolved_db_path(),
        agent_mode=runner_config.agent_mode,
        max_iterations=config.max_iterations,
    )
    try:
        yield Runtime(config=config, store=store, hub=hub, orchestrator=orchestrator)
    finally:
        await orchestrator.stop()

"""集成测试共享 fixture -- 真实 SQLite + 内存 echo agent"""

from pathlib import Path

import pytest
from iterloop.orchestrator.config import OrchestratorConfig
from iterloop.runner.config import RunnerConfig


@pytest.fixture
def integration_config(tmp_path: Path, tmp_db_path: Path) -> OrchestratorConfig:
    """会话 "it"，两次迭代，不挂载终端输出"""
    return OrchestratorConfig(
        session="it",
        max_iterations=2,
        work_dir=str(tmp_path),
        data_dir=str(tmp_path / ".iterloop"),
        db_path=str(tmp_db_path),
        headless=False,
    )


@pytest.fixture
def echo_runner_config(tmp_path: Path) -> RunnerConfig:
    return RunnerConfig(agent_mode="echo", work_dir=str(tmp_path), handshake_timeout_s=2)

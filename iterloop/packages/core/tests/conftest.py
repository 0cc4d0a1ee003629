"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from iterloop.core.session_store import SessionStore, open_session_store
from iterloop.core.store import SqliteEventStore, create_event_store


@pytest_asyncio.fixture
async def core_db_path(tmp_path: Path) -> Path:
    """核心层临时数据库路径"""
    return tmp_path / "core_test.db"


@pytest_asyncio.fixture
async def event_store(core_db_path: Path) -> AsyncGenerator[SqliteEventStore, None]:
    """已初始化的 SqliteEventStore"""
    store = await create_event_store(core_db_path)
    yield store
    await store.close()


@pytest_asyncio.fixture
async def session_store(core_db_path: Path) -> AsyncGenerator[SessionStore, None]:
    """已初始化的 SessionStore"""
    store = await open_session_store(core_db_path)
    yield store
    await store.close()

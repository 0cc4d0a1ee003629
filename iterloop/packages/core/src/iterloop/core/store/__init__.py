"""iterloop Core Store -- SQLite 持久化实现

提供工厂函数创建 EventStore。
"""

from pathlib import Path

import aiosqlite

from .event_store import SqliteEventStore
from .protocols import EventStore
from .sqlite_init import init_db, verify_wal_mode


async def create_event_store(db_path: str | Path) -> SqliteEventStore:
    """创建 SQLite EventStore

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        SqliteEventStore 实例
    """
    # 确保数据库目录存在
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(str(db_path))
    await init_db(conn)
    return SqliteEventStore(conn)


__all__ = [
    "EventStore",
    "SqliteEventStore",
    "create_event_store",
    "init_db",
    "verify_wal_mode",
]

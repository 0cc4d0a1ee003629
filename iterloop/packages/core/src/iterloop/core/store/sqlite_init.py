"""SQLite 数据库初始化

PRAGMA 配置 + events 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# events 表 DDL -- append-only
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    id       INTEGER PRIMARY KEY AUTOINCREMENT,
    ts       TEXT NOT NULL,
    session  TEXT NOT NULL,
    type     TEXT NOT NULL,
    action   TEXT NOT NULL,
    meta     TEXT NOT NULL DEFAULT '{}',
    data     TEXT NOT NULL DEFAULT ''
);
"""

_EVENTS_INDEXES = [
    # 会话内按追加顺序重放
    "CREATE INDEX IF NOT EXISTS idx_events_session_id ON events(session, id);",
    # (session, type) 分区查询
    "CREATE INDEX IF NOT EXISTS idx_events_session_type ON events(session, type, id);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_EVENTS_DDL)
    for idx_sql in _EVENTS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"

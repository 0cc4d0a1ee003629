"""EventStore SQLite 实现

事件表 append-only：只允许插入，不允许更新或删除。
写入在 asyncio.Lock 内串行完成（insert + commit），
同一 session 的事件顺序即调用被 store 观察到的顺序。
"""

import asyncio
import json
from datetime import UTC, datetime
from typing import Any

import aiosqlite
import structlog

from ..exceptions import StoreError
from ..models.enums import EventType
from ..models.event import Event

log = structlog.get_logger()


class SqliteEventStore:
    """EventStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn
        self._write_lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def append(
        self,
        session: str,
        type: EventType,
        action: str,
        meta: dict[str, Any] | None = None,
        data: str = "",
    ) -> Event:
        """追加事件（append-only）并提交

        Raises:
            StoreError: store 已关闭或写入失败
        """
        meta = meta or {}
        async with self._write_lock:
            if self._closed:
                raise StoreError("event store is closed")
            ts = datetime.now(UTC)
            try:
                cursor = await self._conn.execute(
                    """
                    INSERT INTO events (ts, session, type, action, meta, data)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        ts.isoformat(),
                        session,
                        EventType(type).value,
                        action,
                        json.dumps(meta, ensure_ascii=False),
                        data,
                    ),
                )
                event_id = cursor.lastrowid
                await self._conn.commit()
            except aiosqlite.Error as e:
                await self._conn.rollback()
                log.error(
                    "event_append_failed",
                    session=session,
                    type=str(type),
                    action=action,
                    error_type=e.__class__.__name__,
                )
                raise StoreError(f"failed to append event: {e}") from e

        return Event(
            id=event_id,
            ts=ts,
            session=session,
            type=EventType(type),
            action=action,
            meta=meta,
            data=data,
        )

    async def replay(self, session: str) -> list[Event]:
        """查询会话的所有事件，按 id 正序"""
        return await self.replay_after(session, 0)

    async def replay_after(self, session: str, after_id: int) -> list[Event]:
        """查询指定事件之后的增量事件（用于恢复中断的运行）"""
        self._ensure_open()
        cursor = await self._conn.execute(
            "SELECT * FROM events WHERE session = ? AND id > ? ORDER BY id ASC",
            (session, after_id),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def replay_type(self, session: str, type: EventType) -> list[Event]:
        """查询 (session, type) 分区内的事件"""
        self._ensure_open()
        cursor = await self._conn.execute(
            "SELECT * FROM events WHERE session = ? AND type = ? ORDER BY id ASC",
            (session, EventType(type).value),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def list_sessions(self) -> list[str]:
        """列出有事件的所有会话名称"""
        self._ensure_open()
        cursor = await self._conn.execute(
            "SELECT session FROM events GROUP BY session ORDER BY MIN(id) ASC"
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def close(self) -> None:
        """关闭数据库连接，重复调用无副作用"""
        async with self._write_lock:
            if self._closed:
                return
            self._closed = True
            await self._conn.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreError("event store is closed")

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> Event:
        """将数据库行转换为 Event 模型"""
        meta = json.loads(row[5]) if row[5] else {}
        return Event(
            id=row[0],
            ts=datetime.fromisoformat(row[1]),
            session=row[2],
            type=EventType(row[3]),
            action=row[4],
            meta=meta,
            data=row[6],
        )

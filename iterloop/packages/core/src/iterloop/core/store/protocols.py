"""Store Protocol 接口定义

使用 Python Protocol 实现结构化子类型（duck typing），
Orchestrator 与测试可替换为内存实现。
"""

from typing import Any, Protocol

from ..models.enums import EventType
from ..models.event import Event


class EventStore(Protocol):
    """Event 存储接口

    事件表 append-only：只允许插入，不允许更新或删除。
    """

    async def append(
        self,
        session: str,
        type: EventType,
        action: str,
        meta: dict[str, Any] | None = None,
        data: str = "",
    ) -> Event:
        """追加事件，返回带 id 的 Event"""
        ...

    async def replay(self, session: str) -> list[Event]:
        """按追加顺序返回会话全部事件"""
        ...

    async def replay_after(self, session: str, after_id: int) -> list[Event]:
        """返回 id 大于 after_id 的增量事件"""
        ...

    async def close(self) -> None:
        """释放底层资源（幂等）"""
        ...

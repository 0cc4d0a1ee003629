"""SessionStore -- 会话级读写门面

在 EventStore 之上提供按动作划分的写入操作（task/note/iteration/control），
以及基于重放的状态读取。写入后通知已注册的 listener。
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field
from ulid import ULID

from .config import get_db_path
from .exceptions import TaskNotFoundError
from .models.enums import (
    ControlAction,
    EventType,
    IterationAction,
    NoteAction,
    NoteType,
    TaskAction,
    TaskStatus,
)
from .models.event import Event
from .models.note import Note
from .models.payloads import (
    IterationErrorMeta,
    IterationMeta,
    IterationSummaryMeta,
    NoteAddMeta,
    TaskAddMeta,
    TaskDependsMeta,
    TaskPriorityMeta,
    TaskStatusMeta,
)
from .models.state import SessionState
from .models.task import Task
from .projection import apply_event, check_complete, next_task, rebuild
from .store import create_event_store
from .store.protocols import EventStore

log = structlog.get_logger()

EventListener = Callable[[Event], None]


class TaskAddParams(BaseModel):
    """批量添加任务的单项参数"""

    content: str = Field(min_length=1)
    status: TaskStatus = Field(default=TaskStatus.REMAINING)
    priority: int = Field(default=0)
    depends_on: list[str] = Field(default_factory=list)


class SessionStore:
    """Session Store

    Store 独占事件持久化与 projection；
    Orchestrator 与工具前端通过此类读写会话。
    """

    def __init__(self, event_store: EventStore) -> None:
        self._events = event_store
        self._listeners: list[EventListener] = []

    @property
    def event_store(self) -> EventStore:
        return self._events

    def add_listener(self, listener: EventListener) -> None:
        """注册事件监听器，每个事件提交后同步调用"""
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def append(
        self,
        session: str,
        type: EventType,
        action: str,
        meta: dict[str, Any] | None = None,
        data: str = "",
    ) -> Event:
        """追加一条事件并通知 listener"""
        event = await self._events.append(session, type, action, meta, data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # listener 失败不影响写入方
                log.warning(
                    "event_listener_failed",
                    event_id=event.id,
                    error_type=e.__class__.__name__,
                    error=str(e),
                )
        return event

    async def replay(self, session: str) -> list[Event]:
        return await self._events.replay(session)

    async def load_state(self, session: str) -> SessionState:
        """重放事件，返回当前 projection"""
        return await rebuild(self._events, session)

    async def next_task(self, session: str) -> Task | None:
        return next_task(await self.load_state(session))

    # ---- task ----

    async def task_add(
        self,
        session: str,
        content: str,
        status: TaskStatus = TaskStatus.REMAINING,
        priority: int = 0,
        depends_on: list[str] | None = None,
        iteration: int = 0,
    ) -> Task:
        """添加任务，ID 在此生成并写入 meta

        Raises:
            ValueError: content 为空
        """
        if not content.strip():
            raise ValueError("task content must not be empty")
        meta = TaskAddMeta(
            id=str(ULID()),
            status=status,
            priority=priority,
            depends_on=depends_on or [],
            iteration=iteration,
        )
        event = await self.append(
            session,
            EventType.TASK,
            TaskAction.ADD,
            meta.model_dump(mode="json"),
            content,
        )
        return apply_event(SessionState(), event).tasks[meta.id]

    async def task_batch_add(
        self,
        session: str,
        params: list[TaskAddParams],
        iteration: int = 0,
    ) -> list[Task]:
        """按顺序批量添加任务"""
        tasks = []
        for item in params:
            tasks.append(
                await self.task_add(
                    session,
                    item.content,
                    status=item.status,
                    priority=item.priority,
                    depends_on=item.depends_on,
                    iteration=iteration,
                )
            )
        return tasks

    async def task_status(self, session: str, task_id: str, status: TaskStatus) -> Task:
        """更新任务状态

        Raises:
            TaskNotFoundError: 任务不存在
        """
        await self._require_task(session, task_id)
        meta = TaskStatusMeta(id=task_id, status=status)
        await self.append(
            session, EventType.TASK, TaskAction.STATUS, meta.model_dump(mode="json")
        )
        return await self._require_task(session, task_id)

    async def task_priority(self, session: str, task_id: str, priority: int) -> Task:
        """更新任务优先级（projection 中截断到 [0,4]）"""
        await self._require_task(session, task_id)
        meta = TaskPriorityMeta(id=task_id, priority=priority)
        await self.append(
            session, EventType.TASK, TaskAction.PRIORITY, meta.model_dump(mode="json")
        )
        return await self._require_task(session, task_id)

    async def task_depends(self, session: str, task_id: str, depends_on: list[str]) -> Task:
        """替换任务的依赖集合（不做环检测）"""
        await self._require_task(session, task_id)
        meta = TaskDependsMeta(id=task_id, depends_on=depends_on)
        await self.append(
            session, EventType.TASK, TaskAction.DEPENDS, meta.model_dump(mode="json")
        )
        return await self._require_task(session, task_id)

    async def _require_task(self, session: str, task_id: str) -> Task:
        state = await self.load_state(session)
        task = state.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    # ---- note ----

    async def note_add(
        self,
        session: str,
        content: str,
        note_type: NoteType,
        iteration: int = 0,
    ) -> Note:
        """添加笔记"""
        if not content.strip():
            raise ValueError("note content must not be empty")
        meta = NoteAddMeta(id=str(ULID()), type=note_type, iteration=iteration)
        event = await self.append(
            session, EventType.NOTE, NoteAction.ADD, meta.model_dump(mode="json"), content
        )
        return apply_event(SessionState(), event).notes[-1]

    # ---- iteration ----

    async def iteration_start(self, session: str, number: int) -> Event:
        return await self.append(
            session,
            EventType.ITERATION,
            IterationAction.START,
            IterationMeta(number=number).model_dump(),
            f"Iteration {number} started",
        )

    async def iteration_complete(self, session: str, number: int) -> Event:
        return await self.append(
            session,
            EventType.ITERATION,
            IterationAction.COMPLETE,
            IterationMeta(number=number).model_dump(),
            f"Iteration {number} completed",
        )

    async def iteration_error(self, session: str, number: int, error: str) -> Event:
        return await self.append(
            session,
            EventType.ITERATION,
            IterationAction.ERROR,
            IterationErrorMeta(number=number, error=error).model_dump(),
            f"Iteration {number} failed",
        )

    async def iteration_summary(
        self,
        session: str,
        number: int,
        summary: str,
        tasks_worked: list[str] | None = None,
    ) -> Event:
        meta = IterationSummaryMeta(
            number=number, summary=summary, tasks_worked=tasks_worked or []
        )
        return await self.append(
            session,
            EventType.ITERATION,
            IterationAction.SUMMARY,
            meta.model_dump(),
            f"Iteration {number}: {summary}",
        )

    # ---- control ----

    async def session_complete(self, session: str) -> SessionState:
        """标记会话完成

        重复调用不重复写入事件。

        Raises:
            SessionIncompleteError: 存在未 completed 的任务
        """
        state = await self.load_state(session)
        check_complete(state)
        if state.control.complete:
            log.debug("session_already_complete", session=session)
            return state
        await self.append(session, EventType.CONTROL, ControlAction.SESSION_COMPLETE)
        return await self.load_state(session)

    async def pause(self, session: str) -> Event:
        return await self.append(session, EventType.CONTROL, ControlAction.PAUSE)

    async def resume(self, session: str) -> Event:
        return await self.append(session, EventType.CONTROL, ControlAction.RESUME)

    async def reset(self, session: str) -> Event:
        """重置会话 projection；事件日志保留"""
        return await self.append(session, EventType.CONTROL, ControlAction.RESET)

    async def close(self) -> None:
        """释放底层存储（幂等）"""
        await self._events.close()


async def open_session_store(db_path: str | Path | None = None) -> SessionStore:
    """打开（必要时创建）SQLite 会话存储

    Args:
        db_path: 数据库路径，None 时使用 get_db_path()
    """
    event_store = await create_event_store(db_path or get_db_path())
    return SessionStore(event_store)

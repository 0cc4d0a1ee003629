"""Projection 模块 -- 事件流折叠为会话状态

apply_event 是纯函数：(旧状态, 事件) -> 新状态，不修改输入。
未知 (type, action) 组合与 meta 不合法的事件被忽略（前向兼容），
因此对同一事件序列的重放总是得到相同结果，且与分批方式无关。
"""

import time
from collections.abc import Callable, Iterable
from typing import Any

import structlog
from pydantic import ValidationError

from .exceptions import SessionIncompleteError
from .models.enums import (
    ControlAction,
    EventType,
    IterationAction,
    NoteAction,
    NoteType,
    TaskAction,
    TaskStatus,
    clamp_priority,
)
from .models.event import Event
from .models.iteration import IterationRecord
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
from .models.state import ControlState, SessionState
from .models.task import Task
from .store.protocols import EventStore

log = structlog.get_logger()

# handler 返回需要覆盖的 SessionState 字段，空 dict 表示状态不变
_Handler = Callable[[SessionState, Event], dict[str, Any]]


def _dedupe(ids: Iterable[str]) -> list[str]:
    """去重并保持首次出现顺序"""
    return list(dict.fromkeys(i for i in ids if i))


def _replace_task(state: SessionState, task: Task) -> dict[str, Any]:
    return {"tasks": {**state.tasks, task.id: task}}


def _task_add(state: SessionState, event: Event) -> dict[str, Any]:
    meta = TaskAddMeta.model_validate(event.meta)
    if meta.id in state.tasks:
        # 重复 ID 的 add 不覆盖已有任务
        return {}
    task = Task(
        id=meta.id,
        content=event.data,
        status=meta.status,
        priority=clamp_priority(meta.priority),
        dependencies=_dedupe(meta.depends_on),
        seq=event.id,
        iteration=meta.iteration,
        created_at=event.ts,
        updated_at=event.ts,
    )
    return _replace_task(state, task)


def _task_status(state: SessionState, event: Event) -> dict[str, Any]:
    meta = TaskStatusMeta.model_validate(event.meta)
    task = state.tasks.get(meta.id)
    if task is None:
        return {}
    return _replace_task(
        state, task.model_copy(update={"status": meta.status, "updated_at": event.ts})
    )


def _task_priority(state: SessionState, event: Event) -> dict[str, Any]:
    meta = TaskPriorityMeta.model_validate(event.meta)
    task = state.tasks.get(meta.id)
    if task is None:
        return {}
    return _replace_task(
        state,
        task.model_copy(
            update={"priority": clamp_priority(meta.priority), "updated_at": event.ts}
        ),
    )


def _task_depends(state: SessionState, event: Event) -> dict[str, Any]:
    meta = TaskDependsMeta.model_validate(event.meta)
    task = state.tasks.get(meta.id)
    if task is None:
        return {}
    return _replace_task(
        state,
        task.model_copy(
            update={"dependencies": _dedupe(meta.depends_on), "updated_at": event.ts}
        ),
    )


def _note_add(state: SessionState, event: Event) -> dict[str, Any]:
    meta = NoteAddMeta.model_validate(event.meta)
    note = Note(
        id=meta.id,
        type=meta.type,
        content=event.data,
        iteration=meta.iteration,
        ts=event.ts,
    )
    return {"notes": [*state.notes, note]}


def _iteration_record(state: SessionState, number: int) -> IterationRecord:
    return state.iterations.get(number) or IterationRecord(number=number)


def _replace_iteration(state: SessionState, record: IterationRecord) -> dict[str, Any]:
    return {"iterations": {**state.iterations, record.number: record}}


def _iteration_start(state: SessionState, event: Event) -> dict[str, Any]:
    meta = IterationMeta.model_validate(event.meta)
    record = _iteration_record(state, meta.number)
    return _replace_iteration(state, record.model_copy(update={"started_at": event.ts}))


def _iteration_complete(state: SessionState, event: Event) -> dict[str, Any]:
    meta = IterationMeta.model_validate(event.meta)
    record = _iteration_record(state, meta.number)
    return _replace_iteration(
        state,
        record.model_copy(update={"ended_at": event.ts, "completed": True, "error": ""}),
    )


def _iteration_error(state: SessionState, event: Event) -> dict[str, Any]:
    meta = IterationErrorMeta.model_validate(event.meta)
    record = _iteration_record(state, meta.number)
    return _replace_iteration(
        state,
        record.model_copy(
            update={"ended_at": event.ts, "completed": False, "error": meta.error}
        ),
    )


def _iteration_summary(state: SessionState, event: Event) -> dict[str, Any]:
    meta = IterationSummaryMeta.model_validate(event.meta)
    record = _iteration_record(state, meta.number)
    return _replace_iteration(
        state,
        record.model_copy(
            update={
                "summary": meta.summary,
                "tasks_worked": list(meta.tasks_worked),
                "ts": event.ts,
            }
        ),
    )


def _control_complete(state: SessionState, event: Event) -> dict[str, Any]:
    return {"control": state.control.model_copy(update={"complete": True})}


def _control_pause(state: SessionState, event: Event) -> dict[str, Any]:
    return {"control": state.control.model_copy(update={"paused": True})}


def _control_resume(state: SessionState, event: Event) -> dict[str, Any]:
    return {"control": state.control.model_copy(update={"paused": False})}


def _control_reset(state: SessionState, event: Event) -> dict[str, Any]:
    # 仅清空 projection；原始事件日志保留
    return {
        "tasks": {},
        "notes": [],
        "iterations": {},
        "control": ControlState(
            paused=state.control.paused,
            reset_count=state.control.reset_count + 1,
        ),
    }


_HANDLERS: dict[tuple[EventType, str], _Handler] = {
    (EventType.TASK, TaskAction.ADD): _task_add,
    (EventType.TASK, TaskAction.STATUS): _task_status,
    (EventType.TASK, TaskAction.PRIORITY): _task_priority,
    (EventType.TASK, TaskAction.DEPENDS): _task_depends,
    (EventType.NOTE, NoteAction.ADD): _note_add,
    (EventType.ITERATION, IterationAction.START): _iteration_start,
    (EventType.ITERATION, IterationAction.COMPLETE): _iteration_complete,
    (EventType.ITERATION, IterationAction.ERROR): _iteration_error,
    (EventType.ITERATION, IterationAction.SUMMARY): _iteration_summary,
    (EventType.CONTROL, ControlAction.SESSION_COMPLETE): _control_complete,
    (EventType.CONTROL, ControlAction.PAUSE): _control_pause,
    (EventType.CONTROL, ControlAction.RESUME): _control_resume,
    (EventType.CONTROL, ControlAction.RESET): _control_reset,
}


def apply_event(state: SessionState, event: Event) -> SessionState:
    """将单个事件应用到会话状态

    Args:
        state: 当前状态（不会被修改）
        event: 要应用的事件

    Returns:
        新的 SessionState
    """
    handler = _HANDLERS.get((event.type, event.action))
    updates: dict[str, Any] = {}
    if handler is None:
        log.debug(
            "projection_event_ignored",
            event_id=event.id,
            type=event.type.value,
            action=event.action,
        )
    else:
        try:
            updates = handler(state, event)
        except ValidationError as e:
            log.warning(
                "projection_invalid_meta",
                event_id=event.id,
                type=event.type.value,
                action=event.action,
                error_count=e.error_count(),
            )
            updates = {}
    updates["last_event_id"] = event.id
    if not state.session:
        updates["session"] = event.session
    return state.model_copy(update=updates)


def project(events: Iterable[Event], state: SessionState | None = None) -> SessionState:
    """从事件序列折叠出会话状态

    对前缀折叠后再折叠后缀，与一次性折叠整个序列结果相同。

    Args:
        events: 按追加顺序排列的事件
        state: 起始状态，None 表示空状态

    Returns:
        折叠后的 SessionState
    """
    current = state if state is not None else SessionState()
    for event in events:
        current = apply_event(current, event)
    return current


async def rebuild(event_store: EventStore, session: str) -> SessionState:
    """重放会话全部事件，重建 projection

    Args:
        event_store: EventStore 实例
        session: 会话名称

    Returns:
        重建后的 SessionState
    """
    start_time = time.monotonic()
    events = await event_store.replay(session)
    state = project(events, SessionState(session=session))
    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    log.debug(
        "projection_rebuild_completed",
        session=session,
        event_count=len(events),
        task_count=len(state.tasks),
        elapsed_ms=elapsed_ms,
    )
    return state


async def refresh(event_store: EventStore, state: SessionState) -> SessionState:
    """仅应用 state.last_event_id 之后的增量事件"""
    events = await event_store.replay_after(state.session, state.last_event_id)
    return project(events, state)


def is_unblocked(state: SessionState, task: Task) -> bool:
    """依赖全部 completed 时返回 True；依赖不存在的任务视为永久阻塞"""
    for dep_id in task.dependencies:
        dep = state.tasks.get(dep_id)
        if dep is None or dep.status != TaskStatus.COMPLETED:
            return False
    return True


def next_task(state: SessionState) -> Task | None:
    """返回下一个可执行任务

    候选：status 为 remaining 且依赖全部 completed。
    取 priority 最高者，同优先级按创建顺序。没有候选时返回 None。
    """
    eligible = [
        task
        for task in state.tasks.values()
        if task.status == TaskStatus.REMAINING and is_unblocked(state, task)
    ]
    if not eligible:
        return None
    return min(eligible, key=lambda t: (-t.priority, t.seq))


def check_complete(state: SessionState) -> None:
    """校验会话是否可以标记完成

    Raises:
        SessionIncompleteError: 存在未 completed 的任务
    """
    outstanding = [
        (task.id, task.content)
        for task in state.tasks.values()
        if task.status != TaskStatus.COMPLETED
    ]
    if outstanding:
        raise SessionIncompleteError(outstanding)


def tasks_by_status(state: SessionState) -> dict[TaskStatus, list[Task]]:
    """按状态分组，组内保持创建顺序"""
    groups: dict[TaskStatus, list[Task]] = {status: [] for status in TaskStatus}
    for task in state.tasks.values():
        groups[task.status].append(task)
    return groups


def notes_by_type(state: SessionState, note_type: NoteType | None = None) -> list[Note]:
    """按类型筛选笔记，None 返回全部"""
    if note_type is None:
        return list(state.notes)
    return [note for note in state.notes if note.type == note_type]


def next_iteration_number(state: SessionState) -> int:
    """恢复运行时的下一个迭代序号"""
    return max(state.iterations, default=0) + 1

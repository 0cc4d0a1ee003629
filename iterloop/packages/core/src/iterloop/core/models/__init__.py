"""iterloop Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    PRIORITY_MAX,
    PRIORITY_MIN,
    ControlAction,
    EventType,
    IterationAction,
    NoteAction,
    NoteType,
    TaskAction,
    TaskStatus,
    clamp_priority,
)
from .event import Event
from .iteration import IterationRecord
from .note import Note
from .payloads import (
    IterationErrorMeta,
    IterationMeta,
    IterationSummaryMeta,
    NoteAddMeta,
    TaskAddMeta,
    TaskDependsMeta,
    TaskPriorityMeta,
    TaskStatusMeta,
)
from .state import ControlState, SessionState
from .task import Task

__all__ = [
    # 枚举
    "EventType",
    "TaskAction",
    "NoteAction",
    "IterationAction",
    "ControlAction",
    "TaskStatus",
    "NoteType",
    "PRIORITY_MIN",
    "PRIORITY_MAX",
    "clamp_priority",
    # Event
    "Event",
    # Projection
    "Task",
    "Note",
    "IterationRecord",
    "ControlState",
    "SessionState",
    # Meta
    "TaskAddMeta",
    "TaskStatusMeta",
    "TaskPriorityMeta",
    "TaskDependsMeta",
    "NoteAddMeta",
    "IterationMeta",
    "IterationErrorMeta",
    "IterationSummaryMeta",
]

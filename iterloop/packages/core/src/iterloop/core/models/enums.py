"""枚举定义 -- 事件类型、动作、任务状态、笔记类型

事件按 (session, type) 分区，action 为自由字符串，
此处列出本系统自身写入和识别的动作。
"""

from enum import StrEnum


class EventType(StrEnum):
    """事件类型"""

    TASK = "task"
    NOTE = "note"
    ITERATION = "iteration"
    CONTROL = "control"


class TaskAction(StrEnum):
    """task 事件动作"""

    ADD = "add"
    STATUS = "status"
    PRIORITY = "priority"
    DEPENDS = "depends"


class NoteAction(StrEnum):
    """note 事件动作"""

    ADD = "add"


class IterationAction(StrEnum):
    """iteration 事件动作"""

    START = "start"
    COMPLETE = "complete"
    ERROR = "error"
    SUMMARY = "summary"


class ControlAction(StrEnum):
    """control 事件动作 -- 仅 Orchestrator 与 session_complete 工具写入"""

    SESSION_COMPLETE = "session_complete"
    PAUSE = "pause"
    RESUME = "resume"
    RESET = "reset"


class TaskStatus(StrEnum):
    """Task 状态"""

    REMAINING = "remaining"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class NoteType(StrEnum):
    """Note 类型"""

    LEARNING = "learning"
    STUCK = "stuck"
    TIP = "tip"
    DECISION = "decision"


# 优先级范围，4 为最高
PRIORITY_MIN = 0
PRIORITY_MAX = 4


def clamp_priority(priority: int) -> int:
    """将优先级截断到 [PRIORITY_MIN, PRIORITY_MAX]

    Args:
        priority: 原始优先级

    Returns:
        截断后的优先级
    """
    return max(PRIORITY_MIN, min(PRIORITY_MAX, priority))

"""Event meta 子类型

所有事件的结构化 meta 定义。写入时构建，重放时校验。
新增字段均需默认值，确保旧事件可正常反序列化。
"""

from pydantic import BaseModel, Field

from .enums import NoteType, TaskStatus


class TaskAddMeta(BaseModel):
    """task.add 事件 meta"""

    id: str
    status: TaskStatus = Field(default=TaskStatus.REMAINING)
    priority: int = Field(default=0, description="超出 [0,4] 的值在 projection 中截断")
    depends_on: list[str] = Field(default_factory=list)
    iteration: int = Field(default=0)


class TaskStatusMeta(BaseModel):
    """task.status 事件 meta"""

    id: str
    status: TaskStatus


class TaskPriorityMeta(BaseModel):
    """task.priority 事件 meta"""

    id: str
    priority: int


class TaskDependsMeta(BaseModel):
    """task.depends 事件 meta -- 整体替换依赖集合"""

    id: str
    depends_on: list[str] = Field(default_factory=list)


class NoteAddMeta(BaseModel):
    """note.add 事件 meta"""

    id: str
    type: NoteType
    iteration: int = Field(default=0)


class IterationMeta(BaseModel):
    """iteration.start / iteration.complete 事件 meta"""

    number: int = Field(ge=1)


class IterationErrorMeta(BaseModel):
    """iteration.error 事件 meta"""

    number: int = Field(ge=1)
    error: str = Field(default="")


class IterationSummaryMeta(BaseModel):
    """iteration.summary 事件 meta"""

    number: int = Field(ge=1)
    summary: str
    tasks_worked: list[str] = Field(default_factory=list)

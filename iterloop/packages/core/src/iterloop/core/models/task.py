"""Task Domain Model

Task 是 task.* 事件的物化视图（projection），
所有变更必须通过写入事件触发。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import PRIORITY_MAX, PRIORITY_MIN, TaskStatus


class Task(BaseModel):
    """Task 数据模型"""

    id: str = Field(description="会话内唯一标识，ULID 格式")
    content: str = Field(description="任务内容")
    status: TaskStatus = Field(default=TaskStatus.REMAINING, description="当前状态")
    priority: int = Field(
        default=0,
        ge=PRIORITY_MIN,
        le=PRIORITY_MAX,
        description="优先级，4 为最高",
    )
    dependencies: list[str] = Field(
        default_factory=list,
        description="必须先 completed 的任务 ID（去重、保持顺序）",
    )
    seq: int = Field(description="创建事件的 id，用于同优先级排序")
    iteration: int = Field(default=0, description="创建时所在迭代")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")

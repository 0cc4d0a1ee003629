"""IterationRecord Domain Model

由 iteration.* 事件构建，summary 回读用于后续 prompt 的 history。
"""

from datetime import datetime

from pydantic import BaseModel, Field


class IterationRecord(BaseModel):
    """单次迭代记录"""

    number: int = Field(ge=1, description="迭代序号，从 1 开始")
    summary: str = Field(default="", description="迭代摘要")
    tasks_worked: list[str] = Field(default_factory=list, description="本次处理的任务 ID")
    ts: datetime | None = Field(default=None, description="摘要写入时间")
    started_at: datetime | None = Field(default=None, description="开始时间")
    ended_at: datetime | None = Field(default=None, description="结束时间")
    completed: bool = Field(default=False, description="是否正常结束")
    error: str = Field(default="", description="失败时的错误文本")

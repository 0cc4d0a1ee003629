"""Event Domain Model

事件表 append-only，不允许更新或删除。
id 由 store 在追加时分配，全局单调递增；同一 session 内顺序即 id 顺序。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import EventType


class Event(BaseModel):
    """Event 数据模型

    不可变记录。重放同一 session 的全部事件必须得到确定的 projection。
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(description="store 分配的单调递增序号")
    ts: datetime = Field(description="事件时间戳")
    session: str = Field(description="会话名称（分区键）")
    type: EventType = Field(description="事件类型")
    action: str = Field(description="动作，如 add/status/priority/complete")
    meta: dict[str, Any] = Field(default_factory=dict, description="动作相关的结构化数据")
    data: str = Field(default="", description="主文本内容")

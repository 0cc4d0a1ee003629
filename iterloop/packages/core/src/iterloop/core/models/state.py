"""SessionState -- 会话 projection 根对象"""

from pydantic import BaseModel, Field

from .iteration import IterationRecord
from .note import Note
from .task import Task


class ControlState(BaseModel):
    """会话控制状态（由 control.* 事件派生）"""

    complete: bool = Field(default=False, description="会话是否已完成")
    paused: bool = Field(default=False, description="是否处于暂停")
    reset_count: int = Field(default=0, description="reset 次数")


class SessionState(BaseModel):
    """会话当前状态

    tasks 按创建顺序保存（dict 插入序）。
    """

    session: str = Field(default="", description="会话名称")
    tasks: dict[str, Task] = Field(default_factory=dict)
    notes: list[Note] = Field(default_factory=list)
    iterations: dict[int, IterationRecord] = Field(default_factory=dict)
    control: ControlState = Field(default_factory=ControlState)
    last_event_id: int = Field(default=0, description="已应用的最后一个事件 id")

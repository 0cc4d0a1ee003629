"""Note Domain Model -- 创建后不可变"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import NoteType


class Note(BaseModel):
    """Note 数据模型"""

    id: str = Field(description="唯一标识，ULID 格式")
    type: NoteType = Field(description="笔记类型")
    content: str = Field(description="笔记内容")
    iteration: int = Field(default=0, description="记录时所在迭代")
    ts: datetime = Field(description="记录时间")

"""数据模型 -- Runner 回调事件

一次 prompt 期间按流顺序产生：文本块、思考块、工具调用生命周期、
文件变更，最后以 FinishEvent 结束。
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class StopReason(StrEnum):
    """prompt 终止原因

    前四项由 agent 返回；cancelled / error 由 Runner 在请求失败时给出。
    """

    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    MAX_TURN_REQUESTS = "max_turn_requests"
    REFUSAL = "refusal"
    CANCELLED = "cancelled"
    ERROR = "error"


class ToolCallStatus(StrEnum):
    """工具调用状态"""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class DiffBlock(BaseModel):
    """工具调用 content 中 type=diff 的块"""

    path: str = Field(description="文件绝对路径")
    old_text: str = Field(default="", description="修改前文本，空表示新建")
    new_text: str = Field(default="", description="修改后文本")


class FileDiff(BaseModel):
    """rawOutput.metadata.filediff 中的统计信息"""

    file: str = Field(description="文件绝对路径")
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)


class ToolCallEvent(BaseModel):
    """工具调用生命周期事件 -- pending -> in_progress -> completed"""

    tool_call_id: str = Field(description="跨 update 稳定的调用 ID")
    title: str = Field(default="", description="工具名（如 bash）")
    status: str = Field(default=ToolCallStatus.PENDING)
    kind: str = Field(default="", description="工具类别（execute / edit / read ...）")
    raw_input: dict[str, Any] = Field(default_factory=dict)
    output: str = Field(default="", description="completed 时的工具输出")
    diff_blocks: list[DiffBlock] = Field(default_factory=list)
    file_diff: FileDiff | None = Field(default=None)


class FileChange(BaseModel):
    """edit 类工具调用完成后抽取出的文件变更"""

    abs_path: str
    is_new: bool = Field(default=False)
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)


class FinishEvent(BaseModel):
    """prompt 结束事件"""

    stop_reason: str = Field(description="StopReason 值或 agent 返回的原始字符串")
    error: str = Field(default="", description="失败时的错误文本")
    duration_ms: int = Field(default=0, ge=0, description="prompt 耗时（毫秒）")
    model: str = Field(default="", description="使用的模型 ID")
    provider: str = Field(default="", description="由模型 ID 推导的 provider 名称")

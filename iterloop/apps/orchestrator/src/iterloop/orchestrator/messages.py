"""UI 消息模型 -- Orchestrator 发往 UI sink 的事件

所有消息带 kind 判别字段与时间戳，可直接 model_dump_json 推送给前端。
"""

from datetime import UTC, datetime
from typing import Literal

from iterloop.runner.models import FileChange, FinishEvent, ToolCallEvent
from pydantic import BaseModel, Field


class UIMessage(BaseModel):
    """消息基类"""

    kind: str
    ts: datetime = Field(default_factory=lambda: datetime.now(UTC))


class IterationStarted(UIMessage):
    kind: Literal["iteration_started"] = "iteration_started"
    number: int


class IterationFinished(UIMessage):
    kind: Literal["iteration_finished"] = "iteration_finished"
    number: int
    error: str = Field(default="", description="失败时的错误文本")
    duration_ms: int = Field(default=0, ge=0)


class AgentText(UIMessage):
    kind: Literal["agent_text"] = "agent_text"
    text: str


class AgentThinking(UIMessage):
    kind: Literal["agent_thinking"] = "agent_thinking"
    text: str


class ToolCallUpdate(UIMessage):
    kind: Literal["tool_call"] = "tool_call"
    tool_call: ToolCallEvent


class FileChanged(UIMessage):
    kind: Literal["file_change"] = "file_change"
    change: FileChange


class AgentFinished(UIMessage):
    kind: Literal["agent_finished"] = "agent_finished"
    finish: FinishEvent


class LoopPaused(UIMessage):
    kind: Literal["paused"] = "paused"


class LoopResumed(UIMessage):
    kind: Literal["resumed"] = "resumed"


class SessionReset(UIMessage):
    kind: Literal["session_reset"] = "session_reset"


class SessionCompleted(UIMessage):
    kind: Literal["session_complete"] = "session_complete"
    session: str


class LoopError(UIMessage):
    kind: Literal["error"] = "error"
    error: str
    iteration: int = Field(default=0)

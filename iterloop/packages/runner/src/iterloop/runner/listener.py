"""CallbackListener -- 将可选回调函数适配为 RunnerListener"""

from collections.abc import Callable

from .models import FileChange, FinishEvent, ToolCallEvent


class CallbackListener:
    """未提供的回调静默忽略"""

    def __init__(
        self,
        on_text: Callable[[str], None] | None = None,
        on_tool_call: Callable[[ToolCallEvent], None] | None = None,
        on_thinking: Callable[[str], None] | None = None,
        on_file_change: Callable[[FileChange], None] | None = None,
        on_finish: Callable[[FinishEvent], None] | None = None,
    ) -> None:
        self._on_text = on_text
        self._on_tool_call = on_tool_call
        self._on_thinking = on_thinking
        self._on_file_change = on_file_change
        self._on_finish = on_finish

    def on_text(self, text: str) -> None:
        if self._on_text is not None:
            self._on_text(text)

    def on_tool_call(self, event: ToolCallEvent) -> None:
        if self._on_tool_call is not None:
            self._on_tool_call(event)

    def on_thinking(self, text: str) -> None:
        if self._on_thinking is not None:
            self._on_thinking(text)

    def on_file_change(self, change: FileChange) -> None:
        if self._on_file_change is not None:
            self._on_file_change(change)

    def on_finish(self, event: FinishEvent) -> None:
        if self._on_finish is not None:
            self._on_finish(event)

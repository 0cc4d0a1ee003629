"""UIHub / ConsoleSink 测试"""

import io

from iterloop.orchestrator.messages import (
    AgentFinished,
    AgentText,
    AgentThinking,
    FileChanged,
    IterationFinished,
    IterationStarted,
    LoopPaused,
    ToolCallUpdate,
)
from iterloop.orchestrator.services.ui_hub import ConsoleSink, UIHub
from iterloop.runner.models import FileChange, FinishEvent, ToolCallEvent


class _FailingSink:
    def send(self, message) -> None:
        raise RuntimeError("sink broken")


class TestUIHub:
    async def test_broadcast_to_all_subscribers(self):
        hub = UIHub()
        q1 = await hub.subscribe()
        q2 = await hub.subscribe()

        hub.send(IterationStarted(number=1))

        assert (await q1.get()).number == 1
        assert (await q2.get()).number == 1

    async def test_unsubscribe(self):
        hub = UIHub()
        queue = await hub.subscribe()
        await hub.unsubscribe(queue)

        hub.send(LoopPaused())
        assert queue.empty()
        assert hub.subscriber_count == 0

    async def test_full_queue_dropped(self):
        hub = UIHub(queue_maxsize=1)
        slow = await hub.subscribe()
        fast = await hub.subscribe()

        hub.send(AgentText(text="a"))
        await fast.get()
        hub.send(AgentText(text="b"))

        assert hub.subscriber_count == 1
        assert slow.qsize() == 1
        assert (await fast.get()).text == "b"

    async def test_failing_sink_does_not_block_others(self):
        hub = UIHub()
        received = []

        class _Collect:
            def send(self, message) -> None:
                received.append(message)

        hub.add_sink(_FailingSink())
        hub.add_sink(_Collect())
        hub.send(LoopPaused())

        assert [m.kind for m in received] == ["paused"]


class TestConsoleSink:
    def _sink(self, show_thinking: bool = False) -> tuple[ConsoleSink, io.StringIO]:
        stream = io.StringIO()
        return ConsoleSink(stream=stream, show_thinking=show_thinking), stream

    def test_agent_text_streamed_then_line_break(self):
        sink, stream = self._sink()
        sink.send(AgentText(text="Hello"))
        sink.send(AgentText(text=" world"))
        sink.send(IterationFinished(number=1, duration_ms=1500))

        assert stream.getvalue() == "Hello world\n=== iteration 1 done in 1.5s ===\n"

    def test_thinking_hidden_by_default(self):
        sink, stream = self._sink()
        sink.send(AgentThinking(text="pondering"))
        assert stream.getvalue() == ""

        sink, stream = self._sink(show_thinking=True)
        sink.send(AgentThinking(text="pondering\n"))
        assert stream.getvalue() == "· pondering\n"

    def test_tool_call_only_when_finished(self):
        sink, stream = self._sink()
        sink.send(ToolCallUpdate(tool_call=ToolCallEvent(tool_call_id="c1", title="bash")))
        sink.send(
            ToolCallUpdate(tool_call=ToolCallEvent(tool_call_id="c1", title="bash", status="completed"))
        )
        assert stream.getvalue() == "[tool] bash (completed)\n"

    def test_file_change_line(self):
        sink, stream = self._sink()
        sink.send(FileChanged(change=FileChange(abs_path="/w/a.py", is_new=True, additions=4)))
        assert stream.getvalue() == "[file] + /w/a.py (+4/-0)\n"

    def test_normal_finish_is_silent(self):
        sink, stream = self._sink()
        sink.send(AgentFinished(finish=FinishEvent(stop_reason="end_turn")))
        sink.send(AgentFinished(finish=FinishEvent(stop_reason="cancelled")))
        assert stream.getvalue() == "[agent] stopped: cancelled\n"

    def test_failed_iteration(self):
        sink, stream = self._sink()
        sink.send(IterationFinished(number=2, error="boom"))
        assert stream.getvalue() == "=== iteration 2 failed: boom ===\n"

"""AgentRunner 测试（内存 echo agent）

测试内容：
1. start / stop 生命周期与幂等
2. 每次迭代新建会话，hook 输出块位于 prompt 之前
3. 流事件按顺序回调（文本、思考、工具调用、文件变更、结束）
4. 各阶段失败映射为对应异常，on_finish 收到 stop_reason="error"
5. 取消：stop_reason="cancelled"，连接保持可用
6. 并发 prompt 被拒绝
7. 畸形消息被丢弃，reader 失败后 stop 仍成功
"""

import asyncio

import pytest
from iterloop.runner.config import RunnerConfig
from iterloop.runner.echo_agent import EchoAgentTransport
from iterloop.runner.exceptions import (
    AgentSpawnError,
    HandshakeError,
    ModelSetError,
    NoActiveSessionError,
    PromptError,
    RunnerBusyError,
    RunnerNotStartedError,
    SessionCreateError,
)
from iterloop.runner.listener import CallbackListener
from iterloop.runner.runner import AgentRunner


def _runner(config: RunnerConfig, listener, *agents: EchoAgentTransport) -> AgentRunner:
    """每次 start 依次使用给定的 agent"""
    queue = list(agents)
    return AgentRunner(config, listener, transport_factory=lambda: queue.pop(0))


class BadErrorCodeAgent(EchoAgentTransport):
    """错误响应中的 code 不是数字"""

    def _error(self, request_id, method):
        self._emit(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "error": {"code": "oops", "message": f"{method} failed"},
            }
        )


class GarbledAgent(EchoAgentTransport):
    """每个 session/update 之前先发送结构不合法的消息"""

    def _update(self, session_id, update):
        self._emit({"jsonrpc": "2.0", "method": "session/update", "params": [1]})
        self._emit(
            {
                "jsonrpc": "2.0",
                "method": "session/update",
                "params": {"sessionId": session_id, "update": "chunk"},
            }
        )
        self._emit({"jsonrpc": "2.0", "id": [1], "result": {}})
        self._outbox.put_nowait("[1, 2]")
        super()._update(session_id, update)


class UnreadableAgent(EchoAgentTransport):
    """收到第一条 session/update 时读取失败"""

    async def receive(self):
        line = await super().receive()
        if line is not None and "session/update" in line:
            raise ValueError("garbled stream")
        return line


class TestLifecycle:
    async def test_start_and_run(self, runner_config, listener, echo_agent):
        runner = _runner(runner_config, listener, echo_agent)
        await runner.start()
        assert runner.started is True

        await runner.run_iteration("do the work")

        assert listener.of("text") == ["Echo: do the work"]
        finish = listener.of("finish")[0]
        assert finish.stop_reason == "end_turn"
        assert finish.error == ""
        await runner.stop()
        assert runner.started is False
        assert echo_agent.closed is True

    async def test_start_twice_is_noop(self, runner_config, listener, echo_agent):
        runner = _runner(runner_config, listener, echo_agent)
        await runner.start()
        await runner.start()
        assert runner.started is True
        await runner.stop()

    async def test_stop_without_start(self, runner_config, listener):
        runner = _runner(runner_config, listener)
        await runner.stop()
        await runner.stop()
        assert runner.started is False

    async def test_concurrent_stop(self, runner_config, listener, echo_agent):
        runner = _runner(runner_config, listener, echo_agent)
        await runner.start()
        await asyncio.gather(runner.stop(), runner.stop(), runner.stop())
        assert runner.started is False
        assert echo_agent.closed is True

    async def test_run_before_start(self, runner_config, listener):
        runner = _runner(runner_config, listener)
        with pytest.raises(RunnerNotStartedError):
            await runner.run_iteration("x")
        with pytest.raises(RunnerNotStartedError):
            await runner.send_messages(["x"])

    async def test_spawn_failure_leaves_not_started(self, runner_config, listener):
        runner = _runner(runner_config, listener, EchoAgentTransport(fail_open=True))
        with pytest.raises(AgentSpawnError):
            await runner.start()
        assert runner.started is False

    async def test_handshake_failure_leaves_not_started(self, runner_config, listener):
        agent = EchoAgentTransport(fail_methods={"initialize"})
        runner = _runner(runner_config, listener, agent)
        with pytest.raises(HandshakeError) as exc_info:
            await runner.start()

        assert runner.started is False
        assert exc_info.value.recoverable is False
        assert agent.closed is True


class TestSessions:
    async def test_fresh_session_per_iteration(self, runner_config, listener, echo_agent, tmp_path):
        runner = _runner(runner_config, listener, echo_agent)
        await runner.start()
        await runner.run_iteration("first")
        first_session = runner.session_id
        await runner.run_iteration("second")

        assert runner.session_id != first_session
        assert len(echo_agent.sessions) == 2
        assert echo_agent.sessions[0]["cwd"] == str(tmp_path)
        assert echo_agent.sessions[0]["mcpServers"] == []
        await runner.stop()

    async def test_hook_output_precedes_prompt(self, runner_config, listener, echo_agent):
        runner = _runner(runner_config, listener, echo_agent)
        await runner.start()
        await runner.run_iteration("main prompt", hook_output="hook text")
        await runner.run_iteration("only prompt")

        assert echo_agent.prompts == [["hook text", "main prompt"], ["only prompt"]]
        await runner.stop()

    async def test_model_and_mcp_server(self, tmp_path, listener, echo_agent):
        config = RunnerConfig(
            agent_mode="echo",
            work_dir=str(tmp_path),
            model="anthropic/claude-sonnet-4-5",
            mcp_url="http://localhost:9000/mcp",
            mcp_name="tools",
        )
        runner = _runner(config, listener, echo_agent)
        await runner.start()
        await runner.run_iteration("go")

        assert echo_agent.models == ["anthropic/claude-sonnet-4-5"]
        assert echo_agent.sessions[0]["mcpServers"] == [
            {"type": "http", "name": "tools", "url": "http://localhost:9000/mcp", "headers": []}
        ]
        finish = listener.of("finish")[0]
        assert finish.model == "anthropic/claude-sonnet-4-5"
        assert finish.provider == "Anthropic"
        await runner.stop()

    async def test_send_messages_uses_current_session(self, runner_config, listener, echo_agent):
        runner = _runner(runner_config, listener, echo_agent)
        await runner.start()

        with pytest.raises(NoActiveSessionError):
            await runner.send_messages(["hello"])

        await runner.run_iteration("prompt")
        await runner.send_messages([])
        await runner.send_messages(["msg one", "msg two"])

        assert echo_agent.prompts[-1] == ["msg one", "msg two"]
        assert len(echo_agent.sessions) == 1
        assert len(listener.of("finish")) == 2
        await runner.stop()

    async def test_agent_stop_reason_passthrough(self, runner_config, listener):
        runner = _runner(runner_config, listener, EchoAgentTransport(stop_reason="max_tokens"))
        await runner.start()
        await runner.run_iteration("x")

        assert listener.of("finish")[0].stop_reason == "max_tokens"
        await runner.stop()


class TestStreaming:
    async def test_callbacks_in_stream_order(self, runner_config, listener):
        agent = EchoAgentTransport(
            updates=[
                {
                    "sessionUpdate": "agent_thought_chunk",
                    "content": {"type": "text", "text": "thinking..."},
                },
                {
                    "sessionUpdate": "tool_call",
                    "toolCallId": "call-1",
                    "title": "edit",
                    "kind": "edit",
                    "status": "pending",
                },
                {
                    "sessionUpdate": "tool_call_update",
                    "toolCallId": "call-1",
                    "status": "completed",
                    "content": [
                        {"type": "diff", "path": "/abs/new.py", "oldText": None, "newText": "x"}
                    ],
                },
                {"sessionUpdate": "plan", "entries": []},
            ]
        )
        runner = _runner(runner_config, listener, agent)
        await runner.start()
        await runner.run_iteration("edit a file")

        kinds = [kind for kind, _ in listener.events]
        assert kinds == [
            "text",
            "thinking",
            "tool_call",
            "tool_call",
            "file_change",
            "finish",
        ]
        tool_calls = listener.of("tool_call")
        assert [t.status for t in tool_calls] == ["pending", "completed"]
        assert tool_calls[1].title == "edit"
        change = listener.of("file_change")[0]
        assert change.abs_path == "/abs/new.py"
        assert change.is_new is True
        await runner.stop()

    async def test_permission_request_is_allowed(self, runner_config, listener):
        agent = EchoAgentTransport(request_permission=True)
        runner = _runner(runner_config, listener, agent)
        await runner.start()
        await runner.run_iteration("needs permission")

        assert agent.client_responses[0]["result"] == {
            "outcome": {"outcome": "selected", "optionId": "once"}
        }
        assert listener.of("finish")[0].stop_reason == "end_turn"
        await runner.stop()

    async def test_listener_failure_does_not_break_stream(self, runner_config, echo_agent):
        finishes = []

        def broken_text(text):
            raise RuntimeError("ui bug")

        listener = CallbackListener(on_text=broken_text, on_finish=finishes.append)
        runner = _runner(runner_config, listener, echo_agent)
        await runner.start()
        await runner.run_iteration("x")

        assert finishes[0].stop_reason == "end_turn"
        await runner.stop()


class TestFailures:
    async def test_session_create_failure(self, runner_config, listener):
        agent = EchoAgentTransport(fail_methods={"session/new"})
        runner = _runner(runner_config, listener, agent)
        await runner.start()

        with pytest.raises(SessionCreateError):
            await runner.run_iteration("x")

        finish = listener.of("finish")[0]
        assert finish.stop_reason == "error"
        assert "new session" in finish.error

        # 连接仍可用
        agent.fail_methods.clear()
        await runner.run_iteration("retry")
        assert listener.of("finish")[-1].stop_reason == "end_turn"
        await runner.stop()

    async def test_model_set_failure(self, tmp_path, listener):
        config = RunnerConfig(agent_mode="echo", work_dir=str(tmp_path), model="x/y")
        agent = EchoAgentTransport(fail_methods={"session/set_model"})
        runner = _runner(config, listener, agent)
        await runner.start()

        with pytest.raises(ModelSetError) as exc_info:
            await runner.run_iteration("x")

        assert exc_info.value.recoverable is True
        assert listener.of("finish")[0].stop_reason == "error"
        assert agent.prompts == []
        await runner.stop()

    async def test_prompt_failure(self, runner_config, listener):
        runner = _runner(
            runner_config, listener, EchoAgentTransport(fail_methods={"session/prompt"})
        )
        await runner.start()

        with pytest.raises(PromptError) as exc_info:
            await runner.run_iteration("x")

        assert exc_info.value.recoverable is True
        assert listener.of("finish")[0].stop_reason == "error"
        await runner.stop()

    async def test_agent_crash_is_not_recoverable(self, runner_config, listener):
        crashing = EchoAgentTransport(crash_on_prompt=True)
        healthy = EchoAgentTransport()
        runner = _runner(runner_config, listener, crashing, healthy)
        await runner.start()

        with pytest.raises(PromptError) as exc_info:
            await runner.run_iteration("x")
        assert exc_info.value.recoverable is False
        assert runner.started is False

        # stop/start 后恢复
        await runner.stop()
        await runner.start()
        await runner.run_iteration("again")
        assert healthy.prompts == [["again"]]
        await runner.stop()


class TestMalformedMessages:
    async def test_non_numeric_error_code(self, runner_config, listener):
        agent = BadErrorCodeAgent(fail_methods={"session/new"})
        runner = _runner(runner_config, listener, agent)
        await runner.start()

        with pytest.raises(SessionCreateError) as exc_info:
            await runner.run_iteration("x")
        assert "session/new failed" in str(exc_info.value)
        assert runner.started is True

        agent.fail_methods.clear()
        await runner.run_iteration("retry")
        assert listener.of("finish")[-1].stop_reason == "end_turn"

        await runner.stop()
        assert agent.closed is True

    async def test_invalid_messages_are_skipped(self, runner_config, listener):
        agent = GarbledAgent()
        runner = _runner(runner_config, listener, agent)
        await runner.start()

        await runner.run_iteration("hello")

        assert listener.of("text") == ["Echo: hello"]
        assert listener.of("finish")[0].stop_reason == "end_turn"
        await runner.stop()
        assert runner.started is False

    async def test_stop_after_reader_failure(self, runner_config, listener):
        agent = UnreadableAgent()
        runner = _runner(runner_config, listener, agent)
        await runner.start()

        with pytest.raises(PromptError):
            await runner.run_iteration("x")
        assert listener.of("finish")[-1].stop_reason == "error"

        await runner.stop()
        await runner.stop()
        assert runner.started is False
        assert agent.closed is True


class TestCancellation:
    async def test_cancel_reports_cancelled(self, runner_config, listener):
        agent = EchoAgentTransport(hang_prompts=True)
        runner = _runner(runner_config, listener, agent)
        await runner.start()

        task = asyncio.create_task(runner.run_iteration("long task"))
        await agent.prompt_received.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        finish = listener.of("finish")[0]
        assert finish.stop_reason == "cancelled"
        assert agent.cancelled == [runner.session_id]

        # 子进程不因取消而退出，连接可继续使用
        assert runner.started is True
        agent.hang_prompts = False
        await runner.run_iteration("next")
        assert listener.of("finish")[-1].stop_reason == "end_turn"
        await runner.stop()

    async def test_second_prompt_while_busy(self, runner_config, listener):
        agent = EchoAgentTransport(hang_prompts=True)
        runner = _runner(runner_config, listener, agent)
        await runner.start()

        task = asyncio.create_task(runner.run_iteration("first"))
        await agent.prompt_received.wait()

        with pytest.raises(RunnerBusyError):
            await runner.run_iteration("second")
        with pytest.raises(RunnerBusyError):
            await runner.send_messages(["msg"])

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await runner.stop()

    async def test_stop_during_prompt(self, runner_config, listener):
        agent = EchoAgentTransport(hang_prompts=True)
        runner = _runner(runner_config, listener, agent)
        await runner.start()

        task = asyncio.create_task(runner.run_iteration("long"))
        await agent.prompt_received.wait()
        await runner.stop()

        with pytest.raises(PromptError):
            await task
        assert runner.started is False

"""EchoAgentTransport -- 内存中的 ACP agent

实现 AgentTransport，不启动子进程：
- 默认对每个 prompt 回声 "Echo: <最后一个文本块>" 并以 end_turn 结束
- 可脚本化：附加 session/update、指定失败的方法、挂起直到取消、模拟崩溃
ITERLOOP_AGENT_MODE=echo 时 Runner 使用此 transport，测试同样使用它。
"""

import asyncio
import json
from typing import Any

import structlog

from .exceptions import AgentSpawnError, TransportClosedError

log = structlog.get_logger()


class EchoAgentTransport:
    """内存 ACP agent"""

    def __init__(
        self,
        updates: list[dict[str, Any]] | None = None,
        stop_reason: str = "end_turn",
        fail_methods: set[str] | None = None,
        hang_prompts: bool = False,
        crash_on_prompt: bool = False,
        request_permission: bool = False,
        fail_open: bool = False,
    ) -> None:
        """
        Args:
            updates: 每次 prompt 在回声之后发送的 session/update 内容（"update" 对象）
            stop_reason: prompt 响应中的 stopReason
            fail_methods: 返回 JSON-RPC error 的方法名
            hang_prompts: prompt 不返回，直到收到 session/cancel
            crash_on_prompt: 收到 prompt 时关闭输出流（模拟进程退出）
            request_permission: prompt 期间向客户端发起一次权限请求
            fail_open: open() 抛 AgentSpawnError
        """
        self.updates = list(updates or [])
        self.stop_reason = stop_reason
        self.fail_methods = set(fail_methods or ())
        self.hang_prompts = hang_prompts
        self.crash_on_prompt = crash_on_prompt
        self.request_permission = request_permission
        self.fail_open = fail_open

        # 观测记录
        self.sessions: list[dict[str, Any]] = []
        self.prompts: list[list[str]] = []
        self.models: list[str] = []
        self.cancelled: list[str] = []
        self.client_responses: list[dict[str, Any]] = []
        self.prompt_received = asyncio.Event()
        self.opened = False
        self.closed = False

        self._outbox: asyncio.Queue[str | None] = asyncio.Queue()
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._permission_reply: asyncio.Future | None = None
        self._tasks: set[asyncio.Task] = set()
        self._session_seq = 0

    async def open(self) -> None:
        if self.fail_open:
            raise AgentSpawnError(["echo"], OSError("echo agent configured to fail"))
        self.opened = True

    async def send(self, message: str) -> None:
        if self.closed:
            raise TransportClosedError("echo agent closed")
        payload = json.loads(message)
        method = payload.get("method")
        if method is None:
            self._on_client_response(payload)
        elif "id" in payload:
            self._on_request(payload["id"], method, payload.get("params") or {})
        elif method == "session/cancel":
            session_id = payload.get("params", {}).get("sessionId", "")
            self.cancelled.append(session_id)
            event = self._cancel_events.get(session_id)
            if event is not None:
                event.set()

    async def receive(self) -> str | None:
        if self.closed and self._outbox.empty():
            return None
        return await self._outbox.get()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._outbox.put_nowait(None)

    # ---- agent 行为 ----

    def _emit(self, message: dict[str, Any]) -> None:
        if not self.closed:
            self._outbox.put_nowait(json.dumps(message, ensure_ascii=False))

    def _respond(self, request_id: Any, result: dict[str, Any]) -> None:
        self._emit({"jsonrpc": "2.0", "id": request_id, "result": result})

    def _error(self, request_id: Any, method: str) -> None:
        self._emit(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "error": {"code": -32603, "message": f"{method} failed (echo)"},
            }
        )

    def _on_request(self, request_id: Any, method: str, params: dict[str, Any]) -> None:
        if method in self.fail_methods:
            self._error(request_id, method)
            return

        if method == "initialize":
            self._respond(
                request_id,
                {
                    "protocolVersion": params.get("protocolVersion", 1),
                    "agentCapabilities": {"loadSession": False},
                    "agentInfo": {"name": "echo", "version": "0"},
                },
            )
        elif method == "session/new":
            self._session_seq += 1
            session_id = f"echo-session-{self._session_seq}"
            self.sessions.append({"sessionId": session_id, **params})
            self._respond(request_id, {"sessionId": session_id})
        elif method == "session/set_model":
            self.models.append(params.get("modelId", ""))
            self._respond(request_id, {})
        elif method == "session/prompt":
            task = asyncio.create_task(self._run_prompt(request_id, params))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            self._emit(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "error": {"code": -32601, "message": f"method not found: {method}"},
                }
            )

    def _on_client_response(self, payload: dict[str, Any]) -> None:
        self.client_responses.append(payload)
        if self._permission_reply is not None and not self._permission_reply.done():
            self._permission_reply.set_result(payload)

    async def _run_prompt(self, request_id: Any, params: dict[str, Any]) -> None:
        session_id = params.get("sessionId", "")
        texts = [block.get("text", "") for block in params.get("prompt", [])]
        self.prompts.append(texts)
        self.prompt_received.set()

        if self.crash_on_prompt:
            log.debug("echo_agent_crash", session_id=session_id)
            await self.close()
            return

        if self.hang_prompts:
            cancel_event = self._cancel_events.setdefault(session_id, asyncio.Event())
            await cancel_event.wait()
            self._respond(request_id, {"stopReason": "cancelled"})
            return

        last_text = texts[-1] if texts else ""
        self._update(
            session_id,
            {
                "sessionUpdate": "agent_message_chunk",
                "content": {"type": "text", "text": f"Echo: {last_text}"},
            },
        )

        if self.request_permission:
            self._permission_reply = asyncio.get_running_loop().create_future()
            self._emit(
                {
                    "jsonrpc": "2.0",
                    "id": f"perm-{request_id}",
                    "method": "session/request_permission",
                    "params": {
                        "sessionId": session_id,
                        "options": [
                            {"optionId": "once", "kind": "allow_once", "name": "Allow once"},
                            {"optionId": "reject", "kind": "reject_once", "name": "Reject"},
                        ],
                    },
                }
            )
            await self._permission_reply

        for update in self.updates:
            self._update(session_id, update)

        self._respond(request_id, {"stopReason": self.stop_reason})

    def _update(self, session_id: str, update: dict[str, Any]) -> None:
        self._emit(
            {
                "jsonrpc": "2.0",
                "method": "session/update",
                "params": {"sessionId": session_id, "update": update},
            }
        )

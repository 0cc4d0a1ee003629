"""AcpConnection -- Agent Client Protocol（JSON-RPC 2.0，按行分隔）客户端

后台 reader 任务读取 agent 输出：
- 响应按 id 关联到等待中的请求
- session/update 通知路由到当前 prompt 的 listener
- agent 发起的 session/request_permission 自动允许一次
EOF 或读取失败时，所有等待中的请求以 TransportClosedError 失败。
"""

import asyncio
import json
from typing import Any

import structlog
from pydantic import ValidationError

from .exceptions import ProtocolError, RunnerError, TransportClosedError
from .models import DiffBlock, FileChange, FileDiff, ToolCallEvent, ToolCallStatus
from .protocols import AgentTransport, RunnerListener

log = structlog.get_logger()

PROTOCOL_VERSION = 1
CLIENT_NAME = "iterloop"
CLIENT_VERSION = "0.1.0"

# JSON-RPC method not found
METHOD_NOT_FOUND = -32601

# 取消通知的发送上限，避免管道阻塞拖住 stop
CANCEL_NOTIFY_TIMEOUT_S = 1.0


def extract_provider(model: str) -> str:
    """从 "provider/model" 形式的模型 ID 推导 provider 名称

    >>> extract_provider("anthropic/claude-sonnet-4-5")
    'Anthropic'
    """
    provider, sep, _ = model.partition("/")
    if not sep:
        return ""
    return provider[:1].upper() + provider[1:]


def extract_diff_blocks(content: Any) -> list[DiffBlock]:
    """从工具调用 content 数组中抽取 type=diff 的块"""
    if not isinstance(content, list):
        return []
    blocks = []
    for item in content:
        if not isinstance(item, dict) or item.get("type") != "diff" or not item.get("path"):
            continue
        blocks.append(
            DiffBlock(
                path=item["path"],
                old_text=item.get("oldText") or "",
                new_text=item.get("newText") or "",
            )
        )
    return blocks


def _extract_file_diff(raw_output: Any) -> FileDiff | None:
    """读取 rawOutput.metadata.filediff"""
    if not isinstance(raw_output, dict):
        return None
    metadata = raw_output.get("metadata")
    if not isinstance(metadata, dict):
        return None
    filediff = metadata.get("filediff")
    if not isinstance(filediff, dict) or not filediff.get("file"):
        return None
    try:
        return FileDiff.model_validate(filediff)
    except ValidationError:
        return None


def _extract_output(raw_output: Any) -> str:
    if raw_output is None:
        return ""
    if isinstance(raw_output, str):
        return raw_output
    if isinstance(raw_output, dict) and isinstance(raw_output.get("output"), str):
        return raw_output["output"]
    return json.dumps(raw_output, ensure_ascii=False)


def extract_file_changes(event: ToolCallEvent) -> list[FileChange]:
    """从已完成的 edit 类工具调用抽取文件变更

    优先级：diff 块 > filediff 元数据 > rawInput.filePath。
    diff 块仅在路径与 filediff 一致时合并增删行数。
    """
    if event.status != ToolCallStatus.COMPLETED or event.kind != "edit":
        return []

    if event.diff_blocks:
        changes = []
        for block in event.diff_blocks:
            change = FileChange(abs_path=block.path, is_new=block.old_text == "")
            if event.file_diff is not None and event.file_diff.file == block.path:
                change.additions = event.file_diff.additions
                change.deletions = event.file_diff.deletions
            changes.append(change)
        return changes

    if event.file_diff is not None:
        return [
            FileChange(
                abs_path=event.file_diff.file,
                additions=event.file_diff.additions,
                deletions=event.file_diff.deletions,
            )
        ]

    file_path = event.raw_input.get("filePath")
    if isinstance(file_path, str) and file_path:
        return [FileChange(abs_path=file_path)]
    return []


def merge_tool_call(existing: ToolCallEvent | None, update: dict[str, Any]) -> ToolCallEvent:
    """将 tool_call / tool_call_update 合并到已有事件（缺省字段保持不变）"""
    base = existing or ToolCallEvent(tool_call_id=str(update.get("toolCallId", "")))
    fields: dict[str, Any] = {}
    for key, attr in (("title", "title"), ("status", "status"), ("kind", "kind")):
        if isinstance(update.get(key), str):
            fields[attr] = update[key]
    if isinstance(update.get("rawInput"), dict):
        fields["raw_input"] = update["rawInput"]
    if "rawOutput" in update:
        fields["output"] = _extract_output(update["rawOutput"])
        file_diff = _extract_file_diff(update["rawOutput"])
        if file_diff is not None:
            fields["file_diff"] = file_diff
    if "content" in update:
        blocks = extract_diff_blocks(update["content"])
        if blocks:
            fields["diff_blocks"] = blocks
    return base.model_copy(update=fields)


def _error_code(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class AcpConnection:
    """单条 agent 连接上的 JSON-RPC 客户端

    同一时刻只路由一个 prompt 的通知；并发 prompt 由 Runner 拒绝。
    """

    def __init__(self, transport: AgentTransport, handshake_timeout_s: float = 30) -> None:
        self._transport = transport
        self._handshake_timeout_s = handshake_timeout_s
        self._next_id = 0
        self._pending: dict[int, tuple[str, asyncio.Future]] = {}
        self._reader_task: asyncio.Task | None = None
        self._closed = False

        # 当前 prompt 的路由目标
        self._active_session: str | None = None
        self._listener: RunnerListener | None = None
        self._tool_calls: dict[str, ToolCallEvent] = {}

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        await self._transport.open()
        self._reader_task = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        """关闭连接并终止 transport（幂等）"""
        if self._closed and self._reader_task is None:
            return
        self._closed = True
        await self._transport.close()
        task, self._reader_task = self._reader_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                log.warning("acp_reader_failed", error_type=e.__class__.__name__, error=str(e))
        self._fail_pending(TransportClosedError("connection closed"))

    # ---- ACP methods ----

    async def initialize(self) -> dict[str, Any]:
        """握手；超时抛 TimeoutError"""
        result = await asyncio.wait_for(
            self.request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "clientCapabilities": {
                        "fs": {"readTextFile": False, "writeTextFile": False},
                        "terminal": False,
                    },
                    "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
                },
            ),
            timeout=self._handshake_timeout_s,
        )
        log.debug(
            "acp_initialized",
            protocol_version=result.get("protocolVersion"),
            agent_info=result.get("agentInfo"),
        )
        return result

    async def new_session(self, cwd: str, mcp_servers: list[dict[str, Any]]) -> str:
        result = await self.request("session/new", {"cwd": cwd, "mcpServers": mcp_servers})
        session_id = result.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise ProtocolError("session/new", 0, "response missing sessionId")
        return session_id

    async def set_model(self, session_id: str, model_id: str) -> None:
        await self.request("session/set_model", {"sessionId": session_id, "modelId": model_id})

    async def prompt(
        self,
        session_id: str,
        texts: list[str],
        listener: RunnerListener,
    ) -> str:
        """发送 prompt，期间将该会话的 session/update 转给 listener

        被取消时向 agent 发送 session/cancel 后继续抛出 CancelledError；
        迟到的响应与通知会被丢弃，连接可继续使用。

        Returns:
            agent 返回的 stopReason
        """
        self._active_session = session_id
        self._listener = listener
        self._tool_calls = {}
        try:
            result = await self.request(
                "session/prompt",
                {
                    "sessionId": session_id,
                    "prompt": [{"type": "text", "text": text} for text in texts],
                },
            )
        except asyncio.CancelledError:
            self._active_session = None
            self._listener = None
            try:
                await asyncio.wait_for(self.cancel(session_id), CANCEL_NOTIFY_TIMEOUT_S)
            except TimeoutError:
                log.debug("acp_cancel_notify_timeout", session_id=session_id)
            raise
        finally:
            self._active_session = None
            self._listener = None
        return str(result.get("stopReason") or "end_turn")

    async def cancel(self, session_id: str) -> None:
        """发送 session/cancel 通知；连接已断开时忽略"""
        try:
            await self.notify("session/cancel", {"sessionId": session_id})
        except RunnerError as e:
            log.debug("acp_cancel_skipped", session_id=session_id, error=str(e))

    # ---- JSON-RPC ----

    async def request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """发送请求并等待响应

        Raises:
            ProtocolError: agent 返回 error
            TransportClosedError: 连接已断开
        """
        if self._closed:
            raise TransportClosedError()
        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (method, future)
        try:
            await self._send({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: dict[str, Any]) -> None:
        if self._closed:
            raise TransportClosedError()
        await self._send({"jsonrpc": "2.0", "method": method, "params": params})

    async def _send(self, message: dict[str, Any]) -> None:
        await self._transport.send(json.dumps(message, ensure_ascii=False))

    async def _read_loop(self) -> None:
        error: RunnerError = TransportClosedError("agent closed the connection")
        try:
            while True:
                line = await self._transport.receive()
                if line is None:
                    break
                if not line.strip():
                    continue
                try:
                    message = json.loads(line)
                except json.JSONDecodeError:
                    log.warning("acp_invalid_json", preview=line[:200])
                    continue
                if not isinstance(message, dict):
                    log.warning("acp_invalid_message", preview=line[:200])
                    continue
                try:
                    await self._dispatch(message)
                except RunnerError:
                    raise
                except Exception as e:
                    # 单条畸形消息只丢弃，reader 继续
                    log.warning(
                        "acp_invalid_message",
                        error_type=e.__class__.__name__,
                        error=str(e),
                        preview=line[:200],
                    )
        except RunnerError as e:
            error = e
        finally:
            self._closed = True
            self._fail_pending(error)
        log.debug("acp_reader_stopped", reason=str(error))

    def _fail_pending(self, error: RunnerError) -> None:
        for _method, future in list(self._pending.values()):
            if not future.done():
                future.set_exception(error)

    async def _dispatch(self, message: dict[str, Any]) -> None:
        method = message.get("method")
        if method is not None and "id" in message:
            await self._handle_agent_request(message)
        elif method is not None:
            if method == "session/update":
                params = message.get("params")
                if isinstance(params, dict):
                    self._handle_update(params)
                else:
                    log.warning(
                        "acp_invalid_message", method=method, params_type=type(params).__name__
                    )
            else:
                log.debug("acp_notification_ignored", method=method)
        elif "id" in message:
            self._handle_response(message)

    def _handle_response(self, message: dict[str, Any]) -> None:
        request_id = message["id"]
        # 请求 id 均为整数，其余为未知或已取消请求的迟到响应
        entry = self._pending.get(request_id) if isinstance(request_id, int) else None
        if entry is None:
            log.debug("acp_response_dropped", request_id=request_id)
            return
        method, future = entry
        if future.done():
            return
        error = message.get("error")
        if error is not None:
            if not isinstance(error, dict):
                error = {"message": str(error)}
            future.set_exception(
                ProtocolError(method, _error_code(error.get("code")), str(error.get("message", "")))
            )
        else:
            result = message.get("result")
            future.set_result(result if isinstance(result, dict) else {})

    async def _handle_agent_request(self, message: dict[str, Any]) -> None:
        method = message["method"]
        if method == "session/request_permission":
            params = message.get("params")
            if not isinstance(params, dict):
                params = {}
            option_id = "once"
            for option in params.get("options") or []:
                if isinstance(option, dict) and option.get("kind") == "allow_once":
                    option_id = option.get("optionId", option_id)
                    break
            log.debug("acp_permission_granted", option_id=option_id)
            response = {
                "jsonrpc": "2.0",
                "id": message["id"],
                "result": {"outcome": {"outcome": "selected", "optionId": option_id}},
            }
        else:
            log.debug("acp_request_unsupported", method=method)
            response = {
                "jsonrpc": "2.0",
                "id": message["id"],
                "error": {"code": METHOD_NOT_FOUND, "message": f"method not found: {method}"},
            }
        await self._send(response)

    def _handle_update(self, params: dict[str, Any]) -> None:
        session_id = params.get("sessionId")
        listener = self._listener
        if listener is None or session_id != self._active_session:
            log.debug("acp_update_dropped", session_id=session_id)
            return

        update = params.get("update")
        if not isinstance(update, dict):
            log.warning(
                "acp_invalid_message",
                method="session/update",
                update_type=type(update).__name__,
            )
            return
        kind = update.get("sessionUpdate")
        try:
            if kind in ("agent_message_chunk", "agent_thought_chunk"):
                content = update.get("content") or {}
                text = content.get("text") if isinstance(content, dict) else None
                if text:
                    if kind == "agent_message_chunk":
                        listener.on_text(text)
                    else:
                        listener.on_thinking(text)
            elif kind in ("tool_call", "tool_call_update"):
                self._handle_tool_call(listener, update)
            else:
                log.debug("acp_update_ignored", session_update=kind)
        except Exception as e:
            # listener 异常不能中断 reader
            log.warning(
                "runner_listener_failed",
                session_update=kind,
                error_type=e.__class__.__name__,
                error=str(e),
            )

    def _handle_tool_call(self, listener: RunnerListener, update: dict[str, Any]) -> None:
        tool_call_id = str(update.get("toolCallId", ""))
        previous = self._tool_calls.get(tool_call_id)
        event = merge_tool_call(previous, update)
        self._tool_calls[tool_call_id] = event
        listener.on_tool_call(event)

        was_completed = previous is not None and previous.status == ToolCallStatus.COMPLETED
        if not was_completed:
            for change in extract_file_changes(event):
                listener.on_file_change(change)

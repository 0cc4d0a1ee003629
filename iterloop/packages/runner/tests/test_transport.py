"""SubprocessTransport 测试 -- 使用当前解释器作为子进程"""

import sys

import pytest
from iterloop.runner.exceptions import AgentSpawnError, TransportClosedError
from iterloop.runner.transport import SubprocessTransport

# 逐行回显 stdin，同时向 stderr 写一行
_ECHO_SCRIPT = (
    "import sys\n"
    "sys.stderr.write('agent ready\\n'); sys.stderr.flush()\n"
    "for line in sys.stdin:\n"
    "    sys.stdout.write(line); sys.stdout.flush()\n"
)


class TestSubprocessTransport:
    async def test_send_receive_roundtrip(self, tmp_path):
        transport = SubprocessTransport([sys.executable, "-c", _ECHO_SCRIPT], cwd=tmp_path)
        await transport.open()
        try:
            await transport.send('{"jsonrpc": "2.0", "method": "ping"}')
            assert await transport.receive() == '{"jsonrpc": "2.0", "method": "ping"}'
        finally:
            await transport.close()

    async def test_receive_eof_after_exit(self):
        transport = SubprocessTransport([sys.executable, "-c", "print('bye')"])
        await transport.open()
        try:
            assert await transport.receive() == "bye"
            assert await transport.receive() is None
        finally:
            await transport.close()

    async def test_close_is_idempotent(self):
        transport = SubprocessTransport([sys.executable, "-c", _ECHO_SCRIPT])
        await transport.open()
        pid = transport.pid
        assert pid is not None

        await transport.close()
        await transport.close()
        assert transport.pid is None

    async def test_send_after_close_raises(self):
        transport = SubprocessTransport([sys.executable, "-c", _ECHO_SCRIPT])
        await transport.open()
        await transport.close()

        with pytest.raises(TransportClosedError):
            await transport.send("{}")
        assert await transport.receive() is None

    async def test_missing_command_raises_spawn_error(self):
        transport = SubprocessTransport(["iterloop-no-such-agent-binary"])
        with pytest.raises(AgentSpawnError) as exc_info:
            await transport.open()
        assert exc_info.value.recoverable is False
        await transport.close()

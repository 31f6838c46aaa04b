"""
Tests for the line-delimited JSON control transport.
"""
import json
from unittest.mock import MagicMock, patch

import pytest

from acl_ctl import E_FAIL, E_NOT_FOUND, ControlClient, ControlError, RemoteError


@pytest.fixture
def server():
    """Patch socket.create_connection; `server.reply` sets the line the server answers."""
    with patch("acl_ctl.socket.create_connection") as create:
        sock = MagicMock()
        stream = MagicMock()
        sock.makefile.return_value = stream
        create.return_value.__enter__.return_value = sock

        class _Server:
            connect = create

            @staticmethod
            def reply(line: bytes) -> None:
                stream.readline.return_value = line

            @staticmethod
            def sent():
                return json.loads(stream.write.call_args[0][0].decode("utf-8"))

        yield _Server


class TestControlClient:
    """Request/response handling."""

    def test_call_sends_command_and_returns_reply(self, server):
        server.reply(b'{"rc": 0, "flow": {}}\n')
        client = ControlClient(hostip="10.0.0.5", port=9100, timeout=1.5)

        reply = client.call("ofdpa_flow_get", args={"flow": {"priority": 1}})

        assert reply == {"rc": 0, "flow": {}}
        assert server.sent() == {"cmd": "ofdpa_flow_get", "args": {"flow": {"priority": 1}}}
        server.connect.assert_called_once_with(("10.0.0.5", 9100), timeout=1.5)

    def test_call_without_args(self, server):
        server.reply(b'{"rc": 0}\n')
        ControlClient().call("ofdpa_client_initialize")
        assert server.sent() == {"cmd": "ofdpa_client_initialize", "args": {}}

    def test_error_reply_raises_remote_error(self, server):
        server.reply(b'{"rc": -30, "error": "no such flow"}\n')
        with pytest.raises(RemoteError) as exc:
            ControlClient().call("ofdpa_flow_next_get")
        assert exc.value.rc == E_NOT_FOUND
        assert exc.value.not_found
        assert exc.value.message == "no such flow"
        assert "E_NOT_FOUND" in str(exc.value)

    def test_error_reply_without_rc(self, server):
        server.reply(b'{"error": "boom"}\n')
        with pytest.raises(RemoteError) as exc:
            ControlClient().call("ofdpa_flow_add")
        assert exc.value.rc == E_FAIL
        assert not exc.value.not_found

    def test_empty_reply(self, server):
        server.reply(b"")
        with pytest.raises(ControlError, match="Empty response"):
            ControlClient().call("ofdpa_flow_add")

    @pytest.mark.parametrize("line", [b"not json\n", b"[1, 2]\n"])
    def test_bad_reply(self, server, line):
        server.reply(line)
        with pytest.raises(ControlError):
            ControlClient().call("ofdpa_flow_add")

    def test_connection_failure(self, server):
        server.connect.side_effect = ConnectionRefusedError("refused")
        with pytest.raises(ControlError, match="Connection to"):
            ControlClient().call("ofdpa_flow_add")

    def test_remote_error_is_control_error(self):
        assert issubclass(RemoteError, ControlError)

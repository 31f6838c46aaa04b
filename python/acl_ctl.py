#!/usr/bin/env python3
"""
acl_ctl.py - Python transport for the flow-table control server.

Protocol:
  - TCP to (host, port), one short-lived connection per command
  - Send: {"cmd": "name", "args": {...}}\n
  - Receive: single JSON object per line

A reply that carries an "error" key is a failure. Its "rc" field holds
the remote return code (E_FAIL when missing).
"""

import json
import logging
import socket
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Remote return codes
E_NONE = 0
E_RPC = -20
E_INTERNAL = -21
E_PARAM = -22
E_ERROR = -23
E_FULL = -24
E_EXISTS = -25
E_TIMEOUT = -26
E_FAIL = -27
E_DISABLED = -28
E_UNAVAIL = -29
E_NOT_FOUND = -30
E_EMPTY = -31

RC_NAMES: Dict[int, str] = {
    E_NONE: "E_NONE",
    E_RPC: "E_RPC",
    E_INTERNAL: "E_INTERNAL",
    E_PARAM: "E_PARAM",
    E_ERROR: "E_ERROR",
    E_FULL: "E_FULL",
    E_EXISTS: "E_EXISTS",
    E_TIMEOUT: "E_TIMEOUT",
    E_FAIL: "E_FAIL",
    E_DISABLED: "E_DISABLED",
    E_UNAVAIL: "E_UNAVAIL",
    E_NOT_FOUND: "E_NOT_FOUND",
    E_EMPTY: "E_EMPTY",
}


class ControlError(Exception):
    """Raised when the connection fails or the server reply is unusable."""
    pass


class RemoteError(ControlError):
    """Raised when the control server answers a command with an error."""

    def __init__(self, cmd: str, rc: int, message: str = "") -> None:
        self.cmd = cmd
        self.rc = rc
        self.message = message
        name = RC_NAMES.get(rc, str(rc))
        text = f"Server error for cmd='{cmd}': rc = {rc} ({name})"
        if message:
            text += f": {message}"
        super().__init__(text)

    @property
    def not_found(self) -> bool:
        return self.rc == E_NOT_FOUND


class ControlClient:
    def __init__(
        self,
        hostip: str = "127.0.0.1",
        port: int = 9000,
        timeout: float = 2.0,
    ) -> None:
        """
        :param hostip: Control server address (default: loopback)
        :param port: Control server TCP port
        :param timeout: Socket timeout in seconds
        """
        self.host = hostip
        self.port = port
        self.timeout = timeout

    # -------------------------------------------------------------------------
    # Low-level transport
    # -------------------------------------------------------------------------
    def _send_recv_line(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Open a short-lived TCP connection, send one JSON command, read one line.
        """
        data = json.dumps(payload) + "\n"

        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout) as sock:
                # unbuffered so readline() returns as soon as the reply newline lands
                f = sock.makefile("rwb", buffering=0)
                f.write(data.encode("utf-8"))
                # the server answers each command with exactly one line
                line = f.readline()
        except OSError as e:
            raise ControlError(f"Connection to {self.host}:{self.port} failed: {e}") from e

        if not line:
            raise ControlError("Empty response from control server")

        try:
            reply = json.loads(line.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ControlError(f"Invalid JSON response: {e}: {line!r}") from e

        if not isinstance(reply, dict):
            raise ControlError(f"Unexpected response from control server: {reply!r}")
        return reply

    # -------------------------------------------------------------------------
    # Generic command interface
    # -------------------------------------------------------------------------
    def call(self, cmd: str, args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Send a command to the control server.

        :param cmd: Command name (e.g. "ofdpa_flow_add")
        :param args: Optional args dict (will be encoded as "args": {...})
        :return: Parsed JSON reply as dict
        :raises RemoteError: the reply carries an "error" key
        """
        payload = {
            "cmd": cmd,
            "args": args or {},
        }
        logger.debug("-> %s %s", cmd, payload["args"])
        reply = self._send_recv_line(payload)
        logger.debug("<- %s %s", cmd, reply)

        if "error" in reply:
            rc = reply.get("rc", E_FAIL)
            try:
                rc = int(rc)
            except (TypeError, ValueError):
                rc = E_FAIL
            raise RemoteError(cmd, rc, str(reply["error"] or ""))

        return reply

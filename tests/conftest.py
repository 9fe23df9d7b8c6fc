"""Shared test doubles: an in-memory serial port and a scripted board."""

from __future__ import annotations

import json
import queue
import threading
from typing import Any, Callable

import pytest

from arduino_config_mcp.models.project import (
    DisplayConfig,
    InputConfig,
    InputType,
    ProjectConfig,
)
from arduino_config_mcp.transport.serial_connection import OpenError, TransportError

FAST_READ_TIMEOUT = 0.01


class FakeArduino:
    """Answers commands the way the firmware does.

    ``inputs`` maps wire index -> (state, value) for GET_STATE replies.
    """

    def __init__(self) -> None:
        self.silent = False
        self.version = "1.0.0"
        self.inputs: dict[int, tuple[int, int | None]] = {}
        self.errors: dict[str, str] = {}
        # Lines pushed ahead of the next reply (e.g. INPUT_EVENT frames)
        self.before_reply: list[dict[str, Any]] = []

    def respond(self, message: dict[str, Any]) -> list[dict[str, Any]]:
        if self.silent:
            return []

        cmd = message.get("cmd")
        lines, self.before_reply = list(self.before_reply), []

        if cmd in self.errors:
            lines.append({"response": "ERROR", "success": False, "message": self.errors[cmd]})
        elif cmd == "PING":
            lines.append({"response": "PONG", "success": True})
        elif cmd == "VERSION":
            lines.append({"response": "VERSION", "success": True, "data": self.version})
        elif cmd == "GET_STATE":
            inputs = []
            for index, (state, value) in sorted(self.inputs.items()):
                entry: dict[str, Any] = {"id": index, "state": state}
                if value is not None:
                    entry["value"] = value
                inputs.append(entry)
            lines.append({"response": "STATE", "success": True, "inputs": inputs})
        else:
            lines.append({"response": "OK", "success": True})
        return lines


class FakeSerial:
    """Stands in for :class:`SerialConnection` without hardware.

    Writes are decoded and answered by ``responder``; replies are queued
    for ``read_available``. Both run on executor threads, like the real
    port.
    """

    def __init__(self, responder: FakeArduino | None = None) -> None:
        self.responder = responder
        self.fail_open = False
        self.reply_delay = 0.0
        self.write_hook: Callable[[dict[str, Any]], None] | None = None
        self.messages: list[dict[str, Any]] = []
        self.open_count = 0
        self._open = False
        self._port: str | None = None
        self._incoming: queue.Queue[bytes] = queue.Queue()
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def port(self) -> str | None:
        return self._port

    @property
    def read_timeout(self) -> float:
        return FAST_READ_TIMEOUT

    @property
    def commands(self) -> list[str]:
        with self._lock:
            return [m.get("cmd") for m in self.messages]

    def open(self, port: str, baud_rate: int = 115200) -> None:
        if self._open:
            raise OpenError(f"Serial port {port} is already open")
        if self.fail_open:
            raise OpenError(f"Could not open {port}: no such device")
        self._open = True
        self._port = port
        self.open_count += 1

    def push(self, data: bytes | str | dict[str, Any]) -> None:
        """Queue bytes as if the board had sent them."""
        if isinstance(data, dict):
            data = json.dumps(data) + "\n"
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._incoming.put(data)

    def read_available(self, size: int = 1024) -> bytes:
        if not self._open:
            raise TransportError("Serial port is not open")
        try:
            return self._incoming.get(timeout=FAST_READ_TIMEOUT)
        except queue.Empty:
            return b""

    def write(self, data: bytes) -> int:
        if not self._open:
            raise TransportError("Serial port is not open")

        message = json.loads(data.decode("utf-8"))
        with self._lock:
            self.messages.append(message)
        if self.write_hook is not None:
            self.write_hook(message)

        if self.responder is not None:
            lines = self.responder.respond(message)
            if self.reply_delay > 0:
                timer = threading.Timer(self.reply_delay, self._push_all, args=(lines,))
                timer.daemon = True
                timer.start()
            else:
                self._push_all(lines)
        return len(data)

    def _push_all(self, lines: list[dict[str, Any]]) -> None:
        for line in lines:
            self.push(line)

    def discard_buffers(self) -> None:
        while True:
            try:
                self._incoming.get_nowait()
            except queue.Empty:
                return

    def close(self) -> None:
        self._open = False
        self._port = None


def make_project() -> ProjectConfig:
    """A project with one of each input kind and one display."""
    return ProjectConfig(
        name="Test Box",
        inputs=[
            InputConfig("Fire", InputType.MOMENTARY_BUTTON, pins=[2], id="btn"),
            InputConfig("Volume", InputType.ROTARY_ENCODER, pins=[3, 4, 5], current_value=100, id="enc"),
            InputConfig("Lights", InputType.TOGGLE_SWITCH, pins=[6], id="tog"),
        ],
        displays=[DisplayConfig("Score", cs_pin=10, brightness=12, id="disp")],
    )


@pytest.fixture
def board() -> FakeArduino:
    return FakeArduino()


@pytest.fixture
def fake_serial(board: FakeArduino) -> FakeSerial:
    return FakeSerial(board)


@pytest.fixture
def project() -> ProjectConfig:
    return make_project()

"""MCP server entry point for Arduino button boxes.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import DeviceClient
from .models.project import ProjectConfig
from .models.project import load_project as load_project_file
from .models.state import DeviceError, InputAction, InputTriggered
from .protocol.commands import (
    CommandType,
    DisplayTestPattern,
    build_command,
    build_keyboard_mode,
    build_reset_config,
    build_save_config,
    build_upload_config,
)
from .tester import POLLING_INTERVAL, InputTester, NotConnectedError
from .transport.serial_connection import DEFAULT_BAUD_RATE, list_ports as list_serial_ports

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "arduino-config",
    instructions="MCP server for configuring and testing Arduino button boxes over serial",
)

MAX_RECENT_EVENTS = 200

# Global device state
_client: DeviceClient | None = None
_tester: InputTester | None = None
_project: ProjectConfig | None = None
_recent_events: deque[dict[str, Any]] = deque(maxlen=MAX_RECENT_EVENTS)


def _record(kind: str, payload: dict[str, Any]) -> None:
    _recent_events.append({"kind": kind, **payload})


def _on_frame(frame: str) -> None:
    _record("frame", {"frame": frame})


def _on_trigger(event: InputTriggered) -> None:
    _record("trigger", event.to_dict())


def _on_error(error: DeviceError) -> None:
    _record("error", {"message": error.message})


def _get_client() -> DeviceClient:
    """Create the client on first use, inside the server's event loop."""
    global _client, _tester
    if _client is None:
        _client = DeviceClient()
        _client.frames.subscribe(_on_frame)
        _client.errors.subscribe(_on_error)
        _tester = InputTester(_client, lambda: _project)
        _tester.input_triggered.subscribe(_on_trigger)
    return _client


def _get_tester() -> InputTester:
    _get_client()
    if _tester is None:
        raise RuntimeError("Input tester is not available. Reconnect with the 'connect' tool.")
    return _tester


def _require_project() -> ProjectConfig:
    if _project is None:
        raise RuntimeError("No project loaded. Use the 'load_project' tool first.")
    return _project


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def list_ports() -> dict[str, Any]:
    """List serial ports, flagging the ones that look like Arduino boards."""
    return {"ports": [p.to_dict() for p in list_serial_ports()]}


@mcp.tool()
async def connect(port: str, baud_rate: int = DEFAULT_BAUD_RATE) -> dict[str, Any]:
    """Open a serial connection to the board and verify the firmware answers.

    The board resets when the port opens, so this takes a couple of seconds.

    Args:
        port: Serial port (e.g. "COM5", "/dev/ttyACM0").
        baud_rate: Baud rate (default 115200).
    """
    client = _get_client()
    # The board resets on open; a running test would poll it mid-boot
    await _get_tester().stop()

    errors: list[str] = []
    with client.errors.subscribe(lambda e: errors.append(e.message)):
        connected = await client.connect(port, baud_rate)

    if not connected:
        return {"connected": False, "error": errors[-1] if errors else "Connection failed"}

    return {
        "connected": True,
        "port": port,
        "firmware": await client.get_firmware_version(),
    }


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Stop any input test and close the serial connection."""
    if _client is None:
        return {"disconnected": True}
    await _get_tester().stop()
    await _client.disconnect()
    return {"disconnected": True}


@mcp.tool()
async def get_device_info() -> dict[str, Any]:
    """Report connection state, port, and firmware version."""
    client = _get_client()
    result: dict[str, Any] = {"state": client.state.value, "port": client.port}
    if client.is_connected:
        result["firmware"] = await client.get_firmware_version()
    return result


# ─── CONFIGURATION TOOLS ─────────────────────────────────────────────

@mcp.tool()
def load_project(path: str) -> dict[str, Any]:
    """Load a project file so inputs and displays can be resolved.

    Args:
        path: Path to the project JSON file.
    """
    global _project
    _project = load_project_file(path)
    return {
        "name": _project.name,
        "inputs": [{"index": n, "id": i.id, "name": i.name} for n, i in enumerate(_project.inputs)],
        "displays": [{"index": n, "id": d.id, "name": d.name} for n, d in enumerate(_project.displays)],
    }


@mcp.tool()
async def upload_config() -> dict[str, Any]:
    """Send the loaded project to the board (not yet saved to EEPROM)."""
    project = _require_project()
    response = await _get_client().send_command(build_upload_config(project.to_dict()))
    return response.to_dict()


@mcp.tool()
async def save_config() -> dict[str, Any]:
    """Persist the uploaded configuration to the board's EEPROM."""
    return (await _get_client().send_command(build_save_config())).to_dict()


@mcp.tool()
async def reset_config() -> dict[str, Any]:
    """Reset the board's configuration to firmware defaults."""
    return (await _get_client().send_command(build_reset_config())).to_dict()


@mcp.tool()
async def set_keyboard_mode(enabled: bool) -> dict[str, Any]:
    """Enable or disable the board's keyboard output.

    Args:
        enabled: True to send keystrokes, False to stay silent.
    """
    return (await _get_client().send_command(build_keyboard_mode(enabled))).to_dict()


@mcp.tool()
async def send_command(
    command: str,
    params: dict[str, Any] | None = None,
    timeout: float = 1.0,
) -> dict[str, Any]:
    """Send any command from the firmware vocabulary and return the reply.

    Args:
        command: One of PING, VERSION, GET_STATE, SET_DISPLAY, TEST_DISPLAY,
                 UPLOAD_CONFIG, SAVE_CONFIG, RESET_CONFIG, TEST_MODE,
                 KEYBOARD_MODE.
        params: Command parameters.
        timeout: Seconds to wait for the reply.
    """
    try:
        cmd = build_command(command.upper(), params, timeout)
    except ValueError as e:
        return {"error": str(e)}
    response = await _get_client().send_command(cmd)
    result = response.to_dict()
    if response.payload:
        result["reply"] = response.payload
    return result


# ─── DISPLAY TOOLS ───────────────────────────────────────────────────

@mcp.tool()
async def set_display_value(display_id: str, value: int) -> dict[str, Any]:
    """Show a number on a display using its configured brightness.

    Args:
        display_id: Display id from the loaded project.
        value: Number to show (0-99999999).
    """
    _require_project()
    try:
        response = await _get_tester().set_display_value(display_id, value)
    except ValueError as e:
        return {"error": str(e)}
    return response.to_dict()


@mcp.tool()
async def test_display(display_id: str, pattern: str = "ALL_ON") -> dict[str, Any]:
    """Run a test pattern on a display.

    Args:
        display_id: Display id from the loaded project.
        pattern: ALL_ON, ALL_OFF, COUNT_UP, COUNT_DOWN, SWEEP or RANDOM.
    """
    _require_project()
    try:
        response = await _get_tester().test_display(display_id, DisplayTestPattern(pattern.upper()))
    except ValueError as e:
        return {"error": str(e)}
    return response.to_dict()


# ─── INPUT TESTING TOOLS ─────────────────────────────────────────────

@mcp.tool()
async def start_input_test(polling_interval_ms: int = int(POLLING_INTERVAL * 1000)) -> dict[str, Any]:
    """Put the board in test mode and start polling input states.

    Args:
        polling_interval_ms: Time between state polls (default 50 ms).
    """
    _require_project()
    tester = _get_tester()
    if polling_interval_ms <= 0:
        return {"error": "Polling interval must be positive"}
    tester.polling_interval = polling_interval_ms / 1000
    try:
        await tester.start()
    except NotConnectedError as e:
        return {"error": str(e)}
    return {"testing": True, "polling_interval_ms": polling_interval_ms}


@mcp.tool()
async def stop_input_test() -> dict[str, bool]:
    """Stop polling and take the board out of test mode."""
    await _get_tester().stop()
    return {"testing": False}


@mcp.tool()
def get_input_states() -> dict[str, Any]:
    """Current state of every configured input during a test."""
    tester = _get_tester()
    return {
        "testing": tester.is_active,
        "inputs": [s.to_dict() for s in tester.get_states().values()],
    }


@mcp.tool()
def simulate_trigger(input_id: str, action: str) -> dict[str, Any]:
    """Simulate an input action without hardware.

    Args:
        input_id: Input id from the loaded project.
        action: press, release, hold, rotate_cw, rotate_ccw, encoder_press,
                toggle_on or toggle_off.
    """
    project = _require_project()
    try:
        input_action = InputAction(action.lower())
    except ValueError:
        return {"error": f"Unknown action '{action}'. Valid: {[a.value for a in InputAction]}"}
    if project.find_input(input_id) is None:
        return {"error": f"Unknown input '{input_id}'"}

    tester = _get_tester()
    tester.simulate_trigger(input_id, input_action)
    state = tester.get_state(input_id)
    return {"simulated": True, "state": state.to_dict() if state else None}


@mcp.tool()
def get_recent_events(limit: int = 50) -> dict[str, Any]:
    """Recent unsolicited frames, input triggers and errors, oldest first.

    Args:
        limit: Maximum number of events to return.
    """
    events = list(_recent_events)
    return {"events": events[-limit:] if limit > 0 else []}


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("arduino://protocol")
def resource_protocol() -> str:
    """The serial command vocabulary and message shapes."""
    return json.dumps({
        "baud_rate": DEFAULT_BAUD_RATE,
        "framing": "one UTF-8 JSON object per line, newline terminated",
        "request": {"cmd": "<COMMAND>", "params": {}},
        "commands": [c.value for c in CommandType],
        "unsolicited": {
            "response": "INPUT_EVENT",
            "type": ["BTN_PRESS", "BTN_RELEASE", "ENC_CW", "ENC_CCW", "ENC_PRESS", "TOG_ON", "TOG_OFF"],
            "id": "input index in the uploaded configuration",
        },
    })


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def diagnose_inputs(input_name: str) -> str:
    """Guide the AI through checking a misbehaving input.

    Args:
        input_name: Name of the input as configured in the project.
    """
    return f"""Check why the input "{input_name}" is not working.
Steps:
- Use get_device_info to confirm the board is connected
- Use load_project if no project is loaded, then start_input_test
- Ask the user to operate "{input_name}" and watch get_input_states
- Use get_recent_events to see pushed INPUT_EVENT frames
- If nothing changes, the wiring or the uploaded configuration is wrong:
  compare the input's position in the project with what was uploaded

Call stop_input_test when done."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()

"""Reply and event parsing for board messages."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..models.state import InputAction
from .framing import decode_frame

logger = logging.getLogger(__name__)

INPUT_EVENT = "INPUT_EVENT"
STATE = "STATE"
ERROR = "ERROR"

# Firmware event type -> action; unknown types fall back to PRESS
EVENT_ACTIONS: dict[str, InputAction] = {
    "BTN_PRESS": InputAction.PRESS,
    "BTN_RELEASE": InputAction.RELEASE,
    "ENC_CW": InputAction.ROTATE_CW,
    "ENC_CCW": InputAction.ROTATE_CCW,
    "ENC_PRESS": InputAction.ENCODER_PRESS,
    "TOG_ON": InputAction.TOGGLE_ON,
    "TOG_OFF": InputAction.TOGGLE_OFF,
}


# Reply tag each command is answered with, where the firmware has a dedicated one
EXPECTED_REPLIES: dict[str, str] = {
    "PING": "PONG",
    "VERSION": "VERSION",
    "GET_STATE": STATE,
}


class ResponseStatus(str, Enum):
    """Why a command finished the way it did."""

    OK = "ok"
    DEVICE_ERROR = "device_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    NOT_CONNECTED = "not_connected"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class Response:
    """Outcome of one command: a parsed reply or a synthetic failure."""

    success: bool
    data: str | None = None
    error: str | None = None
    status: ResponseStatus = ResponseStatus.OK
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def timeout(cls) -> Response:
        return cls(False, error="Command timeout", status=ResponseStatus.TIMEOUT)

    @classmethod
    def cancelled(cls) -> Response:
        return cls(False, error="Cancelled", status=ResponseStatus.CANCELLED)

    @classmethod
    def not_connected(cls) -> Response:
        return cls(False, error="Not connected", status=ResponseStatus.NOT_CONNECTED)

    @classmethod
    def transport_error(cls, message: str) -> Response:
        return cls(False, error=message, status=ResponseStatus.TRANSPORT_ERROR)

    @classmethod
    def sent(cls) -> Response:
        """Result of a write that expects no reply."""
        return cls(True)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "status": self.status.value}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class InputEvent:
    """An unsolicited INPUT_EVENT pushed by the board."""

    event_type: str
    index: int
    value: int | None = None

    @property
    def action(self) -> InputAction:
        return EVENT_ACTIONS.get(self.event_type, InputAction.PRESS)


@dataclass
class StateEntry:
    """One input in a GET_STATE report, addressed by list position."""

    index: int
    is_active: bool
    value: int | None = None


def is_reply_candidate(frame: str) -> bool:
    """Whether a frame could be the reply to an outstanding command.

    Replies are JSON objects with a ``response`` field. INPUT_EVENT frames
    carry the field too but are never replies.
    """
    message = decode_frame(frame)
    if message is None or "response" not in message:
        return False
    return message["response"] != INPUT_EVENT


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))


def parse_response(frame: str) -> Response:
    """Parse a reply frame into a Response.

    ``success`` must be literally ``true``; anything else is a failure.
    Generic ``ERROR`` frames put their text in ``message`` rather than
    ``error``, so both are read.
    """
    message = decode_frame(frame)
    if message is None:
        return Response(False, error="Malformed reply", status=ResponseStatus.DEVICE_ERROR)

    success = message.get("success") is True
    error = message.get("error")
    if error is None:
        error = message.get("message")
    return Response(
        success=success,
        data=_as_text(message.get("data")),
        error=_as_text(error),
        status=ResponseStatus.OK if success else ResponseStatus.DEVICE_ERROR,
        payload=message,
    )


def reply_matches(command_name: str, response: Response) -> bool:
    """Whether a reply's tag fits the command it was taken for.

    Replies carry no request id, so a reply that arrives after its command
    timed out is taken by the next one. ``ERROR`` replies and commands
    without a dedicated tag always match.
    """
    expected = EXPECTED_REPLIES.get(command_name)
    tag = response.payload.get("response")
    return expected is None or tag in (expected, ERROR)


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def parse_input_event(frame: str) -> InputEvent | None:
    """Parse an INPUT_EVENT frame; ``None`` for anything else."""
    message = decode_frame(frame)
    if message is None or message.get("response") != INPUT_EVENT:
        return None

    index = message.get("id")
    if not isinstance(index, int) or isinstance(index, bool):
        logger.debug("INPUT_EVENT without usable id: %s", frame)
        return None

    event_type = message.get("type")
    return InputEvent(
        event_type=event_type if isinstance(event_type, str) else "",
        index=index,
        value=_optional_int(message.get("value")),
    )


def parse_state_report(payload: dict[str, Any]) -> list[StateEntry]:
    """Extract input entries from a GET_STATE reply payload.

    Expected shape: ``{"inputs": [{"id": 0, "state": 1, "value": 100}, ...]}``.
    Entries without an integer id are skipped.
    """
    inputs = payload.get("inputs")
    if not isinstance(inputs, list):
        return []

    entries = []
    for item in inputs:
        if not isinstance(item, dict):
            continue
        index = item.get("id")
        if not isinstance(index, int) or isinstance(index, bool):
            continue
        entries.append(
            StateEntry(
                index=index,
                is_active=item.get("state") == 1,
                value=_optional_int(item.get("value")),
            )
        )
    return entries

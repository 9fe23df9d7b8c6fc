"""Runtime state: connection lifecycle and live input states."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


class ConnectionState(str, Enum):
    """Lifecycle of the serial link to the board."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class InputAction(str, Enum):
    """Something an input did."""

    PRESS = "press"
    RELEASE = "release"
    HOLD = "hold"
    ROTATE_CW = "rotate_cw"
    ROTATE_CCW = "rotate_ccw"
    ENCODER_PRESS = "encoder_press"
    TOGGLE_ON = "toggle_on"
    TOGGLE_OFF = "toggle_off"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InputState:
    """Live state of one configured input during testing."""

    input_id: str
    name: str = ""
    is_active: bool = False
    encoder_value: int | None = None
    last_changed: datetime = field(default_factory=utcnow)
    trigger_count: int = 0

    def copy(self) -> InputState:
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "input_id": self.input_id,
            "name": self.name,
            "is_active": self.is_active,
            "encoder_value": self.encoder_value,
            "last_changed": self.last_changed.isoformat(),
            "trigger_count": self.trigger_count,
        }


@dataclass(frozen=True)
class ConnectionStateChange:
    old_state: ConnectionState
    new_state: ConnectionState
    port: str | None = None


@dataclass(frozen=True)
class DeviceError:
    """A fault reported by the client (user-facing message plus cause)."""

    message: str
    exception: BaseException | None = None


@dataclass(frozen=True)
class InputTriggered:
    input_id: str
    input_name: str
    action: InputAction
    value: int | None
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "input_id": self.input_id,
            "input_name": self.input_name,
            "action": self.action.value,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class StatesUpdated:
    """Batch notification after a state report or simulated trigger."""

    states: dict[str, InputState]
    timestamp: datetime

"""Command vocabulary and high-level command builders.

Every host-to-board message is ``{"cmd": <type>, "params": {...}}``.
The board answers with a single reply line; there is no request id, so
only one command may be outstanding at a time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from .framing import encode_frame

DEFAULT_TIMEOUT = 1.0
PING_TIMEOUT = 2.0
VERSION_TIMEOUT = 1.0

MAX_BRIGHTNESS = 15
MAX_DISPLAY_VALUE = 99_999_999  # 8-digit MAX7219 module


class CommandType(str, Enum):
    """Command identifiers understood by the firmware."""

    PING = "PING"
    VERSION = "VERSION"
    GET_STATE = "GET_STATE"
    SET_DISPLAY = "SET_DISPLAY"
    TEST_DISPLAY = "TEST_DISPLAY"
    UPLOAD_CONFIG = "UPLOAD_CONFIG"
    SAVE_CONFIG = "SAVE_CONFIG"
    RESET_CONFIG = "RESET_CONFIG"
    TEST_MODE = "TEST_MODE"
    KEYBOARD_MODE = "KEYBOARD_MODE"


class DisplayTestPattern(str, Enum):
    """Test patterns the firmware can run on a display."""

    ALL_ON = "ALL_ON"
    ALL_OFF = "ALL_OFF"
    COUNT_UP = "COUNT_UP"
    COUNT_DOWN = "COUNT_DOWN"
    SWEEP = "SWEEP"
    RANDOM = "RANDOM"

    @property
    def wire_name(self) -> str:
        """Name as the firmware spells it (``COUNT_UP`` -> ``COUNTUP``)."""
        return self.value.replace("_", "")


@dataclass(frozen=True)
class Command:
    """A single command. Immutable once built."""

    type: CommandType
    params: Mapping[str, Any] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", CommandType(self.type))
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        if self.timeout <= 0:
            raise ValueError(f"Command timeout must be positive, got {self.timeout}")

    def to_message(self) -> dict[str, Any]:
        return {"cmd": self.type.value, "params": dict(self.params)}

    def __repr__(self) -> str:
        return f"Command({self.type.value}, params={dict(self.params)!r}, timeout={self.timeout})"


def encode_command(command: Command) -> bytes:
    """Serialize a command to its wire frame."""
    return encode_frame(command.to_message())


def build_command(
    command_type: CommandType | str,
    params: Mapping[str, Any] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Command:
    """Build any command in the vocabulary.

    Raises:
        ValueError: If ``command_type`` is not a known command.
    """
    try:
        kind = CommandType(command_type)
    except ValueError:
        raise ValueError(
            f"Unknown command '{command_type}'. Valid: {[c.value for c in CommandType]}"
        ) from None
    return Command(kind, params or {}, timeout)


def build_ping(timeout: float = PING_TIMEOUT) -> Command:
    """Build a PING, used as the connection handshake."""
    return Command(CommandType.PING, timeout=timeout)


def build_version() -> Command:
    return Command(CommandType.VERSION, timeout=VERSION_TIMEOUT)


def build_get_state(timeout: float = DEFAULT_TIMEOUT) -> Command:
    """Build a GET_STATE snapshot request."""
    return Command(CommandType.GET_STATE, timeout=timeout)


def _check_display(display: int) -> None:
    if display < 0:
        raise ValueError(f"Display index must be >= 0, got {display}")


def build_set_display(display: int, value: int, brightness: int) -> Command:
    """Build a SET_DISPLAY command.

    Args:
        display: Display index in the uploaded configuration.
        value: Number to show (0-99999999).
        brightness: MAX7219 intensity (0-15).
    """
    _check_display(display)
    if not 0 <= value <= MAX_DISPLAY_VALUE:
        raise ValueError(f"Display value must be 0-{MAX_DISPLAY_VALUE}, got {value}")
    if not 0 <= brightness <= MAX_BRIGHTNESS:
        raise ValueError(f"Brightness must be 0-{MAX_BRIGHTNESS}, got {brightness}")
    return Command(
        CommandType.SET_DISPLAY,
        {"display": display, "value": value, "brightness": brightness},
    )


def build_test_display(display: int, pattern: DisplayTestPattern | str) -> Command:
    """Build a TEST_DISPLAY command running ``pattern`` on a display."""
    _check_display(display)
    try:
        pattern = DisplayTestPattern(pattern)
    except ValueError:
        raise ValueError(
            f"Unknown pattern '{pattern}'. Valid: {[p.value for p in DisplayTestPattern]}"
        ) from None
    return Command(
        CommandType.TEST_DISPLAY,
        {"display": display, "pattern": pattern.wire_name},
    )


def build_upload_config(config: Mapping[str, Any], timeout: float = 5.0) -> Command:
    """Build an UPLOAD_CONFIG carrying the full configuration object."""
    return Command(CommandType.UPLOAD_CONFIG, config, timeout)


def build_save_config() -> Command:
    """Build a SAVE_CONFIG (persist to EEPROM)."""
    return Command(CommandType.SAVE_CONFIG, timeout=2.0)


def build_reset_config() -> Command:
    return Command(CommandType.RESET_CONFIG, timeout=2.0)


def build_test_mode(enabled: bool) -> Command:
    """Build a TEST_MODE toggle (suppresses keyboard output while testing)."""
    return Command(CommandType.TEST_MODE, {"enabled": bool(enabled)})


def build_keyboard_mode(enabled: bool) -> Command:
    return Command(CommandType.KEYBOARD_MODE, {"enabled": bool(enabled)})

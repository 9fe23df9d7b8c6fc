"""Project configuration as seen by the device layer.

Only the parts the serial core needs are modelled: the ordered input and
display lists (the board addresses both by list position) and enough of
each entry to upload it. Editing and persisting projects happens
elsewhere; this module just reads the project JSON file.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class InputType(str, Enum):
    """Input components the firmware supports."""

    LATCHING_BUTTON = "latching_button"
    MOMENTARY_BUTTON = "momentary_button"
    ROTARY_ENCODER = "rotary_encoder"
    TOGGLE_SWITCH = "toggle_switch"


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class InputConfig:
    """One configured input (button, encoder or toggle)."""

    name: str
    input_type: InputType = InputType.MOMENTARY_BUTTON
    pins: list[int] = field(default_factory=list)
    current_value: int = 0
    enabled: bool = True
    id: str = field(default_factory=_new_id)

    @property
    def is_encoder(self) -> bool:
        return self.input_type is InputType.ROTARY_ENCODER

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.input_type.value,
            "pins": list(self.pins),
            "enabled": self.enabled,
        }
        if self.is_encoder:
            d["value"] = self.current_value
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InputConfig:
        return cls(
            name=str(data.get("name", "")),
            input_type=InputType(data.get("type", InputType.MOMENTARY_BUTTON.value)),
            pins=[int(p) for p in data.get("pins", [])],
            current_value=int(data.get("value", 0)),
            enabled=bool(data.get("enabled", True)),
            id=str(data.get("id") or _new_id()),
        )


@dataclass
class DisplayConfig:
    """One MAX7219 seven-segment display."""

    name: str
    cs_pin: int = 10
    digit_count: int = 8
    brightness: int = 8
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "cs_pin": self.cs_pin,
            "digits": self.digit_count,
            "brightness": self.brightness,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DisplayConfig:
        return cls(
            name=str(data.get("name", "")),
            cs_pin=int(data.get("cs_pin", 10)),
            digit_count=int(data.get("digits", 8)),
            brightness=int(data.get("brightness", 8)),
            id=str(data.get("id") or _new_id()),
        )


@dataclass
class ProjectConfig:
    """Ordered inputs and displays of a project."""

    name: str = "New Project"
    inputs: list[InputConfig] = field(default_factory=list)
    displays: list[DisplayConfig] = field(default_factory=list)

    def input_at(self, index: int) -> InputConfig | None:
        """Resolve a wire index to an input (the board only knows positions)."""
        if 0 <= index < len(self.inputs):
            return self.inputs[index]
        return None

    def find_input(self, input_id: str) -> InputConfig | None:
        return next((i for i in self.inputs if i.id == input_id), None)

    def display_index(self, display_id: str) -> int | None:
        for index, display in enumerate(self.displays):
            if display.id == display_id:
                return index
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "inputs": [i.to_dict() for i in self.inputs],
            "displays": [d.to_dict() for d in self.displays],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectConfig:
        return cls(
            name=str(data.get("name", "New Project")),
            inputs=[InputConfig.from_dict(i) for i in data.get("inputs", [])],
            displays=[DisplayConfig.from_dict(d) for d in data.get("displays", [])],
        )


def load_project(path: str | Path) -> ProjectConfig:
    """Load a project from its JSON file.

    Raises:
        ValueError: If the file is not a JSON object or an entry is invalid.
    """
    path = Path(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a project object")
    return ProjectConfig.from_dict(data)

"""Data models for the project configuration and runtime device state."""

from .project import DisplayConfig, InputConfig, InputType, ProjectConfig, load_project
from .state import (
    ConnectionState,
    ConnectionStateChange,
    DeviceError,
    InputAction,
    InputState,
    InputTriggered,
    StatesUpdated,
)

"""Serial link, input tester and MCP server for Arduino button boxes."""

from .client import DeviceClient
from .tester import InputTester, NotConnectedError

__version__ = "0.1.0"

"""Serial transport to the board."""

from .serial_connection import OpenError, PortInfo, SerialConnection, TransportError, list_ports

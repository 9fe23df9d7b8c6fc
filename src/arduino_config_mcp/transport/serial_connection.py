"""Serial connection to an Arduino board running the config firmware.

Uses ``pyserial``. The link is 8N1 with DTR and RTS asserted on open,
which makes most Arduino boards reset. Callers must wait for the board
to boot and discard whatever it printed while doing so.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import serial
from serial.tools import list_ports as serial_list_ports

logger = logging.getLogger(__name__)

DEFAULT_BAUD_RATE = 115200
READ_TIMEOUT = 0.1
WRITE_TIMEOUT = 1.0
READ_CHUNK_SIZE = 1024

# Substrings of port descriptions that usually mean an Arduino-class board
ARDUINO_HINTS = (
    "arduino",
    "ch340",
    "ch341",
    "ftdi",
    "usb serial",
    "atmega32u4",
    "atmega2560",
)


class TransportError(ConnectionError):
    """Raised on serial read/write faults or when the port is not open."""


class OpenError(TransportError):
    """Raised when the serial port cannot be opened."""


@dataclass
class PortInfo:
    """A serial port as reported by the OS."""

    device: str
    description: str = ""
    is_arduino: bool = False

    def to_dict(self) -> dict:
        return {
            "device": self.device,
            "description": self.description,
            "is_arduino": self.is_arduino,
        }


def is_arduino_port(description: str) -> bool:
    """Guess whether a port description belongs to an Arduino board."""
    lowered = description.lower()
    return any(hint in lowered for hint in ARDUINO_HINTS)


def list_ports() -> list[PortInfo]:
    """Enumerate serial ports, sorted by device name."""
    ports = []
    for port in serial_list_ports.comports():
        description = port.description or port.device
        ports.append(
            PortInfo(
                device=port.device,
                description=description,
                is_arduino=is_arduino_port(description),
            )
        )
    return sorted(ports, key=lambda p: p.device)


class SerialConnection:
    """Manages the serial port to the board.

    Usage::

        conn = SerialConnection()
        conn.open("/dev/ttyACM0", 115200)
        conn.write(b'{"cmd":"PING","params":{}}\\n')
        chunk = conn.read_available()
        conn.close()

    All methods block; the async client runs them in an executor.
    """

    def __init__(
        self,
        read_timeout: float = READ_TIMEOUT,
        write_timeout: float = WRITE_TIMEOUT,
    ) -> None:
        self._read_timeout = read_timeout
        self._write_timeout = write_timeout
        self._serial: serial.Serial | None = None
        self._port: str | None = None

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    @property
    def port(self) -> str | None:
        return self._port

    @property
    def read_timeout(self) -> float:
        return self._read_timeout

    def open(self, port: str, baud_rate: int = DEFAULT_BAUD_RATE) -> None:
        """Open the port with the board's line settings.

        Raises:
            OpenError: If the port is already open or cannot be opened.
        """
        if self.is_open:
            raise OpenError(f"Serial port {self._port} is already open")

        ser = serial.Serial()
        ser.port = port
        ser.baudrate = baud_rate
        ser.bytesize = serial.EIGHTBITS
        ser.parity = serial.PARITY_NONE
        ser.stopbits = serial.STOPBITS_ONE
        ser.timeout = self._read_timeout
        ser.write_timeout = self._write_timeout
        # Applied on open; asserting DTR is what resets the board
        ser.dtr = True
        ser.rts = True

        try:
            ser.open()
        except (serial.SerialException, OSError, ValueError) as e:
            raise OpenError(f"Could not open {port}: {e}") from e

        self._serial = ser
        self._port = port
        logger.info("Opened %s at %d baud", port, baud_rate)

    def read_available(self, size: int = READ_CHUNK_SIZE) -> bytes:
        """Read up to ``size`` bytes, waiting at most one read timeout.

        Returns:
            The bytes read, or ``b""`` if nothing arrived in time.

        Raises:
            TransportError: If the port is not open or the read fails.
        """
        ser = self._serial
        if ser is None or not ser.is_open:
            raise TransportError("Serial port is not open")

        try:
            first = ser.read(1)
            if not first:
                return b""
            waiting = min(ser.in_waiting, size - 1)
            if waiting <= 0:
                return first
            return first + ser.read(waiting)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Read failed: {e}") from e

    def write(self, data: bytes) -> int:
        """Write raw bytes to the board.

        Returns:
            Number of bytes written.

        Raises:
            TransportError: If the port is not open or the write fails.
        """
        ser = self._serial
        if ser is None or not ser.is_open:
            raise TransportError("Serial port is not open")

        try:
            written = ser.write(data)
            ser.flush()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Write failed: {e}") from e
        return written or 0

    def discard_buffers(self) -> None:
        """Drop anything buffered in either direction (e.g. boot noise)."""
        ser = self._serial
        if ser is None or not ser.is_open:
            raise TransportError("Serial port is not open")
        try:
            ser.reset_input_buffer()
            ser.reset_output_buffer()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Could not discard buffers: {e}") from e

    def close(self) -> None:
        """Close the port. Safe to call when already closed."""
        if self._serial is None:
            return

        try:
            self._serial.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing serial port: %s", e)
        finally:
            logger.info("Closed %s", self._port)
            self._serial = None
            self._port = None

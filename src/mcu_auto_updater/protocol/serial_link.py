"""
Serial link to the running MCU firmware.

Handles low-level serial communication for the update handshake:
- Port initialization (fixed baud, 8N1, raw, no echo, no flow control)
- Unframed ASCII writes
- Timeout-bounded reads
"""

import logging
import termios
from typing import Optional

import serial

from ..core.errors import SerialLinkError, SerialUnavailable

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 115200


class SerialLink:
    """
    Serial transport for the UPDATE_AVAILABLE / ACK exchange.

    pyserial configures POSIX ports in raw mode with echo disabled, which is
    what the device side expects.

    Example:
        link = SerialLink("/dev/serial0")
        link.open()
        link.send(b"UPDATE_AVAILABLE:5")
        reply = link.read_reply(timeout=2.0)
        link.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        timeout: float = 2.0,
    ):
        """
        Args:
            port: Serial device (e.g., "/dev/serial0", "/dev/ttyAMA4")
            baudrate: Baud rate (default 115200)
            timeout: Default read/write timeout in seconds
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.ser: Optional[serial.Serial] = None

    def __enter__(self) -> "SerialLink":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def open(self) -> None:
        """
        Open and configure the serial port.

        Raises:
            SerialUnavailable: If the port cannot be opened or configured
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout,
                write_timeout=self.timeout,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
            )
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()
        except (serial.SerialException, ValueError, OSError) as e:
            self.ser = None
            raise SerialUnavailable(f"Cannot open port {self.port}: {e}")

        logger.debug(f"Opened {self.port} at {self.baudrate} bps (timeout={self.timeout}s)")

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")
        self.ser = None

    def send(self, data: bytes) -> None:
        """
        Write bytes without framing or terminator.

        Raises:
            SerialLinkError: If the port is closed or the write fails
        """
        if not self.is_open:
            raise SerialLinkError("Serial port not open")
        try:
            written = self.ser.write(data)
            self.ser.flush()
        except (serial.SerialException, OSError, termios.error) as e:
            raise SerialLinkError(f"Write error: {e}")
        if written is not None and written != len(data):
            raise SerialLinkError(f"Incomplete write: sent {written}/{len(data)} bytes")
        logger.debug(f">>> {data!r}")

    def read_reply(self, timeout: Optional[float] = None) -> bytes:
        """
        Read one reply line, waiting at most timeout seconds.

        Returns whatever arrived before a newline or the timeout; an empty
        result means the device stayed silent.

        Raises:
            SerialLinkError: If the port is closed or the read fails
        """
        if not self.is_open:
            raise SerialLinkError("Serial port not open")

        old_timeout = self.ser.timeout
        try:
            if timeout is not None:
                self.ser.timeout = timeout
            data = self.ser.readline()
        except (serial.SerialException, OSError, termios.error) as e:
            raise SerialLinkError(f"Read error: {e}")
        finally:
            if timeout is not None and self.ser is not None:
                self.ser.timeout = old_timeout

        if data:
            logger.debug(f"<<< {data!r}")
        return data


def list_serial_ports():
    """Return pyserial port info objects for attached serial devices."""
    from serial.tools import list_ports

    return sorted(list_ports.comports(), key=lambda p: p.device)

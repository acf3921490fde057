""" Line based transports for hardware controllers that connect over a serial port. """

from typing import Callable, List, Optional

import asyncio
import logging
import os.path

import serial
import serial.tools.list_ports
import serial_asyncio

from definitions import BAUD_RATE
from controllers.grbl_errors import GrblConnectionError

logger = logging.getLogger(__name__)

# Path to grbl-sim instance.
FAKE_SERIAL = "/tmp/ttyFAKE"

CLOSE_TIMEOUT = 2.0  # seconds


def list_serial_ports() -> List[str]:
    """ Search system for serial ports that look like they have hardware attached. """
    ports = [port.device for port in serial.tools.list_ports.comports()
             if port.vid is not None
             and port.pid is not None
             and port.device is not None]

    if os.path.exists(FAKE_SERIAL):
        ports.append(FAKE_SERIAL)

    logger.debug("Found ports %s", ports)
    return ports


class LineTransportBase:
    """ A byte stream connection framed into lines of text.
    Received lines are passed, without line terminators, to on_line. """

    def __init__(self) -> None:
        self.on_line: Optional[Callable[[str], None]] = None

    @property
    def is_open(self) -> bool:
        """ True while connected. """
        raise NotImplementedError

    async def connect(self, baud_rate: int = BAUD_RATE) -> None:
        """ Open the connection. """
        raise NotImplementedError

    async def send_text(self, text: str) -> None:
        """ Write text exactly as given. No terminator is added. """
        raise NotImplementedError

    async def disconnect(self) -> None:
        """ Close the connection. """
        raise NotImplementedError

    def _line_received(self, line: str) -> None:
        logger.debug("Received: %r", line)
        if self.on_line is not None:
            self.on_line(line)


class SerialLineProtocol(asyncio.Protocol):
    """ Splits data received from the serial port into lines.
    Grbl terminates lines with "\\r\\n". Whitespace is stripped from the ends of
    lines and blank lines are dropped. """

    def __init__(self, on_line: Callable[[str], None]) -> None:
        self.on_line = on_line
        self.transport: Optional[asyncio.BaseTransport] = None
        # Undecoded bytes after the last "\n".
        self._partial_read: bytes = b""
        loop = asyncio.get_running_loop()
        self.connected: "asyncio.Future[None]" = loop.create_future()
        self.closed: "asyncio.Future[None]" = loop.create_future()

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport
        if not self.connected.done():
            self.connected.set_result(None)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            logger.warning("Serial connection lost: %s", exc)
        self.transport = None
        if not self.closed.done():
            self.closed.set_result(None)

    def data_received(self, data: bytes) -> None:
        *lines, self._partial_read = (self._partial_read + data).split(b"\n")
        for raw in lines:
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                self.on_line(line)


class SerialLineTransport(LineTransportBase):
    """ LineTransportBase over a local serial port, or any URL pyserial's
    serial_for_url understands (eg: "socket://localhost:2000"). """

    def __init__(self, serial_port: str) -> None:
        super().__init__()
        self.serial_port = serial_port
        self._transport: Optional[asyncio.Transport] = None
        self._protocol: Optional[SerialLineProtocol] = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    async def connect(self, baud_rate: int = BAUD_RATE) -> None:
        if self.is_open:
            return

        loop = asyncio.get_running_loop()
        protocol = SerialLineProtocol(self._line_received)
        try:
            transport, _ = await serial_asyncio.create_serial_connection(
                loop, lambda: protocol, self.serial_port, baudrate=baud_rate)
        except serial.SerialException as error:
            logger.error("Error connecting to %s: %s", self.serial_port, error)
            raise GrblConnectionError(
                "Could not open %s: %s" % (self.serial_port, error)) from error

        await protocol.connected
        self._transport = transport
        self._protocol = protocol
        logger.info("Connected to %s at %s baud", self.serial_port, baud_rate)

    async def send_text(self, text: str) -> None:
        if not self.is_open:
            raise GrblConnectionError("Serial port %s is not open" % self.serial_port)
        assert self._transport is not None

        logger.debug("Sent: %r", text)
        try:
            self._transport.write(text.encode("latin-1"))
        except serial.SerialException as error:
            raise GrblConnectionError(
                "Write to %s failed: %s" % (self.serial_port, error)) from error

    async def disconnect(self) -> None:
        if self._transport is None:
            return
        assert self._protocol is not None

        self._transport.close()
        try:
            await asyncio.wait_for(asyncio.shield(self._protocol.closed), CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Serial port %s did not confirm close", self.serial_port)
        self._transport = None
        self._protocol = None
        logger.info("Serial port %s closed", self.serial_port)

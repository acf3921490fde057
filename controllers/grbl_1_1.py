""" Driver for Grbl 1.1 controller hardware.
See https://github.com/gnea/grbl/wiki/Grbl-v1.1-Commands """

from typing import Any, Optional, Union

import asyncio
import logging

from pygcode import Block, GCode

from definitions import (
    BAUD_RATE, DEFAULT_TIMEOUT, HOMING_TIMEOUT, SUPPORTED_VERSION, WELCOME_TIMEOUT,
    RESPONSE_SEPARATOR, RESPONSE_OK, RESPONSE_ERROR, RESPONSE_ALARM,
    CMD_STATUS_REPORT, CMD_CYCLE_START, CMD_FEED_HOLD, CMD_JOG_CANCEL, CMD_JOG, CMD_HOME,
    ConnectionState)
from controllers._controller_base import CommandQueue, ResponseDemultiplexer
from controllers._controller_serial_base import LineTransportBase, SerialLineTransport
from controllers.grbl_errors import (
    CommandTimeout, GrblConnectionError, GrblError, GrblErrorResponse, UnexpectedResponse,
    UnknownErrorCode, UnsupportedGcode, lookup_alarm, lookup_error)
from controllers.state_machine import RTStatusReport, WelcomeHandshake, parse_rt_status

logger = logging.getLogger(__name__)

Command = Union[str, Block]


def sort_gcode(block: Block) -> str:
    """ Reorder gcode to a manner that is friendly to clients.
    eg: Feed rate should proceed "G01" and "G00".
    Words not claimed by any gcode (eg: the axis words of a jog) go last. """
    words = [str(gcode) for gcode in sorted(block.gcodes)]
    words += [str(word) for word in block.modal_params]
    return " ".join(words)


def gcode_key(gcode: GCode) -> str:
    """ Name a gcode the way SUPPORTED_GCODE does.
    eg: "G01", "G92.1", "M03", "G10 L20". Feed rate, spindle speed and tool
    words are named by their letter alone. """
    word = gcode.word
    if word.letter not in ("G", "M"):
        return word.letter
    key = str(word)
    if key == "G10" and gcode.L is not None:
        key = "G10 L%d" % gcode.L
    return key


class Grbl1p1Controller:
    """ Talks to Grbl 1.1 firmware over a line transport.

    Commands are executed one at a time: each is written only after the
    previous one has been answered (or has timed out) so Grbl's single line
    input buffer can never overflow. All methods must be awaited from the same
    event loop. """

    # GRBL1.1 only supports the following subset of gcode.
    # https://github.com/gnea/grbl/wiki/Grbl-v1.1-Commands
    SUPPORTED_GCODE = set((
        "G00", "G01", "G02", "G03", "G38.2", "G38.3", "G38.4", "G38.5", "G80",
        "G54", "G55", "G56", "G57", "G58", "G59",
        "G17", "G18", "G19",
        "G90", "G91",
        "G91.1",
        "G93", "G94",
        "G20", "G21",
        "G40",
        "G43.1", "G49",
        "M00", "M01", "M02", "M30",
        "M03", "M04", "M05",
        "M07", "M08", "M09",
        "G04", "G10 L2", "G10 L20", "G28", "G30", "G28.1", "G30.1",
        "G53", "G92", "G92.1",
        "F", "T", "S"
        ))

    def __init__(self,
                 serial_port: str = "",
                 transport: Optional[LineTransportBase] = None,
                 default_timeout: float = DEFAULT_TIMEOUT,
                 release_on_timeout: bool = True,
                 supported_version: str = SUPPORTED_VERSION) -> None:
        if transport is None:
            transport = SerialLineTransport(serial_port)
        self._transport = transport
        self.default_timeout = default_timeout
        self.supported_version = supported_version

        self.connection = ConnectionState()
        self._closed = False
        # Shared by every connect() call made while the handshake is running.
        self._connecting: Optional["asyncio.Future[None]"] = None
        self._welcomed: Optional["asyncio.Future[str]"] = None

        self._responses = ResponseDemultiplexer(self._unsolicited)
        self._commands = CommandQueue(self._responses, self._transport.send_text,
                                      release_on_timeout=release_on_timeout)
        self._transport.on_line = self._responses.dispatch

    @property
    def version(self) -> Optional[str]:
        """ Firmware version reported in Grbl's welcome message. """
        return self.connection.version

    @property
    def connected(self) -> bool:
        """ True once the welcome handshake has succeeded. """
        return self.connection.connected and not self._closed

    @staticmethod
    def _unsolicited(line: str) -> None:
        """ A line arrived that no command was waiting for. """
        if line.startswith(RESPONSE_ALARM):
            code = line[len(RESPONSE_ALARM):]
            description = lookup_alarm(int(code)) if code.isdigit() else None
            logger.warning("Grbl alarm %s: %s", code, description or "Unknown alarm code")
            return
        logger.warning("Received unexpected message from Grbl: %s", line)

    async def connect(self, timeout: float = WELCOME_TIMEOUT) -> None:
        """ Open the transport and wait for Grbl's welcome message.
        Raise VersionMismatch if the firmware is not the supported version,
        WelcomeFormatError if the welcome message can not be understood.
        Calls made while a handshake is already running wait for that one. """
        if self.connected:
            return
        if self._closed:
            raise GrblConnectionError("Controller has been disconnected. Create a new one.")

        if self._connecting is None:
            self._connecting = asyncio.ensure_future(self._open(timeout))
        connecting = self._connecting
        try:
            await asyncio.shield(connecting)
        finally:
            if connecting.done() and self._connecting is connecting:
                self._connecting = None

    async def _open(self, timeout: float) -> None:
        await self._transport.connect(BAUD_RATE)
        if self._closed:
            raise GrblConnectionError("Disconnected from Grbl.")

        handshake = WelcomeHandshake(self.supported_version)
        loop = asyncio.get_running_loop()
        welcomed: "asyncio.Future[str]" = loop.create_future()
        self._welcomed = welcomed

        def welcome_handler(line: str) -> bool:
            if not handshake.feed(line):
                return False
            if not welcomed.done():
                try:
                    welcomed.set_result(handshake.result())
                except GrblError as error:
                    welcomed.set_exception(error)
            return True

        self._responses.register(welcome_handler, owner=handshake)
        try:
            version = await asyncio.wait_for(welcomed, timeout)
        except asyncio.TimeoutError:
            self._responses.discard(handshake)
            raise CommandTimeout("<welcome message>", timeout) from None
        finally:
            self._welcomed = None

        self.connection.version = version
        self.connection.connected = True
        logger.info("Connected to Grbl %s", version)

    async def command(self,
                      cmd: str,
                      num_response_lines: int = 1,
                      timeout: Optional[float] = None) -> str:
        """ Queue a raw command and return the response lines joined by "\\r\\n". """
        if not self.connected:
            raise GrblConnectionError("Not connected to Grbl.")
        if timeout is None:
            timeout = self.default_timeout
        return await self._commands.submit(cmd, num_response_lines, timeout)

    def is_gcode_supported(self, command: Any) -> bool:
        """ Check a gcode command line contains only supported gcode statements. """
        if isinstance(command, Block):
            return all(self.is_gcode_supported(gcode) for gcode in command.gcodes)
        if isinstance(command, GCode):
            return self.is_gcode_supported(gcode_key(command))
        if isinstance(command, str):
            return command in self.SUPPORTED_GCODE

        raise AttributeError("Cannot tell if %s is valid gcode." % command)

    def _command_text(self, command: Command) -> str:
        if isinstance(command, Block):
            if not self.is_gcode_supported(command):
                raise UnsupportedGcode("Unsupported gcode: %s" % str(command))
            return sort_gcode(command)
        return command

    # $ Commands

    async def send(self, command: Command, timeout: Optional[float] = None) -> None:
        """ Send a command directly to Grbl.
        Returns when the command has been acknowledged with "ok". """
        text = self._command_text(command)
        response = await self.command(text, timeout=timeout)
        self._check_ack(text, response)

    @staticmethod
    def _check_ack(text: str, response: str) -> None:
        if response == RESPONSE_OK:
            return

        if response.startswith(RESPONSE_ERROR):
            code = response[len(RESPONSE_ERROR):]
            try:
                error_code = int(code)
            except ValueError:
                raise UnknownErrorCode(code) from None

            description = lookup_error(error_code)
            if description is None:
                raise UnknownErrorCode(error_code)
            raise GrblErrorResponse(error_code, description)

        raise UnexpectedResponse(text, response)

    async def jog(self, command: Command) -> None:
        """ Run a jogging command.
        See https://github.com/gnea/grbl/wiki/Grbl-v1.1-Jogging
        Requires: One or more XYZ words, and a feed rate word.
        Optional: G20/G21, G90/G91, G53. For example, "G91 G20 X0.5 F10". """
        await self.send(CMD_JOG + self._command_text(command))

    async def home(self, timeout: float = HOMING_TIMEOUT) -> None:
        """ Run the homing cycle. Grbl only acknowledges once the cycle has finished. """
        await self.send(CMD_HOME, timeout=timeout)

    # Real-time commands

    async def rt_query_status(self) -> RTStatusReport:
        """ Perform a status report query.
        See the function report_realtime_status in grbl/report.c """
        response = await self.command(CMD_STATUS_REPORT, 2)

        # Status then ok.
        status, _ = response.split(RESPONSE_SEPARATOR, 1)
        return parse_rt_status(status)

    async def _realtime(self, char: str) -> None:
        """ Real-time commands are acted on as soon as Grbl receives them and
        produce no response so they bypass the command queue. """
        if not self.connected:
            raise GrblConnectionError("Not connected to Grbl.")
        await self._transport.send_text(char)

    async def feed_hold(self) -> None:
        """ Pause motion. """
        await self._realtime(CMD_FEED_HOLD)

    async def cycle_start(self) -> None:
        """ Resume motion after a feed hold. """
        await self._realtime(CMD_CYCLE_START)

    async def jog_cancel(self) -> None:
        """ Cancel the current jog motion and flush any queued jog commands. """
        await self._realtime(CMD_JOG_CANCEL)

    async def disconnect(self) -> None:
        """ Close the transport. Commands still queued or waiting for a response
        fail with GrblConnectionError, as does a connect() still waiting for
        the welcome message. """
        if self._welcomed is not None and not self._welcomed.done():
            self._welcomed.set_exception(GrblConnectionError("Disconnected from Grbl."))
        failed = self._commands.abandon("Disconnected from Grbl.")
        if failed:
            logger.info("Abandoned %s outstanding command(s) on disconnect", failed)
        self._closed = True
        await self._transport.disconnect()

""" State machines and parsers for data received from Grbl controllers.
Both operate on single, already framed lines of text. """

from typing import Dict, List, Optional, Union

import logging
import re

from definitions import HandshakeState, SUPPORTED_VERSION, WELCOME_MARKER
from controllers.grbl_errors import (
    GrblFormatError, HandshakeIncomplete, WelcomeFormatError, VersionMismatch)

logger = logging.getLogger(__name__)

RTStatusValue = Union[float, str]
RTStatusReport = Dict[str, List[RTStatusValue]]

WELCOME_REGEX = re.compile(r"Grbl (\d+\.\d+[a-z]?) \['\$' for help]")

# Decimal numbers as Grbl prints them. float() alone would also accept
# "nan", "inf" and "1_000".
NUMBER_REGEX = re.compile(r"[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")


def _parse_rt_value(token: str) -> RTStatusValue:
    """ Convert a single status field to a float if it looks like a number. """
    if NUMBER_REGEX.fullmatch(token):
        return float(token)
    return token


def parse_rt_status(msg: str) -> RTStatusReport:
    """ Decode a real-time status report.
    Example message:
        <Idle|MPos:0.000,0.000,0.000|FS:0,0|WCO:0.000,0.000,0.000>
    decodes to:
        {"Idle": [], "MPos": [0.0, 0.0, 0.0], "FS": [0.0, 0.0], "WCO": [0.0, 0.0, 0.0]}

    Fields that are not numbers (eg: "Pn:XYZ") are kept as strings.
    A section appearing twice keeps the last value seen. """
    if not msg.startswith("<") or not msg.endswith(">"):
        raise GrblFormatError("Invalid RT status message: %s" % msg)

    report: RTStatusReport = {}
    for section in msg[1:-1].split("|"):
        key, _, raw_value = section.partition(":")
        if raw_value:
            report[key] = [_parse_rt_value(token) for token in raw_value.split(",")]
        else:
            report[key] = []
    return report


class WelcomeHandshake:
    """ Accumulates the lines Grbl sends when a connection is opened until the
    welcome banner is complete, then checks the firmware version.

    Grbl may print noise before the banner so lines are concatenated and only
    examined once the buffer ends in "['$' for help]".
    feed() returns True once a terminal state has been reached. """

    def __init__(self, supported_version: str = SUPPORTED_VERSION) -> None:
        self.supported_version = supported_version
        self.state: HandshakeState = HandshakeState.AWAITING_BANNER
        self.buffer: str = ""
        self.version: Optional[str] = None
        self.error: Optional[Exception] = None

    @property
    def finished(self) -> bool:
        """ True when no more lines are wanted. """
        return self.state is not HandshakeState.AWAITING_BANNER

    def feed(self, line: str) -> bool:
        """ Advance the handshake with one received line. """
        if self.finished:
            return True

        self.buffer += line
        if not self.buffer.endswith(WELCOME_MARKER):
            return False

        match = WELCOME_REGEX.search(self.buffer)
        if not match:
            self.state = HandshakeState.BANNER_UNPARSEABLE
            self.error = WelcomeFormatError(
                "Could not parse Grbl welcome message: %s" % self.buffer)
            return True

        self.version = match.group(1)
        if self.version != self.supported_version:
            self.state = HandshakeState.VERSION_UNSUPPORTED
            self.error = VersionMismatch(self.version, self.supported_version)
            return True

        logger.debug("Welcome message received: %s", self.buffer)
        self.state = HandshakeState.VERSION_MATCHED
        return True

    def result(self) -> str:
        """ The firmware version, or raise whatever ended the handshake. """
        if self.error is not None:
            raise self.error
        if self.state is not HandshakeState.VERSION_MATCHED:
            raise HandshakeIncomplete("Handshake has not finished: %s" % self.state.name)
        assert self.version is not None
        return self.version

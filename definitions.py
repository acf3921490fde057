""" Constants and shared types for talking to Grbl 1.1 firmware.
See https://github.com/gnea/grbl/wiki/Grbl-v1.1-Interface """

from typing import Optional
from dataclasses import dataclass
from enum import Enum

BAUD_RATE = 115200

# Other versions may work but response formats differ in undocumented ways.
SUPPORTED_VERSION = "1.1h"

DEFAULT_TIMEOUT = 3.0   # seconds
WELCOME_TIMEOUT = 5.0   # seconds
HOMING_TIMEOUT = 60.0   # seconds

# Terminates every queued command.
COMMAND_TERMINATOR = "\r"
# Joins the lines of a multi line response.
RESPONSE_SEPARATOR = "\r\n"

WELCOME_MARKER = "['$' for help]"

# Real-time commands. See config.h
CMD_RESET = "\x18"  # ctrl-x.
CMD_STATUS_REPORT = "?"
CMD_CYCLE_START = "~"
CMD_FEED_HOLD = "!"
CMD_JOG_CANCEL = "\x85"

CMD_JOG = "$J="
CMD_HOME = "$H"

RESPONSE_OK = "ok"
RESPONSE_ERROR = "error:"
RESPONSE_ALARM = "ALARM:"


class HandshakeState(Enum):
    """ Progress of the welcome banner handshake. """
    AWAITING_BANNER = 0
    VERSION_MATCHED = 1
    VERSION_UNSUPPORTED = 2
    BANNER_UNPARSEABLE = 3


@dataclass
class ConnectionState:
    """ Per controller record of the firmware we are talking to. """
    version: Optional[str] = None
    connected: bool = False

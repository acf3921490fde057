""" Grbl 1.1 error and alarm codes, and the exceptions raised by the controllers.
See https://github.com/gnea/grbl/wiki/Grbl-v1.1-Interface#grbl-response-messages """

from typing import Dict, Optional, Union

ERROR_CODES: Dict[int, str] = {
    1: "Expected command letter: G-code words consist of a letter and a value. "
       "Letter was not found.",
    2: "Bad number format: Missing the expected G-code word value or numeric "
       "value format is not valid.",
    3: "Invalid statement: Grbl '$' system command was not recognized or supported.",
    4: "Value < 0: Negative value received for an expected positive value.",
    5: "Setting disabled: Homing cycle failure. Homing is not enabled via settings.",
    6: "Value < 3 usec: Minimum step pulse time must be greater than 3usec.",
    7: "EEPROM read fail. Using defaults: An EEPROM read failed. Auto-restoring "
       "affected EEPROM to default values.",
    8: "Not idle: Grbl '$' command cannot be used unless Grbl is IDLE.",
    9: "G-code lock: G-code commands are locked out during alarm or jog state.",
    10: "Homing not enabled: Soft limits cannot be enabled without homing also enabled.",
    11: "Line overflow: Max characters per line exceeded. Received command line "
        "was not executed.",
    12: "Step rate > 30kHz: Grbl '$' setting value cause the step rate to exceed "
        "the maximum supported.",
    13: "Check Door: Safety door detected as opened and door state initiated.",
    14: "Line length exceeded: Build info or startup line exceeded EEPROM line "
        "length limit. Line not stored.",
    15: "Travel exceeded: Jog target exceeds machine travel. Jog command has been ignored.",
    16: "Invalid jog command: Jog command has no '=' or contains prohibited g-code.",
    17: "Setting disabled: Laser mode requires PWM output.",
    20: "Unsupported command: Unsupported or invalid g-code command found in block.",
    21: "Modal group violation: More than one g-code command from same modal "
        "group found in block.",
    22: "Undefined feed rate: Feed rate has not yet been set or is undefined.",
    23: "Invalid gcode ID:23: G-code command in block requires an integer value.",
    24: "Invalid gcode ID:24: More than one g-code command that requires axis "
        "words found in block.",
    25: "Invalid gcode ID:25: Repeated g-code word found in block.",
    26: "Invalid gcode ID:26: No axis words found in block for g-code command or "
        "current modal state which requires them.",
    27: "Invalid gcode ID:27: Line number value is invalid.",
    28: "Invalid gcode ID:28: G-code command is missing a required value word.",
    29: "Invalid gcode ID:29: G59.x work coordinate systems are not supported.",
    30: "Invalid gcode ID:30: G53 only allowed with G0 and G1 motion modes.",
    31: "Invalid gcode ID:31: Axis words found in block when no command or "
        "current modal state uses them.",
    32: "Invalid gcode ID:32: G2 and G3 arcs require at least one in-plane axis word.",
    33: "Invalid gcode ID:33: Motion command target is invalid.",
    34: "Invalid gcode ID:34: Arc radius value is invalid.",
    35: "Invalid gcode ID:35: G2 and G3 arcs require at least one in-plane offset word.",
    36: "Invalid gcode ID:36: Unused value words found in block.",
    37: "Invalid gcode ID:37: G43.1 dynamic tool length offset is not assigned to "
        "configured tool length axis.",
    38: "Invalid gcode ID:38: Tool number greater than max supported value.",
    }

ALARM_CODES: Dict[int, str] = {
    1: "Hard limit triggered. Machine position is likely lost due to sudden and "
       "immediate halt. Re-homing is highly recommended.",
    2: "G-code motion target exceeds machine travel. Machine position safely "
       "retained. Alarm may be unlocked.",
    3: "Reset while in motion. Grbl cannot guarantee position. Lost steps are "
       "likely. Re-homing is highly recommended.",
    4: "Probe fail. The probe is not in the expected initial state before "
       "starting probe cycle.",
    5: "Probe fail. Probe did not contact the workpiece within the programmed "
       "travel for G38.2 and G38.4.",
    6: "Homing fail. Reset during active homing cycle.",
    7: "Homing fail. Safety door was opened during active homing cycle.",
    8: "Homing fail. Cycle failed to clear limit switch when pulling off.",
    9: "Homing fail. Could not find limit switch within search distance.",
    }


def lookup_error(code: int) -> Optional[str]:
    """ Description of a Grbl "error:<code>" response, or None if unknown. """
    return ERROR_CODES.get(code)


def lookup_alarm(code: int) -> Optional[str]:
    """ Description of a Grbl "ALARM:<code>" message, or None if unknown. """
    return ALARM_CODES.get(code)


class GrblError(Exception):
    """ Base class for everything raised by the Grbl controller. """


class GrblFormatError(GrblError, ValueError):
    """ A line received from Grbl does not have the expected format. """


class WelcomeFormatError(GrblFormatError):
    """ Grbl's welcome banner ended but the version could not be found in it. """


class HandshakeIncomplete(GrblError):
    """ The welcome handshake result was asked for before the banner finished. """


class VersionMismatch(GrblError):
    """ Grbl reported a firmware version this driver does not support. """

    def __init__(self, version: str, supported: str) -> None:
        super().__init__("Unsupported Grbl version: %s (expected %s)" % (version, supported))
        self.version = version
        self.supported = supported


class CommandTimeout(GrblError):
    """ No complete response arrived in the time allowed. """

    def __init__(self, command: str, timeout: float) -> None:
        super().__init__("Command %r timed out after %ss" % (command, timeout))
        self.command = command
        self.timeout = timeout


class GrblProtocolError(GrblError):
    """ Grbl did not acknowledge a command with "ok". """


class GrblErrorResponse(GrblProtocolError):
    """ Grbl replied "error:<code>" with a code from ERROR_CODES. """

    def __init__(self, code: int, description: str) -> None:
        super().__init__("Grbl error: %s" % description)
        self.code = code
        self.description = description


class UnknownErrorCode(GrblProtocolError):
    """ Grbl replied "error:<code>" with a code we have no description for. """

    def __init__(self, code: Union[int, str]) -> None:
        super().__init__("Unknown Grbl error code: %s" % code)
        self.code = code


class UnexpectedResponse(GrblProtocolError):
    """ Grbl replied with something that is neither "ok" nor "error:<code>". """

    def __init__(self, command: str, response: str) -> None:
        super().__init__("Unexpected response to %r: %s" % (command, response))
        self.command = command
        self.response = response


class GrblConnectionError(GrblError):
    """ The serial connection is not usable. """


class UnsupportedGcode(GrblError):
    """ A gcode block contains commands Grbl 1.1 does not implement. """

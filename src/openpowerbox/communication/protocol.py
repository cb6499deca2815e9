"""
Open Power Box ASCII Protocol Implementation

Request Format (host -> device, newline terminated):
┌───┬───┬─────────┬───┬───────┬───┬─────────┬────┐
│ # │ ␠ │ Command │ ␠ │ Index │ ␠ │ [Value] │ \n │
└───┴───┴─────────┴───┴───────┴───┴─────────┴────┘

Response Format (device -> host, ';' terminated):
┌───┬─────┬─────────┬───┬─────────┬───┐
│ # │ Tag │ [Index] │ : │ Payload │ ; │
└───┴─────┴─────────┴───┴─────────┴───┘

- Bytes before the leading '#' are line noise and are discarded.
- Error responses are "#E<payload>;" and carry no index or ':'.
- Topology, IP and SSID responses carry an empty index ("#Z:7,3,1,1,7;").
- Set commands acknowledge with the tag of their matching get command
  ('S' is acknowledged with 'G', 'N' with 'n', and so on).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

from .errors import DeviceError, ProtocolError


FRAME_START = "#"
FRAME_TERMINATOR = b";"
REQUEST_TERMINATOR = "\n"
ERROR_TAG = "E"

Value = Union[bool, int, float, str]


class Command(Enum):
    """Command characters understood by the firmware."""

    SET_SWITCH = "S"
    GET_SWITCH = "G"
    SET_NAME = "N"
    GET_NAME = "n"
    SET_REVERSE = "R"
    GET_REVERSE = "r"
    SET_LIMIT = "L"
    GET_LIMIT = "l"
    GET_TOPOLOGY = "Z"
    GET_IP = "I"
    SET_SSID = "F"
    GET_SSID = "f"
    SET_PASSWORD = "H"
    APPLY_SETTINGS = "p"


class ValueKind(Enum):
    """How an acknowledged value is compared with the requested one."""

    BOOL = "bool"      # leading digit only
    DUTY = "duty"      # integer 0-100
    FLOAT = "float"    # limits, sensor readings
    TEXT = "text"      # names, SSID


@dataclass(frozen=True)
class CommandSpec:
    """Static properties of a command."""
    ack_tag: Optional[str]      # None: device sends no response
    indexed_response: bool      # response echoes the requested index
    sets_value: bool            # cache is written speculatively


COMMAND_SPECS: Dict[Command, CommandSpec] = {
    Command.SET_SWITCH: CommandSpec(ack_tag="G", indexed_response=True, sets_value=True),
    Command.GET_SWITCH: CommandSpec(ack_tag="G", indexed_response=True, sets_value=False),
    Command.SET_NAME: CommandSpec(ack_tag="n", indexed_response=True, sets_value=True),
    Command.GET_NAME: CommandSpec(ack_tag="n", indexed_response=True, sets_value=False),
    Command.SET_REVERSE: CommandSpec(ack_tag="r", indexed_response=True, sets_value=True),
    Command.GET_REVERSE: CommandSpec(ack_tag="r", indexed_response=True, sets_value=False),
    Command.SET_LIMIT: CommandSpec(ack_tag="l", indexed_response=True, sets_value=True),
    Command.GET_LIMIT: CommandSpec(ack_tag="l", indexed_response=True, sets_value=False),
    Command.GET_TOPOLOGY: CommandSpec(ack_tag="Z", indexed_response=False, sets_value=False),
    Command.GET_IP: CommandSpec(ack_tag="i", indexed_response=False, sets_value=False),
    Command.SET_SSID: CommandSpec(ack_tag="f", indexed_response=False, sets_value=False),
    Command.GET_SSID: CommandSpec(ack_tag="f", indexed_response=False, sets_value=False),
    Command.SET_PASSWORD: CommandSpec(ack_tag=None, indexed_response=False, sets_value=False),
    Command.APPLY_SETTINGS: CommandSpec(ack_tag=None, indexed_response=False, sets_value=False),
}


def command_spec(command: Command) -> CommandSpec:
    """Return the static properties of *command*."""
    return COMMAND_SPECS[command]


def format_value(value: Value) -> str:
    """
    Render a request value the way the firmware expects it.

    Floats are sent with six decimals (C++ std::to_string), booleans as 1/0.

    Raises:
        ValueError: text contains a frame delimiter
        TypeError: unsupported value type
    """
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return f"{value:f}"
    if isinstance(value, str):
        if REQUEST_TERMINATOR in value or "\r" in value or ";" in value:
            raise ValueError(f"Value {value!r} contains a frame delimiter")
        return value
    raise TypeError(f"Unsupported value type: {type(value).__name__}")


@dataclass(frozen=True)
class RequestFrame:
    """An outgoing command."""
    command: Command
    index: int
    value: Optional[Value] = None

    def encode(self) -> bytes:
        """Encode to wire bytes: '# <cmd> <index>[ <value>]\\n'."""
        if self.index < 0:
            raise ValueError(f"Negative index {self.index}")
        text = f"{FRAME_START} {self.command.value} {self.index}"
        if self.value is not None:
            text += f" {format_value(self.value)}"
        text += REQUEST_TERMINATOR
        return text.encode("ascii")


def encode_request(command: Command, index: int, value: Optional[Value] = None) -> bytes:
    """Encode a single request frame."""
    return RequestFrame(command, index, value).encode()


@dataclass(frozen=True)
class ResponseFrame:
    """A decoded, non-error device response."""
    tag: str
    index: Optional[int]
    value: str
    raw: bytes = b""


def decode_response(data: bytes) -> ResponseFrame:
    """
    Decode one ';'-terminated response.

    Args:
        data: Raw bytes as read from the link, possibly with leading noise

    Returns:
        ResponseFrame with tag, optional index and payload text

    Raises:
        DeviceError: response carries the error tag
        ProtocolError: frame is truncated or malformed
    """
    text = data.decode("ascii", errors="replace")
    start = text.find(FRAME_START)
    if start < 0:
        raise ProtocolError(f"No frame start in {data!r}")

    body = text[start + 1:]
    end = body.find(FRAME_TERMINATOR.decode("ascii"))
    if end < 0:
        raise ProtocolError(f"Truncated frame {data!r}")
    body = body[:end]
    if not body:
        raise ProtocolError(f"Empty frame {data!r}")

    tag = body[0]
    if tag == ERROR_TAG:
        raise DeviceError(body[1:])

    colon = body.find(":")
    if colon < 0:
        raise ProtocolError(f"Missing ':' in frame {data!r}")

    index_text = body[1:colon].strip()
    if not index_text:
        index = None
    elif index_text.isdigit():
        index = int(index_text)
    else:
        raise ProtocolError(f"Non-numeric index {index_text!r} in frame {data!r}")

    return ResponseFrame(tag=tag, index=index, value=body[colon + 1:], raw=bytes(data))


class FrameBuilder:
    """Helper class for building request frames."""

    @staticmethod
    def set_switch(index: int, value: Union[bool, int]) -> RequestFrame:
        return RequestFrame(Command.SET_SWITCH, index, value)

    @staticmethod
    def get_switch(index: int) -> RequestFrame:
        return RequestFrame(Command.GET_SWITCH, index)

    @staticmethod
    def set_name(index: int, name: str) -> RequestFrame:
        return RequestFrame(Command.SET_NAME, index, name)

    @staticmethod
    def get_name(index: int) -> RequestFrame:
        return RequestFrame(Command.GET_NAME, index)

    @staticmethod
    def set_reverse(class_index: int, reversed_: bool) -> RequestFrame:
        return RequestFrame(Command.SET_REVERSE, class_index, int(reversed_))

    @staticmethod
    def get_reverse(class_index: int) -> RequestFrame:
        return RequestFrame(Command.GET_REVERSE, class_index)

    @staticmethod
    def set_limit(limit_index: int, amps: float) -> RequestFrame:
        return RequestFrame(Command.SET_LIMIT, limit_index, float(amps))

    @staticmethod
    def get_limit(limit_index: int) -> RequestFrame:
        return RequestFrame(Command.GET_LIMIT, limit_index)

    @staticmethod
    def get_topology() -> RequestFrame:
        return RequestFrame(Command.GET_TOPOLOGY, 0)

    @staticmethod
    def get_ip() -> RequestFrame:
        return RequestFrame(Command.GET_IP, 0)

    @staticmethod
    def set_ssid(ssid: str) -> RequestFrame:
        return RequestFrame(Command.SET_SSID, 0, ssid)

    @staticmethod
    def get_ssid() -> RequestFrame:
        return RequestFrame(Command.GET_SSID, 0)

    @staticmethod
    def set_password(password: str) -> RequestFrame:
        return RequestFrame(Command.SET_PASSWORD, 0, password)

    @staticmethod
    def apply_settings() -> RequestFrame:
        """Apply Wi-Fi settings; the firmware reboots to do so."""
        return RequestFrame(Command.APPLY_SETTINGS, 0)

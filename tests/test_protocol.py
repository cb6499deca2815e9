"""
Open Power Box Protocol Tests
Tests for request encoding and response decoding
"""

import pytest

from openpowerbox.communication.errors import DeviceError, ProtocolError
from openpowerbox.communication.protocol import (
    COMMAND_SPECS,
    Command,
    FrameBuilder,
    RequestFrame,
    command_spec,
    decode_response,
    encode_request,
    format_value,
)


class TestFormatValue:
    """Test request value rendering."""

    def test_bool(self):
        """Booleans are sent as 1/0."""
        assert format_value(True) == "1"
        assert format_value(False) == "0"

    def test_int(self):
        """Integers are sent as decimal."""
        assert format_value(42) == "42"

    def test_float_six_decimals(self):
        """Floats are sent with six decimals."""
        assert format_value(2.5) == "2.500000"

    def test_text_verbatim(self):
        """Text keeps spaces."""
        assert format_value("Main camera") == "Main camera"

    def test_text_with_delimiter_rejected(self):
        """Newlines and ';' would break framing."""
        with pytest.raises(ValueError):
            format_value("bad\nname")
        with pytest.raises(ValueError):
            format_value("bad;name")

    def test_unsupported_type(self):
        """Other types are rejected."""
        with pytest.raises(TypeError):
            format_value([1, 2])


class TestRequestEncoding:
    """Test request frame encoding."""

    def test_get_switch(self):
        """Read request has no value."""
        assert encode_request(Command.GET_SWITCH, 3) == b"# G 3\n"

    def test_set_switch(self):
        """Set request carries the value."""
        assert FrameBuilder.set_switch(3, True).encode() == b"# S 3 1\n"

    def test_set_duty(self):
        """PWM duty is sent as an integer."""
        assert FrameBuilder.set_switch(7, 40).encode() == b"# S 7 40\n"

    def test_set_name_with_spaces(self):
        """Names may contain spaces."""
        assert FrameBuilder.set_name(0, "Dew strip").encode() == b"# N 0 Dew strip\n"

    def test_set_limit(self):
        """Limits are floats."""
        assert FrameBuilder.set_limit(3, 12.5).encode() == b"# L 3 12.500000\n"

    def test_set_reverse(self):
        """Reverse flag is sent as an integer."""
        assert FrameBuilder.set_reverse(1, True).encode() == b"# R 1 1\n"

    def test_topology_and_wifi(self):
        """Unindexed commands use index 0."""
        assert FrameBuilder.get_topology().encode() == b"# Z 0\n"
        assert FrameBuilder.get_ip().encode() == b"# I 0\n"
        assert FrameBuilder.set_ssid("obs").encode() == b"# F 0 obs\n"
        assert FrameBuilder.set_password("pw").encode() == b"# H 0 pw\n"
        assert FrameBuilder.apply_settings().encode() == b"# p 0\n"

    def test_negative_index_rejected(self):
        """Indices are non-negative."""
        with pytest.raises(ValueError):
            RequestFrame(Command.GET_SWITCH, -1).encode()


class TestCommandSpecs:
    """Test the command table."""

    def test_set_acknowledged_with_get_tag(self):
        """Set commands acknowledge with their get tag."""
        assert command_spec(Command.SET_SWITCH).ack_tag == "G"
        assert command_spec(Command.SET_NAME).ack_tag == "n"
        assert command_spec(Command.SET_REVERSE).ack_tag == "r"
        assert command_spec(Command.SET_LIMIT).ack_tag == "l"

    def test_no_response_commands(self):
        """Password and apply expect nothing back."""
        assert command_spec(Command.SET_PASSWORD).ack_tag is None
        assert command_spec(Command.APPLY_SETTINGS).ack_tag is None

    def test_every_command_in_table(self):
        """Table covers the whole command set."""
        assert set(COMMAND_SPECS) == set(Command)


class TestResponseDecoding:
    """Test response decoding."""

    def test_indexed_response(self):
        """Tag, index and payload are split."""
        frame = decode_response(b"#G3:1;")
        assert frame.tag == "G"
        assert frame.index == 3
        assert frame.value == "1"

    def test_leading_noise_discarded(self):
        """Bytes before '#' are ignored."""
        frame = decode_response(b"\x00garbage#G12:12.34;")
        assert frame.index == 12
        assert frame.value == "12.34"

    def test_unindexed_response(self):
        """Topology response has an empty index."""
        frame = decode_response(b"#Z:7,3,1,1,7;")
        assert frame.tag == "Z"
        assert frame.index is None
        assert frame.value == "7,3,1,1,7"

    def test_error_response(self):
        """Error tag carries the payload verbatim."""
        with pytest.raises(DeviceError) as exc_info:
            decode_response(b"#E bad request;")
        assert exc_info.value.payload == " bad request"

    def test_missing_colon(self):
        """Frame without ':' is malformed."""
        with pytest.raises(ProtocolError):
            decode_response(b"#G3;")

    def test_truncated(self):
        """Frame without ';' is truncated."""
        with pytest.raises(ProtocolError):
            decode_response(b"#G3:1")

    def test_no_frame_start(self):
        """Bytes without '#' are not a frame."""
        with pytest.raises(ProtocolError):
            decode_response(b"G3:1;")

    def test_non_numeric_index(self):
        """Index must be numeric."""
        with pytest.raises(ProtocolError):
            decode_response(b"#Gx:1;")

    def test_empty_frame(self):
        """'#;' has no tag."""
        with pytest.raises(ProtocolError):
            decode_response(b"#;")

    def test_name_with_spaces(self):
        """Payload keeps spaces."""
        assert decode_response(b"#n0:Main camera;").value == "Main camera"



@pytest.mark.parametrize("command", [c for c, s in COMMAND_SPECS.items() if s.indexed_response])
def test_frame_round_trip(command):
    """Matching response to an encoded request decodes to the same index and value."""
    index, value = 5, "17"
    request = RequestFrame(command, index, value if command_spec(command).sets_value else None)
    line = request.encode().decode("ascii")
    sent_index = int(line.split()[2])

    response = decode_response(f"#{command_spec(command).ack_tag}{sent_index}:{value};".encode("ascii"))

    assert response.index == index
    assert response.value == value
    assert response.tag == command_spec(command).ack_tag

import pytest

from siaproto.frame import HEADER_SIZE, VERSION, Command, Frame, FrameHeader


def test_encode_wire_layout():
    encoded = Frame(Command.PSH, 5, b"abc").encode()
    assert encoded == bytes([1, 2, 3, 0, 5, 0, 0, 0]) + b"abc"


def test_header_round_trip():
    frame = Frame(Command.SYN, 0xDEADBEEF, b"x" * 300)
    encoded = frame.encode()
    header = FrameHeader.parse(encoded)
    assert header.version == VERSION
    assert header.cmd == Command.SYN
    assert header.length == 300
    assert header.stream_id == 0xDEADBEEF
    assert encoded[HEADER_SIZE:] == frame.data


def test_empty_frame_is_header_only():
    encoded = Frame(Command.NOP, 0).encode()
    assert len(encoded) == HEADER_SIZE
    assert FrameHeader.parse(encoded).length == 0


def test_header_str():
    header = FrameHeader.parse(Frame(Command.PSH, 5, b"abc").encode())
    assert str(header) == "Version:1 Cmd:2 StreamID:5 Length:3"


def test_parse_short_data_rejected():
    with pytest.raises(ValueError):
        FrameHeader.parse(b"\x01\x02")


def test_oversized_frame_rejected():
    with pytest.raises(ValueError, match="too large"):
        Frame(Command.PSH, 1, bytes(0x10000)).encode()


def test_max_size_frame_encodes():
    encoded = Frame(Command.PSH, 1, bytes(0xFFFF)).encode()
    assert FrameHeader.parse(encoded).length == 0xFFFF
    assert len(encoded) == HEADER_SIZE + 0xFFFF
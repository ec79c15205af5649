"""Frames multiplexed over a single connection."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

VERSION = 1

_HEADER = struct.Struct("<BBHI")
HEADER_SIZE = _HEADER.size
MAX_DATA_SIZE = 0xFFFF


class Command(enum.IntEnum):
    """Frame commands."""

    SYN = 0  # stream open
    FIN = 1  # stream close
    PSH = 2  # data push
    NOP = 3  # no operation


@dataclass
class Frame:
    """A packet to or from a multiplexed connection."""

    cmd: int
    sid: int
    data: bytes = b""
    ver: int = VERSION

    def encode(self) -> bytes:
        """Serialise the frame as header followed by data."""
        if len(self.data) > MAX_DATA_SIZE:
            raise ValueError("frame is too large to send")
        header = _HEADER.pack(self.ver, int(self.cmd), len(self.data), self.sid)
        return header + bytes(self.data)


@dataclass(frozen=True)
class FrameHeader:
    """The fixed-size header that precedes each frame's data."""

    version: int
    cmd: int
    length: int
    stream_id: int

    @classmethod
    def parse(cls, data: bytes) -> FrameHeader:
        """Parse a header from the first bytes of data."""
        if len(data) < HEADER_SIZE:
            raise ValueError(f"frame header needs {HEADER_SIZE} bytes, got {len(data)}")
        version, cmd, length, stream_id = _HEADER.unpack_from(data)
        return cls(version=version, cmd=cmd, length=length, stream_id=stream_id)

    def __str__(self) -> str:
        return (
            f"Version:{self.version} Cmd:{self.cmd} "
            f"StreamID:{self.stream_id} Length:{self.length}"
        )
"""Specifiers, write actions and errors of the renter-host protocol."""

from __future__ import annotations

from dataclasses import dataclass

SPECIFIER_SIZE = 16


@dataclass(frozen=True)
class Specifier:
    """A fixed-size 16-byte identifier."""

    raw: bytes = bytes(SPECIFIER_SIZE)

    def __post_init__(self) -> None:
        if len(self.raw) != SPECIFIER_SIZE:
            raise ValueError(f"specifier must be {SPECIFIER_SIZE} bytes")

    def __str__(self) -> str:
        return self.raw.rstrip(b"\x00").decode("utf-8", errors="replace")


def new_specifier(name: str) -> Specifier:
    """Build a specifier from a name of at most 16 bytes."""
    encoded = name.encode("utf-8")
    if len(encoded) > SPECIFIER_SIZE:
        raise ValueError(f"specifier name too long: {name!r}")
    return Specifier(encoded.ljust(SPECIFIER_SIZE, b"\x00"))


RPC_FORM_CONTRACT_ID = new_specifier("LoopFormContract")
RPC_LOCK_ID = new_specifier("LoopLock")
RPC_READ_ID = new_specifier("LoopRead")
RPC_RENEW_CONTRACT_ID = new_specifier("LoopRenew")
RPC_RENEW_CLEAR_CONTRACT_ID = new_specifier("LoopRenewClear")
RPC_SECTOR_ROOTS_ID = new_specifier("LoopSectorRoots")
RPC_SETTINGS_ID = new_specifier("LoopSettings")
RPC_UNLOCK_ID = new_specifier("LoopUnlock")
RPC_WRITE_ID = new_specifier("LoopWrite")

RPC_WRITE_ACTION_APPEND = new_specifier("Append")
RPC_WRITE_ACTION_TRIM = new_specifier("Trim")
RPC_WRITE_ACTION_SWAP = new_specifier("Swap")
RPC_WRITE_ACTION_UPDATE = new_specifier("Update")

RPC_READ_STOP = new_specifier("ReadStop")


@dataclass
class RPCWriteAction:
    """A Write action; the meaning of a, b and data depends on type."""

    type: Specifier
    a: int = 0
    b: int = 0
    data: bytes = b""


class RPCError(Exception):
    """An error sent in place of an RPC response object."""

    def __init__(self, description: str = "", type: Specifier | None = None, data: bytes = b"") -> None:
        super().__init__(description)
        self.type = type if type is not None else Specifier()
        self.data = data
        self.description = description

    def __str__(self) -> str:
        return self.description

    def matches(self, other: BaseException) -> bool:
        """Report whether other's message appears in this error's description."""
        return str(other) in self.description


class WriteActionError(ValueError):
    """Base class for invalid read or write requests."""

    message = "invalid write action"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class OffsetOutOfBoundsError(WriteActionError):
    message = "update section is out of bounds"


class InvalidSectorLengthError(WriteActionError):
    message = "length of sector data must be exactly 4MiB"


class SwapOutOfBoundsError(WriteActionError):
    message = "swap index is out of bounds"


class TrimOutOfBoundsError(WriteActionError):
    message = "trim size exceeds number of sectors"


class UpdateOutOfBoundsError(WriteActionError):
    message = "update index is out of bounds"


class UpdateProofSizeError(WriteActionError):
    message = "update section is not a multiple of the segment size"
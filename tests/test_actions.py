import pytest

from siaproto.actions import (
    RPC_WRITE_ACTION_APPEND,
    RPC_WRITE_ACTION_SWAP,
    InvalidSectorLengthError,
    OffsetOutOfBoundsError,
    RPCError,
    RPCWriteAction,
    Specifier,
    SwapOutOfBoundsError,
    TrimOutOfBoundsError,
    UpdateOutOfBoundsError,
    UpdateProofSizeError,
    WriteActionError,
    new_specifier,
)


def test_specifier_layout_is_zero_padded():
    spec = new_specifier("Append")
    assert spec.raw == b"Append" + b"\x00" * 10
    assert len(spec.raw) == 16


def test_specifier_str_round_trip():
    for name in ("Append", "LoopFormContract", "ChaCha20Poly1305", ""):
        assert str(new_specifier(name)) == name


def test_specifier_equality():
    assert new_specifier("Append") == RPC_WRITE_ACTION_APPEND
    assert RPC_WRITE_ACTION_APPEND != RPC_WRITE_ACTION_SWAP


def test_specifier_too_long():
    with pytest.raises(ValueError):
        new_specifier("x" * 17)
    with pytest.raises(ValueError):
        Specifier(b"short")


def test_write_action_defaults():
    action = RPCWriteAction(RPC_WRITE_ACTION_SWAP, a=3)
    assert action.b == 0
    assert action.data == b""
    assert action.a == 3


def test_rpc_error_description_and_matching():
    err = RPCError("host rejected: swap index is out of bounds")
    assert str(err) == "host rejected: swap index is out of bounds"
    assert err.matches(SwapOutOfBoundsError())
    assert not err.matches(TrimOutOfBoundsError())
    assert err.type == Specifier()


def test_rpc_error_can_be_raised():
    err = RPCError("boom", type=RPC_WRITE_ACTION_APPEND, data=b"\x01")
    assert str(err) == "boom"
    assert err.data == b"\x01"
    assert err.type == RPC_WRITE_ACTION_APPEND
    with pytest.raises(RPCError) as info:
        raise err
    assert info.value.data == b"\x01"
    assert str(info.value.type) == "Append"


@pytest.mark.parametrize(
    "cls,message",
    [
        (OffsetOutOfBoundsError, "update section is out of bounds"),
        (InvalidSectorLengthError, "length of sector data must be exactly 4MiB"),
        (SwapOutOfBoundsError, "swap index is out of bounds"),
        (TrimOutOfBoundsError, "trim size exceeds number of sectors"),
        (UpdateOutOfBoundsError, "update index is out of bounds"),
        (UpdateProofSizeError, "update section is not a multiple of the segment size"),
    ],
)
def test_error_messages(cls, message):
    err = cls()
    assert str(err) == message
    assert issubclass(cls, WriteActionError)
    with pytest.raises(WriteActionError, match=message):
        raise err
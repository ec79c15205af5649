import socket
import threading
import time

import pytest

from siaproto.config import Config
from siaproto.frame import HEADER_SIZE, Command, Frame
from siaproto.session import SmuxError, SmuxTimeoutError, client, server


def _close_quietly(sess):
    try:
        sess.close()
    except (SmuxError, OSError):
        pass


def _wait_until(pred, timeout=3.0):
    end = time.time() + timeout
    while time.time() < end:
        if pred():
            return True
        time.sleep(0.01)
    return pred()


def _read_exactly(stream, n):
    out = b""
    while len(out) < n:
        chunk = stream.read(n - len(out))
        if not chunk:
            break
        out += chunk
    return out


def _recv_exactly(sock, n):
    out = b""
    while len(out) < n:
        chunk = sock.recv(n - len(out))
        if not chunk:
            break
        out += chunk
    return out


def _assert_session_dead(sess):
    assert _wait_until(sess.is_closed) is True
    assert sess.is_closed() is True
    assert sess.num_streams() == 0
    with pytest.raises(SmuxError, match="broken pipe"):
        sess.open_stream()


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    c = client(a)
    s = server(b)
    s.set_deadline(time.time() + 5)
    yield c, s
    _close_quietly(c)
    _close_quietly(s)


@pytest.fixture
def raw_pair():
    a, b = socket.socketpair()
    b.settimeout(3)
    sess = client(a)
    yield sess, b
    _close_quietly(sess)
    b.close()


def test_open_accept_and_transfer(pair):
    c, s = pair
    cs = c.open_stream()
    ss = s.accept_stream()
    assert ss.id == cs.id
    assert cs.write(b"hello") == 5
    ss.set_read_deadline(time.time() + 3)
    assert _read_exactly(ss, 5) == b"hello"
    assert ss.write(b"back") == 4
    cs.set_read_deadline(time.time() + 3)
    assert _read_exactly(cs, 4) == b"back"


def test_stream_ids(pair):
    c, s = pair
    first = c.open_stream()
    second = c.open_stream()
    assert first.id == 3
    assert second.id == first.id + 2
    assert s.open_stream().id == 2


def test_large_write_is_split():
    a, b = socket.socketpair()
    cfg = Config(max_frame_size=16)
    c, s = client(a, cfg), server(b, cfg)
    try:
        s.set_deadline(time.time() + 5)
        payload = bytes(range(100))
        cs = c.open_stream()
        ss = s.accept_stream()
        assert cs.write(payload) == len(payload)
        ss.set_read_deadline(time.time() + 3)
        assert _read_exactly(ss, len(payload)) == payload
    finally:
        _close_quietly(c)
        _close_quietly(s)


def test_empty_write_sends_nothing(pair):
    c, _ = pair
    assert c.open_stream().write(b"") == 0


def test_close_gives_peer_eof(pair):
    c, s = pair
    cs = c.open_stream()
    ss = s.accept_stream()
    cs.write(b"xy")
    cs.close()
    ss.set_read_deadline(time.time() + 3)
    assert _read_exactly(ss, 2) == b"xy"
    assert ss.read(10) == b""
    assert _wait_until(lambda: s.num_streams() == 0)


def test_num_streams(pair):
    c, _ = pair
    stream = c.open_stream()
    assert c.num_streams() == 1
    stream.close()
    assert c.num_streams() == 0


def test_stream_double_close_raises(pair):
    c, _ = pair
    stream = c.open_stream()
    stream.close()
    with pytest.raises(SmuxError, match="broken pipe"):
        stream.close()


def test_write_and_read_after_close_raise(pair):
    c, _ = pair
    stream = c.open_stream()
    stream.close()
    with pytest.raises(SmuxError, match="broken pipe"):
        stream.write(b"x")
    with pytest.raises(SmuxError, match="broken pipe"):
        stream.read(1)


def test_accept_deadline(pair):
    _, s = pair
    s.set_deadline(time.time() + 0.1)
    with pytest.raises(SmuxTimeoutError, match="i/o timeout"):
        s.accept_stream()


def test_read_deadline(pair):
    c, _ = pair
    stream = c.open_stream()
    stream.set_deadline(time.time() + 0.1)
    with pytest.raises(SmuxTimeoutError):
        stream.read(1)


def test_session_close(pair):
    c, _ = pair
    stream = c.open_stream()
    c.close()
    assert c.is_closed()
    assert c.num_streams() == 0
    with pytest.raises(SmuxError, match="broken pipe"):
        c.close()
    with pytest.raises(SmuxError, match="broken pipe"):
        c.open_stream()
    with pytest.raises(SmuxError, match="broken pipe"):
        stream.read(1)


def test_accept_unblocks_on_close(pair):
    _, s = pair
    s.set_deadline(None)
    timer = threading.Timer(0.1, s.close)
    timer.start()
    with pytest.raises(SmuxError, match="broken pipe"):
        s.accept_stream()
    timer.join()


def test_peer_close_closes_session(pair):
    c, s = pair
    c.close()
    _assert_session_dead(s)


def test_syn_wire_format(raw_pair):
    sess, peer = raw_pair
    stream = sess.open_stream()
    assert _recv_exactly(peer, HEADER_SIZE) == Frame(Command.SYN, stream.id).encode()


def test_data_wire_format(raw_pair):
    sess, peer = raw_pair
    stream = sess.open_stream()
    _recv_exactly(peer, HEADER_SIZE)
    stream.write(b"abc")
    expected = Frame(Command.PSH, stream.id, b"abc").encode()
    assert _recv_exactly(peer, len(expected)) == expected


def test_invalid_version_closes_session(raw_pair):
    sess, peer = raw_pair
    peer.sendall(Frame(Command.NOP, 0, ver=2).encode())
    _assert_session_dead(sess)


def test_unknown_command_closes_session(raw_pair):
    sess, peer = raw_pair
    peer.sendall(Frame(9, 0).encode())
    _assert_session_dead(sess)


def test_raw_syn_is_accepted():
    a, b = socket.socketpair()
    sess = server(a)
    try:
        sess.set_deadline(time.time() + 3)
        b.sendall(Frame(Command.SYN, 7).encode())
        b.sendall(Frame(Command.PSH, 7, b"data").encode())
        stream = sess.accept_stream()
        assert stream.id == 7
        stream.set_read_deadline(time.time() + 3)
        assert _read_exactly(stream, 4) == b"data"
    finally:
        _close_quietly(sess)
        b.close()


def test_addresses(raw_pair):
    sess, _ = raw_pair
    stream = sess.open_stream()
    assert stream.local_addr() == sess.conn.getsockname()
    assert stream.remote_addr() == sess.conn.getpeername()


@pytest.mark.parametrize(
    "cfg",
    [
        Config(keep_alive_interval=0),
        Config(keep_alive_timeout=1.0, keep_alive_interval=5.0),
        Config(max_frame_size=0),
        Config(max_frame_size=70000),
        Config(max_receive_buffer=0),
    ],
)
def test_bad_config_rejected(cfg):
    a, b = socket.socketpair()
    try:
        with pytest.raises(ValueError):
            client(a, cfg)
        with pytest.raises(ValueError):
            server(b, cfg)
    finally:
        a.close()
        b.close()
"""Streams multiplexed over a single socket connection."""

from __future__ import annotations

import select
import socket
import threading
import time
from collections import deque

from .config import Config, default_config, verify_config
from .frame import HEADER_SIZE, MAX_DATA_SIZE, VERSION, Command, Frame, FrameHeader

DEFAULT_ACCEPT_BACKLOG = 1024

_SID_MASK = 0xFFFFFFFF


class SmuxError(Exception):
    """An error reported by a multiplexed session or stream."""


class SmuxTimeoutError(SmuxError, TimeoutError):
    """An operation did not complete before its deadline."""

    def __init__(self, message: str = "i/o timeout") -> None:
        super().__init__(message)


def _broken_pipe() -> SmuxError:
    return SmuxError("broken pipe")


def _deadline(t: float | None) -> float | None:
    """Normalise a deadline given as epoch seconds; None or 0 disables it."""
    return float(t) if t else None


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return max(deadline - time.time(), 0.0)


class Stream:
    """One bidirectional stream inside a session."""

    def __init__(self, sid: int, frame_size: int, session: Session) -> None:
        self.id = sid
        self._session = session
        self._frame_size = frame_size
        self._buffer = bytearray()
        self._buffer_lock = threading.Lock()
        self._read_event = threading.Event()
        self._die = threading.Event()
        self._die_lock = threading.Lock()
        self._rst = False
        self._read_deadline: float | None = None
        self._write_deadline: float | None = None

    def read(self, n: int) -> bytes:
        """Read up to n bytes; returns b"" once the peer has closed the stream."""
        deadline = self._read_deadline
        if self._die.is_set():
            raise _broken_pipe()
        while True:
            self._read_event.clear()
            with self._buffer_lock:
                data = bytes(self._buffer[:n])
                del self._buffer[:n]
            if data:
                self._session._return_tokens(len(data))
                return data
            if self._rst:
                try:
                    self.close()
                except (SmuxError, OSError):
                    pass
                return b""
            fired = self._read_event.wait(_remaining(deadline))
            if self._die.is_set():
                raise _broken_pipe()
            if not fired:
                raise SmuxTimeoutError()

    def write(self, data: bytes) -> int:
        """Send data as a series of frames, returning the number of bytes sent."""
        deadline = self._write_deadline
        if self._die.is_set():
            raise _broken_pipe()
        return sum(self._session._write_frame(frame, deadline) for frame in self._split(bytes(data)))

    def close(self) -> None:
        """Close the stream and tell the peer."""
        with self._die_lock:
            if self._die.is_set():
                raise _broken_pipe()
            self._die.set()
            self._read_event.set()
        self._session._stream_closed(self.id)
        self._session._write_frame(
            Frame(Command.FIN, self.id),
            time.time() + self._session.config.write_timeout,
        )

    def set_read_deadline(self, t: float | None) -> None:
        """Set the read deadline in epoch seconds; None or 0 disables it."""
        self._read_deadline = _deadline(t)

    def set_write_deadline(self, t: float | None) -> None:
        """Set the write deadline in epoch seconds; None or 0 disables it."""
        self._write_deadline = _deadline(t)

    def set_deadline(self, t: float | None) -> None:
        """Set both read and write deadlines."""
        self.set_read_deadline(t)
        self.set_write_deadline(t)

    def local_addr(self):
        """Return the local address of the underlying connection, if known."""
        getter = getattr(self._session.conn, "getsockname", None)
        return getter() if getter is not None else None

    def remote_addr(self):
        """Return the remote address of the underlying connection, if known."""
        getter = getattr(self._session.conn, "getpeername", None)
        return getter() if getter is not None else None

    def _session_close(self) -> None:
        with self._die_lock:
            self._die.set()
            self._read_event.set()

    def _push_bytes(self, data: bytes) -> None:
        with self._buffer_lock:
            self._buffer.extend(data)

    def _recycle_tokens(self) -> int:
        with self._buffer_lock:
            n = len(self._buffer)
            self._buffer.clear()
        return n

    def _split(self, data: bytes) -> list[Frame]:
        size = self._frame_size
        return [Frame(Command.PSH, self.id, data[i:i + size]) for i in range(0, len(data), size)]

    def _notify_read_event(self) -> None:
        self._read_event.set()

    def _mark_rst(self) -> None:
        self._rst = True

    def __enter__(self) -> Stream:
        return self

    def __exit__(self, *exc) -> None:
        if not self._die.is_set():
            self.close()


class Session:
    """A multiplexed connection carrying many streams over one socket."""

    def __init__(self, config: Config, conn: socket.socket, client: bool) -> None:
        self.conn = conn
        self.config = config
        self._die = threading.Event()
        self._die_lock = threading.Lock()
        self._send_lock = threading.Lock()

        self._next_id = 1 if client else 0
        self._next_id_lock = threading.Lock()
        self._go_away = False

        self._bucket = config.max_receive_buffer
        self._bucket_cond = threading.Condition()

        self._streams: dict[int, Stream] = {}
        self._stream_lock = threading.Lock()

        self._accepts: deque[Stream] = deque()
        self._accept_cond = threading.Condition()

        self._data_was_read = False
        self._data_lock = threading.Lock()

        self._deadline: float | None = None

        for target in (self._recv_loop, self._keep_alive_send, self._keep_alive_timeout):
            threading.Thread(target=target, daemon=True).start()

    def open_stream(self) -> Stream:
        """Open a new stream to the peer."""
        if self.is_closed():
            raise _broken_pipe()
        with self._next_id_lock:
            if self._go_away:
                raise SmuxError("stream id overflows, should start a new connection")
            self._next_id = (self._next_id + 2) & _SID_MASK
            sid = self._next_id
            if sid == sid % 2:
                self._go_away = True
                raise SmuxError("stream id overflows, should start a new connection")
        stream = Stream(sid, self.config.max_frame_size, self)
        self._write_frame(Frame(Command.SYN, sid), time.time() + self.config.write_timeout)
        with self._stream_lock:
            self._streams[sid] = stream
        return stream

    def accept_stream(self) -> Stream:
        """Block until the peer opens a stream, then return it."""
        deadline = self._deadline
        with self._accept_cond:
            while True:
                if self._accepts:
                    stream = self._accepts.popleft()
                    self._accept_cond.notify_all()
                    return stream
                if self._die.is_set():
                    raise _broken_pipe()
                remaining = _remaining(deadline)
                if remaining is not None and remaining <= 0:
                    raise SmuxTimeoutError()
                self._accept_cond.wait(remaining)

    def close(self) -> None:
        """Close the session and all of its streams."""
        with self._die_lock:
            if self._die.is_set():
                raise _broken_pipe()
            self._die.set()
        with self._stream_lock:
            for stream in self._streams.values():
                stream._session_close()
        self._notify_bucket()
        with self._accept_cond:
            self._accept_cond.notify_all()
        try:
            self.conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.conn.close()

    def is_closed(self) -> bool:
        """Report whether the session has shut down."""
        return self._die.is_set()

    def num_streams(self) -> int:
        """Return the number of currently open streams."""
        if self.is_closed():
            return 0
        with self._stream_lock:
            return len(self._streams)

    def set_deadline(self, t: float | None) -> None:
        """Set the deadline for accept_stream in epoch seconds; None or 0 disables it."""
        self._deadline = _deadline(t)

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc) -> None:
        if not self.is_closed():
            self.close()

    def _close_quietly(self) -> None:
        try:
            self.close()
        except (SmuxError, OSError):
            pass

    def _notify_bucket(self) -> None:
        with self._bucket_cond:
            self._bucket_cond.notify_all()

    def _add_tokens(self, n: int) -> None:
        with self._bucket_cond:
            self._bucket += n
            if self._bucket > 0:
                self._bucket_cond.notify_all()

    def _stream_closed(self, sid: int) -> None:
        with self._stream_lock:
            stream = self._streams.pop(sid, None)
            if stream is not None:
                n = stream._recycle_tokens()
                if n > 0:
                    self._add_tokens(n)

    def _return_tokens(self, n: int) -> None:
        self._add_tokens(n)

    def _read_exact(self, n: int, deadline: float) -> bytes:
        chunks = bytearray()
        while len(chunks) < n:
            readable, _, _ = select.select([self.conn], [], [], _remaining(deadline))
            if not readable:
                raise SmuxTimeoutError()
            chunk = self.conn.recv(n - len(chunks))
            if not chunk:
                raise EOFError("connection closed")
            chunks.extend(chunk)
        return bytes(chunks)

    def _read_frame(self) -> Frame:
        deadline = time.time() + self.config.read_timeout
        header = FrameHeader.parse(self._read_exact(HEADER_SIZE, deadline))
        if header.version != VERSION:
            raise SmuxError("invalid protocol version")
        data = self._read_exact(header.length, deadline) if header.length else b""
        return Frame(header.cmd, header.stream_id, data, header.version)

    def _recv_loop(self) -> None:
        while True:
            with self._bucket_cond:
                while self._bucket <= 0 and not self.is_closed():
                    self._bucket_cond.wait()
            try:
                frame = self._read_frame()
            except Exception:
                self._close_quietly()
                return
            with self._data_lock:
                self._data_was_read = True

            if frame.cmd == Command.NOP:
                continue
            if frame.cmd == Command.SYN:
                with self._stream_lock:
                    stream = None
                    if frame.sid not in self._streams:
                        stream = Stream(frame.sid, self.config.max_frame_size, self)
                        self._streams[frame.sid] = stream
                if stream is not None:
                    self._queue_accept(stream)
            elif frame.cmd == Command.FIN:
                with self._stream_lock:
                    stream = self._streams.get(frame.sid)
                    if stream is not None:
                        stream._mark_rst()
                        stream._notify_read_event()
            elif frame.cmd == Command.PSH:
                with self._stream_lock:
                    stream = self._streams.get(frame.sid)
                    if stream is not None:
                        with self._bucket_cond:
                            self._bucket -= len(frame.data)
                        stream._push_bytes(frame.data)
                        stream._notify_read_event()
            else:
                self._close_quietly()
                return

    def _queue_accept(self, stream: Stream) -> None:
        with self._accept_cond:
            while len(self._accepts) >= DEFAULT_ACCEPT_BACKLOG and not self._die.is_set():
                self._accept_cond.wait()
            if not self._die.is_set():
                self._accepts.append(stream)
                self._accept_cond.notify_all()

    def _keep_alive_send(self) -> None:
        while not self._die.wait(self.config.keep_alive_interval):
            try:
                self._write_frame(Frame(Command.NOP, 0), time.time() + self.config.write_timeout)
            except (SmuxError, OSError, ValueError):
                pass
            self._notify_bucket()

    def _keep_alive_timeout(self) -> None:
        while not self._die.wait(self.config.keep_alive_timeout):
            with self._data_lock:
                was_read, self._data_was_read = self._data_was_read, False
            if not was_read:
                self._close_quietly()
                return

    def _send_all(self, data: bytes, deadline: float) -> int:
        view = memoryview(data)
        sent = 0
        while sent < len(view):
            remaining = _remaining(deadline)
            if remaining <= 0:
                raise SmuxTimeoutError()
            _, writable, _ = select.select([], [self.conn], [], remaining)
            if not writable:
                raise SmuxTimeoutError()
            sent += self.conn.send(view[sent:])
        return sent

    def _write_frame(self, frame: Frame, deadline: float | None) -> int:
        """Write one frame, returning the number of payload bytes written."""
        if len(frame.data) > MAX_DATA_SIZE:
            raise SmuxError("frame is too large to send")
        latest = time.time() + self.config.write_timeout
        if deadline is None or deadline > latest:
            deadline = latest
        if not self._send_lock.acquire(timeout=_remaining(deadline)):
            raise SmuxTimeoutError()
        try:
            if self._die.is_set():
                raise _broken_pipe()
            written = self._send_all(frame.encode(), deadline)
        finally:
            self._send_lock.release()
        return max(written - HEADER_SIZE, 0)


def _new_session(conn: socket.socket, config: Config | None, client: bool) -> Session:
    config = verify_config(config if config is not None else default_config())
    return Session(config, conn, client)


def server(conn: socket.socket, config: Config | None = None) -> Session:
    """Start the server side of a session over conn."""
    return _new_session(conn, config, client=False)


def client(conn: socket.socket, config: Config | None = None) -> Session:
    """Start the client side of a session over conn."""
    return _new_session(conn, config, client=True)
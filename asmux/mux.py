"""Stream multiplexing over a single asyncio connection."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque

from .config import MuxConfig, StreamIdType
from .errors import (
    ConnectionClosedError,
    DuplicatedStreamIdError,
    InvalidPeerStreamIdTypeError,
    StreamClosedError,
    TooManyStreamsError,
)
from .frame import MAX_PAYLOAD_SIZE, MuxCodec, MuxCommand, MuxFrame

logger = logging.getLogger(__name__)

TICK_INTERVAL = 0.5
"""Seconds between two runs of the keep-alive and idle-timeout checks."""

_READ_CHUNK = 64 * 1024
_STREAM_ID_MASK = 0xFFFFFFFF
_MAX_STREAMS = _STREAM_ID_MASK // 2


def _timestamp() -> int:
    return int(time.time())


class _Notifier:
    """Wakes every coroutine waiting on it when notified."""

    def __init__(self) -> None:
        self._waiters: list[asyncio.Future[None]] = []

    def notify(self) -> None:
        waiters, self._waiters = self._waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(None)

    async def wait(self) -> None:
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        finally:
            if fut in self._waiters:
                self._waiters.remove(fut)


class _StreamHandle:
    """Per-stream queues and wake-ups held by the connection state."""

    def __init__(self, timestamp: int) -> None:
        self.closed = False
        self.tx_queue: deque[MuxFrame] = deque()
        self.rx_queue: deque[MuxFrame] = deque()
        self.tx_done = _Notifier()
        self.rx_ready = _Notifier()
        self.last_active = timestamp

    def mark_finished(self) -> None:
        self.closed = True
        self.rx_ready.notify()
        self.tx_done.notify()


class _MuxState:
    """State shared by the connector, acceptor, worker and streams."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        config: MuxConfig,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.codec = MuxCodec()
        self.rx_buffer = bytearray()
        self.handles: dict[int, _StreamHandle] = {}
        self.accept_queue: deque[MuxStream] = deque()
        self.accept_ready = _Notifier()
        self.tx_queue: deque[MuxFrame] = deque()
        self.should_tx = _Notifier()
        self.rx_consumed = _Notifier()
        self.closed = False
        self.accept_closed = False
        self.stream_id_type = config.stream_id_type
        self.stream_id_hint = int(config.stream_id_type)
        self.max_tx_queue = config.max_tx_queue
        self.max_rx_queue = config.max_rx_queue

    # -- lifecycle -------------------------------------------------------

    def check_closed(self) -> None:
        if self.closed:
            raise ConnectionClosedError()

    def close(self) -> None:
        self.closed = True
        self.accept_ready.notify()
        self.rx_consumed.notify()
        self.should_tx.notify()
        for handle in self.handles.values():
            handle.mark_finished()

    async def close_transport(self) -> None:
        self.writer.close()
        with contextlib.suppress(Exception):
            await self.writer.wait_closed()

    # -- streams ---------------------------------------------------------

    def handle(self, stream_id: int) -> _StreamHandle:
        try:
            return self.handles[stream_id]
        except KeyError:
            raise StreamClosedError(stream_id) from None

    def alloc_stream_id(self) -> int:
        if len(self.handles) >= _MAX_STREAMS:
            raise TooManyStreamsError()
        while True:
            self.stream_id_hint = (self.stream_id_hint + 2) & _STREAM_ID_MASK
            if self.stream_id_hint not in self.handles:
                return self.stream_id_hint

    def process_sync(self, stream_id: int, from_peer: bool) -> None:
        if stream_id in self.handles:
            raise DuplicatedStreamIdError(stream_id)
        if (stream_id % 2 != int(self.stream_id_type)) ^ from_peer:
            raise InvalidPeerStreamIdTypeError(stream_id, self.stream_id_type)
        self.handles[stream_id] = _StreamHandle(_timestamp())

    def remove_stream(self, stream_id: int) -> None:
        del self.handles[stream_id]
        self.rx_consumed.notify()

    def try_mark_finish(self, stream_id: int) -> None:
        handle = self.handles.get(stream_id)
        if handle is not None:
            handle.mark_finished()

    def send_finish(self, stream_id: int) -> None:
        self.tx_queue.append(MuxFrame.new(MuxCommand.FINISH, stream_id))
        self.should_tx.notify()

    def recv_push(self, frame: MuxFrame) -> bool:
        handle = self.handles.get(frame.stream_id)
        if handle is None:
            return False
        handle.rx_queue.append(frame)
        handle.rx_ready.notify()
        handle.last_active = _timestamp()
        return True

    def rx_pending(self) -> int:
        return sum(len(h.rx_queue) for h in self.handles.values() if not h.closed)

    def has_pending_tx(self) -> bool:
        return bool(self.tx_queue) or any(h.tx_queue for h in self.handles.values())

    async def read_stream_data(self, stream_id: int) -> bytes | None:
        """Next payload received for a stream, or ``None`` at end of stream."""
        while True:
            handle = self.handle(stream_id)
            if handle.rx_queue:
                frame = handle.rx_queue.popleft()
                self.rx_consumed.notify()
                return frame.payload
            if self.closed:
                raise ConnectionClosedError()
            if handle.closed:
                return None
            await handle.rx_ready.wait()

    # -- wire ------------------------------------------------------------

    async def next_frame(self) -> MuxFrame:
        while True:
            frame = self.codec.decode(self.rx_buffer)
            if frame is not None:
                return frame
            data = await self.reader.read(_READ_CHUNK)
            if not data:
                raise ConnectionClosedError()
            self.rx_buffer += data

    async def flush_frames(self) -> None:
        """Write control frames first, then every stream's pending data."""
        encode = self.codec.encode
        while self.tx_queue:
            self.writer.write(encode(self.tx_queue.popleft()))
        for handle in self.handles.values():
            if handle.tx_queue:
                while handle.tx_queue:
                    self.writer.write(encode(handle.tx_queue.popleft()))
                handle.tx_done.notify()
        await self.writer.drain()


def mux_connection(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    config: MuxConfig,
) -> tuple[MuxConnector, MuxAcceptor, MuxWorker]:
    """Multiplex a connection; the worker's ``run()`` must be driven for I/O."""
    state = _MuxState(reader, writer, config)
    return MuxConnector(state), MuxAcceptor(state), MuxWorker(state, config)


class MuxConnector:
    """Opens outgoing streams."""

    def __init__(self, state: _MuxState) -> None:
        self._state = state

    def connect(self) -> MuxStream:
        state = self._state
        state.check_closed()
        stream_id = state.alloc_stream_id()
        state.process_sync(stream_id, from_peer=False)
        state.tx_queue.append(MuxFrame.new(MuxCommand.SYNC, stream_id))
        state.should_tx.notify()
        return MuxStream(state, stream_id)

    async def close(self) -> None:
        """Close the whole connection."""
        self._state.close()
        await self._state.close_transport()

    def num_streams(self) -> int:
        return len(self._state.handles)


class MuxAcceptor:
    """Hands out streams opened by the peer."""

    def __init__(self, state: _MuxState) -> None:
        self._state = state

    async def accept(self) -> MuxStream | None:
        """Next incoming stream, or ``None`` once the connection is closed."""
        state = self._state
        while True:
            if state.closed or state.accept_closed:
                return None
            if state.accept_queue:
                return state.accept_queue.popleft()
            await state.accept_ready.wait()

    def close(self) -> None:
        """Refuse every stream the peer opens from now on."""
        self._state.accept_closed = True
        self._state.accept_ready.notify()

    def __aiter__(self) -> MuxAcceptor:
        return self

    async def __anext__(self) -> MuxStream:
        stream = await self.accept()
        if stream is None:
            raise StopAsyncIteration
        return stream


class MuxWorker:
    """Moves frames between the connection and the streams."""

    def __init__(self, state: _MuxState, config: MuxConfig) -> None:
        self._state = state
        self._keep_alive_interval = config.keep_alive_interval
        self._idle_timeout = config.idle_timeout
        self._last_ping = _timestamp()

    async def run(self) -> None:
        """Serve the connection until it closes; raises the reason it stopped."""
        state = self._state
        timer = asyncio.create_task(self._tick())
        dispatcher = asyncio.create_task(self._dispatch())
        sender = asyncio.create_task(self._send())
        try:
            done, _ = await asyncio.wait(
                {dispatcher, sender}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in (dispatcher, sender):
                if task in done:
                    task.result()
        finally:
            for task in (timer, dispatcher, sender):
                task.cancel()
            await asyncio.gather(timer, dispatcher, sender, return_exceptions=True)
            state.close()
            await state.close_transport()
            logger.debug("mux worker stopped")

    def close(self) -> None:
        """Stop the connection: every stream and pending operation fails."""
        self._state.close()
        self._state.writer.close()

    async def _dispatch(self) -> None:
        state = self._state
        while True:
            state.check_closed()
            while state.rx_pending() > state.max_rx_queue:
                await state.rx_consumed.wait()
                state.check_closed()
            try:
                frame = await state.next_frame()
            except Exception:
                state.close()
                raise
            command, stream_id = frame.command, frame.stream_id
            if command is MuxCommand.SYNC:
                if state.accept_closed:
                    state.send_finish(stream_id)
                    continue
                state.process_sync(stream_id, from_peer=True)
                state.accept_queue.append(MuxStream(state, stream_id))
                state.accept_ready.notify()
            elif command is MuxCommand.FINISH:
                state.try_mark_finish(stream_id)
            elif command is MuxCommand.PUSH:
                if not state.recv_push(frame):
                    state.send_finish(stream_id)

    async def _send(self) -> None:
        state = self._state
        while True:
            state.check_closed()
            try:
                await state.flush_frames()
            except Exception:
                state.close()
                raise
            while not state.has_pending_tx():
                await state.should_tx.wait()
                state.check_closed()

    async def _tick(self) -> None:
        state = self._state
        while True:
            await asyncio.sleep(TICK_INTERVAL)
            ts = _timestamp()
            if self._keep_alive_interval is not None:
                if ts > self._last_ping + self._keep_alive_interval:
                    state.tx_queue.append(MuxFrame.new(MuxCommand.NOP, 0))
                    state.should_tx.notify()
                    self._last_ping = ts
            if self._idle_timeout is not None:
                dead = [
                    stream_id
                    for stream_id, handle in state.handles.items()
                    if not handle.closed and ts > handle.last_active + self._idle_timeout
                ]
                for stream_id in dead:
                    state.try_mark_finish(stream_id)
                    state.send_finish(stream_id)
                    state.rx_consumed.notify()


class MuxStream:
    """One bidirectional byte stream carried by the connection."""

    def __init__(self, state: _MuxState, stream_id: int) -> None:
        self._state = state
        self._stream_id = stream_id
        self._buffer = b""

    def __repr__(self) -> str:
        return f"MuxStream(stream_id={self._stream_id})"

    @property
    def stream_id(self) -> int:
        return self._stream_id

    async def read(self, n: int = -1) -> bytes:
        """Read up to ``n`` bytes (one received chunk if ``n`` < 0); b"" at EOF."""
        if n == 0:
            return b""
        while not self._buffer:
            payload = await self._state.read_stream_data(self._stream_id)
            if payload is None:
                return b""
            self._buffer = payload
        if n < 0 or n >= len(self._buffer):
            data, self._buffer = self._buffer, b""
        else:
            data, self._buffer = self._buffer[:n], self._buffer[n:]
        return data

    async def readexactly(self, n: int) -> bytes:
        """Read exactly ``n`` bytes or raise ``asyncio.IncompleteReadError``."""
        parts: list[bytes] = []
        remaining = n
        while remaining > 0:
            chunk = await self.read(remaining)
            if not chunk:
                raise asyncio.IncompleteReadError(b"".join(parts), n)
            parts.append(chunk)
            remaining -= len(chunk)
        return b"".join(parts)

    async def write(self, data: bytes) -> int:
        """Queue ``data`` for sending, waiting while the stream's queue is full."""
        state = self._state
        while True:
            handle = state.handle(self._stream_id)
            if handle.closed:
                raise StreamClosedError(self._stream_id)
            state.check_closed()
            if len(handle.tx_queue) <= state.max_tx_queue:
                break
            state.should_tx.notify()
            await handle.tx_done.wait()

        view = memoryview(bytes(data))
        for start in range(0, len(view), MAX_PAYLOAD_SIZE):
            frame = MuxFrame.new(
                MuxCommand.PUSH, self._stream_id, view[start : start + MAX_PAYLOAD_SIZE]
            )
            handle.tx_queue.append(frame)
        handle.last_active = _timestamp()
        state.should_tx.notify()
        return len(view)

    async def flush(self) -> None:
        """Wait until everything written has been handed to the connection."""
        state = self._state
        while True:
            handle = state.handle(self._stream_id)
            if handle.closed:
                raise StreamClosedError(self._stream_id)
            state.check_closed()
            if not handle.tx_queue:
                return
            state.should_tx.notify()
            await handle.tx_done.wait()

    async def shutdown(self) -> None:
        """Flush pending data, then finish the stream."""
        state = self._state
        while True:
            state.check_closed()
            handle = state.handle(self._stream_id)
            if handle.tx_queue:
                state.should_tx.notify()
                await handle.tx_done.wait()
                continue
            if handle.closed:
                return
            state.try_mark_finish(self._stream_id)
            state.send_finish(self._stream_id)

    def close(self) -> None:
        """Release the stream, finishing it first if it is still open."""
        state = self._state
        handle = state.handles.get(self._stream_id)
        if handle is None:
            return
        if not handle.closed:
            state.send_finish(self._stream_id)
        state.remove_stream(self._stream_id)

    def is_closed(self) -> bool:
        handle = self._state.handles.get(self._stream_id)
        return handle is None or handle.closed

    async def __aenter__(self) -> MuxStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
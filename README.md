# asmux

asmux carries many bidirectional byte streams over one asyncio connection.
It uses the smux (Simple MUltipleXing) frame format, version 1. Each frame has
an 8-byte header, and a frame carries at most 65535 bytes of payload. Longer
writes are split across several frames.

## Installation

```
pip install asmux
```

asmux has no dependencies outside the standard library.

## Usage

One end of a connection is set up as a client and the other as a server.
Each end passes the asyncio `StreamReader` and `StreamWriter` of an open
connection to `asmux.builder.MuxBuilder`. `build()` returns three objects:

- a `MuxConnector`. `connect()` opens an outgoing stream, `num_streams()`
  counts the open streams, and `await close()` closes the whole connection.
- a `MuxAcceptor`. `await accept()` returns the next stream the peer opened, or
  `None` once the connection is closed. The acceptor also works with
  `async for`. After `close()`, every stream the peer opens is refused.
- a `MuxWorker`. It moves frames between the connection and the streams, so
  `run()` must be running as a task. `run()` returns when the connection ends
  and raises whatever stopped it. `close()` stops the connection.

```python
import asyncio
from asmux.builder import MuxBuilder

async def client(host, port):
    reader, writer = await asyncio.open_connection(host, port)
    connector, acceptor, worker = (
        MuxBuilder.client().with_connection(reader, writer).build()
    )
    task = asyncio.create_task(worker.run())

    async with connector.connect() as stream:
        await stream.write(b"hello")
        print(await stream.readexactly(5))
        await stream.shutdown()
```

The server end looks like this:

```python
connector, acceptor, worker = (
    MuxBuilder.server().with_connection(reader, writer).build()
)
asyncio.create_task(worker.run())
async for stream in acceptor:
    async with stream:
        data = await stream.read(100)
        await stream.write(data)
        await stream.flush()
        await stream.shutdown()
```

The client end gives its streams odd ids and the server end gives its streams
even ids. Either end can open streams and accept streams.

### Streams

A `MuxStream` has the following members:

- `stream_id`: the stream's id.
- `await read(n=-1)`: returns up to `n` bytes. With a negative `n` it returns
  one received chunk. At end of stream it returns `b""`.
- `await readexactly(n)`: returns exactly `n` bytes, or raises
  `asyncio.IncompleteReadError`.
- `await write(data)`: queues data for sending. It waits while the stream's
  send queue is full.
- `await flush()`: waits until the worker has handed all queued data to the
  connection.
- `await shutdown()`: flushes, then finishes the stream.
- `close()`: releases the stream and finishes it if it is still open. Using
  the stream as an async context manager calls `close()` on exit.
- `is_closed()`: tells whether the stream has been finished.

### Options

Call these on the builder before `with_connection`:

- `with_keep_alive_interval(secs)`: send a keep-alive (NOP) frame once this
  many seconds have passed.
- `with_idle_timeout(secs)`: finish any stream that has had no activity for
  longer than this.
- `with_max_tx_queue(n)`: the number of frames one stream may queue for
  sending.
- `with_max_rx_queue(n)`: the number of received frames that may sit unread
  across all open streams. While this limit is exceeded, the worker stops
  reading from the connection.

Every value must be a positive integer. The two queue limits default to 1024.
Keep-alive and idle timeout are off by default. The worker checks them every
half second. The settings are held in a frozen `asmux.config.MuxConfig`, which
the builder exposes as `config`.

### Errors

Failures raise subclasses of `asmux.errors.MuxError`. Some examples:

- `ConnectionClosedError`: the underlying connection is gone.
- `StreamClosedError`: you wrote to or flushed a finished stream.
- `InvalidVersionError`, `InvalidCommandError`: a malformed frame arrived.
- `TooManyStreamsError`: no stream ids are left.

### Frames

`asmux.frame` holds the wire format. `MuxFrame.new()` builds a frame.
`MuxCodec.encode()` serialises it. `MuxCodec.decode()` takes one complete frame
off the front of a `bytearray`, or returns `None` if the buffer does not yet
hold a whole frame.

## Limitations

asmux speaks only version 1 of the frame format. It has no per-stream flow
control windows. Backpressure comes only from the queue limits above.
Encryption and authentication are not part of asmux; add them on the
connection you pass in.

## Echo demo

The `asmux-echo` command starts an echo server on a local port and connects a
client to it. The client opens a number of streams in turn and sends `hello`
on each one. The server echoes one read from each stream back.

```
asmux-echo --host 127.0.0.1 --port 12345 --count 10
```

The values shown are the defaults. The same demo is available in code as
`asmux.echo.echo_server()` and `asmux.echo.echo_client()`.
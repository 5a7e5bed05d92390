"""Echo server and client over a multiplexed TCP connection."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging

from .builder import MuxBuilder
from .errors import MuxError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 12345
DEFAULT_COUNT = 10

_CONNECT_WAIT = 3.0
_CONNECT_RETRY_DELAY = 0.1
_READ_SIZE = 100


async def _open_connection(
    host: str, port: int
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Connect, retrying for a while so a server that is starting can come up."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + _CONNECT_WAIT
    while True:
        try:
            return await asyncio.open_connection(host, port)
        except OSError:
            if loop.time() >= deadline:
                raise
            await asyncio.sleep(_CONNECT_RETRY_DELAY)


async def _stop(task: asyncio.Task) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError, MuxError, OSError):
        await task


async def echo_server(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> int:
    """Accept one connection and echo one read of every stream opened on it.

    Returns the number of streams served once the connection closes.
    """
    loop = asyncio.get_running_loop()
    connected: asyncio.Future = loop.create_future()

    def on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if connected.done():
            writer.close()
        else:
            connected.set_result((reader, writer))

    listener = await asyncio.start_server(on_connect, host, port)
    try:
        reader, writer = await connected
    finally:
        listener.close()

    _, acceptor, worker = MuxBuilder.server().with_connection(reader, writer).build()
    worker_task = asyncio.create_task(worker.run())
    print("server launched")

    served = 0
    try:
        async for stream in acceptor:
            print(f"accepted mux stream {stream.stream_id}")
            served += 1
            async with stream:
                try:
                    data = await stream.read(_READ_SIZE)
                    await stream.write(data)
                    await stream.flush()
                    await stream.shutdown()
                except MuxError as exc:
                    logger.debug("stream %d failed: %s", stream.stream_id, exc)
    finally:
        await _stop(worker_task)
    return served


async def echo_client(
    host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, count: int = DEFAULT_COUNT
) -> list[str]:
    """Open ``count`` streams in turn, send "hello" on each and collect the replies."""
    reader, writer = await _open_connection(host, port)
    connector, _, worker = MuxBuilder.client().with_connection(reader, writer).build()
    worker_task = asyncio.create_task(worker.run())

    replies: list[str] = []
    try:
        for i in range(count):
            async with connector.connect() as stream:
                await stream.write(b"hello")
                reply = (await stream.readexactly(5)).decode()
                print(f"{i}: reply = {reply}")
                replies.append(reply)
                await stream.shutdown()
    finally:
        await connector.close()
        await _stop(worker_task)
    return replies


async def _run(host: str, port: int, count: int) -> list[str]:
    server = asyncio.create_task(echo_server(host, port))
    try:
        replies = await echo_client(host, port, count)
    except BaseException:
        await _stop(server)
        raise
    await server
    return replies


def main(argv: list[str] | None = None) -> int:
    """Run an echo server and a client talking to it over one connection."""
    parser = argparse.ArgumentParser(description="Echo over a multiplexed connection.")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--count", type=int, default=DEFAULT_COUNT)
    args = parser.parse_args(argv)
    asyncio.run(_run(args.host, args.port, args.count))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
import asyncio
import contextlib
import os
from dataclasses import dataclass
from typing import Any

import pytest

from asmux.builder import MuxBuilder
from asmux.config import StreamIdType
from asmux.errors import ConnectionClosedError, MuxError, StreamClosedError
from asmux.frame import MAX_PAYLOAD_SIZE

DATA = bytes([1, 2, 3, 4])


@dataclass
class Side:
    connector: Any
    acceptor: Any
    worker: Any
    task: Any = None


async def tcp_pair():
    loop = asyncio.get_running_loop()
    accepted = loop.create_future()

    def on_connect(reader, writer):
        if not accepted.done():
            accepted.set_result((reader, writer))

    server = await asyncio.start_server(on_connect, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    client = await asyncio.open_connection("127.0.0.1", port)
    served = await accepted
    server.close()
    return served, client


@contextlib.asynccontextmanager
async def muxed(client=None, server=None, *, run_client=True, run_server=True):
    (ar, aw), (br, bw) = await tcp_pair()
    a = Side(*(client or MuxBuilder.client()).with_connection(ar, aw).build())
    b = Side(*(server or MuxBuilder.server()).with_connection(br, bw).build())
    for side, run in ((a, run_client), (b, run_server)):
        if run:
            side.task = asyncio.create_task(side.worker.run())
    try:
        yield a, b
    finally:
        for side in (a, b):
            side.worker.close()
            if side.task is not None:
                side.task.cancel()
                with contextlib.suppress(asyncio.CancelledError, MuxError, OSError):
                    await side.task


async def send(stream, data):
    await stream.write(data)
    await stream.flush()


def assert_no_streams(*sides):
    assert [side.connector.num_streams() for side in sides] == [0] * len(sides)


async def exercise(a, b):
    length = MAX_PAYLOAD_SIZE + 0x200
    half = length // 2
    data1 = os.urandom(length)
    data2 = os.urandom(length)
    assert a.stream_id == b.stream_id

    await send(a, data1)
    await send(b, data2)
    assert await a.readexactly(length) == data2
    assert await b.readexactly(length) == data1

    await send(a, data1)
    first = await b.readexactly(half)
    assert first + await b.readexactly(length - half) == data1

    await send(a, data1[:half])
    assert await b.readexactly(half) == data1[:half]

    for stream in (a, b):
        await stream.shutdown()
    for stream in (a, b):
        stream.close()


def test_client_and_server_defaults():
    client = MuxBuilder.client().config
    server = MuxBuilder.server().config
    assert client.stream_id_type is StreamIdType.ODD
    assert server.stream_id_type is StreamIdType.EVEN
    for config in (client, server):
        assert (config.keep_alive_interval, config.idle_timeout) == (None, None)
        assert (config.max_tx_queue, config.max_rx_queue) == (1024, 1024)


def test_settings_chain():
    builder = MuxBuilder.client()
    result = (
        builder.with_keep_alive_interval(5)
        .with_idle_timeout(7)
        .with_max_tx_queue(10)
        .with_max_rx_queue(12)
    )
    assert result is builder
    config = builder.config
    assert (config.keep_alive_interval, config.idle_timeout) == (5, 7)
    assert (config.max_tx_queue, config.max_rx_queue) == (10, 12)


@pytest.mark.parametrize(
    "method",
    ["with_keep_alive_interval", "with_idle_timeout", "with_max_tx_queue", "with_max_rx_queue"],
)
def test_zero_settings_rejected(method):
    with pytest.raises(ValueError):
        getattr(MuxBuilder.server(), method)(0)


def test_build_without_connection():
    with pytest.raises(RuntimeError):
        MuxBuilder.client().build()


@pytest.mark.asyncio
async def test_tcp():
    async with muxed() as (a, b):
        for opener, listener in ((a, b), (b, a)):
            await exercise(opener.connector.connect(), await listener.acceptor.accept())
        assert_no_streams(a, b)

        stream_num = 32
        streams1 = [a.connector.connect() for _ in range(stream_num)]
        streams2 = [await b.acceptor.accept() for _ in range(stream_num)]
        await asyncio.gather(*(exercise(x, y) for x, y in zip(streams1, streams2)))
        assert_no_streams(a, b)


@pytest.mark.asyncio
async def test_worker_drop():
    async with muxed(run_client=False, run_server=False) as (a, b):
        stream1 = a.connector.connect()
        reading = asyncio.create_task(stream1.readexactly(0x100))
        await asyncio.sleep(0)

        for side in (a, b):
            side.worker.close()
        for side in (a, b):
            with pytest.raises(ConnectionClosedError):
                side.connector.connect()
            assert await side.acceptor.accept() is None
        with pytest.raises(ConnectionClosedError):
            await reading


@pytest.mark.asyncio
async def test_shutdown():
    async with muxed() as (a, b):
        stream1 = a.connector.connect()
        stream2 = await b.acceptor.accept()

        await stream2.write(DATA)
        await stream2.shutdown()
        await asyncio.sleep(0.5)

        with pytest.raises(StreamClosedError):
            await stream1.write(bytes([0, 1, 2, 3]))
        with pytest.raises(StreamClosedError):
            await stream1.flush()
        assert await stream1.readexactly(4) == DATA
        assert await stream1.read(4) == b""

        a.acceptor.close()
        stream = b.connector.connect()
        assert await asyncio.wait_for(stream.read(4), 5) == b""
        with pytest.raises(StreamClosedError):
            await stream.flush()
        await stream.shutdown()
        assert stream.is_closed()

        stream1 = a.connector.connect()
        stream2 = await b.acceptor.accept()
        await send(stream1, DATA)
        stream1.close()
        await asyncio.sleep(0.5)

        assert await stream2.readexactly(4) == DATA
        with pytest.raises(asyncio.IncompleteReadError):
            await stream2.readexactly(4)
        with pytest.raises(StreamClosedError):
            await stream2.write(DATA)


@pytest.mark.asyncio
async def test_timeout():
    async with muxed(client=MuxBuilder.client().with_idle_timeout(1)) as (a, b):
        streams = [a.connector.connect(), await b.acceptor.accept()]
        await asyncio.sleep(0.3)
        assert [s.is_closed() for s in streams] == [False, False]

        await asyncio.sleep(3.5)
        assert [s.is_closed() for s in streams] == [True, True]


@pytest.mark.asyncio
async def test_recv_block():
    async with muxed(server=MuxBuilder.server().with_max_rx_queue(12)) as (a, b):
        stream_x1 = a.connector.connect()
        stream_x2 = await b.acceptor.accept()
        stream_y1 = a.connector.connect()
        stream_y2 = await b.acceptor.accept()

        frames = 14
        for _ in range(frames):
            await stream_x1.write(DATA)
        # stream_x fills the receive queue past its limit
        await stream_y1.write(DATA)

        reading = asyncio.create_task(stream_y2.read(128))
        await asyncio.sleep(0.3)
        assert not reading.done()

        for _ in range(frames):
            assert await stream_x2.readexactly(4) == DATA
        assert await asyncio.wait_for(reading, 5) == DATA


@pytest.mark.asyncio
async def test_connection_drop():
    async with muxed() as (a, b):
        stream1 = a.connector.connect()
        stream2 = await b.acceptor.accept()

        stream1.close()
        await asyncio.sleep(0.5)

        with pytest.raises(StreamClosedError):
            await stream2.write(b"1234")


@pytest.mark.asyncio
async def test_inner_shutdown():
    async with muxed(run_server=False) as (a, b):
        b.worker.close()
        for side in (b, a):
            await asyncio.sleep(0.5)
            with pytest.raises(ConnectionClosedError):
                side.connector.connect()
            assert await side.acceptor.accept() is None
        with pytest.raises(ConnectionClosedError):
            await asyncio.wait_for(a.task, 5)
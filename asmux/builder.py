"""Fluent construction of a multiplexed connection."""

from __future__ import annotations

import asyncio
from dataclasses import replace

from .config import MuxConfig, StreamIdType
from .mux import MuxAcceptor, MuxConnector, MuxWorker, mux_connection


class MuxBuilder:
    """Collects settings and a connection, then builds the multiplexer.

    Start with :meth:`client` or :meth:`server`, adjust the settings, give
    the connection with :meth:`with_connection` and call :meth:`build`.
    """

    def __init__(
        self,
        config: MuxConfig,
        connection: tuple[asyncio.StreamReader, asyncio.StreamWriter] | None = None,
    ) -> None:
        self._config = config
        self._connection = connection

    @classmethod
    def client(cls) -> MuxBuilder:
        """Builder for the side that allocates odd stream identifiers."""
        return cls(MuxConfig(StreamIdType.ODD))

    @classmethod
    def server(cls) -> MuxBuilder:
        """Builder for the side that allocates even stream identifiers."""
        return cls(MuxConfig(StreamIdType.EVEN))

    @property
    def config(self) -> MuxConfig:
        return self._config

    def with_keep_alive_interval(self, interval_secs: int) -> MuxBuilder:
        """Send a keep-alive frame every ``interval_secs`` seconds."""
        self._config = replace(self._config, keep_alive_interval=interval_secs)
        return self

    def with_idle_timeout(self, timeout_secs: int) -> MuxBuilder:
        """Finish streams that stay idle for more than ``timeout_secs`` seconds."""
        self._config = replace(self._config, idle_timeout=timeout_secs)
        return self

    def with_max_tx_queue(self, size: int) -> MuxBuilder:
        """Limit the number of frames queued for sending on one stream."""
        self._config = replace(self._config, max_tx_queue=size)
        return self

    def with_max_rx_queue(self, size: int) -> MuxBuilder:
        """Limit the number of received frames waiting to be read."""
        self._config = replace(self._config, max_rx_queue=size)
        return self

    def with_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> MuxBuilder:
        """Return a builder carrying the current settings and this connection."""
        return MuxBuilder(self._config, (reader, writer))

    def build(self) -> tuple[MuxConnector, MuxAcceptor, MuxWorker]:
        """Create the connector, acceptor and worker of the connection."""
        if self._connection is None:
            raise RuntimeError("no connection given; call with_connection() first")
        reader, writer = self._connection
        return mux_connection(reader, writer, self._config)
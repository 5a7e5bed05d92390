"""Configuration of a multiplexed connection."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class StreamIdType(IntEnum):
    """Parity of the stream identifiers a side allocates locally."""

    EVEN = 0
    ODD = 1


DEFAULT_MAX_TX_QUEUE = 1024
DEFAULT_MAX_RX_QUEUE = 1024


@dataclass(frozen=True)
class MuxConfig:
    """Settings shared by every part of one multiplexed connection.

    Intervals and timeouts are in whole seconds; ``None`` disables them.
    """

    stream_id_type: StreamIdType
    keep_alive_interval: int | None = None
    idle_timeout: int | None = None
    max_tx_queue: int = DEFAULT_MAX_TX_QUEUE
    max_rx_queue: int = DEFAULT_MAX_RX_QUEUE

    def __post_init__(self) -> None:
        object.__setattr__(self, "stream_id_type", StreamIdType(self.stream_id_type))
        for name in ("keep_alive_interval", "idle_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be a positive number of seconds")
        for name in ("max_tx_queue", "max_rx_queue"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
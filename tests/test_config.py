import dataclasses

import pytest

from asmux.config import MuxConfig, StreamIdType

LIMIT_FIELDS = ["keep_alive_interval", "idle_timeout", "max_tx_queue", "max_rx_queue"]


@pytest.mark.parametrize(
    "value, member", [(0, StreamIdType.EVEN), (1, StreamIdType.ODD)]
)
def test_stream_id_type_values(value, member):
    assert StreamIdType(value) is member
    assert MuxConfig(member).stream_id_type == value
    assert MuxConfig(value).stream_id_type is member


@pytest.mark.parametrize(
    "field, expected",
    [
        ("keep_alive_interval", None),
        ("idle_timeout", None),
        ("max_tx_queue", 1024),
        ("max_rx_queue", 1024),
    ],
)
def test_defaults(field, expected):
    assert getattr(MuxConfig(StreamIdType.ODD), field) == expected


def test_invalid_stream_id_type():
    with pytest.raises(ValueError):
        MuxConfig(2)


@pytest.mark.parametrize("field", LIMIT_FIELDS)
def test_zero_values_rejected(field):
    with pytest.raises(ValueError):
        MuxConfig(StreamIdType.EVEN, **{field: 0})


def test_replace_keeps_other_fields():
    config = MuxConfig(StreamIdType.EVEN, idle_timeout=3)
    changed = dataclasses.replace(config, max_rx_queue=12)
    assert (changed.max_rx_queue, changed.idle_timeout) == (12, 3)
    assert changed.stream_id_type is StreamIdType.EVEN
    assert config.max_rx_queue == 1024


def test_config_is_immutable():
    config = MuxConfig(StreamIdType.ODD)
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.max_tx_queue = 5  # type: ignore[misc]
    assert config.max_tx_queue == 1024
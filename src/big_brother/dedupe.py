"""Per-peer sequence counter checks for duplicate and missed datagrams."""

from __future__ import annotations

from typing import TYPE_CHECKING

from big_brother.serdes import COUNTER_MASK

if TYPE_CHECKING:
    from big_brother.network_map import NetworkMapEntry
    from big_brother.serdes import PacketMetadata

_HALF_RANGE = COUNTER_MASK // 2


def check_sequence(metadata: PacketMetadata, entry: NetworkMapEntry) -> int | None:
    """Check *metadata*'s counter against the counter expected from its sender.

    Unicast and broadcast traffic are tracked with separate counters since
    a sender numbers them independently.  The comparison is a wrapped
    32-bit subtraction: a counter less than half the range ahead of the
    expected one is new, anything else is old.  The first datagram seen
    on an unsynchronized counter is always accepted.

    :returns: Number of datagrams skipped since the last accepted one, or
        ``None`` if this datagram is a duplicate or out of date.
    """
    broadcast = metadata.to_addr.is_broadcast
    expected = entry.broadcast_counter if broadcast else entry.from_counter
    if expected is None:
        diff = 0
    else:
        diff = (metadata.counter - expected) & COUNTER_MASK
        if diff >= _HALF_RANGE:
            return None

    next_counter = (metadata.counter + 1) & COUNTER_MASK
    if broadcast:
        entry.broadcast_counter = next_counter
    else:
        entry.from_counter = next_counter
    return diff

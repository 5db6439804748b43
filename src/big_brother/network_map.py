"""Learned, time-bounded bindings from logical to physical addresses."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from big_brother.errors import NetworkMapFullError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from big_brother.address import LogicalAddress, PhysicalAddress

logger = logging.getLogger(__name__)

# Default staleness window in milliseconds: five missed announcements at
# the default 100 ms announcement interval.
DEFAULT_STALENESS_WINDOW: int = 500

DEFAULT_CAPACITY: int = 32


@dataclass(slots=True)
class NetworkMapEntry:
    """Last known physical address of one logical address."""

    logical: LogicalAddress
    physical: PhysicalAddress
    last_seen: int
    """Timestamp (ms) of the last datagram observed from this node."""

    to_counter: int = 0
    """Counter stamped on the next unicast datagram sent to this node."""

    from_counter: int | None = None
    """Next unicast counter expected from this node (None until synchronized)."""

    broadcast_counter: int | None = None
    """Next broadcast counter expected from this node (None until synchronized)."""

    session_id: int | None = None
    """Session id from this node's most recent announcement, if any."""

    def age(self, timestamp: int) -> int:
        return timestamp - self.last_seen

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-friendly dict."""
        return {
            "logical": self.logical.to_dict(),
            "physical": self.physical.to_dict(),
            "last_seen": self.last_seen,
            "session_id": self.session_id,
        }


class NetworkMap:
    """Mapping from logical endpoint to last-known physical address.

    Bindings are learned passively from inbound traffic (last writer
    wins).  An entry not refreshed for longer than *staleness_window*
    milliseconds no longer resolves; it is evicted lazily when looked up
    and in bulk by :meth:`purge_stale`.

    The outbound counter of an evicted entry is retained so that a peer
    that reappears keeps seeing a monotonically increasing sequence.
    """

    def __init__(
        self,
        staleness_window: int = DEFAULT_STALENESS_WINDOW,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        if staleness_window <= 0:
            msg = f"Staleness window must be positive, got {staleness_window}"
            raise ValueError(msg)
        if capacity <= 0:
            msg = f"Capacity must be positive, got {capacity}"
            raise ValueError(msg)
        self._staleness_window = staleness_window
        self._capacity = capacity
        self._entries: dict[LogicalAddress, NetworkMapEntry] = {}
        self._retired_to_counters: dict[LogicalAddress, int] = {}

    @property
    def staleness_window(self) -> int:
        return self._staleness_window

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, logical: object) -> bool:
        return logical in self._entries

    def __iter__(self) -> Iterator[NetworkMapEntry]:
        return iter(list(self._entries.values()))

    def is_stale(self, entry: NetworkMapEntry, timestamp: int) -> bool:
        return entry.age(timestamp) > self._staleness_window

    def map_address(
        self,
        logical: LogicalAddress,
        physical: PhysicalAddress,
        timestamp: int,
    ) -> NetworkMapEntry:
        """Record or refresh the binding *logical* -> *physical*.

        Counters and session id survive a refresh even when the physical
        address changes.

        :raises ValueError: If *logical* is the broadcast address.
        :raises NetworkMapFullError: If a new entry is needed and the map is
            full of live entries.
        """
        if logical.is_broadcast:
            msg = "Broadcast address cannot be mapped"
            raise ValueError(msg)

        entry = self._entries.get(logical)
        if entry is not None:
            if entry.physical != physical:
                logger.info("%s moved from %s to %s", logical, entry.physical, physical)
                entry.physical = physical
            entry.last_seen = timestamp
            return entry

        if len(self._entries) >= self._capacity:
            self.purge_stale(timestamp)
            if len(self._entries) >= self._capacity:
                msg = f"Network map full ({self._capacity} entries), cannot map {logical}"
                raise NetworkMapFullError(msg)

        entry = NetworkMapEntry(
            logical=logical,
            physical=physical,
            last_seen=timestamp,
            to_counter=self._retired_to_counters.pop(logical, 0),
        )
        self._entries[logical] = entry
        logger.debug("Mapped %s -> %s", logical, physical)
        return entry

    def get_entry(self, logical: LogicalAddress, timestamp: int) -> NetworkMapEntry | None:
        """Return the live entry for *logical*, evicting it if stale."""
        entry = self._entries.get(logical)
        if entry is None:
            return None
        if self.is_stale(entry, timestamp):
            self._evict(entry)
            return None
        return entry

    def resolve(self, logical: LogicalAddress, timestamp: int) -> PhysicalAddress | None:
        """Translate *logical* into a physical address suitable for unicast.

        :returns: The physical address, or ``None`` if never observed or
            not refreshed within the staleness window.
        """
        entry = self.get_entry(logical, timestamp)
        if entry is None:
            return None
        return entry.physical

    def purge_stale(self, timestamp: int) -> int:
        """Evict every entry older than the staleness window.

        :returns: Number of entries evicted.
        """
        stale = [e for e in self._entries.values() if self.is_stale(e, timestamp)]
        for entry in stale:
            self._evict(entry)
        return len(stale)

    def update_session_id(self, logical: LogicalAddress, session_id: int) -> bool:
        """Record the session id announced by *logical*.

        A changed session id means the peer restarted and numbers its
        datagrams from zero again, so the expected counters are
        unsynchronized until its next datagram.
        The first announcement seen from a peer only records its session.

        :returns: ``True`` if the session changed.
        """
        entry = self._entries.get(logical)
        if entry is None or entry.session_id == session_id:
            return False
        first_announcement = entry.session_id is None
        entry.session_id = session_id
        if first_announcement:
            return False
        entry.from_counter = None
        entry.broadcast_counter = None
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._retired_to_counters.clear()

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-friendly dict."""
        return {
            "staleness_window": self._staleness_window,
            "entries": [e.to_dict() for e in self._entries.values()],
        }

    def _evict(self, entry: NetworkMapEntry) -> None:
        del self._entries[entry.logical]
        self._retired_to_counters[entry.logical] = entry.to_counter
        logger.debug("Evicted stale entry for %s", entry.logical)

"""The big-brother coordinator: discovery, addressing and dispatch for one node."""

from __future__ import annotations

import logging
import random
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from big_brother.address import BROADCAST, UDP_PORT, LogicalAddress, PhysicalAddress, parse_logical_address
from big_brother.dedupe import check_sequence
from big_brother.errors import (
    ConfigurationError,
    DecodeError,
    InterfaceError,
    NetworkMapFullError,
    NoRouteError,
)
from big_brother.interface.port import Interface
from big_brother.network_map import DEFAULT_CAPACITY, DEFAULT_STALENESS_WINDOW, NetworkMap
from big_brother.serdes import (
    COUNTER_MASK,
    ENVELOPE_LENGTH,
    WORKING_BUFFER_SIZE,
    Heartbeat,
    PacketCodec,
    decode_body,
    decode_metadata,
    encode_datagram,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from big_brother.network_map import NetworkMapEntry
    from big_brother.serdes import PacketMetadata

logger = logging.getLogger(__name__)

DEFAULT_ANNOUNCE_INTERVAL: int = 100
DEFAULT_MAX_DATAGRAMS_PER_POLL: int = 32


@dataclass
class BigBrotherConfig:
    """Configuration for one node's coordinator.

    All durations are in milliseconds of the caller-supplied clock.
    """

    host_address: LogicalAddress
    staleness_window: int = DEFAULT_STALENESS_WINDOW
    announce_interval: int = DEFAULT_ANNOUNCE_INTERVAL
    max_datagrams_per_poll: int = DEFAULT_MAX_DATAGRAMS_PER_POLL
    network_map_capacity: int = DEFAULT_CAPACITY
    use_dedupe: bool = True
    session_id: int | None = None  # random if None
    buffer_size: int = WORKING_BUFFER_SIZE


@dataclass(frozen=True, slots=True)
class ReceivedPacket:
    """An application packet decoded during a poll, with its sender."""

    sender: LogicalAddress
    packet: Any

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-friendly dict; the packet itself is left to the serializer."""
        return {
            "sender": self.sender.to_dict(),
            "type": type(self.packet).__name__,
            "packet": self.packet,
        }


@dataclass(slots=True)
class BigBrotherStats:
    """Counters of inbound traffic handling."""

    received: int = 0
    """Application packets surfaced to the caller."""

    announcements: int = 0
    malformed: int = 0
    duplicates: int = 0
    missed: int = 0
    """Datagrams inferred lost from gaps in peers' counters."""

    misaddressed: int = 0
    """Valid datagrams addressed to another node."""

    unmapped: int = 0
    """Datagrams dropped because the network map had no room for the sender."""

    recv_errors: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to JSON-friendly dict."""
        return asdict(self)


class BigBrother:
    """Coordinator owning one :class:`Interface` and the node's network map.

    The coordinator never reads a clock: every call that depends on time
    uses the timestamp most recently passed to :meth:`poll`.

    Typical control loop::

        bb = BigBrother(BigBrotherConfig(host_address=FLIGHT_CONTROLLER), iface, codec)
        while True:
            for received in bb.poll(now_ms()):
                handle(received.sender, received.packet)
            bb.send(MISSION_CONTROL, telemetry)

    :param config: Node configuration.
    :param interface: The transport; exclusively owned by this coordinator.
    :param codec: Codec holding the application's packet types.
    :raises ConfigurationError: If the configuration is invalid or
        *interface* does not implement the interface protocol.
    """

    def __init__(
        self,
        config: BigBrotherConfig,
        interface: Interface,
        codec: PacketCodec | None = None,
    ) -> None:
        if not isinstance(interface, Interface):
            msg = f"{type(interface).__name__} does not implement the Interface protocol"
            raise ConfigurationError(msg)
        if config.host_address.is_broadcast:
            msg = "Host address cannot be the broadcast address"
            raise ConfigurationError(msg)
        if config.announce_interval <= 0 or config.max_datagrams_per_poll <= 0:
            msg = "Announce interval and max datagrams per poll must be positive"
            raise ConfigurationError(msg)
        if config.buffer_size < ENVELOPE_LENGTH + 1:
            msg = f"Buffer size {config.buffer_size} cannot hold any datagram"
            raise ConfigurationError(msg)
        try:
            self._network_map = NetworkMap(config.staleness_window, config.network_map_capacity)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        self._config = config
        self._interface = interface
        self._codec = codec if codec is not None else PacketCodec()
        self._host_address = config.host_address
        if config.session_id is None:
            self._session_id = random.getrandbits(32)
        else:
            self._session_id = config.session_id & COUNTER_MASK
        self._tx_buffer = bytearray(config.buffer_size)
        self._rx_buffer = bytearray(config.buffer_size)
        self._broadcast_counter = 0
        self._timestamp = 0
        self._last_announce: int | None = None
        self._stats = BigBrotherStats()
        self._receive_callbacks: list[Callable[[LogicalAddress, Any], None]] = []

    # -- Properties -----------------------------------------------------------

    @property
    def config(self) -> BigBrotherConfig:
        return self._config

    @property
    def host_address(self) -> LogicalAddress:
        return self._host_address

    @property
    def session_id(self) -> int:
        return self._session_id

    @property
    def interface(self) -> Interface:
        return self._interface

    @property
    def codec(self) -> PacketCodec:
        return self._codec

    @property
    def network_map(self) -> NetworkMap:
        return self._network_map

    @property
    def stats(self) -> BigBrotherStats:
        return self._stats

    @property
    def timestamp(self) -> int:
        """The most recent (clamped) timestamp passed to :meth:`poll`."""
        return self._timestamp

    # -- Public API -----------------------------------------------------------

    def on_receive(self, callback: Callable[[LogicalAddress, Any], None]) -> None:
        """Register *callback* to be called with ``(sender, packet)`` per packet."""
        self._receive_callbacks.append(callback)

    def poll(self, timestamp: int) -> list[ReceivedPacket]:
        """Run one tick: service the interface, announce, and drain inbound traffic.

        :param timestamp: Monotonic time in milliseconds.  A value lower
            than the previous one is clamped to it.
        :returns: The application packets decoded during this tick.
        """
        if timestamp < self._timestamp:
            logger.warning("Timestamp went backwards (%d < %d), clamping", timestamp, self._timestamp)
            timestamp = self._timestamp
        self._timestamp = timestamp

        self._interface.poll(timestamp)

        if self._last_announce is None or timestamp - self._last_announce >= self._config.announce_interval:
            self._last_announce = timestamp
            try:
                self.announce()
            except InterfaceError as exc:
                logger.warning("Announcement from %s failed: %s", self._host_address, exc)

        purged = self._network_map.purge_stale(timestamp)
        if purged:
            logger.debug("Purged %d stale network map entries", purged)

        received: list[ReceivedPacket] = []
        for _ in range(self._config.max_datagrams_per_poll):
            try:
                result = self._interface.recv_udp(self._rx_buffer)
            except InterfaceError as exc:
                self._stats.recv_errors += 1
                logger.warning("Receive failed: %s", exc)
                continue
            if result is None:
                break
            size, source = result
            packet = self._handle_datagram(memoryview(self._rx_buffer)[:size], source)
            if packet is not None:
                received.append(packet)

        for item in received:
            for callback in self._receive_callbacks:
                try:
                    callback(item.sender, item.packet)
                except Exception:
                    logger.exception("Error in receive callback")
        return received

    def send(self, destination: LogicalAddress | str, packet: Any) -> None:
        """Encode *packet* and transmit it to *destination*.

        Broadcasts go to the interface's broadcast address on
        :data:`~big_brother.address.UDP_PORT`; unicasts go to the physical
        address last observed for *destination*.  Nothing is retried.

        :raises NoRouteError: If *destination* is unresolved or stale; the
            interface is not touched.
        :raises EncodeError: If *packet* cannot be encoded.
        :raises InterfaceError: If the transport rejects the datagram.
        """
        destination = parse_logical_address(destination)
        if destination.is_broadcast:
            size = encode_datagram(
                packet, self._host_address, destination, self._broadcast_counter,
                self._tx_buffer, self._codec,
            )
            self._broadcast_counter = (self._broadcast_counter + 1) & COUNTER_MASK
            endpoint = PhysicalAddress.from_ip(self._interface.broadcast_ip(), UDP_PORT)
        else:
            entry = self._network_map.get_entry(destination, self._timestamp)
            if entry is None:
                raise NoRouteError(destination)
            size = encode_datagram(
                packet, self._host_address, destination, entry.to_counter,
                self._tx_buffer, self._codec,
            )
            entry.to_counter = (entry.to_counter + 1) & COUNTER_MASK
            endpoint = entry.physical
        self._interface.send_udp(endpoint, memoryview(self._tx_buffer)[:size])

    def announce(self) -> None:
        """Broadcast a heartbeat carrying this node's address and session id."""
        self.send(BROADCAST, Heartbeat(self._session_id))

    def resolve(self, logical: LogicalAddress | str) -> PhysicalAddress | None:
        """Return the live physical address of *logical*, if known."""
        return self._network_map.resolve(parse_logical_address(logical), self._timestamp)

    def snapshot(self) -> dict[str, Any]:
        """Diagnostic view of the coordinator state."""
        return {
            "host_address": self._host_address.to_dict(),
            "session_id": self._session_id,
            "timestamp": self._timestamp,
            "stats": self._stats.to_dict(),
            "network_map": self._network_map.to_dict(),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-friendly dict."""
        return self.snapshot()

    # -- Inbound processing ---------------------------------------------------

    def _handle_datagram(self, data: memoryview, source: PhysicalAddress) -> ReceivedPacket | None:
        try:
            metadata = decode_metadata(data)
        except DecodeError as exc:
            self._stats.malformed += 1
            logger.debug("Dropped datagram from %s: %s", source, exc)
            return None

        if metadata.from_addr == self._host_address:
            # Our own broadcast looped back
            return None

        if metadata.from_addr.is_broadcast:
            self._stats.malformed += 1
            logger.debug("Dropped datagram from %s claiming the broadcast address", source)
            return None

        try:
            entry = self._network_map.map_address(metadata.from_addr, source, self._timestamp)
        except NetworkMapFullError as exc:
            self._stats.unmapped += 1
            logger.warning("Dropped datagram from %s: %s", source, exc)
            return None

        if not (metadata.to_addr == self._host_address or metadata.to_addr.is_broadcast):
            self._stats.misaddressed += 1
            logger.debug("Ignored datagram for %s from %s", metadata.to_addr, metadata.from_addr)
            return None

        try:
            packet = decode_body(data, metadata, self._codec)
        except DecodeError as exc:
            self._stats.malformed += 1
            logger.debug("Dropped body from %s: %s", metadata.from_addr, exc)
            return None

        is_heartbeat = isinstance(packet, Heartbeat)
        if is_heartbeat and self._network_map.update_session_id(metadata.from_addr, packet.session_id):
            logger.info("%s restarted (session %#010x)", metadata.from_addr, packet.session_id)

        if not self._accept_sequence(metadata, entry):
            return None

        if is_heartbeat:
            self._stats.announcements += 1
            return None
        self._stats.received += 1
        return ReceivedPacket(sender=metadata.from_addr, packet=packet)

    def _accept_sequence(self, metadata: PacketMetadata, entry: NetworkMapEntry) -> bool:
        if not self._config.use_dedupe:
            return True
        missed = check_sequence(metadata, entry)
        if missed is None:
            self._stats.duplicates += 1
            logger.debug("Dropped duplicate %d from %s", metadata.counter, metadata.from_addr)
            return False
        if missed:
            self._stats.missed += missed
            logger.debug("Missed %d datagrams from %s", missed, metadata.from_addr)
        return True

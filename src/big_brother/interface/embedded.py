"""Interface over a polled, bare-metal style network stack.

The stack driver itself (link layer, ARP, IP) lives outside this package
and is described by the :class:`NetworkStack` protocol.  The interface
adds the fixed-capacity UDP socket buffers such a stack exposes: sends are
queued into a transmit buffer and handed to the stack on :meth:`poll`, and
datagrams the stack has received are staged in a receive buffer until
:meth:`recv_udp` consumes them.
"""

from __future__ import annotations

import ipaddress
import logging
from collections import deque
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from big_brother.errors import ConfigurationError, InterfaceError

if TYPE_CHECKING:
    from big_brother.address import PhysicalAddress

logger = logging.getLogger(__name__)

SOCKET_STORAGE_SIZE = 512
SOCKET_METADATA_SIZE = 8


@runtime_checkable
class NetworkStack(Protocol):
    """Driver for an embedded IP stack with one bound UDP socket."""

    @property
    def ip_cidr(self) -> str:
        """The configured address in CIDR form, e.g. ``"192.168.1.20/24"``."""
        ...

    def poll(self, timestamp: int) -> None:
        """Service the device and protocol timers."""
        ...

    def transmit(self, data: bytes, destination: PhysicalAddress) -> bool:
        """Hand one datagram to the stack.

        Returns:
            ``False`` if the stack cannot accept it right now.
        """
        ...

    def receive(self) -> tuple[bytes, PhysicalAddress] | None:
        """Take the next datagram received on the socket, if any."""
        ...


class PacketBuffer:
    """Bounded FIFO of datagrams with fixed byte storage and slot count."""

    def __init__(
        self,
        capacity: int = SOCKET_STORAGE_SIZE,
        slots: int = SOCKET_METADATA_SIZE,
    ) -> None:
        if capacity <= 0 or slots <= 0:
            msg = f"Packet buffer needs positive capacity and slots, got {capacity}/{slots}"
            raise ConfigurationError(msg)
        self._capacity = capacity
        self._slots = slots
        self._packets: deque[tuple[PhysicalAddress, bytes]] = deque()
        self._used = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def used(self) -> int:
        """Bytes of storage currently occupied."""
        return self._used

    def __len__(self) -> int:
        return len(self._packets)

    def can_enqueue(self, size: int) -> bool:
        return len(self._packets) < self._slots and self._used + size <= self._capacity

    def enqueue(self, endpoint: PhysicalAddress, data: bytes | memoryview) -> None:
        """Append a datagram.

        :raises InterfaceError: If no slot or not enough storage is free.
        """
        size = len(data)
        if size > self._capacity:
            msg = f"Datagram of {size} bytes exceeds buffer capacity {self._capacity}"
            raise InterfaceError(msg)
        if not self.can_enqueue(size):
            msg = f"Packet buffer full ({len(self._packets)} packets, {self._used} bytes)"
            raise InterfaceError(msg)
        self._packets.append((endpoint, bytes(data)))
        self._used += size

    def peek(self) -> tuple[PhysicalAddress, bytes] | None:
        if not self._packets:
            return None
        return self._packets[0]

    def dequeue(self) -> tuple[PhysicalAddress, bytes] | None:
        if not self._packets:
            return None
        endpoint, data = self._packets.popleft()
        self._used -= len(data)
        return endpoint, data

    def clear(self) -> None:
        self._packets.clear()
        self._used = 0


class EmbeddedInterface:
    """:class:`~big_brother.interface.port.Interface` over a :class:`NetworkStack`.

    Args:
        stack: The stack driver.
        storage_size: Bytes of storage in each of the rx and tx buffers.
        metadata_slots: Datagram slots in each of the rx and tx buffers.
    """

    def __init__(
        self,
        stack: NetworkStack,
        *,
        storage_size: int = SOCKET_STORAGE_SIZE,
        metadata_slots: int = SOCKET_METADATA_SIZE,
    ) -> None:
        self._stack = stack
        try:
            network = ipaddress.IPv4Interface(stack.ip_cidr).network
        except ValueError as exc:
            msg = f"Invalid stack address {stack.ip_cidr!r}: {exc}"
            raise ConfigurationError(msg) from exc
        self._broadcast_ip = network.broadcast_address.packed
        self._rx = PacketBuffer(storage_size, metadata_slots)
        self._tx = PacketBuffer(storage_size, metadata_slots)
        self._rx_dropped = 0

    @property
    def stack(self) -> NetworkStack:
        return self._stack

    @property
    def rx_buffer(self) -> PacketBuffer:
        return self._rx

    @property
    def tx_buffer(self) -> PacketBuffer:
        return self._tx

    @property
    def rx_dropped(self) -> int:
        """Datagrams discarded because the receive buffer was full."""
        return self._rx_dropped

    def poll(self, timestamp: int) -> None:
        self._stack.poll(timestamp)

        while True:
            pending = self._tx.peek()
            if pending is None:
                break
            destination, data = pending
            if not self._stack.transmit(data, destination):
                break
            self._tx.dequeue()

        while True:
            received = self._stack.receive()
            if received is None:
                break
            data, source = received
            if not self._rx.can_enqueue(len(data)):
                self._rx_dropped += 1
                logger.debug("Receive buffer full, dropped %d bytes from %s", len(data), source)
                continue
            self._rx.enqueue(source, data)

    def send_udp(self, destination: PhysicalAddress, data: bytes | memoryview) -> None:
        """Queue *data* for transmission on the next :meth:`poll`.

        Raises:
            InterfaceError: If the transmit buffer is full.
        """
        self._tx.enqueue(destination, data)

    def recv_udp(self, buffer: bytearray | memoryview) -> tuple[int, PhysicalAddress] | None:
        """Pop the oldest received datagram into *buffer*.

        Raises:
            InterfaceError: If the datagram does not fit in *buffer*; it is
                discarded.
        """
        received = self._rx.dequeue()
        if received is None:
            return None
        source, data = received
        if len(data) > len(buffer):
            msg = f"Datagram of {len(data)} bytes from {source} truncated by {len(buffer)} byte buffer"
            raise InterfaceError(msg)
        buffer[: len(data)] = data
        return len(data), source

    def broadcast_ip(self) -> bytes:
        return self._broadcast_ip

"""Interface abstraction shared by every transport.

Defines the ``Interface`` protocol that hosted sockets, embedded network
stacks and the simulated network all satisfy, so the coordinator can
operate over any of them without coupling to a specific technology.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from big_brother.address import PhysicalAddress


@runtime_checkable
class Interface(Protocol):
    """Abstract UDP endpoint.

    All methods return immediately.  ``recv_udp`` returning ``None``
    means no datagram is currently available, which is distinct from an
    error (raised as :class:`~big_brother.errors.InterfaceError`).
    """

    def poll(self, timestamp: int) -> None:
        """Drive internal bookkeeping (stack timers, queue pumping).

        Args:
            timestamp: Caller-supplied monotonic time in milliseconds.
        """
        ...

    def send_udp(self, destination: PhysicalAddress, data: bytes | memoryview) -> None:
        """Attempt one best-effort transmission of *data* to *destination*."""
        ...

    def recv_udp(self, buffer: bytearray | memoryview) -> tuple[int, PhysicalAddress] | None:
        """Copy the next datagram into *buffer*.

        Returns:
            ``(length, source)`` or ``None`` if nothing is queued.
        """
        ...

    def broadcast_ip(self) -> bytes:
        """The 4-byte subnet broadcast address of this transport."""
        ...

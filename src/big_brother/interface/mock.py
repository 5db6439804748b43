"""Interface backed by a simulated network attachment."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from big_brother.address import PhysicalAddress
from big_brother.errors import InterfaceError
from big_brother.mock_topology import SimulatedPayload

if TYPE_CHECKING:
    from big_brother.mock_topology import SimulatedPhysicalInterface

logger = logging.getLogger(__name__)


class MockInterface:
    """One virtual UDP port on a :class:`SimulatedPhysicalInterface`.

    Several mock interfaces may share a physical attachment, each binding
    its own port, the same way chained processes share a host.

    :param physical: The simulated host to bind on.
    :param port: Port to bind; defaults to the next free port in the chain.
    """

    def __init__(self, physical: SimulatedPhysicalInterface, port: int | None = None) -> None:
        self._physical = physical
        self._address = physical.bind(port)
        logger.debug("MockInterface bound to %s", self._address)

    @property
    def physical(self) -> SimulatedPhysicalInterface:
        return self._physical

    @property
    def local_address(self) -> PhysicalAddress:
        return self._address

    def poll(self, timestamp: int) -> None:
        """No internal timers to service."""

    def send_udp(self, destination: PhysicalAddress, data: bytes | memoryview) -> None:
        """Send *data* over the simulated network.

        :raises InterfaceError: If the unicast destination is unreachable.
        """
        payload = SimulatedPayload(source=self._address, destination=destination, data=bytes(data))
        self._physical.send_udp(payload)

    def recv_udp(self, buffer: bytearray | memoryview) -> tuple[int, PhysicalAddress] | None:
        """Pop the next datagram queued for this port.

        :raises InterfaceError: If the datagram does not fit in *buffer*.
        """
        payload = self._physical.recv_udp(self._address.port)
        if payload is None:
            return None
        size = len(payload.data)
        if size > len(buffer):
            msg = f"Datagram of {size} bytes from {payload.source} truncated by {len(buffer)} byte buffer"
            raise InterfaceError(msg)
        buffer[:size] = payload.data
        return size, payload.source

    def broadcast_ip(self) -> bytes:
        return self._physical.broadcast_ip()

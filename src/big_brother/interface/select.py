"""Runtime switch between two interfaces."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from big_brother.errors import ConfigurationError

if TYPE_CHECKING:
    from big_brother.address import PhysicalAddress
    from big_brother.interface.port import Interface

logger = logging.getLogger(__name__)


class SelectableInterface:
    """Delegates every call to one of two inner interfaces.

    Lets a node built for the real network be rewired onto, for example, a
    simulator bridge without changing the coordinator.  Only the selected
    interface is polled; the other one is left untouched.
    """

    def __init__(self, iface0: Interface, iface1: Interface, selected: int = 0) -> None:
        self._interfaces = (iface0, iface1)
        self._selected = 0
        self.select(selected)

    @property
    def selected(self) -> int:
        return self._selected

    @property
    def current(self) -> Interface:
        return self._interfaces[self._selected]

    def select(self, index: int) -> None:
        """Switch to interface *index* (0 or 1).

        :raises ConfigurationError: If *index* is not 0 or 1.
        """
        if index not in (0, 1):
            msg = f"Invalid interface selected: {index}"
            raise ConfigurationError(msg)
        if index != self._selected:
            logger.info("Switching to interface %d", index)
        self._selected = index

    def poll(self, timestamp: int) -> None:
        self.current.poll(timestamp)

    def send_udp(self, destination: PhysicalAddress, data: bytes | memoryview) -> None:
        self.current.send_udp(destination, data)

    def recv_udp(self, buffer: bytearray | memoryview) -> tuple[int, PhysicalAddress] | None:
        return self.current.recv_udp(buffer)

    def broadcast_ip(self) -> bytes:
        return self.current.broadcast_ip()

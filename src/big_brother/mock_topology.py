"""Deterministic in-memory stand-in for a physical LAN.

A :class:`SimulatedNetwork` is one broadcast domain.  Nodes attach to it
through :class:`SimulatedPhysicalInterface` objects (one per simulated
host), each of which can bind several UDP ports, e.g. when more than one
process on a host chains onto consecutive ports.

All shared state lives in the network object, which serializes every
operation with a single lock.  Delivery is FIFO per bound port and
nothing is lost unless loss is explicitly injected, so multi-node test
runs are reproducible regardless of how many threads drive the nodes.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from collections import deque
from dataclasses import dataclass, field

from big_brother.address import LOCALHOST_IP, UDP_PORT, PhysicalAddress
from big_brother.errors import ConfigurationError, InterfaceError

logger = logging.getLogger(__name__)

LIMITED_BROADCAST_IP = b"\xff\xff\xff\xff"


@dataclass(frozen=True, slots=True)
class SimulatedPayload:
    """One datagram in flight on a simulated network."""

    source: PhysicalAddress
    destination: PhysicalAddress
    data: bytes


@dataclass(slots=True)
class _Attachment:
    ip: bytes
    queues: dict[int, deque[SimulatedPayload]] = field(default_factory=dict)


class SimulatedNetwork:
    """A shared broadcast domain for simulated nodes.

    Args:
        subnet: Network address of the subnet, e.g. ``"192.168.1.0"``.
        prefix_length: Subnet prefix length (``24`` for a /24).
        broadcast_ip: Broadcast address override.  Defaults to the
            subnet's directed broadcast address.
        loopback_broadcast: Whether a broadcast is also delivered back to
            the sending endpoint.
    """

    def __init__(
        self,
        subnet: str = "192.168.1.0",
        prefix_length: int = 24,
        broadcast_ip: str | None = None,
        *,
        loopback_broadcast: bool = True,
    ) -> None:
        try:
            self._subnet = ipaddress.IPv4Network(f"{subnet}/{prefix_length}")
            if broadcast_ip is None:
                self._broadcast_ip = self._subnet.broadcast_address.packed
            else:
                self._broadcast_ip = ipaddress.IPv4Address(broadcast_ip).packed
        except ValueError as exc:
            msg = f"Invalid simulated network {subnet}/{prefix_length}: {exc}"
            raise ConfigurationError(msg) from exc
        self._loopback_broadcast = loopback_broadcast
        self._lock = threading.Lock()
        self._attachments: list[_Attachment] = []
        self._by_ip: dict[bytes, int] = {}
        self._loss_budget = 0
        self._payload_log: list[SimulatedPayload] | None = None

    @property
    def subnet(self) -> ipaddress.IPv4Network:
        return self._subnet

    @property
    def loopback_broadcast(self) -> bool:
        return self._loopback_broadcast

    def broadcast_ip(self) -> bytes:
        """The 4-byte broadcast address of this network."""
        return self._broadcast_ip

    def attach(self, ip: str | None = None) -> SimulatedPhysicalInterface:
        """Attach a new simulated host.

        Args:
            ip: Explicit host address inside the subnet.  When omitted the
                lowest free host address is allocated.

        Raises:
            ConfigurationError: If *ip* lies outside the subnet, is the
                network or broadcast address, or is already taken, or if
                the subnet is exhausted.
        """
        with self._lock:
            if ip is None:
                packed = self._allocate_ip()
            else:
                packed = self._validate_ip(ip)
            attachment_id = len(self._attachments)
            self._attachments.append(_Attachment(ip=packed))
            self._by_ip[packed] = attachment_id
        host = PhysicalAddress.from_ip(packed).host
        logger.info("Attached simulated host %s to %s", host, self._subnet)
        return SimulatedPhysicalInterface(self, attachment_id, packed)

    def inject_loss(self, count: int = 1) -> None:
        """Silently drop the next *count* datagrams sent on this network."""
        if count < 0:
            msg = f"Loss count must be non-negative, got {count}"
            raise ValueError(msg)
        with self._lock:
            self._loss_budget += count

    def enable_payload_logging(self) -> None:
        """Start recording every datagram sent on this network."""
        with self._lock:
            if self._payload_log is None:
                self._payload_log = []

    def take_payload_log(self) -> list[SimulatedPayload]:
        """Return and clear the recorded datagrams."""
        with self._lock:
            if self._payload_log is None:
                return []
            log = self._payload_log
            self._payload_log = []
            return log

    # -- Operations used by SimulatedPhysicalInterface -----------------------

    def _bind(self, attachment_id: int, port: int | None) -> int:
        with self._lock:
            queues = self._attachments[attachment_id].queues
            if port is None:
                port = UDP_PORT
                while port in queues:
                    port += 1
            if port in queues:
                host = PhysicalAddress.from_ip(self._attachments[attachment_id].ip).host
                msg = f"Port {port} already bound on simulated host {host}"
                raise ConfigurationError(msg)
            queues[port] = deque()
            return port

    def _send(self, attachment_id: int, payload: SimulatedPayload) -> None:
        with self._lock:
            if self._payload_log is not None:
                self._payload_log.append(payload)
            if self._loss_budget > 0:
                self._loss_budget -= 1
                logger.debug("Dropped datagram %s -> %s (injected loss)",
                             payload.source, payload.destination)
                return

            dest_ip = payload.destination.ip
            if dest_ip in (self._broadcast_ip, LIMITED_BROADCAST_IP):
                self._deliver_broadcast(payload)
                return

            if dest_ip == LOCALHOST_IP:
                target = self._attachments[attachment_id]
            else:
                target_id = self._by_ip.get(dest_ip)
                if target_id is None:
                    msg = f"Destination {payload.destination} unreachable on {self._subnet}"
                    raise InterfaceError(msg)
                target = self._attachments[target_id]

            queue = target.queues.get(payload.destination.port)
            if queue is None:
                logger.debug("Dropped datagram to %s: port not bound", payload.destination)
                return
            queue.append(payload)

    def _deliver_broadcast(self, payload: SimulatedPayload) -> None:
        port = payload.destination.port
        for attachment in self._attachments:
            queue = attachment.queues.get(port)
            if queue is None:
                continue
            is_sender = attachment.ip == payload.source.ip and port == payload.source.port
            if is_sender and not self._loopback_broadcast:
                continue
            queue.append(payload)

    def _pop(self, attachment_id: int, port: int) -> SimulatedPayload | None:
        with self._lock:
            queue = self._attachments[attachment_id].queues.get(port)
            if not queue:
                return None
            return queue.popleft()

    def _pending(self, attachment_id: int, port: int) -> int:
        with self._lock:
            queue = self._attachments[attachment_id].queues.get(port)
            return len(queue) if queue is not None else 0

    # -- Address management (lock held) --------------------------------------

    def _allocate_ip(self) -> bytes:
        for host in self._subnet.hosts():
            packed = host.packed
            if packed not in self._by_ip and packed != self._broadcast_ip:
                return packed
        msg = f"No free host address left in {self._subnet}"
        raise ConfigurationError(msg)

    def _validate_ip(self, ip: str) -> bytes:
        try:
            address = ipaddress.IPv4Address(ip)
        except ValueError as exc:
            msg = f"Invalid simulated host address {ip!r}"
            raise ConfigurationError(msg) from exc
        if address not in self._subnet:
            msg = f"{ip} is outside simulated subnet {self._subnet}"
            raise ConfigurationError(msg)
        if address in (self._subnet.network_address, self._subnet.broadcast_address):
            msg = f"{ip} is not a usable host address in {self._subnet}"
            raise ConfigurationError(msg)
        if address.packed in self._by_ip:
            msg = f"{ip} is already attached to {self._subnet}"
            raise ConfigurationError(msg)
        return address.packed


class SimulatedPhysicalInterface:
    """A simulated host's attachment point on a :class:`SimulatedNetwork`.

    Created by :meth:`SimulatedNetwork.attach`; holds a reference to the
    network, so the network lives as long as any attachment does.
    """

    def __init__(self, network: SimulatedNetwork, attachment_id: int, host_ip: bytes) -> None:
        self._network = network
        self._attachment_id = attachment_id
        self._host_ip = host_ip
        self._bound_ports: list[int] = []

    @property
    def network(self) -> SimulatedNetwork:
        return self._network

    @property
    def attachment_id(self) -> int:
        return self._attachment_id

    @property
    def host_ip(self) -> bytes:
        """The 4-byte address of this simulated host."""
        return self._host_ip

    @property
    def bound_ports(self) -> tuple[int, ...]:
        return tuple(self._bound_ports)

    def bind(self, port: int | None = None) -> PhysicalAddress:
        """Bind a UDP port on this host.

        Args:
            port: Port to bind.  Defaults to the next port in the chain
                starting at :data:`~big_brother.address.UDP_PORT`.

        Returns:
            The bound endpoint.

        Raises:
            ConfigurationError: If the port is already bound.
        """
        bound = self._network._bind(self._attachment_id, port)
        self._bound_ports.append(bound)
        return PhysicalAddress.from_ip(self._host_ip, bound)

    def send_udp(self, payload: SimulatedPayload) -> None:
        """Hand *payload* to the network for delivery.

        Raises:
            InterfaceError: If the unicast destination is not attached.
        """
        self._network._send(self._attachment_id, payload)

    def recv_udp(self, port: int) -> SimulatedPayload | None:
        """Pop the oldest datagram queued for *port*."""
        return self._network._pop(self._attachment_id, port)

    def pending(self, port: int) -> int:
        """Number of datagrams queued for *port*."""
        return self._network._pending(self._attachment_id, port)

    def broadcast_ip(self) -> bytes:
        return self._network.broadcast_ip()

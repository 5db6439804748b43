"""Hosted-OS UDP interfaces built on plain non-blocking sockets."""

from __future__ import annotations

import ipaddress
import logging
import socket
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from big_brother.address import LOCALHOST_IP, UDP_PORT, PhysicalAddress
from big_brother.errors import ConfigurationError, InterfaceError

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

# Number of consecutive ports tried, starting at UDP_PORT, so that several
# processes on one host can share the network.
MAX_CHAIN_LENGTH = 5

LOCALHOST = "127.0.0.1"


def _resolve_local_ip() -> str:
    """Resolve the local machine's IP address.

    Uses a UDP connect to a non-routed address to determine the outgoing
    interface IP.  Falls back to ``127.0.0.1`` if resolution fails.
    No actual traffic is sent.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            ip: str = s.getsockname()[0]
            return ip
    except OSError:
        return LOCALHOST


def _derive_broadcast_ip(host: str, prefix_length: int) -> bytes:
    try:
        network = ipaddress.IPv4Network(f"{host}/{prefix_length}", strict=False)
    except ValueError as exc:
        msg = f"Cannot derive broadcast address from {host}/{prefix_length}: {exc}"
        raise ConfigurationError(msg) from exc
    return network.broadcast_address.packed


class _SocketInterface(ABC):
    """Shared socket handling for the hosted interfaces."""

    def __init__(self) -> None:
        self._sock: socket.socket | None = None
        self._local_address: PhysicalAddress | None = None

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    @property
    def local_address(self) -> PhysicalAddress:
        """The bound endpoint (available once open)."""
        if self._local_address is None:
            msg = "Interface not open"
            raise RuntimeError(msg)
        return self._local_address

    @abstractmethod
    def open(self) -> None:
        """Bind the socket; a no-op if already open."""

    def close(self) -> None:
        """Close the socket.  Safe to call more than once."""
        if self._sock is None:
            return
        self._sock.close()
        self._sock = None
        logger.info("%s closed (%s)", type(self).__name__, self._local_address)

    def __enter__(self) -> _SocketInterface:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def poll(self, timestamp: int) -> None:
        """Nothing to service; the OS stack runs independently."""

    def _require_socket(self) -> socket.socket:
        if self._sock is None:
            msg = "Interface not open"
            raise RuntimeError(msg)
        return self._sock

    def _sendto(self, data: bytes | memoryview, host: str, port: int) -> None:
        sock = self._require_socket()
        try:
            sock.sendto(data, (host, port))
        except OSError as exc:
            msg = f"Send to {host}:{port} failed: {exc}"
            raise InterfaceError(msg) from exc

    def _recvfrom(self, buffer: bytearray | memoryview) -> tuple[int, tuple[str, int]] | None:
        sock = self._require_socket()
        try:
            return sock.recvfrom_into(buffer)
        except BlockingIOError:
            return None
        except OSError as exc:
            msg = f"Receive failed: {exc}"
            raise InterfaceError(msg) from exc


def _bind_socket(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.bind((host, port))
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


class HostedInterface(_SocketInterface):
    """UDP interface over an operating-system socket.

    The socket binds ``UDP_PORT`` on *interface*; if the port is already
    in use the next port is tried, up to :data:`MAX_CHAIN_LENGTH`
    attempts.  A node bound to a chained port still receives unicast
    traffic sent to it directly, but not broadcasts on ``UDP_PORT``.

    The host's real netmask is not queried.  Without an explicit
    *broadcast_ip* the broadcast address is computed from the bound (or
    resolved) local IP and *prefix_length*, which assumes a ``/24``
    unless told otherwise; pass *broadcast_ip* or the correct
    *prefix_length* on any other subnet.
    """

    def __init__(
        self,
        interface: str = "0.0.0.0",
        port: int = UDP_PORT,
        broadcast_ip: str | None = None,
        *,
        prefix_length: int = 24,
        chain_length: int = MAX_CHAIN_LENGTH,
    ) -> None:
        """Initialize the hosted interface.

        :param interface: Local IP address to bind. ``"0.0.0.0"`` binds all
            interfaces.
        :param port: First UDP port to try.  ``0`` lets the OS pick one and
            disables chaining.
        :param broadcast_ip: Directed broadcast address for this subnet.
            When omitted it is derived from the local IP and *prefix_length*.
        :param prefix_length: Subnet prefix length used to derive the
            broadcast address.  Assumed, not read from the OS.
        :param chain_length: Number of consecutive ports to try.
        :raises ConfigurationError: If *chain_length* is not positive or the
            broadcast address is invalid.
        """
        super().__init__()
        if chain_length < 1:
            msg = f"Chain length must be at least 1, got {chain_length}"
            raise ConfigurationError(msg)
        self._interface = interface
        self._port = port
        self._chain_length = chain_length
        self._prefix_length = prefix_length
        self._chained = False
        if broadcast_ip is None:
            self._broadcast_ip: bytes | None = None
        else:
            try:
                self._broadcast_ip = ipaddress.IPv4Address(broadcast_ip).packed
            except ValueError as exc:
                msg = f"Invalid broadcast address {broadcast_ip!r}"
                raise ConfigurationError(msg) from exc

    @property
    def chained(self) -> bool:
        """True if the socket is bound to a port past the first one tried."""
        return self._chained

    def open(self) -> None:
        """Bind the socket.

        :raises InterfaceError: If no port in the chain could be bound.
        """
        if self._sock is not None:
            return
        attempts = 1 if self._port == 0 else self._chain_length
        last_error: OSError | None = None
        for attempt in range(attempts):
            port = self._port + attempt if self._port else 0
            try:
                self._sock = _bind_socket(self._interface, port)
            except OSError as exc:
                logger.debug("Port %d unavailable: %s", port, exc)
                last_error = exc
                continue
            self._chained = attempt > 0
            break
        else:
            msg = f"Could not bind {self._interface} on ports {self._port}-{self._port + attempts - 1}"
            raise InterfaceError(msg) from last_error

        host, bound_port = self._sock.getsockname()
        if host == "0.0.0.0":
            host = _resolve_local_ip()
        self._local_address = PhysicalAddress(host=host, port=bound_port)
        if self._broadcast_ip is None:
            self._broadcast_ip = _derive_broadcast_ip(host, self._prefix_length)
        if self._chained:
            logger.info("HostedInterface chained onto port %d", bound_port)
        logger.info("HostedInterface bound to %s:%d", host, bound_port)

    def send_udp(self, destination: PhysicalAddress, data: bytes | memoryview) -> None:
        """Send *data* to *destination*.

        :raises RuntimeError: If the interface is not open.
        :raises InterfaceError: If the OS rejects the datagram.
        """
        self._sendto(data, destination.host, destination.port)

    def recv_udp(self, buffer: bytearray | memoryview) -> tuple[int, PhysicalAddress] | None:
        """Receive one datagram into *buffer* if one is waiting.

        Datagrams longer than *buffer* are truncated by the OS.
        """
        result = self._recvfrom(buffer)
        if result is None:
            return None
        size, (host, port) = result
        return size, PhysicalAddress(host=host, port=port)

    def broadcast_ip(self) -> bytes:
        if self._broadcast_ip is None:
            msg = "Interface not open"
            raise RuntimeError(msg)
        return self._broadcast_ip


class BridgeInterface(_SocketInterface):
    """Localhost-only interface that relays everything to one fixed port.

    Used to connect a simulator process to a node running on the same
    machine: every datagram, unicast or broadcast, goes to
    ``127.0.0.1:target_port`` and the broadcast address is loopback.
    """

    def __init__(self, bind_port: int, target_port: int) -> None:
        super().__init__()
        self._bind_port = bind_port
        self._target_port = target_port

    @property
    def target_port(self) -> int:
        return self._target_port

    def open(self) -> None:
        """Bind the loopback socket.

        :raises InterfaceError: If the port cannot be bound.
        """
        if self._sock is not None:
            return
        try:
            self._sock = _bind_socket(LOCALHOST, self._bind_port)
        except OSError as exc:
            msg = f"Could not bind {LOCALHOST}:{self._bind_port}: {exc}"
            raise InterfaceError(msg) from exc
        port = self._sock.getsockname()[1]
        self._local_address = PhysicalAddress(host=LOCALHOST, port=port)
        logger.info("BridgeInterface bound to %s:%d -> port %d", LOCALHOST, port, self._target_port)

    def send_udp(self, destination: PhysicalAddress, data: bytes | memoryview) -> None:
        self._sendto(data, LOCALHOST, self._target_port)

    def recv_udp(self, buffer: bytearray | memoryview) -> tuple[int, PhysicalAddress] | None:
        result = self._recvfrom(buffer)
        if result is None:
            return None
        size, (_, port) = result
        return size, PhysicalAddress(host=LOCALHOST, port=port)

    def broadcast_ip(self) -> bytes:
        return LOCALHOST_IP

"""Logical (role-based) and physical (IPv4 + UDP port) addressing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

# Well-known UDP port every node listens on
UDP_PORT = 25560

LOGICAL_ADDRESS_LENGTH = 2  # role(1) + instance(1)
PHYSICAL_ADDRESS_LENGTH = 6  # 4-byte IP + 2-byte port


class Role(IntEnum):
    """Node roles on the avionics network. Values are the wire encoding."""

    BROADCAST = 0
    ENGINE_CONTROLLER = 1
    FLIGHT_CONTROLLER = 2
    MISSION_CONTROL = 3
    MISSION_CONTROL_SIM_BRIDGE = 4
    ETHBOOT_PROGRAMMER = 5
    CAMERA = 6
    UNKNOWN = 255


# Roles that may have more than one node on the network
INSTANCED_ROLES = frozenset({Role.ENGINE_CONTROLLER, Role.CAMERA})


@dataclass(frozen=True, slots=True, order=True)
class LogicalAddress:
    """Role-based identifier of a node, independent of its current IP.

    Instanced roles (engine controllers, cameras) carry an instance id in
    the range 0-255; every other role must leave *instance* as ``None``.
    """

    role: Role
    instance: int | None = None

    def __post_init__(self) -> None:
        if self.role in INSTANCED_ROLES:
            if self.instance is None or not 0 <= self.instance <= 255:
                msg = f"{self.role.name} requires an instance id 0-255, got {self.instance}"
                raise ValueError(msg)
        elif self.instance is not None:
            msg = f"{self.role.name} does not take an instance id"
            raise ValueError(msg)

    @classmethod
    def engine_controller(cls, instance: int) -> LogicalAddress:
        return cls(Role.ENGINE_CONTROLLER, instance)

    @classmethod
    def camera(cls, instance: int) -> LogicalAddress:
        return cls(Role.CAMERA, instance)

    @property
    def is_broadcast(self) -> bool:
        """True if this addresses every node."""
        return self.role == Role.BROADCAST

    def encode(self) -> bytes:
        """Encode to 2-byte wire format."""
        return bytes((self.role, self.instance or 0))

    @classmethod
    def decode(cls, data: bytes | memoryview) -> LogicalAddress:
        """Decode from 2-byte wire format.

        :raises ValueError: If the role byte is unknown or the instance byte
            is inconsistent with the role.
        """
        if len(data) < LOGICAL_ADDRESS_LENGTH:
            msg = f"Logical address too short: {len(data)} bytes"
            raise ValueError(msg)
        role = Role(data[0])
        if role in INSTANCED_ROLES:
            return cls(role, data[1])
        if data[1] != 0:
            msg = f"{role.name} carries unexpected instance byte {data[1]}"
            raise ValueError(msg)
        return cls(role)

    def __str__(self) -> str:
        name = self.role.name.lower()
        if self.instance is None:
            return name
        return f"{name}:{self.instance}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-friendly dict."""
        result: dict[str, Any] = {"role": self.role.name.lower()}
        if self.instance is not None:
            result["instance"] = self.instance
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LogicalAddress:
        """Reconstruct from JSON-friendly dict."""
        return cls(Role[data["role"].upper()], data.get("instance"))


BROADCAST = LogicalAddress(Role.BROADCAST)
FLIGHT_CONTROLLER = LogicalAddress(Role.FLIGHT_CONTROLLER)
MISSION_CONTROL = LogicalAddress(Role.MISSION_CONTROL)
MISSION_CONTROL_SIM_BRIDGE = LogicalAddress(Role.MISSION_CONTROL_SIM_BRIDGE)
ETHBOOT_PROGRAMMER = LogicalAddress(Role.ETHBOOT_PROGRAMMER)

_LOGICAL_RE = re.compile(r"^([a-z_]+)(?::(\d+))?$")


def parse_logical_address(addr: str | LogicalAddress) -> LogicalAddress:
    """Parse a human-readable logical address.

    Accepted formats::

        "flight_controller"
        "engine_controller:0"
        "camera:3"
        "broadcast"

    If already a ``LogicalAddress``, returns it unchanged.

    :raises ValueError: If the format or role is not recognised.
    """
    if isinstance(addr, LogicalAddress):
        return addr

    m = _LOGICAL_RE.match(addr.strip().lower())
    if not m:
        msg = f"Cannot parse logical address: {addr!r}"
        raise ValueError(msg)
    role_name, instance_str = m.groups()
    try:
        role = Role[role_name.upper()]
    except KeyError:
        msg = f"Unknown role: {role_name!r}"
        raise ValueError(msg) from None
    instance = int(instance_str) if instance_str is not None else None
    return LogicalAddress(role, instance)


@dataclass(frozen=True, slots=True)
class PhysicalAddress:
    """Transport-level endpoint: IPv4 host + UDP port."""

    host: str
    port: int = UDP_PORT

    @classmethod
    def from_ip(cls, ip: bytes | tuple[int, ...], port: int = UDP_PORT) -> PhysicalAddress:
        """Build from a 4-byte IP address."""
        return cls(host=f"{ip[0]}.{ip[1]}.{ip[2]}.{ip[3]}", port=port)

    @property
    def ip(self) -> bytes:
        """The 4-byte IP address."""
        return bytes(int(x) for x in self.host.split("."))

    def encode(self) -> bytes:
        """Encode to 6-byte wire format."""
        return self.ip + self.port.to_bytes(2, "big")

    @classmethod
    def decode(cls, data: bytes | memoryview) -> PhysicalAddress:
        """Decode from 6-byte wire format."""
        port = int.from_bytes(data[4:6], "big")
        return cls.from_ip(data[0:4], port)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-friendly dict."""
        return {"host": self.host, "port": self.port}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PhysicalAddress:
        """Reconstruct from JSON-friendly dict."""
        return cls(host=data["host"], port=data["port"])


LOCALHOST_IP = b"\x7f\x00\x00\x01"

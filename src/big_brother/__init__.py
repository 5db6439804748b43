"""big-brother: endpoint addressing and discovery for a UDP avionics network.

Typical usage::

    from big_brother import BigBrother, BigBrotherConfig, MISSION_CONTROL
    from big_brother.interface import HostedInterface

    with HostedInterface() as iface:
        bb = BigBrother(BigBrotherConfig(host_address=MISSION_CONTROL), iface, codec)
        packets = bb.poll(now_ms)
"""

__version__ = "0.1.0"

from big_brother.address import (
    BROADCAST,
    ETHBOOT_PROGRAMMER,
    FLIGHT_CONTROLLER,
    MISSION_CONTROL,
    MISSION_CONTROL_SIM_BRIDGE,
    UDP_PORT,
    LogicalAddress,
    PhysicalAddress,
    Role,
    parse_logical_address,
)
from big_brother.big_brother import BigBrother, BigBrotherConfig, BigBrotherStats, ReceivedPacket
from big_brother.errors import (
    BigBrotherError,
    BufferTooSmallError,
    ConfigurationError,
    DecodeError,
    EncodeError,
    InterfaceError,
    MalformedPacketError,
    NetworkMapFullError,
    NoRouteError,
)
from big_brother.network_map import NetworkMap, NetworkMapEntry
from big_brother.serdes import Heartbeat, PacketCodec
from big_brother.serialization import serialize

__all__ = [
    "BROADCAST",
    "ETHBOOT_PROGRAMMER",
    "FLIGHT_CONTROLLER",
    "MISSION_CONTROL",
    "MISSION_CONTROL_SIM_BRIDGE",
    "UDP_PORT",
    "BigBrother",
    "BigBrotherConfig",
    "BigBrotherError",
    "BigBrotherStats",
    "BufferTooSmallError",
    "ConfigurationError",
    "DecodeError",
    "EncodeError",
    "Heartbeat",
    "InterfaceError",
    "LogicalAddress",
    "MalformedPacketError",
    "NetworkMap",
    "NetworkMapEntry",
    "NetworkMapFullError",
    "NoRouteError",
    "PacketCodec",
    "PhysicalAddress",
    "ReceivedPacket",
    "Role",
    "__version__",
    "parse_logical_address",
    "serialize",
]

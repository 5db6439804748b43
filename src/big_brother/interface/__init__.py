"""Transports unified behind the :class:`Interface` protocol.

This package provides:

- :class:`Interface`: the protocol every transport satisfies.
- :class:`HostedInterface` / :class:`BridgeInterface`: OS UDP sockets.
- :class:`EmbeddedInterface`: a polled bare-metal network stack.
- :class:`MockInterface`: a port on a simulated network.
- :class:`SelectableInterface`: runtime switch between two interfaces.
"""

from __future__ import annotations

from big_brother.interface.embedded import EmbeddedInterface, NetworkStack, PacketBuffer
from big_brother.interface.hosted import MAX_CHAIN_LENGTH, BridgeInterface, HostedInterface
from big_brother.interface.mock import MockInterface
from big_brother.interface.port import Interface
from big_brother.interface.select import SelectableInterface

__all__ = [
    "MAX_CHAIN_LENGTH",
    "BridgeInterface",
    "EmbeddedInterface",
    "HostedInterface",
    "Interface",
    "MockInterface",
    "NetworkStack",
    "PacketBuffer",
    "SelectableInterface",
]

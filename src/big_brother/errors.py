"""Exception types raised by the big-brother communication layer."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from big_brother.address import LogicalAddress


class BigBrotherError(Exception):
    """Base exception for all big-brother errors."""


class EncodeError(BigBrotherError):
    """A packet could not be encoded (unsupported shape or bad field value)."""


class BufferTooSmallError(EncodeError):
    """The destination buffer cannot hold the encoded form."""

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(f"Buffer too small: need {required} bytes, have {available}")


class DecodeError(BigBrotherError):
    """A datagram could not be decoded."""


class MalformedPacketError(DecodeError):
    """Unrecognized tag, truncated payload, or length inconsistent with the tag."""


class InterfaceError(BigBrotherError):
    """Transport-level failure (socket error, stack error, unreachable destination)."""


class NoRouteError(BigBrotherError):
    """A unicast destination has not been observed yet, or its entry is stale."""

    def __init__(self, destination: LogicalAddress) -> None:
        self.destination = destination
        super().__init__(f"No route to {destination}")


class NetworkMapFullError(BigBrotherError):
    """The network map has no free slot for a newly observed address."""


class ConfigurationError(BigBrotherError):
    """Unrecoverable setup mistake, e.g. selecting a non-existent interface."""

"""Wire codec: tagged application packets and the datagram envelope.

Datagram layout::

    +---------+------+------+---------+------+---------------------+
    | Version | From | To   | Counter | Kind | Body                |
    | (1)     | (2)  | (2)  | (4)     | (1)  | tag(1) + fields ... |
    +---------+------+------+---------+------+---------------------+

*Kind* selects between meta packets (announcements, handled by the
coordinator itself) and user packets (encoded by a :class:`PacketCodec`
the application populates with its own packet types).  Every body starts
with a one-byte tag followed by fixed-size fields, so a datagram decodes
without external context.
"""

from __future__ import annotations

import dataclasses
import re
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Any, TypeVar

from big_brother.address import LOGICAL_ADDRESS_LENGTH, LogicalAddress
from big_brother.errors import BufferTooSmallError, EncodeError, MalformedPacketError

if TYPE_CHECKING:
    from collections.abc import Callable

ENVELOPE_VERSION = 0x01
ENVELOPE_LENGTH = 10  # Version(1) + From(2) + To(2) + Counter(4) + Kind(1)
WORKING_BUFFER_SIZE = 256
COUNTER_MASK = 0xFFFFFFFF

_COUNTER = struct.Struct("!I")
_FORMAT_ITEM = re.compile(r"(\d*)([A-Za-z?])")

T = TypeVar("T")


class PacketKind(IntEnum):
    """Body discriminant carried in the envelope."""

    META = 0
    USER = 1


@dataclass(frozen=True, slots=True)
class PacketMetadata:
    """Decoded envelope of a datagram."""

    from_addr: LogicalAddress
    to_addr: LogicalAddress
    counter: int
    kind: PacketKind


@dataclass(frozen=True, slots=True)
class _PacketShape:
    tag: int
    cls: type
    layout: struct.Struct
    field_names: tuple[str, ...]
    byte_fields: tuple[tuple[int, str, int], ...]
    """(field index, format code, width) of each ``s``/``p`` field."""


class PacketCodec:
    """Registry-driven codec for fixed-shape packets.

    Packet types are dataclasses registered with a tag byte and a
    :mod:`struct` format describing their fields in declaration order::

        codec = PacketCodec()

        @codec.register(0x10, "!I?")
        @dataclass(frozen=True)
        class EnableLogging:
            session: int
            enabled: bool

    Only fixed-size formats are supported; a tag therefore implies an
    exact encoded length, which :meth:`decode` enforces.  A ``bytes`` field
    declared as ``Ns`` must hold exactly *N* bytes when encoded.
    """

    def __init__(self) -> None:
        self._by_tag: dict[int, _PacketShape] = {}
        self._by_class: dict[type, _PacketShape] = {}

    def register(self, tag: int, fmt: str = "") -> Callable[[type[T]], type[T]]:
        """Class decorator binding a dataclass to *tag* and field format *fmt*.

        :raises ValueError: If *tag* is not a byte, already registered, or
            the format does not match the number of dataclass fields.
        :raises TypeError: If the decorated class is not a dataclass.
        """
        if not 0 <= tag <= 0xFF:
            msg = f"Packet tag must be 0-255, got {tag}"
            raise ValueError(msg)
        if tag in self._by_tag:
            msg = f"Packet tag {tag:#04x} already registered to {self._by_tag[tag].cls.__name__}"
            raise ValueError(msg)
        layout = struct.Struct(fmt if fmt[:1] in ("!", ">", "<", "=", "@") else "!" + fmt)

        def decorator(cls: type[T]) -> type[T]:
            if not dataclasses.is_dataclass(cls):
                msg = f"{cls.__name__} must be a dataclass"
                raise TypeError(msg)
            if cls in self._by_class:
                msg = f"{cls.__name__} already registered"
                raise ValueError(msg)
            names = tuple(f.name for f in dataclasses.fields(cls))
            # Round-trip a zeroed record to check the format covers every field
            if len(layout.unpack(bytes(layout.size))) != len(names):
                msg = f"Format {fmt!r} does not match the {len(names)} fields of {cls.__name__}"
                raise ValueError(msg)
            shape = _PacketShape(
                tag=tag,
                cls=cls,
                layout=layout,
                field_names=names,
                byte_fields=_byte_fields(layout.format),
            )
            self._by_tag[tag] = shape
            self._by_class[cls] = shape
            return cls

        return decorator

    def encoded_size(self, packet: Any) -> int:
        """Return the encoded length of *packet* including its tag."""
        return 1 + self._shape_for(packet).layout.size

    def encode(self, packet: Any, buffer: bytearray | memoryview, offset: int = 0) -> int:
        """Encode *packet* into *buffer* starting at *offset*.

        :returns: Number of bytes written.
        :raises EncodeError: If the packet type is not registered or a field
            value does not fit its format.
        :raises BufferTooSmallError: If *buffer* cannot hold the encoded form.
        """
        shape = self._shape_for(packet)
        size = 1 + shape.layout.size
        available = len(buffer) - offset
        if size > available:
            raise BufferTooSmallError(size, max(available, 0))
        values = [getattr(packet, name) for name in shape.field_names]
        for index, code, width in shape.byte_fields:
            _check_byte_field(packet, shape.field_names[index], values[index], code, width)
        try:
            shape.layout.pack_into(buffer, offset + 1, *values)
        except struct.error as exc:
            msg = f"Cannot encode {type(packet).__name__}: {exc}"
            raise EncodeError(msg) from exc
        buffer[offset] = shape.tag
        return size

    def decode(self, data: bytes | memoryview) -> Any:
        """Decode one tagged packet occupying all of *data*.

        :raises MalformedPacketError: If *data* is empty, the tag is not
            registered, or the length does not match the tag's shape.
        """
        if len(data) == 0:
            msg = "Packet data is empty"
            raise MalformedPacketError(msg)
        shape = self._by_tag.get(data[0])
        if shape is None:
            msg = f"Unrecognized packet tag: {data[0]:#04x}"
            raise MalformedPacketError(msg)
        expected = 1 + shape.layout.size
        if len(data) != expected:
            msg = f"{shape.cls.__name__} expects {expected} bytes, got {len(data)}"
            raise MalformedPacketError(msg)
        values = shape.layout.unpack_from(data, 1)
        try:
            return shape.cls(*values)
        except (TypeError, ValueError) as exc:
            msg = f"Invalid {shape.cls.__name__} field values: {exc}"
            raise MalformedPacketError(msg) from exc

    def is_registered(self, packet_type: type) -> bool:
        return packet_type in self._by_class

    def _shape_for(self, packet: Any) -> _PacketShape:
        shape = self._by_class.get(type(packet))
        if shape is None:
            msg = f"Unsupported packet type: {type(packet).__name__}"
            raise EncodeError(msg)
        return shape


def _byte_fields(fmt: str) -> tuple[tuple[int, str, int], ...]:
    """Locate the ``s``/``p`` fields of a struct format and their widths."""
    fields: list[tuple[int, str, int]] = []
    index = 0
    for count, code in _FORMAT_ITEM.findall(fmt):
        if code == "x":
            continue
        if code in ("s", "p"):
            fields.append((index, code, int(count) if count else 1))
            index += 1
        else:
            index += int(count) if count else 1
    return tuple(fields)


def _check_byte_field(packet: Any, name: str, value: Any, code: str, width: int) -> None:
    # struct pads short values and truncates long ones without complaint
    if not isinstance(value, (bytes, bytearray, memoryview)):
        return
    size = len(value)
    if code == "s" and size != width:
        msg = f"Cannot encode {type(packet).__name__}: field {name!r} must be {width} bytes, got {size}"
        raise EncodeError(msg)
    if code == "p" and size > min(width - 1, 255):
        msg = (
            f"Cannot encode {type(packet).__name__}: field {name!r} holds at most "
            f"{min(width - 1, 255)} bytes, got {size}"
        )
        raise EncodeError(msg)


# ---------------------------------------------------------------------------
# Meta packets
# ---------------------------------------------------------------------------

META_CODEC = PacketCodec()


@META_CODEC.register(0x00, "!I")
@dataclass(frozen=True, slots=True)
class Heartbeat:
    """Periodic announcement; *session_id* changes whenever a node restarts."""

    session_id: int


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def encode_datagram(
    packet: Any,
    from_addr: LogicalAddress,
    to_addr: LogicalAddress,
    counter: int,
    buffer: bytearray | memoryview,
    codec: PacketCodec,
) -> int:
    """Encode envelope + body into *buffer*.

    Meta packets (see :data:`META_CODEC`) are recognised by type; anything
    else is encoded with *codec* as a user packet.

    :returns: Total datagram length.
    :raises EncodeError: If the packet cannot be encoded.
    :raises BufferTooSmallError: If *buffer* cannot hold the datagram.
    """
    if ENVELOPE_LENGTH > len(buffer):
        raise BufferTooSmallError(ENVELOPE_LENGTH, len(buffer))
    if META_CODEC.is_registered(type(packet)):
        kind = PacketKind.META
        body_codec = META_CODEC
    else:
        kind = PacketKind.USER
        body_codec = codec
    body_size = body_codec.encode(packet, buffer, ENVELOPE_LENGTH)
    buffer[0] = ENVELOPE_VERSION
    buffer[1:3] = from_addr.encode()
    buffer[3:5] = to_addr.encode()
    _COUNTER.pack_into(buffer, 5, counter & COUNTER_MASK)
    buffer[9] = kind
    return ENVELOPE_LENGTH + body_size


def decode_metadata(data: bytes | memoryview) -> PacketMetadata:
    """Decode the envelope at the start of *data*.

    :raises MalformedPacketError: If the envelope is truncated, has an
        unknown version or kind, or carries invalid addresses.
    """
    if len(data) < ENVELOPE_LENGTH:
        msg = f"Datagram too short: need at least {ENVELOPE_LENGTH} bytes, got {len(data)}"
        raise MalformedPacketError(msg)
    if data[0] != ENVELOPE_VERSION:
        msg = f"Unsupported envelope version: {data[0]:#04x}"
        raise MalformedPacketError(msg)
    try:
        from_addr = LogicalAddress.decode(data[1 : 1 + LOGICAL_ADDRESS_LENGTH])
        to_addr = LogicalAddress.decode(data[3 : 3 + LOGICAL_ADDRESS_LENGTH])
        kind = PacketKind(data[9])
    except ValueError as exc:
        msg = f"Invalid envelope: {exc}"
        raise MalformedPacketError(msg) from exc
    (counter,) = _COUNTER.unpack_from(data, 5)
    return PacketMetadata(from_addr=from_addr, to_addr=to_addr, counter=counter, kind=kind)


def decode_body(
    data: bytes | memoryview,
    metadata: PacketMetadata,
    codec: PacketCodec,
) -> Any:
    """Decode the body following the envelope.

    :raises MalformedPacketError: If the body does not decode.
    """
    body = data[ENVELOPE_LENGTH:]
    if metadata.kind == PacketKind.META:
        return META_CODEC.decode(body)
    return codec.decode(body)

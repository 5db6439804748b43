"""JSON export of diagnostics: network maps, coordinator snapshots, packet logs."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

import orjson

__all__ = ["serialize"]

logger = logging.getLogger(__name__)

# Dataclasses go through _default so that a to_dict() takes precedence
_OPTIONS = orjson.OPT_PASSTHROUGH_DATACLASS


def _default(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        # Application packets; nested values come back through here
        return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    if isinstance(obj, bytes):
        return obj.hex()
    msg = f"Cannot serialize {type(obj).__name__}"
    logger.warning("serialize failed: %s", msg)
    raise TypeError(msg)


def serialize(obj: Any, *, pretty: bool = False) -> bytes:
    """Encode a diagnostic object as JSON.

    Accepts anything with a ``to_dict()`` (:class:`~big_brother.network_map.NetworkMap`,
    :class:`~big_brother.big_brother.BigBrother`,
    :class:`~big_brother.big_brother.ReceivedPacket`), application packet
    dataclasses, and lists or dicts of those.  ``bytes`` fields become hex.

    :param pretty: Indent output with 2 spaces.
    :raises TypeError: If *obj* contains a value with no JSON form.
    """
    options = _OPTIONS | orjson.OPT_INDENT_2 if pretty else _OPTIONS
    return orjson.dumps(obj, default=_default, option=options)

"""Shared validation helpers for user-provided inputs."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional, Union

from .bt_le.keymap import MODIFIER_NAMES

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on", "down", "pressed"}
_FALSE = {"0", "false", "no", "off", "up", "", "released"}


def _ctx(context: str) -> str:
    return f" ({context})" if context else ""


def parse_int(
    value: object,
    *,
    default: int = 0,
    log: logging.Logger = logger,
    context: str = "",
) -> int:
    """Parse a permissive integer; range handling is left to the encoder."""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    try:
        if isinstance(value, str):
            return int(value.strip(), 0)
        return int(value)
    except (TypeError, ValueError, OverflowError):
        log.warning("Invalid int value%s: %r (using default=%s)", _ctx(context), value, default)
        return default


def parse_bool(
    value: object,
    *,
    default: bool = False,
    log: logging.Logger = logger,
    context: str = "",
) -> bool:
    """Parse a permissive boolean (bool, 0/1, or common words)."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        v = value.strip().lower()
        if v in _TRUE:
            return True
        if v in _FALSE:
            return False
    log.warning("Invalid bool value%s: %r (using default=%s)", _ctx(context), value, default)
    return default


def parse_modifiers(
    value: object,
    *,
    names: Mapping[str, int] = MODIFIER_NAMES,
    log: logging.Logger = logger,
    context: str = "",
) -> int:
    """Parse a modifier mask from an int, a name, or a list of names.

    Unknown names are logged and ignored.
    """
    if value is None:
        return 0
    if isinstance(value, int) and not isinstance(value, bool):
        return value & 0xFF

    items: Iterable[object]
    if isinstance(value, str):
        items = [p for p in value.replace("+", ",").split(",") if p.strip()]
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        log.warning("Invalid modifiers%s: %r (using none)", _ctx(context), value)
        return 0

    mask = 0
    for item in items:
        key = str(item).strip().lower()
        bit = names.get(key)
        if bit is None:
            log.warning("Unknown modifier%s: %r (ignored)", _ctx(context), item)
            continue
        mask |= bit
    return mask


def parse_usage(
    value: object,
    *,
    log: logging.Logger = logger,
    context: str = "",
) -> Optional[int]:
    """Parse an explicit usage code (0..0xFF); None when invalid."""
    parsed: Union[int, None]
    if isinstance(value, bool) or value is None:
        parsed = None
    else:
        try:
            parsed = int(value.strip(), 0) if isinstance(value, str) else int(value)
        except (TypeError, ValueError, OverflowError):
            parsed = None
    if parsed is None or parsed < 0 or parsed > 0xFF:
        log.warning("Invalid usage code%s: %r", _ctx(context), value)
        return None
    return parsed

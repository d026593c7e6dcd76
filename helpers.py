"""General-purpose helper utilities shared across the application."""

from __future__ import annotations

import math
import numbers
from datetime import datetime, timezone
from typing import Any


__all__ = [
    "_format_timestamp",
    "_normalize_lookup_name",
    "coerce_igdb_id",
    "parse_unix_timestamp",
]


def _is_nan(value: Any) -> bool:
    try:
        return math.isnan(float(value))
    except (TypeError, ValueError):
        return False


def _normalize_lookup_name(value: Any) -> str:
    """Return ``value`` as a single-spaced, stripped label."""

    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, numbers.Real) and _is_nan(value):
        return ""
    text = value if isinstance(value, str) else str(value)
    return " ".join(text.split())


def coerce_igdb_id(value: Any) -> str:
    """Normalize potential IGDB identifiers to a canonical string."""

    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, str):
        text = value.strip()
        if not text or text.lower() == "nan":
            return ""
        if text.endswith(".0") and text[:-2].isdigit():
            return text[:-2]
        return text
    if isinstance(value, numbers.Integral):
        return str(int(value))
    if isinstance(value, numbers.Real):
        if _is_nan(value):
            return ""
        if float(value).is_integer():
            return str(int(value))
        return str(value)
    text = str(value).strip()
    if not text or text.lower() == "nan":
        return ""
    return text


def parse_unix_timestamp(value: Any) -> int | None:
    """Return ``value`` as whole UNIX seconds, ``None`` when blank.

    Raises :class:`ValueError` for anything that is not a finite,
    non-negative number.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"not a UNIX timestamp: {value!r}")
    if isinstance(value, numbers.Real):
        numeric = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            numeric = float(text)
        except ValueError:
            raise ValueError(f"not a UNIX timestamp: {value!r}") from None
    if not math.isfinite(numeric) or numeric < 0:
        raise ValueError(f"not a UNIX timestamp: {value!r}")
    return int(numeric)


def _format_timestamp(value: Any) -> str:
    if value in (None, ""):
        return ""
    try:
        timestamp = float(value)
    except (TypeError, ValueError):
        return ""
    if timestamp < 0:
        return ""
    try:
        dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return ""
    return dt.isoformat(timespec="seconds")

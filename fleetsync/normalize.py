"""Normalization helpers.

Centralizes tolerant parsing of loosely-typed provider payloads. Every helper
returns ``None`` for values it cannot interpret; nothing here ever substitutes
``0`` for a missing reading.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Sequence

_MISSING = object()
_INTEGER_TEXT = re.compile(r"^[+-]?[0-9]+$")


def safe_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if value == "" or value == "--":
            return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    text = str(value).strip()
    return text if text else None


def safe_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes", "on"}:
            return True
        if normalized in {"false", "0", "no", "off"}:
            return False
    return None


def _from_epoch(ts: float) -> datetime | None:
    if ts <= 0:
        return None
    # Milliseconds (> 1e11) -> seconds
    if ts > 1e11:
        ts /= 1000.0
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an API timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (``Z`` suffix allowed), epoch seconds or
    milliseconds as numbers or numeric strings, and datetimes. Naive values
    are taken to be UTC.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return _from_epoch(float(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        numeric = safe_float(text)
        if numeric is not None:
            return _from_epoch(numeric)
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_path(record: Any, path: str, default: Any = None) -> Any:
    """Read a dotted path (``"gps.latitude"``) out of nested dicts."""
    current = record
    for part in path.split("."):
        if not isinstance(current, dict):
            return default
        current = current.get(part, _MISSING)
        if current is _MISSING:
            return default
    return current


def first_value(
    record: dict[str, Any],
    paths: Sequence[str],
    parser: Callable[[Any], Any] = safe_str,
) -> Any:
    """Return the first candidate path whose value parses to non-None."""
    for path in paths:
        parsed = parser(get_path(record, path))
        if parsed is not None:
            return parsed
    return None


def _numeric_id(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and _INTEGER_TEXT.match(value.strip()):
        # integer text stays exact beyond 2**53
        return str(int(value.strip()))
    parsed = safe_float(value)
    if parsed is None:
        return None
    if parsed.is_integer():
        return str(int(parsed))
    return repr(parsed)


def extract_id(record: dict[str, Any], paths: Sequence[str], numeric: bool = True) -> str | None:
    """Pick the first candidate that yields a usable identifier.

    With ``numeric`` the identifier must be a number or a numeric-like string
    (returned in canonical integer form where possible); otherwise any
    non-empty scalar is accepted.
    """
    parser = _numeric_id if numeric else safe_str
    return first_value(record, paths, parser)


def flatten_wrapper(item: Any, key: str) -> Any:
    """Lift ``{key: {...}}`` wrappers so nested fields read as top-level ones."""
    if isinstance(item, dict) and isinstance(item.get(key), dict):
        merged = dict(item)
        merged.pop(key)
        merged.update(item[key])
        return merged
    return item


def extract_records(payload: Any, paths: Iterable[str | None]) -> tuple[list[Any], str | None]:
    """Locate the record array inside a response envelope.

    ``paths`` is tried in order; ``None`` stands for a bare top-level array.
    Returns the records and the path that matched, or ``([], None)`` when no
    candidate holds a list.
    """
    for path in paths:
        candidate = payload if path is None else get_path(payload, path)
        if isinstance(candidate, list):
            return candidate, path or "<root>"
    return [], None


def describe_shape(payload: Any) -> Any:
    if isinstance(payload, dict):
        return sorted(payload.keys())
    return type(payload).__name__

"""Shared normalization helpers for remote rows"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a backend timestamp into a naive UTC datetime.

    Accepts ISO-8601 strings (with or without offset), epoch milliseconds and
    datetimes. Returns None for empty or unparsable values.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        return None
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def timestamp_or_now(value: Any) -> datetime:
    """Parse a timestamp, falling back to the current time"""
    return parse_timestamp(value) or datetime.utcnow()


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a naive UTC datetime for the backend"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string"""
    return to_iso(datetime.utcnow())


def clean_text(value: Any) -> Optional[str]:
    """Trim a string; empty or non-string values become None"""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def to_metadata_payload(value: Any) -> Dict[str, Any]:
    """
    Coerce an opaque metadata value into a JSON object.

    Objects pass through, JSON text is parsed, other JSON values are wrapped
    as {"value": ...} and unparsable text as {"text": ...}.
    """
    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return {}
        try:
            parsed = json.loads(trimmed)
        except ValueError:
            return {"text": trimmed}
        if isinstance(parsed, dict):
            return parsed
        return {"value": parsed}
    return {"value": value}


def ms_to_iso(value: Optional[int]) -> Optional[str]:
    """Epoch milliseconds as an ISO-8601 UTC string"""
    if value is None:
        return None
    return to_iso(datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None))

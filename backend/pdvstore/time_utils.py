from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def now_iso() -> str:
    """
    Current time as the ISO-8601 string stored inside database records.

    Millisecond precision with a trailing 'Z', the same shape the browser
    client writes, so records from both sides sort lexicographically.
    """
    dt = datetime.now(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a record timestamp ("...Z", offset or naive) into an aware UTC datetime.

    Blank or unparsable values give None so report filters can skip the record.
    """
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Whole-second 'Z' stamp for kv_entries timestamps; SQLite hands them back naive, read as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")

# Overview: UTC clock, ISO-8601 parsing/serialization and the date stamps used in document numbers.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime from a query string or JSON body.

    Naive values are taken as UTC; offsets ("Z", "+01:00") are converted to
    UTC and dropped. Raises ValueError on garbage.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """"2024-05-01T12:30:00Z" for API payloads; naive datetimes are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def day_stamp(dt: datetime) -> str:
    """yyyymmdd, the date part of invoice (INV-) and receipt (R-) numbers."""
    return dt.strftime("%Y%m%d")


def compact_stamp(dt: datetime) -> str:
    """yyyymmddHHMMSS stamp used inside TSE signatures and FinanzOnline reference ids."""
    return dt.strftime("%Y%m%d%H%M%S")

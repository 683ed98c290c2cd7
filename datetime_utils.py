from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


UTC = timezone.utc


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_rfc3339_utc(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to RFC3339 in UTC."""

    if dt is None:
        return None
    value = ensure_utc(dt)
    if value is None:
        return None
    return value.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_rfc3339(s: Optional[str]) -> Optional[datetime]:
    """Parse an RFC3339/ISO string and return a timezone-aware UTC datetime."""

    if not s:
        return None
    value = s.strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"

    if "." in value:
        head, tail = value.split(".", 1)
        offset = ""
        for sign in ("+", "-"):
            if sign in tail:
                frac, rest = tail.split(sign, 1)
                offset = sign + rest
                break
        else:
            frac = tail
        frac = (frac[:6]).ljust(6, "0")
        value = f"{head}.{frac}{offset}"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    return ensure_utc(dt)


def today_iso(today: Optional[date] = None) -> str:
    """Local calendar day as ``yyyy-MM-dd`` (segment dates use this form)."""

    return (today or date.today()).isoformat()


def parse_day(value: Optional[str]) -> Optional[date]:
    """Accept both ``yyyy-MM-dd`` and ``dd/MM/yyyy``."""

    if not value:
        return None
    text = value.strip()
    for fmt in ("%Y-%m-%d", "%d/%m/%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


__all__ = [
    "UTC",
    "ensure_utc",
    "parse_day",
    "parse_rfc3339",
    "to_rfc3339_utc",
    "today_iso",
    "utc_now",
]

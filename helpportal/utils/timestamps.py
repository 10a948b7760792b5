"""Timestamp helpers for provider payloads and SQLite round-trips."""

from __future__ import annotations

from datetime import datetime, timezone


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_provider_timestamp(ts: str | None) -> datetime | None:
    """Parse Jira ('2024-10-02T14:05:16.123-0400') and Zendesk ('2024-10-02T14:05:16Z')
    timestamps into aware UTC datetimes. Returns None for anything unparseable.
    """
    if not ts or not isinstance(ts, str):
        return None
    ts = ts.strip()
    if ts.endswith("Z"):
        ts = ts[:-1] + "+00:00"
    # Normalize offsets like -0400 -> -04:00 for fromisoformat
    if len(ts) >= 5 and ts[-5] in "+-" and ts[-3] != ":":
        ts = ts[:-5] + ts[-5:-2] + ":" + ts[-2:]
    try:
        dt = datetime.fromisoformat(ts)
    except ValueError:
        return None
    return as_utc(dt)


def from_epoch(value: object) -> datetime | None:
    """Stripe sends epoch seconds; anything else is treated as absent."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)

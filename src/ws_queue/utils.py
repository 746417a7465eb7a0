"""Provide utility helpers for timestamps and ids."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        if not isinstance(value, str):
            value = str(value)
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
        # Naive timestamps are written by older queue files; treat them as UTC.
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except ValueError:
        return None


def _short_id(taken: Iterable[str] = ()) -> str:
    """Return an 8-hex-char id that does not collide with *taken*."""
    existing = set(taken)
    while True:
        candidate = uuid.uuid4().hex[:8]
        if candidate not in existing:
            return candidate


def _format_local(value: Optional[str]) -> str:
    dt = _parse_iso(value)
    if dt is None:
        return ""
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")

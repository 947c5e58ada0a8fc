"""
Utils: time_utils.py
Horodatages ISO-8601 UTC (format `2024-01-01T12:00:00.000Z`, comme attendu par le front).
"""
from __future__ import annotations

from datetime import datetime, timezone
import time


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Horodatage courant, précision milliseconde, suffixe `Z`."""
    return to_iso(utc_now())


def to_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_iso(value: str | None) -> datetime | None:
    """Parse tolérant (suffixe `Z` accepté); None si vide ou invalide."""
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def millis_id() -> str:
    """Identifiant horodaté (millisecondes epoch) pour les messages/notes/jets."""
    return str(int(time.time() * 1000))

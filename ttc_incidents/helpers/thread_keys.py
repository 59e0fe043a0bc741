"""Deterministic alert and thread keys.

Ingestion and reconciliation both derive keys through these functions; a
second implementation anywhere else would let the two drift apart and
produce duplicate or orphaned threads. Keys are built only from stable
semantic fields (source, route, station names, equipment codes), never from
timestamps or upstream ids that change between polls. The live feed is the
exception: its upstream id is stable per alert.
"""

import hashlib
import re

from pydantic import BaseModel

NON_TTC_ELEVATOR_CODES = frozenset({"", "non-ttc", "nonttc", "n/a"})
ELEVATOR_DETAIL_LENGTH = 20


class ElevatorKeys(BaseModel):
    """Keys for one elevator alert, flagging the fuzzy fallback path."""

    alert_id: str
    thread_id: str
    used_fallback: bool


def normalize_key_fragment(value: str | None) -> str:
    """
    Lowercase and keep only ASCII letters and digits.

    A trailing "station" is dropped so "Eglinton Station" and "Eglinton"
    produce the same fragment.

    Example:
        >>> normalize_key_fragment(" St. Clair  West Station")
        'stclairwest'
        >>> normalize_key_fragment(None)
        ''
    """
    if not value:
        return ""
    lowered = re.sub(r"\s+station\s*$", "", value.strip().lower())
    return re.sub(r"[^a-z0-9]", "", lowered)


def route_slug(route: str) -> str:
    """
    Key-safe form of a route identifier.

    Example:
        >>> route_slug("Line 1")
        'line1'
        >>> route_slug("97B")
        '97b'
    """
    return normalize_key_fragment(route)


def live_alert_id(upstream_id: str | int) -> str:
    """
    Alert key for the live feed.

    Example:
        >>> live_alert_id("A1")
        'live-A1'
    """
    return f"live-{str(upstream_id).strip()}"


def live_thread_id(routes: list[str], location: tuple[str, str] | None = None) -> str:
    """
    Thread key for a live-feed disruption: source, primary route and station pair.

    Example:
        >>> live_thread_id(["504"], ("Dufferin", "Lansdowne"))
        'thread-live-504-dufferin-lansdowne'
        >>> live_thread_id(["Line 2"])
        'thread-live-line2'
        >>> live_thread_id([])
        'thread-live-unknown'
    """
    key = f"thread-live-{route_slug(routes[0]) if routes else 'unknown'}"
    if location:
        start, end = (normalize_key_fragment(part) for part in location)
        if start and end:
            key = f"{key}-{start}-{end}"
    return key


def rsz_alert_id(line: str, stop_start: str, stop_end: str) -> str:
    """
    Alert key for a reduced speed zone.

    Example:
        >>> rsz_alert_id("1", "Eglinton", "Davisville")
        'rsz-line1-eglinton-davisville'
    """
    fragments = (normalize_key_fragment(stop_start), normalize_key_fragment(stop_end))
    return f"rsz-line{normalize_key_fragment(line)}-{fragments[0]}-{fragments[1]}"


def rsz_thread_id(line: str, stop_start: str, stop_end: str) -> str:
    """
    Thread key for a reduced speed zone.

    Example:
        >>> rsz_thread_id("1", "Eglinton ", "Davisville Station")
        'thread-rsz-line1-eglinton-davisville'
    """
    return f"thread-{rsz_alert_id(line, stop_start, stop_end)}"


def elevator_keys(elevator_code: str | None, station: str, detail: str | None) -> ElevatorKeys:
    """
    Keys for an elevator alert.

    With an equipment code the keys are exact. Without one ("Non-TTC"
    elevators) they fall back to station name plus the first characters of
    the normalised detail clause, which can split or merge incidents; callers
    log every fallback.

    Example:
        >>> elevator_keys("1234A", "Union", None).thread_id
        'thread-elev-1234a'
        >>> elevator_keys("Non-TTC", "Union", "concourse and street").thread_id
        'thread-elev-nonttc-union-concourseandstreet'
        >>> elevator_keys(None, "Union", None).thread_id
        'thread-elev-nonttc-union-unknown'
    """
    code = normalize_key_fragment(elevator_code)
    if (elevator_code or "").strip().lower() not in NON_TTC_ELEVATOR_CODES and code:
        return ElevatorKeys(alert_id=f"elev-{code}", thread_id=f"thread-elev-{code}", used_fallback=False)

    fragment = normalize_key_fragment(detail)[:ELEVATOR_DETAIL_LENGTH] or "unknown"
    suffix = f"nonttc-{normalize_key_fragment(station) or 'unknown'}-{fragment}"
    return ElevatorKeys(alert_id=f"elev-{suffix}", thread_id=f"thread-elev-{suffix}", used_fallback=True)


def content_hash(*parts: str | None) -> str:
    """
    Stable SHA-256 key over normalised text parts.

    Example:
        >>> content_hash("504", "Track work") == content_hash(" 504", "track  WORK")
        True
    """
    normalized = "|".join(re.sub(r"\s+", " ", (part or "").strip().lower()) for part in parts)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

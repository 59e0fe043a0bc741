"""Alert normalizer: upstream item shapes -> NormalizedAlert.

Three upstream shapes arrive here: live-feed route alerts, live-feed
accessibility (elevator) alerts and scraped reduced speed zone rows. Each is
converted into one NormalizedAlert carrying deterministic alert and thread
keys, extracted routes and its categorisation. Malformed items are logged
and skipped; they never raise out of the batch functions.
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import ValidationError

from ttc_incidents.helpers.categorization import AlertCategory, SeverityTier, classify_alert
from ttc_incidents.helpers.route_extraction import (
    extract_between_clause,
    extract_routes,
    split_upstream_routes,
)
from ttc_incidents.helpers.thread_keys import (
    elevator_keys,
    live_alert_id,
    live_thread_id,
    rsz_alert_id,
    rsz_thread_id,
)
from ttc_incidents.models.incident import AlertSource
from ttc_incidents.schemas.incidents import NormalizedAlert
from ttc_incidents.schemas.ttc import AccessibilityItem, LiveAlertItem, RszZone

logger = structlog.get_logger(__name__)

RSZ_EFFECT = "REDUCED_SPEED_ZONE"
ACCESSIBILITY_EFFECT = "ACCESSIBILITY_ISSUE"


# ==================== Pure Helper Functions ====================


def _merge_routes(*route_lists: Iterable[str]) -> list[str]:
    merged: list[str] = []
    for routes in route_lists:
        for route in routes:
            if route not in merged:
                merged.append(route)
    return merged


def _within(now: datetime, start: datetime | None, end: datetime | None) -> bool:
    return (start is None or start <= now) and (end is None or now <= end)


def is_currently_active(item: LiveAlertItem, now: datetime) -> bool:
    """
    Check whether a live alert is active now.

    Alerts with ``childAlerts`` are scheduled: they are active only inside one
    of the declared windows. Alerts without child windows are considered
    active unless every declared active period lies entirely outside ``now``.
    """
    if item.child_alerts:
        return any(_within(now, child.start_time, child.end_time) for child in item.child_alerts)
    if item.active_period:
        return any(_within(now, period.start, period.end) for period in item.active_period)
    return True


def _active_window(item: LiveAlertItem, now: datetime) -> tuple[datetime | None, datetime | None]:
    """The current window, else the next upcoming one, else the first declared."""
    windows = [(child.start_time, child.end_time) for child in item.child_alerts] or [
        (period.start, period.end) for period in item.active_period
    ]
    if not windows:
        return None, None
    for start, end in windows:
        if _within(now, start, end):
            return start, end
    upcoming = [window for window in windows if window[0] is not None and window[0] > now]
    if upcoming:
        return min(upcoming, key=lambda window: window[0])
    return windows[0]


def _station_from_header(text: str) -> str:
    """
    Station name from an elevator header ("Union: Elevator ..." -> "Union").

    Example:
        >>> _station_from_header("Bloor-Yonge Station: Elevator out of service")
        'Bloor-Yonge'
    """
    station = text.split(":", 1)[0] if ":" in text else text
    station = station.strip()
    if station.lower().endswith(" station"):
        station = station[: -len(" station")]
    return station.strip()


# ==================== Single-item Normalizers ====================


def normalize_live_alert(raw: dict[str, Any], now: datetime | None = None) -> NormalizedAlert:
    """
    Normalize one element of the live feed's ``routes`` array.

    Args:
        raw: Raw upstream object
        now: Reference time for scheduled windows (defaults to current UTC time)

    Returns:
        NormalizedAlert keyed ``live-<id>`` on a ``thread-live-...`` thread

    Raises:
        ValidationError: If the item lacks an id or has mistyped fields
    """
    now = now or datetime.now(UTC)
    item = LiveAlertItem.model_validate(raw)
    text = item.display_text

    classification = classify_alert(text, item.effect, item.effect_desc)
    categories = classification.category_values
    if not is_currently_active(item, now) and AlertCategory.SERVICE_RESUMED not in classification.categories:
        categories.append(AlertCategory.PLANNED_SERVICE_DISRUPTION.value)

    routes = _merge_routes(split_upstream_routes(item.route), extract_routes(text))
    if item.stop_start and item.stop_end:
        location: tuple[str, str] | None = (item.stop_start, item.stop_end)
    else:
        location = extract_between_clause(text)

    start, end = _active_window(item, now)
    return NormalizedAlert(
        alert_id=live_alert_id(item.id),
        thread_id=live_thread_id(routes, location),
        source=AlertSource.LIVE,
        header_text=text,
        description_text=item.description,
        effect=(item.effect or "UNKNOWN_EFFECT").upper(),
        cause=item.cause,
        categories=categories,
        affected_routes=routes,
        severity=classification.severity.value,
        active_period_start=start,
        active_period_end=end,
        raw_data=raw,
    )


def normalize_elevator_alert(raw: dict[str, Any]) -> NormalizedAlert:
    """
    Normalize one element of the live feed's ``accessibility`` array.

    Elevators without an equipment code get a fallback key built from the
    station and the "between X and Y" clause; those are logged as
    ``elevator_fallback_thread_key`` so the fallback rate stays visible.

    Raises:
        ValidationError: If fields are mistyped
        ValueError: If the item has neither header text nor an equipment code
    """
    item = AccessibilityItem.model_validate(raw)
    text = (item.header_text or "").strip()
    if not text and not item.elevator_code:
        msg = "elevator alert has neither header text nor equipment code"
        raise ValueError(msg)

    station = item.station or _station_from_header(text)
    between = extract_between_clause(text)
    detail = f"{between[0]} {between[1]}" if between else None
    keys = elevator_keys(item.elevator_code, station, detail)
    if keys.used_fallback:
        logger.warning(
            "elevator_fallback_thread_key",
            thread_id=keys.thread_id,
            station=station,
            elevator_code=item.elevator_code,
            upstream_id=item.id,
        )

    classification = classify_alert(text, item.effect or ACCESSIBILITY_EFFECT)
    if AlertCategory.SERVICE_RESUMED not in classification.categories:
        # Accessibility overrides whatever the effect code implied
        categories = [AlertCategory.ACCESSIBILITY.value]
        severity = SeverityTier.ACCESSIBILITY.value
    else:
        categories = classification.category_values
        severity = classification.severity.value

    return NormalizedAlert(
        alert_id=keys.alert_id,
        thread_id=keys.thread_id,
        source=AlertSource.ELEVATOR,
        header_text=text,
        description_text=item.description,
        effect=(item.effect or ACCESSIBILITY_EFFECT).upper(),
        categories=categories,
        affected_routes=extract_routes(text),
        severity=severity,
        raw_data=raw,
        used_fallback_key=keys.used_fallback,
    )


def normalize_rsz_zone(zone: RszZone) -> NormalizedAlert:
    """
    Normalize one reduced speed zone row.

    Keys come from the line and normalised station names only, so re-scrapes
    that reorder rows or change whitespace map to the same thread.
    """
    details = [zone.location]
    if zone.reduced_speed is not None and zone.normal_speed is not None:
        details.append(f"Reduced to {zone.reduced_speed} km/h from {zone.normal_speed} km/h")
    if zone.defect_length is not None:
        details.append(f"Length {zone.defect_length} m")
    if zone.reason:
        details.append(f"Reason: {zone.reason}")
    if zone.target_removal:
        details.append(f"Target removal: {zone.target_removal}")

    return NormalizedAlert(
        alert_id=rsz_alert_id(zone.line, zone.stop_start, zone.stop_end),
        thread_id=rsz_thread_id(zone.line, zone.stop_start, zone.stop_end),
        source=AlertSource.RSZ,
        header_text=f"Line {zone.line}: Reduced speed zone {zone.stop_start} to {zone.stop_end}",
        description_text=". ".join(details),
        effect=RSZ_EFFECT,
        cause=zone.reason,
        categories=[AlertCategory.RSZ.value],
        affected_routes=[f"Line {zone.line}"],
        severity=SeverityTier.MINOR.value,
        raw_data=zone.model_dump(),
    )


# ==================== Batch Normalizers ====================


def normalize_live_alerts(
    raws: Iterable[dict[str, Any]], now: datetime | None = None
) -> tuple[list[NormalizedAlert], int]:
    """Normalize live-feed items, returning (alerts, skipped_count)."""
    alerts: list[NormalizedAlert] = []
    skipped = 0
    for raw in raws:
        try:
            alerts.append(normalize_live_alert(raw, now))
        except ValidationError as exc:
            skipped += 1
            logger.warning("malformed_upstream_record", source="live", upstream_id=raw.get("id"), error=str(exc))
    return alerts, skipped


def normalize_elevator_alerts(raws: Iterable[dict[str, Any]]) -> tuple[list[NormalizedAlert], int]:
    """Normalize accessibility items, returning (alerts, skipped_count)."""
    alerts: list[NormalizedAlert] = []
    skipped = 0
    for raw in raws:
        try:
            alerts.append(normalize_elevator_alert(raw))
        except ValueError as exc:  # ValidationError is a ValueError
            skipped += 1
            logger.warning("malformed_upstream_record", source="elevator", upstream_id=raw.get("id"), error=str(exc))
    return alerts, skipped


def normalize_rsz_zones(zones: Iterable[RszZone]) -> list[NormalizedAlert]:
    """Normalize parsed RSZ rows, dropping repeated zones within one scrape."""
    alerts: dict[str, NormalizedAlert] = {}
    for zone in zones:
        alert = normalize_rsz_zone(zone)
        alerts.setdefault(alert.alert_id, alert)
    return list(alerts.values())


def is_live_rsz(alert: NormalizedAlert) -> bool:
    """Live-feed RSZ items are left to the dedicated RSZ scrape."""
    return AlertCategory.RSZ.value in alert.categories

"""Parse scheduled-closure search results.

Each search result carries an ``Html`` snippet with the fields as spans:

    <span class="field-route">501|301|503</span>
    <span class="field-routename">Queen</span>
    <span class="field-satitle">Track work on Queen St</span>
    <span class="ed-start-date field-starteffectivedate">December 31, 2025 - 11:30 PM<span>...</span></span>
    <span class="field-endeffectivedate">January 4, 2026 - 5:00 AM</span>

Single-day closures omit the start-date field; the date then follows a
``sa-start-date-label-wrapper`` span.
"""

import re
from datetime import datetime, time
from typing import Any
from zoneinfo import ZoneInfo

import structlog
from bs4 import BeautifulSoup, NavigableString, Tag

from ttc_incidents.helpers.thread_keys import content_hash
from ttc_incidents.schemas.ttc import MaintenanceItem

logger = structlog.get_logger(__name__)

TORONTO = ZoneInfo("America/Toronto")
TTC_BASE_URL = "https://www.ttc.ca"
DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%b. %d, %Y")


def parse_ttc_datetime(value: str | None, *, end_of_day: bool = False) -> datetime | None:
    """
    Parse "Month D, YYYY[ - h:mm AM/PM]" as Toronto local time.

    Args:
        value: Date text from the snippet
        end_of_day: Use 23:59 when no time is given (end dates)

    Returns:
        Timezone-aware datetime, or None when the text is not a date

    Example:
        >>> parse_ttc_datetime("December 31, 2025 - 11:30 PM").isoformat()
        '2025-12-31T23:30:00-05:00'
        >>> parse_ttc_datetime("November 22, 2025").isoformat()
        '2025-11-22T00:00:00-05:00'
        >>> parse_ttc_datetime("soon") is None
        True
    """
    if not value:
        return None
    date_part, _, time_part = (part.strip() for part in value.partition(" - "))

    parsed_date = None
    for fmt in DATE_FORMATS:
        try:
            parsed_date = datetime.strptime(date_part, fmt).date()  # noqa: DTZ007
            break
        except ValueError:
            continue
    if parsed_date is None:
        return None

    parsed_time = time(23, 59) if end_of_day else time(0, 0)
    if time_part:
        try:
            parsed_time = datetime.strptime(time_part.upper().replace(".", ""), "%I:%M %p").time()  # noqa: DTZ007
        except ValueError:
            logger.debug("maintenance_time_unparseable", value=value)

    return datetime.combine(parsed_date, parsed_time, tzinfo=TORONTO)


def _own_text(tag: Tag) -> str:
    """Text directly inside a tag, excluding nested elements."""
    return " ".join(str(s).strip() for s in tag.find_all(string=True, recursive=False) if str(s).strip())


def _field(soup: BeautifulSoup, css_class: str) -> str | None:
    tag = soup.find("span", class_=css_class)
    if tag is None:
        return None
    text = _own_text(tag) or tag.get_text(" ", strip=True)
    return text or None


def _fallback_start_date(soup: BeautifulSoup) -> str | None:
    wrapper = soup.find("span", class_="sa-start-date-label-wrapper")
    if wrapper is None:
        return None
    for sibling in wrapper.next_siblings:
        if isinstance(sibling, NavigableString) and sibling.strip():
            return sibling.strip()
        if isinstance(sibling, Tag):
            break
    return None


def parse_maintenance_html(html: str) -> dict[str, Any]:
    """
    Extract the closure fields from one result's HTML snippet.

    Example:
        >>> fields = parse_maintenance_html(
        ...     '<span class="field-route">501|301</span>'
        ...     '<span class="field-satitle">Track work</span>'
        ... )
        >>> fields["routes"], fields["title"]
        (['501', '301'], 'Track work')
    """
    soup = BeautifulSoup(html or "", "html.parser")
    routes_text = _field(soup, "field-route") or ""
    return {
        "routes": [route.strip() for route in routes_text.split("|") if route.strip()],
        "route_name": _field(soup, "field-routename"),
        "title": _field(soup, "field-satitle"),
        "start_date_text": _field(soup, "field-starteffectivedate") or _fallback_start_date(soup),
        "end_date_text": _field(soup, "field-endeffectivedate"),
    }


def parse_search_result(result: dict[str, Any]) -> MaintenanceItem | None:
    """
    Build a MaintenanceItem from one search result, or None if it is unusable.

    Results without a title or a parseable start date are skipped with a
    warning.
    """
    fields = parse_maintenance_html(str(result.get("Html") or ""))
    upstream_id = result.get("Id") or result.get("ItemId")

    if not fields["title"]:
        logger.warning(
            "malformed_upstream_record", source="maintenance", reason="missing_title", upstream_id=upstream_id
        )
        return None

    starts_at = parse_ttc_datetime(fields["start_date_text"])
    if starts_at is None:
        logger.warning(
            "malformed_upstream_record",
            source="maintenance",
            reason="unparseable_start_date",
            upstream_id=upstream_id,
            start_date_text=fields["start_date_text"],
        )
        return None

    url = result.get("Url")
    if url and not re.match(r"^https?://", url):
        url = f"{TTC_BASE_URL}{url}"

    return MaintenanceItem(
        maintenance_key=content_hash("|".join(fields["routes"]), fields["title"], fields["start_date_text"]),
        upstream_id=str(upstream_id) if upstream_id else None,
        routes=fields["routes"],
        route_name=fields["route_name"],
        title=fields["title"],
        url=url,
        start_date_text=fields["start_date_text"],
        end_date_text=fields["end_date_text"],
        starts_at=starts_at,
        ends_at=parse_ttc_datetime(fields["end_date_text"], end_of_day=True),
    )

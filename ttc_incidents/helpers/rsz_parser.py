"""Parse the reduced speed zone page into RszZone rows.

The page has one section per subway line and direction:

    <div class="reduced-speed-zone-table">
      <div class="line-header"><h2>Line 1 (Yonge-University) to Finch Station</h2></div>
      <table><tbody><tr><td>Southbound Eglinton to Davisville</td>...8 cells...</tr></tbody></table>
    </div>

Cell order is fixed: location, defect length, distance between stations,
percent of track, reduced speed, normal speed, reason, target removal.
"""

import re

import structlog
from bs4 import BeautifulSoup, Tag

from ttc_incidents.schemas.ttc import RszZone

logger = structlog.get_logger(__name__)

RSZ_CELL_COUNT = 8
LOCATION_PATTERN = re.compile(
    r"^(?P<direction>Northbound|Southbound|Eastbound|Westbound)\s+(?P<start>.+?)\s+to\s+(?P<end>.+)$",
    re.IGNORECASE,
)
LINE_PATTERN = re.compile(r"Line\s*(\d+)", re.IGNORECASE)


def parse_int(value: str | None) -> int | None:
    """
    Parse a comma-formatted integer, ignoring units and percent signs.

    Example:
        >>> parse_int("1,250 m")
        1250
        >>> parse_int("n/a") is None
        True
    """
    if not value:
        return None
    match = re.search(r"-?\d[\d,]*", value)
    if not match:
        return None
    return int(match.group(0).replace(",", ""))


def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _line_for(section: Tag) -> str | None:
    header = section.select_one(".line-header h2, .line-header h3, h2, h3")
    source = header.get_text(" ") if header else section.get_text(" ")[:200]
    match = LINE_PATTERN.search(source)
    return match.group(1) if match else None


def parse_rsz_rows(table: Tag, line: str) -> list[RszZone]:
    """Parse the data rows of one RSZ table. Malformed rows are skipped."""
    zones: list[RszZone] = []
    rows = table.select("tbody tr") or table.find_all("tr")
    for row in rows:
        cells = [_clean(cell.get_text(" ")) for cell in row.find_all("td")]
        if not cells:
            continue  # header row
        if len(cells) < RSZ_CELL_COUNT:
            logger.warning("malformed_upstream_record", source="rsz", reason="too_few_cells", cells=len(cells))
            continue

        location = LOCATION_PATTERN.match(cells[0])
        if not location:
            logger.warning("malformed_upstream_record", source="rsz", reason="unparseable_location", location=cells[0])
            continue

        zones.append(
            RszZone(
                line=line,
                direction=location.group("direction").capitalize(),
                stop_start=location.group("start").strip(),
                stop_end=location.group("end").strip(),
                location=cells[0],
                defect_length=parse_int(cells[1]),
                distance_between_stations=parse_int(cells[2]),
                track_percent=parse_int(cells[3]),
                reduced_speed=parse_int(cells[4]),
                normal_speed=parse_int(cells[5]),
                reason=cells[6] or None,
                target_removal=cells[7] or None,
            )
        )
    return zones


def parse_rsz_page(html: str) -> list[RszZone]:
    """
    Parse every RSZ table on the page.

    Sections marked ``reduced-speed-zone-table`` are preferred; older page
    layouts without them are handled by scanning each table and taking the
    line number from the closest preceding heading.

    Args:
        html: Page HTML

    Returns:
        Zones in page order
    """
    soup = BeautifulSoup(html, "html.parser")
    zones: list[RszZone] = []

    sections = soup.select(".reduced-speed-zone-table")
    if sections:
        for section in sections:
            line = _line_for(section)
            table = section.find("table")
            if line is None or table is None:
                logger.warning("malformed_upstream_record", source="rsz", reason="section_without_line_or_table")
                continue
            zones.extend(parse_rsz_rows(table, line))
        return zones

    for table in soup.find_all("table"):
        heading = table.find_previous(["h2", "h3", "h4"])
        match = LINE_PATTERN.search(heading.get_text(" ")) if heading else None
        if not match:
            continue
        zones.extend(parse_rsz_rows(table, match.group(1)))
    return zones

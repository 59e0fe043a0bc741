"""Pure helper functions for pulling route identifiers out of alert text.

TTC headers mix route numbers with station infrastructure numbers ("Bay 2",
"Platform 1"), dates and times. Infrastructure numbers and dates are blanked
out first, then route tokens are matched from most to least specific so one
mention never produces several entries for the same route.
"""

import re

SUBWAY_LINES = frozenset({"1", "2", "3", "4"})

INFRASTRUCTURE_NUMBER_PATTERN = re.compile(
    r"\b(?:bay|platform|track|door|gate)s?\s*#?\s*\d+[a-z]?\b",
    re.IGNORECASE,
)
DATE_PATTERN = re.compile(
    r"\b(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+\d{1,2}(?:st|nd|rd|th)?\b(?:,?\s*\d{4})?",
    re.IGNORECASE,
)
SUBWAY_LINE_PATTERN = re.compile(r"\bLine\s*(\d+)\b", re.IGNORECASE)
ROUTE_WITH_NAME_PATTERN = re.compile(r"\b(\d{1,3}[A-Z]?)\s+([A-Z][a-z]+)")
BRANCH_PATTERN = re.compile(r"\b(\d{1,3}[A-Z])\b")
BARE_ROUTE_PATTERN = re.compile(
    r"(?<![:.,$/])\b(\d{1,3})\b"
    r"(?!\s*(?:%|:\d|\.\d|a\.?m\b|p\.?m\b|min|hour|hr\b|sec|km\b|m\b|metre|meter|minutes?\b))",
    re.IGNORECASE,
)
BETWEEN_PATTERN = re.compile(
    r"\bbetween\s+(?P<start>.+?)\s+(?:and|&)\s+(?P<end>.+?)"
    r"(?=\s+(?:stations?|due|because|while|from|until|for|except)\b|[.,;:()]|\s+-|$)",
    re.IGNORECASE,
)


def strip_false_positive_numbers(text: str) -> str:
    """
    Blank out numbers that describe infrastructure or dates rather than routes.

    Example:
        >>> strip_false_positive_numbers("Bay 2 closed, route 506 delayed").strip()
        'closed, route 506 delayed'
    """
    text = INFRASTRUCTURE_NUMBER_PATTERN.sub(" ", text)
    return DATE_PATTERN.sub(" ", text)


def _overlaps(span: tuple[int, int], claimed: list[tuple[int, int]]) -> bool:
    return any(span[0] < end and start < span[1] for start, end in claimed)


def extract_routes(text: str | None) -> list[str]:
    """
    Extract route identifiers from free text, in order of appearance.

    Subway lines are only recognised as the literal "Line 1" to "Line 4".
    Other tokens are matched with decreasing specificity: a route followed by
    its name ("97B Yonge"), then a branch code ("97B"), then a bare number.
    Each text position yields at most one route.

    Args:
        text: Alert header or description

    Returns:
        Ordered, de-duplicated route identifiers

    Example:
        >>> extract_routes("Bay 2 closed, route 506 delayed")
        ['506']
        >>> extract_routes("97B Yonge: Detour at Steeles")
        ['97B']
        >>> extract_routes("Line 1 Yonge-University: No service between St Clair and Lawrence")
        ['Line 1']
        >>> extract_routes("37, 37A Islington: Diverting")
        ['37', '37A']
    """
    if not text:
        return []

    cleaned = strip_false_positive_numbers(text)
    claimed: list[tuple[int, int]] = []
    found: list[tuple[int, str]] = []

    for match in SUBWAY_LINE_PATTERN.finditer(cleaned):
        claimed.append(match.span())
        if match.group(1) in SUBWAY_LINES:
            found.append((match.start(), f"Line {match.group(1)}"))

    for pattern in (ROUTE_WITH_NAME_PATTERN, BRANCH_PATTERN, BARE_ROUTE_PATTERN):
        for match in pattern.finditer(cleaned):
            span = match.span(1)
            if _overlaps(span, claimed):
                continue
            route = match.group(1).upper().lstrip("0")
            if not route or not route[0].isdigit():
                continue
            claimed.append(span)
            found.append((span[0], route))

    found.sort()
    routes: list[str] = []
    for _, route in found:
        if route not in routes:
            routes.append(route)
    return routes


def canonical_route(route: str | None) -> str | None:
    """
    Normalise an upstream route value to the identifier used in storage.

    Example:
        >>> canonical_route("2")
        'Line 2'
        >>> canonical_route(" line 1 ")
        'Line 1'
        >>> canonical_route("97b")
        '97B'
    """
    if route is None:
        return None
    value = route.strip()
    if not value:
        return None
    line_match = SUBWAY_LINE_PATTERN.fullmatch(value)
    if line_match:
        return f"Line {line_match.group(1)}"
    if value in SUBWAY_LINES:
        return f"Line {value}"
    return value.upper()


def split_upstream_routes(route_field: str | None) -> list[str]:
    """
    Split an upstream route field that may list several routes.

    Example:
        >>> split_upstream_routes("37, 37A|1")
        ['37', '37A', 'Line 1']
    """
    if not route_field:
        return []
    routes: list[str] = []
    for part in re.split(r"[,|;/]", route_field):
        route = canonical_route(part)
        if route and route not in routes:
            routes.append(route)
    return routes


def base_route(route: str) -> str:
    """
    Strip the branch suffix from a route ("37A" -> "37").

    Example:
        >>> base_route("37A")
        '37'
        >>> base_route("Line 2")
        'Line 2'
    """
    match = re.fullmatch(r"(\d{1,3})[A-Z]*", route.strip().upper())
    return match.group(1) if match else route.strip()


def routes_overlap(routes_a: list[str], routes_b: list[str]) -> bool:
    """
    Check whether two route lists share a base route.

    Example:
        >>> routes_overlap(["37A"], ["37", "52"])
        True
        >>> routes_overlap(["504"], ["505"])
        False
    """
    return bool({base_route(r) for r in routes_a} & {base_route(r) for r in routes_b})


def extract_between_clause(text: str | None) -> tuple[str, str] | None:
    """
    Extract the station pair from a "between X and Y" clause.

    Example:
        >>> extract_between_clause("504 King: No service between Dufferin and Lansdowne")
        ('Dufferin', 'Lansdowne')
        >>> extract_between_clause("Regular service has resumed") is None
        True
    """
    if not text:
        return None
    match = BETWEEN_PATTERN.search(text)
    if not match:
        return None
    start = match.group("start").strip()
    end = match.group("end").strip()
    if not start or not end:
        return None
    return start, end

"""Pure helper functions for alert categorisation and severity tiers.

Order of checks matters:

1. "Service resumed" wording short-circuits everything else.
2. Reduced speed zones are recognised before generic disruption wording
   because their text ("slower than usual") reads like a delay.
3. Elevator/escalator alerts override any effect-based severity.
4. Remaining alerts combine the highest-priority keyword category with the
   category implied by the upstream effect code.
"""

import enum

from pydantic import BaseModel


class AlertCategory(str, enum.Enum):
    """Taxonomy tags stored on alerts and threads."""

    SERVICE_DISRUPTION = "SERVICE_DISRUPTION"
    SERVICE_RESUMED = "SERVICE_RESUMED"
    DELAY = "DELAY"
    DIVERSION = "DIVERSION"
    SHUTTLE = "SHUTTLE"
    PLANNED_CLOSURE = "PLANNED_CLOSURE"
    PLANNED_SERVICE_DISRUPTION = "PLANNED_SERVICE_DISRUPTION"
    ACCESSIBILITY = "ACCESSIBILITY"
    RSZ = "RSZ"
    UNKNOWN = "UNKNOWN"


class SeverityTier(str, enum.Enum):
    """User-facing severity tier."""

    MAJOR = "major"
    MINOR = "minor"
    ACCESSIBILITY = "accessibility"
    INFO = "info"


class Classification(BaseModel):
    """Result of categorising one alert."""

    categories: list[AlertCategory]
    severity: SeverityTier

    @property
    def category_values(self) -> list[str]:
        return [category.value for category in self.categories]


RESUMED_KEYWORDS = ("regular service", "resumed", "restored", "back to normal", "now stopping")

# (category, priority, keywords); lower priority wins
KEYWORD_CATEGORIES: tuple[tuple[AlertCategory, int, tuple[str, ...]], ...] = (
    (AlertCategory.SERVICE_DISRUPTION, 1, ("no service", "suspended", "closed", "not stopping", "bypassing")),
    (AlertCategory.DELAY, 2, ("delay", "delayed", "slower", "longer wait")),
    (AlertCategory.DIVERSION, 3, ("diverting", "detour", "alternate route", "diversion")),
    (AlertCategory.SHUTTLE, 3, ("shuttle", "buses replacing")),
    (AlertCategory.PLANNED_CLOSURE, 4, ("planned", "scheduled", "maintenance", "this weekend")),
)

RSZ_KEYWORDS = ("reduced speed zone", "slow zone", "slower than usual")
ACCESSIBILITY_KEYWORDS = ("elevator", "escalator")

EFFECT_CATEGORIES: dict[str, AlertCategory] = {
    "NO_SERVICE": AlertCategory.SERVICE_DISRUPTION,
    "REDUCED_SERVICE": AlertCategory.SERVICE_DISRUPTION,
    "SIGNIFICANT_DELAYS": AlertCategory.DELAY,
    "DETOUR": AlertCategory.DIVERSION,
}

# Effects absent from this map are treated as major
EFFECT_SEVERITY: dict[str, SeverityTier] = {
    "NO_SERVICE": SeverityTier.MAJOR,
    "REDUCED_SERVICE": SeverityTier.MAJOR,
    "SIGNIFICANT_DELAYS": SeverityTier.MAJOR,
    "DETOUR": SeverityTier.MINOR,
    "MODIFIED_SERVICE": SeverityTier.MINOR,
    "STOP_MOVED": SeverityTier.MINOR,
    "ADDITIONAL_SERVICE": SeverityTier.INFO,
    "NO_EFFECT": SeverityTier.INFO,
}

RSZ_EFFECTS = frozenset({"REDUCED_SPEED_ZONE", "RSZ"})
ACCESSIBILITY_EFFECTS = frozenset({"ACCESSIBILITY_ISSUE"})


def is_service_resumed(text: str | None) -> bool:
    """
    Check for "service resumed" wording.

    Example:
        >>> is_service_resumed("504 King: Regular service has resumed")
        True
        >>> is_service_resumed("504 King: Delays of up to 10 minutes")
        False
    """
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in RESUMED_KEYWORDS)


def is_reduced_speed_zone(effect: str | None, effect_desc: str | None, text: str | None) -> bool:
    """
    Check whether an alert describes a reduced speed zone.

    Example:
        >>> is_reduced_speed_zone("SIGNIFICANT_DELAYS", "Reduced Speed Zone", "")
        True
        >>> is_reduced_speed_zone("SIGNIFICANT_DELAYS", "", "Line 1: Delays")
        False
    """
    if (effect or "").upper() in RSZ_EFFECTS:
        return True
    desc = (effect_desc or "").strip().lower()
    if desc == "rsz":
        return True
    haystack = f"{desc} {(text or '').lower()}"
    return any(keyword in haystack for keyword in RSZ_KEYWORDS)


def is_accessibility_alert(effect: str | None, text: str | None) -> bool:
    """
    Check whether an alert concerns elevators or escalators.

    Example:
        >>> is_accessibility_alert(None, "Union: Elevator out of service")
        True
    """
    if (effect or "").upper() in ACCESSIBILITY_EFFECTS:
        return True
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in ACCESSIBILITY_KEYWORDS)


def categorize_text(text: str | None) -> AlertCategory | None:
    """
    Return the highest-priority keyword category, or None when nothing matches.

    Resumed wording wins over every other keyword set.

    Example:
        >>> categorize_text("Delays cleared, regular service has resumed")
        <AlertCategory.SERVICE_RESUMED: 'SERVICE_RESUMED'>
        >>> categorize_text("No service, shuttle buses running")
        <AlertCategory.SERVICE_DISRUPTION: 'SERVICE_DISRUPTION'>
    """
    lowered = (text or "").lower()
    if not lowered.strip():
        return None
    if is_service_resumed(lowered):
        return AlertCategory.SERVICE_RESUMED

    best: tuple[int, AlertCategory] | None = None
    for category, priority, keywords in KEYWORD_CATEGORIES:
        if any(keyword in lowered for keyword in keywords) and (best is None or priority < best[0]):
            best = (priority, category)
    return best[1] if best else None


def severity_for_effect(effect: str | None) -> SeverityTier:
    """
    Map an upstream effect code to a severity tier, defaulting to major.

    Example:
        >>> severity_for_effect("DETOUR")
        <SeverityTier.MINOR: 'minor'>
        >>> severity_for_effect("SOMETHING_NEW")
        <SeverityTier.MAJOR: 'major'>
    """
    return EFFECT_SEVERITY.get((effect or "").upper(), SeverityTier.MAJOR)


def classify_alert(
    text: str | None,
    effect: str | None = None,
    effect_desc: str | None = None,
) -> Classification:
    """
    Categorise an alert and assign its severity tier.

    Args:
        text: Header text (description may be appended by the caller)
        effect: Upstream effect code
        effect_desc: Upstream effect description

    Returns:
        Classification with ordered categories and a severity tier
    """
    if is_service_resumed(text):
        return Classification(categories=[AlertCategory.SERVICE_RESUMED], severity=SeverityTier.INFO)

    if is_reduced_speed_zone(effect, effect_desc, text):
        return Classification(categories=[AlertCategory.RSZ], severity=SeverityTier.MINOR)

    if is_accessibility_alert(effect, text):
        return Classification(categories=[AlertCategory.ACCESSIBILITY], severity=SeverityTier.ACCESSIBILITY)

    categories: list[AlertCategory] = []
    text_category = categorize_text(text)
    if text_category is not None:
        categories.append(text_category)
    effect_category = EFFECT_CATEGORIES.get((effect or "").upper())
    if effect_category is not None and effect_category not in categories:
        categories.append(effect_category)
    if not categories:
        categories.append(AlertCategory.UNKNOWN)

    return Classification(categories=categories, severity=severity_for_effect(effect))


def is_planned_category(categories: list[str]) -> bool:
    """
    Check whether any category marks a scheduled/planned disruption.

    Example:
        >>> is_planned_category(["PLANNED_SERVICE_DISRUPTION"])
        True
        >>> is_planned_category(["DELAY"])
        False
    """
    return any("planned" in category.lower() or "scheduled" in category.lower() for category in categories)

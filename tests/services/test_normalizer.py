"""Tests for the alert normalizer."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from tests.helpers.upstream import elevator_alert, live_alert
from ttc_incidents.models.incident import AlertSource
from ttc_incidents.schemas.ttc import LiveAlertItem, RszZone
from ttc_incidents.services.normalizer import (
    is_currently_active,
    is_live_rsz,
    normalize_elevator_alert,
    normalize_elevator_alerts,
    normalize_live_alert,
    normalize_live_alerts,
    normalize_rsz_zone,
    normalize_rsz_zones,
)

NOW = datetime(2025, 11, 20, 12, 0, tzinfo=UTC)


def make_zone(stop_start: str = "Eglinton", stop_end: str = "Davisville", **overrides: object) -> RszZone:
    """Build one RSZ row."""
    fields: dict[str, object] = {
        "line": "1",
        "direction": "Southbound",
        "stop_start": stop_start,
        "stop_end": stop_end,
        "location": f"Southbound {stop_start} to {stop_end}",
        "defect_length": 1250,
        "reduced_speed": 25,
        "normal_speed": 80,
        "reason": "Track maintenance",
        "target_removal": "Dec 2025",
    }
    fields.update(overrides)
    return RszZone.model_validate(fields)


# ==================== Live alerts ====================


class TestNormalizeLiveAlert:
    """Tests for normalize_live_alert."""

    def test_disruption_with_station_pair(self) -> None:
        """Test a live disruption gets live keys, routes and categories."""
        alert = normalize_live_alert(
            live_alert("A1", "504 King: No service between Dufferin and Lansdowne", route="504"), NOW
        )

        assert alert.alert_id == "live-A1"
        assert alert.thread_id == "thread-live-504-dufferin-lansdowne"
        assert alert.source == AlertSource.LIVE
        assert alert.affected_routes == ["504"]
        assert alert.categories == ["SERVICE_DISRUPTION"]
        assert alert.severity == "major"
        assert alert.effect == "NO_SERVICE"
        assert alert.raw_data is not None
        assert alert.raw_data["id"] == "A1"

    def test_explicit_stops_take_precedence_over_text(self) -> None:
        """Test stopStart/stopEnd drive the thread key when present."""
        raw = live_alert(
            "A2",
            "Line 1: No service between St Clair and Lawrence",
            route="1",
            stopStart=["St Clair Station"],
            stopEnd="Lawrence",
        )

        alert = normalize_live_alert(raw, NOW)

        assert alert.thread_id == "thread-live-line1-stclair-lawrence"
        assert alert.affected_routes == ["Line 1"]

    def test_resumed_alert_without_location_keys_by_route(self) -> None:
        """Test a resumed alert has no station pair and the route-only key."""
        alert = normalize_live_alert(live_alert("A3", "504 King: Regular service has resumed", route="504"), NOW)

        assert alert.thread_id == "thread-live-504"
        assert alert.is_resumed is True
        assert alert.severity == "info"

    def test_upstream_and_text_routes_are_merged(self) -> None:
        """Test routes from the route field and header are combined without duplicates."""
        alert = normalize_live_alert(live_alert("A4", "37A Islington: Detour", route="37, 37A", effect="DETOUR"), NOW)

        assert alert.affected_routes == ["37", "37A"]

    def test_integer_id_is_accepted(self) -> None:
        """Test numeric upstream ids are coerced to strings."""
        alert = normalize_live_alert(live_alert(12345, "501 Queen: Delays", route=501), NOW)  # type: ignore[arg-type]

        assert alert.alert_id == "live-12345"
        assert alert.affected_routes == ["501"]

    def test_title_fallback_when_header_missing(self) -> None:
        """Test the title is used when headerText is absent."""
        raw = {"id": "A5", "title": "505 Dundas: Diverting", "effect": "DETOUR"}

        alert = normalize_live_alert(raw, NOW)

        assert alert.header_text == "505 Dundas: Diverting"

    def test_missing_effect(self) -> None:
        """Test a missing effect is stored as UNKNOWN_EFFECT."""
        alert = normalize_live_alert({"id": "A6", "headerText": "504 King: Delays"}, NOW)

        assert alert.effect == "UNKNOWN_EFFECT"

    def test_future_scheduled_alert_is_marked_planned(self) -> None:
        """Test an alert whose child windows are all in the future is a planned disruption."""
        raw = live_alert(
            "A7",
            "Line 1: No service between Finch and Eglinton this weekend",
            route="1",
            childAlerts={"id": 1, "startTime": "2025-11-22T04:00:00Z", "endTime": "2025-11-24T09:00:00Z"},
        )

        alert = normalize_live_alert(raw, NOW)

        assert "PLANNED_SERVICE_DISRUPTION" in alert.categories
        assert alert.active_period_start == datetime(2025, 11, 22, 4, 0, tzinfo=UTC)
        assert alert.active_period_end == datetime(2025, 11, 24, 9, 0, tzinfo=UTC)

    def test_scheduled_alert_inside_window_is_not_planned(self) -> None:
        """Test an alert inside its current window is a live disruption."""
        raw = live_alert(
            "A8",
            "Line 1: No service between Finch and Eglinton",
            route="1",
            childAlerts=[
                {"startTime": "2025-11-20T04:00:00Z", "endTime": "2025-11-20T23:00:00Z"},
                {"startTime": "2025-11-27T04:00:00Z", "endTime": "2025-11-27T23:00:00Z"},
            ],
        )

        alert = normalize_live_alert(raw, NOW)

        assert "PLANNED_SERVICE_DISRUPTION" not in alert.categories
        assert alert.active_period_start == datetime(2025, 11, 20, 4, 0, tzinfo=UTC)

    @pytest.mark.parametrize("raw", [{"headerText": "No id"}, {"id": "  ", "headerText": "Blank id"}])
    def test_missing_id_raises(self, raw: dict[str, str]) -> None:
        """Test items without a usable id are rejected."""
        with pytest.raises(ValidationError):
            normalize_live_alert(raw, NOW)


class TestIsCurrentlyActive:
    """Tests for is_currently_active."""

    def test_no_windows_is_active(self) -> None:
        """Test unscheduled alerts are active."""
        assert is_currently_active(LiveAlertItem.model_validate({"id": "x"}), NOW) is True

    def test_expired_active_period(self) -> None:
        """Test an alert whose only period has ended is inactive."""
        period = {"start": "2025-11-01T00:00:00Z", "end": "2025-11-02T00:00:00Z"}
        item = LiveAlertItem.model_validate({"id": "x", "activePeriod": period})

        assert is_currently_active(item, NOW) is False

    def test_open_ended_period(self) -> None:
        """Test a period without an end is active once started."""
        item = LiveAlertItem.model_validate({"id": "x", "activePeriod": [{"start": "2025-11-01T00:00:00Z"}]})

        assert is_currently_active(item, NOW) is True


class TestNormalizeLiveAlerts:
    """Tests for the live batch normalizer."""

    def test_malformed_items_are_skipped(self) -> None:
        """Test one bad item does not abort the batch."""
        alerts, skipped = normalize_live_alerts(
            [
                live_alert("A1", "504 King: Delays", route="504"),
                {"headerText": "no id"},
                {"id": "A2", "childAlerts": 5},
            ],
            NOW,
        )

        assert [alert.alert_id for alert in alerts] == ["live-A1"]
        assert skipped == 2

    def test_live_rsz_items_are_flagged(self) -> None:
        """Test live-feed RSZ items are recognisable for filtering."""
        alerts, _ = normalize_live_alerts(
            [
                live_alert("R1", "Line 1: Reduced speed zone near Davisville", route="1", effect="SIGNIFICANT_DELAYS"),
                live_alert("A1", "504 King: Delays", route="504"),
            ],
            NOW,
        )

        assert [is_live_rsz(alert) for alert in alerts] == [True, False]


# ==================== Elevator alerts ====================


class TestNormalizeElevatorAlert:
    """Tests for normalize_elevator_alert."""

    def test_equipment_code_keys(self) -> None:
        """Test an elevator with a code gets exact keys and accessibility tier."""
        alert = normalize_elevator_alert(
            elevator_alert("E1", "Union: Elevator out of service between concourse and platform", elevator_code="12A")
        )

        assert alert.alert_id == "elev-12a"
        assert alert.thread_id == "thread-elev-12a"
        assert alert.source == AlertSource.ELEVATOR
        assert alert.categories == ["ACCESSIBILITY"]
        assert alert.severity == "accessibility"
        assert alert.used_fallback_key is False

    def test_fallback_key_from_station_and_clause(self) -> None:
        """Test Non-TTC elevators key on station and the between clause."""
        alert = normalize_elevator_alert(
            elevator_alert(
                "E2",
                "Bloor-Yonge Station: Elevator out of service between concourse and street",
                elevator_code="Non-TTC",
            )
        )

        assert alert.thread_id == "thread-elev-nonttc-blooryonge-concoursestreet"
        assert alert.used_fallback_key is True

    def test_station_name_field_wins(self) -> None:
        """Test stationName is preferred over the header prefix."""
        alert = normalize_elevator_alert(elevator_alert("E3", "Elevator out of service", stationName="Kipling"))

        assert alert.thread_id == "thread-elev-nonttc-kipling-unknown"

    def test_resumed_elevator_keeps_resumed_category(self) -> None:
        """Test a restored elevator is not forced back to ACCESSIBILITY."""
        alert = normalize_elevator_alert(elevator_alert("E4", "Union: Elevator service restored", elevator_code="12A"))

        assert alert.categories == ["SERVICE_RESUMED"]
        assert alert.thread_id == "thread-elev-12a"

    def test_empty_item_raises(self) -> None:
        """Test an item with neither text nor code is rejected."""
        with pytest.raises(ValueError, match="neither header text nor equipment code"):
            normalize_elevator_alert({"id": "E5"})

    def test_batch_counts_skipped(self) -> None:
        """Test the batch normalizer skips and counts bad items."""
        alerts, skipped = normalize_elevator_alerts(
            [{"id": "E5"}, elevator_alert("E1", "Union: Elevator out of service", elevator_code="12A")]
        )

        assert len(alerts) == 1
        assert skipped == 1


# ==================== Reduced speed zones ====================


class TestNormalizeRszZone:
    """Tests for normalize_rsz_zone."""

    def test_keys_and_text(self) -> None:
        """Test RSZ rows get line/station keys and a readable header."""
        alert = normalize_rsz_zone(make_zone())

        assert alert.alert_id == "rsz-line1-eglinton-davisville"
        assert alert.thread_id == "thread-rsz-line1-eglinton-davisville"
        assert alert.source == AlertSource.RSZ
        assert alert.header_text == "Line 1: Reduced speed zone Eglinton to Davisville"
        assert alert.affected_routes == ["Line 1"]
        assert alert.categories == ["RSZ"]
        assert alert.severity == "minor"
        assert alert.effect == "REDUCED_SPEED_ZONE"
        assert alert.description_text is not None
        assert "Reduced to 25 km/h from 80 km/h" in alert.description_text
        assert "Reason: Track maintenance" in alert.description_text

    def test_whitespace_changes_keep_keys(self) -> None:
        """Test re-scrapes with different whitespace map to the same keys."""
        first = normalize_rsz_zone(make_zone("Eglinton", "Davisville"))
        second = normalize_rsz_zone(make_zone("Eglinton ", "Davisville Station"))

        assert first.thread_id == second.thread_id

    def test_batch_drops_repeated_zones(self) -> None:
        """Test the same zone listed twice yields one alert."""
        alerts = normalize_rsz_zones([make_zone(), make_zone(), make_zone("Davisville", "St Clair")])

        assert [alert.alert_id for alert in alerts] == [
            "rsz-line1-eglinton-davisville",
            "rsz-line1-davisville-stclair",
        ]

"""Tests for Celery Beat schedule configuration.

Guards against the schedules module dropping out of the app's imports, which
leaves beat_schedule empty and silently stops every periodic pass.
"""

import pytest

from celery.schedules import schedule
from ttc_incidents.celery import schedules
from ttc_incidents.celery.app import celery_app
from ttc_incidents.core.config import settings

EXPECTED_ENTRIES = {
    "poll-upstream": ("poll_upstream", settings.POLL_INTERVAL_SECONDS),
    "verify-disruptions": ("verify_threads", settings.VERIFY_INTERVAL_SECONDS),
    "verify-accessibility": ("verify_threads", settings.VERIFY_INTERVAL_SECONDS),
    "verify-rsz": ("verify_threads", settings.VERIFY_INTERVAL_SECONDS),
    "check-alert-accuracy": ("check_alert_accuracy", settings.ACCURACY_INTERVAL_SECONDS),
    "sync-maintenance": ("sync_maintenance", settings.MAINTENANCE_INTERVAL_SECONDS),
    "run-retention-cleanup": ("run_retention_cleanup", settings.CLEANUP_INTERVAL_SECONDS),
}


class TestCelerySchedulesImport:
    """Test that schedules module is properly imported and configured."""

    def test_schedules_module_is_imported(self) -> None:
        """Test that schedules module exists in the celery package namespace."""
        assert schedules is not None
        assert hasattr(schedules, "celery_app")

    def test_beat_schedule_has_every_pass(self) -> None:
        """Test that beat_schedule holds exactly the expected entries."""
        assert set(celery_app.conf.beat_schedule) == set(EXPECTED_ENTRIES)


class TestScheduleConfiguration:
    """Test the configuration details of scheduled tasks."""

    @pytest.mark.parametrize(("entry", "expected"), EXPECTED_ENTRIES.items())
    def test_task_and_interval(self, entry: str, expected: tuple[str, int]) -> None:
        """Test each entry targets its task at its configured interval and expires after it."""
        task, interval = expected
        config = celery_app.conf.beat_schedule[entry]

        assert config["task"] == f"ttc_incidents.celery.tasks.{task}"
        assert isinstance(config["schedule"], schedule)
        assert config["schedule"].run_every.total_seconds() == interval
        assert config["options"]["expires"] == interval

    @pytest.mark.parametrize("target", ["disruptions", "accessibility", "rsz"])
    def test_verify_entries_pass_their_target(self, target: str) -> None:
        """Test each verifier entry carries its target as a kwarg."""
        assert celery_app.conf.beat_schedule[f"verify-{target}"]["kwargs"] == {"target": target}

    def test_scheduled_tasks_are_registered(self) -> None:
        """Test every scheduled task name resolves to a registered task."""
        for config in celery_app.conf.beat_schedule.values():
            assert config["task"] in celery_app.tasks

"""Celery Beat periodic task schedules.

- poll_upstream: ingestion pass (default every 60 s)
- verify_threads: one entry per reconciliation target (default every 5 min)
- check_alert_accuracy: accuracy monitor (default every 5 min)
- sync_maintenance: scheduled-closure scrape (default hourly)
- run_retention_cleanup: retention rules (default every 6 h)

Every task expires if not picked up within its own interval, so a backlog
never replays stale passes.
"""

from celery.schedules import schedule
from ttc_incidents.celery.app import celery_app
from ttc_incidents.core.config import settings
from ttc_incidents.schemas.admin import VerificationTarget


def _entry(task: str, interval: float, **kwargs: object) -> dict[str, object]:
    entry: dict[str, object] = {
        "task": f"ttc_incidents.celery.tasks.{task}",
        "schedule": schedule(run_every=interval),
        "options": {"expires": interval},
    }
    if kwargs:
        entry["kwargs"] = kwargs
    return entry


celery_app.conf.beat_schedule = {
    "poll-upstream": _entry("poll_upstream", settings.POLL_INTERVAL_SECONDS),
    **{
        f"verify-{target.value}": _entry("verify_threads", settings.VERIFY_INTERVAL_SECONDS, target=target.value)
        for target in VerificationTarget
    },
    "check-alert-accuracy": _entry("check_alert_accuracy", settings.ACCURACY_INTERVAL_SECONDS),
    "sync-maintenance": _entry("sync_maintenance", settings.MAINTENANCE_INTERVAL_SECONDS),
    "run-retention-cleanup": _entry("run_retention_cleanup", settings.CLEANUP_INTERVAL_SECONDS),
}

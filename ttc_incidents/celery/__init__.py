"""Celery application, schedules and tasks."""

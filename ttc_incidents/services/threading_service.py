"""Incident threading engine.

Maps a stream of normalized alerts onto persistent incident threads.

Per alert, in one unit of work:

1. An alert already linked to a thread is a repeat sighting: the thread's
   grace counter is reset. If upstream reworded the alert to "service
   resumed" under the same id, the thread is resolved; nothing else changes.
   If upstream reworded the location instead, so the alert's key now points
   at another thread, the alert is moved there and handled as below.
2. Otherwise the thread is found by its deterministic key. A "service
   resumed" alert whose own key has no thread falls back to the most recent
   visible thread of the same source whose base routes cover the alert's.
3. Missing threads are created with an INSERT ... ON CONFLICT DO NOTHING so
   concurrent passes converge on one row.
4. The alert is inserted (also ON CONFLICT DO NOTHING) after the thread
   exists, becomes the thread's latest alert, and the previous latest is
   cleared.
5. The thread's title, routes and categories follow the new alert; a resumed
   alert resolves it and a fresh disruption alert reopens it.

After the batch, visible threads of the source that were not sighted have
their ``missed_polls`` counter incremented and are hidden once it reaches the
grace period. Failed fetches skip this sweep.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, TypedDict

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ttc_incidents.core.config import settings
from ttc_incidents.core.database import dialect_insert
from ttc_incidents.core.telemetry import service_span
from ttc_incidents.helpers.categorization import AlertCategory
from ttc_incidents.helpers.route_extraction import base_route, routes_overlap
from ttc_incidents.models.incident import Alert, AlertSource, IncidentThread
from ttc_incidents.schemas.incidents import AlertFailure, IngestionResult, NormalizedAlert
from ttc_incidents.services.change_feed import ChangeEvent, ChangeFeed, ChangeType

logger = structlog.get_logger(__name__)

THREADS_TABLE = IncidentThread.__tablename__
ALERTS_TABLE = Alert.__tablename__


class AlertOutcome(TypedDict):
    """What processing one alert did to the store."""

    thread_id: str
    created_thread: bool
    created_alert: bool
    duplicate: bool
    resolved: bool
    reopened: bool
    unhidden: bool
    relinked: bool


# ==================== Pure Helper Functions ====================


def merge_routes(existing: Sequence[str], new: Sequence[str]) -> list[str]:
    """
    Union of two route lists, keeping first-seen order.

    Example:
        >>> merge_routes(["504"], ["504", "304"])
        ['504', '304']
    """
    merged = list(existing)
    merged.extend(route for route in new if route not in merged)
    return merged


def routes_cover(thread_routes: Sequence[str], alert_routes: Sequence[str]) -> bool:
    """
    Check every base route of the alert appears among the thread's base routes.

    Example:
        >>> routes_cover(["504", "304"], ["504A"])
        True
        >>> routes_cover(["504"], ["504", "505"])
        False
        >>> routes_cover(["504"], [])
        False
    """
    if not alert_routes:
        return False
    thread_bases = {base_route(route) for route in thread_routes}
    return all(base_route(route) in thread_bases for route in alert_routes)


def alert_record(alert: NormalizedAlert, thread_id: str) -> dict[str, Any]:
    """Change-feed payload for an inserted alert."""
    record = alert.model_dump(mode="json", exclude={"raw_data", "used_fallback_key"})
    record["thread_id"] = thread_id
    return record


# ==================== Threading Engine ====================


class IncidentThreadingEngine:
    """Upserts threads and alerts for normalized alert batches."""

    def __init__(
        self,
        db: AsyncSession,
        change_feed: ChangeFeed | None = None,
        grace_polls: int | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            db: Database session; the engine commits per alert
            change_feed: Optional live-update publisher
            grace_polls: Missed polls before a thread is hidden
                (defaults to settings.THREAD_HIDE_GRACE_POLLS)

        Raises:
            ValueError: If grace_polls is below 1
        """
        if grace_polls is None:
            grace_polls = settings.THREAD_HIDE_GRACE_POLLS
        if grace_polls < 1:
            msg = f"grace_polls must be at least 1, got {grace_polls}"
            raise ValueError(msg)
        self.db = db
        self.change_feed = change_feed
        self.grace_polls = grace_polls
        self._pending_events: list[ChangeEvent] = []

    # ---------- Batch entry point ----------

    async def process_batch(
        self,
        alerts: Sequence[NormalizedAlert],
        source: AlertSource,
        *,
        complete: bool = True,
    ) -> IngestionResult:
        """
        Process one source's alerts for a poll.

        A failed write for one alert is rolled back, logged with its keys and
        payload, and collected in the result; the rest of the batch continues.

        Args:
            alerts: Normalized alerts from ``source``
            source: Source the batch came from
            complete: False when the fetch failed; skips the absence sweep so an
                outage upstream never hides threads

        Returns:
            IngestionResult with per-outcome counts and failures
        """
        result = IngestionResult(source=source, fetched=complete, received=len(alerts))
        seen: set[str] = set()

        with service_span(
            "threading.process_batch",
            "threading-engine",
            source=source.value,
            alert_count=len(alerts),
        ) as span:
            for alert in alerts:
                if alert.used_fallback_key:
                    result.fallback_keys += 1
                try:
                    outcome = await self.process_alert(alert)
                    await self.db.commit()
                except (SQLAlchemyError, LookupError) as exc:
                    await self.db.rollback()
                    self._pending_events.clear()
                    # Count as sighted so a write failure cannot push a live thread toward hiding
                    seen.add(alert.thread_id)
                    result.failures.append(
                        AlertFailure(alert_id=alert.alert_id, thread_id=alert.thread_id, error=str(exc))
                    )
                    logger.error(
                        "alert_upsert_failed",
                        alert_id=alert.alert_id,
                        thread_id=alert.thread_id,
                        source=source.value,
                        error=str(exc),
                        payload=alert.raw_data,
                    )
                    continue

                await self.flush_events()
                seen.add(outcome["thread_id"])
                result.created_threads += outcome["created_thread"]
                result.created_alerts += outcome["created_alert"]
                result.duplicate_alerts += outcome["duplicate"]
                result.resolved_threads += outcome["resolved"]
                result.reopened_threads += outcome["reopened"]
                result.unhidden_threads += outcome["unhidden"]
                result.relinked_alerts += outcome["relinked"]

            if complete:
                result.hidden_threads = await self.sweep_absent(source, seen)

            span.set_attribute("threading.created_threads", result.created_threads)
            span.set_attribute("threading.created_alerts", result.created_alerts)
            span.set_attribute("threading.failures", len(result.failures))
            span.set_attribute("threading.fallback_keys", result.fallback_keys)
            span.set_attribute("threading.hidden_threads", result.hidden_threads)

        logger.info(
            "threading_batch_processed",
            source=source.value,
            received=result.received,
            created_threads=result.created_threads,
            created_alerts=result.created_alerts,
            duplicates=result.duplicate_alerts,
            resolved=result.resolved_threads,
            hidden=result.hidden_threads,
            failures=len(result.failures),
            fallback_keys=result.fallback_keys,
        )
        return result

    # ---------- Single alert ----------

    async def process_alert(self, alert: NormalizedAlert) -> AlertOutcome:
        """
        Apply one alert without committing.

        Raises:
            SQLAlchemyError: On any store failure; the caller rolls back
            LookupError: If the thread row is missing right after its upsert
        """
        now = datetime.now(UTC)
        outcome = AlertOutcome(
            thread_id=alert.thread_id,
            created_thread=False,
            created_alert=False,
            duplicate=False,
            resolved=False,
            reopened=False,
            unhidden=False,
            relinked=False,
        )

        stored = await self._stored_alert(alert.alert_id)
        moved_from: str | None = None
        if stored is not None and stored[0] is not None and stored[0] != alert.thread_id and not alert.is_resumed:
            # Upstream reworded the location under the same id; the alert follows its new key
            moved_from = stored[0]
        elif stored is not None and stored[0] is not None:
            thread = await self.get_thread(stored[0])
            if thread is not None:
                outcome["thread_id"] = thread.thread_id
                outcome["duplicate"] = True
                reworded = AlertCategory.SERVICE_RESUMED.value not in stored[1]
                await self._touch(thread, alert, outcome, reworded_to_resumed=reworded)
                return outcome

        thread = await self.get_thread(alert.thread_id)
        if thread is None and alert.is_resumed:
            thread = await self.find_thread_to_resolve(alert)
        if thread is None:
            outcome["created_thread"] = await self.ensure_thread(alert, now)
            thread = await self.get_thread(alert.thread_id)
            if thread is None:
                msg = f"thread {alert.thread_id} missing after upsert"
                raise LookupError(msg)
        outcome["thread_id"] = thread.thread_id

        if moved_from is not None:
            linked = await self.move_alert(alert.alert_id, moved_from, thread.thread_id, now)
            outcome["relinked"] = linked
        else:
            linked = await self.insert_alert(alert, thread.thread_id)
        if not linked:
            # Another writer inserted it first; treat as a sighting
            outcome["duplicate"] = True
            await self._touch(thread, alert, outcome)
            return outcome

        outcome["created_alert"] = moved_from is None
        await self.mark_latest(thread.thread_id, alert.alert_id)

        changes: dict[str, Any] = {"updated_at": now}
        if thread.missed_polls:
            changes["missed_polls"] = 0
        if thread.is_hidden and not alert.is_resumed:
            changes["is_hidden"] = False
            outcome["unhidden"] = True

        merged_routes = merge_routes(thread.affected_routes, alert.affected_routes)
        if merged_routes != thread.affected_routes:
            changes["affected_routes"] = merged_routes

        if alert.is_resumed:
            if AlertCategory.SERVICE_RESUMED.value not in thread.categories:
                changes["categories"] = [*thread.categories, AlertCategory.SERVICE_RESUMED.value]
            route_matches = not alert.affected_routes or routes_overlap(alert.affected_routes, thread.affected_routes)
            if not thread.is_resolved and route_matches:
                changes["is_resolved"] = True
                changes["resolved_at"] = now
                outcome["resolved"] = True
        elif not outcome["created_thread"]:
            if alert.header_text:
                changes["title"] = alert.header_text
            changes["categories"] = alert.categories
            changes["severity"] = alert.severity
            if thread.is_resolved:
                changes["is_resolved"] = False
                changes["resolved_at"] = None
                outcome["reopened"] = True

        await self.update_thread(thread.thread_id, changes)

        if outcome["resolved"]:
            logger.info("thread_resolved", thread_id=thread.thread_id, alert_id=alert.alert_id)
        if outcome["reopened"]:
            logger.info("thread_reopened", thread_id=thread.thread_id, alert_id=alert.alert_id)
        return outcome

    # ---------- Store primitives ----------

    async def get_thread(self, thread_id: str) -> IncidentThread | None:
        """Load a thread, refreshing any stale copy in the identity map."""
        return await self.db.get(IncidentThread, thread_id, populate_existing=True)

    async def ensure_thread(self, alert: NormalizedAlert, now: datetime | None = None) -> bool:
        """
        Create the alert's thread if it does not exist.

        Returns:
            True if this call created the row
        """
        now = now or datetime.now(UTC)
        stmt = (
            dialect_insert(self.db, IncidentThread.__table__)
            .values(
                thread_id=alert.thread_id,
                source=alert.source,
                title=alert.header_text,
                affected_routes=alert.affected_routes,
                categories=alert.categories,
                severity=alert.severity,
                is_resolved=alert.is_resumed,
                resolved_at=now if alert.is_resumed else None,
                is_hidden=False,
                missed_polls=0,
            )
            .on_conflict_do_nothing(index_elements=["thread_id"])
        )
        created = (await self.db.execute(stmt)).rowcount == 1
        if created:
            self._pending_events.append(
                ChangeEvent(
                    table=THREADS_TABLE,
                    event=ChangeType.INSERT,
                    key=alert.thread_id,
                    record={
                        "thread_id": alert.thread_id,
                        "source": alert.source.value,
                        "title": alert.header_text,
                        "affected_routes": alert.affected_routes,
                        "categories": alert.categories,
                        "is_resolved": alert.is_resumed,
                        "is_hidden": False,
                    },
                )
            )
        return created

    async def insert_alert(self, alert: NormalizedAlert, thread_id: str) -> bool:
        """
        Insert the alert linked to ``thread_id``, or relink an orphaned copy.

        Returns:
            True if the alert is now newly linked to the thread
        """
        stmt = (
            dialect_insert(self.db, Alert.__table__)
            .values(
                alert_id=alert.alert_id,
                thread_id=thread_id,
                source=alert.source,
                header_text=alert.header_text,
                description_text=alert.description_text,
                effect=alert.effect,
                cause=alert.cause,
                categories=alert.categories,
                affected_routes=alert.affected_routes,
                severity=alert.severity,
                is_latest=True,
                active_period_start=alert.active_period_start,
                active_period_end=alert.active_period_end,
                raw_data=alert.raw_data,
            )
            .on_conflict_do_nothing(index_elements=["alert_id"])
        )
        if (await self.db.execute(stmt)).rowcount == 1:
            self._pending_events.append(
                ChangeEvent(
                    table=ALERTS_TABLE,
                    event=ChangeType.INSERT,
                    key=alert.alert_id,
                    record=alert_record(alert, thread_id),
                )
            )
            return True

        # Alerts outlive deleted threads with thread_id NULL; re-attach on sighting
        relink = (
            update(Alert)
            .where(Alert.alert_id == alert.alert_id, Alert.thread_id.is_(None))
            .values(thread_id=thread_id, is_latest=True)
            .execution_options(synchronize_session=False)
        )
        if (await self.db.execute(relink)).rowcount == 1:
            self._pending_events.append(
                ChangeEvent(
                    table=ALERTS_TABLE,
                    event=ChangeType.UPDATE,
                    key=alert.alert_id,
                    record={"thread_id": thread_id, "is_latest": True},
                )
            )
            return True
        return False

    async def move_alert(
        self,
        alert_id: str,
        from_thread_id: str,
        to_thread_id: str,
        now: datetime | None = None,
    ) -> bool:
        """
        Relink a stored alert to another thread as its latest alert.

        The old thread's newest remaining alert becomes its latest; a thread
        left with no alerts is hidden and resolved.

        Returns:
            True if the alert was still linked to ``from_thread_id``
        """
        stmt = (
            update(Alert)
            .where(Alert.alert_id == alert_id, Alert.thread_id == from_thread_id)
            .values(thread_id=to_thread_id, is_latest=True)
            .execution_options(synchronize_session=False)
        )
        if (await self.db.execute(stmt)).rowcount != 1:
            return False
        self._pending_events.append(
            ChangeEvent(
                table=ALERTS_TABLE,
                event=ChangeType.UPDATE,
                key=alert_id,
                record={"thread_id": to_thread_id, "is_latest": True},
            )
        )
        logger.info("alert_relinked", alert_id=alert_id, from_thread_id=from_thread_id, thread_id=to_thread_id)
        await self._promote_latest(from_thread_id, now or datetime.now(UTC))
        return True

    async def attach_alert(self, alert: NormalizedAlert) -> bool:
        """
        Store the alert on its own thread, moving it off any other thread.

        Returns:
            True if the alert is newly linked to ``alert.thread_id``
        """
        stored = await self._stored_alert(alert.alert_id)
        if stored is not None and stored[0] is not None and stored[0] != alert.thread_id:
            linked = await self.move_alert(alert.alert_id, stored[0], alert.thread_id)
        else:
            linked = await self.insert_alert(alert, alert.thread_id)
        if linked:
            await self.mark_latest(alert.thread_id, alert.alert_id)
        return linked

    async def find_thread_to_resolve(self, alert: NormalizedAlert) -> IncidentThread | None:
        """
        Find the thread a "service resumed" alert refers to.

        Candidates are visible threads of the same source whose base routes
        cover every route in the alert. Open threads win over already-resolved
        ones, then the most recently updated.
        """
        if not alert.affected_routes:
            return None
        stmt = (
            select(IncidentThread)
            .where(IncidentThread.source == alert.source, IncidentThread.is_hidden.is_(False))
            .order_by(IncidentThread.updated_at.desc())
            .execution_options(populate_existing=True)
        )
        candidates = [
            thread
            for thread in (await self.db.execute(stmt)).scalars().all()
            if routes_cover(thread.affected_routes, alert.affected_routes)
        ]
        if not candidates:
            return None
        open_threads = [thread for thread in candidates if not thread.is_resolved]
        return (open_threads or candidates)[0]

    async def sweep_absent(self, source: AlertSource, seen: set[str]) -> int:
        """
        Advance the grace counter of visible threads not sighted this poll.

        Threads reaching the grace period are hidden, and resolved if they were
        still open.

        Returns:
            Number of threads hidden
        """
        now = datetime.now(UTC)
        stmt = (
            select(IncidentThread)
            .where(IncidentThread.source == source, IncidentThread.is_hidden.is_(False))
            .execution_options(populate_existing=True)
        )
        hidden = 0
        for thread in (await self.db.execute(stmt)).scalars().all():
            if thread.thread_id in seen:
                continue
            missed = thread.missed_polls + 1
            changes: dict[str, Any] = {"missed_polls": missed}
            if missed >= self.grace_polls:
                changes["is_hidden"] = True
                if not thread.is_resolved:
                    changes["is_resolved"] = True
                    changes["resolved_at"] = now
                hidden += 1
                logger.info(
                    "thread_hidden_after_grace",
                    thread_id=thread.thread_id,
                    source=source.value,
                    missed_polls=missed,
                    grace_polls=self.grace_polls,
                )
            await self.update_thread(thread.thread_id, changes)
        await self.db.commit()
        await self.flush_events()
        return hidden

    # ---------- Internals ----------

    async def _stored_alert(self, alert_id: str) -> tuple[str | None, list[str]] | None:
        """(thread_id, categories) of an already stored alert, or None."""
        result = await self.db.execute(select(Alert.thread_id, Alert.categories).where(Alert.alert_id == alert_id))
        row = result.one_or_none()
        return None if row is None else (row.thread_id, list(row.categories or []))

    async def _touch(
        self,
        thread: IncidentThread,
        alert: NormalizedAlert,
        outcome: AlertOutcome,
        *,
        reworded_to_resumed: bool = False,
    ) -> None:
        """
        Record a repeat sighting of an alert id.

        Upstream sometimes rewrites an alert in place ("No service" becomes
        "Regular service resumed") without issuing a new id. The stored alert
        stays as first seen, but the thread is resolved as if a new resumed
        alert had arrived.
        """
        changes: dict[str, Any] = {}
        if thread.missed_polls:
            changes["missed_polls"] = 0
        # A "resumed" sighting never brings a hidden incident back
        if thread.is_hidden and not alert.is_resumed:
            changes["is_hidden"] = False
            outcome["unhidden"] = True
        if alert.is_resumed:
            route_matches = not alert.affected_routes or routes_overlap(alert.affected_routes, thread.affected_routes)
            if reworded_to_resumed and not thread.is_resolved and route_matches:
                changes["is_resolved"] = True
                changes["resolved_at"] = datetime.now(UTC)
                if AlertCategory.SERVICE_RESUMED.value not in thread.categories:
                    changes["categories"] = [*thread.categories, AlertCategory.SERVICE_RESUMED.value]
                outcome["resolved"] = True
                logger.info("thread_resolved", thread_id=thread.thread_id, alert_id=alert.alert_id, reworded=True)
        elif thread.thread_id == alert.thread_id and not thread.is_resolved and alert.categories != thread.categories:
            # Scheduled alerts move in and out of their windows without a new alert id
            changes["categories"] = alert.categories
        await self.update_thread(thread.thread_id, changes)

    async def _promote_latest(self, thread_id: str, now: datetime) -> None:
        """Hand the latest flag to the thread's newest alert, or retire an empty thread."""
        newest = (
            await self.db.execute(
                select(Alert.alert_id)
                .where(Alert.thread_id == thread_id)
                .order_by(Alert.created_at.desc(), Alert.alert_id.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        if newest is not None:
            await self.db.execute(
                update(Alert)
                .where(Alert.alert_id == newest)
                .values(is_latest=True)
                .execution_options(synchronize_session=False)
            )
            await self.mark_latest(thread_id, newest)
            return

        thread = await self.get_thread(thread_id)
        if thread is None or thread.is_hidden:
            return
        changes: dict[str, Any] = {"is_hidden": True}
        if not thread.is_resolved:
            changes["is_resolved"] = True
            changes["resolved_at"] = now
        await self.update_thread(thread_id, changes)
        logger.info("thread_emptied_by_relink", thread_id=thread_id)

    async def mark_latest(self, thread_id: str, alert_id: str) -> None:
        stmt = (
            update(Alert)
            .where(Alert.thread_id == thread_id, Alert.alert_id != alert_id, Alert.is_latest.is_(True))
            .values(is_latest=False)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def update_thread(self, thread_id: str, changes: dict[str, Any]) -> None:
        if not changes:
            return
        stmt = (
            update(IncidentThread)
            .where(IncidentThread.thread_id == thread_id)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)
        self._pending_events.append(
            ChangeEvent(
                table=THREADS_TABLE,
                event=ChangeType.UPDATE,
                key=thread_id,
                record={"thread_id": thread_id, **changes},
            )
        )

    async def flush_events(self) -> None:
        events, self._pending_events = self._pending_events, []
        if self.change_feed is not None and events:
            await self.change_feed.publish_many(events)

"""Read API for alerts, incident threads and scheduled closures."""

from collections.abc import Sequence
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ttc_incidents.core.database import get_db
from ttc_incidents.helpers.display import group_base_routes, group_threads_by_route_overlap, is_displayable_thread
from ttc_incidents.helpers.route_extraction import base_route
from ttc_incidents.models.incident import Alert, IncidentThread
from ttc_incidents.schemas.admin import MaintenanceResponse
from ttc_incidents.schemas.incidents import (
    AlertResponse,
    ThreadDetailResponse,
    ThreadGroupResponse,
    ThreadResponse,
)
from ttc_incidents.services.maintenance_service import MaintenanceService

router = APIRouter(tags=["incidents"])
logger = structlog.get_logger(__name__)

MAX_LIMIT = 500


# ==================== Helper Functions ====================


def _matches_route(thread: IncidentThread, route: str) -> bool:
    wanted = base_route(route).lower()
    return any(base_route(candidate).lower() == wanted for candidate in thread.affected_routes)


def _thread_responses(threads: Sequence[IncidentThread]) -> list[ThreadResponse]:
    return [ThreadResponse.model_validate(thread) for thread in threads]


# ==================== API Endpoints ====================


@router.get("/alerts", response_model=list[AlertResponse])
async def list_alerts(
    thread_id: str | None = Query(None, description="Only alerts of this thread"),
    effect: str | None = Query(None, description="Upstream effect code, e.g. NO_SERVICE"),
    is_latest: bool | None = Query(None),
    created_after: datetime | None = Query(None),
    created_before: datetime | None = Query(None),
    limit: int = Query(100, ge=1, le=MAX_LIMIT),
    db: AsyncSession = Depends(get_db),
) -> list[AlertResponse]:
    """
    List stored alerts, newest first.

    Args:
        thread_id: Filter by thread
        effect: Filter by effect code (case-insensitive)
        is_latest: Filter by the latest-alert flag
        created_after: Only alerts created at or after this time
        created_before: Only alerts created before this time
        limit: Maximum number of alerts
        db: Database session

    Returns:
        Matching alerts
    """
    stmt = select(Alert).order_by(Alert.created_at.desc()).limit(limit)
    if thread_id is not None:
        stmt = stmt.where(Alert.thread_id == thread_id)
    if effect is not None:
        stmt = stmt.where(Alert.effect == effect.upper())
    if is_latest is not None:
        stmt = stmt.where(Alert.is_latest.is_(is_latest))
    if created_after is not None:
        stmt = stmt.where(Alert.created_at >= created_after)
    if created_before is not None:
        stmt = stmt.where(Alert.created_at < created_before)

    alerts = (await db.execute(stmt)).scalars().all()
    return [AlertResponse.model_validate(alert) for alert in alerts]


@router.get("/threads", response_model=list[ThreadResponse])
async def list_threads(
    is_resolved: bool | None = Query(None),
    is_hidden: bool | None = Query(None),
    route: str | None = Query(None, description="Route; branches match their base route (37A matches 37)"),
    category: str | None = Query(None, description="Category tag, e.g. DELAY"),
    limit: int = Query(100, ge=1, le=MAX_LIMIT),
    db: AsyncSession = Depends(get_db),
) -> list[ThreadResponse]:
    """
    List incident threads, most recently updated first.

    Route and category filters are applied to the JSON lists in Python so
    they behave the same on every database backend.
    """
    stmt = select(IncidentThread).order_by(IncidentThread.updated_at.desc())
    if is_resolved is not None:
        stmt = stmt.where(IncidentThread.is_resolved.is_(is_resolved))
    if is_hidden is not None:
        stmt = stmt.where(IncidentThread.is_hidden.is_(is_hidden))

    threads = (await db.execute(stmt)).scalars().all()
    if route:
        threads = [thread for thread in threads if _matches_route(thread, route)]
    if category:
        threads = [thread for thread in threads if category.upper() in thread.categories]
    return _thread_responses(threads[:limit])


@router.get("/threads/active", response_model=list[ThreadResponse] | list[ThreadGroupResponse])
async def list_active_threads(
    grouped: bool = Query(False, description="Group threads whose base routes overlap"),
    db: AsyncSession = Depends(get_db),
) -> list[ThreadResponse] | list[ThreadGroupResponse]:
    """
    Live-disruption view.

    Visible threads minus anything planned/scheduled or malformed. Resolved
    threads stay in the view until they are hidden. With ``grouped=true``
    threads sharing a base route are returned together; rows are not merged.
    """
    stmt = (
        select(IncidentThread)
        .where(IncidentThread.is_hidden.is_(False))
        .order_by(IncidentThread.updated_at.desc())
    )
    threads = [thread for thread in (await db.execute(stmt)).scalars().all() if is_displayable_thread(thread)]
    if not grouped:
        return _thread_responses(threads)
    return [
        ThreadGroupResponse(base_routes=group_base_routes(group), threads=_thread_responses(group))
        for group in group_threads_by_route_overlap(threads)
    ]


@router.get("/threads/{thread_id}", response_model=ThreadDetailResponse)
async def get_thread(
    thread_id: str,
    db: AsyncSession = Depends(get_db),
) -> ThreadDetailResponse:
    """
    Get one thread with its alerts, oldest first.

    Raises:
        HTTPException: 404 if the thread does not exist
    """
    stmt = (
        select(IncidentThread)
        .where(IncidentThread.thread_id == thread_id)
        .options(selectinload(IncidentThread.alerts))
    )
    thread = (await db.execute(stmt)).scalar_one_or_none()
    if thread is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Thread {thread_id} not found")
    return ThreadDetailResponse.model_validate(thread)


@router.get("/maintenance", response_model=list[MaintenanceResponse])
async def list_maintenance(db: AsyncSession = Depends(get_db)) -> list[MaintenanceResponse]:
    """Active scheduled closures, soonest first."""
    records = await MaintenanceService(db).list_active()
    return [MaintenanceResponse.model_validate(record) for record in records]

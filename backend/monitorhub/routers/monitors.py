"""Monitor CRUD API endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..database import get_db
from ..models import Monitor, HealthLog
from ..schemas.monitor import (
    MonitorCreate,
    MonitorUpdate,
    MonitorResponse,
    HealthLogResponse,
    HealthLogPage,
)
from ..utils.db_utils import retry_on_lock

router = APIRouter(prefix="/api/monitors", tags=["monitors"])


async def _get_monitor_or_404(db: AsyncSession, monitor_id: int) -> Monitor:
    monitor = await crud.get_monitor(db, monitor_id)
    if not monitor:
        raise HTTPException(status_code=404, detail="Monitor not found")
    return monitor


@router.get("", response_model=List[MonitorResponse])
async def list_monitors(
    user_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
):
    """List monitors, optionally for one owner."""
    query = select(Monitor).order_by(Monitor.name)
    if user_id is not None:
        query = query.where(Monitor.user_id == user_id)
    result = await db.execute(query)
    return result.scalars().all()


@router.post("", response_model=MonitorResponse, status_code=201)
async def create_monitor(monitor: MonitorCreate, db: AsyncSession = Depends(get_db)):
    """Register a new monitor. It is probed from the next sweep on."""
    if not await crud.get_user(db, monitor.user_id):
        raise HTTPException(status_code=400, detail="User not found")

    db_monitor = Monitor(
        user_id=monitor.user_id,
        name=monitor.name,
        url=monitor.url,
        interval=monitor.interval,
        is_active=monitor.is_active,
    )
    db.add(db_monitor)

    # Use retry logic for commit to handle database lock contention
    async def do_commit():
        await db.commit()

    await retry_on_lock(do_commit)
    await db.refresh(db_monitor)
    return db_monitor


@router.get("/{monitor_id}", response_model=MonitorResponse)
async def get_monitor(monitor_id: int, db: AsyncSession = Depends(get_db)):
    """Get a specific monitor by ID."""
    return await _get_monitor_or_404(db, monitor_id)


@router.put("/{monitor_id}", response_model=MonitorResponse)
async def update_monitor(
    monitor_id: int,
    update: MonitorUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update user-editable fields of a monitor."""
    monitor = await _get_monitor_or_404(db, monitor_id)

    if update.name is not None:
        monitor.name = update.name
    if update.url is not None:
        monitor.url = update.url
    if update.interval is not None:
        monitor.interval = update.interval
    if update.is_active is not None:
        monitor.is_active = update.is_active

    async def do_commit():
        await db.commit()

    await retry_on_lock(do_commit)
    await db.refresh(monitor)
    return monitor


@router.delete("/{monitor_id}", status_code=204)
async def delete_monitor(monitor_id: int, db: AsyncSession = Depends(get_db)):
    """Delete a monitor with its health logs, incidents and alerts."""
    monitor = await _get_monitor_or_404(db, monitor_id)

    await db.delete(monitor)

    async def do_commit():
        await db.commit()

    await retry_on_lock(do_commit)


@router.get("/{monitor_id}/logs", response_model=HealthLogPage)
async def get_monitor_logs(
    monitor_id: int,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Get paginated health logs for a monitor, newest first."""
    await _get_monitor_or_404(db, monitor_id)

    count_result = await db.execute(
        select(func.count(HealthLog.id)).where(HealthLog.monitor_id == monitor_id)
    )
    total = count_result.scalar() or 0

    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    offset = (page - 1) * per_page

    logs_result = await db.execute(
        select(HealthLog)
        .where(HealthLog.monitor_id == monitor_id)
        .order_by(HealthLog.checked_at.desc(), HealthLog.id.desc())
        .offset(offset)
        .limit(per_page)
    )

    return HealthLogPage(
        items=[HealthLogResponse.model_validate(log) for log in logs_result.scalars().all()],
        total=total,
        page=page,
        per_page=per_page,
        total_pages=total_pages,
    )

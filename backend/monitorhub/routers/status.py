"""Status overview API for dashboard."""
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..database import get_db
from ..dependencies import get_services
from ..models import Monitor, MonitorState, HealthLog
from ..schemas.status import StatusOverview, MonitorSummary
from ..services.factory import MonitoringServices
from ..utils.db_utils import utcnow

router = APIRouter(prefix="/api/status", tags=["status"])


def overview_cache_key(user_id: Optional[int]) -> str:
    return f"dashboard:{user_id if user_id is not None else 'all'}"


@router.get("/overview", response_model=StatusOverview)
async def get_status_overview(
    user_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
    services: MonitoringServices = Depends(get_services),
):
    """Get dashboard KPIs. Served from the result cache for a short window."""
    cache_key = overview_cache_key(user_id)
    cached = await services.cache.get_json(cache_key)
    if cached:
        return StatusOverview(**cached)

    query = select(Monitor).order_by(Monitor.name)
    if user_id is not None:
        query = query.where(Monitor.user_id == user_id)
    result = await db.execute(query)
    monitors = result.scalars().all()
    monitor_ids = [m.id for m in monitors]

    counts = {state.value: 0 for state in MonitorState}
    for monitor in monitors:
        if monitor.status in counts:
            counts[monitor.status] += 1

    cutoff_24h = utcnow() - timedelta(hours=24)

    # Per-monitor 24h (checks, ups) in one grouped query
    uptime_rows = await db.execute(
        select(
            HealthLog.monitor_id,
            func.count(HealthLog.id),
            func.sum(case((HealthLog.is_up.is_(True), 1), else_=0)),
        )
        .where(HealthLog.monitor_id.in_(monitor_ids), HealthLog.checked_at >= cutoff_24h)
        .group_by(HealthLog.monitor_id)
    )
    uptime_by_monitor = {row[0]: (row[1], row[2] or 0) for row in uptime_rows.all()}

    avg_result = await db.execute(
        select(func.avg(HealthLog.response_time)).where(HealthLog.monitor_id.in_(monitor_ids))
    )
    avg_response = avg_result.scalar()

    total_checks = sum(checks for checks, _ in uptime_by_monitor.values())
    total_up = sum(ups for _, ups in uptime_by_monitor.values())
    overall_uptime = (total_up / total_checks) * 100 if total_checks else 100.0

    summaries = []
    for monitor in monitors:
        checks, ups = uptime_by_monitor.get(monitor.id, (0, 0))
        summaries.append(MonitorSummary(
            id=monitor.id,
            name=monitor.name,
            url=monitor.url,
            status=monitor.status,
            uptime_24h=round((ups / checks) * 100, 2) if checks else None,
            last_check=monitor.last_checked_at.isoformat() if monitor.last_checked_at else None,
            last_response_time=monitor.last_response_time,
        ))

    stats = await crud.get_incident_stats(db, user_id)

    overview = StatusOverview(
        total_monitors=len(monitors),
        active_monitors=sum(1 for m in monitors if m.is_active),
        monitors_up=counts[MonitorState.UP.value],
        monitors_down=counts[MonitorState.DOWN.value],
        monitors_slow=counts[MonitorState.SLOW.value],
        ongoing_incidents=stats["ongoing_count"],
        incidents_24h=stats["last_24h_count"],
        avg_response_time_ms=int(avg_response) if avg_response else 0,
        overall_uptime_24h=round(overall_uptime, 2),
        monitors=summaries,
    )

    await services.cache.set_json(cache_key, overview.model_dump())
    return overview

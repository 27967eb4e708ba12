"""Store operations used by the sweep, the incident service and the API.

Functions take an AsyncSession and leave commit to the caller.
"""
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from .models import User, Monitor, HealthLog, Incident, IncidentStatus
from .utils.db_utils import utcnow


# Monitors

async def list_active_monitors(session: AsyncSession) -> List[Monitor]:
    result = await session.execute(
        select(Monitor).where(Monitor.is_active.is_(True)).order_by(Monitor.id)
    )
    return list(result.scalars().all())


async def get_monitor(session: AsyncSession, monitor_id: int) -> Optional[Monitor]:
    result = await session.execute(select(Monitor).where(Monitor.id == monitor_id))
    return result.scalar_one_or_none()


async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def update_monitor_status(
    session: AsyncSession,
    monitor_id: int,
    status: str,
    checked_at: datetime,
    is_up: bool,
    status_code: Optional[int] = None,
    response_time: Optional[int] = None,
):
    """Write the sweep-owned columns only.

    consecutive_failures is reset or incremented in SQL so the counter never
    depends on a stale snapshot.
    """
    await session.execute(
        update(Monitor)
        .where(Monitor.id == monitor_id)
        .values(
            status=status,
            last_checked_at=checked_at,
            last_status_code=status_code,
            last_response_time=response_time,
            consecutive_failures=0 if is_up else Monitor.consecutive_failures + 1,
        )
    )


# Health logs

async def append_health_log(
    session: AsyncSession,
    monitor_id: int,
    is_up: bool,
    checked_at: datetime,
    status_code: Optional[int] = None,
    response_time: Optional[int] = None,
    error_message: Optional[str] = None,
) -> HealthLog:
    entry = HealthLog(
        monitor_id=monitor_id,
        is_up=is_up,
        checked_at=checked_at,
        status_code=status_code,
        response_time=response_time,
        error_message=error_message,
    )
    session.add(entry)
    await session.flush()
    return entry


async def recent_health_logs(session: AsyncSession, monitor_id: int, limit: int = 3) -> List[HealthLog]:
    """Newest first. Ties on checked_at fall back to insertion order."""
    result = await session.execute(
        select(HealthLog)
        .where(HealthLog.monitor_id == monitor_id)
        .order_by(HealthLog.checked_at.desc(), HealthLog.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def last_failed_health_log(session: AsyncSession, monitor_id: int) -> Optional[HealthLog]:
    result = await session.execute(
        select(HealthLog)
        .where(HealthLog.monitor_id == monitor_id, HealthLog.is_up.is_(False))
        .order_by(HealthLog.checked_at.desc(), HealthLog.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def delete_health_logs_before(session: AsyncSession, cutoff: datetime) -> int:
    result = await session.execute(delete(HealthLog).where(HealthLog.checked_at < cutoff))
    return result.rowcount or 0


# Incidents

async def find_open_incident(session: AsyncSession, monitor_id: int) -> Optional[Incident]:
    result = await session.execute(
        select(Incident).where(
            Incident.monitor_id == monitor_id,
            Incident.status == IncidentStatus.ONGOING.value,
        )
    )
    return result.scalar_one_or_none()


async def get_incident(session: AsyncSession, incident_id: int) -> Optional[Incident]:
    result = await session.execute(select(Incident).where(Incident.id == incident_id))
    return result.scalar_one_or_none()


async def create_incident(
    session: AsyncSession,
    monitor_id: int,
    user_id: int,
    started_at: datetime,
    failure_count: int = 2,
) -> Incident:
    incident = Incident(
        monitor_id=monitor_id,
        user_id=user_id,
        started_at=started_at,
        status=IncidentStatus.ONGOING.value,
        failure_count=failure_count,
    )
    session.add(incident)
    await session.flush()
    return incident


async def update_incident(session: AsyncSession, incident_id: int, **fields) -> bool:
    """Update if the row still exists. Returns False when it is gone."""
    result = await session.execute(
        update(Incident).where(Incident.id == incident_id).values(**fields)
    )
    return (result.rowcount or 0) > 0


async def increment_incident_failures(session: AsyncSession, incident_id: int):
    await session.execute(
        update(Incident)
        .where(Incident.id == incident_id)
        .values(failure_count=Incident.failure_count + 1)
    )


async def mark_incident_resolved(
    session: AsyncSession,
    incident_id: int,
    resolved_at: datetime,
    duration_seconds: int,
) -> bool:
    """ONGOING -> RESOLVED. Only one caller can win the conditional update."""
    result = await session.execute(
        update(Incident)
        .where(
            Incident.id == incident_id,
            Incident.status == IncidentStatus.ONGOING.value,
        )
        .values(
            status=IncidentStatus.RESOLVED.value,
            resolved_at=resolved_at,
            duration_seconds=duration_seconds,
        )
    )
    return (result.rowcount or 0) == 1


async def count_incidents_since(
    session: AsyncSession,
    monitor_id: int,
    since: datetime,
) -> int:
    query = select(func.count(Incident.id)).where(
        Incident.monitor_id == monitor_id,
        Incident.started_at >= since,
    )
    result = await session.execute(query)
    return result.scalar_one()


async def list_incidents(
    session: AsyncSession,
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    monitor_id: Optional[int] = None,
    limit: int = 50,
    skip: int = 0,
) -> Tuple[List[Incident], int]:
    """Incidents newest first plus the total matching count."""
    filters = []
    if status:
        filters.append(Incident.status == status)
    if user_id is not None:
        filters.append(Incident.user_id == user_id)
    if monitor_id is not None:
        filters.append(Incident.monitor_id == monitor_id)

    result = await session.execute(
        select(Incident)
        .where(*filters)
        .order_by(Incident.started_at.desc(), Incident.id.desc())
        .offset(skip)
        .limit(limit)
    )
    total = await session.execute(select(func.count(Incident.id)).where(*filters))
    return list(result.scalars().all()), total.scalar_one()


async def get_ongoing_incidents(session: AsyncSession, user_id: int) -> List[Incident]:
    incidents, _ = await list_incidents(
        session, status=IncidentStatus.ONGOING.value, user_id=user_id, limit=1000
    )
    return incidents


async def get_recent_incidents(session: AsyncSession, user_id: int, hours: int = 24) -> List[Incident]:
    since = utcnow() - timedelta(hours=hours)
    result = await session.execute(
        select(Incident)
        .where(Incident.user_id == user_id, Incident.started_at >= since)
        .order_by(Incident.started_at.desc())
    )
    return list(result.scalars().all())


async def get_incident_stats(session: AsyncSession, user_id: Optional[int] = None) -> dict:
    """Counts of ongoing incidents and incidents started in the last 24 hours."""
    since = utcnow() - timedelta(hours=24)
    ongoing_query = select(func.count(Incident.id)).where(Incident.status == IncidentStatus.ONGOING.value)
    recent_query = select(func.count(Incident.id)).where(Incident.started_at >= since)
    if user_id is not None:
        ongoing_query = ongoing_query.where(Incident.user_id == user_id)
        recent_query = recent_query.where(Incident.user_id == user_id)

    ongoing = await session.execute(ongoing_query)
    recent = await session.execute(recent_query)
    return {"ongoing_count": ongoing.scalar_one(), "last_24h_count": recent.scalar_one()}

"""Incident listing API."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..database import get_db
from ..models import IncidentStatus
from ..schemas.incident import IncidentList, IncidentResponse, IncidentStats, Pagination

router = APIRouter(prefix="/api/incidents", tags=["incidents"])


def _page(incidents, total: int, limit: int, skip: int) -> IncidentList:
    return IncidentList(
        incidents=[IncidentResponse.model_validate(i) for i in incidents],
        pagination=Pagination(
            total=total,
            limit=limit,
            skip=skip,
            has_more=skip + len(incidents) < total,
        ),
    )


@router.get("", response_model=IncidentList)
async def list_incidents(
    status: Optional[IncidentStatus] = None,
    user_id: Optional[int] = None,
    limit: int = Query(default=50, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """List incidents newest first, filtered by status and owner."""
    incidents, total = await crud.list_incidents(
        db,
        status=status.value if status else None,
        user_id=user_id,
        limit=limit,
        skip=skip,
    )
    return _page(incidents, total, limit, skip)


@router.get("/monitor/{monitor_id}", response_model=IncidentList)
async def list_monitor_incidents(
    monitor_id: int,
    status: Optional[IncidentStatus] = None,
    limit: int = Query(default=50, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """List incidents for one monitor."""
    if not await crud.get_monitor(db, monitor_id):
        raise HTTPException(status_code=404, detail="Monitor not found")

    incidents, total = await crud.list_incidents(
        db,
        status=status.value if status else None,
        monitor_id=monitor_id,
        limit=limit,
        skip=skip,
    )
    return _page(incidents, total, limit, skip)


@router.get("/ongoing", response_model=List[IncidentResponse])
async def list_ongoing_incidents(user_id: int, db: AsyncSession = Depends(get_db)):
    """Ongoing incidents for one owner."""
    return await crud.get_ongoing_incidents(db, user_id)


@router.get("/recent", response_model=List[IncidentResponse])
async def list_recent_incidents(
    user_id: int,
    hours: int = Query(default=24, ge=1, le=720),
    db: AsyncSession = Depends(get_db),
):
    """Incidents for one owner started within the last `hours`."""
    return await crud.get_recent_incidents(db, user_id, hours=hours)


@router.get("/stats", response_model=IncidentStats)
async def get_incident_stats(user_id: Optional[int] = None, db: AsyncSession = Depends(get_db)):
    """Ongoing count and count started in the last 24 hours."""
    return IncidentStats(**await crud.get_incident_stats(db, user_id))


@router.get("/{incident_id}", response_model=IncidentResponse)
async def get_incident(incident_id: int, db: AsyncSession = Depends(get_db)):
    """Get a specific incident by ID."""
    incident = await crud.get_incident(db, incident_id)
    if not incident:
        raise HTTPException(status_code=404, detail="Incident not found")
    return incident

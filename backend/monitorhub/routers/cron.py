"""Sweep trigger API for external cron callers."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse

from ..dependencies import get_services
from ..schemas.cron import SweepCompleted, SweepSkipped, SchedulerStatus, LastRun
from ..services.factory import MonitoringServices
from ..services.scheduler import SweepOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.post(
    "/monitor",
    response_model=SweepCompleted,
    responses={
        202: {"model": SweepSkipped, "description": "Another sweep holds the lock"},
        403: {"description": "Invalid cron secret"},
        500: {"description": "Sweep failed"},
    },
)
async def trigger_sweep(
    x_cron_secret: Optional[str] = Header(None),
    services: MonitoringServices = Depends(get_services),
):
    """Run one sweep now."""
    result = await services.scheduler.trigger(x_cron_secret)

    if result.outcome == SweepOutcome.REJECTED:
        raise HTTPException(status_code=403, detail="Forbidden")

    if result.outcome == SweepOutcome.SKIPPED:
        return JSONResponse(
            status_code=202,
            content=SweepSkipped(message="Job already running").model_dump(),
        )

    if result.outcome == SweepOutcome.FAILED:
        raise HTTPException(status_code=500, detail=result.error or "Sweep failed")

    return SweepCompleted(
        processed=result.processed,
        failed=result.failed,
        duration_ms=result.duration_ms,
    )


@router.get("/status", response_model=SchedulerStatus)
async def get_scheduler_status(services: MonitoringServices = Depends(get_services)):
    """Current run state and the outcome of the last sweep."""
    scheduler = services.scheduler
    last = scheduler.last_result

    return SchedulerStatus(
        timer_running=scheduler.running,
        state=scheduler.state.value,
        check_interval_seconds=scheduler.check_interval_seconds,
        batch_size=scheduler.batch_size,
        lock_configured=services.kv_store.configured,
        last_run=LastRun(
            outcome=last.outcome.value,
            processed=last.processed,
            failed=last.failed,
            duration_ms=last.duration_ms,
            error=last.error,
            finished_at=last.finished_at,
        ) if last else None,
    )

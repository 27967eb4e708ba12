"""Incident service - opens incidents on repeated failures and resolves them on recovery.

Detection and resolution are idempotent per monitor:

- an open incident is continued, never duplicated (the partial unique index on
  incidents backs this up when two checks race);
- resolution is a conditional ONGOING -> RESOLVED update, so only one caller
  can win it.

Narratives are written in a second phase from a background task, so the
incident lifecycle never waits on the generator.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Set

from sqlalchemy.exc import IntegrityError

from .. import crud
from ..database import async_session
from ..models import HealthLog
from ..utils.db_utils import retry_on_lock, utcnow
from .narrator import IncidentContext, NarratorService
from .prober import ProbeResult

logger = logging.getLogger(__name__)

# Consecutive failed probes needed to open an incident
FAILURE_THRESHOLD = 2

# Health log rows inspected by the detector
HISTORY_WINDOW = 3


class DetectionOutcome(str, enum.Enum):
    CREATED = "created"
    CONTINUED = "continued"
    BELOW_THRESHOLD = "below_threshold"


class ResolutionOutcome(str, enum.Enum):
    RESOLVED = "resolved"
    NOTHING_TO_RESOLVE = "nothing_to_resolve"


@dataclass
class DetectionResult:
    outcome: DetectionOutcome
    incident_id: Optional[int] = None


@dataclass
class ResolutionResult:
    outcome: ResolutionOutcome
    incident_id: Optional[int] = None
    duration_seconds: Optional[int] = None


def downtime_seconds(started_at: datetime, resolved_at: datetime) -> int:
    """Whole seconds between start and resolution, never negative."""
    return max(0, int((resolved_at - started_at).total_seconds()))


class IncidentService:
    """Incident detector and resolver for a single monitor at a time."""

    def __init__(self, narrator: NarratorService, session_factory=None):
        self._narrator = narrator
        self._session_factory = session_factory or async_session
        self._pending: Set[asyncio.Task] = set()

    @staticmethod
    def threshold_met(recent_logs: List[HealthLog]) -> bool:
        """True when the newest FAILURE_THRESHOLD rows are all failures."""
        if len(recent_logs) < FAILURE_THRESHOLD:
            return False
        return all(not log.is_up for log in recent_logs[:FAILURE_THRESHOLD])

    async def detect(
        self,
        monitor_id: int,
        user_id: int,
        url: str,
        probe: ProbeResult,
        now: Optional[datetime] = None,
    ) -> DetectionResult:
        """Run after a failed probe has been logged."""
        now = now or utcnow()

        async def _detect():
            async with self._session_factory() as session:
                existing = await crud.find_open_incident(session, monitor_id)
                if existing:
                    await crud.increment_incident_failures(session, existing.id)
                    await session.commit()
                    return DetectionResult(DetectionOutcome.CONTINUED, existing.id), 0

                recent = await crud.recent_health_logs(session, monitor_id, HISTORY_WINDOW)
                if not self.threshold_met(recent):
                    return DetectionResult(DetectionOutcome.BELOW_THRESHOLD), 0

                # Counted before the insert so nothing is read after the commit
                prior = await crud.count_incidents_since(session, monitor_id, now - timedelta(hours=24))

                try:
                    incident = await crud.create_incident(
                        session, monitor_id, user_id, started_at=now, failure_count=FAILURE_THRESHOLD
                    )
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    logger.info(f"Incident for monitor {monitor_id} was opened by a concurrent check")
                    existing = await crud.find_open_incident(session, monitor_id)
                    return DetectionResult(
                        DetectionOutcome.CONTINUED, existing.id if existing else None
                    ), 0

                return DetectionResult(DetectionOutcome.CREATED, incident.id), prior

        result, prior_incidents = await retry_on_lock(_detect)

        if result.outcome == DetectionOutcome.CREATED:
            logger.info(f"Incident {result.incident_id} created for monitor {monitor_id}")
            self._schedule_narrative(
                result.incident_id,
                IncidentContext(
                    url=url,
                    status_code=probe.status_code,
                    response_time=probe.response_time_ms,
                    error_message=probe.error_message,
                    prior_incident_count=prior_incidents,
                ),
            )
        return result

    async def resolve(
        self,
        monitor_id: int,
        now: Optional[datetime] = None,
        url: Optional[str] = None,
    ) -> ResolutionResult:
        """Run after a successful probe when the monitor was DOWN or SLOW."""
        now = now or utcnow()

        async def _resolve():
            async with self._session_factory() as session:
                incident = await crud.find_open_incident(session, monitor_id)
                if not incident:
                    return ResolutionResult(ResolutionOutcome.NOTHING_TO_RESOLVE), None, None

                last_failure = None
                if not incident.narrative:
                    last_failure = await crud.last_failed_health_log(session, monitor_id)

                duration = downtime_seconds(incident.started_at, now)
                won = await crud.mark_incident_resolved(session, incident.id, now, duration)
                await session.commit()
                if not won:
                    return ResolutionResult(ResolutionOutcome.NOTHING_TO_RESOLVE), None, None

                return (
                    ResolutionResult(ResolutionOutcome.RESOLVED, incident.id, duration),
                    incident.narrative,
                    last_failure,
                )

        result, narrative, last_failure = await retry_on_lock(_resolve)

        if result.outcome == ResolutionOutcome.RESOLVED:
            logger.info(
                f"Incident {result.incident_id} resolved for monitor {monitor_id}. "
                f"Downtime: {result.duration_seconds}s"
            )
            if not narrative and url:
                self._schedule_narrative(
                    result.incident_id,
                    IncidentContext(
                        url=url,
                        status_code=last_failure.status_code if last_failure else None,
                        response_time=last_failure.response_time if last_failure else None,
                        error_message=last_failure.error_message if last_failure else None,
                    ),
                    only_if_missing=True,
                )
        return result

    def _schedule_narrative(self, incident_id: int, context: IncidentContext, only_if_missing: bool = False):
        task = asyncio.create_task(self._annotate(incident_id, context, only_if_missing))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _annotate(self, incident_id: int, context: IncidentContext, only_if_missing: bool):
        """Second write phase: store severity and narrative once the call settles."""
        analysis = await self._narrator.generate_explanation(context)

        async def _write():
            async with self._session_factory() as session:
                incident = await crud.get_incident(session, incident_id)
                if incident is None:
                    logger.debug(f"Incident {incident_id} no longer exists, narrative dropped")
                    return
                if only_if_missing and incident.narrative:
                    return
                await crud.update_incident(
                    session,
                    incident_id,
                    severity=analysis.severity.value,
                    narrative=analysis.explanation,
                    suggested_fix=analysis.suggested_fix,
                )
                await session.commit()

        try:
            await retry_on_lock(_write)
        except Exception as e:
            logger.error(f"Failed to store narrative for incident {incident_id}: {e}")

    async def drain(self):
        """Wait for outstanding narrative writes (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

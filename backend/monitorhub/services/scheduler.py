"""Scheduler service - runs the monitor sweep on a fixed period.

One sweep:
1. takes the distributed run lock (skip if another sweep holds it),
2. loads active monitors and splits them into fixed-size batches,
3. probes each batch concurrently, then per monitor appends the health log,
   updates the status columns, runs incident detection or resolution and
   sends gated notifications,
4. pauses between batches and always releases the lock.

A monitor whose storage writes fail is counted as failed; its siblings carry
on. Only a failure to evaluate the lock or to list monitors fails the run.
"""
import asyncio
import enum
import hmac
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .. import crud
from ..database import async_session
from ..models import Monitor, MonitorState, User
from ..utils.db_utils import retry_on_lock, utcnow
from .alerter import AlerterService, ALERT_DOWN, ALERT_RECOVERED
from .incidents import IncidentService, DetectionOutcome, ResolutionOutcome
from .kv_store import RunLock, AlertCooldown
from .prober import ProberService, ProbeResult

logger = logging.getLogger(__name__)


class RunState(str, enum.Enum):
    IDLE = "idle"
    LOCK_ACQUIRING = "lock_acquiring"
    RUNNING = "running"
    RELEASING = "releasing"


class SweepOutcome(str, enum.Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"    # lock held by another sweep
    REJECTED = "rejected"  # bad trigger secret
    FAILED = "failed"


@dataclass
class SweepResult:
    outcome: SweepOutcome
    processed: int = 0
    failed: int = 0
    duration_ms: int = 0
    error: Optional[str] = None
    finished_at: datetime = field(default_factory=utcnow)

    @property
    def success(self) -> bool:
        return self.outcome == SweepOutcome.COMPLETED


class SchedulerService:
    """Service for scheduling and running monitor sweeps."""

    def __init__(
        self,
        prober: ProberService,
        incidents: IncidentService,
        alerter: AlerterService,
        run_lock: RunLock,
        cooldown: AlertCooldown,
        session_factory=None,
        batch_size: int = 20,
        batch_pause_ms: int = 100,
        check_interval_seconds: int = 60,
        retention_days: int = 30,
        cron_secret: Optional[str] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._prober = prober
        self._incidents = incidents
        self._alerter = alerter
        self._lock = run_lock
        self._cooldown = cooldown
        self._session_factory = session_factory or async_session
        self.batch_size = batch_size
        self.batch_pause_ms = batch_pause_ms
        self.check_interval_seconds = check_interval_seconds
        self.retention_days = retention_days
        self.cron_secret = cron_secret

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self.state = RunState.IDLE
        self.last_result: Optional[SweepResult] = None

    @property
    def running(self) -> bool:
        """True while the interval timer is started."""
        return self._running

    def start(self):
        """Start the interval timer."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            self.run_sweep,
            trigger=IntervalTrigger(seconds=self.check_interval_seconds),
            id="monitor_sweep",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=self.check_interval_seconds,
        )

        self.scheduler.add_job(
            self._cleanup_old_records,
            trigger=IntervalTrigger(hours=1),
            id="cleanup_old_records",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started (interval={self.check_interval_seconds}s, "
            f"batch_size={self.batch_size}, batch_pause={self.batch_pause_ms}ms)"
        )

    def stop(self):
        """Stop the interval timer."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    def validate_secret(self, provided: Optional[str]) -> bool:
        if not self.cron_secret:
            logger.warning("CRON_SECRET not configured, allowing all sweep triggers")
            return True
        return hmac.compare_digest((provided or "").encode(), self.cron_secret.encode())

    async def trigger(self, provided_secret: Optional[str]) -> SweepResult:
        """Externally requested sweep. A bad secret has no side effects."""
        if not self.validate_secret(provided_secret):
            logger.warning("Sweep trigger rejected: invalid secret")
            return SweepResult(SweepOutcome.REJECTED)
        return await self.run_sweep()

    async def run_sweep(self) -> SweepResult:
        """Run one sweep over all active monitors."""
        start = time.monotonic()

        # One sweep per process even when the shared lock fails open
        if self.state != RunState.IDLE:
            logger.warning(f"Sweep already in progress in this process ({self.state.value}), skipping")
            return self._finish(SweepResult(SweepOutcome.SKIPPED))

        self.state = RunState.LOCK_ACQUIRING
        try:
            acquired = await self._lock.acquire()
        except Exception as e:
            self.state = RunState.IDLE
            logger.error(f"Could not evaluate sweep lock: {e}")
            return self._finish(SweepResult(SweepOutcome.FAILED, error=str(e)))

        if not acquired:
            self.state = RunState.IDLE
            logger.warning("Sweep already running elsewhere, skipping")
            return self._finish(SweepResult(SweepOutcome.SKIPPED, duration_ms=self._elapsed_ms(start)))

        self.state = RunState.RUNNING
        processed = failed = 0
        try:
            async with self._session_factory() as session:
                monitors = await crud.list_active_monitors(session)

            logger.info(f"Processing {len(monitors)} monitors")

            for i in range(0, len(monitors), self.batch_size):
                batch = monitors[i:i + self.batch_size]
                batch_success, batch_failed = await self._process_batch(batch)
                processed += batch_success
                failed += batch_failed

                if i + self.batch_size < len(monitors) and self.batch_pause_ms > 0:
                    await asyncio.sleep(self.batch_pause_ms / 1000)

            result = SweepResult(
                SweepOutcome.COMPLETED,
                processed=processed,
                failed=failed,
                duration_ms=self._elapsed_ms(start),
            )
            logger.info(f"Sweep completed in {result.duration_ms}ms: {processed} success, {failed} failed")
        except Exception as e:
            logger.error(f"Sweep failed: {type(e).__name__}: {e}")
            result = SweepResult(
                SweepOutcome.FAILED,
                processed=processed,
                failed=failed,
                duration_ms=self._elapsed_ms(start),
                error=str(e),
            )
        finally:
            self.state = RunState.RELEASING
            try:
                await self._lock.release()
            finally:
                self.state = RunState.IDLE

        return self._finish(result)

    async def _process_batch(self, monitors: List[Monitor]) -> Tuple[int, int]:
        """Probe a batch concurrently, then process each monitor independently."""
        results = await self._prober.probe_batch(
            [(m.id, m.url) for m in monitors],
            batch_size=max(1, len(monitors)),
        )

        async def _run(monitor: Monitor) -> bool:
            probe = results.get(monitor.id)
            if probe is None:
                logger.error(f"No probe result for monitor {monitor.id}, skipping this cycle")
                return False
            try:
                await self._process_monitor(monitor, probe)
                return True
            except Exception as e:
                logger.error(f"Error processing monitor {monitor.id}: {type(e).__name__}: {e}")
                return False

        outcomes = await asyncio.gather(*(_run(m) for m in monitors))
        success = sum(1 for ok in outcomes if ok)
        return success, len(monitors) - success

    async def _process_monitor(self, monitor: Monitor, probe: ProbeResult):
        """Record one probe and drive the incident lifecycle for its monitor."""
        checked_at = utcnow()
        previous_status = monitor.status

        async def _append():
            async with self._session_factory() as session:
                await crud.append_health_log(
                    session,
                    monitor.id,
                    is_up=probe.is_up,
                    checked_at=checked_at,
                    status_code=probe.status_code,
                    response_time=probe.response_time_ms,
                    error_message=probe.error_message,
                )
                await session.commit()

        async def _update():
            async with self._session_factory() as session:
                user = await crud.get_user(session, monitor.user_id)
                await crud.update_monitor_status(
                    session,
                    monitor.id,
                    status=probe.status.value,
                    checked_at=checked_at,
                    is_up=probe.is_up,
                    status_code=probe.status_code,
                    response_time=probe.response_time_ms,
                )
                await session.commit()
                return user

        # Health log must be committed before the status update
        await retry_on_lock(_append)
        user = await retry_on_lock(_update)

        logger.debug(f"Monitor {monitor.id} ({monitor.url}): {previous_status} -> {probe.status.value}")

        if not probe.is_up:
            detection = await self._incidents.detect(
                monitor.id, monitor.user_id, monitor.url, probe, now=checked_at
            )
            if detection.outcome == DetectionOutcome.CREATED:
                await self._notify(
                    ALERT_DOWN, user, monitor,
                    lambda: self._alerter.notify_downtime(user, monitor, probe),
                )
        elif previous_status in (MonitorState.DOWN.value, MonitorState.SLOW.value):
            resolution = await self._incidents.resolve(monitor.id, now=checked_at, url=monitor.url)
            if resolution.outcome == ResolutionOutcome.RESOLVED:
                await self._notify(
                    ALERT_RECOVERED, user, monitor,
                    lambda: self._alerter.notify_recovery(user, monitor, resolution.duration_seconds),
                )

    async def _notify(
        self,
        kind: str,
        user: Optional[User],
        monitor: Monitor,
        send: Callable[[], Awaitable[bool]],
    ) -> bool:
        """Send unless the owner opted out or the monitor is in cooldown for this kind."""
        if user is None or not user.email_alerts:
            logger.debug(f"Email alerts disabled for owner of monitor {monitor.id}, {kind} alert not sent")
            return False

        if await self._cooldown.is_active(monitor.id, kind):
            logger.info(f"Alert in cooldown for monitor {monitor.id} ({kind}), suppressed")
            return False

        try:
            sent = await send()
        except Exception as e:
            logger.error(f"Failed to send {kind} alert for monitor {monitor.id}: {e}")
            sent = False

        await self._cooldown.start(monitor.id, kind)
        return sent

    async def _cleanup_old_records(self):
        """Delete health log rows past the retention window."""
        try:
            cutoff = utcnow() - timedelta(days=self.retention_days)

            async def _delete():
                async with self._session_factory() as session:
                    deleted = await crud.delete_health_logs_before(session, cutoff)
                    await session.commit()
                    return deleted

            deleted = await retry_on_lock(_delete)
            logger.info(f"Cleaned up {deleted} health log records older than {self.retention_days} days")
        except Exception as e:
            logger.error(f"Error cleaning up records: {e}")

    def _finish(self, result: SweepResult) -> SweepResult:
        self.last_result = result
        return result

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

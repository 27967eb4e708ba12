from datetime import timedelta
from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import select, func

from monitorhub.models import Alert, HealthLog, Incident, Monitor
from monitorhub.services.alerter import AlerterService
from monitorhub.services.email_sender import EmailConfig
from monitorhub.services.incidents import IncidentService
from monitorhub.services.kv_store import CRON_LOCK_KEY, AlertCooldown, KeyValueStore, RunLock
from monitorhub.services.prober import ProberService
from monitorhub.services.scheduler import RunState, SchedulerService, SweepOutcome
from monitorhub.utils.db_utils import utcnow


@pytest_asyncio.fixture
async def build_scheduler(session_factory, narrator, email_sender, probe_targets, kv_store):
    created = []

    def _build(store: Optional[KeyValueStore] = None, cron_secret=None, batch_size=20, prober=None, batch_pause_ms=0):
        store = store or kv_store
        incidents = IncidentService(narrator, session_factory=session_factory)
        alerter = AlerterService(
            email_sender,
            EmailConfig(host="smtp.test", port=587),
            session_factory=session_factory,
        )
        scheduler = SchedulerService(
            prober or ProberService(transport=probe_targets.transport()),
            incidents,
            alerter,
            RunLock(store),
            AlertCooldown(store),
            session_factory=session_factory,
            batch_size=batch_size,
            batch_pause_ms=batch_pause_ms,
            cron_secret=cron_secret,
        )
        created.append(incidents)
        return scheduler

    yield _build
    for incidents in created:
        await incidents.drain()


@pytest_asyncio.fixture
async def user(make_user):
    return await make_user()


async def _count(session_factory, model, *where):
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*where))
        return result.scalar_one()


async def _reload(session_factory, model, row_id):
    async with session_factory() as session:
        return await session.get(model, row_id)


@pytest.mark.asyncio
async def test_sweep_records_probe_and_status(build_scheduler, user, make_monitor, session_factory, probe_targets):
    probe_targets.codes["up.test"] = 200
    monitor = await make_monitor(user, url="http://up.test")
    scheduler = build_scheduler()

    result = await scheduler.run_sweep()

    assert result.outcome == SweepOutcome.COMPLETED
    assert (result.processed, result.failed) == (1, 0)
    stored = await _reload(session_factory, Monitor, monitor.id)
    assert stored.status == "UP"
    assert stored.last_status_code == 200
    assert stored.last_checked_at is not None
    assert stored.consecutive_failures == 0
    assert await _count(session_factory, HealthLog, HealthLog.monitor_id == monitor.id) == 1
    assert scheduler.state == RunState.IDLE
    assert scheduler.last_result is result


@pytest.mark.asyncio
async def test_inactive_monitors_are_not_probed(build_scheduler, user, make_monitor, probe_targets):
    await make_monitor(user, url="http://paused.test", is_active=False)
    scheduler = build_scheduler()

    result = await scheduler.run_sweep()

    assert result.processed == 0
    assert probe_targets.requests == []


@pytest.mark.asyncio
async def test_downtime_lifecycle_sends_one_alert_per_transition(
    build_scheduler, user, make_monitor, session_factory, probe_targets, email_sender
):
    probe_targets.codes["flaky.test"] = 500
    monitor = await make_monitor(user, url="http://flaky.test", name="Flaky")
    scheduler = build_scheduler()

    await scheduler.run_sweep()
    assert await _count(session_factory, Incident) == 0
    assert email_sender.sent == []

    await scheduler.run_sweep()
    await scheduler.run_sweep()
    await scheduler._incidents.drain()

    stored = await _reload(session_factory, Monitor, monitor.id)
    assert stored.status == "DOWN"
    assert stored.consecutive_failures == 3
    [incident] = (await _all(session_factory, Incident))
    assert incident.status == "ONGOING"
    assert incident.failure_count == 3
    assert [m["subject"] for m in email_sender.sent] == ["Downtime Alert: Flaky"]

    probe_targets.codes["flaky.test"] = 200
    await scheduler.run_sweep()
    await scheduler._incidents.drain()

    stored = await _reload(session_factory, Monitor, monitor.id)
    assert stored.status == "UP"
    assert stored.consecutive_failures == 0
    [incident] = (await _all(session_factory, Incident))
    assert incident.status == "RESOLVED"
    assert [m["subject"] for m in email_sender.sent] == [
        "Downtime Alert: Flaky",
        "Service Recovered: Flaky",
    ]
    assert await _count(session_factory, Alert) == 2


async def _all(session_factory, model):
    async with session_factory() as session:
        result = await session.execute(select(model))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_cooldown_suppresses_repeat_downtime_alerts(
    build_scheduler, user, make_monitor, probe_targets, email_sender, fake_redis
):
    probe_targets.codes["down.test"] = 503
    monitor = await make_monitor(user, url="http://down.test")
    fake_redis.data[AlertCooldown.key(monitor.id, "down")] = "1"
    scheduler = build_scheduler()

    await scheduler.run_sweep()
    await scheduler.run_sweep()
    await scheduler._incidents.drain()

    assert email_sender.sent == []


@pytest.mark.asyncio
async def test_opted_out_owner_still_gets_incident(
    build_scheduler, make_user, make_monitor, session_factory, probe_targets, email_sender
):
    quiet = await make_user(name="Quiet", email_alerts=False)
    probe_targets.codes["down.test"] = 500
    await make_monitor(quiet, url="http://down.test")
    scheduler = build_scheduler()

    await scheduler.run_sweep()
    await scheduler.run_sweep()
    await scheduler._incidents.drain()

    assert await _count(session_factory, Incident) == 1
    assert email_sender.sent == []


@pytest.mark.asyncio
async def test_sweep_skipped_when_lock_held(build_scheduler, user, make_monitor, session_factory, fake_redis):
    await make_monitor(user)
    fake_redis.data[CRON_LOCK_KEY] = "held"
    scheduler = build_scheduler()

    result = await scheduler.run_sweep()

    assert result.outcome == SweepOutcome.SKIPPED
    assert await _count(session_factory, HealthLog) == 0
    # The other holder's lock is left alone
    assert fake_redis.data[CRON_LOCK_KEY] == "held"


@pytest.mark.asyncio
async def test_sweep_runs_during_outage_when_fail_open(build_scheduler, user, make_monitor, failing_redis):
    await make_monitor(user)
    scheduler = build_scheduler(store=KeyValueStore(failing_redis, fail_open=True))

    result = await scheduler.run_sweep()

    assert result.outcome == SweepOutcome.COMPLETED
    assert result.processed == 1


@pytest.mark.asyncio
async def test_sweep_skipped_during_outage_when_fail_closed(build_scheduler, user, make_monitor, failing_redis):
    await make_monitor(user)
    scheduler = build_scheduler(store=KeyValueStore(failing_redis, fail_open=False))

    result = await scheduler.run_sweep()

    assert result.outcome == SweepOutcome.SKIPPED


@pytest.mark.asyncio
async def test_bad_secret_rejected_without_touching_lock(build_scheduler, fake_redis):
    scheduler = build_scheduler(cron_secret="s3cret")

    result = await scheduler.trigger("wrong")

    assert result.outcome == SweepOutcome.REJECTED
    assert fake_redis.set_calls == []


@pytest.mark.asyncio
async def test_good_secret_runs_sweep(build_scheduler):
    scheduler = build_scheduler(cron_secret="s3cret")
    result = await scheduler.trigger("s3cret")
    assert result.outcome == SweepOutcome.COMPLETED


@pytest.mark.asyncio
async def test_missing_secret_config_accepts_any_trigger(build_scheduler):
    scheduler = build_scheduler(cron_secret=None)
    result = await scheduler.trigger(None)
    assert result.outcome == SweepOutcome.COMPLETED


@pytest.mark.asyncio
async def test_lock_released_when_sweep_fails(build_scheduler, fake_redis):
    scheduler = build_scheduler()

    with patch("monitorhub.crud.list_active_monitors", AsyncMock(side_effect=RuntimeError("db gone"))):
        result = await scheduler.run_sweep()

    assert result.outcome == SweepOutcome.FAILED
    assert result.error == "db gone"
    assert CRON_LOCK_KEY not in fake_redis.data
    assert scheduler.state == RunState.IDLE


@pytest.mark.asyncio
async def test_one_monitor_failure_does_not_stop_siblings(
    build_scheduler, user, make_monitor, session_factory, probe_targets
):
    prober = ProberService(transport=probe_targets.transport())
    original_probe = prober.probe

    async def crashing_probe(url):
        if "boom" in url:
            raise RuntimeError("probe crashed")
        return await original_probe(url)

    prober.probe = crashing_probe
    good = await make_monitor(user, url="http://good.test")
    await make_monitor(user, url="http://boom.test")
    scheduler = build_scheduler(prober=prober)

    result = await scheduler.run_sweep()

    assert result.outcome == SweepOutcome.COMPLETED
    assert (result.processed, result.failed) == (1, 1)
    assert await _count(session_factory, HealthLog) == 1
    assert await _count(session_factory, HealthLog, HealthLog.monitor_id == good.id) == 1


@pytest.mark.asyncio
async def test_storage_failure_counts_monitor_as_failed(build_scheduler, user, make_monitor):
    await make_monitor(user, url="http://a.test")
    await make_monitor(user, url="http://b.test")
    scheduler = build_scheduler()

    with patch("monitorhub.crud.append_health_log", AsyncMock(side_effect=RuntimeError("disk full"))):
        result = await scheduler.run_sweep()

    assert result.outcome == SweepOutcome.COMPLETED
    assert (result.processed, result.failed) == (0, 2)


@pytest.mark.asyncio
async def test_monitors_processed_in_batches(build_scheduler, user, make_monitor, probe_targets):
    for i in range(5):
        await make_monitor(user, url=f"http://m{i}.test")
    scheduler = build_scheduler(batch_size=2)

    calls = []
    original = scheduler._process_batch

    async def recording_batch(monitors):
        calls.append(len(monitors))
        return await original(monitors)

    scheduler._process_batch = recording_batch
    result = await scheduler.run_sweep()

    assert calls == [2, 2, 1]
    assert result.processed == 5
    assert len(probe_targets.requests) == 5


@pytest.mark.asyncio
async def test_batch_size_must_be_positive(narrator, session_factory, kv_store):
    with pytest.raises(ValueError):
        SchedulerService(
            ProberService(),
            IncidentService(narrator, session_factory=session_factory),
            None,
            RunLock(kv_store),
            AlertCooldown(kv_store),
            batch_size=0,
        )


@pytest.mark.asyncio
async def test_notify_respects_cooldown_window(build_scheduler, user, make_monitor, fake_redis):
    monitor = await make_monitor(user)
    scheduler = build_scheduler()
    send = AsyncMock(return_value=True)

    assert await scheduler._notify("down", user, monitor, send) is True
    assert await scheduler._notify("down", user, monitor, send) is False
    assert send.await_count == 1

    # Window elapsed
    del fake_redis.data[AlertCooldown.key(monitor.id, "down")]
    assert await scheduler._notify("down", user, monitor, send) is True
    assert send.await_count == 2


@pytest.mark.asyncio
async def test_failed_send_still_starts_cooldown(build_scheduler, user, make_monitor, fake_redis):
    monitor = await make_monitor(user)
    scheduler = build_scheduler()

    sent = await scheduler._notify("down", user, monitor, AsyncMock(side_effect=RuntimeError("smtp down")))

    assert sent is False
    assert AlertCooldown.key(monitor.id, "down") in fake_redis.data


@pytest.mark.asyncio
async def test_pause_only_between_batches(build_scheduler, user, make_monitor):
    for i in range(5):
        await make_monitor(user, url=f"http://m{i}.test")
    scheduler = build_scheduler(batch_size=2, batch_pause_ms=250)

    with patch("monitorhub.services.scheduler.asyncio.sleep", AsyncMock()) as sleep:
        result = await scheduler.run_sweep()

    assert result.processed == 5
    # Three batches, two gaps, no pause after the last batch
    assert [c.args for c in sleep.await_args_list] == [(0.25,), (0.25,)]


@pytest.mark.asyncio
async def test_single_batch_never_pauses(build_scheduler, user, make_monitor):
    await make_monitor(user, url="http://only.test")
    scheduler = build_scheduler(batch_size=2, batch_pause_ms=250)

    with patch("monitorhub.services.scheduler.asyncio.sleep", AsyncMock()) as sleep:
        await scheduler.run_sweep()

    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_cleanup_deletes_only_logs_past_retention(
    build_scheduler, user, make_monitor, add_logs, session_factory
):
    monitor = await make_monitor(user)
    now = utcnow()
    await add_logs(monitor, [False, True], end=now - timedelta(days=31))
    await add_logs(monitor, [True, True, False], end=now - timedelta(days=29))
    await add_logs(monitor, [True], end=now)
    scheduler = build_scheduler()

    await scheduler._cleanup_old_records()

    assert await _count(session_factory, HealthLog) == 4
    assert await _count(session_factory, HealthLog, HealthLog.checked_at < now - timedelta(days=30)) == 0


@pytest.mark.asyncio
async def test_cleanup_failure_is_logged_not_raised(build_scheduler, caplog):
    scheduler = build_scheduler()

    with patch("monitorhub.crud.delete_health_logs_before", AsyncMock(side_effect=RuntimeError("db gone"))):
        await scheduler._cleanup_old_records()

    assert "Error cleaning up records: db gone" in caplog.text

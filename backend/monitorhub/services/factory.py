"""Builds the monitoring services from settings.

Every client (Redis, HTTP, SMTP, database sessions) is created here and
handed to the services, so tests can build the same graph around fakes.
"""
import logging
from typing import Optional
from dataclasses import dataclass

from ..config import Settings, settings
from .alerter import AlerterService
from .email_sender import EmailConfig, EmailSenderService
from .incidents import IncidentService
from .kv_store import AlertCooldown, KeyValueStore, ResultCache, RunLock
from .narrator import NarratorService
from .prober import ProberService
from .scheduler import SchedulerService

logger = logging.getLogger(__name__)


@dataclass
class MonitoringServices:
    kv_store: KeyValueStore
    prober: ProberService
    narrator: NarratorService
    incidents: IncidentService
    alerter: AlerterService
    scheduler: SchedulerService
    cache: ResultCache

    async def aclose(self):
        """Stop the timer, finish pending narrative writes and close clients."""
        self.scheduler.stop()
        await self.incidents.drain()
        await self.narrator.close()
        await self.kv_store.close()


def email_config_from(config: Settings) -> EmailConfig:
    return EmailConfig(
        host=config.smtp_host,
        port=config.smtp_port,
        username=config.smtp_username,
        password=config.smtp_password,
        use_tls=config.smtp_use_tls,
        from_address=config.email_from,
        max_attempts=config.email_max_attempts,
        retry_backoff_seconds=config.email_retry_backoff_seconds,
    )


def build_services(
    config: Settings = settings,
    session_factory=None,
    kv_store: Optional[KeyValueStore] = None,
    prober: Optional[ProberService] = None,
    narrator: Optional[NarratorService] = None,
    email_sender: Optional[EmailSenderService] = None,
) -> MonitoringServices:
    """Wire the service graph. Any client passed in replaces the default."""
    kv_store = kv_store or KeyValueStore.from_url(config.redis_url, fail_open=config.kv_fail_open)
    prober = prober or ProberService(
        timeout=config.probe_timeout_seconds,
        slow_threshold_ms=config.slow_threshold_ms,
        verify=config.probe_verify_tls,
    )
    narrator = narrator or NarratorService(
        api_key=config.narrative_api_key,
        model=config.narrative_model,
        base_url=config.narrative_base_url,
        timeout=config.narrative_timeout_seconds,
        slow_threshold_ms=config.slow_threshold_ms,
    )
    incidents = IncidentService(narrator, session_factory=session_factory)
    alerter = AlerterService(
        email_sender or EmailSenderService(),
        email_config_from(config),
        session_factory=session_factory,
        app_url=config.app_url,
    )
    scheduler = SchedulerService(
        prober,
        incidents,
        alerter,
        RunLock(kv_store, ttl_seconds=config.lock_ttl_seconds),
        AlertCooldown(kv_store, ttl_seconds=config.alert_cooldown_seconds),
        session_factory=session_factory,
        batch_size=config.batch_size,
        batch_pause_ms=config.batch_pause_ms,
        check_interval_seconds=config.check_interval_seconds,
        retention_days=config.health_log_retention_days,
        cron_secret=config.cron_secret,
    )

    if not config.cron_secret:
        logger.warning("CRON_SECRET is not set - /api/cron/monitor accepts unauthenticated triggers")

    return MonitoringServices(
        kv_store=kv_store,
        prober=prober,
        narrator=narrator,
        incidents=incidents,
        alerter=alerter,
        scheduler=scheduler,
        cache=ResultCache(kv_store, ttl_seconds=config.dashboard_cache_seconds),
    )

"""Alerter service - downtime and recovery emails to monitor owners."""
import html
import json
import logging
from datetime import datetime

from ..database import async_session
from ..models import Monitor, User, Alert
from ..utils.db_utils import utcnow
from .email_sender import EmailSenderService, EmailConfig
from .prober import ProbeResult

logger = logging.getLogger(__name__)

ALERT_DOWN = "down"
ALERT_RECOVERED = "recovered"


def format_duration(seconds: int) -> str:
    """Human-readable duration: 45s, 3m 20s, 2h 5m."""
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m {seconds % 60}s"
    hours = minutes // 60
    return f"{hours}h {minutes % 60}m"


class AlerterService:
    """Builds and sends owner notifications and records each attempt.

    Sending is best-effort: failures are logged and reported as False, never
    raised. Cooldown and preference gating happen in the caller.
    """

    def __init__(
        self,
        email_sender: EmailSenderService,
        email_config: EmailConfig,
        session_factory=None,
        app_url: str = "https://monitorhub.local",
    ):
        self._email_sender = email_sender
        self._email_config = email_config
        self._session_factory = session_factory or async_session
        self.app_url = app_url.rstrip("/")

    async def notify_downtime(self, user: User, monitor: Monitor, probe: ProbeResult) -> bool:
        subject = f"Downtime Alert: {monitor.name}"
        status_info = (
            f"Status Code: {probe.status_code}" if probe.status_code
            else f"Error: {probe.error_message or 'Unknown'}"
        )
        detected = utcnow()

        lines = [
            f"Hi {user.name},",
            "",
            "Your website is down!",
            "",
            f"Monitor: {monitor.name}",
            f"URL: {monitor.url}",
            status_info,
        ]
        if probe.response_time_ms:
            lines.append(f"Response Time: {probe.response_time_ms}ms")
        lines.extend([
            f"Detected: {self._timestamp(detected)}",
            "",
            "Check your server status. A recovery alert will be sent when the service is back online.",
            f"Incident details: {self.app_url}/dashboard/incidents",
            "",
            "--",
            "MonitorHub",
        ])
        body = "\n".join(lines)

        html_body = self._render_html(
            "Downtime Alert",
            user,
            [
                ("Monitor", monitor.name),
                ("URL", monitor.url),
                ("Status", status_info),
                ("Response Time", f"{probe.response_time_ms}ms" if probe.response_time_ms else None),
                ("Detected", self._timestamp(detected)),
            ],
        )

        success = await self._email_sender.send_email(self._email_config, user.email, subject, body, html_body)
        await self._record_alert(monitor.id, ALERT_DOWN, {"subject": subject, "to": user.email}, success)
        return success

    async def notify_recovery(self, user: User, monitor: Monitor, downtime_seconds: int) -> bool:
        subject = f"Service Recovered: {monitor.name}"
        duration = format_duration(downtime_seconds)
        recovered = utcnow()

        body = "\n".join([
            f"Hi {user.name},",
            "",
            "Your website is back online!",
            "",
            f"Monitor: {monitor.name}",
            f"URL: {monitor.url}",
            f"Downtime Duration: {duration}",
            f"Recovered: {self._timestamp(recovered)}",
            "",
            f"Incident report: {self.app_url}/dashboard/incidents",
            "",
            "--",
            "MonitorHub",
        ])

        html_body = self._render_html(
            "Service Recovered",
            user,
            [
                ("Monitor", monitor.name),
                ("URL", monitor.url),
                ("Downtime Duration", duration),
                ("Recovered", self._timestamp(recovered)),
            ],
        )

        success = await self._email_sender.send_email(self._email_config, user.email, subject, body, html_body)
        await self._record_alert(
            monitor.id,
            ALERT_RECOVERED,
            {"subject": subject, "to": user.email, "downtime_seconds": downtime_seconds},
            success,
        )
        return success

    def _render_html(self, title: str, user: User, rows) -> str:
        items = "".join(
            f"<p><strong>{html.escape(label)}:</strong> {html.escape(str(value))}</p>"
            for label, value in rows
            if value is not None
        )
        return (
            "<html><body style=\"font-family: Arial, sans-serif; color: #333;\">"
            f"<h1>{html.escape(title)}</h1>"
            f"<p>Hi {html.escape(user.name)},</p>"
            f"{items}"
            f"<p><a href=\"{html.escape(self.app_url)}/dashboard/incidents\">View incident details</a></p>"
            "</body></html>"
        )

    @staticmethod
    def _timestamp(value: datetime) -> str:
        return value.strftime("%Y-%m-%d %H:%M:%S UTC")

    async def _record_alert(self, monitor_id: int, alert_type: str, payload: dict, success: bool):
        try:
            async with self._session_factory() as session:
                session.add(Alert(
                    monitor_id=monitor_id,
                    alert_type=alert_type,
                    channel="email",
                    payload=json.dumps(payload),
                    success=1 if success else 0,
                ))
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to record {alert_type} alert for monitor {monitor_id}: {e}")

"""Email sender service - sends alerts via SMTP."""
import asyncio
import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional, List
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig:
    """SMTP configuration for sending emails."""
    host: str
    port: int
    username: str = ""
    password: str = ""
    use_tls: bool = True
    from_address: str = ""
    max_attempts: int = 2
    retry_backoff_seconds: float = 1.0  # attempt N waits N * this before retrying


class EmailSenderService:
    """Service for sending email alerts via SMTP with a bounded retry."""

    def _parse_recipients(self, to_address: str) -> List[str]:
        """Parse comma-separated email addresses into a list."""
        if not to_address:
            return []
        return [addr.strip() for addr in to_address.split(",") if addr.strip()]

    async def send_email(
        self,
        config: EmailConfig,
        to_address: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
    ) -> bool:
        """Send an email using SMTP.

        Retries up to config.max_attempts times with linear backoff.
        Returns True on success, False once attempts are exhausted.
        """
        if not config.host:
            logger.warning("Email not configured - missing SMTP host")
            return False

        recipients = self._parse_recipients(to_address)
        if not recipients:
            logger.warning("No valid recipients found in to_address")
            return False

        from_addr = config.from_address or config.username
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = from_addr
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(body, "plain"))
        if html_body:
            msg.attach(MIMEText(html_body, "html"))

        loop = asyncio.get_running_loop()
        attempts = max(1, config.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                # smtplib blocks, keep it off the event loop
                await loop.run_in_executor(None, self._deliver, config, from_addr, recipients, msg.as_string())
                logger.info(f"Email sent to {len(recipients)} recipient(s): {subject}")
                return True
            except smtplib.SMTPAuthenticationError as e:
                logger.error(f"SMTP authentication failed for user '{config.username}': {e}")
                return False
            except (smtplib.SMTPException, OSError) as e:
                logger.error(f"Email send attempt {attempt}/{attempts} failed: {type(e).__name__}: {e}")
                if attempt < attempts:
                    await asyncio.sleep(config.retry_backoff_seconds * attempt)

        logger.error(f"Failed to send email after {attempts} attempts: {subject}")
        return False

    def _deliver(self, config: EmailConfig, from_addr: str, recipients: List[str], message: str):
        """Blocking SMTP delivery."""
        if config.port == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(config.host, config.port, timeout=30, context=context) as server:
                if config.username and config.password:
                    server.login(config.username, config.password)
                server.sendmail(from_addr, recipients, message)
            return

        with smtplib.SMTP(config.host, config.port, timeout=30) as server:
            if config.use_tls:
                server.starttls(context=ssl.create_default_context())
            if config.username and config.password:
                server.login(config.username, config.password)
            server.sendmail(from_addr, recipients, message)

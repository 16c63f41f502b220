"""Alert raising and email notification."""

import asyncio
import html
import smtplib
import ssl
from email.message import EmailMessage
from typing import Any, Callable, Dict, Optional, Sequence
import structlog

from chatsentry import EmailError
from chatsentry.config.config_manager import EmailConfig
from chatsentry.core.dedup import Deduplicator
from chatsentry.core.models import Alert, Message
from chatsentry.export.snapshot_store import AlertStore


ALERT_NEGATIVE = "negative_content"
ALERT_KEYWORD = "keyword_match"
SUMMARY_LENGTH = 50


def header_text(value: str) -> str:
    """Collapse line breaks, which are not allowed in email header values."""
    return " ".join(value.split())


def summarize(message: Message) -> str:
    """One-line alert summary with the content truncated."""
    content = message.content
    if len(content) > SUMMARY_LENGTH:
        content = content[:SUMMARY_LENGTH] + "..."
    return f"{message.nickname or 'Unknown'} reported a problem: {content}"


class EmailSender:
    """Sends alert emails over SMTP."""

    def __init__(self, config: EmailConfig, logger: Optional[structlog.BoundLogger] = None,
                 timeout: float = 30.0):
        self.config = config
        self.timeout = timeout
        self.logger = logger or structlog.get_logger(__name__)

    def _connect(self) -> smtplib.SMTP:
        if self.config.smtp_port == 465:
            return smtplib.SMTP_SSL(self.config.smtp_host, self.config.smtp_port,
                                    timeout=self.timeout, context=ssl.create_default_context())
        server = smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=self.timeout)
        if self.config.use_tls:
            server.starttls(context=ssl.create_default_context())
        return server

    def send(self, to: Sequence[str], subject: str, text_body: str, html_body: Optional[str] = None) -> None:
        """Send one message to every recipient.

        Raises:
            EmailError: On any transport or authentication problem
        """
        try:
            msg = EmailMessage()
            msg['Subject'] = subject
            msg['From'] = self.config.sender or self.config.smtp_user
            msg['To'] = ", ".join(to)
            msg.set_content(text_body)
            if html_body:
                msg.add_alternative(html_body, subtype='html')

            with self._connect() as server:
                if self.config.smtp_user:
                    server.login(self.config.smtp_user, self.config.smtp_pass)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError, ValueError) as e:
            raise EmailError(f"Failed to send email via {self.config.smtp_host}: {e}") from e

        self.logger.info("Alert email sent", recipients=len(to), subject=subject)

    async def send_async(self, to: Sequence[str], subject: str, text_body: str,
                         html_body: Optional[str] = None) -> None:
        await asyncio.to_thread(self.send, to, subject, text_body, html_body)


class AlertNotifier:
    """Raises deduplicated alerts and sends at most one email per message."""

    def __init__(self,
                 alert_store: AlertStore,
                 deduplicator: Deduplicator,
                 email_config: Optional[EmailConfig] = None,
                 sender_factory: Optional[Callable[[EmailConfig], EmailSender]] = None,
                 logger: Optional[structlog.BoundLogger] = None):
        """Initialize the notifier.

        Args:
            alert_store: Persistent alert log
            deduplicator: Shared suppression gates
            email_config: Email settings for the current session
            sender_factory: Builds the email transport for a configuration
            logger: Structured logger for operation tracking
        """
        self.logger = logger or structlog.get_logger(__name__)
        self.alert_store = alert_store
        self.deduplicator = deduplicator
        self.email_config = email_config or EmailConfig()
        self.sender_factory = sender_factory or (lambda cfg: EmailSender(cfg, self.logger))
        self.email_sender: Optional[EmailSender] = None
        self.suppressed_count = 0
        self.emails_sent = 0
        self.email_failures = 0

    def configure_email(self, email_config: EmailConfig):
        """Switch email settings, e.g. when a new monitoring session starts."""
        self.email_config = email_config
        self.email_sender = None

    @property
    def email_ready(self) -> bool:
        return self.email_config.enabled and self.email_config.is_configured

    async def raise_alert(self, message_id: int, message: Message,
                          alert_type: str = ALERT_NEGATIVE) -> Optional[Alert]:
        """Raise an alert for a stored message unless it is within the cooldown.

        Email failures are logged and leave the alert in place with
        email_sent=False.

        Returns:
            The created Alert, or None if suppressed
        """
        raw = message.raw
        if not self.deduplicator.alert_allowed(raw):
            self.suppressed_count += 1
            self.logger.info("Duplicate alert suppressed", nickname=message.nickname,
                           message_time=message.message_time)
            return None

        self.deduplicator.record_alert(raw)
        alert = self.alert_store.create([message_id], alert_type, summarize(message))
        self.logger.warning("Alert raised", alert_id=alert.id, message_id=message_id,
                          alert_type=alert_type)

        if self.email_ready and self.deduplicator.email_allowed(raw):
            await self._send_email(alert, message)

        return alert

    async def _send_email(self, alert: Alert, message: Message) -> None:
        if self.email_sender is None:
            self.email_sender = self.sender_factory(self.email_config)

        subject = header_text(f"[ChatSentry] {alert.alert_type}: {message.nickname or 'Unknown'}")
        text_body = (
            f"{alert.summary}\n\n"
            f"Player: {message.nickname}\n"
            f"Time: {message.message_time}\n"
            f"Topic: {message.topic.value}\n"
            f"Sentiment: {message.sentiment.value}\n"
            f"Content: {message.content}\n"
            f"Screenshot: {message.screenshot_path}\n"
        )
        html_body = (
            f"<h3>{html.escape(alert.summary)}</h3>"
            "<table>"
            f"<tr><td>Player</td><td>{html.escape(message.nickname)}</td></tr>"
            f"<tr><td>Time</td><td>{html.escape(message.message_time)}</td></tr>"
            f"<tr><td>Topic</td><td>{message.topic.value}</td></tr>"
            f"<tr><td>Sentiment</td><td>{message.sentiment.value}</td></tr>"
            f"<tr><td>Content</td><td>{html.escape(message.content)}</td></tr>"
            f"<tr><td>Screenshot</td><td>{html.escape(message.screenshot_path)}</td></tr>"
            "</table>"
        )

        try:
            await self.email_sender.send_async(list(self.email_config.to), subject, text_body, html_body)
        except EmailError as e:
            self.email_failures += 1
            self.logger.error("Alert email failed", alert_id=alert.id, error=str(e))
            return

        self.deduplicator.record_email(message.raw)
        self.alert_store.mark_email_sent(alert)
        self.emails_sent += 1

    def get_stats(self) -> Dict[str, Any]:
        return {
            'alerts': len(self.alert_store),
            'suppressed': self.suppressed_count,
            'emails_sent': self.emails_sent,
            'email_failures': self.email_failures
        }

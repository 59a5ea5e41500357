"""
Notification Service: Drains the notification outbox.

This module is responsible for:
1. Rendering change-record emails
2. Sending them through a pluggable mail sender (SMTP or log-only)
3. Moving each outbox row to its terminal status and auditing the outcome

Failed rows are terminal; nothing here retries them.
"""

import asyncio
import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage

import aiosmtplib
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings
from ..models import (
    AuditEventType,
    ChangeRecord,
    Node,
    NotificationOutbox,
    OutboxEventType,
    OutboxStatus,
    User,
    utcnow,
)
from .audit import AuditSink

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SmtpConfig:
    """SMTP delivery configuration."""
    host: str = "localhost"
    port: int = 1025
    user: str = ""
    password: str = ""
    from_email: str = "ops-journal@localhost"
    from_name: str = "Ops Journal"
    use_tls: bool = False
    timeout_seconds: float = 30.0


# =============================================================================
# MAIL SENDERS
# =============================================================================


class MailSender(ABC):
    """Abstract mail delivery collaborator."""

    @abstractmethod
    async def send(self, to: str, subject: str, html_body: str) -> tuple[bool, str | None]:
        """
        Send one message.

        Returns:
            (success, error_message)
        """
        pass


class SmtpMailSender(MailSender):
    """Delivers mail through an SMTP relay with aiosmtplib."""

    def __init__(self, config: SmtpConfig):
        self._config = config

    async def send(self, to: str, subject: str, html_body: str) -> tuple[bool, str | None]:
        message = EmailMessage()
        message["From"] = f"{self._config.from_name} <{self._config.from_email}>"
        message["To"] = to
        message["Subject"] = subject
        message.set_content(html_body, subtype="html")

        try:
            await aiosmtplib.send(
                message,
                hostname=self._config.host,
                port=self._config.port,
                username=self._config.user or None,
                password=self._config.password or None,
                start_tls=self._config.use_tls,
                timeout=self._config.timeout_seconds,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            error_msg = f"Failed to send email: {e}"
            logger.error(error_msg)
            return False, error_msg

        logger.info(f"[EMAIL] To: {to}, Subject: {subject}")
        return True, None


class LoggingMailSender(MailSender):
    """Development sender: logs the message instead of delivering it."""

    async def send(self, to: str, subject: str, html_body: str) -> tuple[bool, str | None]:
        logger.info(f"[EMAIL:log] To: {to}, Subject: {subject}")
        return True, None


def build_mail_sender(settings: Settings) -> MailSender:
    if settings.mail_backend == "log":
        return LoggingMailSender()
    return SmtpMailSender(SmtpConfig(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user,
        password=settings.smtp_password,
        from_email=settings.smtp_from,
        from_name=settings.app_name,
        use_tls=settings.smtp_use_tls,
        timeout_seconds=settings.smtp_timeout_seconds,
    ))


# =============================================================================
# RENDERING
# =============================================================================


def render_notification(
    event_type: OutboxEventType,
    record: ChangeRecord,
    node: Node,
    base_url: str,
) -> tuple[str, str]:
    """Build (subject, html_body) for one outbox row."""
    if event_type == OutboxEventType.NEW_RECORD:
        subject = f"New change: {record.title}"
        heading = "New change record"
    else:
        subject = f"Change updated: {record.title}"
        heading = "Change record updated"

    link = f"{base_url.rstrip('/')}/records/{record.id}"
    body = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;
             line-height: 1.6; color: #374151; max-width: 600px; margin: 0 auto; padding: 20px;">
    <p>{heading}: <strong>{html.escape(record.title)}</strong></p>
    <p style="color: #6B7280; font-size: 14px;">
        Node: {html.escape(node.name)}<br>
        Impact: {record.impact.value} &middot; Status: {record.status.value}
    </p>
    <p><a href="{html.escape(link, quote=True)}">View record</a></p>
</body>
</html>
"""
    return subject, body


# =============================================================================
# OUTBOX WORKER
# =============================================================================


class OutboxWorker:
    """
    Polls pending outbox rows and delivers them.

    A single instance is assumed per deployment: rows are not claimed with
    SKIP LOCKED, so two workers may send the same row twice.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        mail_sender: MailSender,
        audit: AuditSink,
        batch_size: int = 20,
        poll_interval_seconds: float = 15.0,
        base_url: str = "http://localhost:3000",
    ):
        self._session_factory = session_factory
        self._mail_sender = mail_sender
        self._audit = audit
        self._batch_size = batch_size
        self._poll_interval = poll_interval_seconds
        self._base_url = base_url
        self._task: asyncio.Task | None = None

    async def process_pending_notifications(self) -> tuple[int, int, list[str]]:
        """
        Deliver one batch of pending rows.

        Returns:
            (sent_count, failed_count, errors)
        """
        sent_count = 0
        failed_count = 0
        errors: list[str] = []

        async with self._session_factory() as session:
            result = await session.execute(
                select(NotificationOutbox, User, ChangeRecord, Node)
                .outerjoin(User, User.id == NotificationOutbox.user_id)
                .outerjoin(ChangeRecord, ChangeRecord.id == NotificationOutbox.record_id)
                .outerjoin(Node, Node.id == ChangeRecord.node_id)
                .where(NotificationOutbox.status == OutboxStatus.PENDING)
                .order_by(NotificationOutbox.created_at.asc())
                .limit(self._batch_size)
            )
            rows = result.all()

            for entry, user, record, node in rows:
                success, error = await self._deliver(entry, user, record, node)

                if success:
                    entry.status = OutboxStatus.SENT
                    entry.sent_at = utcnow()
                    await session.commit()
                    sent_count += 1
                    self._audit.record(
                        AuditEventType.NOTIFICATION_SENT,
                        actor_id=entry.user_id,
                        metadata={"outbox_id": entry.id, "record_id": entry.record_id},
                    )
                else:
                    error = error or "Unknown error"
                    entry.status = OutboxStatus.FAILED
                    entry.failed_at = utcnow()
                    entry.error_message = error
                    await session.commit()
                    failed_count += 1
                    errors.append(f"Notification {entry.id}: {error}")
                    self._audit.record(
                        AuditEventType.NOTIFICATION_FAILURE,
                        actor_id=entry.user_id,
                        metadata={"outbox_id": entry.id, "error": error},
                    )

        if rows:
            logger.info(f"Outbox batch: {sent_count} sent, {failed_count} failed")
        return sent_count, failed_count, errors

    async def _deliver(
        self,
        entry: NotificationOutbox,
        user: User | None,
        record: ChangeRecord | None,
        node: Node | None,
    ) -> tuple[bool, str | None]:
        if user is None or user.is_deleted:
            return False, "Recipient not found"
        if record is None or node is None:
            return False, "Record not found"

        try:
            subject, body = render_notification(entry.event_type, record, node, self._base_url)
            return await self._mail_sender.send(user.email, subject, body)
        except Exception as e:
            logger.error(f"Notification {entry.id} raised during send: {e}")
            return False, str(e) or type(e).__name__

    # =========================================================================
    # LOOP
    # =========================================================================

    async def run_forever(self) -> None:
        logger.info(f"Outbox worker started (interval {self._poll_interval}s, batch {self._batch_size})")
        while True:
            try:
                await self.process_pending_notifications()
            except Exception:
                logger.exception("Outbox worker tick failed")
            await asyncio.sleep(self._poll_interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run_forever(), name="outbox-worker")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Outbox worker stopped")

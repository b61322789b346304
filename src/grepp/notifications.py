"""
Notification Queue

Durable queue of DNS alert notifications. Producers enqueue; a batch job
drains due items through the channel senders, retrying failures with a
fixed backoff schedule and escalating items that run out of attempts.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from jinja2 import BaseLoader, Environment, FileSystemLoader, TemplateNotFound, select_autoescape
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from grepp.exceptions import DeliveryError
from grepp.models import (
    Channel,
    DispatchStats,
    NotificationPayload,
    NotificationType,
    QueueItem,
    RecordChange,
)
from grepp.senders import ChannelSender
from grepp.store import dns_notification_queue, utcnow

logger = logging.getLogger("grepp.notifications")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_MINUTES = (5, 15, 30, 60, 120)
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
TEMPLATES_DIR = Path(__file__).parent / "templates"

PRE_CHANGE_SUBJECT = "[ACTION REQUIRED] DNS change pending for %s"
POST_CHANGE_SUBJECT = "[COMPLETED] DNS change applied for %s"
UNEXPECTED_SUBJECT = "[SECURITY ALERT] Unexpected DNS change detected for %s"


def compute_backoff(attempt: int, schedule: Sequence[int] = DEFAULT_BACKOFF_MINUTES) -> timedelta:
    """
    Delay before the next try after ``attempt`` failed attempts.

    The schedule is in minutes; attempts past its end reuse the last entry.
    """
    index = max(0, min(attempt - 1, len(schedule) - 1))
    return timedelta(minutes=schedule[index])


def _to_item(row) -> QueueItem:
    return QueueItem(
        id=row["id"],
        type=row["type"],
        channel=row["channel"],
        recipient=row["recipient"],
        payload=NotificationPayload.from_dict(row["payload"] or {}),
        attempt=row["attempt"],
        max_attempts=row["max_attempts"],
        next_attempt_at=row["next_attempt_at"],
        delivered_at=row["delivered_at"],
        last_error=row["last_error"],
        audit_id=row["audit_id"],
        created_at=row["created_at"],
    )


class NotificationManager:
    """
    Queue producer and dispatcher.

    Example:
        manager = NotificationManager(engine, {Channel.EMAIL: EmailSender("smtp.example.gr")})
        manager.enqueue(NotificationType.PRE, "owner@example.gr", Channel.EMAIL, payload)
        stats = manager.dispatch_due()
    """

    def __init__(
        self,
        engine: Engine,
        senders: Optional[Mapping[Union[Channel, str], ChannelSender]] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_schedule: Sequence[int] = DEFAULT_BACKOFF_MINUTES,
        clock: Callable[[], datetime] = utcnow,
        escalation_sender: Optional[ChannelSender] = None,
        admin_email: Optional[str] = None,
    ):
        self._engine = engine
        self._senders = {Channel(k).value: v for k, v in (senders or {}).items()}
        self.max_attempts = max_attempts
        self.backoff_schedule = tuple(backoff_schedule) or DEFAULT_BACKOFF_MINUTES
        self._clock = clock
        self._escalation_sender = escalation_sender
        self._admin_email = admin_email

    # =========================================================================
    # Producer
    # =========================================================================

    def enqueue(
        self,
        type: NotificationType,
        recipient: str,
        channel: Channel,
        payload: Union[NotificationPayload, Dict[str, Any]],
        audit_id: Optional[int] = None,
    ) -> Optional[int]:
        """
        Queue a notification for the next dispatch run.

        Returns:
            Queue row id, or None if the queue could not be written
        """
        if isinstance(payload, NotificationPayload):
            payload = payload.to_dict()
        type_value = NotificationType(type).value
        channel_value = Channel(channel).value
        now = self._clock()

        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    insert(dns_notification_queue).values(
                        audit_id=audit_id,
                        type=type_value,
                        channel=channel_value,
                        recipient=recipient,
                        payload=payload,
                        attempt=0,
                        max_attempts=self.max_attempts,
                        next_attempt_at=now,
                        created_at=now,
                        updated_at=now,
                    )
                )
                queue_id = int(result.inserted_primary_key[0])
        except SQLAlchemyError as e:
            logger.error(f"Failed to queue {type_value} notification to {recipient}: {e}")
            return None

        logger.info(f"Queued {type_value} notification to {recipient} via {channel_value} (id={queue_id})")
        return queue_id

    # =========================================================================
    # Dispatcher
    # =========================================================================

    def due_items(self, limit: int = 100) -> List[QueueItem]:
        """Undelivered items with attempts left whose retry time has come, oldest first."""
        q = dns_notification_queue.c
        stmt = (
            select(dns_notification_queue)
            .where(q.delivered_at.is_(None))
            .where(q.attempt < q.max_attempts)
            .where(q.next_attempt_at <= self._clock())
            .order_by(q.next_attempt_at.asc(), q.id.asc())
            .limit(limit)
        )
        with self._engine.connect() as conn:
            return [_to_item(row) for row in conn.execute(stmt).mappings()]

    def get(self, queue_id: int) -> Optional[QueueItem]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(dns_notification_queue).where(dns_notification_queue.c.id == queue_id)
            ).mappings().one_or_none()
        return None if row is None else _to_item(row)

    def dispatch_due(self, batch_size: int = 100) -> DispatchStats:
        """Try every due item once. Failures of one item never affect another."""
        stats = DispatchStats()

        for item in self.due_items(batch_size):
            stats.processed += 1
            error = self._deliver(item)
            try:
                if error is None:
                    self._mark_delivered(item)
                else:
                    self._bump_retry(item, error)
            except SQLAlchemyError as e:
                logger.error(f"Failed to record delivery state of notification {item.id}: {e}")
                # still undelivered in the queue, so it will be sent again
                error = error or f"Delivery not recorded: {e}"

            if error is None:
                stats.delivered += 1
            else:
                stats.failed += 1

        logger.info(
            f"Queue processed: {stats.processed} total, {stats.delivered} delivered, "
            f"{stats.failed} failed/retrying"
        )
        return stats

    def _deliver(self, item: QueueItem) -> Optional[str]:
        """Send one item. Returns None on success, otherwise the error text."""
        sender = self._senders.get(item.channel)
        if sender is None:
            return f"No sender configured for channel {item.channel}"

        try:
            if sender.send(item.recipient, item.payload):
                return None
            return "Delivery returned false"
        except DeliveryError as e:
            logger.warning(f"Delivery of notification {item.id} to {item.recipient} failed: {e}")
            return str(e)
        except Exception as e:
            logger.exception(f"Sender for {item.channel} raised on notification {item.id}")
            return f"{type(e).__name__}: {e}"

    def _mark_delivered(self, item: QueueItem) -> None:
        now = self._clock()
        with self._engine.begin() as conn:
            conn.execute(
                update(dns_notification_queue)
                .where(dns_notification_queue.c.id == item.id)
                .values(delivered_at=now, updated_at=now)
            )
        logger.debug(f"Notification {item.id} delivered to {item.recipient}")

    def _bump_retry(self, item: QueueItem, error: str) -> None:
        attempt = item.attempt + 1
        now = self._clock()
        next_attempt_at = now + compute_backoff(attempt, self.backoff_schedule)

        with self._engine.begin() as conn:
            conn.execute(
                update(dns_notification_queue)
                .where(dns_notification_queue.c.id == item.id)
                .values(
                    attempt=attempt,
                    last_error=error,
                    next_attempt_at=next_attempt_at,
                    updated_at=now,
                )
            )

        if attempt >= item.max_attempts:
            logger.error(f"Notification {item.id} delivery failed after {attempt} attempts: {error}")
            self._escalate(item, attempt, error)
        else:
            logger.info(f"Notification {item.id} retry {attempt} scheduled at {next_attempt_at:{TIME_FORMAT}}")

    def _escalate(self, item: QueueItem, attempts: int, error: str) -> None:
        if self._escalation_sender is None or not self._admin_email:
            logger.warning(f"No escalation channel configured, notification {item.id} dropped")
            return

        payload = NotificationPayload(
            subject=f"[DNS ALERT] Notification {item.id} undeliverable",
            body=(
                f"Notification {item.id} ({item.type}) to {item.recipient} via {item.channel} "
                f"failed after {attempts} attempts.\n\n"
                f"Subject: {item.payload.subject}\n"
                f"Last error: {error}\n"
            ),
            type="escalation",
            data={"queue_id": item.id, "audit_id": item.audit_id},
        )
        try:
            if not self._escalation_sender.send(self._admin_email, payload):
                logger.error(f"Escalation of notification {item.id} to {self._admin_email} was rejected")
        except Exception as e:
            logger.error(f"Escalation of notification {item.id} failed: {e}")


# =============================================================================
# Payload builders
# =============================================================================

def _change_dicts(changes: Iterable[Union[RecordChange, Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [c.to_dict() if isinstance(c, RecordChange) else dict(c) for c in changes]


def format_changes_text(changes: Iterable[Dict[str, Any]]) -> str:
    lines = []
    for change in changes:
        old_value = change.get("old_value") or "N/A"
        new_value = change.get("new_value") or "N/A"
        lines.append(f"  - {change['type']}: {old_value} -> {new_value}")
    return "\n".join(lines)


def render_plain_text(kind: str, context: Dict[str, Any]) -> str:
    """Plain-text body, also used when the HTML template is missing."""
    text = f"DNS Alert: {context['domain']}\n"
    text += "=" * 50 + "\n\n"

    if kind == "pre-change":
        text += "A DNS change has been requested for your domain.\n\n"
        text += f"Scheduled Time: {context['scheduled_time']}\n"
        text += f"Initiated By: {context['initiated_by']}\n\n"
    elif kind == "post-change":
        text += "DNS changes have been applied to your domain.\n\n"
        text += f"Applied Time: {context['applied_time']}\n"
        text += f"Initiated By: {context['initiated_by']}\n\n"
    else:
        text += "UNEXPECTED DNS changes detected!\n\n"
        text += f"Detected Time: {context['detected_time']}\n\n"

    text += "Changes:\n"
    text += format_changes_text(context["changes"])
    text += "\n\n---\nDNS Alert System\n"
    return text


class PayloadBuilder:
    """Builds the stored payload of pre, post and unexpected change notices."""

    def __init__(self, loader: Optional[BaseLoader] = None, clock: Callable[[], datetime] = utcnow):
        self._env = Environment(
            loader=loader or FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self._clock = clock

    def render(self, kind: str, context: Dict[str, Any]) -> Optional[str]:
        """Render ``<kind>.html``, or None when no such template exists."""
        try:
            template = self._env.get_template(f"{kind}.html")
        except TemplateNotFound:
            logger.debug(f"No template for {kind}, using plain text")
            return None
        return template.render(**context)

    def _build(self, kind: str, subject: str, type_name: str, context: Dict[str, Any]) -> NotificationPayload:
        text = render_plain_text(kind, context)
        html = self.render(kind, context)
        return NotificationPayload(
            subject=subject,
            body=html if html is not None else text,
            html=html is not None,
            type=type_name,
            message=f"{subject}: " + "; ".join(
                f"{c['type']} {c.get('old_value') or 'N/A'} -> {c.get('new_value') or 'N/A'}"
                for c in context["changes"]
            ),
            data={"domain": context["domain"], "changes": context["changes"], "text": text},
        )

    def pre_change(
        self,
        domain: str,
        changes: Iterable[Union[RecordChange, Dict[str, Any]]],
        initiated_by: Optional[str] = None,
        delay_minutes: int = 60,
        cancel_url: str = "#",
    ) -> NotificationPayload:
        context = {
            "domain": domain,
            "changes": _change_dicts(changes),
            "initiated_by": initiated_by or "System",
            "scheduled_time": (self._clock() + timedelta(minutes=delay_minutes)).strftime(TIME_FORMAT),
            "cancel_url": cancel_url,
        }
        return self._build("pre-change", PRE_CHANGE_SUBJECT % domain, "pre_change", context)

    def post_change(
        self,
        domain: str,
        changes: Iterable[Union[RecordChange, Dict[str, Any]]],
        initiated_by: Optional[str] = None,
        verify_url: str = "#",
    ) -> NotificationPayload:
        context = {
            "domain": domain,
            "changes": _change_dicts(changes),
            "initiated_by": initiated_by or "System",
            "applied_time": self._clock().strftime(TIME_FORMAT),
            "verify_url": verify_url,
        }
        return self._build("post-change", POST_CHANGE_SUBJECT % domain, "post_change", context)

    def unexpected(
        self,
        domain: str,
        changes: Iterable[Union[RecordChange, Dict[str, Any]]],
        verify_url: str = "#",
        support_url: str = "#",
    ) -> NotificationPayload:
        context = {
            "domain": domain,
            "changes": _change_dicts(changes),
            "detected_time": self._clock().strftime(TIME_FORMAT),
            "verify_url": verify_url,
            "support_url": support_url,
        }
        return self._build("unexpected", UNEXPECTED_SUBJECT % domain, "unexpected", context)

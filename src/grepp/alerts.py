"""
DNS Change Alerts

Hooks called around DNS changes made through the panel, and the periodic
monitoring pass that detects changes made anywhere else. Alerts are opt-in:
nothing is sent to users without an enabled preference row.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from grepp.audit import AuditLogger
from grepp.dns_monitor import DnsMonitor, compare_records
from grepp.exceptions import DnsLookupError
from grepp.models import (
    AuditStatus,
    Channel,
    DnsRecords,
    MonitoredDomain,
    MonitorStats,
    NotificationType,
)
from grepp.notifications import NotificationManager, PayloadBuilder
from grepp.store import dns_notifications_prefs, domains, utcnow

logger = logging.getLogger("grepp.alerts")

MONITORED_STATUS = "Active"
MONITOR_ACTOR = "CRON_DETECTED"


class DnsAlertService:
    """
    Producer side of the notification queue.

    Every alert writes its audit row first, then queues the notice with the
    audit id, then flags the notice as sent on the audit row.
    """

    def __init__(
        self,
        engine: Engine,
        monitor: DnsMonitor,
        notifier: NotificationManager,
        audit: AuditLogger,
        payloads: Optional[PayloadBuilder] = None,
        pre_change: bool = True,
        post_change: bool = True,
        delay_minutes: int = 60,
        base_url: str = "",
        check_delay_ms: int = 100,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._engine = engine
        self._monitor = monitor
        self._notifier = notifier
        self._audit = audit
        self._payloads = payloads or PayloadBuilder(clock=clock)
        self.pre_change = pre_change
        self.post_change = post_change
        self.delay_minutes = delay_minutes
        self.base_url = base_url.rstrip("/")
        self._check_delay = check_delay_ms / 1000.0
        self._sleep = sleep
        self._clock = clock

    # =========================================================================
    # Lookups
    # =========================================================================

    def _domain_row(self, name: str) -> Optional[Dict]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(domains).where(domains.c.name == name).order_by(domains.c.id)
            ).mappings().first()
        return None if row is None else dict(row)

    def _preference(self, user_id: Optional[int], domain_id: Optional[int]) -> Optional[Dict]:
        """Domain-specific preference, else the user's global one."""
        if not user_id:
            return None

        p = dns_notifications_prefs.c
        stmt = select(dns_notifications_prefs).where(p.user_id == user_id)
        if domain_id is None:
            stmt = stmt.where(p.domain_id.is_(None))
        else:
            stmt = stmt.where(or_(p.domain_id.is_(None), p.domain_id == domain_id))

        try:
            with self._engine.connect() as conn:
                rows = [dict(r) for r in conn.execute(stmt.order_by(p.id)).mappings()]
        except SQLAlchemyError as e:
            logger.error(f"Error checking alert preferences of user {user_id}: {e}")
            return None

        rows.sort(key=lambda r: r["domain_id"] is None)
        return rows[0] if rows else None

    def alerts_enabled(self, user_id: Optional[int], domain_id: Optional[int] = None) -> bool:
        """Opt-in check. No preference row means disabled."""
        pref = self._preference(user_id, domain_id)
        return bool(pref and pref["enabled"])

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}" if self.base_url else "#"

    def _resolve(self, domain: str):
        """(domain row, preference, owner email) when alerts are on, else None."""
        row = self._domain_row(domain)
        if row is None:
            logger.info(f"{domain} is not a managed domain, no alert")
            return None

        pref = self._preference(row["user_id"], row["id"])
        if not (pref and pref["enabled"]):
            logger.info(f"DNS alerts disabled for user {row['user_id']}, skipping {domain}")
            return None

        owner_email = pref.get("owner_email") or row.get("owner_email")
        if not owner_email:
            logger.error(f"No owner email for domain: {domain}")
            return None
        return row, pref, owner_email

    # =========================================================================
    # Change hooks
    # =========================================================================

    def before_dns_change(
        self,
        domain: str,
        old_records: DnsRecords,
        new_records: DnsRecords,
        initiated_by: Optional[str] = None,
        change_id: Optional[str] = None,
    ) -> Optional[int]:
        """
        Queue the pre-change notice. The change itself is never blocked.

        Returns:
            Audit id to pass to after_dns_change, or None when no alert was made
        """
        if not self.pre_change:
            return None

        resolved = self._resolve(domain)
        if resolved is None:
            return None
        row, _, owner_email = resolved

        changes = compare_records(old_records, new_records, self._clock())
        if not changes:
            return None

        audit_id = self._audit.log_dns_change(
            domain,
            NotificationType.PRE,
            old_records,
            new_records,
            status=AuditStatus.PENDING,
            domain_id=row["id"],
            user_id=row["user_id"],
            actor=initiated_by,
        )

        cancel_url = self._url(f"/client/dns-alert/cancel/{change_id}") if change_id else "#"
        payload = self._payloads.pre_change(domain, changes, initiated_by, self.delay_minutes, cancel_url)
        queue_id = self._notifier.enqueue(NotificationType.PRE, owner_email, Channel.EMAIL, payload, audit_id)

        if queue_id is not None and audit_id is not None:
            self._audit.mark_pre_notice_sent(audit_id)
        return audit_id

    def after_dns_change(
        self,
        domain: str,
        old_records: DnsRecords,
        new_records: DnsRecords,
        initiated_by: Optional[str] = None,
        audit_id: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> Optional[int]:
        """
        Record the outcome of a change and queue the post-change notice.

        With ``audit_id`` from before_dns_change the existing row is
        completed, otherwise a new POST row is written. A change that failed
        (``error_message`` set) is recorded but not notified.
        """
        if audit_id is not None:
            status = AuditStatus.FAILED if error_message else AuditStatus.APPLIED
            self._audit.update_status(audit_id, status, new_records=new_records, error_message=error_message)
            if error_message:
                return audit_id
        elif error_message:
            return self._record_failure(domain, old_records, new_records, initiated_by, error_message)

        if not self.post_change:
            return audit_id

        resolved = self._resolve(domain)
        if resolved is None:
            return audit_id
        row, _, owner_email = resolved

        changes = compare_records(old_records, new_records, self._clock())
        if not changes:
            return audit_id

        if audit_id is None:
            audit_id = self._audit.log_dns_change(
                domain,
                NotificationType.POST,
                old_records,
                new_records,
                status=AuditStatus.APPLIED,
                domain_id=row["id"],
                user_id=row["user_id"],
                actor=initiated_by,
            )

        verify_url = self._url(f"/client/domains/dns?domain={domain}")
        payload = self._payloads.post_change(domain, changes, initiated_by, verify_url)
        queue_id = self._notifier.enqueue(NotificationType.POST, owner_email, Channel.EMAIL, payload, audit_id)

        if queue_id is not None and audit_id is not None:
            self._audit.mark_post_notice_sent(audit_id)
        return audit_id

    def _record_failure(self, domain, old_records, new_records, initiated_by, error_message) -> Optional[int]:
        row = self._domain_row(domain) or {}
        audit_id = self._audit.log_dns_change(
            domain,
            NotificationType.POST,
            old_records,
            new_records,
            status=AuditStatus.FAILED,
            domain_id=row.get("id"),
            user_id=row.get("user_id"),
            actor=initiated_by,
        )
        if audit_id is not None:
            self._audit.update_status(audit_id, AuditStatus.FAILED, error_message=error_message)
        return audit_id

    # =========================================================================
    # Monitoring
    # =========================================================================

    def monitored_domains(self) -> List[MonitoredDomain]:
        """Active domains whose owner enabled alerts, one entry per domain."""
        d = domains.c
        p = dns_notifications_prefs.c
        stmt = (
            select(
                d.id.label("domain_id"),
                d.name,
                d.user_id,
                d.owner_email.label("domain_email"),
                p.owner_email.label("pref_email"),
                p.domain_id.label("pref_domain_id"),
                p.enabled,
                p.check_interval,
            )
            .select_from(domains.join(dns_notifications_prefs, d.user_id == p.user_id))
            .where(d.status == MONITORED_STATUS)
            .where(or_(p.domain_id.is_(None), p.domain_id == d.id))
            .order_by(d.id)
        )
        with self._engine.connect() as conn:
            rows = list(conn.execute(stmt).mappings())

        winners: Dict[int, Dict] = {}
        for row in rows:
            # a domain-specific preference overrides the user's global one
            if row["domain_id"] in winners and row["pref_domain_id"] is None:
                continue
            winners[row["domain_id"]] = row

        selected = []
        for row in winners.values():
            if not row["enabled"]:
                continue
            selected.append(MonitoredDomain(
                domain_id=row["domain_id"],
                name=row["name"],
                user_id=row["user_id"],
                owner_email=row["pref_email"] or row["domain_email"],
                check_interval=row["check_interval"] or 300,
            ))
        return selected

    def _is_due(self, domain: MonitoredDomain, now: datetime) -> bool:
        last = self._monitor.last_checked(domain.name)
        return last is None or (now - last).total_seconds() >= domain.check_interval

    def monitor_domains(self) -> MonitorStats:
        """Check every due monitored domain and alert on unexpected changes."""
        stats = MonitorStats()
        targets = self.monitored_domains()
        logger.info(f"Found {len(targets)} domains with DNS alerts enabled")

        for index, domain in enumerate(targets):
            try:
                if not self._is_due(domain, self._clock()):
                    stats.skipped += 1
                    continue

                outcome = self._monitor.check_domain(domain.name)
                stats.checked += 1
                if outcome.changed:
                    logger.warning(f"DNS change detected: {domain.name} ({len(outcome.changes)} changes)")
                    self._alert_unexpected(domain, outcome.old_records, outcome.new_records, outcome.changes)
                    stats.changed += 1
            except (DnsLookupError, SQLAlchemyError) as e:
                logger.error(f"Error checking {domain.name}: {e}")
                stats.errors += 1

            if index < len(targets) - 1 and self._check_delay > 0:
                self._sleep(self._check_delay)

        logger.info(
            f"DNS monitoring complete: {stats.checked} checked, {stats.changed} changed, "
            f"{stats.skipped} skipped, {stats.errors} errors"
        )
        return stats

    def _alert_unexpected(self, domain: MonitoredDomain, old_records, new_records, changes) -> Optional[int]:
        audit_id = self._audit.log_dns_change(
            domain.name,
            NotificationType.UNEXPECTED,
            old_records,
            new_records,
            status=AuditStatus.DETECTED,
            domain_id=domain.domain_id,
            user_id=domain.user_id,
            actor=MONITOR_ACTOR,
            action="DNS_MONITOR",
        )
        if not domain.owner_email:
            logger.error(f"No owner email for domain: {domain.name}")
            return audit_id

        payload = self._payloads.unexpected(
            domain.name,
            changes,
            verify_url=self._url(f"/client/domains/dns?domain={domain.name}"),
            support_url=self._url("/support"),
        )
        queue_id = self._notifier.enqueue(
            NotificationType.UNEXPECTED, domain.owner_email, Channel.EMAIL, payload, audit_id
        )
        if queue_id is not None and audit_id is not None:
            self._audit.mark_post_notice_sent(audit_id)
        return audit_id

"""
DNS Change Audit

Append-only audit trail of DNS changes and the notices sent about them.
Rows are removed only by retention cleanup.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, delete, insert, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from grepp.models import AuditRecord, AuditStatus, DnsRecords, NotificationType
from grepp.store import dns_change_audit, utcnow

logger = logging.getLogger("grepp.audit")

DEFAULT_RETENTION_DAYS = 730


def _to_record(row) -> AuditRecord:
    return AuditRecord(
        id=row["id"],
        domain_name=row["domain_name"],
        change_type=row["change_type"],
        status=row["status"],
        old_records=row["old_records"] or {},
        new_records=row["new_records"] or {},
        pre_notice_sent=bool(row["pre_notice_sent"]),
        post_notice_sent=bool(row["post_notice_sent"]),
        domain_id=row["domain_id"],
        user_id=row["user_id"],
        actor=row["actor"],
        action=row["action"],
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class AuditLogger:
    """
    Writes and queries the ``dns_change_audit`` table.

    Write methods log database failures and report them through their
    return value so a failed audit never aborts the DNS operation itself.
    """

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow):
        self._engine = engine
        self._clock = clock

    def log_dns_change(
        self,
        domain_name: str,
        change_type: NotificationType,
        old_records: Optional[DnsRecords] = None,
        new_records: Optional[DnsRecords] = None,
        status: AuditStatus = AuditStatus.PENDING,
        domain_id: Optional[int] = None,
        user_id: Optional[int] = None,
        actor: Optional[str] = None,
        action: str = "UPDATE_ZONE",
    ) -> Optional[int]:
        """Insert an audit row. Returns its id, or None if the insert failed."""
        now = self._clock()
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    insert(dns_change_audit).values(
                        domain_id=domain_id,
                        domain_name=domain_name,
                        user_id=user_id,
                        actor=actor,
                        action=action,
                        change_type=NotificationType(change_type).value,
                        old_records=old_records or {},
                        new_records=new_records or {},
                        status=AuditStatus(status).value,
                        pre_notice_sent=False,
                        post_notice_sent=False,
                        created_at=now,
                        updated_at=now,
                    )
                )
                audit_id = int(result.inserted_primary_key[0])
        except SQLAlchemyError as e:
            logger.error(f"Failed to create audit log for {domain_name}: {e}")
            return None

        logger.info(f"Audit logged: id={audit_id} domain={domain_name} type={NotificationType(change_type).value}")
        return audit_id

    def _update(self, audit_id: int, **values: Any) -> bool:
        values["updated_at"] = self._clock()
        try:
            with self._engine.begin() as conn:
                conn.execute(update(dns_change_audit).where(dns_change_audit.c.id == audit_id).values(**values))
        except SQLAlchemyError as e:
            logger.error(f"Failed to update audit {audit_id}: {e}")
            return False
        return True

    def update_status(
        self,
        audit_id: int,
        status: AuditStatus,
        new_records: Optional[DnsRecords] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        values: Dict[str, Any] = {"status": AuditStatus(status).value}
        if new_records is not None:
            values["new_records"] = new_records
        if error_message is not None:
            values["error_message"] = error_message
        ok = self._update(audit_id, **values)
        if ok:
            logger.info(f"Audit updated: id={audit_id} status={values['status']}")
        return ok

    def mark_pre_notice_sent(self, audit_id: int) -> bool:
        return self._update(audit_id, pre_notice_sent=True)

    def mark_post_notice_sent(self, audit_id: int) -> bool:
        return self._update(audit_id, post_notice_sent=True)

    # =========================================================================
    # Queries
    # =========================================================================

    def _fetch(self, stmt) -> List[AuditRecord]:
        try:
            with self._engine.connect() as conn:
                return [_to_record(row) for row in conn.execute(stmt).mappings()]
        except SQLAlchemyError as e:
            logger.error(f"Audit query failed: {e}")
            return []

    def get(self, audit_id: int) -> Optional[AuditRecord]:
        records = self._fetch(select(dns_change_audit).where(dns_change_audit.c.id == audit_id))
        return records[0] if records else None

    def domain_audit_trail(self, domain_id: int, limit: int = 100) -> List[AuditRecord]:
        """Newest first."""
        return self._fetch(
            select(dns_change_audit)
            .where(dns_change_audit.c.domain_id == domain_id)
            .order_by(dns_change_audit.c.created_at.desc(), dns_change_audit.c.id.desc())
            .limit(limit)
        )

    def latest_audit(self, domain_id: int, action: str = "UPDATE_ZONE") -> Optional[AuditRecord]:
        records = self._fetch(
            select(dns_change_audit)
            .where(and_(dns_change_audit.c.domain_id == domain_id, dns_change_audit.c.action == action))
            .order_by(dns_change_audit.c.created_at.desc(), dns_change_audit.c.id.desc())
            .limit(1)
        )
        return records[0] if records else None

    def failed_changes(self, days: int = 7) -> List[AuditRecord]:
        since = self._clock() - timedelta(days=days)
        return self._fetch(
            select(dns_change_audit)
            .where(dns_change_audit.c.status == AuditStatus.FAILED.value)
            .where(dns_change_audit.c.created_at >= since)
            .order_by(dns_change_audit.c.created_at.desc())
        )

    def changes_without_notifications(self, days: int = 7) -> List[AuditRecord]:
        """Applied changes missing a pre or post notice."""
        since = self._clock() - timedelta(days=days)
        return self._fetch(
            select(dns_change_audit)
            .where(or_(
                dns_change_audit.c.pre_notice_sent.is_(False),
                dns_change_audit.c.post_notice_sent.is_(False),
            ))
            .where(dns_change_audit.c.status == AuditStatus.APPLIED.value)
            .where(dns_change_audit.c.created_at >= since)
            .order_by(dns_change_audit.c.created_at.desc())
        )

    def compliance_report(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """
        Daily totals between start and end (inclusive).

        One row per (date, change_type, status) with total_changes,
        pre_notices, post_notices and affected_domains; newest date first.
        """
        records = self._fetch(
            select(dns_change_audit)
            .where(dns_change_audit.c.created_at >= start)
            .where(dns_change_audit.c.created_at <= end)
        )

        groups: Dict[tuple, List[AuditRecord]] = defaultdict(list)
        for record in records:
            groups[(record.created_at.date(), record.change_type, record.status)].append(record)

        report = []
        for (day, change_type, status), items in groups.items():
            report.append({
                "date": day,
                "change_type": change_type,
                "status": status,
                "total_changes": len(items),
                "pre_notices": sum(1 for r in items if r.pre_notice_sent),
                "post_notices": sum(1 for r in items if r.post_notice_sent),
                "affected_domains": len({r.domain_id if r.domain_id is not None else r.domain_name for r in items}),
            })
        report.sort(key=lambda row: (-row["date"].toordinal(), row["change_type"]))
        return report

    def cleanup_old_logs(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete rows older than the retention period. Returns the number deleted."""
        cutoff = self._clock() - timedelta(days=retention_days)
        try:
            with self._engine.begin() as conn:
                result = conn.execute(delete(dns_change_audit).where(dns_change_audit.c.created_at < cutoff))
                deleted = int(result.rowcount or 0)
        except SQLAlchemyError as e:
            logger.error(f"Failed to clean up old audit logs: {e}")
            return 0

        logger.info(f"Cleaned up {deleted} old audit logs (retention: {retention_days} days)")
        return deleted

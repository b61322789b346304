"""
Persistence

SQLAlchemy Core tables for tracked domains, alert preferences, DNS
snapshots, the change audit trail and the notification queue, plus the
domain repository used by the sync job.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Engine

logger = logging.getLogger("grepp.store")

metadata = MetaData()

REGISTRAR_NAME = "grepp"
SYNC_STATUSES = ("Active", "Pending", "Suspended")
SYNC_TLDS = (".gr", ".ελ")


def utcnow() -> datetime:
    """Current time as naive UTC, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


domains = Table(
    "domains",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, index=True),
    Column("user_id", Integer, nullable=True),
    Column("owner_email", String(255), nullable=True),
    Column("registrar", String(64), nullable=False, default=REGISTRAR_NAME),
    Column("status", String(32), nullable=False, default="Active"),
    Column("dateregistered", Date, nullable=True),
    Column("expires", Date, nullable=True),
    Column("lastupdated", Date, nullable=True),
    Column("notes", Text, nullable=True),
)

dns_notifications_prefs = Table(
    "dns_notifications_prefs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    # NULL applies the preference to every domain of the user
    Column("domain_id", Integer, nullable=True),
    Column("owner_email", String(255), nullable=True),
    Column("enabled", Boolean, nullable=False, default=False),
    Column("check_interval", Integer, nullable=False, default=300),
    Column("created_at", DateTime, nullable=False, default=utcnow),
)

dns_alert_snapshots = Table(
    "dns_alert_snapshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("domain", String(255), nullable=False, index=True),
    Column("records", JSON, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("checked_at", DateTime, nullable=False),
)

dns_change_audit = Table(
    "dns_change_audit",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("domain_id", Integer, nullable=True, index=True),
    Column("domain_name", String(255), nullable=False),
    Column("user_id", Integer, nullable=True),
    Column("actor", String(255), nullable=True),
    Column("action", String(64), nullable=False, default="UPDATE_ZONE"),
    Column("change_type", String(16), nullable=False),
    Column("old_records", JSON, nullable=True),
    Column("new_records", JSON, nullable=True),
    Column("pre_notice_sent", Boolean, nullable=False, default=False),
    Column("post_notice_sent", Boolean, nullable=False, default=False),
    Column("status", String(16), nullable=False, default="PENDING"),
    Column("error_message", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, index=True),
    Column("updated_at", DateTime, nullable=False),
)

dns_notification_queue = Table(
    "dns_notification_queue",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("audit_id", Integer, nullable=True),
    Column("type", String(16), nullable=False),
    Column("channel", String(16), nullable=False),
    Column("recipient", String(255), nullable=False),
    Column("payload", JSON, nullable=False),
    Column("attempt", Integer, nullable=False, default=0),
    Column("max_attempts", Integer, nullable=False, default=5),
    Column("next_attempt_at", DateTime, nullable=False),
    Column("delivered_at", DateTime, nullable=True),
    Column("last_error", Text, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    Index("ix_dns_notification_queue_due", "delivered_at", "next_attempt_at"),
)


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for any SQLAlchemy URL."""
    return create_engine(url, echo=echo)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    metadata.create_all(engine)
    logger.info("Database tables created")


class DomainStore:
    """Repository over the ``domains`` table."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def add_domain(
        self,
        name: str,
        user_id: Optional[int] = None,
        owner_email: Optional[str] = None,
        registrar: str = REGISTRAR_NAME,
        status: str = "Active",
        expires: Optional[date] = None,
        dateregistered: Optional[date] = None,
    ) -> int:
        with self._engine.begin() as conn:
            result = conn.execute(
                insert(domains).values(
                    name=name,
                    user_id=user_id,
                    owner_email=owner_email,
                    registrar=registrar,
                    status=status,
                    expires=expires,
                    dateregistered=dateregistered,
                )
            )
            return int(result.inserted_primary_key[0])

    def get_domain(self, domain_id: int) -> Optional[Dict[str, Any]]:
        with self._engine.connect() as conn:
            row = conn.execute(select(domains).where(domains.c.id == domain_id)).mappings().one_or_none()
            return None if row is None else dict(row)

    def find_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(domains).where(domains.c.name == name).order_by(domains.c.id)
            ).mappings().first()
            return None if row is None else dict(row)

    def sync_candidates(self) -> List[Dict[str, Any]]:
        """Registry-managed .gr/.ελ domains in a syncable status, soonest expiry first."""
        stmt = (
            select(domains)
            .where(or_(*[domains.c.name.like(f"%{tld}") for tld in SYNC_TLDS]))
            .where(domains.c.registrar == REGISTRAR_NAME)
            .where(domains.c.status.in_(SYNC_STATUSES))
            .order_by(domains.c.expires.asc())
        )
        with self._engine.connect() as conn:
            return [dict(row) for row in conn.execute(stmt).mappings()]

    def update_dates(
        self,
        domain_id: int,
        expires: Optional[date],
        dateregistered: Optional[date],
        lastupdated: Optional[date],
    ) -> None:
        values = {"expires": expires, "lastupdated": lastupdated or utcnow().date()}
        if dateregistered is not None:
            values["dateregistered"] = dateregistered
        with self._engine.begin() as conn:
            conn.execute(update(domains).where(domains.c.id == domain_id).values(**values))

    def set_status(self, domain_id: int, status: str, notes: Optional[str] = None) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                update(domains).where(domains.c.id == domain_id).values(status=status, notes=notes)
            )

"""
DNS Monitor

Fetches DNS records with dig, keeps a snapshot per domain and reports the
per-type differences between the stored snapshot and the live records.
"""

import logging
import subprocess
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine

from grepp.exceptions import DnsLookupError
from grepp.models import CheckOutcome, DnsRecords, RecordChange
from grepp.store import dns_alert_snapshots, utcnow

logger = logging.getLogger("grepp.monitor")

DEFAULT_RECORD_TYPES = ("A", "MX", "NS")
DETECTED_AT_FORMAT = "%Y-%m-%d %H:%M:%S"


def compare_records(old: DnsRecords, new: DnsRecords, now: Optional[datetime] = None) -> List[RecordChange]:
    """
    Compare two record sets type by type.

    Values are compared order-insensitively. A type present on one side only
    is compared against an empty list. Each differing type yields one change
    with the sorted values joined by ", ".
    """
    detected_at = (now or utcnow()).strftime(DETECTED_AT_FORMAT)

    types = list(old)
    types.extend(t for t in new if t not in old)

    changes = []
    for record_type in types:
        old_values = sorted(old.get(record_type) or [])
        new_values = sorted(new.get(record_type) or [])
        if old_values != new_values:
            changes.append(RecordChange(
                type=record_type,
                old_value=", ".join(old_values),
                new_value=", ".join(new_values),
                detected_at=detected_at,
            ))
    return changes


class DigResolver:
    """Runs ``dig +short TYPE domain`` for each configured record type."""

    def __init__(
        self,
        dig_command: str = "/usr/bin/dig",
        record_types: Sequence[str] = DEFAULT_RECORD_TYPES,
        timeout: float = 10.0,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.dig_command = dig_command
        self.record_types = list(record_types)
        self.timeout = timeout
        self._runner = runner

    def query(self, domain: str, record_type: str) -> List[str]:
        """
        Return the answers for one record type; empty when there are none.

        Raises:
            DnsLookupError: If dig cannot run, times out or exits non-zero
        """
        try:
            completed = self._runner(
                [self.dig_command, "+short", record_type, domain],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise DnsLookupError(f"dig {record_type} {domain} timed out after {self.timeout}s")
        except OSError as e:
            raise DnsLookupError(f"Cannot run {self.dig_command}: {e}")

        if completed.returncode != 0:
            raise DnsLookupError(
                f"dig {record_type} {domain} exited with {completed.returncode}: {(completed.stderr or '').strip()}"
            )

        # dig reports resolver problems as ";;" comment lines
        lines = [line.strip() for line in (completed.stdout or "").splitlines()]
        return [line for line in lines if line and not line.startswith(";")]

    def fetch(self, domain: str) -> DnsRecords:
        """Fetch all configured types. Types without answers are omitted."""
        records: Dict[str, List[str]] = {}
        for record_type in self.record_types:
            values = self.query(domain, record_type)
            if values:
                records[record_type] = values
        return records


class DnsMonitor:
    """
    Snapshot-based DNS change detection.

    The first check of a domain only stores a snapshot. Later checks store a
    new snapshot when the records changed; every check refreshes
    ``checked_at`` on the latest snapshot.
    """

    def __init__(self, engine: Engine, resolver: DigResolver, clock: Callable[[], datetime] = utcnow):
        self._engine = engine
        self._resolver = resolver
        self._clock = clock

    def _latest_snapshot(self, domain: str):
        with self._engine.connect() as conn:
            return conn.execute(
                select(dns_alert_snapshots)
                .where(dns_alert_snapshots.c.domain == domain)
                .order_by(dns_alert_snapshots.c.created_at.desc(), dns_alert_snapshots.c.id.desc())
                .limit(1)
            ).mappings().first()

    def get_snapshot(self, domain: str) -> Optional[DnsRecords]:
        row = self._latest_snapshot(domain)
        return None if row is None else dict(row["records"] or {})

    def last_checked(self, domain: str) -> Optional[datetime]:
        row = self._latest_snapshot(domain)
        return None if row is None else row["checked_at"]

    def save_snapshot(self, domain: str, records: DnsRecords) -> None:
        now = self._clock()
        with self._engine.begin() as conn:
            conn.execute(
                insert(dns_alert_snapshots).values(
                    domain=domain,
                    records=records,
                    created_at=now,
                    checked_at=now,
                )
            )

    def _touch_snapshot(self, snapshot_id: int) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                update(dns_alert_snapshots)
                .where(dns_alert_snapshots.c.id == snapshot_id)
                .values(checked_at=self._clock())
            )

    def check_domain(self, domain: str) -> CheckOutcome:
        """
        Compare live records against the stored snapshot.

        Raises:
            DnsLookupError: If the records could not be fetched
        """
        current = self._resolver.fetch(domain)
        row = self._latest_snapshot(domain)

        if row is None:
            logger.info(f"First check of {domain}, storing snapshot")
            self.save_snapshot(domain, current)
            return CheckOutcome(changed=False, new_records=current)

        previous = dict(row["records"] or {})
        changes = compare_records(previous, current, self._clock())

        if not changes:
            self._touch_snapshot(row["id"])
            return CheckOutcome(changed=False, old_records=previous, new_records=current)

        logger.warning(f"DNS change detected for {domain}: {', '.join(c.type for c in changes)}")
        self.save_snapshot(domain, current)
        return CheckOutcome(changed=True, changes=changes, old_records=previous, new_records=current)

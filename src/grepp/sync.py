"""
Domain Sync

Reconciles locally tracked domains with the registry: expiry dates are
refreshed, domains gone from the registry are marked expired and domains
sponsored by another registrar are marked transferred away.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from grepp.exceptions import EPPError
from grepp.models import DomainSyncInfo, SyncState, SyncStats
from grepp.registrar import Registrar
from grepp.store import DomainStore, utcnow

logger = logging.getLogger("grepp.sync")

STATUS_EXPIRED = "Expired"
STATUS_TRANSFERRED_AWAY = "Transferred Away"


class DomainSync:
    """
    Domain synchronization run.

    Example:
        sync = DomainSync(registrar, DomainStore(engine))
        stats = sync.run()
    """

    def __init__(
        self,
        registrar: Registrar,
        store: DomainStore,
        delay_ms: int = 250,
        max_runtime_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._registrar = registrar
        self._store = store
        self._delay = delay_ms / 1000.0
        self._max_runtime = max_runtime_seconds
        self._sleep = sleep
        self._monotonic = monotonic

    def run(self) -> SyncStats:
        """Sync every candidate domain and return the counters."""
        stats = SyncStats()
        started = self._monotonic()

        candidates = self._store.sync_candidates()
        logger.info(f"Found {len(candidates)} domains to sync")

        for index, domain in enumerate(candidates):
            if self._max_runtime is not None and self._monotonic() - started >= self._max_runtime:
                logger.warning(f"Runtime limit of {self._max_runtime}s reached, {len(candidates) - index} domains left")
                break

            stats.total += 1
            try:
                self._sync_one(domain, stats)
            except (EPPError, SQLAlchemyError, ValueError) as e:
                logger.error(f"Error syncing {domain['name']}: {e}")
                stats.errors += 1

            if index < len(candidates) - 1 and self._delay > 0:
                self._sleep(self._delay)

        duration = self._monotonic() - started
        logger.info(
            f"Sync complete: total={stats.total} updated={stats.updated} expired={stats.expired} "
            f"transferred_away={stats.transferred_away} errors={stats.errors} "
            f"skipped={stats.skipped} duration={duration:.2f}s"
        )
        return stats

    def _sync_one(self, domain: Dict[str, Any], stats: SyncStats) -> None:
        name = domain["name"]
        logger.debug(f"Processing: {name}")

        result = self._registrar.sync_domain(name)
        if not result.success:
            logger.error(f"Registry error for {name}: {result.message} (code {result.code})")
            stats.errors += 1
            return

        info: DomainSyncInfo = result.data
        today = utcnow().date().isoformat()

        if info.state == SyncState.EXPIRED:
            logger.warning(f"Domain {name} not found in registry, marking expired")
            self._store.set_status(domain["id"], STATUS_EXPIRED, f"Domain not found in registry as of {today}")
            stats.expired += 1
            return

        if info.state == SyncState.TRANSFERRED_AWAY:
            logger.warning(f"Authorization failed for {name}, marking transferred away")
            self._store.set_status(domain["id"], STATUS_TRANSFERRED_AWAY, f"Domain transferred away as of {today}")
            stats.transferred_away += 1
            return

        changes = []
        if info.expiry_date is not None and domain.get("expires") != info.expiry_date:
            changes.append(f"Expiry: {domain.get('expires')} -> {info.expiry_date}")
        if info.state == SyncState.PENDING_DELETE:
            changes.append("Status: Pending Delete")
            stats.expired += 1

        if not changes:
            logger.debug(f"No changes needed for {name}")
            stats.skipped += 1
            return

        self._store.update_dates(
            domain["id"],
            expires=info.expiry_date or domain.get("expires"),
            dateregistered=info.registration_date,
            lastupdated=info.updated_date,
        )
        logger.info(f"Updated {name}: {', '.join(changes)}")
        stats.updated += 1

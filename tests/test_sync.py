from datetime import date

import pytest

from grepp.exceptions import EPPCommandError
from grepp.models import DomainSyncInfo, OperationResult, SyncState
from grepp.store import DomainStore
from grepp.sync import STATUS_EXPIRED, STATUS_TRANSFERRED_AWAY, DomainSync


class StubRegistrar:
    """Answers sync_domain from a name -> OperationResult map."""

    def __init__(self, results):
        self.results = results
        self.calls = []

    def sync_domain(self, name):
        self.calls.append(name)
        result = self.results[name]
        if isinstance(result, Exception):
            raise result
        return result


def synced(state=SyncState.ACTIVE, expiry=None, registered=None, updated=None):
    return OperationResult.ok(data=DomainSyncInfo(
        state=state,
        expiry_date=expiry,
        registration_date=registered,
        updated_date=updated,
    ))


@pytest.fixture
def store(engine):
    return DomainStore(engine)


def test_sync_candidates_filter_and_order(store):
    later = store.add_domain("later.gr", expires=date(2028, 1, 1))
    sooner = store.add_domain("παράδειγμα.ελ", expires=date(2026, 6, 1))
    store.add_domain("example.com", expires=date(2026, 1, 1))
    store.add_domain("other.gr", registrar="another", expires=date(2026, 1, 1))
    store.add_domain("gone.gr", status="Expired", expires=date(2026, 1, 1))
    pending = store.add_domain("pending.gr", status="Pending", expires=date(2027, 1, 1))

    ids = [row["id"] for row in store.sync_candidates()]

    assert ids == [sooner, pending, later]


def test_find_by_name(store):
    domain_id = store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    row = store.find_by_name("example.gr")
    assert row["id"] == domain_id
    assert row["user_id"] == 7
    assert store.find_by_name("missing.gr") is None
    assert store.get_domain(domain_id)["owner_email"] == "owner@example.gr"


def test_expired_domain_is_marked(store):
    domain_id = store.add_domain("gone.gr", expires=date(2026, 1, 1))
    sync = DomainSync(StubRegistrar({"gone.gr": synced(SyncState.EXPIRED)}), store, delay_ms=0)

    stats = sync.run()

    assert stats.total == 1
    assert stats.expired == 1
    row = store.get_domain(domain_id)
    assert row["status"] == STATUS_EXPIRED
    assert row["notes"].startswith("Domain not found in registry as of ")


def test_transferred_domain_is_marked(store):
    domain_id = store.add_domain("moved.gr", expires=date(2026, 1, 1))
    sync = DomainSync(StubRegistrar({"moved.gr": synced(SyncState.TRANSFERRED_AWAY)}), store, delay_ms=0)

    stats = sync.run()

    assert stats.transferred_away == 1
    assert store.get_domain(domain_id)["status"] == STATUS_TRANSFERRED_AWAY


def test_new_expiry_updates_dates(store):
    domain_id = store.add_domain("example.gr", expires=date(2026, 5, 1))
    registrar = StubRegistrar({
        "example.gr": synced(expiry=date(2028, 5, 1), registered=date(2020, 5, 1), updated=date(2026, 3, 1)),
    })

    stats = DomainSync(registrar, store, delay_ms=0).run()

    assert stats.updated == 1
    row = store.get_domain(domain_id)
    assert row["expires"] == date(2028, 5, 1)
    assert row["dateregistered"] == date(2020, 5, 1)
    assert row["lastupdated"] == date(2026, 3, 1)
    assert row["status"] == "Active"


def test_unchanged_domain_is_skipped(store):
    store.add_domain("example.gr", expires=date(2027, 5, 1))
    stats = DomainSync(StubRegistrar({"example.gr": synced(expiry=date(2027, 5, 1))}), store, delay_ms=0).run()
    assert stats.skipped == 1
    assert stats.updated == 0


def test_pending_delete_counts_as_expired_update(store):
    store.add_domain("dying.gr", expires=date(2026, 5, 1))
    registrar = StubRegistrar({"dying.gr": synced(SyncState.PENDING_DELETE, expiry=date(2026, 5, 1))})

    stats = DomainSync(registrar, store, delay_ms=0).run()

    assert stats.expired == 1
    assert stats.updated == 1


def test_errors_do_not_stop_the_run(store):
    store.add_domain("a.gr", expires=date(2026, 1, 1))
    store.add_domain("b.gr", expires=date(2026, 2, 1))
    store.add_domain("c.gr", expires=date(2026, 3, 1))
    registrar = StubRegistrar({
        "a.gr": OperationResult.failure(EPPCommandError("Command failed", 2400)),
        "b.gr": EPPCommandError("boom"),
        "c.gr": synced(SyncState.EXPIRED),
    })

    stats = DomainSync(registrar, store, delay_ms=0).run()

    assert registrar.calls == ["a.gr", "b.gr", "c.gr"]
    assert stats.total == 3
    assert stats.errors == 2
    assert stats.expired == 1


def test_delay_between_domains(store):
    for name in ("a.gr", "b.gr", "c.gr"):
        store.add_domain(name, expires=date(2026, 1, 1))
    sleeps = []
    registrar = StubRegistrar({name: synced(expiry=date(2026, 1, 1)) for name in ("a.gr", "b.gr", "c.gr")})

    DomainSync(registrar, store, delay_ms=250, sleep=sleeps.append).run()

    assert sleeps == [0.25, 0.25]


def test_runtime_limit_stops_early(store):
    for name in ("a.gr", "b.gr", "c.gr"):
        store.add_domain(name, expires=date(2026, 1, 1))
    ticks = iter([0.0, 0.0, 5.0, 11.0, 12.0])
    registrar = StubRegistrar({name: synced(expiry=date(2026, 1, 1)) for name in ("a.gr", "b.gr", "c.gr")})

    stats = DomainSync(
        registrar,
        store,
        delay_ms=0,
        max_runtime_seconds=10,
        monotonic=lambda: next(ticks),
    ).run()

    assert registrar.calls == ["a.gr", "b.gr"]
    assert stats.total == 2

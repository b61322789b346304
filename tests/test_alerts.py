import pytest

from grepp.alerts import MONITOR_ACTOR, DnsAlertService
from grepp.audit import AuditLogger
from grepp.dns_monitor import DnsMonitor
from grepp.exceptions import DnsLookupError
from grepp.notifications import NotificationManager
from grepp.store import DomainStore

OLD = {"A": ["192.0.2.1"], "MX": ["10 mail.example.gr."]}
NEW = {"A": ["203.0.113.5"], "MX": ["10 mail.example.gr."]}


class MutableResolver:
    """Resolver returning whatever records the test sets per domain."""

    def __init__(self, records=None):
        self.records = records or {}
        self.failing = set()

    def fetch(self, domain):
        if domain in self.failing:
            raise DnsLookupError(f"dig failed for {domain}")
        return dict(self.records.get(domain, {}))


@pytest.fixture
def resolver():
    return MutableResolver()


@pytest.fixture
def notifier(engine, clock):
    return NotificationManager(engine, clock=clock)


@pytest.fixture
def audit(engine, clock):
    return AuditLogger(engine, clock)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def service(engine, resolver, notifier, audit, sleeps, clock):
    return DnsAlertService(
        engine,
        DnsMonitor(engine, resolver, clock),
        notifier,
        audit,
        base_url="https://panel.example.gr/",
        sleep=sleeps.append,
        clock=clock,
    )


@pytest.fixture
def store(engine):
    return DomainStore(engine)


# =============================================================================
# Change hooks
# =============================================================================

def test_before_change_queues_pre_notice(service, store, add_pref, notifier, audit):
    domain_id = store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7)

    audit_id = service.before_dns_change("example.gr", OLD, NEW, initiated_by="maria", change_id="c42")

    record = audit.get(audit_id)
    assert record.change_type == "PRE"
    assert record.status == "PENDING"
    assert record.domain_id == domain_id
    assert record.actor == "maria"
    assert record.pre_notice_sent

    [item] = notifier.due_items()
    assert item.type == "PRE"
    assert item.channel == "EMAIL"
    assert item.recipient == "owner@example.gr"
    assert item.audit_id == audit_id
    assert "https://panel.example.gr/client/dns-alert/cancel/c42" in item.payload.body


def test_preference_email_overrides_domain_email(service, store, add_pref, notifier):
    store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7, owner_email="alerts@example.gr")

    service.before_dns_change("example.gr", OLD, NEW)

    assert notifier.due_items()[0].recipient == "alerts@example.gr"


def test_before_change_without_opt_in(service, store, notifier):
    store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    assert service.before_dns_change("example.gr", OLD, NEW) is None
    assert notifier.due_items() == []


def test_disabled_preference_blocks_alerts(service, store, add_pref, notifier):
    store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7, enabled=False)
    assert not service.alerts_enabled(7)
    assert service.before_dns_change("example.gr", OLD, NEW) is None


def test_domain_preference_overrides_global(service, store, add_pref):
    domain_id = store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7, enabled=True)
    add_pref(7, domain_id=domain_id, enabled=False)

    assert service.alerts_enabled(7)
    assert not service.alerts_enabled(7, domain_id)


def test_unmanaged_or_unchanged_domain_is_ignored(service, store, add_pref, notifier):
    store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7)

    assert service.before_dns_change("unknown.gr", OLD, NEW) is None
    assert service.before_dns_change("example.gr", OLD, OLD) is None
    assert notifier.due_items() == []


def test_pre_change_switch(service, store, add_pref):
    store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7)
    service.pre_change = False
    assert service.before_dns_change("example.gr", OLD, NEW) is None


def test_after_change_completes_audit_row(service, store, add_pref, notifier, audit):
    store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7)
    audit_id = service.before_dns_change("example.gr", OLD, NEW)

    assert service.after_dns_change("example.gr", OLD, NEW, audit_id=audit_id) == audit_id

    record = audit.get(audit_id)
    assert record.status == "APPLIED"
    assert record.post_notice_sent
    assert [i.type for i in notifier.due_items()] == ["PRE", "POST"]
    assert "https://panel.example.gr/client/domains/dns?domain=example.gr" in notifier.due_items()[1].payload.body


def test_after_change_without_pre_notice_writes_post_row(service, store, add_pref, notifier, audit):
    store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7)

    audit_id = service.after_dns_change("example.gr", OLD, NEW, initiated_by="api")

    record = audit.get(audit_id)
    assert record.change_type == "POST"
    assert record.status == "APPLIED"
    assert record.post_notice_sent
    assert [i.type for i in notifier.due_items()] == ["POST"]


def test_failed_change_is_audited_not_notified(service, store, add_pref, notifier, audit):
    store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7)
    audit_id = service.before_dns_change("example.gr", OLD, NEW)

    service.after_dns_change("example.gr", OLD, NEW, audit_id=audit_id, error_message="zone rejected")

    record = audit.get(audit_id)
    assert record.status == "FAILED"
    assert record.error_message == "zone rejected"
    assert not record.post_notice_sent
    assert [i.type for i in notifier.due_items()] == ["PRE"]


def test_failure_without_audit_id_writes_failed_row(service, store, audit, notifier):
    store.add_domain("example.gr", user_id=7)

    audit_id = service.after_dns_change("example.gr", OLD, NEW, error_message="timeout")

    record = audit.get(audit_id)
    assert record.status == "FAILED"
    assert record.error_message == "timeout"
    assert record.user_id == 7
    assert notifier.due_items() == []


# =============================================================================
# Monitoring
# =============================================================================

def test_monitored_domains_one_entry_per_domain(service, store, add_pref):
    first = store.add_domain("a.gr", user_id=7, owner_email="owner@example.gr")
    second = store.add_domain("b.gr", user_id=7, owner_email="owner@example.gr")
    store.add_domain("c.gr", user_id=7, status="Expired")
    store.add_domain("d.gr", user_id=8)
    add_pref(7, check_interval=600)
    add_pref(7, domain_id=second, owner_email="b-alerts@example.gr", check_interval=60)

    targets = service.monitored_domains()

    assert [t.domain_id for t in targets] == [first, second]
    assert targets[0].check_interval == 600
    assert targets[0].owner_email == "owner@example.gr"
    assert targets[1].check_interval == 60
    assert targets[1].owner_email == "b-alerts@example.gr"


def test_domain_opt_out_excludes_monitoring(service, store, add_pref, resolver, notifier, clock):
    opted_out = store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    other = store.add_domain("other.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7, enabled=True)
    add_pref(7, domain_id=opted_out, enabled=False)

    assert not service.alerts_enabled(7, opted_out)
    assert [t.domain_id for t in service.monitored_domains()] == [other]

    resolver.records["example.gr"] = OLD
    service.monitor_domains()
    clock.advance(minutes=5)
    resolver.records["example.gr"] = NEW
    service.monitor_domains()
    assert notifier.due_items() == []


def test_domain_opt_in_overrides_global_opt_out(service, store, add_pref):
    domain_id = store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    store.add_domain("other.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7, enabled=False)
    add_pref(7, domain_id=domain_id, enabled=True)

    assert [t.domain_id for t in service.monitored_domains()] == [domain_id]


def test_first_pass_only_takes_snapshot(service, store, add_pref, resolver, notifier):
    store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7)
    resolver.records["example.gr"] = OLD

    stats = service.monitor_domains()

    assert (stats.checked, stats.changed) == (1, 0)
    assert notifier.due_items() == []


def test_unexpected_change_is_alerted(service, store, add_pref, resolver, notifier, audit, clock):
    domain_id = store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7)
    resolver.records["example.gr"] = OLD
    service.monitor_domains()

    clock.advance(minutes=5)
    resolver.records["example.gr"] = NEW
    stats = service.monitor_domains()

    assert stats.changed == 1
    [item] = notifier.due_items()
    assert item.type == "UNEXPECTED"
    assert item.payload.subject == "[SECURITY ALERT] Unexpected DNS change detected for example.gr"
    assert "https://panel.example.gr/support" in item.payload.body

    record = audit.latest_audit(domain_id, action="DNS_MONITOR")
    assert record.id == item.audit_id
    assert record.status == "DETECTED"
    assert record.actor == MONITOR_ACTOR
    assert record.old_records == OLD
    assert record.new_records == NEW
    assert record.post_notice_sent


def test_domain_not_due_is_skipped(service, store, add_pref, resolver, clock):
    store.add_domain("example.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7, check_interval=600)
    resolver.records["example.gr"] = OLD
    service.monitor_domains()

    clock.advance(minutes=5)
    stats = service.monitor_domains()

    assert stats.skipped == 1
    assert stats.checked == 0


def test_lookup_errors_are_counted(service, store, add_pref, resolver, sleeps):
    store.add_domain("a.gr", user_id=7, owner_email="owner@example.gr")
    store.add_domain("b.gr", user_id=7, owner_email="owner@example.gr")
    add_pref(7)
    resolver.failing.add("a.gr")
    resolver.records["b.gr"] = OLD

    stats = service.monitor_domains()

    assert stats.errors == 1
    assert stats.checked == 1
    assert sleeps == [0.1]

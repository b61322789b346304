import subprocess
from datetime import datetime

import pytest
from hypothesis import assume, given
from hypothesis import strategies as st

from grepp.dns_monitor import DigResolver, DnsMonitor, compare_records
from grepp.exceptions import DnsLookupError

NOW = datetime(2026, 3, 10, 12, 0, 0)

record_values = st.lists(st.from_regex(r"[a-z0-9.]{1,20}", fullmatch=True), max_size=4)
record_sets = st.dictionaries(st.sampled_from(["A", "AAAA", "MX", "NS", "TXT"]), record_values, max_size=5)


# =============================================================================
# compare_records
# =============================================================================

def test_compare_detects_changed_type():
    old = {"A": ["192.0.2.1"], "MX": ["10 mail.example.gr."]}
    new = {"A": ["192.0.2.2"], "MX": ["10 mail.example.gr."]}

    changes = compare_records(old, new, NOW)

    assert len(changes) == 1
    change = changes[0]
    assert change.type == "A"
    assert change.old_value == "192.0.2.1"
    assert change.new_value == "192.0.2.2"
    assert change.detected_at == "2026-03-10 12:00:00"


def test_compare_ignores_value_order():
    old = {"NS": ["ns2.example.net.", "ns1.example.net."]}
    new = {"NS": ["ns1.example.net.", "ns2.example.net."]}
    assert compare_records(old, new, NOW) == []


def test_compare_added_and_removed_types():
    old = {"A": ["192.0.2.1"], "MX": ["10 mail.example.gr."]}
    new = {"A": ["192.0.2.1"], "NS": ["ns2.example.net.", "ns1.example.net."]}

    changes = compare_records(old, new, NOW)

    assert [(c.type, c.old_value, c.new_value) for c in changes] == [
        ("MX", "10 mail.example.gr.", ""),
        ("NS", "", "ns1.example.net., ns2.example.net."),
    ]


def test_compare_empty_list_equals_missing_type():
    assert compare_records({"A": []}, {}, NOW) == []


@given(record_sets)
def test_compare_with_itself_is_empty(records):
    assert compare_records(records, records, NOW) == []


@given(record_sets, st.sampled_from(["A", "MX", "NS"]), record_values, record_values)
def test_single_type_difference_yields_one_change(records, record_type, before, after):
    assume(sorted(before) != sorted(after))
    old = dict(records, **{record_type: before})
    new = dict(records, **{record_type: after})

    changes = compare_records(old, new, NOW)

    assert [c.type for c in changes] == [record_type]


# =============================================================================
# DigResolver
# =============================================================================

class FakeRunner:
    def __init__(self, answers=None, returncode=0, error=None):
        self.answers = answers or {}
        self.returncode = returncode
        self.error = error
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append((args, kwargs))
        if self.error is not None:
            raise self.error
        record_type = args[2]
        return subprocess.CompletedProcess(args, self.returncode, stdout=self.answers.get(record_type, ""), stderr="dig failed")


def test_query_runs_dig_short():
    runner = FakeRunner({"A": "192.0.2.1\n192.0.2.2\n"})
    resolver = DigResolver(dig_command="/usr/local/bin/dig", timeout=5, runner=runner)

    assert resolver.query("example.gr", "A") == ["192.0.2.1", "192.0.2.2"]
    args, kwargs = runner.calls[0]
    assert args == ["/usr/local/bin/dig", "+short", "A", "example.gr"]
    assert kwargs["timeout"] == 5
    assert kwargs["check"] is False


def test_query_drops_comment_lines():
    runner = FakeRunner({"A": ";; connection timed out; no servers could be reached\n\n"})
    assert DigResolver(runner=runner).query("example.gr", "A") == []


def test_fetch_omits_empty_types():
    runner = FakeRunner({"A": "192.0.2.1\n", "NS": "ns1.example.net.\nns2.example.net.\n"})
    records = DigResolver(runner=runner).fetch("example.gr")
    assert records == {"A": ["192.0.2.1"], "NS": ["ns1.example.net.", "ns2.example.net."]}


@pytest.mark.parametrize("runner", [
    FakeRunner(returncode=9),
    FakeRunner(error=subprocess.TimeoutExpired(["dig"], 10)),
    FakeRunner(error=FileNotFoundError("dig")),
])
def test_query_failures_raise(runner):
    with pytest.raises(DnsLookupError):
        DigResolver(runner=runner).query("example.gr", "A")


# =============================================================================
# DnsMonitor
# =============================================================================

class StaticResolver:
    def __init__(self, records):
        self.records = records

    def fetch(self, domain):
        return dict(self.records)


def test_first_check_stores_snapshot(engine, clock):
    monitor = DnsMonitor(engine, StaticResolver({"A": ["192.0.2.1"]}), clock=clock)

    outcome = monitor.check_domain("example.gr")

    assert not outcome.changed
    assert outcome.new_records == {"A": ["192.0.2.1"]}
    assert monitor.get_snapshot("example.gr") == {"A": ["192.0.2.1"]}
    assert monitor.last_checked("example.gr") == clock.now


def test_unchanged_check_refreshes_checked_at(engine, clock):
    monitor = DnsMonitor(engine, StaticResolver({"A": ["192.0.2.1"]}), clock=clock)
    monitor.check_domain("example.gr")
    clock.advance(minutes=5)

    outcome = monitor.check_domain("example.gr")

    assert not outcome.changed
    assert outcome.old_records == {"A": ["192.0.2.1"]}
    assert monitor.last_checked("example.gr") == clock.now


def test_changed_records_store_new_snapshot(engine, clock):
    resolver = StaticResolver({"A": ["192.0.2.1"], "NS": ["ns1.example.net."]})
    monitor = DnsMonitor(engine, resolver, clock=clock)
    monitor.check_domain("example.gr")
    clock.advance(minutes=5)
    resolver.records = {"A": ["203.0.113.66"], "NS": ["ns1.example.net."]}

    outcome = monitor.check_domain("example.gr")

    assert outcome.changed
    assert [c.type for c in outcome.changes] == ["A"]
    assert outcome.old_records["A"] == ["192.0.2.1"]
    assert monitor.get_snapshot("example.gr")["A"] == ["203.0.113.66"]


def test_lookup_failure_leaves_snapshot(engine, clock):
    monitor = DnsMonitor(engine, DigResolver(runner=FakeRunner(returncode=1)), clock=clock)
    with pytest.raises(DnsLookupError):
        monitor.check_domain("example.gr")
    assert monitor.get_snapshot("example.gr") is None

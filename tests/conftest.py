from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, insert
from sqlalchemy.pool import StaticPool

from epp_xml import FakeConnection
from grepp.client import EPPClient
from grepp.registrar import Registrar
from grepp.store import dns_notifications_prefs, init_db


class FixedClock:
    """Settable clock returning naive UTC datetimes."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 10, 12, 0, 0))


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def client(connection):
    return EPPClient("grepp_user", "s3cret", use_sandbox=True, connection=connection)


@pytest.fixture
def registrar(client):
    ids = iter(f"grepp_{n}" for n in range(1, 100))
    return Registrar(client, registrar_id="grepp", contact_id_factory=lambda: next(ids))


@pytest.fixture
def add_pref(engine):
    """Insert an alert preference row."""
    def _add(user_id, domain_id=None, enabled=True, owner_email=None, check_interval=300):
        with engine.begin() as conn:
            conn.execute(
                insert(dns_notifications_prefs).values(
                    user_id=user_id,
                    domain_id=domain_id,
                    enabled=enabled,
                    owner_email=owner_email,
                    check_interval=check_interval,
                )
            )
    return _add

"""
tests/conftest.py -- Shared test fixtures for O'secours tests.

This module provides:
  - FakeSmsGateway: in-memory SmsGateway that records codes and can be told to fail
  - engine / credential_store / audit / codec / ledger: unit-level building blocks
    on a private sqlite:///:memory: database
  - harness: TestClient over the real app with a patched lifespan, seeded with
    one user per role

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient harness because route handlers run in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.
Each harness gets a fresh name, so tests never see each other's rows.

APP_ENV and JWT_SECRET_TEST must be set before any api/ import, because
api/main.py reads settings at import time and a missing secret is fatal.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: configure the environment before any core/api import.
os.environ["APP_ENV"] = "test"
os.environ.setdefault("JWT_SECRET_TEST", "test-secret-for-the-osecours-suite-0123456789")
os.environ["LOGIN_RATE_LIMIT"] = "1000/minute"
os.environ["OTP_RATE_LIMIT"] = "1000/minute"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app, wire_services
from audit.store import AuditLogger
from auth.ledger import TokenLedger
from auth.models import AdminProfile, CitizenProfile, RescueMemberProfile, RescueService, User
from auth.store import CredentialStore
from auth.tokens import TokenCodec, hash_password
from core.config import CodecConfig, get_settings
from core.db import create_db_engine
from sms.gateway import SmsGateway, SmsResult

TEST_SECRET = "unit-test-secret-0123456789abcdef0123"
PASSWORD = "Passw0rd!"
# Hash once for every seeded user; bcrypt is slow.
PASSWORD_HASH = hash_password(PASSWORD)

CITIZEN_EMAIL = "citizen@example.com"
RESCUER_EMAIL = "rescuer@example.com"
ADMIN_EMAIL = "admin@example.com"


# ---------------------------------------------------------------------------
# Fakes and clocks
# ---------------------------------------------------------------------------


class FakeSmsGateway(SmsGateway):
    """Records every OTP handed to it. Set fail=True to simulate an outage."""

    country_code = "225"

    def __init__(self) -> None:
        self.fail = False
        self.sent: list[tuple[str, str]] = []
        self.codes: list[tuple[str, str]] = []

    def send(self, to: str, message: str) -> SmsResult:
        if self.fail:
            return SmsResult(success=False, message="gateway unavailable")
        self.sent.append((to, message))
        return SmsResult(success=True)

    def send_otp(self, phone_number: str, code: str, expiration_minutes: int) -> SmsResult:
        self.codes.append((phone_number, code))
        return super().send_otp(phone_number, code, expiration_minutes)

    def last_code(self, phone_number: str) -> str:
        return [c for p, c in self.codes if p == phone_number][-1]


class FrozenClock:
    """Callable clock for injection; advance() moves it forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


def make_citizen(email: str = CITIZEN_EMAIL, phone: str = "0701020304") -> User:
    return User(
        email=email,
        password_hash=PASSWORD_HASH,
        profile=CitizenProfile(),
        phone_number=phone,
        first_name="Awa",
        last_name="Kone",
    )


def make_rescuer(email: str = RESCUER_EMAIL, badge: str = "RM001") -> User:
    return User(
        email=email,
        password_hash=PASSWORD_HASH,
        profile=RescueMemberProfile(
            rescue_service=RescueService(name="SAMU", service_type="Urgence médicale", contact_number="15"),
            badge_number=badge,
            position="Intervenant",
        ),
        first_name="Yao",
        last_name="Kouassi",
    )


def make_admin(email: str = ADMIN_EMAIL) -> User:
    return User(
        email=email,
        password_hash=PASSWORD_HASH,
        profile=AdminProfile(permissions=["users:manage"]),
        first_name="Admin",
        last_name="Systeme",
    )


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = create_db_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def credential_store(engine: Engine) -> CredentialStore:
    return CredentialStore(engine)


@pytest.fixture
def audit(engine: Engine) -> AuditLogger:
    return AuditLogger(engine, environment="test")


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(CodecConfig(secret=TEST_SECRET))


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime.now(timezone.utc))


@pytest.fixture
def ledger(credential_store: CredentialStore, codec: TokenCodec, clock: FrozenClock) -> TokenLedger:
    return TokenLedger(credential_store, codec, clock=clock)


# ---------------------------------------------------------------------------
# Integration harness
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    gateway: FakeSmsGateway
    citizen_id: int
    rescuer_id: int
    admin_id: int

    @property
    def state(self):
        return self.client.app.state

    def login(self, email: str, password: str = PASSWORD) -> dict:
        resp = self.client.post("/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["data"]["tokens"]

    @staticmethod
    def bearer(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(engine: Engine, gateway: SmsGateway):
    """Return an async context manager that replaces the real lifespan.

    Wires services on the test engine and the fake gateway, so routes never
    touch the file database or the network.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, get_settings(), engine, gateway=gateway)
        yield

    return test_lifespan


@pytest.fixture
def harness() -> Generator[Harness, None, None]:
    """Yield a Harness around a TestClient with one seeded user per role."""
    engine = create_db_engine(f"sqlite:///file:osecours_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    # Hold one connection open for the whole test: the shared in-memory
    # database disappears when its last connection closes.
    keeper = engine.connect()
    store = CredentialStore(engine)
    citizen_id = store.create_user(make_citizen())
    rescuer_id = store.create_user(make_rescuer())
    admin_id = store.create_user(make_admin())

    gateway = FakeSmsGateway()
    app.router.lifespan_context = _patch_lifespan(engine, gateway)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield Harness(client, gateway, citizen_id, rescuer_id, admin_id)

    keeper.close()
    engine.dispose()

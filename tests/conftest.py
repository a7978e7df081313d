"""
Shared fixtures: in-memory SQLite, FastAPI TestClient, captured emails, fake watcher sleep.

Run with: pytest -v
"""
import os

# Configure before any client_portal import reads settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["MAILGUN_API_KEY"] = ""
os.environ["MAILGUN_DOMAIN"] = ""
os.environ["SENDGRID_API_KEY"] = ""
os.environ["PROVISIONING_TRIGGER_ENABLED"] = "false"

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from client_portal.database import Base, SessionLocal, engine
from client_portal import models  # noqa: F401
from client_portal.main import app
from client_portal.routers.auth import get_watcher_factory
from client_portal.services import provisioning
from client_portal.services.provisioning_watcher import ProvisioningWatcher
from client_portal.services.signup import SignupRequest


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def now():
    return datetime(2025, 7, 27, 12, 0, 0, tzinfo=timezone.utc)


class Outbox:
    """Captures verification/welcome emails instead of calling a provider."""

    def __init__(self):
        self.codes = []
        self.welcomes = []
        self.deliver = True

    def send_code(self, to_email, code, first_name=None):
        self.codes.append({"to": to_email, "code": code, "first_name": first_name})
        return self.deliver

    def send_welcome(self, to_email, first_name=None, company_name=None):
        self.welcomes.append({"to": to_email, "first_name": first_name, "company_name": company_name})
        return self.deliver

    def last_code(self, email):
        for sent in reversed(self.codes):
            if sent["to"] == email:
                return sent["code"]
        return None


@pytest.fixture
def outbox(monkeypatch):
    box = Outbox()
    monkeypatch.setattr("client_portal.services.signup.send_verification_email", box.send_code)
    monkeypatch.setattr("client_portal.services.resend.send_verification_email", box.send_code)
    monkeypatch.setattr("client_portal.services.verification.send_welcome_email", box.send_welcome)
    return box


class FakeSleep:
    """Records requested sleeps; optionally runs the downstream materializer on a given tick."""

    def __init__(self, materialize_on_tick=None):
        self.calls = []
        self.materialize_on_tick = materialize_on_tick

    def __call__(self, seconds):
        self.calls.append(seconds)
        if self.materialize_on_tick is not None and len(self.calls) == self.materialize_on_tick:
            provisioning.run_provisioning_sweep()

    @property
    def total_ms(self):
        return round(sum(self.calls) * 1000)


@pytest.fixture
def fake_sleep():
    return FakeSleep()


def make_watcher_factory(sleep, max_attempts=10, interval_ms=1000, backoff_after=10, max_interval_ms=3000):
    def factory(identity_id):
        return ProvisioningWatcher(
            identity_id,
            provisioning.business_account_ready,
            max_attempts=max_attempts,
            interval_ms=interval_ms,
            backoff_after=backoff_after,
            max_interval_ms=max_interval_ms,
            sleep=sleep,
        )

    return factory


@pytest.fixture
def client():
    # No context manager: startup (scheduler, create_all on the real DB) stays off in tests
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def use_watcher():
    """Install a watcher factory for POST /verify-otp."""

    def install(factory):
        app.dependency_overrides[get_watcher_factory] = lambda: factory

    yield install
    app.dependency_overrides.pop(get_watcher_factory, None)


def signup_request(email="a@biz.com", password="Pass1234", company="Acme", first="Jo", last="Doe"):
    return SignupRequest(email=email, password=password, company_name=company, first_name=first, last_name=last)

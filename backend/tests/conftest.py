"""
Shared fixtures for backend tests: an in-memory database, collaborator
doubles, and an application wired to both.
"""

import hashlib
import hmac
import json
import os
import sys
import time
from datetime import datetime, timezone
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))

from backend.clients.payments import PaymentGateway
from backend.config import Settings
from backend.database import create_db_engine, create_session_factory, init_db
from backend.dependencies import Services
from backend.errors import UpstreamError
from backend.main import create_app
from backend.models import GeneratedIdea
from backend.models_db import Account
from backend.realtime import ChangeFeed
from backend.services.accounts import create_account, plan_columns
from backend.services.billing_sync import BillingSynchronizer
from forge.plans import PlanKey, get_plan

WEBHOOK_SECRET = "whsec_test_secret"
RUNNER_TOKEN = "runner-test-token"
PRICES = {
    PlanKey.FOUNDER: "price_founder",
    PlanKey.TEAM: "price_team",
    PlanKey.ENTERPRISE: "price_enterprise",
}
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def sample_idea(**overrides) -> GeneratedIdea:
    data = {
        "title": "ShiftSwap",
        "description": "Marketplace for hourly workers to trade shifts.",
        "problem": "Shift changes are negotiated over group chats.",
        "solution": "A shift board with manager approval.",
        "target_audience": "Restaurant and retail teams",
        "tech_stack": ["React", "FastAPI"],
        "features": ["Shift board", "Approvals"],
        "monetization": "Per-location subscription",
        "market_size": "$2B",
        "competitors": ["7shifts"],
        "score": 82,
    }
    data.update(overrides)
    return GeneratedIdea(**data)


class FakeGenerator:
    """Idea generator double; set ``error`` to make the next calls fail."""

    def __init__(self):
        self.calls: list[Optional[str]] = []
        self.error: Optional[Exception] = None
        self.closed = False

    async def generate(self, focus: Optional[str] = None) -> GeneratedIdea:
        self.calls.append(focus)
        if self.error:
            raise self.error
        return sample_idea()

    async def close(self) -> None:
        self.closed = True


class FakeMailer:
    """Records every email; set ``fail`` to make sends raise."""

    def __init__(self):
        self.sent: list[tuple] = []
        self.fail = False

    async def _record(self, *args):
        if self.fail:
            raise UpstreamError("Email provider error: 503")
        self.sent.append(args)

    async def send_idea_generated(self, to, title, description):
        await self._record("idea-generated", to, title)

    async def send_build_complete(self, to, idea_title, status, url):
        await self._record("build-complete", to, idea_title, status, url)

    async def send_subscription_update(self, to, plan_name, status):
        await self._record("subscription-update", to, plan_name, status)


class FakePayments(PaymentGateway):
    """Real webhook verification; checkout sessions are recorded, not created."""

    def __init__(self):
        super().__init__(secret_key=None, webhook_secret=WEBHOOK_SECRET)
        self.sessions: list[dict] = []

    async def create_checkout_session(self, price_id, success_url, cancel_url, metadata,
                                      customer_email=None, customer_id=None):
        self.sessions.append({
            "price_id": price_id,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "customer_email": customer_email,
        })
        return f"cs_test_{len(self.sessions)}", f"https://checkout.stripe.test/{len(self.sessions)}"


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header value for ``payload``."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def stripe_event(event_id: str, event_type: str, obj: dict, created: int = 1_773_500_000) -> dict:
    return {"id": event_id, "object": "event", "type": event_type, "created": created, "data": {"object": obj}}


def checkout_event(event_id, account_id, plan="founder", price_id="price_founder",
                   customer="cus_1", subscription="sub_1", created=1_773_500_000) -> dict:
    obj = {
        "id": f"cs_{event_id}",
        "object": "checkout.session",
        "customer": customer,
        "subscription": subscription,
        "metadata": {"account_id": account_id, "plan": plan, "price_id": price_id},
    }
    return stripe_event(event_id, "checkout.session.completed", obj, created)


def subscription_event(event_id, event_type, customer="cus_1", subscription="sub_1",
                       price_id="price_team", status="active", created=1_773_500_000) -> dict:
    obj = {
        "id": subscription,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "items": {"data": [{"price": {"id": price_id}}]},
    }
    return stripe_event(event_id, event_type, obj, created)


def encode(event: dict) -> bytes:
    return json.dumps(event).encode("utf-8")


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        secret_key="test-secret",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_prices=dict(PRICES),
        build_runner_token=RUNNER_TOKEN,
        log_level="WARNING",
    )


@pytest.fixture
def services(settings):
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    prices = settings.price_catalog()
    svc = Services(
        settings=settings,
        engine=engine,
        session_factory=create_session_factory(engine),
        generator=FakeGenerator(),
        payments=FakePayments(),
        mailer=FakeMailer(),
        feed=ChangeFeed(),
        prices=prices,
        synchronizer=BillingSynchronizer(prices),
    )
    yield svc
    engine.dispose()


@pytest.fixture
def db(services):
    session = services.session_factory()
    yield session
    session.close()


@pytest.fixture
def feed_events(services):
    events = []
    services.feed.subscribe(events.append)
    return events


@pytest.fixture
def make_account(db):
    """Factory: create an account, optionally on a given plan."""
    counter = {"n": 0}

    def _make(email=None, plan: PlanKey = PlanKey.FREE, role="owner", now=NOW, **columns):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        account = create_account(db, email, "not-a-real-hash", name="Test", role=role, now=now)
        values = dict(columns)
        if plan != PlanKey.FREE:
            values.update(plan_columns(get_plan(plan)))
        if values:
            db.execute(update(Account).where(Account.id == account.id).values(**values))
            db.commit()
            db.refresh(account)
        return account

    return _make


@pytest.fixture
def client(services):
    app = create_app(services=services)
    with TestClient(app) as test_client:
        yield test_client

"""Application-wide collaborators and the FastAPI dependencies that expose them."""

from dataclasses import dataclass
from typing import Iterator

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from backend.clients.idea_generator import IdeaGenerator
from backend.clients.mailer import Mailer
from backend.clients.payments import PaymentGateway
from backend.config import Settings
from backend.database import create_db_engine, create_session_factory
from backend.realtime import ChangeFeed
from backend.services.billing_sync import BillingSynchronizer
from forge.plans import PriceCatalog


@dataclass
class Services:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    generator: IdeaGenerator
    payments: PaymentGateway
    mailer: Mailer
    feed: ChangeFeed
    prices: PriceCatalog
    synchronizer: BillingSynchronizer

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        engine = create_db_engine(settings.database_url)
        prices = settings.price_catalog()
        return cls(
            settings=settings,
            engine=engine,
            session_factory=create_session_factory(engine),
            generator=IdeaGenerator(
                settings.anthropic_api_key,
                settings.anthropic_model,
                timeout=max(settings.upstream_timeout, 30.0),
            ),
            payments=PaymentGateway(
                settings.stripe_secret_key,
                settings.stripe_webhook_secret,
                timeout=settings.upstream_timeout,
            ),
            mailer=Mailer(settings.resend_api_key, settings.email_sender),
            feed=ChangeFeed(),
            prices=prices,
            synchronizer=BillingSynchronizer(prices),
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency: one session per request, always closed."""
    db = get_services(request).session_factory()
    try:
        yield db
    finally:
        db.close()

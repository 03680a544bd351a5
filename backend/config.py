"""Runtime configuration read from the environment (and a local .env file)."""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from forge.plans import PlanKey, PriceCatalog

load_dotenv()

# Default DB lives in data/ (gitignored)
_DB_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")
DEFAULT_DATABASE_URL = f"sqlite:///{os.path.join(_DB_DIR, 'innovaforge.db')}"


@dataclass
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    secret_key: str = "innovaforge-dev-secret-change-in-production"
    frontend_url: str = "http://localhost:5173"
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_prices: dict = field(default_factory=dict)
    resend_api_key: Optional[str] = None
    email_sender: str = "InnovaForge <notifications@innovaforge.app>"
    build_runner_token: Optional[str] = None
    upstream_timeout: float = 10.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            secret_key=os.getenv("SECRET_KEY", cls.secret_key),
            frontend_url=os.getenv("FRONTEND_URL", cls.frontend_url),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            anthropic_model=os.getenv("ANTHROPIC_MODEL", cls.anthropic_model),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
            stripe_prices={
                PlanKey.FOUNDER: os.getenv("STRIPE_FOUNDER_PRICE_ID"),
                PlanKey.TEAM: os.getenv("STRIPE_TEAM_PRICE_ID"),
                PlanKey.ENTERPRISE: os.getenv("STRIPE_ENTERPRISE_PRICE_ID"),
            },
            resend_api_key=os.getenv("RESEND_API_KEY"),
            email_sender=os.getenv("EMAIL_SENDER", cls.email_sender),
            build_runner_token=os.getenv("BUILD_RUNNER_TOKEN"),
            upstream_timeout=float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "10")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def price_catalog(self) -> PriceCatalog:
        return PriceCatalog(self.stripe_prices)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

"""SQLAlchemy ORM models."""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, Text, ForeignKey, Index
from backend.database import Base


def _now():
    return datetime.now(timezone.utc)


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    name = Column(String, nullable=False, default="")
    role = Column(String, nullable=False, default="owner")
    status = Column(String, nullable=False, default="active")
    is_new_user = Column(Boolean, nullable=False, default=True)

    # Plan and limits are only ever written together
    plan = Column(String, nullable=False, default="free")
    ideas_per_month = Column(Integer, nullable=False)
    builds_per_month = Column(Integer, nullable=False)
    max_active_projects = Column(Integer, nullable=False)
    storage_limit = Column(Integer, nullable=False)
    bandwidth_limit = Column(Integer, nullable=False)
    seats = Column(Integer, nullable=False)

    ideas_generated = Column(Integer, nullable=False, default=0)
    builds_started = Column(Integer, nullable=False, default=0)
    active_projects = Column(Integer, nullable=False, default=0)
    storage_used = Column(Integer, nullable=False, default=0)
    bandwidth_used = Column(Integer, nullable=False, default=0)
    last_reset_at = Column(DateTime(timezone=True), nullable=True)

    stripe_customer_id = Column(String, nullable=True)
    subscription_id = Column(String, nullable=True)
    subscription_status = Column(String, nullable=True)
    billing_synced_at = Column(DateTime(timezone=True), nullable=True)

    latest_project_url = Column(String, nullable=True)
    referral_code = Column(String, nullable=True)
    referred_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        Index("ix_accounts_stripe_customer_id", "stripe_customer_id"),
    )


class Idea(Base):
    __tablename__ = "ideas"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String, ForeignKey("accounts.id"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    problem = Column(Text, nullable=False, default="")
    solution = Column(Text, nullable=False, default="")
    target_audience = Column(Text, nullable=False, default="")
    tech_stack_json = Column(Text, nullable=False, default="[]")
    features_json = Column(Text, nullable=False, default="[]")
    monetization = Column(Text, nullable=False, default="")
    market_size = Column(String, nullable=False, default="")
    competitors_json = Column(Text, nullable=False, default="[]")
    score = Column(Float, nullable=False, default=0.0)
    status = Column(String, nullable=False, default="pending")
    staging_url = Column(String, nullable=True)
    production_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        Index("ix_ideas_account_id", "account_id"),
    )


class Build(Base):
    __tablename__ = "builds"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    idea_id = Column(String, ForeignKey("ideas.id"), nullable=False)
    # Nullable: builds created outside the API may lack an owner
    account_id = Column(String, ForeignKey("accounts.id"), nullable=True)
    idea_title = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="queued")
    deployment_target = Column(String, nullable=False, default="Vercel")
    started_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Float, nullable=True)
    test_results_json = Column(Text, nullable=True)
    staging_url = Column(String, nullable=True)
    production_url = Column(String, nullable=True)
    github_run_id = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        Index("ix_builds_account_id", "account_id"),
        Index("ix_builds_idea_id", "idea_id"),
    )


class BillingEvent(Base):
    """Payment-provider events already applied, keyed by provider event id."""
    __tablename__ = "billing_events"

    id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False)
    account_id = Column(String, nullable=True)
    outcome = Column(String, nullable=False)
    payload_hash = Column(String, nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False, default=_now)

"""Account records: creation, lookup and snapshots of plan, usage and limits."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.errors import ConflictError, NotFoundError
from backend.models import AccountResponse, LimitsSnapshot, UsageSnapshot
from backend.models_db import Account
from forge.plans import Plan, PlanLimits, default_plan
from forge.quota import Usage

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_OWNER = "owner"
STATUS_ACTIVE = "active"
STATUS_SUSPENDED = "suspended"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def plan_columns(plan: Plan) -> dict:
    """Column values for ``plan``: the key and every quota, always written together."""
    return {"plan": plan.key.value, **plan.limits.as_dict()}


def referral_code_for(account_id: str) -> str:
    return account_id.replace("-", "")[:8].upper()


def usage_of(account: Account) -> Usage:
    return Usage(
        ideas_generated=account.ideas_generated,
        builds_started=account.builds_started,
        active_projects=account.active_projects,
        storage_used=account.storage_used,
        bandwidth_used=account.bandwidth_used,
    )


def limits_of(account: Account) -> PlanLimits:
    return PlanLimits(
        ideas_per_month=account.ideas_per_month,
        builds_per_month=account.builds_per_month,
        max_active_projects=account.max_active_projects,
        storage_limit=account.storage_limit,
        bandwidth_limit=account.bandwidth_limit,
        seats=account.seats,
    )


def usage_snapshot(usage: Usage) -> UsageSnapshot:
    return UsageSnapshot(
        ideas_generated=usage.ideas_generated,
        builds_started=usage.builds_started,
        active_projects=usage.active_projects,
        storage_used=usage.storage_used,
        bandwidth_used=usage.bandwidth_used,
    )


def limits_snapshot(limits: PlanLimits) -> LimitsSnapshot:
    return LimitsSnapshot(**limits.as_dict())


def account_response(account: Account) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        email=account.email,
        name=account.name,
        plan=account.plan,
        role=account.role,
        status=account.status,
        usage=usage_snapshot(usage_of(account)),
        limits=limits_snapshot(limits_of(account)),
        subscription_status=account.subscription_status,
        latest_project_url=account.latest_project_url,
        referral_code=account.referral_code,
        is_new_user=account.is_new_user,
    )


def create_account(
    db: Session,
    email: str,
    password_hash: str,
    name: str = "",
    role: str = ROLE_OWNER,
    now: Optional[datetime] = None,
) -> Account:
    """Insert a new account on the default plan with zeroed usage.

    Raises:
        ConflictError: If the email is already registered.
    """
    now = now or utcnow()
    if db.scalar(select(Account.id).where(Account.email == email)):
        raise ConflictError("An account with this email already exists")

    account_id = str(uuid.uuid4())
    account = Account(
        id=account_id,
        email=email,
        password_hash=password_hash,
        name=name,
        role=role,
        status=STATUS_ACTIVE,
        is_new_user=True,
        last_reset_at=now,
        referral_code=referral_code_for(account_id),
        created_at=now,
        updated_at=now,
        **plan_columns(default_plan()),
    )
    db.add(account)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("An account with this email already exists")
    db.refresh(account)
    logger.info("Created account %s", account.id)
    return account


def get_account(db: Session, account_id: str) -> Account:
    """Load an account, always re-reading the row from the database.

    Raises:
        NotFoundError: If no such account exists.
    """
    account = db.get(Account, account_id, populate_existing=True)
    if account is None:
        raise NotFoundError("Account not found")
    return account


def find_by_customer_id(db: Session, customer_id: Optional[str]) -> Account:
    """Resolve the single account linked to a payment-provider customer id.

    Raises:
        NotFoundError: No account carries the customer id.
        ConflictError: More than one account carries it.
    """
    if not customer_id:
        raise NotFoundError("Event carries no customer id")
    matches = db.scalars(
        select(Account).where(Account.stripe_customer_id == customer_id).limit(2)
    ).all()
    if not matches:
        raise NotFoundError(f"No account for customer {customer_id}")
    if len(matches) > 1:
        raise ConflictError(f"Customer {customer_id} is linked to more than one account")
    return matches[0]


def set_suspended(db: Session, account_id: str, suspended: bool) -> Account:
    status = STATUS_SUSPENDED if suspended else STATUS_ACTIVE
    result = db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(status=status, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise NotFoundError("Account not found")
    db.commit()
    logger.info("Account %s is now %s", account_id, status)
    return get_account(db, account_id)

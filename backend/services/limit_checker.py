"""
Limit checking and quota consumption.

Both entry points first apply the monthly reset with a single conditional
UPDATE, so concurrent callers cannot both reset or leave counters half
cleared. ``consume_quota`` folds the check and the increment into one
conditional UPDATE: two concurrent requests can never both pass a check for
the last remaining unit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from backend.errors import ConflictError, QuotaExceededError
from backend.models import CheckLimitsResponse
from backend.models_db import Account
from backend.services.accounts import get_account, limits_of, limits_snapshot, usage_of, usage_snapshot, utcnow
from forge.plans import UNLIMITED, PlanKey, PlanLimits
from forge.quota import Action, Usage, counter_for, evaluate, limit_field_for, month_window

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LimitCheck:
    can_proceed: bool
    reason: str
    usage: Usage
    limits: PlanLimits
    plan: PlanKey

    def to_response(self) -> CheckLimitsResponse:
        return CheckLimitsResponse(
            can_proceed=self.can_proceed,
            reason=self.reason,
            usage=usage_snapshot(self.usage),
            limits=limits_snapshot(self.limits),
            plan=self.plan,
        )


def reset_if_new_month(db: Session, account_id: str, now: datetime) -> bool:
    """Zero the monthly counters if the last reset is outside now's UTC month.

    Does not commit. Returns True if this call performed the reset.
    """
    start, end = month_window(now)
    result = db.execute(
        update(Account)
        .where(
            Account.id == account_id,
            or_(
                Account.last_reset_at.is_(None),
                Account.last_reset_at < start,
                Account.last_reset_at >= end,
            ),
        )
        .values(ideas_generated=0, builds_started=0, last_reset_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("Monthly usage reset for account %s", account_id)
        return True
    return False


def _snapshot(account: Account, action: Action) -> LimitCheck:
    usage = usage_of(account)
    limits = limits_of(account)
    decision = evaluate(action, usage, limits)
    return LimitCheck(
        can_proceed=decision.can_proceed,
        reason=decision.reason,
        usage=usage,
        limits=limits,
        plan=PlanKey(account.plan),
    )


def check_limits(db: Session, account_id: str, action: Action, now: Optional[datetime] = None) -> LimitCheck:
    """Report whether ``action`` is currently within the account's quota.

    Advisory: nothing is consumed. Quota-consuming actions re-check
    atomically through ``consume_quota``.

    Raises:
        NotFoundError: If the account does not exist.
    """
    now = now or utcnow()
    action = Action(action)
    get_account(db, account_id)
    if reset_if_new_month(db, account_id, now):
        db.commit()
    return _snapshot(get_account(db, account_id), action)


def consume_quota(db: Session, account_id: str, action: Action, now: Optional[datetime] = None) -> LimitCheck:
    """Atomically check and increment the counter governing ``action``.

    Does not commit; the caller decides whether the increment is part of a
    larger transaction. Returns the snapshot after the increment.

    Raises:
        NotFoundError: If the account does not exist.
        QuotaExceededError: If the quota is used up (nothing is incremented).
    """
    now = now or utcnow()
    action = Action(action)
    get_account(db, account_id)
    reset_if_new_month(db, account_id, now)

    counter = getattr(Account, counter_for(action))
    limit = getattr(Account, limit_field_for(action))
    result = db.execute(
        update(Account)
        .where(Account.id == account_id, or_(limit == UNLIMITED, counter < limit))
        .values({counter_for(action): counter + 1, "updated_at": now})
        .execution_options(synchronize_session=False)
    )

    check = _snapshot(get_account(db, account_id), action)
    if result.rowcount == 0:
        if check.can_proceed:
            # Limits changed between the UPDATE and the re-read
            raise ConflictError("Plan changed during the request. Please retry.")
        logger.info("Quota exhausted for account %s (%s)", account_id, action.value)
        raise QuotaExceededError(
            check.reason,
            usage=usage_snapshot(check.usage).model_dump(),
            limits=limits_snapshot(check.limits).model_dump(),
            plan=check.plan.value,
        )
    return check

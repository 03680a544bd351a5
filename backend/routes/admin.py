"""Admin panel routes."""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.auth import require_admin
from backend.dependencies import Services, get_db, get_services
from backend.errors import InvalidArgumentError
from backend.models import AccountResponse, AdminStats, SuspendRequest
from backend.models_db import Account, Build, Idea
from backend.services.accounts import account_response, set_suspended
from forge.lifecycle import BuildStatus
from forge.plans import get_plan, parse_plan_key

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/admin/stats", response_model=AdminStats)
async def stats(db: Session = Depends(get_db)):
    """Headline numbers: users, monthly recurring revenue, ideas and completed builds."""
    breakdown = dict(db.execute(select(Account.plan, func.count()).group_by(Account.plan)).all())
    mrr = sum(get_plan(parse_plan_key(plan)).monthly_price * count for plan, count in breakdown.items())
    return AdminStats(
        total_users=sum(breakdown.values()),
        mrr=mrr,
        ideas_generated=db.scalar(select(func.count()).select_from(Idea)) or 0,
        builds_completed=db.scalar(
            select(func.count()).select_from(Build).where(Build.status == BuildStatus.SUCCESS.value)
        ) or 0,
        plan_breakdown=breakdown,
    )


@router.get("/admin/users", response_model=list[AccountResponse])
async def list_users(db: Session = Depends(get_db)):
    accounts = db.scalars(select(Account).order_by(Account.created_at.desc()))
    return [account_response(a) for a in accounts]


@router.post("/admin/users/{account_id}/suspend", response_model=AccountResponse)
async def suspend_user(
    account_id: str,
    body: SuspendRequest,
    current_user=Depends(require_admin),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Suspend (or, with ``suspend: false``, reinstate) an account."""
    if account_id == current_user.id and body.suspend:
        raise InvalidArgumentError("Admins cannot suspend themselves")
    account = set_suspended(db, account_id, body.suspend)
    services.feed.publish("accounts", account.id, account.id)
    return account_response(account)

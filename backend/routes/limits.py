"""Limit check route."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.auth import get_current_user
from backend.dependencies import get_db
from backend.errors import PermissionDeniedError
from backend.models import CheckLimitsRequest, CheckLimitsResponse
from backend.models_db import Account
from backend.services.accounts import ROLE_ADMIN
from backend.services.limit_checker import check_limits

router = APIRouter()


@router.post("/check-limits", response_model=CheckLimitsResponse)
async def check_action_limits(
    body: CheckLimitsRequest,
    current_user: Account = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Report whether an action fits the account's remaining quota.

    Advisory only; the quota-consuming endpoints enforce the limit again.
    """
    account_id = body.account_id or current_user.id
    if account_id != current_user.id and current_user.role != ROLE_ADMIN:
        raise PermissionDeniedError("Cannot check limits for another account")
    return check_limits(db, account_id, body.action).to_response()

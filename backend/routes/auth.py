"""Auth routes: local accounts with JWT sessions."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.auth import create_access_token, get_current_user, hash_password, verify_password
from backend.dependencies import Services, get_db, get_services
from backend.errors import PermissionDeniedError
from backend.models import AccountResponse
from backend.models_db import Account
from backend.services.accounts import STATUS_SUSPENDED, account_response, create_account

router = APIRouter()


# --- Request/Response Models ---

class SignUpRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)
    name: str = Field(default="", max_length=255)


class SignInRequest(BaseModel):
    email: str
    password: str


class AuthResponse(BaseModel):
    user: AccountResponse
    token: str


# --- Auth Endpoints ---

@router.post("/auth/signup", response_model=AuthResponse)
async def signup(
    body: SignUpRequest,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Create a new account on the free plan."""
    account = create_account(db, body.email.strip().lower(), hash_password(body.password), name=body.name)
    services.feed.publish("accounts", account.id, account.id)
    token = create_access_token(account.id, services.settings.secret_key)
    return AuthResponse(user=account_response(account), token=token)


@router.post("/auth/login", response_model=AuthResponse)
async def login(
    body: SignInRequest,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Login with email and password."""
    account = db.scalar(select(Account).where(Account.email == body.email.strip().lower()))
    if not account or not verify_password(body.password, account.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if account.status == STATUS_SUSPENDED:
        raise PermissionDeniedError("Account suspended")

    token = create_access_token(account.id, services.settings.secret_key)
    return AuthResponse(user=account_response(account), token=token)


@router.get("/auth/me", response_model=AccountResponse)
async def get_me(current_user: Account = Depends(get_current_user)):
    """Get the current account with its plan, usage and limits."""
    return account_response(current_user)

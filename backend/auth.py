"""Authentication utilities: JWT tokens, password hashing and role checks."""
import hmac
from datetime import datetime, timezone, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from backend.dependencies import Services, get_db, get_services
from backend.errors import PermissionDeniedError
from backend.models_db import Account
from backend.services.accounts import ROLE_ADMIN, STATUS_SUSPENDED

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24

# Security scheme
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


def create_access_token(account_id: str, secret_key: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    payload = {"sub": account_id, "exp": expire}
    return jwt.encode(payload, secret_key, algorithm=ALGORITHM)


def decode_token(token: str, secret_key: str) -> Optional[str]:
    """Decode JWT and return the account id, or None if invalid."""
    try:
        payload = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
        return payload.get("sub")
    except JWTError:
        return None


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
) -> Account:
    """FastAPI dependency: require a valid JWT for an active account."""
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    account_id = decode_token(credentials.credentials, services.settings.secret_key)
    if not account_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    account = db.get(Account, account_id)
    if not account:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if account.status == STATUS_SUSPENDED:
        raise PermissionDeniedError("Account suspended")

    return account


async def require_admin(current_user: Account = Depends(get_current_user)) -> Account:
    if current_user.role != ROLE_ADMIN:
        raise PermissionDeniedError("Admin access required")
    return current_user


async def require_build_runner(
    x_build_token: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> None:
    """FastAPI dependency: the caller must present the shared build-runner token."""
    expected = services.settings.build_runner_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Build runner not configured")
    if not x_build_token or not hmac.compare_digest(x_build_token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid build token")

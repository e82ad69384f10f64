"""
Dependencies for FastAPI routes.
Authentication, role gates, rate limiting and access to app-scoped services.
"""
from typing import Optional
from uuid import UUID
from collections import defaultdict
from datetime import datetime, timedelta

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from aquasentra.core.config import settings
from aquasentra.domain.services.auth_service import ensure_account_usable
from aquasentra.domain.services.email_service import EmailService
from aquasentra.domain.services.security import verify_token
from aquasentra.infrastructure.database import get_db
from aquasentra.infrastructure.models import User
from aquasentra.infrastructure.storage import LocalMediaStorage


# =============================================================================
# Rate Limiting
# =============================================================================

# In-memory rate limit store: key -> list of timestamps
_rate_limit_store: dict[str, list[datetime]] = defaultdict(list)


def check_rate_limit(
    key: str,
    max_requests: Optional[int] = None,
    window_seconds: Optional[int] = None
) -> None:
    """
    Simple in-memory sliding-window rate limiter.

    Raises:
        HTTPException: 429 Too Many Requests if limit exceeded
    """
    max_requests = max_requests or settings.AUTH_RATE_LIMIT_REQUESTS
    window_seconds = window_seconds or settings.AUTH_RATE_LIMIT_WINDOW_SECONDS

    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=window_seconds)

    _rate_limit_store[key] = [t for t in _rate_limit_store[key] if t > cutoff]

    if len(_rate_limit_store[key]) >= max_requests:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many requests. Please wait {window_seconds} seconds before trying again.",
        )

    _rate_limit_store[key].append(now)


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# =============================================================================
# Authentication
# =============================================================================

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Dependency to get the current authenticated user.
    Raises 401 if not authenticated, 403 if the account is suspended or inactive.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token, authorization denied",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(credentials.credentials, token_type="access")
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is not valid",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    user = None
    if user_id:
        try:
            user = db.get(User, UUID(user_id))
        except ValueError:
            user = None

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is not valid",
            headers={"WWW-Authenticate": "Bearer"},
        )

    ensure_account_usable(user)
    return user


def require_roles(*roles: str):
    """
    Dependency factory gating a route to the given roles.

    Usage:
        @router.get("/admin-only")
        def admin_only(user: User = Depends(require_roles("admin"))):
            ...
    """
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied. Insufficient permissions.",
            )
        return current_user

    return checker


# =============================================================================
# App-scoped services
# =============================================================================

def get_email_service(request: Request) -> EmailService:
    return request.app.state.email_service


def get_media_storage(request: Request) -> LocalMediaStorage:
    return request.app.state.media_storage

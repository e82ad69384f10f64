"""
Authentication API endpoints for Aquasentra.
Email/password registration and login, plus the current-user profile.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.orm import Session

from aquasentra.domain.models import UserLogin, UserRegister, UserResponse
from aquasentra.domain.services.auth_service import auth_service
from aquasentra.domain.services.email_service import EmailService
from aquasentra.infrastructure.database import get_db
from aquasentra.infrastructure.models import User
from .deps import check_rate_limit, client_ip, get_current_user, get_email_service
from .responses import envelope

router = APIRouter()
logger = logging.getLogger(__name__)


async def send_welcome_email_task(email_service: EmailService, email: str, full_name: str) -> None:
    """Welcome email failures never affect registration."""
    try:
        sent = await email_service.send_welcome_email(email, full_name)
        if not sent:
            logger.warning(f"Welcome email to {email} was not delivered")
    except Exception as e:
        logger.error(f"Failed to send welcome email to {email}: {e}")


@router.post("/register", status_code=status.HTTP_201_CREATED, tags=["authentication"])
def register(
    payload: UserRegister,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    """
    Register a new account. New accounts are always citizens.

    Rate limited per client IP.
    """
    check_rate_limit(f"register:{client_ip(request)}")

    user = auth_service.register_user(payload, db)
    background_tasks.add_task(send_welcome_email_task, email_service, user.email, user.full_name)

    return envelope(
        message="User registered successfully",
        data={
            **auth_service.create_token_response(user),
            "user": UserResponse.model_validate(user),
        },
    )


@router.post("/login", tags=["authentication"])
def login(
    payload: UserLogin,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Exchange email and password for an access token.

    Rate limited per client IP.
    """
    check_rate_limit(f"login:{client_ip(request)}")

    user = auth_service.authenticate(payload.email, payload.password, db)

    return envelope(
        message="Login successful",
        data={
            **auth_service.create_token_response(user),
            "user": UserResponse.model_validate(user),
        },
    )


@router.get("/me", tags=["authentication"])
async def get_me(current_user: User = Depends(get_current_user)):
    """Get the current authenticated user's profile."""
    return envelope(data={"user": UserResponse.model_validate(current_user)})

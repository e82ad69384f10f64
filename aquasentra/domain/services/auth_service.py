"""
Authentication Service for Aquasentra.
Handles email/password registration, login and token issuance.
"""
import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aquasentra.core.config import settings
from aquasentra.core.exceptions import AuthenticationFailed, PermissionDenied, ResourceConflict
from aquasentra.domain.models import AccountStatus, Role, UserRegister
from aquasentra.infrastructure.models import User
from .security import create_user_token, hash_password, verify_password

logger = logging.getLogger(__name__)

BLOCKED_STATUSES = (AccountStatus.SUSPENDED.value, AccountStatus.INACTIVE.value)


def ensure_account_usable(user: User) -> None:
    """Suspended or inactive accounts may not log in or use their tokens."""
    if user.status in BLOCKED_STATUSES:
        raise PermissionDenied(f"Account is {user.status}. Please contact support.")


class AuthService:
    """Service for email/password authentication"""

    def register_user(self, data: UserRegister, db: Session) -> User:
        """
        Register a new citizen account.

        Raises:
            ResourceConflict: If the email is already registered
        """
        email = data.email.lower().strip()

        if db.query(User).filter(User.email == email).first():
            raise ResourceConflict("User already exists with this email")

        # Self-registration always yields a citizen; only admins change roles
        user = User(
            first_name=data.first_name,
            last_name=data.last_name,
            email=email,
            password_hash=hash_password(data.password),
            role=Role.CITIZEN.value,
            status=AccountStatus.ACTIVE.value,
            phone_number=data.phone_number,
            organization_name=data.organization_name,
            expertise_area=data.expertise_area,
            last_active_at=datetime.utcnow(),
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ResourceConflict("User already exists with this email")
        db.refresh(user)

        logger.info(f"New user registered: {user.email} ({user.id})")
        return user

    def authenticate(self, email: str, password: str, db: Session) -> User:
        """
        Verify credentials and record the login.

        Raises:
            AuthenticationFailed: Unknown email or wrong password
            PermissionDenied: Account suspended or inactive
        """
        email = email.lower().strip()
        user = db.query(User).filter(User.email == email).first()

        if not user or not verify_password(password, user.password_hash):
            logger.info(f"Failed login attempt for {email}")
            raise AuthenticationFailed("Invalid credentials")

        ensure_account_usable(user)

        user.last_active_at = datetime.utcnow()
        db.commit()
        db.refresh(user)

        logger.info(f"User logged in: {user.email}")
        return user

    def create_token_response(self, user: User) -> dict:
        return {
            "token": create_user_token(user),
            "token_type": "bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,  # seconds
        }


# Singleton instance
auth_service = AuthService()

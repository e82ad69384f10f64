"""
User administration API endpoints.
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from aquasentra.domain.models import (
    AccountStatus,
    Role,
    RoleUpdateRequest,
    StatusUpdateRequest,
    UserResponse,
)
from aquasentra.domain.services.user_service import UserService
from aquasentra.infrastructure.database import get_db
from aquasentra.infrastructure.models import User
from .deps import get_current_user, require_roles
from .responses import envelope

router = APIRouter()
logger = logging.getLogger(__name__)

require_admin = require_roles(Role.ADMIN.value)


def _report_summary(report) -> dict:
    return {
        "id": report.id,
        "public_code": report.public_code,
        "hazard_type": report.hazard_type,
        "severity": report.severity,
        "status": report.status,
        "created_at": report.created_at,
        "verified_at": report.verified_at,
    }


@router.get("")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[Role] = None,
    status: Optional[AccountStatus] = None,
    search: Optional[str] = Query(None, max_length=100),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc|ASC|DESC)$"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Paginated user list with per-user report statistics (admin only)."""
    items, pagination = UserService(db).list_users(
        page=page,
        limit=limit,
        role=role.value if role else None,
        status=status.value if status else None,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )

    users = [
        {**UserResponse.model_validate(user).model_dump(), "statistics": stats}
        for user, stats in items
    ]
    return envelope(data={"users": users, "pagination": pagination})


@router.get("/statistics")
def get_user_statistics(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return envelope(data=UserService(db).statistics())


@router.get("/{user_id}")
def get_user(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """User profile with report statistics (self or admin)."""
    user, statistics, submitted, verified = UserService(db).profile(current_user, user_id)
    return envelope(data={
        "user": UserResponse.model_validate(user),
        "statistics": statistics,
        "submitted_reports": [_report_summary(r) for r in submitted],
        "verified_reports": [_report_summary(r) for r in verified],
    })


@router.put("/{user_id}/role")
def update_user_role(
    user_id: UUID,
    payload: RoleUpdateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = UserService(db).update_role(admin, user_id, payload.role)
    return envelope(
        message="User role updated successfully",
        data={"user": UserResponse.model_validate(user)},
    )


@router.put("/{user_id}/status")
def update_user_status(
    user_id: UUID,
    payload: StatusUpdateRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = UserService(db).update_status(admin, user_id, payload.status, payload.reason)
    return envelope(
        message="User status updated successfully",
        data={"user": UserResponse.model_validate(user)},
    )


@router.delete("/{user_id}")
def delete_user(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Soft delete: the account is deactivated and its email scrambled."""
    UserService(db).soft_delete(current_user, user_id)
    return envelope(message="User account deleted successfully")


@router.get("/{user_id}/activity")
def get_user_activity(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    activity = UserService(db).activity(current_user, user_id)
    activity["submitted_reports"] = [_report_summary(r) for r in activity["submitted_reports"]]
    activity["verified_reports"] = [_report_summary(r) for r in activity["verified_reports"]]
    return envelope(data=activity)

"""
User administration service.

Admin listing and statistics, profile/activity views for self or admin, and
role/status changes guarded by the admin self-protection rules.
"""
import logging
import time
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from aquasentra.core.exceptions import PermissionDenied, ResourceNotFound, ValidationFailed
from aquasentra.domain.models import AccountStatus, ReportStatus, VERIFIER_ROLES
from aquasentra.domain.services.access_policy import (
    can_access_user,
    check_account_delete,
    check_role_change,
    check_status_change,
)
from aquasentra.domain.services.analytics_service import hours_between
from aquasentra.domain.services.report_query import pagination_meta
from aquasentra.infrastructure.models import Report, User

logger = logging.getLogger(__name__)

USER_SORT_FIELDS = {
    "created_at": User.created_at,
    "last_active_at": User.last_active_at,
    "email": User.email,
    "first_name": User.first_name,
    "last_name": User.last_name,
    "role": User.role,
    "status": User.status,
}


def month_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, 1)


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: UUID) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise ResourceNotFound("User not found")
        return user

    def _get_accessible(self, actor: User, user_id: UUID) -> User:
        if not can_access_user(actor, user_id):
            raise PermissionDenied("Access denied")
        return self.get(user_id)

    def _report_counts(self, user_ids: List[UUID]) -> Dict[UUID, Dict[str, int]]:
        """Submitted-report counts per user and status, deleted reports excluded."""
        counts: Dict[UUID, Dict[str, int]] = defaultdict(dict)
        if not user_ids:
            return counts
        rows = (
            self.db.query(Report.submitted_by_id, Report.status, func.count(Report.id))
            .filter(Report.submitted_by_id.in_(user_ids), Report.status != ReportStatus.DELETED.value)
            .group_by(Report.submitted_by_id, Report.status)
            .all()
        )
        for user_id, status, count in rows:
            counts[user_id][status] = count
        return counts

    def _verified_counts(self, user_ids: List[UUID]) -> Dict[UUID, int]:
        if not user_ids:
            return {}
        rows = (
            self.db.query(Report.verified_by_id, func.count(Report.id))
            .filter(Report.verified_by_id.in_(user_ids))
            .group_by(Report.verified_by_id)
            .all()
        )
        return dict(rows)

    def _statistics_for(self, user: User, counts: Dict[str, int], verified: Dict[UUID, int]) -> dict:
        stats = {
            "total_reports": sum(counts.values()),
            "verified_reports": counts.get(ReportStatus.VERIFIED.value, 0),
            "pending_reports": counts.get(ReportStatus.PENDING.value, 0),
            "rejected_reports": counts.get(ReportStatus.REJECTED.value, 0),
        }
        if user.role in VERIFIER_ROLES:
            stats["reports_verified"] = verified.get(user.id, 0)
        return stats

    # =========================================================================
    # Admin listing
    # =========================================================================

    def list_users(
        self,
        page: int = 1,
        limit: int = 20,
        role: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[Tuple[User, dict]], dict]:
        sort_column = USER_SORT_FIELDS.get(sort_by)
        if sort_column is None:
            raise ValidationFailed(f"Invalid sort field '{sort_by}'")
        if sort_order.lower() not in ("asc", "desc"):
            raise ValidationFailed("Sort order must be 'asc' or 'desc'")

        query = self.db.query(User)
        if role:
            query = query.filter(User.role == role)
        if status:
            query = query.filter(User.status == status)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
                User.email.ilike(pattern),
                User.organization_name.ilike(pattern),
            ))

        total = query.count()
        order = sort_column.asc() if sort_order.lower() == "asc" else sort_column.desc()
        users = query.order_by(order, User.id).offset((page - 1) * limit).limit(limit).all()

        ids = [u.id for u in users]
        counts = self._report_counts(ids)
        verified = self._verified_counts(ids)

        items = [(u, self._statistics_for(u, counts.get(u.id, {}), verified)) for u in users]
        return items, pagination_meta(page, limit, total)

    def statistics(self, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()

        matrix_rows = (
            self.db.query(User.role, User.status, func.count(User.id))
            .group_by(User.role, User.status)
            .all()
        )
        detailed: Dict[str, Dict[str, int]] = defaultdict(dict)
        role_distribution: Dict[str, int] = defaultdict(int)
        total = 0
        active = 0
        for role, status, count in matrix_rows:
            detailed[role][status] = count
            role_distribution[role] += count
            total += count
            if status == AccountStatus.ACTIVE.value:
                active += count

        new_this_month = (
            self.db.query(func.count(User.id))
            .filter(User.created_at >= month_start(now))
            .scalar()
        )

        return {
            "total_users": total,
            "active_users": active,
            "new_users_this_month": new_this_month,
            "role_distribution": dict(role_distribution),
            "detailed_stats": dict(detailed),
        }

    # =========================================================================
    # Profile and activity (self or admin)
    # =========================================================================

    def profile(self, actor: User, user_id: UUID) -> Tuple[User, dict, List[Report], List[Report]]:
        user = self._get_accessible(actor, user_id)

        counts = self._report_counts([user.id])
        verified = self._verified_counts([user.id])
        statistics = self._statistics_for(user, counts.get(user.id, {}), verified)

        submitted = (
            self.db.query(Report)
            .filter(Report.submitted_by_id == user.id, Report.status != ReportStatus.DELETED.value)
            .order_by(Report.created_at.desc())
            .limit(10)
            .all()
        )
        verified_reports = (
            self.db.query(Report)
            .filter(Report.verified_by_id == user.id, Report.status != ReportStatus.DELETED.value)
            .order_by(Report.verified_at.desc())
            .limit(10)
            .all()
        )
        return user, statistics, submitted, verified_reports

    def activity(self, actor: User, user_id: UUID, now: Optional[datetime] = None) -> dict:
        user = self._get_accessible(actor, user_id)
        now = now or datetime.utcnow()

        submitted = (
            self.db.query(Report)
            .filter(Report.submitted_by_id == user.id, Report.status != ReportStatus.DELETED.value)
            .order_by(Report.created_at.desc())
            .limit(20)
            .all()
        )

        can_verify = user.role in VERIFIER_ROLES
        verified_reports: List[Report] = []
        if can_verify:
            verified_reports = (
                self.db.query(Report)
                .filter(Report.verified_by_id == user.id, Report.verified_at.isnot(None))
                .order_by(Report.verified_at.desc())
                .limit(20)
                .all()
            )

        average_response = None
        if can_verify:
            hours = [hours_between(r.created_at, r.verified_at) for r in verified_reports]
            average_response = round(sum(hours) / len(hours)) if hours else 0

        start = month_start(now)
        return {
            "submitted_reports": submitted,
            "verified_reports": verified_reports,
            "metrics": {
                "total_reports": len(submitted),
                "reports_this_month": sum(1 for r in submitted if r.created_at >= start),
                "total_verified": len(verified_reports),
                "average_response_time_hours": average_response,
            },
        }

    # =========================================================================
    # Admin mutations
    # =========================================================================

    def update_role(self, actor: User, user_id: UUID, role: str) -> User:
        user = self.get(user_id)
        check_role_change(actor, user, role)

        old_role = user.role
        user.role = role
        self.db.commit()
        self.db.refresh(user)

        logger.info(f"User role updated: {user.email} from {old_role} to {role} by admin {actor.id}")
        return user

    def update_status(self, actor: User, user_id: UUID, status: str, reason: Optional[str] = None) -> User:
        user = self.get(user_id)
        check_status_change(actor, user, status)

        old_status = user.status
        user.status = status
        self.db.commit()
        self.db.refresh(user)

        suffix = f" - Reason: {reason}" if reason else ""
        logger.info(f"User status updated: {user.email} from {old_status} to {status} by admin {actor.id}{suffix}")
        return user

    def soft_delete(self, actor: User, user_id: UUID) -> User:
        """Deactivate the account and scramble its email so the address can be reused."""
        if not can_access_user(actor, user_id):
            raise PermissionDenied("Access denied")
        user = self.get(user_id)
        check_account_delete(actor, user)

        user.status = AccountStatus.INACTIVE.value
        user.email = f"deleted_{int(time.time() * 1000)}_{user.email}"[:255]
        self.db.commit()
        self.db.refresh(user)

        logger.info(f"User account deleted: {user.id} by {actor.id}")
        return user

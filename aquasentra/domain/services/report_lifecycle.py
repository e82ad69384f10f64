"""
Report Lifecycle Service for Aquasentra

State machine for hazard reports:

    pending -> under_review      (owner)
    pending -> verified          (verifier, analyst, admin)
    pending -> rejected          (verifier, analyst, admin; reason required)
    verified -> resolved         (owner or verifier roles; sets expires_at)
    any -> deleted               (owner or admin; soft delete)

Every transition is a single conditional UPDATE on the current status, so two
verifiers acting on the same pending report cannot both succeed.
"""
import logging
import secrets
import time
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from aquasentra.core.config import settings
from aquasentra.core.exceptions import InvalidTransition, ResourceNotFound, ValidationFailed
from aquasentra.domain.models import ReportCreate, ReportStatus, ReportUpdate
from aquasentra.domain.services.access_policy import Action, authorize
from aquasentra.infrastructure.models import Report, ReportMedia, User
from aquasentra.infrastructure.storage import StoredMedia

logger = logging.getLogger(__name__)

BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

REJECTION_REASON_MIN = 10
REJECTION_REASON_MAX = 1000

# Fields a PUT may change without going through a transition
EDITABLE_FIELDS = (
    "hazard_type", "severity", "urgency", "description", "address", "visibility",
    "tags", "weather_conditions", "tide_level", "wave_height", "wind_speed",
    "affected_area", "estimated_damage", "people_affected", "additional_data",
)

STATUS_ACTIONS = {
    ReportStatus.VERIFIED.value: Action.VERIFY,
    ReportStatus.REJECTED.value: Action.REJECT,
    ReportStatus.UNDER_REVIEW.value: Action.MARK_UNDER_REVIEW,
    ReportStatus.RESOLVED.value: Action.RESOLVE,
}


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_public_code(timestamp_ms: Optional[int] = None) -> str:
    """``RPT`` + base36 epoch milliseconds + 5 random base36 characters."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(5))
    return f"RPT{to_base36(timestamp_ms)}{suffix}"


def compute_is_emergency(severity: str, urgency: str) -> bool:
    return severity == "critical" or urgency == "emergency"


class ReportLifecycleService:
    """Creates reports and applies guarded status transitions."""

    def __init__(self, db: Session, retention_days: Optional[int] = None):
        self.db = db
        self.retention_days = retention_days or settings.REPORT_RETENTION_DAYS

    # =========================================================================
    # Creation
    # =========================================================================

    def create(
        self,
        actor: User,
        data: ReportCreate,
        media: Optional[List[StoredMedia]] = None,
    ) -> Report:
        """
        Persist a new report in ``pending`` state.

        Args:
            actor: Submitting user
            data: Validated report fields
            media: Files already written by the media store

        Returns:
            The committed Report
        """
        report = Report(
            public_code=generate_public_code(),
            hazard_type=data.hazard_type,
            severity=data.severity,
            urgency=data.urgency,
            description=data.description,
            latitude=data.latitude,
            longitude=data.longitude,
            address=data.address,
            visibility=data.visibility,
            tags=list(data.tags or []),
            weather_conditions=data.weather_conditions,
            tide_level=data.tide_level,
            wave_height=data.wave_height,
            wind_speed=data.wind_speed,
            affected_area=data.affected_area,
            estimated_damage=data.estimated_damage,
            people_affected=data.people_affected,
            additional_data=data.additional_data or {},
            status=ReportStatus.PENDING.value,
            verification_level="unverified",
            is_emergency=compute_is_emergency(data.severity, data.urgency),
            submitted_by_id=actor.id,
            verified_by_id=None,
            verified_at=None,
        )

        for item in media or []:
            report.media.append(ReportMedia(
                filename=item.filename,
                original_name=item.original_name,
                mimetype=item.mimetype,
                size=item.size,
                thumbnail_filename=item.thumbnail_filename,
            ))

        try:
            self.db.add(report)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(report)

        logger.info(f"Report created: {report.public_code} by user {actor.id}")
        if report.severity == "critical":
            logger.warning(
                f"CRITICAL REPORT SUBMITTED: {report.public_code} - {report.hazard_type} "
                f"at {report.latitude}, {report.longitude}"
            )
        return report

    # =========================================================================
    # Transitions
    # =========================================================================

    def _load(self, report_id: UUID) -> Report:
        report = self.db.get(Report, report_id)
        if report is None or report.status == ReportStatus.DELETED.value:
            raise ResourceNotFound("Report not found")
        return report

    def _guarded_update(self, report_id: UUID, expected_status: Optional[str], values: dict) -> Report:
        """
        Apply ``values`` only if the report still holds ``expected_status``.
        ``None`` means any status other than deleted.
        """
        stmt = update(Report).where(Report.id == report_id)
        if expected_status is None:
            stmt = stmt.where(Report.status != ReportStatus.DELETED.value)
        else:
            stmt = stmt.where(Report.status == expected_status)

        try:
            result = self.db.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.rollback()
                current = self.db.get(Report, report_id)
                if current is None or current.status == ReportStatus.DELETED.value:
                    raise ResourceNotFound("Report not found")
                if expected_status == ReportStatus.PENDING.value and values.get("status") in (
                    ReportStatus.VERIFIED.value, ReportStatus.REJECTED.value
                ):
                    raise InvalidTransition("Report is not pending verification")
                raise InvalidTransition(
                    f"Invalid status transition: report is '{current.status}'"
                )
            self.db.commit()
        except (InvalidTransition, ResourceNotFound):
            raise
        except Exception:
            self.db.rollback()
            raise

        report = self.db.get(Report, report_id)
        self.db.refresh(report)
        return report

    def _rejection_reason(self, reason: Optional[str]) -> str:
        reason = (reason or "").strip()
        if not REJECTION_REASON_MIN <= len(reason) <= REJECTION_REASON_MAX:
            raise ValidationFailed(
                "Rejection reason must be between 10 and 1000 characters",
                errors=[{"field": "reason", "message": "must be between 10 and 1000 characters"}],
            )
        return reason

    def _transition_values(
        self,
        actor: User,
        action: Action,
        reason: Optional[str] = None,
        verification_level: str = "expert_verified",
    ) -> Tuple[str, dict]:
        """Return (required current status, column values) for a status transition."""
        if action == Action.VERIFY:
            return ReportStatus.PENDING.value, {
                "status": ReportStatus.VERIFIED.value,
                "verified_by_id": actor.id,
                "verified_at": datetime.utcnow(),
                "verification_level": verification_level,
            }
        if action == Action.REJECT:
            return ReportStatus.PENDING.value, {
                "status": ReportStatus.REJECTED.value,
                "verified_by_id": actor.id,
                "verified_at": datetime.utcnow(),
                "rejection_reason": self._rejection_reason(reason),
            }
        if action == Action.MARK_UNDER_REVIEW:
            return ReportStatus.PENDING.value, {"status": ReportStatus.UNDER_REVIEW.value}
        if action == Action.RESOLVE:
            return ReportStatus.VERIFIED.value, {
                "status": ReportStatus.RESOLVED.value,
                "expires_at": datetime.utcnow() + timedelta(days=self.retention_days),
            }
        raise InvalidTransition(f"Unsupported transition: {action}")

    def _transition(self, actor: User, report_id: UUID, action: Action, **kwargs) -> Report:
        report = self._load(report_id)
        authorize(actor, report, action)
        expected_status, values = self._transition_values(actor, action, **kwargs)
        return self._guarded_update(report_id, expected_status, values)

    def verify(
        self,
        actor: User,
        report_id: UUID,
        verification_level: str = "expert_verified",
    ) -> Report:
        report = self._transition(
            actor, report_id, Action.VERIFY, verification_level=verification_level
        )
        logger.info(f"Report verified: {report.public_code} by {actor.id}")
        return report

    def reject(self, actor: User, report_id: UUID, reason: Optional[str]) -> Report:
        report = self._transition(actor, report_id, Action.REJECT, reason=reason)
        logger.info(f"Report rejected: {report.public_code} by {actor.id}")
        return report

    def mark_under_review(self, actor: User, report_id: UUID) -> Report:
        report = self._transition(actor, report_id, Action.MARK_UNDER_REVIEW)
        logger.info(f"Report marked under review: {report.public_code}")
        return report

    def resolve(self, actor: User, report_id: UUID) -> Report:
        report = self._transition(actor, report_id, Action.RESOLVE)
        logger.info(f"Report resolved: {report.public_code}, expires {report.expires_at}")
        return report

    def soft_delete(self, actor: User, report_id: UUID) -> Report:
        report = self._load(report_id)
        authorize(actor, report, Action.DELETE)

        report = self._guarded_update(report_id, None, {
            "status": ReportStatus.DELETED.value,
            "visibility": "private",
        })
        logger.info(f"Report deleted: {report.public_code} by {actor.id}")
        return report

    # =========================================================================
    # Edits
    # =========================================================================

    @staticmethod
    def _edit_values(report: Report, changes: dict) -> dict:
        values = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
        if values:
            severity = values.get("severity", report.severity)
            urgency = values.get("urgency", report.urgency)
            values["is_emergency"] = compute_is_emergency(severity, urgency)
        return values

    def update_fields(self, actor: User, report_id: UUID, changes: dict) -> Report:
        """Edit non-status fields; the write only lands if the status is unchanged since the check."""
        report = self._load(report_id)
        authorize(actor, report, Action.EDIT)

        values = self._edit_values(report, changes)
        if not values:
            return report

        report = self._guarded_update(report_id, report.status, values)
        logger.info(f"Report updated: {report.public_code} fields={sorted(values)}")
        return report

    def apply_update(self, actor: User, report_id: UUID, payload: ReportUpdate) -> Report:
        """
        Handle a PUT: field edits under the edit policy plus an optional
        status change, written together in one conditional UPDATE.
        """
        report = self._load(report_id)
        changes = payload.model_dump(exclude_unset=True)
        target_status = changes.pop("status", None)
        rejection_reason = changes.pop("rejection_reason", None)

        if target_status == report.status:
            target_status = None

        action = None
        if target_status is not None:
            action = STATUS_ACTIONS.get(target_status)
            if action is None:
                raise InvalidTransition(
                    f"Invalid status transition: cannot set status to '{target_status}'"
                )

        values = self._edit_values(report, changes)
        if values:
            authorize(actor, report, Action.EDIT)
        if action is None:
            if not values:
                return report
            report = self._guarded_update(report_id, report.status, values)
            logger.info(f"Report updated: {report.public_code} fields={sorted(values)}")
            return report

        authorize(actor, report, action)
        expected_status, transition_values = self._transition_values(
            actor, action, reason=rejection_reason
        )
        values.update(transition_values)

        report = self._guarded_update(report_id, expected_status, values)
        logger.info(
            f"Report {report.public_code} moved to {report.status} by {actor.id} "
            f"fields={sorted(k for k in values if k in EDITABLE_FIELDS)}"
        )
        return report


def cleanup_expired_reports(db: Session, storage=None, now: Optional[datetime] = None) -> int:
    """
    Purge resolved reports whose retention window has passed.

    Args:
        db: Database session
        storage: Optional media store; when given, attached files are removed too
        now: Reference time (defaults to utcnow)

    Returns:
        Number of reports purged
    """
    now = now or datetime.utcnow()
    expired: Iterable[Report] = db.query(Report).filter(
        Report.expires_at.isnot(None),
        Report.expires_at < now,
    ).all()

    stored_files = []
    count = 0
    try:
        for report in expired:
            stored_files.extend(
                StoredMedia(
                    filename=m.filename,
                    original_name=m.original_name,
                    mimetype=m.mimetype,
                    size=m.size,
                    thumbnail_filename=m.thumbnail_filename,
                )
                for m in report.media
            )
            db.delete(report)
            count += 1
        db.commit()
    except Exception:
        db.rollback()
        raise

    if storage is not None and stored_files:
        storage.cleanup(stored_files)

    logger.info(f"Purged {count} expired reports")
    return count

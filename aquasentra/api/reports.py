"""
Hazard report API endpoints.

Static paths (/dashboard, /public/..., /media/...) are declared before
/{report_id} so they are not captured by it.
"""
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from aquasentra.core.exceptions import PermissionDenied, ValidationFailed
from aquasentra.domain.models import (
    HazardType,
    PublicReportResponse,
    ReportCreate,
    ReportRejectRequest,
    ReportResponse,
    ReportStatus,
    ReportUpdate,
    ReportVerifyRequest,
    Severity,
    VERIFIER_ROLES,
)
from aquasentra.domain.services.access_policy import Action, can_perform
from aquasentra.domain.services.email_service import EmailService, report_alert_details
from aquasentra.domain.services.report_lifecycle import ReportLifecycleService
from aquasentra.domain.services.report_query import ReportQueryService
from aquasentra.infrastructure.database import get_db
from aquasentra.infrastructure.models import Report, User
from aquasentra.infrastructure.storage import LocalMediaStorage
from .deps import get_current_user, get_email_service, get_media_storage, require_roles
from .responses import envelope

router = APIRouter()
logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================

def _parse_json_field(name: str, value: Optional[str]):
    if value is None or value == "":
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        raise ValidationFailed(
            f"Invalid JSON in field '{name}'",
            errors=[{"field": name, "message": "must be valid JSON"}],
        )


def _parse_tags(value: Optional[str]) -> List[str]:
    """Tags arrive as a JSON array or a comma-separated list."""
    if not value:
        return []
    if value.strip().startswith("["):
        parsed = _parse_json_field("tags", value)
        if not isinstance(parsed, list):
            raise ValidationFailed("Tags must be a list")
        return [str(t) for t in parsed]
    return [t.strip() for t in value.split(",") if t.strip()]


def _serialize(reports: List[Report]) -> list:
    return [ReportResponse.model_validate(r) for r in reports]


def _notifications_enabled(user: User) -> bool:
    return bool((user.preferences or {}).get("emailNotifications", True))


async def _notify_status_change(
    email_service: EmailService,
    email: str,
    full_name: str,
    report_code: str,
    new_status: str,
    reason: Optional[str],
) -> None:
    try:
        await email_service.send_report_status_email(email, full_name, report_code, new_status, reason)
    except Exception as e:
        logger.error(f"Failed to send status email for {report_code}: {e}")


async def _alert_responders(email_service: EmailService, emails: List[str], details: dict) -> None:
    try:
        await email_service.send_bulk_emergency_alert(emails, details)
    except Exception as e:
        logger.error(f"Emergency alert dispatch failed for {details['public_code']}: {e}")


def _queue_status_email(
    background_tasks: BackgroundTasks,
    email_service: EmailService,
    report: Report,
) -> None:
    if report.status not in (ReportStatus.VERIFIED.value, ReportStatus.REJECTED.value):
        return
    submitter = report.submitted_by
    if submitter is None or not _notifications_enabled(submitter):
        return
    background_tasks.add_task(
        _notify_status_change,
        email_service,
        submitter.email,
        submitter.full_name,
        report.public_code,
        report.status,
        report.rejection_reason,
    )


# =============================================================================
# Create / List
# =============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_report(
    background_tasks: BackgroundTasks,
    hazard_type: str = Form(...),
    severity: str = Form(...),
    description: str = Form(...),
    latitude: float = Form(...),
    longitude: float = Form(...),
    urgency: str = Form("routine"),
    address: Optional[str] = Form(None),
    visibility: str = Form("public"),
    tags: Optional[str] = Form(None),
    weather_conditions: Optional[str] = Form(None),
    tide_level: Optional[float] = Form(None),
    wave_height: Optional[float] = Form(None),
    wind_speed: Optional[float] = Form(None),
    affected_area: Optional[float] = Form(None),
    estimated_damage: Optional[str] = Form(None),
    people_affected: Optional[int] = Form(None),
    additional_data: Optional[str] = Form(None),
    media: List[UploadFile] = File(default=[]),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: LocalMediaStorage = Depends(get_media_storage),
    email_service: EmailService = Depends(get_email_service),
):
    """
    Submit a hazard report (multipart form, up to 5 media files).

    Files are written before the database insert and removed again if the
    insert fails.
    """
    data = ReportCreate(
        hazard_type=hazard_type,
        severity=severity,
        urgency=urgency,
        description=description,
        latitude=latitude,
        longitude=longitude,
        address=address or None,
        visibility=visibility,
        tags=_parse_tags(tags),
        weather_conditions=_parse_json_field("weather_conditions", weather_conditions),
        tide_level=tide_level,
        wave_height=wave_height,
        wind_speed=wind_speed,
        affected_area=affected_area,
        estimated_damage=estimated_damage or None,
        people_affected=people_affected,
        additional_data=_parse_json_field("additional_data", additional_data) or {},
    )

    stored = await storage.store_uploads(media)
    try:
        report = ReportLifecycleService(db).create(current_user, data, stored)
    except Exception:
        storage.cleanup(stored)
        raise

    if report.is_emergency:
        responders = [
            email for (email,) in db.query(User.email).filter(
                User.role.in_(VERIFIER_ROLES),
                User.status == "active",
                User.id != current_user.id,
            ).all()
        ]
        if responders:
            background_tasks.add_task(
                _alert_responders, email_service, responders, report_alert_details(report)
            )

    return envelope(
        message="Report submitted successfully",
        data={"report": ReportResponse.model_validate(report)},
    )


@router.get("")
def list_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[ReportStatus] = None,
    severity: Optional[Severity] = None,
    hazard_type: Optional[HazardType] = None,
    search: Optional[str] = Query(None, max_length=200),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: float = Query(10, ge=0.1, le=100),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc|ASC|DESC)$"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List reports with filters, free-text search, optional point-radius and pagination."""
    if status == ReportStatus.DELETED:
        raise ValidationFailed("Invalid status filter")

    reports, pagination = ReportQueryService(db).list_reports(
        current_user,
        page=page,
        limit=limit,
        status=status.value if status else None,
        severity=severity.value if severity else None,
        hazard_type=hazard_type.value if hazard_type else None,
        search=search,
        lat=lat,
        lng=lng,
        radius=radius,
        sort_by=sort_by,
        sort_order=sort_order,
    )

    return envelope(data={
        "reports": _serialize(reports),
        "pagination": pagination,
        "filters": {
            "status": status,
            "severity": severity,
            "hazard_type": hazard_type,
            "location": {"lat": lat, "lng": lng, "radius": radius} if lat is not None and lng is not None else None,
        },
    })


# =============================================================================
# Static paths
# =============================================================================

@router.get("/dashboard")
def get_dashboard(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Role-dependent dashboard: statistics, recent and critical reports."""
    data = ReportQueryService(db).dashboard(current_user)
    for key in ("recent_reports", "critical_reports", "user_reports", "pending_reports"):
        if key in data:
            data[key] = _serialize(data[key])
    return envelope(data=data)


@router.get("/public/{public_code}")
def get_public_report(public_code: str, db: Session = Depends(get_db)):
    """Unauthenticated view of a public, verified or resolved report."""
    report = ReportQueryService(db).find_public(public_code)
    return envelope(data={"report": PublicReportResponse.model_validate(report)})


@router.get("/media/{filename}")
def get_media_file(
    filename: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: LocalMediaStorage = Depends(get_media_storage),
):
    """Stream a stored media file or thumbnail if the caller may view its report."""
    media = ReportQueryService(db).find_media(filename)
    if not can_perform(current_user, media.report, Action.VIEW):
        raise PermissionDenied("Access denied")

    path = storage.resolve(filename)
    media_type = "image/jpeg" if filename == media.thumbnail_filename else media.mimetype
    return FileResponse(path, media_type=media_type)


# =============================================================================
# Single report
# =============================================================================

@router.get("/{report_id}")
def get_report(
    report_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get a report by internal id or public code."""
    report = ReportQueryService(db).get_for_actor(report_id, current_user)
    return envelope(data={"report": ReportResponse.model_validate(report)})


@router.put("/{report_id}")
def update_report(
    report_id: str,
    payload: ReportUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    """Edit report fields and/or move it through the lifecycle via ``status``."""
    report = ReportQueryService(db).find(report_id)
    previous_status = report.status

    report = ReportLifecycleService(db).apply_update(current_user, report.id, payload)
    if report.status != previous_status:
        _queue_status_email(background_tasks, email_service, report)

    return envelope(
        message="Report updated successfully",
        data={"report": ReportResponse.model_validate(report)},
    )


@router.delete("/{report_id}")
def delete_report(
    report_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Soft delete: the report is hidden and made private."""
    report = ReportQueryService(db).find(report_id)
    ReportLifecycleService(db).soft_delete(current_user, report.id)
    return envelope(message="Report deleted successfully")


@router.post("/{report_id}/verify")
def verify_report(
    report_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[ReportVerifyRequest] = Body(None),
    current_user: User = Depends(require_roles(*VERIFIER_ROLES)),
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    report = ReportQueryService(db).find(report_id)
    level = payload.verification_level if payload else "expert_verified"

    report = ReportLifecycleService(db).verify(current_user, report.id, level)
    _queue_status_email(background_tasks, email_service, report)

    return envelope(
        message="Report verified successfully",
        data={"report": ReportResponse.model_validate(report)},
    )


@router.post("/{report_id}/reject")
def reject_report(
    report_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[dict] = Body(None),
    current_user: User = Depends(require_roles(*VERIFIER_ROLES)),
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    """Reject a pending report; a 10-1000 character reason is required."""
    try:
        body = ReportRejectRequest.model_validate(payload or {})
    except ValidationError as e:
        raise ValidationFailed(
            "Rejection reason must be between 10 and 1000 characters",
            errors=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
        )

    report = ReportQueryService(db).find(report_id)
    report = ReportLifecycleService(db).reject(current_user, report.id, body.reason)
    _queue_status_email(background_tasks, email_service, report)

    return envelope(
        message="Report rejected successfully",
        data={"report": ReportResponse.model_validate(report)},
    )

"""
Report query and aggregation layer.

Builds filtered, paginated and geo-bounded views over hazard reports for the
list, map, clustering and dashboard endpoints. Deleted reports never appear.
"""
import logging
import math
import uuid
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Query, Session, selectinload

from aquasentra.core.exceptions import PermissionDenied, ResourceNotFound, ValidationFailed
from aquasentra.domain.models import ReportStatus, Role, VERIFIER_ROLES
from aquasentra.domain.services.access_policy import Action, can_perform
from aquasentra.domain.services.geo import (
    BoundingBox,
    cluster_key,
    cluster_precision,
    radius_prefilter_box,
    severity_weight,
    validate_coordinates,
    within_radius,
)
from aquasentra.infrastructure.models import Report, ReportMedia, User

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "created_at": Report.created_at,
    "updated_at": Report.updated_at,
    "verified_at": Report.verified_at,
    "severity": Report.severity,
    "status": Report.status,
    "urgency": Report.urgency,
    "hazard_type": Report.hazard_type,
}

MAP_BOUNDS_LIMIT = 500
MAP_RADIUS_LIMIT = 200
MAP_RECENT_LIMIT = 100
EXCERPT_LENGTH = 100


def pagination_meta(page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total": total,
        "limit": limit,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def excerpt(text: str, length: int = EXCERPT_LENGTH) -> str:
    if len(text) > length:
        return text[:length] + "..."
    return text


class ReportQueryService:
    """Read-side operations over the reports table."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Base queries
    # =========================================================================

    def _base(self) -> Query:
        return self.db.query(Report).filter(Report.status != ReportStatus.DELETED.value)

    def _with_relations(self, query: Query) -> Query:
        return query.options(
            selectinload(Report.submitted_by),
            selectinload(Report.verified_by),
            selectinload(Report.media),
        )

    @staticmethod
    def apply_visibility(query: Query, actor: User) -> Query:
        """Citizens only see their own reports and public ones."""
        if actor.role == Role.CITIZEN.value:
            query = query.filter(or_(
                Report.submitted_by_id == actor.id,
                Report.visibility == "public",
            ))
        return query

    def _ids_within_radius(self, query: Query, lat: float, lng: float, radius_km: float) -> List:
        """Ids of reports from ``query`` inside the circle (box prefilter in SQL, haversine here)."""
        validate_coordinates(lat, lng)
        box = radius_prefilter_box(lat, lng, radius_km)
        candidates = (
            query.filter(
                Report.latitude.between(box.sw_lat, box.ne_lat),
                Report.longitude.between(box.sw_lng, box.ne_lng),
            )
            .with_entities(Report.id, Report.latitude, Report.longitude)
            .all()
        )
        inside = within_radius(lat, lng, radius_km, candidates, key=lambda row: (row[1], row[2]))
        return [row[0] for row in inside]

    @staticmethod
    def apply_bounds(query: Query, box: BoundingBox) -> Query:
        return query.filter(
            Report.latitude.between(box.sw_lat, box.ne_lat),
            Report.longitude.between(box.sw_lng, box.ne_lng),
        )

    # =========================================================================
    # Single report lookups
    # =========================================================================

    def find(self, identifier: str) -> Report:
        """Look a report up by internal UUID or by public code."""
        query = self._with_relations(self._base())
        report = None
        try:
            report_id = uuid.UUID(str(identifier))
        except ValueError:
            report = query.filter(Report.public_code == identifier).first()
        else:
            report = query.filter(Report.id == report_id).first()

        if report is None:
            raise ResourceNotFound("Report not found")
        return report

    def get_for_actor(self, identifier: str, actor: User) -> Report:
        report = self.find(identifier)
        if not can_perform(actor, report, Action.VIEW):
            raise PermissionDenied("Access denied")
        return report

    def find_public(self, public_code: str) -> Report:
        report = (
            self._with_relations(self.db.query(Report))
            .filter(
                Report.public_code == public_code,
                Report.visibility == "public",
                Report.status.in_([ReportStatus.VERIFIED.value, ReportStatus.RESOLVED.value]),
            )
            .first()
        )
        if report is None:
            raise ResourceNotFound("Public report not found")
        return report

    def find_media(self, filename: str) -> ReportMedia:
        """Media row owning ``filename`` (either the file itself or its thumbnail)."""
        media = (
            self.db.query(ReportMedia)
            .join(Report, ReportMedia.report_id == Report.id)
            .filter(
                Report.status != ReportStatus.DELETED.value,
                or_(ReportMedia.filename == filename, ReportMedia.thumbnail_filename == filename),
            )
            .first()
        )
        if media is None:
            raise ResourceNotFound("Media file not found")
        return media

    # =========================================================================
    # List
    # =========================================================================

    def list_reports(
        self,
        actor: User,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        severity: Optional[str] = None,
        hazard_type: Optional[str] = None,
        search: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        radius: float = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[Report], dict]:
        """
        Filtered, paginated report list.

        Returns:
            (reports on this page, pagination metadata)
        """
        sort_column = SORTABLE_FIELDS.get(sort_by)
        if sort_column is None:
            raise ValidationFailed(
                f"Invalid sort field '{sort_by}'. Allowed: {', '.join(SORTABLE_FIELDS)}"
            )
        if sort_order.lower() not in ("asc", "desc"):
            raise ValidationFailed("Sort order must be 'asc' or 'desc'")

        query = self.apply_visibility(self._base(), actor)
        if status:
            query = query.filter(Report.status == status)
        if severity:
            query = query.filter(Report.severity == severity)
        if hazard_type:
            query = query.filter(Report.hazard_type == hazard_type)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Report.description.ilike(pattern),
                Report.address.ilike(pattern),
                Report.public_code.ilike(pattern),
            ))

        if lat is not None and lng is not None:
            ids = self._ids_within_radius(query, lat, lng, radius)
            query = query.filter(Report.id.in_(ids))

        total = query.count()
        order = sort_column.asc() if sort_order.lower() == "asc" else sort_column.desc()
        reports = (
            self._with_relations(query)
            .order_by(order, Report.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return reports, pagination_meta(page, limit, total)

    def reports_within_radius(self, lat: float, lng: float, radius_km: float, limit: Optional[int] = None) -> List[Report]:
        """All non-deleted reports within ``radius_km`` (inclusive), newest first."""
        ids = self._ids_within_radius(self._base(), lat, lng, radius_km)
        query = self._base().filter(Report.id.in_(ids)).order_by(Report.created_at.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def reports_in_bounds(self, box: BoundingBox, limit: int = MAP_BOUNDS_LIMIT) -> List[Report]:
        return (
            self.apply_bounds(self._base(), box)
            .order_by(Report.created_at.desc())
            .limit(limit)
            .all()
        )

    # =========================================================================
    # Map
    # =========================================================================

    def map_reports(
        self,
        actor: User,
        status: str = "verified",
        severity: Optional[str] = None,
        hazard_type: Optional[str] = None,
        bounds: Optional[BoundingBox] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        radius: float = 10,
    ) -> List[dict]:
        """Map pins; bounds win over a point-radius, otherwise the most recent reports."""
        query = self._base()
        if status == "all":
            query = query.filter(Report.status.in_([ReportStatus.VERIFIED.value, ReportStatus.PENDING.value]))
        else:
            query = query.filter(Report.status == status)
        if severity:
            query = query.filter(Report.severity == severity)
        if hazard_type:
            query = query.filter(Report.hazard_type == hazard_type)
        query = self.apply_visibility(query, actor)

        if bounds is not None:
            query = self.apply_bounds(query, bounds)
            limit = MAP_BOUNDS_LIMIT
        elif lat is not None and lng is not None:
            query = query.filter(Report.id.in_(self._ids_within_radius(query, lat, lng, radius)))
            limit = MAP_RADIUS_LIMIT
        else:
            limit = MAP_RECENT_LIMIT

        reports = (
            query.options(selectinload(Report.submitted_by), selectinload(Report.media))
            .order_by(Report.created_at.desc())
            .limit(limit)
            .all()
        )

        show_names = actor.role != Role.CITIZEN.value
        return [
            {
                "id": report.id,
                "public_code": report.public_code,
                "position": {"lat": report.latitude, "lng": report.longitude},
                "hazard_type": report.hazard_type,
                "severity": report.severity,
                "status": report.status,
                "is_emergency": report.is_emergency,
                "description": excerpt(report.description),
                "created_at": report.created_at,
                "submitted_by": report.submitted_by.full_name if show_names else "Community Member",
                "has_media": len(report.media) > 0,
            }
            for report in reports
        ]

    def clusters(self, zoom: int, box: BoundingBox) -> List[dict]:
        """Group verified and pending reports by coordinates rounded to a zoom-dependent precision."""
        precision = cluster_precision(zoom)
        rows = (
            self.apply_bounds(self.db.query(Report), box)
            .filter(Report.status.in_([ReportStatus.VERIFIED.value, ReportStatus.PENDING.value]))
            .with_entities(Report.latitude, Report.longitude, Report.severity, Report.status)
            .all()
        )

        groups = defaultdict(lambda: {"count": 0, "critical_count": 0, "verified_count": 0})
        for lat, lng, severity, status in rows:
            group = groups[cluster_key(lat, lng, precision)]
            group["count"] += 1
            if severity == "critical":
                group["critical_count"] += 1
            if status == ReportStatus.VERIFIED.value:
                group["verified_count"] += 1

        clusters = [
            {
                "position": {"lat": key[0], "lng": key[1]},
                "count": stats["count"],
                "critical_count": stats["critical_count"],
                "verified_count": stats["verified_count"],
                "severity": "critical" if stats["critical_count"] > 0 else "normal",
            }
            for key, stats in groups.items()
        ]
        clusters.sort(key=lambda c: (-c["count"], c["position"]["lat"], c["position"]["lng"]))
        return clusters

    def heatmap(
        self,
        time_range_days: int = 30,
        hazard_type: Optional[str] = None,
        severity: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[dict]:
        start = (now or datetime.utcnow()) - timedelta(days=time_range_days)
        query = self.db.query(Report.latitude, Report.longitude, Report.severity).filter(
            Report.status == ReportStatus.VERIFIED.value,
            Report.created_at >= start,
        )
        if hazard_type:
            query = query.filter(Report.hazard_type == hazard_type)
        if severity:
            query = query.filter(Report.severity == severity)

        return [
            {"lat": lat, "lng": lng, "weight": severity_weight(sev)}
            for lat, lng, sev in query.all()
        ]

    def region_statistics(
        self,
        bounds: Optional[BoundingBox] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        radius: float = 10,
    ) -> dict:
        if bounds is None and (lat is None or lng is None):
            raise ValidationFailed("Either bounds or lat/lng coordinates required")

        query = self._base()
        if bounds is not None:
            query = self.apply_bounds(query, bounds)
        else:
            query = query.filter(Report.id.in_(self._ids_within_radius(query, lat, lng, radius)))

        rows = query.with_entities(Report.status, Report.severity, Report.hazard_type).all()
        statuses = Counter(r[0] for r in rows)
        return {
            "overview": {
                "total": len(rows),
                "verified": statuses[ReportStatus.VERIFIED.value],
                "pending": statuses[ReportStatus.PENDING.value],
                "critical": sum(1 for r in rows if r[1] == "critical"),
            },
            "hazard_distribution": dict(Counter(r[2] for r in rows)),
        }

    # =========================================================================
    # Dashboard
    # =========================================================================

    def grouped_statistics(self) -> List[dict]:
        rows = (
            self._base()
            .with_entities(Report.status, Report.severity, Report.hazard_type, func.count(Report.id))
            .group_by(Report.status, Report.severity, Report.hazard_type)
            .all()
        )
        return [
            {"status": status, "severity": severity, "hazard_type": hazard_type, "count": count}
            for status, severity, hazard_type, count in rows
        ]

    def dashboard(self, actor: User) -> dict:
        visible = self.apply_visibility(self._base(), actor)

        recent = (
            self._with_relations(visible)
            .order_by(Report.created_at.desc())
            .limit(10)
            .all()
        )
        critical = (
            self._with_relations(visible)
            .filter(
                or_(Report.severity == "critical", Report.urgency == "emergency", Report.is_emergency.is_(True)),
                Report.status.in_([ReportStatus.PENDING.value, ReportStatus.VERIFIED.value]),
            )
            .order_by(Report.created_at.desc())
            .limit(50)
            .all()
        )

        data = {
            "statistics": self.grouped_statistics(),
            "recent_reports": recent,
            "critical_reports": critical,
        }

        if actor.role == Role.CITIZEN.value:
            own = self._base().filter(Report.submitted_by_id == actor.id)
            data["user_reports"] = self._with_relations(own).order_by(Report.created_at.desc()).limit(5).all()
            data["total_submitted"] = own.count()
        elif actor.role in VERIFIER_ROLES:
            pending = self._base().filter(Report.status == ReportStatus.PENDING.value)
            data["pending_reports"] = (
                self._with_relations(pending).order_by(Report.created_at.desc()).limit(10).all()
            )
            data["total_pending"] = pending.count()
            data["total_verified"] = self._base().filter(Report.verified_by_id == actor.id).count()

        return data

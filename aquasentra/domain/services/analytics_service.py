"""
Analytics Service for Aquasentra

Rollups over hazard reports for analysts and admins: dashboard overview,
submission trends, verifier performance and CSV exports.

Counts are grouped in SQL; time bucketing and elapsed-time math are done in
Python so PostgreSQL and SQLite produce the same numbers.
"""
import csv
import io
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from aquasentra.core.exceptions import ValidationFailed
from aquasentra.domain.models import ReportStatus, VERIFIER_ROLES
from aquasentra.domain.services.geo import round_coordinate
from aquasentra.infrastructure.models import Report, User

logger = logging.getLogger(__name__)

DATE_RANGES = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}

TREND_PERIODS = ("hourly", "daily", "weekly", "monthly")
EXPORT_TYPES = ("reports", "users", "verification")

REPORT_CSV_HEADER = [
    "ID", "Public ID", "Hazard Type", "Severity", "Status", "Description",
    "Location", "Submitted By", "Created At", "Verified At",
]
USER_CSV_HEADER = ["ID", "Name", "Email", "Role", "Status", "Created At", "Last Active"]
VERIFICATION_CSV_HEADER = [
    "Report ID", "Hazard Type", "Severity", "Status", "Submitted By",
    "Verified By", "Response Time (hours)", "Verified At",
]


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def percentage(part: int, total: int) -> float:
    return round(part / total * 100, 1) if total else 0.0


def period_bucket(moment: datetime, period: str) -> str:
    if period == "hourly":
        return moment.strftime("%Y-%m-%d %H:00")
    if period == "weekly":
        iso = moment.isocalendar()
        return f"{iso[0]}-W{iso[1]:02d}"
    if period == "monthly":
        return moment.strftime("%Y-%m")
    return moment.strftime("%Y-%m-%d")


def parse_export_date(value: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    """Parse an ISO-8601 date or datetime into naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationFailed(f"Invalid date format: {value}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    if end_of_day and len(value) == 10:
        parsed = parsed + timedelta(days=1) - timedelta(microseconds=1)
    return parsed


def _csv_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    # Keep one record per line
    return str(value).replace("\r\n", " ").replace("\n", " ").replace("\r", " ")


def render_csv(header: List[str], rows: List[list]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(header)
    for row in rows:
        writer.writerow([_csv_value(v) for v in row])
    return buffer.getvalue()


class AnalyticsService:
    def __init__(self, db: Session):
        self.db = db

    def _reports(self):
        return self.db.query(Report).filter(Report.status != ReportStatus.DELETED.value)

    def _count_by(self, query, column) -> Dict[str, int]:
        rows = query.with_entities(column, func.count(Report.id)).group_by(column).all()
        return {key: count for key, count in rows}

    # =========================================================================
    # Dashboard
    # =========================================================================

    def dashboard(
        self,
        date_range: str = "30d",
        hazard_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        if date_range not in DATE_RANGES:
            raise ValidationFailed(f"date_range must be one of: {', '.join(DATE_RANGES)}")

        now = now or datetime.utcnow()
        start = now - DATE_RANGES[date_range]
        query = self._reports().filter(Report.created_at >= start)
        if hazard_type:
            query = query.filter(Report.hazard_type == hazard_type)

        by_status = self._count_by(query, Report.status)
        by_severity = self._count_by(query, Report.severity)
        by_hazard = self._count_by(query, Report.hazard_type)

        total = sum(by_status.values())
        verified = by_status.get(ReportStatus.VERIFIED.value, 0)

        rows = query.with_entities(
            Report.created_at, Report.status, Report.latitude, Report.longitude
        ).all()

        daily = Counter((created.date().isoformat(), status) for created, status, _, _ in rows)
        daily_trend = [
            {"date": day, "status": status, "count": count}
            for (day, status), count in sorted(daily.items())
        ]

        cells = Counter(
            (round_coordinate(lat, 1), round_coordinate(lng, 1)) for _, _, lat, lng in rows
        )
        hotspots = [
            {"lat": lat, "lng": lng, "count": count}
            for (lat, lng), count in cells.most_common()
            if count > 2
        ][:20]

        return {
            "overview": {
                "total_reports": total,
                "verified_reports": verified,
                "pending_reports": by_status.get(ReportStatus.PENDING.value, 0),
                "critical_reports": by_severity.get("critical", 0),
                "verification_rate": percentage(verified, total),
            },
            "breakdown": {
                "by_status": by_status,
                "by_severity": by_severity,
                "by_hazard_type": by_hazard,
            },
            "trends": {
                "daily": daily_trend,
                "response_time": self._response_times(query),
            },
            "top_reporters": self._top_reporters(start, hazard_type),
            "geographic": hotspots,
            "date_range": date_range,
            "generated_at": now,
        }

    def _response_times(self, query) -> dict:
        rows = (
            query.filter(
                Report.status == ReportStatus.VERIFIED.value,
                Report.verified_at.isnot(None),
            )
            .with_entities(Report.created_at, Report.verified_at)
            .all()
        )
        hours = [hours_between(created, verified) for created, verified in rows]
        if not hours:
            return {"avg_hours": None, "min_hours": None, "max_hours": None}
        return {
            "avg_hours": round(sum(hours) / len(hours), 2),
            "min_hours": round(min(hours), 2),
            "max_hours": round(max(hours), 2),
        }

    def _top_reporters(self, start: datetime, hazard_type: Optional[str]) -> List[dict]:
        report_count = func.count(Report.id).label("report_count")
        query = (
            self.db.query(User.id, User.first_name, User.last_name, User.role, report_count)
            .join(Report, Report.submitted_by_id == User.id)
            .filter(Report.created_at >= start, Report.status != ReportStatus.DELETED.value)
        )
        if hazard_type:
            query = query.filter(Report.hazard_type == hazard_type)

        rows = (
            query.group_by(User.id, User.first_name, User.last_name, User.role)
            .order_by(report_count.desc(), User.id)
            .limit(10)
            .all()
        )
        return [
            {"id": user_id, "name": f"{first} {last}", "role": role, "report_count": count}
            for user_id, first, last, role, count in rows
        ]

    # =========================================================================
    # Trends
    # =========================================================================

    def trends(self, period: str = "daily", days: int = 30, now: Optional[datetime] = None) -> dict:
        if period not in TREND_PERIODS:
            raise ValidationFailed(f"period must be one of: {', '.join(TREND_PERIODS)}")
        if not 1 <= days <= 365:
            raise ValidationFailed("days must be between 1 and 365")

        now = now or datetime.utcnow()
        start = now - timedelta(days=days)
        rows = (
            self._reports()
            .filter(Report.created_at >= start)
            .with_entities(Report.created_at, Report.severity, Report.status)
            .all()
        )

        buckets = Counter(
            (period_bucket(created, period), severity, status) for created, severity, status in rows
        )
        trends = [
            {"period": bucket, "severity": severity, "status": status, "count": count}
            for (bucket, severity, status), count in sorted(buckets.items())
        ]

        return {
            "trends": trends,
            "period": period,
            "days_analyzed": days,
            "start_date": start,
            "end_date": now,
        }

    # =========================================================================
    # Verification performance
    # =========================================================================

    def verification_performance(self, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()
        start = now - timedelta(days=30)

        reports = (
            self._reports()
            .filter(Report.created_at >= start)
            .with_entities(Report.status, Report.created_at, Report.verified_at, Report.verified_by_id)
            .all()
        )

        statuses = Counter(r[0] for r in reports)
        total = len(reports)
        verified = statuses[ReportStatus.VERIFIED.value]

        elapsed = [hours_between(created, verified_at) for _, created, verified_at, _ in reports if verified_at]
        per_verifier = defaultdict(list)
        for _, created, verified_at, verifier_id in reports:
            if verified_at and verifier_id:
                per_verifier[verifier_id].append(hours_between(created, verified_at))

        verifiers = []
        if per_verifier:
            users = (
                self.db.query(User)
                .filter(User.id.in_(list(per_verifier)), User.role.in_(VERIFIER_ROLES))
                .all()
            )
            for user in users:
                hours = per_verifier[user.id]
                verifiers.append({
                    "id": user.id,
                    "name": user.full_name,
                    "role": user.role,
                    "total_verifications": len(hours),
                    "avg_response_time_hours": round(sum(hours) / len(hours), 2),
                })
            verifiers.sort(key=lambda v: (-v["total_verifications"], v["name"]))

        return {
            "overall": {
                "total_reports": total,
                "verified_reports": verified,
                "rejected_reports": statuses[ReportStatus.REJECTED.value],
                "pending_reports": statuses[ReportStatus.PENDING.value],
                "verification_rate": percentage(verified, total),
                "avg_verification_time_hours": round(sum(elapsed) / len(elapsed), 2) if elapsed else 0.0,
            },
            "verifiers": verifiers,
            "generated_at": now,
        }

    # =========================================================================
    # CSV export
    # =========================================================================

    def export_csv(
        self,
        export_type: str,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[str, str]:
        """
        Build a CSV export.

        Returns:
            (filename, csv text) - every field double-quoted, one record per line
        """
        if export_type not in EXPORT_TYPES:
            raise ValidationFailed(f"Invalid export type. Allowed: {', '.join(EXPORT_TYPES)}")

        start = parse_export_date(date_from)
        end = parse_export_date(date_to, end_of_day=True)
        if start and end and start > end:
            raise ValidationFailed("date_from must not be after date_to")

        today = (now or datetime.utcnow()).date().isoformat()
        filename = f"{export_type}_export_{today}.csv"

        if export_type == "reports":
            content = self._export_reports(start, end)
        elif export_type == "users":
            content = self._export_users(start, end)
        else:
            content = self._export_verification(start, end)

        return filename, content

    @staticmethod
    def _date_filter(query, column, start, end):
        if start:
            query = query.filter(column >= start)
        if end:
            query = query.filter(column <= end)
        return query

    def _export_reports(self, start, end) -> str:
        query = self._date_filter(self._reports(), Report.created_at, start, end)
        reports = (
            query.options(selectinload(Report.submitted_by))
            .order_by(Report.created_at.desc())
            .all()
        )
        rows = [
            [
                r.id, r.public_code, r.hazard_type, r.severity, r.status, r.description,
                f"{r.latitude}, {r.longitude}", r.submitted_by.full_name, r.created_at, r.verified_at,
            ]
            for r in reports
        ]
        return render_csv(REPORT_CSV_HEADER, rows)

    def _export_users(self, start, end) -> str:
        query = self._date_filter(self.db.query(User), User.created_at, start, end)
        users = query.order_by(User.created_at.desc()).all()
        rows = [
            [u.id, u.full_name, u.email, u.role, u.status, u.created_at, u.last_active_at]
            for u in users
        ]
        return render_csv(USER_CSV_HEADER, rows)

    def _export_verification(self, start, end) -> str:
        query = self._date_filter(self._reports(), Report.created_at, start, end).filter(
            Report.status.in_([ReportStatus.VERIFIED.value, ReportStatus.REJECTED.value]),
            Report.verified_at.isnot(None),
        )
        reports = (
            query.options(selectinload(Report.submitted_by), selectinload(Report.verified_by))
            .order_by(Report.verified_at.desc())
            .all()
        )
        rows = [
            [
                r.public_code, r.hazard_type, r.severity, r.status,
                r.submitted_by.full_name,
                r.verified_by.full_name if r.verified_by else "",
                f"{hours_between(r.created_at, r.verified_at):.2f}",
                r.verified_at,
            ]
            for r in reports
        ]
        return render_csv(VERIFICATION_CSV_HEADER, rows)

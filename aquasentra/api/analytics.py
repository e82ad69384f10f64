"""
Analytics API endpoints (analyst and admin only).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from aquasentra.domain.models import ANALYTICS_ROLES, HazardType
from aquasentra.domain.services.analytics_service import AnalyticsService
from aquasentra.infrastructure.database import get_db
from aquasentra.infrastructure.models import User
from .deps import require_roles
from .responses import envelope

router = APIRouter()
logger = logging.getLogger(__name__)

require_analyst = require_roles(*ANALYTICS_ROLES)


@router.get("/dashboard")
def get_analytics_dashboard(
    date_range: str = Query("30d", pattern="^(7d|30d|90d|1y)$"),
    hazard_type: Optional[HazardType] = None,
    current_user: User = Depends(require_analyst),
    db: Session = Depends(get_db),
):
    data = AnalyticsService(db).dashboard(
        date_range=date_range,
        hazard_type=hazard_type.value if hazard_type else None,
    )
    return envelope(data=data)


@router.get("/reports/trends")
def get_report_trends(
    period: str = Query("daily", pattern="^(hourly|daily|weekly|monthly)$"),
    days: int = Query(30, ge=1, le=365),
    current_user: User = Depends(require_analyst),
    db: Session = Depends(get_db),
):
    return envelope(data=AnalyticsService(db).trends(period=period, days=days))


@router.get("/verification/performance")
def get_verification_performance(
    current_user: User = Depends(require_analyst),
    db: Session = Depends(get_db),
):
    return envelope(data=AnalyticsService(db).verification_performance())


@router.get("/exports/csv")
def export_csv(
    type: str = Query(..., pattern="^(reports|users|verification)$"),
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    current_user: User = Depends(require_analyst),
    db: Session = Depends(get_db),
):
    """CSV export; every field is double-quoted."""
    filename, content = AnalyticsService(db).export_csv(type, date_from, date_to)
    logger.info(f"Analytics export generated: {type} by user {current_user.id}")

    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

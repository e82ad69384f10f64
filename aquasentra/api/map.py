"""
Map API endpoints: pins, clusters, heatmap and regional statistics.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from aquasentra.domain.models import HazardType, Severity
from aquasentra.domain.services.geo import parse_bounds
from aquasentra.domain.services.report_query import ReportQueryService
from aquasentra.infrastructure.database import get_db
from aquasentra.infrastructure.models import User
from .deps import get_current_user
from .responses import envelope

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/reports")
def get_map_reports(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: float = Query(10, ge=0.1, le=100),
    bounds: Optional[str] = Query(None, description="swLat,swLng,neLat,neLng"),
    status: str = Query("verified", pattern="^(verified|pending|all)$"),
    severity: Optional[Severity] = None,
    hazard_type: Optional[HazardType] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Reports for map display.

    A bounding box wins over a point-radius; with neither, the most recent
    reports are returned.
    """
    box = parse_bounds(bounds) if bounds else None

    pins = ReportQueryService(db).map_reports(
        current_user,
        status=status,
        severity=severity.value if severity else None,
        hazard_type=hazard_type.value if hazard_type else None,
        bounds=box,
        lat=lat,
        lng=lng,
        radius=radius,
    )

    return envelope(data={
        "reports": pins,
        "total_count": len(pins),
        "filters": {
            "status": status,
            "severity": severity,
            "hazard_type": hazard_type,
            "location": {"lat": lat, "lng": lng, "radius": radius} if lat is not None and lng is not None else None,
            "bounds": bounds,
        },
    })


@router.get("/clusters")
def get_map_clusters(
    zoom: int = Query(..., ge=1, le=20),
    bounds: str = Query(..., description="swLat,swLng,neLat,neLng"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Clustered report counts for the viewport, coarser at low zoom."""
    box = parse_bounds(bounds)
    clusters = ReportQueryService(db).clusters(zoom, box)

    return envelope(data={
        "clusters": clusters,
        "zoom": zoom,
        "bounds": {
            "sw_lat": box.sw_lat,
            "sw_lng": box.sw_lng,
            "ne_lat": box.ne_lat,
            "ne_lng": box.ne_lng,
        },
    })


@router.get("/heatmap")
def get_heatmap(
    time_range: int = Query(30, ge=1, le=365, description="Days to look back"),
    hazard_type: Optional[HazardType] = None,
    severity: Optional[Severity] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Weighted points for verified reports in the time window."""
    points = ReportQueryService(db).heatmap(
        time_range_days=time_range,
        hazard_type=hazard_type.value if hazard_type else None,
        severity=severity.value if severity else None,
    )

    return envelope(data={
        "points": points,
        "filters": {"hazard_type": hazard_type, "time_range": time_range, "severity": severity},
        "total_points": len(points),
    })


@router.get("/statistics")
def get_map_statistics(
    bounds: Optional[str] = None,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: float = Query(10, ge=0.1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Overview and hazard distribution for a bounding box or a point-radius."""
    box = parse_bounds(bounds) if bounds else None
    stats = ReportQueryService(db).region_statistics(bounds=box, lat=lat, lng=lng, radius=radius)

    if box is not None:
        stats["region"] = {"type": "bounds", "bounds": bounds}
    else:
        stats["region"] = {"type": "radius", "center": {"lat": lat, "lng": lng}, "radius": radius}

    return envelope(data=stats)

"""
Tests for the report query layer.

Tests cover:
- list filtering, visibility, search, sorting and pagination
- point-radius and bounding-box selection
- map pins, clusters, heatmap and regional statistics
- role-dependent dashboard
"""
import math
from datetime import datetime, timedelta

import pytest

from aquasentra.core.exceptions import PermissionDenied, ResourceNotFound, ValidationFailed
from aquasentra.domain.services.geo import EARTH_RADIUS_KM, BoundingBox
from aquasentra.domain.services.report_query import ReportQueryService, excerpt, pagination_meta

ORIGIN = (34.0194, -118.4912)

pytestmark = pytest.mark.db_required


def north_of(distance_km):
    return ORIGIN[0] + math.degrees(distance_km / EARTH_RADIUS_KM), ORIGIN[1]


class TestHelpers:
    def test_pagination_meta(self):
        assert pagination_meta(2, 10, 25) == {
            "current_page": 2,
            "total_pages": 3,
            "total": 25,
            "limit": 10,
            "has_next": True,
            "has_prev": True,
        }

    def test_pagination_empty(self):
        meta = pagination_meta(1, 20, 0)
        assert meta["total_pages"] == 0
        assert meta["has_next"] is False
        assert meta["has_prev"] is False

    def test_excerpt(self):
        assert excerpt("short") == "short"
        assert excerpt("x" * 150) == "x" * 100 + "..."


# =============================================================================
# LIST
# =============================================================================

class TestListReports:
    def test_citizen_sees_own_and_public(self, db, citizen, other_citizen, make_report):
        mine_private = make_report(citizen, visibility="private")
        public = make_report(other_citizen)
        make_report(other_citizen, visibility="private")

        reports, meta = ReportQueryService(db).list_reports(citizen)

        assert {r.id for r in reports} == {mine_private.id, public.id}
        assert meta["total"] == 2

    def test_verifier_sees_everything_but_deleted(self, db, citizen, verifier, make_report):
        make_report(citizen, visibility="private")
        make_report(citizen)
        make_report(citizen, status="deleted")

        reports, meta = ReportQueryService(db).list_reports(verifier)
        assert meta["total"] == 2

    def test_filters(self, db, citizen, verifier, make_report):
        target = make_report(citizen, severity="critical", hazard_type="tsunami", status="verified")
        make_report(citizen, severity="critical", hazard_type="flood")
        make_report(citizen, severity="low", hazard_type="tsunami", status="verified")

        reports, _ = ReportQueryService(db).list_reports(
            verifier, status="verified", severity="critical", hazard_type="tsunami"
        )
        assert [r.id for r in reports] == [target.id]

    def test_search_matches_description_address_and_code(self, db, citizen, verifier, make_report):
        by_desc = make_report(citizen, description="Thick oil slick near the harbour")
        by_addr = make_report(citizen, address="Venice Beach boardwalk")
        by_code = make_report(citizen, public_code="RPTSEARCHME1")
        make_report(citizen)

        service = ReportQueryService(db)
        assert [r.id for r in service.list_reports(verifier, search="oil slick")[0]] == [by_desc.id]
        assert [r.id for r in service.list_reports(verifier, search="venice")[0]] == [by_addr.id]
        assert [r.id for r in service.list_reports(verifier, search="SEARCHME")[0]] == [by_code.id]

    def test_pagination_and_sort(self, db, citizen, verifier, make_report):
        now = datetime.utcnow()
        reports = [
            make_report(citizen, created_at=now - timedelta(hours=i)) for i in range(5)
        ]

        page, meta = ReportQueryService(db).list_reports(verifier, page=2, limit=2, sort_order="asc")

        assert [r.id for r in page] == [reports[2].id, reports[1].id]
        assert meta == {
            "current_page": 2,
            "total_pages": 3,
            "total": 5,
            "limit": 2,
            "has_next": True,
            "has_prev": True,
        }

    def test_invalid_sort_field(self, db, verifier):
        with pytest.raises(ValidationFailed):
            ReportQueryService(db).list_reports(verifier, sort_by="password_hash")

    def test_radius_filter_inclusive(self, db, citizen, verifier, make_report):
        lat, lng = north_of(10.0)
        on_boundary = make_report(citizen, latitude=lat, longitude=lng)
        lat, lng = north_of(10.01)
        make_report(citizen, latitude=lat, longitude=lng)

        reports, meta = ReportQueryService(db).list_reports(
            verifier, lat=ORIGIN[0], lng=ORIGIN[1], radius=10
        )
        assert [r.id for r in reports] == [on_boundary.id]
        assert meta["total"] == 1


# =============================================================================
# SINGLE LOOKUPS
# =============================================================================

class TestLookups:
    def test_find_by_uuid_or_code(self, db, citizen, make_report):
        report = make_report(citizen)
        service = ReportQueryService(db)
        assert service.find(str(report.id)).id == report.id
        assert service.find(report.public_code).id == report.id

    def test_deleted_not_found(self, db, citizen, make_report):
        report = make_report(citizen, status="deleted")
        with pytest.raises(ResourceNotFound):
            ReportQueryService(db).find(str(report.id))

    def test_private_report_forbidden_for_other_citizen(self, db, citizen, other_citizen, make_report):
        report = make_report(citizen, visibility="private")
        with pytest.raises(PermissionDenied):
            ReportQueryService(db).get_for_actor(str(report.id), other_citizen)

    def test_public_lookup_requires_verified_public(self, db, citizen, make_report):
        verified = make_report(citizen, status="verified")
        pending = make_report(citizen)
        private = make_report(citizen, status="verified", visibility="private")

        service = ReportQueryService(db)
        assert service.find_public(verified.public_code).id == verified.id
        for report in (pending, private):
            with pytest.raises(ResourceNotFound):
                service.find_public(report.public_code)


# =============================================================================
# GEO SELECTION
# =============================================================================

class TestGeoSelection:
    def test_reports_within_radius(self, db, citizen, make_report):
        near = make_report(citizen, latitude=north_of(2)[0])
        make_report(citizen, latitude=north_of(30)[0])

        found = ReportQueryService(db).reports_within_radius(ORIGIN[0], ORIGIN[1], 10)
        assert [r.id for r in found] == [near.id]

    def test_reports_in_bounds(self, db, citizen, make_report):
        inside = make_report(citizen, latitude=34.0, longitude=-118.5)
        make_report(citizen, latitude=35.5, longitude=-118.5)

        found = ReportQueryService(db).reports_in_bounds(BoundingBox(33.5, -119.0, 34.5, -118.0))
        assert [r.id for r in found] == [inside.id]


# =============================================================================
# MAP
# =============================================================================

class TestMap:
    def test_pins_for_citizen_hide_names(self, db, citizen, other_citizen, make_report):
        report = make_report(other_citizen, status="verified", description="y" * 150)

        pins = ReportQueryService(db).map_reports(citizen)

        assert len(pins) == 1
        pin = pins[0]
        assert pin["id"] == report.id
        assert pin["submitted_by"] == "Community Member"
        assert pin["description"] == "y" * 100 + "..."
        assert pin["has_media"] is False
        assert pin["position"] == {"lat": report.latitude, "lng": report.longitude}

    def test_pins_for_verifier_show_names(self, db, citizen, verifier, make_report):
        make_report(citizen, status="verified")
        pins = ReportQueryService(db).map_reports(verifier)
        assert pins[0]["submitted_by"] == citizen.full_name

    def test_status_all_covers_verified_and_pending(self, db, citizen, verifier, make_report):
        make_report(citizen, status="verified")
        make_report(citizen, status="pending")
        make_report(citizen, status="rejected")

        service = ReportQueryService(db)
        assert len(service.map_reports(verifier, status="all")) == 2
        assert len(service.map_reports(verifier, status="pending")) == 1

    def test_clusters(self, db, citizen, make_report):
        make_report(citizen, latitude=34.01, longitude=-118.49, status="verified", severity="critical")
        make_report(citizen, latitude=34.04, longitude=-118.46, status="pending")
        make_report(citizen, latitude=34.02, longitude=-118.48, status="rejected")
        make_report(citizen, latitude=33.70, longitude=-118.20, status="verified")

        clusters = ReportQueryService(db).clusters(zoom=3, box=BoundingBox(33.0, -119.0, 35.0, -118.0))

        assert clusters[0] == {
            "position": {"lat": 34.0, "lng": -118.5},
            "count": 2,
            "critical_count": 1,
            "verified_count": 1,
            "severity": "critical",
        }
        assert clusters[1]["position"] == {"lat": 33.7, "lng": -118.2}
        assert clusters[1]["severity"] == "normal"

    def test_heatmap_weights_and_window(self, db, citizen, make_report):
        now = datetime.utcnow()
        make_report(citizen, status="verified", severity="critical")
        make_report(citizen, status="verified", severity="low")
        make_report(citizen, status="pending", severity="high")
        make_report(citizen, status="verified", severity="high", created_at=now - timedelta(days=40))

        points = ReportQueryService(db).heatmap(time_range_days=30, now=now)
        assert sorted(p["weight"] for p in points) == [1, 4]

    def test_region_statistics(self, db, citizen, make_report):
        make_report(citizen, status="verified", severity="critical", hazard_type="tsunami")
        make_report(citizen, status="pending", hazard_type="flood")
        make_report(citizen, status="pending", latitude=10.0, longitude=10.0)

        stats = ReportQueryService(db).region_statistics(lat=ORIGIN[0], lng=ORIGIN[1], radius=5)

        assert stats["overview"] == {"total": 2, "verified": 1, "pending": 1, "critical": 1}
        assert stats["hazard_distribution"] == {"tsunami": 1, "flood": 1}

    def test_region_statistics_requires_area(self, db):
        with pytest.raises(ValidationFailed):
            ReportQueryService(db).region_statistics()


# =============================================================================
# DASHBOARD
# =============================================================================

class TestDashboard:
    def test_citizen_dashboard(self, db, citizen, other_citizen, make_report):
        make_report(citizen, severity="critical")
        make_report(other_citizen, visibility="private", severity="critical")

        data = ReportQueryService(db).dashboard(citizen)

        assert data["total_submitted"] == 1
        assert len(data["user_reports"]) == 1
        assert len(data["critical_reports"]) == 1
        assert len(data["recent_reports"]) == 1
        assert "pending_reports" not in data

    def test_verifier_dashboard(self, db, citizen, verifier, make_report):
        make_report(citizen)
        make_report(citizen, status="verified", verified_by_id=verifier.id, verified_at=datetime.utcnow())

        data = ReportQueryService(db).dashboard(verifier)

        assert data["total_pending"] == 1
        assert data["total_verified"] == 1
        assert len(data["pending_reports"]) == 1
        assert "user_reports" not in data
        assert sum(row["count"] for row in data["statistics"]) == 2

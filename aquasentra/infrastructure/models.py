from sqlalchemy import Column, String, Float, DateTime, Boolean, ForeignKey, Integer, Text, Index, JSON, Uuid
from sqlalchemy.orm import relationship
from .database import Base
import uuid
from datetime import datetime


def default_preferences():
    return {
        "emailNotifications": True,
        "smsNotifications": False,
        "language": "en",
        "timezone": "UTC",
    }


class User(Base):
    __tablename__ = "users"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)  # always stored lower-cased
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default="citizen", nullable=False, index=True)  # citizen, verifier, analyst, admin
    status = Column(String(20), default="active", nullable=False, index=True)  # active, inactive, suspended, pending
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Profile fields
    phone_number = Column(String(20), nullable=True)
    organization_name = Column(String(100), nullable=True)
    expertise_area = Column(String(100), nullable=True)
    profile_image = Column(String(500), nullable=True)
    preferences = Column(JSON, default=default_preferences)

    # Verification & activity
    verification_level = Column(String(20), default="unverified", nullable=False)
    email_verified_at = Column(DateTime, nullable=True)
    last_active_at = Column(DateTime, nullable=True, index=True)

    # Relationships
    submitted_reports = relationship(
        "Report", back_populates="submitted_by", foreign_keys="Report.submitted_by_id"
    )
    verified_reports = relationship(
        "Report", back_populates="verified_by", foreign_keys="Report.verified_by_id"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Report(Base):
    __tablename__ = "reports"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    public_code = Column(String(20), nullable=False)  # assigned once at creation, never changes

    hazard_type = Column(String(40), nullable=False)
    severity = Column(String(20), nullable=False)
    urgency = Column(String(20), default="routine", nullable=False)
    description = Column(Text, nullable=False)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String(500), nullable=True)

    status = Column(String(20), default="pending", nullable=False)
    verification_level = Column(String(30), default="unverified", nullable=False)
    visibility = Column(String(20), default="public", nullable=False)

    submitted_by_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    verified_by_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    is_emergency = Column(Boolean, default=False, nullable=False)
    tags = Column(JSON, default=list)
    expires_at = Column(DateTime, nullable=True)

    # Observation details
    weather_conditions = Column(JSON, nullable=True)
    tide_level = Column(Float, nullable=True)
    wave_height = Column(Float, nullable=True)
    wind_speed = Column(Float, nullable=True)
    affected_area = Column(Float, nullable=True)
    estimated_damage = Column(String(20), nullable=True)  # none, minor, moderate, major, severe
    people_affected = Column(Integer, nullable=True)
    additional_data = Column(JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    submitted_by = relationship("User", back_populates="submitted_reports", foreign_keys=[submitted_by_id])
    verified_by = relationship("User", back_populates="verified_reports", foreign_keys=[verified_by_id])
    media = relationship(
        "ReportMedia",
        back_populates="report",
        cascade="all, delete-orphan",
        order_by="ReportMedia.uploaded_at",
    )

    __table_args__ = (
        Index("idx_reports_public_code", "public_code", unique=True),
        Index("idx_reports_submitted_by", "submitted_by_id"),
        Index("idx_reports_status", "status"),
        Index("idx_reports_severity", "severity"),
        Index("idx_reports_hazard_type", "hazard_type"),
        Index("idx_reports_urgency", "urgency"),
        Index("idx_reports_created_at", "created_at"),
        Index("idx_reports_is_emergency", "is_emergency"),
        Index("idx_reports_expires_at", "expires_at"),
        Index("idx_reports_lat_lng", "latitude", "longitude"),
    )

    @property
    def location(self) -> dict:
        return {"lat": self.latitude, "lng": self.longitude, "address": self.address}


class ReportMedia(Base):
    """File attached to a report; the bytes live in the upload directory."""
    __tablename__ = "report_media"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    report_id = Column(Uuid, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False, unique=True)
    original_name = Column(String(255), nullable=False)
    mimetype = Column(String(100), nullable=False)
    size = Column(Integer, nullable=False)
    thumbnail_filename = Column(String(255), nullable=True, index=True)
    uploaded_at = Column(DateTime, default=datetime.utcnow)

    report = relationship("Report", back_populates="media")

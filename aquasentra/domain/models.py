from pydantic import BaseModel, Field, ConfigDict, computed_field, field_validator
from typing import Optional, List
from datetime import datetime
from uuid import UUID
from enum import Enum

# ============================================================================
# ENUMERATIONS
# ============================================================================

class Role(str, Enum):
    CITIZEN = "citizen"
    VERIFIER = "verifier"
    ANALYST = "analyst"
    ADMIN = "admin"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING = "pending"


class UserVerificationLevel(str, Enum):
    UNVERIFIED = "unverified"
    EMAIL_VERIFIED = "email_verified"
    PHONE_VERIFIED = "phone_verified"
    FULLY_VERIFIED = "fully_verified"


class HazardType(str, Enum):
    FLOOD = "flood"
    HIGH_WAVES = "high-waves"
    COASTAL_EROSION = "coastal-erosion"
    STORM_SURGE = "storm-surge"
    TSUNAMI = "tsunami"
    OIL_SPILL = "oil-spill"
    MARINE_DEBRIS = "marine-debris"
    RED_TIDE = "red-tide"
    INFRASTRUCTURE_DAMAGE = "infrastructure-damage"
    OTHER = "other"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Urgency(str, Enum):
    ROUTINE = "routine"
    URGENT = "urgent"
    IMMEDIATE = "immediate"
    EMERGENCY = "emergency"


class ReportStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    VERIFIED = "verified"
    REJECTED = "rejected"
    RESOLVED = "resolved"
    DELETED = "deleted"


class ReportVerificationLevel(str, Enum):
    UNVERIFIED = "unverified"
    COMMUNITY_VERIFIED = "community_verified"
    EXPERT_VERIFIED = "expert_verified"
    OFFICIAL_VERIFIED = "official_verified"


class Visibility(str, Enum):
    PUBLIC = "public"
    RESTRICTED = "restricted"
    PRIVATE = "private"


class EstimatedDamage(str, Enum):
    NONE = "none"
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    SEVERE = "severe"


VERIFIER_ROLES = (Role.VERIFIER.value, Role.ANALYST.value, Role.ADMIN.value)
ANALYTICS_ROLES = (Role.ANALYST.value, Role.ADMIN.value)

EMAIL_PATTERN = r"^[\w\.\+-]+@[\w\.-]+\.\w+$"


# ============================================================================
# REQUEST DTOs (For API input validation)
# ============================================================================

class UserRegister(BaseModel):
    """Request DTO for email/password registration"""
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)
    phone_number: Optional[str] = Field(None, pattern=r"^\d{6,20}$")
    organization_name: Optional[str] = Field(None, max_length=100)
    expertise_area: Optional[str] = Field(None, max_length=100)

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class UserLogin(BaseModel):
    """Request DTO for email/password login"""
    email: str
    password: str = Field(..., min_length=1)


class ReportCreate(BaseModel):
    """Request DTO for submitting a hazard report"""
    hazard_type: HazardType
    severity: Severity
    urgency: Urgency = Urgency.ROUTINE
    description: str = Field(..., min_length=10, max_length=2000)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=500)
    visibility: Visibility = Visibility.PUBLIC
    tags: List[str] = Field(default_factory=list)

    # Observation details
    weather_conditions: Optional[dict] = None
    tide_level: Optional[float] = None
    wave_height: Optional[float] = None
    wind_speed: Optional[float] = None
    affected_area: Optional[float] = None
    estimated_damage: Optional[EstimatedDamage] = None
    people_affected: Optional[int] = Field(None, ge=0)
    additional_data: dict = Field(default_factory=dict)

    model_config = ConfigDict(str_strip_whitespace=True, use_enum_values=True)


class ReportUpdate(BaseModel):
    """
    Request DTO for PUT /reports/{id}.
    Non-status fields are edits; ``status`` is dispatched to the lifecycle service.
    """
    hazard_type: Optional[HazardType] = None
    severity: Optional[Severity] = None
    urgency: Optional[Urgency] = None
    description: Optional[str] = Field(None, min_length=10, max_length=2000)
    address: Optional[str] = Field(None, max_length=500)
    visibility: Optional[Visibility] = None
    tags: Optional[List[str]] = None
    weather_conditions: Optional[dict] = None
    tide_level: Optional[float] = None
    wave_height: Optional[float] = None
    wind_speed: Optional[float] = None
    affected_area: Optional[float] = None
    estimated_damage: Optional[EstimatedDamage] = None
    people_affected: Optional[int] = Field(None, ge=0)
    additional_data: Optional[dict] = None

    status: Optional[ReportStatus] = None
    rejection_reason: Optional[str] = Field(None, max_length=1000)

    model_config = ConfigDict(str_strip_whitespace=True, use_enum_values=True)

    @field_validator("hazard_type", "severity", "urgency", "description", "visibility", mode="before")
    @classmethod
    def reject_null(cls, v):
        # These columns are NOT NULL; omit the field to leave it unchanged
        if v is None:
            raise ValueError("may not be null")
        return v


class ReportVerifyRequest(BaseModel):
    verification_level: ReportVerificationLevel = ReportVerificationLevel.EXPERT_VERIFIED

    model_config = ConfigDict(use_enum_values=True)


class ReportRejectRequest(BaseModel):
    reason: str = Field(..., min_length=10, max_length=1000)

    model_config = ConfigDict(str_strip_whitespace=True)


class RoleUpdateRequest(BaseModel):
    """Request body for updating a user's role."""
    role: Role

    model_config = ConfigDict(use_enum_values=True)


class StatusUpdateRequest(BaseModel):
    """Request body for updating a user's account status."""
    status: AccountStatus
    reason: Optional[str] = Field(None, min_length=10, max_length=500)

    model_config = ConfigDict(str_strip_whitespace=True, use_enum_values=True)


# ============================================================================
# RESPONSE DTOs (For API output)
# ============================================================================

class UserSummary(BaseModel):
    """Minimal user representation embedded in report payloads"""
    id: UUID
    first_name: str
    last_name: str
    role: str
    organization_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class UserResponse(BaseModel):
    """Response DTO for user data (excludes the password hash)"""
    id: UUID
    first_name: str
    last_name: str
    email: str
    role: str
    status: str
    phone_number: Optional[str] = None
    organization_name: Optional[str] = None
    expertise_area: Optional[str] = None
    profile_image: Optional[str] = None
    verification_level: str
    preferences: Optional[dict] = None
    last_active_at: Optional[datetime] = None
    email_verified_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReportMediaResponse(BaseModel):
    filename: str
    original_name: str
    mimetype: str
    size: int
    thumbnail_filename: Optional[str] = None
    uploaded_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def url(self) -> str:
        return f"/api/reports/media/{self.filename}"

    @computed_field
    @property
    def thumbnail_url(self) -> Optional[str]:
        if self.thumbnail_filename:
            return f"/api/reports/media/{self.thumbnail_filename}"
        return None


class ReportResponse(BaseModel):
    """Response DTO for a hazard report"""
    id: UUID
    public_code: str
    hazard_type: str
    severity: str
    urgency: str
    description: str
    latitude: float
    longitude: float
    address: Optional[str] = None
    status: str
    verification_level: str
    visibility: str
    submitted_by_id: UUID
    verified_by_id: Optional[UUID] = None
    verified_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    is_emergency: bool
    tags: List[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None

    weather_conditions: Optional[dict] = None
    tide_level: Optional[float] = None
    wave_height: Optional[float] = None
    wind_speed: Optional[float] = None
    affected_area: Optional[float] = None
    estimated_damage: Optional[str] = None
    people_affected: Optional[int] = None
    additional_data: Optional[dict] = None

    media: List[ReportMediaResponse] = Field(default_factory=list)
    submitted_by: Optional[UserSummary] = None
    verified_by: Optional[UserSummary] = None

    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, v):
        return v or []


class PublicReportResponse(BaseModel):
    """Report as exposed to unauthenticated callers (no user identifiers)"""
    public_code: str
    hazard_type: str
    severity: str
    urgency: str
    description: str
    latitude: float
    longitude: float
    address: Optional[str] = None
    status: str
    verification_level: str
    is_emergency: bool
    tags: List[str] = Field(default_factory=list)
    verified_at: Optional[datetime] = None
    media: List[ReportMediaResponse] = Field(default_factory=list)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, v):
        return v or []

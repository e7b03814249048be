"""Pydantic schemas for API request/response validation.

Service-layer DTOs (``CertificateData``, ``IssueCertificateRequest``) use
snake_case. API schemas serialize to camelCase for the frontend.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# ============ Service-layer DTOs ============


class CertificateData(BaseModel):
    """Immutable view of a certificate record (service-layer return type)."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    certificate_id: str
    verification_code: str
    user_id: str
    course_id: str
    user_name: str
    course_title: str
    completion_date: datetime
    final_score: float
    grade: str
    document_url: str
    object_key: str
    is_revoked: bool = False
    revoked_at: datetime | None = None
    revocation_reason: str | None = None
    revoked_by: str | None = None
    issued_by: str
    issuer_title: str
    template_used: str
    document_format: str = "pdf"
    generated_by: str | None = None
    expiry_date: datetime | None = None
    created_at: datetime | None = None

    @field_validator(
        "completion_date", "revoked_at", "expiry_date", "created_at", mode="after"
    )
    @classmethod
    def ensure_utc(cls, v: datetime | None) -> datetime | None:
        """SQLite drops tzinfo; stored timestamps are always UTC."""
        if v is None:
            return v
        return v.astimezone(UTC) if v.tzinfo else v.replace(tzinfo=UTC)


class IssueCertificateRequest(BaseModel):
    """Input to the issuance workflow, sent by the course-completion caller.

    ``final_score`` is validated by the grade calculator, not here, so that
    an out-of-range score surfaces as InvalidScoreError.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    course_id: str
    user_name: str
    course_title: str
    final_score: float
    completion_date: datetime | None = None
    generated_by: str | None = None


# ============ Certificate API Schemas ============


class CamelModel(BaseModel):
    """Base for API schemas exchanged with the frontend in camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class CertificateRequest(CamelModel):
    """Request to generate a certificate for a completed course."""

    user_id: str = Field(min_length=1, max_length=64)
    course_id: str = Field(min_length=1, max_length=64)
    user_name: str = Field(min_length=2, max_length=100)
    course_title: str = Field(min_length=1, max_length=255)
    final_score: float
    completion_date: datetime | None = None

    @field_validator("user_name", "course_title")
    @classmethod
    def collapse_whitespace(cls, v: str) -> str:
        """Collapse runs of whitespace and strip the ends."""
        cleaned = " ".join(v.strip().split())
        if not cleaned:
            raise ValueError("Value must not be blank")
        return cleaned


class CertificateResponse(CamelModel):
    """Response containing certificate data."""

    certificate_id: str
    verification_code: str
    user_id: str
    course_id: str
    user_name: str
    course_title: str
    completion_date: datetime
    final_score: float
    grade: str
    document_url: str
    issued_by: str
    issuer_title: str
    template_used: str
    is_revoked: bool
    revoked_at: datetime | None = None
    revocation_reason: str | None = None
    expiry_date: datetime | None = None


class VerifiedCertificateResponse(CamelModel):
    """Public certificate details shown to third-party verifiers."""

    certificate_id: str
    user_name: str
    course_title: str
    completion_date: datetime
    grade: str
    final_score: float
    issued_by: str
    is_revoked: bool = False
    revoked_at: datetime | None = None
    expiry_date: datetime | None = None


class CertificateVerifyResponse(CamelModel):
    """Response for certificate verification."""

    is_valid: bool
    status: str
    certificate: VerifiedCertificateResponse | None = None
    message: str


class RevokeCertificateRequest(CamelModel):
    """Request body for revoking a certificate."""

    reason: str = Field(min_length=1, max_length=500)


class UserCertificatesResponse(CamelModel):
    """A user's most recent certificates plus their total count."""

    certificates: list[CertificateResponse]
    total: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str

"""SQLAlchemy models for Hire & Learn certificates."""

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
)
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from core.database import Base


def utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), default=utcnow)

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Certificate(TimestampMixin, Base):
    """A course completion certificate.

    Immutable after insert except for the revocation columns. User and course
    live in other services; ``user_name`` and ``course_title`` are snapshots
    taken at issuance so the certificate survives later renames.
    """

    __tablename__ = "certificates"
    __table_args__ = (
        UniqueConstraint("certificate_id", name="uq_certificates_certificate_id"),
        UniqueConstraint(
            "verification_code", name="uq_certificates_verification_code"
        ),
        UniqueConstraint("user_id", "course_id", name="uq_user_course_certificate"),
        CheckConstraint(
            "final_score >= 0 AND final_score <= 100",
            name="ck_certificates_final_score_range",
        ),
        Index("ix_certificates_user_completion", "user_id", "completion_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    certificate_id: Mapped[str] = mapped_column(String(40), nullable=False)
    verification_code: Mapped[str] = mapped_column(String(32), nullable=False)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    course_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    course_title: Mapped[str] = mapped_column(String(255), nullable=False)

    completion_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    final_score: Mapped[float] = mapped_column(Float, nullable=False)
    grade: Mapped[str] = mapped_column(String(20), nullable=False)

    document_url: Mapped[str] = mapped_column(Text, nullable=False)
    object_key: Mapped[str] = mapped_column(String(255), nullable=False)

    is_revoked: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    revocation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Issuing-authority metadata
    issued_by: Mapped[str] = mapped_column(String(255), nullable=False)
    issuer_title: Mapped[str] = mapped_column(String(255), nullable=False)
    template_used: Mapped[str] = mapped_column(String(50), nullable=False)
    document_format: Mapped[str] = mapped_column(
        String(10), nullable=False, default="pdf"
    )
    generated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    expiry_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

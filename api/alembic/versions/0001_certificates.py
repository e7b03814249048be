"""certificates table

Revision ID: 0001_certificates
Revises:
Create Date: 2026-10-18

Course completion certificates. User and course records live in other
services and are referenced by opaque string IDs.
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_certificates"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "certificates",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("certificate_id", sa.String(40), nullable=False),
        sa.Column("verification_code", sa.String(32), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("course_id", sa.String(64), nullable=False),
        sa.Column("user_name", sa.String(255), nullable=False),
        sa.Column("course_title", sa.String(255), nullable=False),
        sa.Column("completion_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("final_score", sa.Float(), nullable=False),
        sa.Column("grade", sa.String(20), nullable=False),
        sa.Column("document_url", sa.Text(), nullable=False),
        sa.Column("object_key", sa.String(255), nullable=False),
        sa.Column(
            "is_revoked", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revocation_reason", sa.Text(), nullable=True),
        sa.Column("revoked_by", sa.String(64), nullable=True),
        sa.Column("issued_by", sa.String(255), nullable=False),
        sa.Column("issuer_title", sa.String(255), nullable=False),
        sa.Column("template_used", sa.String(50), nullable=False),
        sa.Column("document_format", sa.String(10), nullable=False),
        sa.Column("generated_by", sa.String(64), nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("certificate_id", name="uq_certificates_certificate_id"),
        sa.UniqueConstraint(
            "verification_code", name="uq_certificates_verification_code"
        ),
        sa.UniqueConstraint("user_id", "course_id", name="uq_user_course_certificate"),
        sa.CheckConstraint(
            "final_score >= 0 AND final_score <= 100",
            name="ck_certificates_final_score_range",
        ),
    )
    op.create_index(
        "ix_certificates_user_completion",
        "certificates",
        ["user_id", "completion_date"],
    )


def downgrade() -> None:
    op.drop_index("ix_certificates_user_completion", table_name="certificates")
    op.drop_table("certificates")

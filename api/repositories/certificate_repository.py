"""Repository for certificate operations."""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Certificate
from repositories.utils import log_slow_query


class DuplicateKeyError(Exception):
    """Raised when a certificate ID or verification code is already taken.

    Recoverable: the caller should regenerate identifiers and try again.
    """


class CertificateAlreadyExistsError(Exception):
    """Raised when the user already holds a certificate for the course."""

    def __init__(self, user_id: str, course_id: str):
        self.user_id = user_id
        self.course_id = course_id
        super().__init__(
            f"Certificate already issued for user {user_id} and course {course_id}"
        )


class CertificateNotFoundError(Exception):
    """Raised when no certificate matches the given certificate ID."""

    def __init__(self, certificate_id: str):
        self.certificate_id = certificate_id
        super().__init__(f"Certificate {certificate_id} not found")


class AlreadyRevokedError(Exception):
    """Raised when revoking a certificate that is already revoked."""

    def __init__(self, certificate_id: str):
        self.certificate_id = certificate_id
        super().__init__(f"Certificate {certificate_id} is already revoked")


class CertificateRepository:
    """Repository for certificate CRUD operations."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @log_slow_query("certificate.get_by_certificate_id")
    async def get_by_certificate_id(self, certificate_id: str) -> Certificate | None:
        result = await self.db.execute(
            select(Certificate).where(Certificate.certificate_id == certificate_id)
        )
        return result.scalar_one_or_none()

    @log_slow_query("certificate.get_by_verification_code")
    async def get_by_verification_code(
        self,
        verification_code: str,
    ) -> Certificate | None:
        """Get a certificate by its verification code (for public verification).

        Revoked certificates are returned too so callers can tell "revoked"
        apart from "never issued".
        """
        result = await self.db.execute(
            select(Certificate).where(
                Certificate.verification_code == verification_code
            )
        )
        return result.scalar_one_or_none()

    @log_slow_query("certificate.get_by_user")
    async def get_by_user(
        self,
        user_id: str,
        *,
        limit: int = 100,
    ) -> Sequence[Certificate]:
        """Get all certificates for a user, most recent completion first.

        Args:
            user_id: The user's ID
            limit: Maximum number of certificates to return (default 100)
        """
        result = await self.db.execute(
            select(Certificate)
            .where(Certificate.user_id == user_id)
            .order_by(Certificate.completion_date.desc(), Certificate.id.desc())
            .limit(limit)
        )
        return result.scalars().all()

    @log_slow_query("certificate.count_by_user")
    async def count_by_user(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(Certificate)
            .where(Certificate.user_id == user_id)
        )
        return result.scalar_one()

    @log_slow_query("certificate.get_by_user_and_course")
    async def get_by_user_and_course(
        self,
        user_id: str,
        course_id: str,
    ) -> Certificate | None:
        result = await self.db.execute(
            select(Certificate).where(
                Certificate.user_id == user_id,
                Certificate.course_id == course_id,
            )
        )
        return result.scalar_one_or_none()

    async def create(self, **fields: Any) -> Certificate:
        """Insert a new certificate.

        Calls flush() but does NOT commit; the caller is responsible for
        transaction management.

        Raises:
            CertificateAlreadyExistsError: The (user, course) pair already has
                a certificate.
            DuplicateKeyError: The certificate ID or verification code collided
                with an existing row.

        Notes:
            Rollback on IntegrityError to restore session to a valid state.
            The unique indexes are the only uniqueness check; nothing is
            read before the insert.
        """
        certificate = Certificate(**fields)
        self.db.add(certificate)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            existing = await self.get_by_user_and_course(
                fields["user_id"], fields["course_id"]
            )
            if existing is not None:
                raise CertificateAlreadyExistsError(
                    fields["user_id"], fields["course_id"]
                ) from e
            raise DuplicateKeyError(
                f"Identifier collision for certificate {fields['certificate_id']}"
            ) from e
        return certificate

    async def revoke(
        self,
        certificate_id: str,
        reason: str,
        *,
        revoked_by: str | None = None,
    ) -> Certificate:
        """Revoke a certificate with a single conditional UPDATE.

        The ``is_revoked = false`` predicate and the write happen in one
        statement, so of two concurrent revokes exactly one matches a row.
        Does NOT commit.

        Raises:
            AlreadyRevokedError: The certificate was already revoked; its
                revocation fields are left untouched.
            CertificateNotFoundError: No certificate has this ID.
        """
        result = await self.db.execute(
            update(Certificate)
            .where(
                Certificate.certificate_id == certificate_id,
                Certificate.is_revoked.is_(False),
            )
            .values(
                is_revoked=True,
                revoked_at=datetime.now(UTC),
                revocation_reason=reason,
                revoked_by=revoked_by,
            )
            .returning(Certificate)
            .execution_options(populate_existing=True)
        )
        certificate = result.scalar_one_or_none()
        if certificate is not None:
            return certificate

        if await self.get_by_certificate_id(certificate_id) is None:
            raise CertificateNotFoundError(certificate_id)
        raise AlreadyRevokedError(certificate_id)

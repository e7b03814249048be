"""Certificate business logic for Hire & Learn.

This module handles certificate business logic:
- Issuance: grade -> identifiers -> render -> upload -> persist
- Verification (not found / revoked / expired / valid)
- Lookup, listing and revocation

The issuance workflow is the only place that retries. Uploads are retried
with bounded exponential backoff; identifier collisions on insert loop back
to identifier generation. A record is only written once its document URL
has been confirmed by the uploader.

Routes should delegate all certificate business logic to this module.
"""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import Settings, get_settings
from core.logger import get_logger
from core.wide_event import set_wide_event_fields
from models import Certificate
from rendering.certificates import (
    CertificateDisplayData,
    RenderFailure,
    format_date,
    render_certificate_pdf,
)
from repositories.certificate_repository import (
    AlreadyRevokedError,
    CertificateAlreadyExistsError,
    CertificateNotFoundError,
    CertificateRepository,
    DuplicateKeyError,
)
from schemas import CertificateData, IssueCertificateRequest
from services.certificate_identifiers import (
    generate_identifiers,
    normalize_verification_code,
)
from services.grades import InvalidScoreError, compute_grade
from services.storage_service import (
    DocumentUploader,
    UploadFailure,
    certificate_object_key,
    get_uploader,
)

logger = get_logger(__name__)

__all__ = [
    "AlreadyRevokedError",
    "CertificateAlreadyExistsError",
    "CertificateNotFoundError",
    "CertificateVerificationResult",
    "InvalidScoreError",
    "IssuanceFailedError",
    "IssuanceStage",
    "VerificationStatus",
    "count_user_certificates",
    "get_certificate",
    "issue_certificate",
    "list_user_certificates",
    "revoke_certificate",
    "verify_certificate",
]


class IssuanceStage(StrEnum):
    STARTED = "started"
    GRADE_COMPUTED = "grade_computed"
    IDENTIFIERS_ASSIGNED = "identifiers_assigned"
    DOCUMENT_RENDERED = "document_rendered"
    DOCUMENT_UPLOADED = "document_uploaded"
    RECORD_PERSISTED = "record_persisted"
    DONE = "done"


class IssuanceFailedError(Exception):
    """Raised when issuance fails permanently.

    ``stage`` is the stage the workflow was trying to reach; ``cause`` is the
    last underlying error.
    """

    def __init__(self, stage: IssuanceStage, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Certificate issuance failed at {stage}: {cause}")


class VerificationStatus(StrEnum):
    VALID = "valid"
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    EXPIRED = "expired"


@dataclass(frozen=True)
class CertificateVerificationResult:
    """Outcome of a public verification lookup. Never an exception."""

    status: VerificationStatus
    certificate: CertificateData | None
    message: str

    @property
    def is_valid(self) -> bool:
        return self.status is VerificationStatus.VALID


def _to_certificate_data(certificate: Certificate) -> CertificateData:
    return CertificateData.model_validate(certificate)


def _as_utc(value: datetime) -> datetime:
    return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)


def _log_upload_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "certificate.upload.retry",
        attempt=retry_state.attempt_number,
        status_code=getattr(exc, "status_code", None),
        code=getattr(exc, "code", None),
        error=str(exc),
    )


async def _upload_once(
    uploader: DocumentUploader, data: bytes, object_key: str, timeout: float
) -> str:
    """One upload attempt, bounded by ``timeout``. A timeout is an UploadFailure."""
    try:
        async with asyncio.timeout(timeout):
            return await uploader.upload(data, object_key)
    except TimeoutError as e:
        raise UploadFailure(
            f"Upload of {object_key} exceeded {timeout:g}s", code="timeout"
        ) from e


async def _upload_with_retry(
    uploader: DocumentUploader,
    data: bytes,
    object_key: str,
    settings: Settings,
) -> str:
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(UploadFailure),
        stop=stop_after_attempt(settings.upload_max_attempts),
        wait=wait_exponential(
            multiplier=settings.upload_backoff_initial,
            max=settings.upload_backoff_max,
        ),
        before_sleep=_log_upload_retry,
        reraise=True,
    )
    return await retrying(
        _upload_once, uploader, data, object_key, settings.upload_timeout_seconds
    )


async def _discard_document(uploader: DocumentUploader, object_key: str) -> None:
    """Remove an uploaded document that will never be referenced.

    Best effort: a leftover object is harmless, so failure is only logged.
    """
    try:
        await uploader.delete(object_key)
    except UploadFailure as e:
        logger.warning(
            "certificate.document.orphaned", object_key=object_key, error=str(e)
        )


async def issue_certificate(
    db: AsyncSession,
    request: IssueCertificateRequest,
    *,
    uploader: DocumentUploader | None = None,
    settings: Settings | None = None,
) -> CertificateData:
    """Issue a certificate for a completed course.

    Stages: started -> grade_computed -> identifiers_assigned ->
    document_rendered -> document_uploaded -> record_persisted -> done.

    Calls flush() through the repository but does NOT commit.

    Raises:
        InvalidScoreError: Score is not a finite number in [0, 100].
        CertificateAlreadyExistsError: The user already has a certificate
            for this course.
        IssuanceFailedError: Rendering failed, uploads were exhausted, or
            identifier collisions were exhausted.
    """
    settings = settings or get_settings()
    uploader = uploader or get_uploader(settings)
    log = logger.bind(user_id=request.user_id, course_id=request.course_id)
    stage = IssuanceStage.STARTED
    log.info("certificate.issuance.stage", stage=stage)

    grade = compute_grade(request.final_score).value
    stage = IssuanceStage.GRADE_COMPUTED
    log.info("certificate.issuance.stage", stage=stage, grade=grade)

    repo = CertificateRepository(db)
    if await repo.get_by_user_and_course(request.user_id, request.course_id):
        raise CertificateAlreadyExistsError(request.user_id, request.course_id)

    issue_date = datetime.now(UTC)
    completion_date = _as_utc(request.completion_date or issue_date)
    expiry_date = None
    if settings.certificate_validity_days:
        expiry_date = completion_date + timedelta(
            days=settings.certificate_validity_days
        )

    last_error: Exception | None = None
    for attempt in range(1, settings.identifier_max_attempts + 1):
        identifiers = generate_identifiers()
        stage = IssuanceStage.IDENTIFIERS_ASSIGNED
        log = log.bind(certificate_id=identifiers.certificate_id)
        log.info("certificate.issuance.stage", stage=stage, attempt=attempt)

        if await repo.get_by_certificate_id(identifiers.certificate_id) is not None:
            last_error = DuplicateKeyError(
                f"Certificate ID {identifiers.certificate_id} is already taken"
            )
            log.warning("certificate.identifier.collision", attempt=attempt)
            continue

        display = CertificateDisplayData(
            platform_name=settings.platform_name,
            recipient_name=request.user_name,
            course_title=request.course_title,
            grade=grade,
            final_score=request.final_score,
            completion_date=completion_date,
            certificate_id=identifiers.certificate_id,
            verification_code=identifiers.verification_code,
            verify_url=settings.verify_base_url,
            issuer_name=settings.issuer_name,
            issuer_title=settings.issuer_title,
            issue_date=issue_date,
        )

        # CairoSVG is CPU-bound; keep it off the event loop
        loop = asyncio.get_running_loop()
        try:
            pdf = await loop.run_in_executor(None, render_certificate_pdf, display)
        except RenderFailure as e:
            log.error("certificate.issuance.failed", stage=stage, error=str(e))
            raise IssuanceFailedError(IssuanceStage.DOCUMENT_RENDERED, e) from e
        stage = IssuanceStage.DOCUMENT_RENDERED
        log.info("certificate.issuance.stage", stage=stage, size_bytes=len(pdf))

        object_key = certificate_object_key(
            identifiers.certificate_id, settings.object_store_folder
        )
        try:
            document_url = await _upload_with_retry(
                uploader, pdf, object_key, settings
            )
        except UploadFailure as e:
            log.error(
                "certificate.issuance.failed",
                stage=stage,
                status_code=e.status_code,
                code=e.code,
                error=str(e),
            )
            raise IssuanceFailedError(IssuanceStage.DOCUMENT_UPLOADED, e) from e
        stage = IssuanceStage.DOCUMENT_UPLOADED
        log.info("certificate.issuance.stage", stage=stage, object_key=object_key)

        try:
            certificate = await repo.create(
                certificate_id=identifiers.certificate_id,
                verification_code=identifiers.verification_code,
                user_id=request.user_id,
                course_id=request.course_id,
                user_name=request.user_name,
                course_title=request.course_title,
                completion_date=completion_date,
                final_score=request.final_score,
                grade=grade,
                document_url=document_url,
                object_key=object_key,
                issued_by=settings.issuer_name,
                issuer_title=settings.issuer_title,
                template_used=settings.certificate_template,
                document_format="pdf",
                generated_by=request.generated_by,
                expiry_date=expiry_date,
            )
        except DuplicateKeyError as e:
            last_error = e
            log.warning("certificate.identifier.collision", attempt=attempt)
            # The object key belongs to whichever row owns this certificate ID
            if await repo.get_by_certificate_id(identifiers.certificate_id) is None:
                await _discard_document(uploader, object_key)
            continue
        except CertificateAlreadyExistsError:
            # Lost a race with a concurrent issuance for the same course
            await _discard_document(uploader, object_key)
            raise
        except SQLAlchemyError as e:
            await _discard_document(uploader, object_key)
            log.error("certificate.issuance.failed", stage=stage, error=str(e))
            raise IssuanceFailedError(IssuanceStage.RECORD_PERSISTED, e) from e

        stage = IssuanceStage.RECORD_PERSISTED
        log.info("certificate.issuance.stage", stage=stage)

        data = _to_certificate_data(certificate)
        stage = IssuanceStage.DONE
        log.info(
            "certificate.issued",
            stage=stage,
            grade=grade,
            final_score=request.final_score,
            attempts=attempt,
        )
        set_wide_event_fields(
            certificate_id=data.certificate_id, certificate_grade=data.grade
        )
        return data

    assert last_error is not None
    log.error(
        "certificate.issuance.failed",
        stage=stage,
        error=str(last_error),
        attempts=settings.identifier_max_attempts,
    )
    raise IssuanceFailedError(IssuanceStage.RECORD_PERSISTED, last_error)


async def verify_certificate(
    db: AsyncSession,
    verification_code: str,
) -> CertificateVerificationResult:
    """Verify a certificate by its public verification code.

    Revoked and expired certificates are reported with their data attached,
    distinctly from codes that were never issued.
    """
    code = normalize_verification_code(verification_code)
    cert_repo = CertificateRepository(db)
    cert = await cert_repo.get_by_verification_code(code) if code else None

    if cert is None:
        return CertificateVerificationResult(
            status=VerificationStatus.NOT_FOUND,
            certificate=None,
            message="Certificate not found. Please check the verification code.",
        )

    certificate = _to_certificate_data(cert)

    if certificate.is_revoked:
        message = "This certificate has been revoked"
        if certificate.revoked_at:
            message += f" as of {format_date(certificate.revoked_at)}"
        if certificate.revocation_reason:
            message += f": {certificate.revocation_reason}"
        return CertificateVerificationResult(
            status=VerificationStatus.REVOKED,
            certificate=certificate,
            message=message,
        )

    if certificate.expiry_date and certificate.expiry_date <= datetime.now(UTC):
        return CertificateVerificationResult(
            status=VerificationStatus.EXPIRED,
            certificate=certificate,
            message=(
                f"This certificate expired on {format_date(certificate.expiry_date)}"
            ),
        )

    return CertificateVerificationResult(
        status=VerificationStatus.VALID,
        certificate=certificate,
        message=(
            f"Valid certificate for {certificate.course_title} issued to "
            f"{certificate.user_name} on {format_date(certificate.completion_date)}"
        ),
    )


async def get_certificate(
    db: AsyncSession,
    certificate_id: str,
) -> CertificateData | None:
    cert_repo = CertificateRepository(db)
    cert = await cert_repo.get_by_certificate_id(certificate_id)
    return _to_certificate_data(cert) if cert else None


async def list_user_certificates(
    db: AsyncSession,
    user_id: str,
) -> list[CertificateData]:
    """Certificates for a user, most recent completion first.

    At most ``CertificateRepository.get_by_user``'s limit are returned; use
    count_user_certificates() for the full total.
    """
    cert_repo = CertificateRepository(db)
    certificates = await cert_repo.get_by_user(user_id)
    return [_to_certificate_data(c) for c in certificates]


async def count_user_certificates(db: AsyncSession, user_id: str) -> int:
    """Total certificates held by a user, ignoring the listing cap."""
    return await CertificateRepository(db).count_by_user(user_id)


async def revoke_certificate(
    db: AsyncSession,
    certificate_id: str,
    reason: str,
    *,
    revoked_by: str | None = None,
) -> CertificateData:
    """Revoke a certificate. Does NOT commit.

    Raises:
        AlreadyRevokedError: Certificate was already revoked.
        CertificateNotFoundError: No certificate has this ID.
    """
    cert_repo = CertificateRepository(db)
    cert = await cert_repo.revoke(certificate_id, reason, revoked_by=revoked_by)
    logger.info(
        "certificate.revoked",
        certificate_id=certificate_id,
        revoked_by=revoked_by,
        reason=reason,
    )
    return _to_certificate_data(cert)

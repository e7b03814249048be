"""Certificate issuance, verification and revocation endpoints.

Route ordering note: Literal path segments (/user/, /verify/) are defined
before parameterized segments (/{certificate_id}) to prevent routing conflicts.
"""

from fastapi import APIRouter, HTTPException, Path, Request
from fastapi.responses import RedirectResponse

from core.auth import AdminUser, CurrentUser
from core.database import DbSession
from core.ratelimit import ISSUE_LIMIT, VERIFY_LIMIT, limiter
from schemas import (
    CertificateData,
    CertificateRequest,
    CertificateResponse,
    CertificateVerifyResponse,
    IssueCertificateRequest,
    RevokeCertificateRequest,
    UserCertificatesResponse,
    VerifiedCertificateResponse,
)
from services.certificates_service import (
    AlreadyRevokedError,
    CertificateAlreadyExistsError,
    CertificateNotFoundError,
    InvalidScoreError,
    IssuanceFailedError,
    IssuanceStage,
    count_user_certificates,
    get_certificate,
    issue_certificate,
    list_user_certificates,
    revoke_certificate,
    verify_certificate,
)

router = APIRouter(prefix="/api/certificates", tags=["certificates"])


def _to_response(certificate: CertificateData) -> CertificateResponse:
    return CertificateResponse.model_validate(certificate.model_dump())


# --- Collection endpoints ---


@router.post(
    "",
    response_model=CertificateResponse,
    status_code=201,
    responses={
        403: {"description": "Cannot issue certificates for another user"},
        409: {"description": "Certificate already exists"},
        422: {"description": "Invalid final score"},
        502: {"description": "Object store unavailable"},
    },
)
@limiter.limit(ISSUE_LIMIT)
async def issue_certificate_endpoint(
    request: Request,
    body: CertificateRequest,
    user: CurrentUser,
    db: DbSession,
) -> CertificateResponse:
    """Issue a completion certificate for a finished course."""
    if body.user_id != user.id and not user.is_admin:
        raise HTTPException(
            status_code=403,
            detail="Cannot issue certificates for another user",
        )

    try:
        certificate = await issue_certificate(
            db,
            IssueCertificateRequest(
                user_id=body.user_id,
                course_id=body.course_id,
                user_name=body.user_name,
                course_title=body.course_title,
                final_score=body.final_score,
                completion_date=body.completion_date,
                generated_by=user.id,
            ),
        )
    except InvalidScoreError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except CertificateAlreadyExistsError as e:
        raise HTTPException(
            status_code=409,
            detail="Certificate already issued for this course.",
        ) from e
    except IssuanceFailedError as e:
        if e.stage == IssuanceStage.DOCUMENT_UPLOADED:
            raise HTTPException(
                status_code=502,
                detail="Certificate storage is unavailable. Please try again later.",
            ) from e
        raise HTTPException(
            status_code=500,
            detail="Certificate could not be generated.",
        ) from e

    return _to_response(certificate)


# --- Literal path routes (before parameterized) ---


@router.get(
    "/user/{user_id}",
    response_model=UserCertificatesResponse,
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Not allowed to view this user's certificates"},
    },
)
async def get_user_certificates_endpoint(
    user_id: str,
    user: CurrentUser,
    db: DbSession,
) -> UserCertificatesResponse:
    """Get a user's certificates, most recent completion first.

    The list is capped; ``total`` is the user's full certificate count.
    """
    if user_id != user.id and not user.is_admin:
        raise HTTPException(
            status_code=403,
            detail="Not allowed to view this user's certificates",
        )

    certificates = await list_user_certificates(db, user_id)
    return UserCertificatesResponse(
        certificates=[_to_response(c) for c in certificates],
        total=await count_user_certificates(db, user_id),
    )


@router.get(
    "/verify/{verification_code}",
    response_model=CertificateVerifyResponse,
    responses={422: {"description": "Validation error - code too long"}},
)
@limiter.limit(VERIFY_LIMIT)
async def verify_certificate_endpoint(
    request: Request,
    db: DbSession,
    verification_code: str = Path(min_length=1, max_length=64),
) -> CertificateVerifyResponse:
    """Verify a certificate by its verification code (public endpoint).

    Always 200; ``status`` distinguishes not_found, revoked, expired and valid.
    """
    result = await verify_certificate(db, verification_code)

    verified = None
    if result.certificate is not None:
        verified = VerifiedCertificateResponse.model_validate(
            result.certificate.model_dump()
        )

    return CertificateVerifyResponse(
        is_valid=result.is_valid,
        status=result.status.value,
        certificate=verified,
        message=result.message,
    )


# --- Parameterized routes ---


@router.get(
    "/{certificate_id}",
    response_model=CertificateResponse,
    responses={404: {"description": "Certificate not found"}},
)
async def get_certificate_endpoint(
    certificate_id: str,
    db: DbSession,
) -> CertificateResponse:
    """Get a certificate by its certificate ID (public endpoint)."""
    certificate = await get_certificate(db, certificate_id)
    if certificate is None:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return _to_response(certificate)


@router.get(
    "/{certificate_id}/pdf",
    status_code=307,
    responses={
        307: {"description": "Redirect to the stored PDF"},
        404: {"description": "Certificate not found"},
    },
)
async def get_certificate_pdf_endpoint(
    certificate_id: str,
    db: DbSession,
) -> RedirectResponse:
    """Redirect to the certificate's stored PDF document."""
    certificate = await get_certificate(db, certificate_id)
    if certificate is None:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return RedirectResponse(certificate.document_url, status_code=307)


@router.put(
    "/{certificate_id}/revoke",
    response_model=CertificateResponse,
    responses={
        403: {"description": "Admin access required"},
        404: {"description": "Certificate not found"},
        409: {"description": "Certificate already revoked"},
    },
)
async def revoke_certificate_endpoint(
    certificate_id: str,
    body: RevokeCertificateRequest,
    admin: AdminUser,
    db: DbSession,
) -> CertificateResponse:
    """Revoke a certificate (admin only)."""
    try:
        certificate = await revoke_certificate(
            db, certificate_id, body.reason, revoked_by=admin.id
        )
    except CertificateNotFoundError as e:
        raise HTTPException(status_code=404, detail="Certificate not found") from e
    except AlreadyRevokedError as e:
        raise HTTPException(
            status_code=409, detail="Certificate is already revoked"
        ) from e

    return _to_response(certificate)

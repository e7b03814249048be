"""Tests for certificates routes."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

# Mark all tests in this module as integration tests (database required)
pytestmark = pytest.mark.integration

from models import Certificate
from repositories.certificate_repository import CertificateRepository
from tests.factories import CertificateFactory, create_async
from tests.fakes import FAKE_STORE_URL, InMemoryUploader

TEST_USER_ID = "user_test_123456789"


def _payload(**overrides) -> dict:
    payload = {
        "userId": TEST_USER_ID,
        "courseId": "algo-101",
        "userName": "Ada Lovelace",
        "courseTitle": "Intro to Algorithms",
        "finalScore": 95,
        "completionDate": "2026-03-14T12:00:00Z",
    }
    payload.update(overrides)
    return payload


async def _seed_certificate(app: FastAPI, **kwargs) -> Certificate:
    async with app.state.session_maker() as session:
        cert = await create_async(CertificateFactory, session, **kwargs)
        await session.commit()
    return cert


class TestIssueCertificate:
    """Tests for POST /api/certificates endpoint."""

    async def test_issues_certificate(
        self, authenticated_client: AsyncClient, fake_uploader: InMemoryUploader
    ):
        response = await authenticated_client.post(
            "/api/certificates", json=_payload()
        )

        assert response.status_code == 201
        data = response.json()
        assert data["grade"] == "Distinction"
        assert data["finalScore"] == 95
        assert data["userName"] == "Ada Lovelace"
        assert data["courseTitle"] == "Intro to Algorithms"
        assert data["certificateId"].startswith("CERT-")
        assert len(data["verificationCode"]) == 16
        assert data["documentUrl"].startswith(FAKE_STORE_URL)
        assert data["isRevoked"] is False
        assert len(fake_uploader.objects) == 1

    async def test_requires_authentication(self, client: AsyncClient):
        response = await client.post("/api/certificates", json=_payload())

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_rejects_invalid_token(self, app: FastAPI):
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            headers={"Authorization": "Bearer not-a-jwt"},
        ) as ac:
            response = await ac.post("/api/certificates", json=_payload())

        assert response.status_code == 401

    async def test_cannot_issue_for_another_user(
        self, authenticated_client: AsyncClient, fake_uploader: InMemoryUploader
    ):
        response = await authenticated_client.post(
            "/api/certificates", json=_payload(userId="someone-else")
        )

        assert response.status_code == 403
        assert fake_uploader.upload_calls == []

    async def test_admin_can_issue_for_any_user(self, admin_client: AsyncClient):
        response = await admin_client.post(
            "/api/certificates", json=_payload(userId="someone-else")
        )

        assert response.status_code == 201
        assert response.json()["userId"] == "someone-else"

    @pytest.mark.parametrize("score", [-5, 100.01, 250])
    async def test_invalid_score_returns_422(
        self,
        authenticated_client: AsyncClient,
        fake_uploader: InMemoryUploader,
        score,
    ):
        response = await authenticated_client.post(
            "/api/certificates", json=_payload(finalScore=score)
        )

        assert response.status_code == 422
        assert "between 0 and 100" in response.json()["detail"]
        assert fake_uploader.upload_calls == []

    async def test_missing_fields_return_422(self, authenticated_client: AsyncClient):
        response = await authenticated_client.post(
            "/api/certificates", json={"userId": TEST_USER_ID}
        )

        assert response.status_code == 422

    async def test_returns_409_when_already_exists(
        self, authenticated_client: AsyncClient
    ):
        first = await authenticated_client.post("/api/certificates", json=_payload())
        second = await authenticated_client.post("/api/certificates", json=_payload())

        assert first.status_code == 201
        assert second.status_code == 409

    async def test_returns_502_when_storage_unavailable(
        self, authenticated_client: AsyncClient, fake_uploader: InMemoryUploader
    ):
        fake_uploader.failures = 100

        response = await authenticated_client.post(
            "/api/certificates", json=_payload()
        )

        assert response.status_code == 502

        # Nothing was persisted, so a later attempt can succeed
        fake_uploader.failures = 0
        retry = await authenticated_client.post("/api/certificates", json=_payload())
        assert retry.status_code == 201

    async def test_returns_500_when_rendering_fails(
        self, authenticated_client: AsyncClient, fake_uploader: InMemoryUploader
    ):
        with patch(
            "rendering.certificates.svg_to_pdf",
            side_effect=RuntimeError("PDF generation requires the Cairo library."),
        ):
            response = await authenticated_client.post(
                "/api/certificates", json=_payload()
            )

        assert response.status_code == 500
        assert response.json()["detail"] == "Certificate could not be generated."
        assert fake_uploader.upload_calls == []

    async def test_returns_500_when_record_cannot_be_saved(
        self, authenticated_client: AsyncClient, fake_uploader: InMemoryUploader
    ):
        failure = OperationalError(
            "INSERT INTO certificates", {}, Exception("database is locked")
        )
        with patch.object(
            CertificateRepository, "create", AsyncMock(side_effect=failure)
        ):
            response = await authenticated_client.post(
                "/api/certificates", json=_payload()
            )

        assert response.status_code == 500
        assert fake_uploader.objects == {}

    async def test_offset_completion_date_returned_in_utc(
        self, authenticated_client: AsyncClient
    ):
        response = await authenticated_client.post(
            "/api/certificates",
            json=_payload(completionDate="2026-03-14T12:00:00+05:00"),
        )

        assert response.status_code == 201
        assert response.json()["completionDate"] == "2026-03-14T07:00:00Z"

    async def test_name_whitespace_is_collapsed(
        self, authenticated_client: AsyncClient
    ):
        response = await authenticated_client.post(
            "/api/certificates", json=_payload(userName="  Ada   Lovelace ")
        )

        assert response.status_code == 201
        assert response.json()["userName"] == "Ada Lovelace"


class TestGetUserCertificates:
    """Tests for GET /api/certificates/user/{user_id}."""

    async def test_lists_own_certificates(
        self, authenticated_client: AsyncClient, app: FastAPI
    ):
        await _seed_certificate(
            app,
            user_id=TEST_USER_ID,
            course_id="older",
            completion_date=datetime(2026, 1, 1, tzinfo=UTC),
        )
        await _seed_certificate(
            app,
            user_id=TEST_USER_ID,
            course_id="newer",
            completion_date=datetime(2026, 6, 1, tzinfo=UTC),
        )

        response = await authenticated_client.get(
            f"/api/certificates/user/{TEST_USER_ID}"
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [c["courseId"] for c in data["certificates"]] == ["newer", "older"]

    async def test_empty_list(self, authenticated_client: AsyncClient):
        response = await authenticated_client.get(
            f"/api/certificates/user/{TEST_USER_ID}"
        )

        assert response.status_code == 200
        assert response.json() == {"certificates": [], "total": 0}

    async def test_cannot_list_other_users(self, authenticated_client: AsyncClient):
        response = await authenticated_client.get("/api/certificates/user/other")

        assert response.status_code == 403

    async def test_admin_can_list_any_user(
        self, admin_client: AsyncClient, app: FastAPI
    ):
        await _seed_certificate(app, user_id="other")

        response = await admin_client.get("/api/certificates/user/other")

        assert response.status_code == 200
        assert response.json()["total"] == 1

    async def test_requires_authentication(self, client: AsyncClient):
        response = await client.get(f"/api/certificates/user/{TEST_USER_ID}")

        assert response.status_code == 401


class TestVerifyCertificate:
    """Tests for GET /api/certificates/verify/{code}."""

    async def test_valid_certificate(self, client: AsyncClient, app: FastAPI):
        cert = await _seed_certificate(
            app, user_name="Ada Lovelace", course_title="Intro to Algorithms"
        )

        response = await client.get(
            f"/api/certificates/verify/{cert.verification_code}"
        )

        assert response.status_code == 200
        data = response.json()
        assert data["isValid"] is True
        assert data["status"] == "valid"
        assert data["certificate"]["certificateId"] == cert.certificate_id
        assert data["certificate"]["userName"] == "Ada Lovelace"
        # Verifiers never see the user's internal id or the code itself
        assert "userId" not in data["certificate"]
        assert "verificationCode" not in data["certificate"]

    async def test_lowercase_code(self, client: AsyncClient, app: FastAPI):
        cert = await _seed_certificate(app)

        response = await client.get(
            f"/api/certificates/verify/{cert.verification_code.lower()}"
        )

        assert response.json()["isValid"] is True

    async def test_unknown_code(self, client: AsyncClient):
        response = await client.get("/api/certificates/verify/NEVERISSUED00000")

        assert response.status_code == 200
        data = response.json()
        assert data["isValid"] is False
        assert data["status"] == "not_found"
        assert data["certificate"] is None

    async def test_revoked_code(self, client: AsyncClient, app: FastAPI):
        cert = await _seed_certificate(
            app,
            is_revoked=True,
            revoked_at=datetime(2026, 4, 1, tzinfo=UTC),
            revocation_reason="Academic misconduct",
        )

        response = await client.get(
            f"/api/certificates/verify/{cert.verification_code}"
        )

        data = response.json()
        assert data["isValid"] is False
        assert data["status"] == "revoked"
        assert data["certificate"]["isRevoked"] is True
        assert "Academic misconduct" in data["message"]

    async def test_expired_code(self, client: AsyncClient, app: FastAPI):
        cert = await _seed_certificate(
            app, expiry_date=datetime(2020, 1, 1, tzinfo=UTC)
        )

        response = await client.get(
            f"/api/certificates/verify/{cert.verification_code}"
        )

        data = response.json()
        assert data["isValid"] is False
        assert data["status"] == "expired"

    async def test_overlong_code_rejected(self, client: AsyncClient):
        response = await client.get(f"/api/certificates/verify/{'A' * 65}")

        assert response.status_code == 422


class TestGetCertificate:
    """Tests for GET /api/certificates/{certificate_id} and its PDF."""

    async def test_get_certificate(self, client: AsyncClient, app: FastAPI):
        cert = await _seed_certificate(app)

        response = await client.get(f"/api/certificates/{cert.certificate_id}")

        assert response.status_code == 200
        assert response.json()["verificationCode"] == cert.verification_code

    async def test_get_unknown_certificate(self, client: AsyncClient):
        response = await client.get("/api/certificates/CERT-NOPE-000000")

        assert response.status_code == 404

    async def test_pdf_redirects_to_document(self, client: AsyncClient, app: FastAPI):
        cert = await _seed_certificate(app)

        response = await client.get(f"/api/certificates/{cert.certificate_id}/pdf")

        assert response.status_code == 307
        assert response.headers["location"] == cert.document_url

    async def test_pdf_unknown_certificate(self, client: AsyncClient):
        response = await client.get("/api/certificates/CERT-NOPE-000000/pdf")

        assert response.status_code == 404


class TestRevokeCertificate:
    """Tests for PUT /api/certificates/{certificate_id}/revoke."""

    async def test_admin_revokes(self, admin_client: AsyncClient, app: FastAPI):
        cert = await _seed_certificate(app)

        response = await admin_client.put(
            f"/api/certificates/{cert.certificate_id}/revoke",
            json={"reason": "Issued in error"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["isRevoked"] is True
        assert data["revocationReason"] == "Issued in error"
        assert data["revokedAt"] is not None

    async def test_revoked_certificate_fails_verification(
        self, admin_client: AsyncClient, client: AsyncClient, app: FastAPI
    ):
        cert = await _seed_certificate(app)
        await admin_client.put(
            f"/api/certificates/{cert.certificate_id}/revoke",
            json={"reason": "Issued in error"},
        )

        response = await client.get(
            f"/api/certificates/verify/{cert.verification_code}"
        )

        assert response.json()["status"] == "revoked"

    async def test_second_revoke_conflicts(
        self, admin_client: AsyncClient, app: FastAPI
    ):
        cert = await _seed_certificate(app)
        url = f"/api/certificates/{cert.certificate_id}/revoke"

        first = await admin_client.put(url, json={"reason": "First"})
        second = await admin_client.put(url, json={"reason": "Second"})

        assert first.status_code == 200
        assert second.status_code == 409

        current = await admin_client.get(f"/api/certificates/{cert.certificate_id}")
        assert current.json()["revocationReason"] == "First"

    async def test_unknown_certificate(self, admin_client: AsyncClient):
        response = await admin_client.put(
            "/api/certificates/CERT-NOPE-000000/revoke", json={"reason": "Gone"}
        )

        assert response.status_code == 404

    async def test_non_admin_forbidden(
        self, authenticated_client: AsyncClient, app: FastAPI
    ):
        cert = await _seed_certificate(app, user_id=TEST_USER_ID)

        response = await authenticated_client.put(
            f"/api/certificates/{cert.certificate_id}/revoke",
            json={"reason": "Self-revoke"},
        )

        assert response.status_code == 403

    async def test_reason_required(self, admin_client: AsyncClient, app: FastAPI):
        cert = await _seed_certificate(app)

        response = await admin_client.put(
            f"/api/certificates/{cert.certificate_id}/revoke", json={"reason": ""}
        )

        assert response.status_code == 422


class TestIssueThenVerify:
    """End to end: issue over the API, then verify the returned code."""

    async def test_issue_then_verify(
        self, authenticated_client: AsyncClient, client: AsyncClient
    ):
        issued = await authenticated_client.post("/api/certificates", json=_payload())
        code = issued.json()["verificationCode"]

        response = await client.get(f"/api/certificates/verify/{code}")

        data = response.json()
        assert data["isValid"] is True
        assert data["certificate"]["grade"] == "Distinction"
        assert data["certificate"]["issuedBy"] == "Sarah Johnson"

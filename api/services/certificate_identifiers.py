"""Certificate identifier and verification code generation.

Uniqueness is not checked here; the certificates table's unique indexes are
the only arbiter, and the issuance flow regenerates on collision.
"""

import secrets
import string
import time
from typing import NamedTuple

CERTIFICATE_ID_PREFIX = "CERT"
CERTIFICATE_ID_SUFFIX_LENGTH = 6

# 36**16 ~ 2**82
VERIFICATION_CODE_LENGTH = 16

_BASE36_ALPHABET = string.digits + string.ascii_uppercase


class CertificateIdentifiers(NamedTuple):
    certificate_id: str
    verification_code: str


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def _random_base36(length: int) -> str:
    return "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(length))


def generate_certificate_id(now_ms: int | None = None) -> str:
    """Generate a human-traceable certificate ID.

    Format: CERT-{base36 millisecond timestamp}-{random}
    Sorting IDs of equal length gives rough issuance order.
    """
    timestamp_ms = now_ms if now_ms is not None else time.time_ns() // 1_000_000
    timestamp = _to_base36(timestamp_ms)
    suffix = _random_base36(CERTIFICATE_ID_SUFFIX_LENGTH)
    return f"{CERTIFICATE_ID_PREFIX}-{timestamp}-{suffix}"


def generate_verification_code() -> str:
    """Generate a public verification code (uppercase alphanumeric)."""
    return _random_base36(VERIFICATION_CODE_LENGTH)


def generate_identifiers() -> CertificateIdentifiers:
    return CertificateIdentifiers(
        certificate_id=generate_certificate_id(),
        verification_code=generate_verification_code(),
    )


def normalize_verification_code(code: str) -> str:
    """Codes are shared by hand; accept stray whitespace and lowercase."""
    return code.strip().upper()

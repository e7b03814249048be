"""Repository layer for database operations.

Repositories encapsulate all database queries, keeping services free of SQL.
Uniqueness rules live in the schema; repositories translate constraint
violations into domain exceptions.
"""

from repositories.certificate_repository import CertificateRepository
from repositories.utils import log_slow_query

__all__ = [
    "CertificateRepository",
    "log_slow_query",
]

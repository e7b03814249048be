#!/usr/bin/env python3
"""CLI for Hire & Learn certificate management tasks.

Usage:
    python -m cli <command>

Commands:
    migrate        Run database migrations (upgrade, downgrade, current)
    issue          Issue a certificate for a completed course
    verify         Verify a certificate by its verification code
    revoke         Revoke a certificate
    create-token   Mint a JWT for local testing
"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from core.logger import configure_logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _get_alembic_config():
    from alembic.config import Config

    # Make script_location absolute so it works from any working directory.
    api_dir = Path(__file__).resolve().parent
    cfg = Config(str(api_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(api_dir / "alembic"))
    return cfg


async def _with_session(fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Run ``fn`` in a session that commits on success."""
    from core.database import create_engine, create_session_maker, dispose_engine

    engine = create_engine()
    session_maker = create_session_maker(engine)
    try:
        async with session_maker() as session:
            result = await fn(session)
            await session.commit()
            return result
    finally:
        await dispose_engine(engine)


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def cmd_migrate(args: argparse.Namespace) -> int:
    """Run database migrations."""
    from alembic import command

    cfg = _get_alembic_config()
    match args.action:
        case "upgrade":
            logger.info("migrations.upgrade", extra={"target": args.target})
            command.upgrade(cfg, args.target or "head")
        case "downgrade":
            logger.info("migrations.downgrade", extra={"target": args.target})
            command.downgrade(cfg, args.target or "-1")
        case "current":
            command.current(cfg)
    return 0


def cmd_issue(args: argparse.Namespace) -> int:
    """Issue a certificate through the full issuance workflow."""
    from schemas import IssueCertificateRequest
    from services.certificates_service import (
        CertificateAlreadyExistsError,
        InvalidScoreError,
        IssuanceFailedError,
        issue_certificate,
    )

    request = IssueCertificateRequest(
        user_id=args.user_id,
        course_id=args.course_id,
        user_name=args.user_name,
        course_title=args.course_title,
        final_score=args.score,
        completion_date=args.completion_date,
        generated_by="cli",
    )

    try:
        certificate = asyncio.run(
            _with_session(lambda db: issue_certificate(db, request))
        )
    except (InvalidScoreError, CertificateAlreadyExistsError) as e:
        logger.error("certificate.issue.rejected", extra={"error": str(e)})
        return 1
    except IssuanceFailedError as e:
        logger.error(
            "certificate.issue.failed",
            extra={"stage": str(e.stage), "error": str(e.cause)},
        )
        return 2

    _print_json(certificate.model_dump(mode="json"))
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    """Verify a certificate. Exit code 0 only for a valid certificate."""
    from services.certificates_service import verify_certificate

    result = asyncio.run(_with_session(lambda db: verify_certificate(db, args.code)))
    _print_json(
        {
            "is_valid": result.is_valid,
            "status": str(result.status),
            "message": result.message,
            "certificate": (
                result.certificate.model_dump(mode="json")
                if result.certificate
                else None
            ),
        }
    )
    return 0 if result.is_valid else 1


def cmd_revoke(args: argparse.Namespace) -> int:
    """Revoke a certificate."""
    from services.certificates_service import (
        AlreadyRevokedError,
        CertificateNotFoundError,
        revoke_certificate,
    )

    try:
        certificate = asyncio.run(
            _with_session(
                lambda db: revoke_certificate(
                    db, args.certificate_id, args.reason, revoked_by=args.revoked_by
                )
            )
        )
    except (AlreadyRevokedError, CertificateNotFoundError) as e:
        logger.error("certificate.revoke.rejected", extra={"error": str(e)})
        return 1

    _print_json(certificate.model_dump(mode="json"))
    return 0


def cmd_create_token(args: argparse.Namespace) -> int:
    """Print a signed access token."""
    from core.auth import create_access_token

    print(create_access_token(args.user_id, role=args.role))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Hire & Learn certificates CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    migrate = subparsers.add_parser("migrate", help="Run database migrations")
    migrate.add_argument(
        "action",
        nargs="?",
        default="upgrade",
        choices=["upgrade", "downgrade", "current"],
    )
    migrate.add_argument(
        "target",
        nargs="?",
        help="Target revision (default: head for upgrade, -1 for downgrade)",
    )

    issue = subparsers.add_parser("issue", help="Issue a certificate")
    issue.add_argument("--user-id", required=True)
    issue.add_argument("--course-id", required=True)
    issue.add_argument("--user-name", required=True)
    issue.add_argument("--course-title", required=True)
    issue.add_argument("--score", type=float, required=True)
    issue.add_argument(
        "--completion-date",
        type=datetime.fromisoformat,
        help="ISO 8601 timestamp (default: now)",
    )

    verify = subparsers.add_parser("verify", help="Verify a certificate")
    verify.add_argument("code", help="Verification code")

    revoke = subparsers.add_parser("revoke", help="Revoke a certificate")
    revoke.add_argument("certificate_id")
    revoke.add_argument("--reason", required=True)
    revoke.add_argument("--revoked-by", default="cli")

    token = subparsers.add_parser("create-token", help="Mint a JWT for testing")
    token.add_argument("user_id")
    token.add_argument(
        "--role", default="employee", choices=["admin", "employer", "employee"]
    )

    return parser


COMMANDS: dict[str, Callable[[argparse.Namespace], int]] = {
    "migrate": cmd_migrate,
    "issue": cmd_issue,
    "verify": cmd_verify,
    "revoke": cmd_revoke,
    "create-token": cmd_create_token,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    configure_logging()
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())

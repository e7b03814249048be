"""FastAPI application for the Hire & Learn certificates API.

Startup connects to the database, optionally applies migrations, and only
then reports ready on ``/ready``. Rendered PDFs are served from ``/uploads``
when the local storage backend is active.
"""

import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import fastapi
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded

from core.config import Settings, get_settings
from core.database import (
    create_engine,
    create_session_maker,
    dispose_engine,
    init_db,
)
from core.logger import configure_logging, get_logger
from core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from core.ratelimit import limiter, rate_limit_exceeded_handler
from core.storage_client import close_storage_client
from routes import certificates_router, health_router

configure_logging()
logger = get_logger(__name__)

API_DIR = Path(__file__).resolve().parent
DB_CONNECT_TIMEOUT_SECONDS = 60
MIGRATION_TIMEOUT_SECONDS = 120


async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    logger.exception(
        "unhandled.exception",
        exc_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please try again."},
    )


async def request_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    errors = exc.errors()
    logger.warning(
        "request.validation_error",
        path=request.url.path,
        method=request.method,
        fields=[".".join(str(part) for part in e["loc"]) for e in errors],
    )
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(errors)})


async def _migrate_database() -> None:
    """Apply pending migrations through ``python -m cli migrate``.

    The Alembic environment uses a synchronous psycopg2 engine, which must not
    share the server's event loop, so it runs in a child process.
    """
    proc = await asyncio.create_subprocess_exec(
        sys.executable,
        "-m",
        "cli",
        "migrate",
        "upgrade",
        cwd=API_DIR,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await proc.communicate()
    if proc.returncode != 0:
        detail = stderr.decode(errors="replace").strip()
        logger.error("migrations.failed", returncode=proc.returncode, stderr=detail)
        raise RuntimeError(f"Certificate schema migration failed:\n{detail}")
    logger.info("migrations.complete")


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    settings = get_settings()
    app.state.engine = create_engine(settings)
    app.state.session_maker = create_session_maker(app.state.engine)
    app.state.init_done = False
    app.state.init_error = None

    try:
        async with asyncio.timeout(DB_CONNECT_TIMEOUT_SECONDS):
            await init_db(app.state.engine)
        if settings.run_migrations_on_startup:
            async with asyncio.timeout(MIGRATION_TIMEOUT_SECONDS):
                await _migrate_database()
    except Exception as e:
        app.state.init_error = str(e) or type(e).__name__
        logger.exception("init.failed", error=app.state.init_error)
        raise

    app.state.init_done = True
    logger.info(
        "init.complete",
        storage_backend=settings.storage_backend,
        platform=settings.platform_name,
    )

    try:
        yield
    finally:
        await close_storage_client()
        await dispose_engine(app.state.engine)


def _mount_local_documents(app: fastapi.FastAPI, settings: Settings) -> None:
    """Serve PDFs written by the local storage backend."""
    documents_dir = Path(settings.local_storage_dir)
    documents_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=documents_dir), name="uploads")


def create_app(settings: Settings | None = None) -> fastapi.FastAPI:
    settings = settings or get_settings()
    show_docs = settings.enable_docs or settings.debug

    application = fastapi.FastAPI(
        title="Hire & Learn Certificates API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if show_docs else None,
        redoc_url="/redoc" if show_docs else None,
        openapi_url="/openapi.json" if show_docs else None,
    )

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    application.add_exception_handler(
        RequestValidationError, request_validation_handler
    )
    application.add_exception_handler(Exception, unhandled_exception_handler)

    application.add_middleware(SecurityHeadersMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=["X-Request-Duration-Ms", "X-Request-Id"],
        max_age=600,
    )
    # Added last so it wraps everything else
    application.add_middleware(RequestLoggingMiddleware)

    if settings.storage_backend == "local":
        _mount_local_documents(application, settings)

    application.include_router(health_router)
    application.include_router(certificates_router)
    return application


app = create_app()

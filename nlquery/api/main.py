"""FastAPI application for the nlquery API.

Provides the main application instance with routers and exception
handlers configured.
"""

import logging
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
# Ensure our application loggers are captured
logging.getLogger("nlquery").setLevel(logging.INFO)
from fastapi.responses import JSONResponse

from nlquery.api.routes import connections, conversations
from nlquery.db.connection import close_db, init_db
from nlquery.errors import (
    ConflictError,
    DomainError,
    NLQueryError,
    NotFoundError,
    PermissionDeniedError,
    UnsupportedEngineError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create state tables on startup, dispose the engine on shutdown."""
    global _startup_time

    _startup_time = _time.time()
    init_db()
    logger.info("nlquery API started")

    yield

    close_db()


app = FastAPI(
    title="nlquery API",
    description="Natural language questions over your databases",
    version="0.1.0",
    lifespan=lifespan,
)


def _status_for_nlquery_error(exc: NLQueryError) -> int:
    if isinstance(exc, UnsupportedEngineError):
        return 400
    return 502


def _status_for_domain_error(exc: DomainError) -> tuple[int, str]:
    if isinstance(exc, NotFoundError):
        return 404, "NOT_FOUND"
    if isinstance(exc, PermissionDeniedError):
        return 403, "FORBIDDEN"
    if isinstance(exc, ConflictError):
        return 409, "CONFLICT"
    if isinstance(exc, ValidationError):
        return 400, "VALIDATION_ERROR"
    return 400, "DOMAIN_ERROR"


@app.exception_handler(NLQueryError)
async def nlquery_error_handler(request: Request, exc: NLQueryError) -> JSONResponse:
    """Handle classified engine/generation errors with a consistent format.

    Native detail stays in the server log; the body carries only the
    registry's user-safe message.
    """
    logger.error("%s %s failed: [%s] %s", request.method, request.url.path, exc.code, exc.detail)
    return JSONResponse(
        status_code=_status_for_nlquery_error(exc),
        content={
            "error_code": exc.code,
            "message": exc.user_message,
            "remediation": exc.remediation,
            "details": None,
        },
    )


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Map typed domain errors to HTTP status codes."""
    status_code, error_code = _status_for_domain_error(exc)
    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": error_code,
            "message": str(exc),
            "remediation": "",
            "details": None,
        },
    )


app.include_router(connections.router, prefix="/api/v1")
app.include_router(conversations.router, prefix="/api/v1")


@app.get("/health")
def health_check() -> dict:
    """Liveness check with version and uptime."""
    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    try:
        version = _pkg_version("nlquery")
    except PackageNotFoundError:
        version = "unknown"
    return {
        "status": "healthy",
        "version": version,
        "uptime_seconds": uptime,
    }


def run() -> None:
    """Console entry point: serve the API with uvicorn using the loaded config."""
    import uvicorn

    from nlquery.api.dependencies import get_config

    server = get_config().server
    uvicorn.run("nlquery.api.main:app", host=server.host, port=server.port, log_level=server.log_level)

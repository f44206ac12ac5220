"""FastAPI application entry point."""
import traceback
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError

from metering import __version__
from metering.config import settings
from metering.database import dispose_store
from metering.exceptions import MeteringError
from metering.middleware.logging import LoggingMiddleware, setup_logging
from metering.middleware.metrics import MetricsMiddleware
from metering.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail, ErrorResponse

setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info("application_starting", env=settings.app_env, reset_timezone=settings.reset_timezone)
    yield
    logger.info("application_shutting_down")
    await dispose_store()


app = FastAPI(
    title="Swipe Metering Service",
    description="Per-identity usage metering, daily limits and subscription lifecycle",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)
app.add_middleware(LoggingMiddleware)

app.mount("/metrics", make_asgi_app())


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id")


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: list[ErrorDetail] | None = None,
    remediation: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        message=message,
        details=details,
        remediation=remediation,
        request_id=_request_id(request),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


@app.exception_handler(MeteringError)
async def metering_exception_handler(request: Request, exc: MeteringError) -> JSONResponse:
    """Render a domain error with the status and code it carries."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_error",
        error_type=type(exc).__name__,
        error_code=exc.error_code,
        status_code=exc.status_code,
        error_message=exc.message,
        **{k: v for k, v in exc.context.items() if isinstance(v, (str, int, float, bool))},
    )

    field = exc.context.get("field")
    value: Any = exc.context.get("value")
    return _error_response(
        request,
        exc.status_code,
        type(exc).__name__,
        exc.message,
        details=[ErrorDetail(code=exc.error_code, message=exc.message, field=field, value=value)],
        remediation=REMEDIATION_HINTS.get(exc.error_code),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request body and parameter validation errors with field-level details."""
    details = []
    for error in exc.errors():
        code = ErrorCode.MISSING_REQUIRED_FIELD if error["type"] == "missing" else ErrorCode.VALIDATION_ERROR
        input_value = error.get("input")
        details.append(
            ErrorDetail(
                code=code,
                message=error["msg"],
                field=".".join(str(loc) for loc in error["loc"]),
                value=input_value if isinstance(input_value, (str, int, float, bool)) else None,
            )
        )

    logger.warning("validation_error", error_count=len(details))
    return _error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "ValidationError",
        "Request validation failed",
        details=details,
        remediation="Check the API documentation for correct request format at /docs",
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Store errors surface as 503 so callers retry."""
    logger.error(
        "database_error",
        error_type=type(exc).__name__,
        error_message=str(exc),
    )

    # Don't expose internal database details in production
    message = "Database temporarily unavailable" if settings.app_env == "production" else str(exc)
    return _error_response(
        request,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "DatabaseError",
        "A database error occurred",
        details=[ErrorDetail(code=ErrorCode.DATABASE_ERROR, message=message)],
        remediation=REMEDIATION_HINTS.get(ErrorCode.DATABASE_ERROR),
        headers={"Retry-After": "30"},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unexpected errors return 500 with a safe message; the stack trace is logged."""
    logger.exception(
        "unhandled_exception",
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        stack_trace=traceback.format_exc(),
    )
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "InternalServerError",
        "An unexpected error occurred",
        details=[
            ErrorDetail(
                code=ErrorCode.INTERNAL_ERROR,
                message=str(exc) if settings.debug else "Internal server error",
            )
        ],
        remediation="Please contact support with the request ID",
    )


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "service": "Swipe Metering Service",
        "version": __version__,
        "status": "operational",
        "docs": "/docs",
    }


from metering.api.v1 import health, learning, saved_responses, subscriptions, swipes, usage, webhooks  # noqa: E402

app.include_router(health.router)
app.include_router(usage.router, prefix="/v1")
app.include_router(swipes.router, prefix="/v1")
app.include_router(subscriptions.router, prefix="/v1")
app.include_router(webhooks.router, prefix="/v1")
app.include_router(learning.router, prefix="/v1")
app.include_router(saved_responses.router, prefix="/v1")

"""
Main FastAPI application.

Payment intent API with:
- CORS configuration
- Typed error envelopes
- Request ID tracking
- Structured logging
- Prometheus metrics
- Periodic idempotency sweep
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from payment_intents import __version__
from payment_intents.config import Settings, get_settings
from payment_intents.core.errors import (
    ApiError,
    InvalidRequestError,
    MalformedRequestError,
    PaymentError,
    TooEarlyError,
)
from payment_intents.core.service import PaymentService
from payment_intents.monitoring.health import HealthCheck
from payment_intents.monitoring.logging import setup_logging
from payment_intents.workers.idempotency_sweeper import IdempotencySweeper

from .routes import monitoring_router, payment_intent_router, payment_router, refund_router

logger = structlog.get_logger(__name__)


def _error_response(exc: PaymentError) -> JSONResponse:
    headers = {}
    if isinstance(exc, TooEarlyError) and exc.details.get("retry_after") is not None:
        headers["Retry-After"] = str(exc.details["retry_after"])
    return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=headers)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
        logger.info(
            "payment_error",
            error_type=exc.error_type,
            code=exc.code,
            status_code=exc.status_code,
            path=request.url.path,
        )
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.info("malformed_request", path=request.url.path, errors=len(exc.errors()))
        return _error_response(
            MalformedRequestError("Request body is not valid JSON", code="malformed_body")
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        error = InvalidRequestError(
            str(exc.detail),
            code="endpoint_not_found" if exc.status_code == 404 else "http_error",
        )
        return JSONResponse(status_code=exc.status_code, content=error.to_response())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled exceptions.
        """
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return _error_response(ApiError("An unexpected error occurred. Please try again later."))


def create_app(
    settings: Optional[Settings] = None, service: Optional[PaymentService] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Optional settings (defaults to the cached instance)
        service: Optional pre-built service, mainly for tests

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    setup_logging(settings)

    service = service or PaymentService(settings=settings)
    sweeper = IdempotencySweeper(
        service.purge_expired_idempotency_records,
        interval_seconds=settings.idempotency_sweep_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        """
        Application lifespan manager.

        Starts the idempotency sweeper and drains processing runs on shutdown.
        """
        logger.info("application_startup", app_name=settings.app_name, env=settings.app_env)
        sweeper.start()

        yield

        logger.info("application_shutdown")
        await sweeper.stop()
        await service.shutdown()

    app = FastAPI(
        title="Payment Intents",
        description=(
            "Payment intent lifecycle API: idempotent creation and confirmation, "
            "concurrent processing stages and capped refunds."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.service = service
    app.state.sweeper = sweeper
    app.state.health_check = HealthCheck(service, sweeper)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Location", "Retry-After", "X-Request-ID"],
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """
        Add request ID to all requests for tracing.

        Also adds timing information and structured logging context.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        logger.info(
            "request_started",
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response

        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()

    _register_exception_handlers(app)

    app.include_router(payment_intent_router)
    app.include_router(payment_router)
    app.include_router(refund_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


def run() -> None:
    """Serve the API with uvicorn. State is in-process, so a single worker is used."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "payment_intents.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()

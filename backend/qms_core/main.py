import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from qms_core.api.health_router import router as health_router
from qms_core.api.integration_config_router import router as integration_config_router
from qms_core.core.config import get_settings
from qms_core.core.encryption.secret_codec import SecretCodec
from qms_core.core.errors import AppError, ErrorCodes, UnknownIntegrationKind
from qms_core.core.logging import configure_logging
from qms_core.middleware.correlation import CorrelationIdMiddleware
from qms_core.observability.otel import configure_otel
from qms_core.services.access_control import RolePolicy

settings = get_settings()
configure_logging("DEBUG" if settings.debug else settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Both are loaded exactly once; a bad key ring or role list must stop the process here.
    app.state.secret_codec = SecretCodec.from_settings(settings)
    app.state.role_policy = RolePolicy.from_settings(settings)
    logger.info(
        "startup.complete",
        extra={
            "environment": settings.environment,
            "active_key_id": app.state.secret_codec.active_key_id,
            "auth_mode": settings.auth_mode,
        },
    )
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
configure_otel(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID"],
    max_age=600,
)
app.add_middleware(CorrelationIdMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    trace_id = getattr(request.state, "correlation_id", None)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response(trace_id=trace_id))


@app.exception_handler(UnknownIntegrationKind)
async def unknown_kind_handler(request: Request, exc: UnknownIntegrationKind) -> JSONResponse:
    trace_id = getattr(request.state, "correlation_id", None)
    logger.error("integration.unknown_kind", extra={"kind": str(exc), "correlation_id": trace_id})
    error = AppError(code=ErrorCodes.INTERNAL_ERROR, message="Internal server error.", status_code=500)
    return JSONResponse(status_code=500, content=error.to_response(trace_id=trace_id))


app.include_router(integration_config_router)
app.include_router(health_router)

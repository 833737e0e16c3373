"""
FastAPI Application Factory
===========================

Entry point for the identity gateway: OIDC login against Microsoft Entra ID
with stateless, cookie-held sessions.

Routers:
    - /auth/*       : Login, callback, logout, session introspection
    - /health       : Health check endpoint

Environment Variables Required:
    - AZURE_TENANT_ID, AZURE_CLIENT_ID, AZURE_CLIENT_SECRET, AZURE_REDIRECT_URI
    - SESSION_JWT_SECRET: Secret for signing session JWTs
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn identity_gateway.app.main:create_app --factory --reload --port 8080

    Production:
        uvicorn identity_gateway.app.main:create_app --factory --host 0.0.0.0 --port 8080 --workers 4
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth.errors import AuthError, ConfigurationError
from .auth.flow import AuthFlow
from .auth.guard import AuthGuardMiddleware
from .auth.providers import AuthProvider
from .auth.routes import auth_router
from .config import AuthConfig, get_auth_config, get_settings, validate_configuration
from .models import ErrorResponse, HealthResponse

SERVICE_NAME = "identity-gateway"
SERVICE_VERSION = "1.0.0"


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log startup/shutdown and surface configuration warnings."""
    logger = logging.getLogger("identity_gateway.main")
    config: AuthConfig = app.state.auth_flow.config

    logger.info(
        "Starting identity gateway",
        extra={
            "provider": config.provider,
            "protected_paths": list(config.protected_paths),
        },
    )
    for warning in app.state.config_warnings:
        logger.warning(f"Configuration warning: {warning}")

    yield

    logger.info("Identity gateway shutdown complete")


def create_app(
    config: Optional[AuthConfig] = None,
    *,
    provider: Optional[AuthProvider] = None,
    allowed_origins: Optional[List[str]] = None,
    log_level: Optional[str] = None,
) -> FastAPI:
    """
    Application factory function.

    With no ``config`` the configuration is loaded from the environment
    and validated; a missing secret or identifier, or a configuration
    error reported by ``validate_configuration``, raises
    ``ConfigurationError`` here, before any request is served.

    Returns:
        FastAPI: Configured application instance
    """
    config_warnings: List[str] = []
    if config is None:
        settings = get_settings()
        config = get_auth_config()
        report = validate_configuration(settings)
        if not report["valid"]:
            raise ConfigurationError("; ".join(report["errors"]))
        config_warnings = report["warnings"]
        if allowed_origins is None:
            allowed_origins = settings.allowed_origins_list
        log_level = log_level or settings.LOG_LEVEL

    setup_logging(log_level or "INFO")

    app = FastAPI(
        title="Identity Gateway",
        description="OIDC login and stateless sessions backed by Microsoft Entra ID",
        version=SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    flow = AuthFlow(config, provider=provider)
    app.state.auth_flow = flow
    app.state.config_warnings = config_warnings

    if config.protected_paths:
        app.add_middleware(
            AuthGuardMiddleware,
            codec=flow.codec,
            protected_paths=config.protected_paths,
            login_path=config.login_path,
        )

    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(auth_router)

    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", service=SERVICE_NAME)

    @app.get("/", tags=["System"])
    async def root() -> Dict[str, object]:
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "endpoints": {
                "health": "/health",
                "docs": "/docs",
                "login": "/auth/login",
                "logout": "/auth/logout",
                "session": "/auth/session",
            },
        }

    @app.exception_handler(AuthError)
    async def auth_exception_handler(request: Request, exc: AuthError) -> JSONResponse:
        """Auth errors raised outside the flow (the flow renders its own)."""
        body = ErrorResponse(error=type(exc).__name__, message=str(exc))
        return JSONResponse(
            status_code=exc.status_code,
            content=body.model_dump(mode="json"),
            headers={"Cache-Control": "no-store"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger = logging.getLogger("identity_gateway.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )
        body = ErrorResponse(error="internal_server_error", message="An unexpected error occurred")
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))

    return app


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "identity_gateway.app.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level=settings.LOG_LEVEL.lower(),
    )

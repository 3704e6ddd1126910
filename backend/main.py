"""
FastAPI entry point for the CRM integrations service.

``create_app`` builds a fully configured app. Tests pass their own settings
and a container wired with fakes; production lets the startup hook build the
Supabase-backed container.

    uvicorn backend.main:app

    settings = Settings(environment="test", _env_file=None)
    test_app = create_app(settings=settings, container=build_container(settings))
"""

import logging
from typing import Optional

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.container import ServiceContainer, build_default_container
from backend.errors import CRMError, RateLimitExceeded
from backend.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the integrations API.

    Args:
        settings: Defaults to the cached environment settings.
        container: Prebuilt services. When omitted they are created on startup.
    """
    settings = settings or get_settings()

    _configure_logging(settings)
    _init_error_reporting(settings)

    app = FastAPI(
        title="Nexus CRM Integrations API",
        description="OAuth integrations, rate-limited provider calls and AI insights for the CRM",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    _register_error_handlers(app)
    _include_routers(app)
    _register_lifecycle(app, settings)

    return app


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _init_error_reporting(settings: Settings) -> None:
    if not settings.sentry_dsn:
        return
    release = settings.render_git_commit or "unknown"
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=release,
        traces_sample_rate=0.1,
        send_default_pii=False,
    )
    logger.info("Error reporting enabled for release %s", release)


def _register_error_handlers(app: FastAPI) -> None:
    """Render CRMError subclasses as ``{"detail", "code"}`` JSON."""

    @app.exception_handler(CRMError)
    async def crm_error_handler(request: Request, exc: CRMError):
        headers = {}
        if isinstance(exc, RateLimitExceeded) and exc.retry_after is not None:
            headers["Retry-After"] = str(max(1, round(exc.retry_after)))
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _include_routers(app: FastAPI) -> None:
    # Lazy: api.routers imports backend modules.
    from api.routers import (
        health_router,
        insights_router,
        integrations_router,
        messaging_router,
        rate_limits_router,
    )

    for router in (health_router, integrations_router, rate_limits_router, insights_router, messaging_router):
        app.include_router(router)


def _register_lifecycle(app: FastAPI, settings: Settings) -> None:
    """Build services on startup (unless injected) and close them on shutdown."""

    @app.on_event("startup")
    async def startup_event():
        if app.state.container is None:
            app.state.container = await build_default_container(settings)
        logger.info("Integrations API started (environment=%s)", settings.environment)

    @app.on_event("shutdown")
    async def shutdown_event():
        container = app.state.container
        if container is not None:
            await container.aclose()
        logger.info("Integrations API shutdown complete")


app = create_app()

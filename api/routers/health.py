"""
Liveness and readiness checks.

- GET /health: Process is up
- GET /health/ready: At least one OAuth provider has client credentials
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.deps import get_container
from backend.container import ServiceContainer

logger = logging.getLogger(__name__)

SERVICE_NAME = "crm-integrations"

router = APIRouter(
    tags=["Health"],
)


@router.get("/health")
def health():
    return {"status": "ok", "service": SERVICE_NAME}


@router.get("/health/ready")
async def health_ready(container: ServiceContainer = Depends(get_container)):
    """Report provider and AI configuration; 503 when no provider can connect."""
    providers = {
        provider.value: "configured" if config.is_configured else "not_configured"
        for provider, config in container.token_manager.providers.items()
    }
    checks = {
        "providers": providers,
        "insights": "configured" if container.insights.enabled else "not_configured",
    }
    if "configured" not in providers.values():
        logger.warning("Readiness check failed: no OAuth provider configured")
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "service": SERVICE_NAME, "checks": checks},
        )
    return {"status": "ready", "service": SERVICE_NAME, "checks": checks}

"""
Router package for the CRM integrations API.

This package contains all API routers organized by domain:
- health: Health check endpoints
- integrations: OAuth connections and provider operations
- rate_limits: Rate limiter status
- insights: AI deal insights and forecasts
- messaging: SMS, WhatsApp and calls via Twilio
"""

from api.routers.health import router as health_router
from api.routers.integrations import router as integrations_router
from api.routers.rate_limits import router as rate_limits_router
from api.routers.insights import router as insights_router
from api.routers.messaging import router as messaging_router

__all__ = [
    "health_router",
    "integrations_router",
    "rate_limits_router",
    "insights_router",
    "messaging_router",
]

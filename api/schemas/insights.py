"""Request and response bodies for the AI insights endpoints."""

from typing import List, Optional

from pydantic import BaseModel, Field

from application.models.crm import Activity, Contact, Deal, DealInsights


class DealInsightsRequest(BaseModel):
    deal: Deal
    activities: List[Activity] = Field(default_factory=list)
    contact: Optional[Contact] = None


class DealInsightsResponse(BaseModel):
    """``insights`` is null when the model is unavailable or failed."""
    available: bool
    insights: Optional[DealInsights] = None


class ForecastRequest(BaseModel):
    deals: List[Deal] = Field(default_factory=list)


class ForecastResponse(BaseModel):
    forecast: str

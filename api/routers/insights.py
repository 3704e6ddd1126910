"""
AI insights router.

- POST /insights/deals: Structured analysis of one deal
- POST /insights/forecast: Short pipeline forecast
"""

from fastapi import APIRouter, Depends

from api.deps import get_current_user, get_insights_service
from api.schemas.insights import (
    DealInsightsRequest,
    DealInsightsResponse,
    ForecastRequest,
    ForecastResponse,
)
from backend.services.insights_service import InsightsService

router = APIRouter(
    prefix="/insights",
    tags=["Insights"],
)


@router.post("/deals", response_model=DealInsightsResponse)
async def deal_insights(
    body: DealInsightsRequest,
    user_id: str = Depends(get_current_user),
    insights: InsightsService = Depends(get_insights_service),
):
    result = await insights.get_deal_insights(body.deal, body.activities, body.contact)
    return DealInsightsResponse(available=result is not None, insights=result)


@router.post("/forecast", response_model=ForecastResponse)
async def sales_forecast(
    body: ForecastRequest,
    user_id: str = Depends(get_current_user),
    insights: InsightsService = Depends(get_insights_service),
):
    return ForecastResponse(forecast=await insights.get_sales_forecast(body.deals))

"""AI deal insights and pipeline forecasts.

Calls go through the "ai" rate-limit category. Any failure degrades to a
fallback (None for insights, a canned sentence for forecasts); nothing is
retried here.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import anthropic

from application.models.crm import Activity, Contact, Deal, DealInsights
from backend.services.rate_limiter import RateLimiterRegistry, rate_limited

logger = logging.getLogger(__name__)

FORECAST_FALLBACK = "Unable to generate forecast at this time."

DEAL_INSIGHTS_TOOL: Dict[str, Any] = {
    "name": "record_deal_insights",
    "description": "Record the analysis of a sales deal.",
    "input_schema": {
        "type": "object",
        "properties": {
            "summary": {
                "type": "string",
                "description": "One paragraph summary of the deal status",
            },
            "riskLevel": {"type": "string", "enum": ["Low", "Medium", "High"]},
            "nextSteps": {
                "type": "array",
                "items": {"type": "string"},
                "maxItems": 3,
                "description": "Top 3 recommended actions",
            },
            "suggestedEmailDraft": {
                "type": "string",
                "description": "A personalized follow-up email draft",
            },
        },
        "required": ["summary", "riskLevel", "nextSteps", "suggestedEmailDraft"],
    },
}

INSIGHTS_SYSTEM_PROMPT = "You are an expert sales assistant. Analyze the deal and provide insights."
FORECAST_SYSTEM_PROMPT = (
    "You are a sales director. Provide a 2-sentence executive summary of the pipeline health."
)


def build_deal_prompt(deal: Deal, activities: List[Activity], contact: Optional[Contact]) -> str:
    activity_lines = ", ".join(
        f"{a.type.value}: {a.subject} ({a.due_date or 'no due date'})" for a in activities
    )
    contact_line = f"{contact.name} ({contact.company or 'no company'})" if contact else "unknown"
    return (
        f"Deal: {deal.id} - {deal.title}\n"
        f"Value: {deal.currency}{deal.value}\n"
        f"Stage: {deal.stage.value}\n"
        f"Contact: {contact_line}\n"
        f"Activities: {activity_lines or 'none'}"
    )


class InsightsService:
    def __init__(
        self,
        client: Optional[anthropic.AsyncAnthropic],
        rate_limiters: RateLimiterRegistry,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 1024,
    ):
        self._client = client
        self.rate_limiters = rate_limiters
        self._model = model
        self._max_tokens = max_tokens

    @property
    def enabled(self) -> bool:
        return self._client is not None

    @rate_limited("ai")
    async def get_deal_insights(
        self,
        deal: Deal,
        activities: List[Activity],
        contact: Optional[Contact] = None,
    ) -> Optional[DealInsights]:
        if self._client is None:
            logger.warning("Deal insights requested but no AI client is configured")
            return None

        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                system=INSIGHTS_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": build_deal_prompt(deal, activities, contact)}],
                tools=[DEAL_INSIGHTS_TOOL],
                tool_choice={"type": "tool", "name": DEAL_INSIGHTS_TOOL["name"]},
            )
            payload = _tool_input(response)
            if payload is None:
                logger.warning("Deal insights response for %s had no structured output", deal.id)
                return None
            return DealInsights(
                summary=payload["summary"],
                risk_level=payload["riskLevel"],
                next_steps=list(payload.get("nextSteps", []))[:3],
                suggested_email_draft=payload["suggestedEmailDraft"],
            )
        except Exception as e:
            logger.error("Deal insights failed for %s: %s", deal.id, e)
            return None

    @rate_limited("ai")
    async def get_sales_forecast(self, deals: List[Deal]) -> str:
        if self._client is None:
            return FORECAST_FALLBACK

        summary = json.dumps([d.model_dump(mode="json") for d in deals])
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                system=FORECAST_SYSTEM_PROMPT,
                messages=[
                    {
                        "role": "user",
                        "content": f"Analyze these deals and provide a brief forecast summary: {summary}",
                    }
                ],
            )
            text = "".join(
                block.text for block in response.content if getattr(block, "type", None) == "text"
            ).strip()
            return text or FORECAST_FALLBACK
        except Exception as e:
            logger.error("Sales forecast failed: %s", e)
            return FORECAST_FALLBACK


def _tool_input(response: Any) -> Optional[Dict[str, Any]]:
    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", None) == "tool_use":
            return dict(block.input)
    return None

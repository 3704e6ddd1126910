"""
Rate limit status router.

- GET /rate-limits: Status of every category
- GET /rate-limits/{category}: Status of one category
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_current_user, get_rate_limiters
from backend.services.rate_limiter import RateLimiterRegistry

router = APIRouter(
    prefix="/rate-limits",
    tags=["Rate Limits"],
)


@router.get("")
def all_statuses(
    user_id: str = Depends(get_current_user),
    rate_limiters: RateLimiterRegistry = Depends(get_rate_limiters),
):
    return {category: asdict(status) for category, status in rate_limiters.status().items()}


@router.get("/{category}")
def category_status(
    category: str,
    user_id: str = Depends(get_current_user),
    rate_limiters: RateLimiterRegistry = Depends(get_rate_limiters),
):
    if category not in rate_limiters:
        raise HTTPException(status_code=404, detail=f"Unknown rate limit category: {category}")
    return {"category": category, **asdict(rate_limiters.get(category).get_status())}

"""Stage 1 market context and Stage 3 social post endpoints.

Both are best-effort: a failing data source produces an empty part of the
response, never an error status.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from core.ratelimit import check_rate_limit
from dependencies.gateway import Orchestrator
from schemas.recommendations import MarketContextResponse, SocialPost, SocialPostsRequest
from services.gateway.exceptions import AuxiliaryFetchFailure
from services.social_posts import fetch_social_posts, normalize_tickers


logger = logging.getLogger(__name__)

router = APIRouter(tags=["market"])


@router.post("/market-context", response_model=MarketContextResponse)
async def get_market_context(orchestrator: Orchestrator) -> MarketContextResponse:
    """Index quotes, sector performance and an AI summary, each optional."""
    context = await orchestrator.fetch_context() or {}
    return MarketContextResponse(
        indices=context.get("indices") or [],
        sectors=context.get("sectors") or [],
        summary=context.get("summary"),
    )


@router.post(
    "/x-posts",
    response_model=dict[str, list[SocialPost]],
    dependencies=[Depends(check_rate_limit)],
)
async def get_social_posts(payload: SocialPostsRequest) -> dict[str, list[SocialPost]]:
    """Recent posts per ticker; an empty mapping when the lookup fails."""
    tickers = normalize_tickers(payload.tickers)
    if not tickers:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one ticker is required",
        )

    try:
        return await fetch_social_posts(tickers)
    except AuxiliaryFetchFailure as exc:
        logger.warning("Returning no social posts: %s", exc.message)
        return {}

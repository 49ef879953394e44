"""Stage 3 enrichment: recent social posts about the recommended tickers."""

from __future__ import annotations

import logging
from typing import Any

from pydantic_ai import Agent

from schemas.recommendations import SocialPost, SocialPostsResult
from services.gateway.exceptions import AuxiliaryFetchFailure
from services.model_factory import get_text_model


logger = logging.getLogger(__name__)

MAX_TICKERS = 20

SOCIAL_POSTS_SYSTEM_PROMPT = """You have access to real-time X (Twitter) data.
For each stock ticker you are given, find 2-3 relevant, high-engagement posts
from the last 24 hours, from credible finance accounts where possible. Include
bullish, neutral and bearish perspectives when available; skip bare price
alerts.

For each post return: author handle without @, full post text, engagement
(likes plus reposts), relative timestamp such as "2h ago", and a sentiment of
Bullish, Neutral or Bearish.

Output JSON only: {"posts": {"TICKER": [ {...}, ... ]}}
"""

# Lazy-load the agent to avoid requiring API keys at import time
_posts_agent: Agent[None, SocialPostsResult] | None = None


def _get_posts_agent() -> Agent[None, SocialPostsResult]:
    global _posts_agent
    if _posts_agent is None:
        _posts_agent = Agent(
            get_text_model(),
            output_type=SocialPostsResult,
            system_prompt=SOCIAL_POSTS_SYSTEM_PROMPT,
        )
    return _posts_agent


def normalize_tickers(tickers: list[str]) -> list[str]:
    """Upper-case, strip and de-duplicate tickers, preserving order."""
    seen: set[str] = set()
    cleaned: list[str] = []
    for ticker in tickers:
        symbol = ticker.strip().upper()
        if symbol and symbol not in seen:
            seen.add(symbol)
            cleaned.append(symbol)
    return cleaned[:MAX_TICKERS]


async def fetch_social_posts(tickers: list[str]) -> dict[str, list[SocialPost]]:
    """Ask the posts agent about `tickers`.

    Raises:
        AuxiliaryFetchFailure: If the agent call fails for any reason.
    """
    symbols = normalize_tickers(tickers)
    if not symbols:
        return {}

    try:
        agent = _get_posts_agent()
        result = await agent.run(f"TICKERS: {', '.join(symbols)}")
    except Exception as exc:
        logger.warning("Social posts lookup for %d tickers failed: %s", len(symbols), exc)
        raise AuxiliaryFetchFailure(
            f"Social posts unavailable: {type(exc).__name__}", source="social_posts"
        ) from exc

    requested = set(symbols)
    posts = {
        ticker.upper(): items
        for ticker, items in result.output.posts.items()
        if ticker.upper() in requested
    }
    logger.info("Fetched social posts for %d of %d tickers", len(posts), len(symbols))
    return posts


async def social_posts_enrichment(tickers: list[str]) -> dict[str, Any]:
    """Enrichment hook for the pipeline: posts as JSON-ready camelCase dicts."""
    posts = await fetch_social_posts(tickers)
    return {
        ticker: [post.model_dump(by_alias=True) for post in items]
        for ticker, items in posts.items()
    }

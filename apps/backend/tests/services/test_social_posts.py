"""Tests for Stage 3 social post enrichment."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from pydantic_ai import Agent, models
from pydantic_ai.models.test import TestModel

from schemas.recommendations import SocialPostsResult
from services.gateway.exceptions import AuxiliaryFetchFailure
from services.social_posts import (
    MAX_TICKERS,
    fetch_social_posts,
    normalize_tickers,
    social_posts_enrichment,
)


models.ALLOW_MODEL_REQUESTS = False

POST = {
    "author": "bondwatcher",
    "content": "Duration is back in fashion.",
    "engagement": 42,
    "timestamp": "3h ago",
    "sentiment": "Bullish",
}


def _agent(posts: dict) -> Agent:
    return Agent(
        TestModel(custom_output_args={"posts": posts}),
        output_type=SocialPostsResult,
    )


class TestNormalizeTickers:
    def test_cleans_and_deduplicates(self) -> None:
        assert normalize_tickers([" vti", "VTI", "", "bnd "]) == ["VTI", "BND"]

    def test_caps_ticker_count(self) -> None:
        tickers = [f"T{i}" for i in range(MAX_TICKERS + 5)]

        assert len(normalize_tickers(tickers)) == MAX_TICKERS


class TestFetchSocialPosts:
    @pytest.mark.asyncio
    async def test_keeps_only_requested_tickers(self) -> None:
        agent = _agent({"bnd": [POST], "SPY": [POST]})

        with patch("services.social_posts._get_posts_agent", return_value=agent):
            posts = await fetch_social_posts(["BND"])

        assert list(posts) == ["BND"]
        assert posts["BND"][0].author == "bondwatcher"

    @pytest.mark.asyncio
    async def test_empty_tickers_skip_the_agent(self) -> None:
        with patch("services.social_posts._get_posts_agent") as get_agent:
            assert await fetch_social_posts(["  "]) == {}

        get_agent.assert_not_called()

    @pytest.mark.asyncio
    async def test_agent_failure_is_auxiliary(self) -> None:
        with patch(
            "services.social_posts._get_posts_agent",
            side_effect=ValueError("No LLM provider configured; set XAI_API_KEY"),
        ):
            with pytest.raises(AuxiliaryFetchFailure) as exc_info:
                await fetch_social_posts(["VTI"])

        assert exc_info.value.source == "social_posts"

    @pytest.mark.asyncio
    async def test_enrichment_returns_camel_case_dicts(self) -> None:
        agent = _agent({"VTI": [POST]})

        with patch("services.social_posts._get_posts_agent", return_value=agent):
            enrichment = await social_posts_enrichment(["vti"])

        assert enrichment == {"VTI": [POST]}

"""API tests for the market context and social post endpoints."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from schemas.recommendations import IndexQuote, MarketSummary, SocialPost
from services.gateway.exceptions import AuxiliaryFetchFailure


def _unused_upstream(request: httpx.Request) -> httpx.Response:  # pragma: no cover
    raise AssertionError("generation upstream should not be called")


@pytest.mark.asyncio
class TestMarketContext:
    async def test_partial_context_when_a_source_fails(
        self, gateway_client, make_orchestrator
    ) -> None:
        async def indices():
            return [IndexQuote(symbol="^GSPC", name="S&P 500", price=5000.5, change_percent=0.4)]

        async def sectors():
            raise AuxiliaryFetchFailure("FMP down", source="fmp")

        async def summary():
            return MarketSummary(summary="Stocks drifted higher.", sentiment="Bullish")

        client, state = gateway_client
        state["orchestrator"] = make_orchestrator(
            _unused_upstream,
            context_sources={"indices": indices, "sectors": sectors, "summary": summary},
        )

        response = await client.post("/api/v1/market-context")

        assert response.status_code == 200
        assert response.json() == {
            "indices": [
                {"symbol": "^GSPC", "name": "S&P 500", "price": 5000.5, "changePercent": 0.4}
            ],
            "sectors": [],
            "summary": {"summary": "Stocks drifted higher.", "sentiment": "Bullish"},
        }

    async def test_empty_context_when_everything_fails(
        self, gateway_client, make_orchestrator
    ) -> None:
        async def broken():
            raise AuxiliaryFetchFailure("down")

        client, state = gateway_client
        state["orchestrator"] = make_orchestrator(
            _unused_upstream, context_sources={"indices": broken}
        )

        response = await client.post("/api/v1/market-context")

        assert response.json() == {"indices": [], "sectors": [], "summary": None}


@pytest.mark.asyncio
class TestSocialPosts:
    async def test_returns_posts_by_ticker(self, gateway_client) -> None:
        client, _ = gateway_client
        posts = {
            "VTI": [
                SocialPost(
                    author="indexfan",
                    content="Boring and beautiful.",
                    engagement=120,
                    timestamp="2h ago",
                    sentiment="Bullish",
                )
            ]
        }

        with patch(
            "api.v1.market.fetch_social_posts", AsyncMock(return_value=posts)
        ) as fetch:
            response = await client.post(
                "/api/v1/x-posts", json={"tickers": [" vti", "VTI"]}
            )

        assert response.status_code == 200
        assert response.json()["VTI"][0]["author"] == "indexfan"
        fetch.assert_awaited_once_with(["VTI"])

    async def test_no_tickers_is_a_bad_request(self, gateway_client) -> None:
        client, _ = gateway_client

        response = await client.post("/api/v1/x-posts", json={"tickers": ["  "]})

        assert response.status_code == 400

    async def test_lookup_failure_returns_empty_mapping(self, gateway_client) -> None:
        client, _ = gateway_client

        with patch(
            "api.v1.market.fetch_social_posts",
            AsyncMock(side_effect=AuxiliaryFetchFailure("x.ai down", source="social_posts")),
        ):
            response = await client.post("/api/v1/x-posts", json={"tickers": ["BND"]})

        assert response.status_code == 200
        assert response.json() == {}

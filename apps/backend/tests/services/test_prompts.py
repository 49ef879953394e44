"""Tests for recommendation prompt rendering."""

import pytest

from schemas.recommendations import (
    IndexQuote,
    MarketContextResponse,
    MarketSummary,
    RecommendationRequest,
    SectorPerformance,
)
from services.prompts import _risk_band, build_recommendation_prompt


@pytest.fixture
def request_model(recommendation_payload) -> RecommendationRequest:
    return RecommendationRequest.model_validate(recommendation_payload)


def test_prompt_lists_profile_and_allocation(request_model) -> None:
    prompt = build_recommendation_prompt(request_model)

    assert "- Age: 34" in prompt
    assert "- Risk tolerance: 65/100 (growth-oriented" in prompt
    assert "- Bonds: 30%" in prompt
    assert "conviction sectors (Technology)" in prompt
    assert "Live market context" not in prompt


def test_server_context_wins_over_client_context(request_model) -> None:
    request_model.market_context = MarketContextResponse(
        summary=MarketSummary(summary="Client-side view.", sentiment="Bearish")
    )
    context = {
        "indices": [IndexQuote(symbol="^GSPC", name="S&P 500", price=5000, change_percent=1.25)],
        "sectors": [
            SectorPerformance(sector="Technology", change=2.0, performance="Leading"),
            SectorPerformance(sector="Energy", change=-2.0, performance="Lagging"),
        ],
    }

    prompt = build_recommendation_prompt(request_model, context)

    assert "- S&P 500: 5,000.00 (+1.25%)" in prompt
    assert "- Leading sectors: Technology" in prompt
    assert "- Lagging sectors: Energy" in prompt
    assert "Client-side view." not in prompt


def test_client_context_used_without_server_context(request_model) -> None:
    request_model.market_context = MarketContextResponse(
        summary=MarketSummary(summary="Client-side view.", sentiment="Bearish")
    )

    prompt = build_recommendation_prompt(request_model)

    assert "- Summary (Bearish): Client-side view." in prompt


@pytest.mark.parametrize(
    ("risk", "band"),
    [(0, "ultra conservative"), (40, "conservative"), (60, "balanced"), (100, "maximum")],
)
def test_risk_bands(risk: int, band: str) -> None:
    assert _risk_band(risk).startswith(band)

"""Prompt text for the recommendation generation call."""

from __future__ import annotations

from typing import Any

from schemas.recommendations import (
    IndexQuote,
    MarketContextResponse,
    MarketSummary,
    RecommendationRequest,
    SectorPerformance,
)


SYSTEM_MESSAGE = (
    "You are an expert financial analyst. Answer with a single JSON object and "
    "nothing else: no markdown, no code fences, no commentary."
)

RESPONSE_FORMAT = """{
  "<Asset class name, exactly as in the allocation>": {
    "recommendations": [
      {
        "ticker": "AAPL",
        "name": "Apple Inc.",
        "personalizedFit": "2-3 plain sentences on why this fits the investor",
        "positionSize": "Large | Medium | Small",
        "riskLevel": "Low | Moderate | High"
      }
    ],
    "breakdown": [{"name": "AAPL", "value": 22, "color": "#A78BFA"}]
  },
  "marketContext": "3-5 sentences on current conditions and catalysts"
}"""


def _risk_band(risk: int) -> str:
    if risk <= 20:
        return "ultra conservative: capital preservation, beta below 0.7"
    if risk <= 40:
        return "conservative: stability first, beta 0.7-1.0"
    if risk <= 60:
        return "balanced: growth and stability, beta 0.9-1.3"
    if risk <= 80:
        return "growth-oriented: beta 1.2-1.8, small-cap opportunities allowed"
    return "maximum aggression: beta above 1.5, emerging sector leaders"


def _format_context(context: dict[str, Any] | MarketContextResponse | None) -> str:
    if context is None:
        return ""
    if isinstance(context, MarketContextResponse):
        indices, sectors, summary = context.indices, context.sectors, context.summary
    else:
        indices = context.get("indices") or []
        sectors = context.get("sectors") or []
        summary = context.get("summary")

    lines: list[str] = []
    for quote in indices:
        if isinstance(quote, IndexQuote):
            lines.append(
                f"- {quote.name}: {quote.price:,.2f} ({quote.change_percent:+.2f}%)"
            )
    ranked = [s for s in sectors if isinstance(s, SectorPerformance)]
    leading = [s.sector for s in ranked if s.performance == "Leading"]
    lagging = [s.sector for s in ranked if s.performance == "Lagging"]
    if leading:
        lines.append(f"- Leading sectors: {', '.join(leading)}")
    if lagging:
        lines.append(f"- Lagging sectors: {', '.join(lagging)}")
    if isinstance(summary, MarketSummary):
        lines.append(f"- Summary ({summary.sentiment}): {summary.summary}")

    if not lines:
        return ""
    return "**Live market context:**\n" + "\n".join(lines) + "\n"


def build_recommendation_prompt(
    request: RecommendationRequest, context: dict[str, Any] | None = None
) -> str:
    """Render the generation prompt for one investor.

    Server-side Stage 1 context wins over a context the client passed back.
    """
    profile = request.form_data
    allocation = "\n".join(
        f"- {item.name}: {item.value:g}%" + (f" ({item.breakdown})" if item.breakdown else "")
        for item in request.portfolio
    )
    sectors = ", ".join(profile.sectors) or "None specified"
    market = _format_context(context if context is not None else request.market_context)

    conviction = ""
    if profile.sectors:
        conviction = (
            f"Prioritize the investor's conviction sectors ({sectors}) with larger "
            "position sizes in the Equities recommendations.\n"
        )

    return (
        "Provide investment recommendations for each asset class in the "
        "investor's portfolio.\n\n"
        "**Investor profile:**\n"
        f"- Age: {profile.age}\n"
        f"- Risk tolerance: {profile.risk}/100 ({_risk_band(profile.risk)})\n"
        f"- Time horizon: {profile.horizon}\n"
        f"- Investment capital: ${profile.capital}\n"
        f"- Goal: {profile.goal}\n"
        f"- Sector preferences: {sectors}\n\n"
        f"**Portfolio allocation:**\n{allocation}\n\n"
        f"{market}\n"
        f"{conviction}"
        "Give 3-5 recommendations per asset class (5-7 for Equities). Do not "
        "quote stock prices. Breakdown values must sum to 100 per asset class. "
        "Position sizes: Large (25-35%), Medium (15-25%), Small (5-15%). Use "
        "ETF tickers for commodities and money market funds for cash.\n\n"
        f"**Response format (JSON only):**\n{RESPONSE_FORMAT}"
    )

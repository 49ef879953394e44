"""Stage 1 market context: index quotes, sector performance and an AI summary.

Quotes and sector data come from Financial Modeling Prep and are cached in
process for ``MARKET_DATA_CACHE_MINUTES``. The summary comes from a small
pydantic-ai agent. Each source fails on its own with `AuxiliaryFetchFailure`;
the pipeline treats a failed source as missing context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from pydantic_ai import Agent

from core.config import Settings
from schemas.recommendations import IndexQuote, MarketSummary, SectorPerformance
from services.gateway.exceptions import AuxiliaryFetchFailure
from services.gateway.orchestrator import ContextSource
from services.model_factory import get_text_model


logger = logging.getLogger(__name__)

INDEX_SYMBOLS: dict[str, str] = {
    "^GSPC": "S&P 500",
    "^IXIC": "NASDAQ Composite",
    "^DJI": "Dow Jones Industrial Average",
    "^VIX": "CBOE Volatility Index",
}

# Sector moves beyond +/- this many percent count as leading / lagging
SECTOR_LEADING_THRESHOLD = 1.0

SUMMARY_SYSTEM_PROMPT = """You have access to real-time market data and X.
Summarize today's market in 2-3 sentences: the S&P 500 level and move, overall
sentiment and its drivers, and notable sector moves or themes.

Output JSON only: {"summary": "...", "sentiment": "Bullish|Neutral|Bearish|Cautious"}
"""


@dataclass(frozen=True)
class MarketCacheEntry:
    fetched_at: datetime
    payload: Any


class MarketContextService:
    """Fetches Stage 1 context sources; one instance per application."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        summary_agent: Agent[None, MarketSummary] | None = None,
    ) -> None:
        self._settings = settings
        self._client = http_client
        self._summary_agent = summary_agent
        self._cache: dict[str, MarketCacheEntry] = {}
        self._ttl = timedelta(minutes=settings.MARKET_DATA_CACHE_MINUTES)

    def sources(self) -> dict[str, ContextSource]:
        """Context sources keyed by the field they fill in the response."""
        return {
            "indices": self.fetch_indices,
            "sectors": self.fetch_sectors,
            "summary": self.summarize,
        }

    async def fetch_indices(self) -> list[IndexQuote]:
        cached = self._cached("indices")
        if cached is not None:
            return cached

        symbols = ",".join(INDEX_SYMBOLS)
        rows = await self._fetch_fmp(f"/v3/quote/{symbols}")
        quotes: list[IndexQuote] = []
        for row in rows if isinstance(rows, list) else []:
            symbol = row.get("symbol") if isinstance(row, dict) else None
            if symbol not in INDEX_SYMBOLS or row.get("price") is None:
                continue
            quotes.append(
                IndexQuote(
                    symbol=symbol,
                    name=INDEX_SYMBOLS[symbol],
                    price=float(row["price"]),
                    change_percent=float(row.get("changesPercentage") or 0.0),
                )
            )
        if not quotes:
            raise AuxiliaryFetchFailure("No index quotes in FMP response", source="fmp")

        self._store("indices", quotes)
        return quotes

    async def fetch_sectors(self) -> list[SectorPerformance]:
        cached = self._cached("sectors")
        if cached is not None:
            return cached

        rows = await self._fetch_fmp("/v3/sector-performance")
        sectors: list[SectorPerformance] = []
        for row in rows if isinstance(rows, list) else []:
            if not isinstance(row, dict) or not row.get("sector"):
                continue
            try:
                change = float(str(row.get("changesPercentage", "0")).rstrip("%"))
            except ValueError:
                logger.debug("Unparseable sector change for %s", row.get("sector"))
                continue
            sectors.append(
                SectorPerformance(
                    sector=row["sector"],
                    change=change,
                    performance=_classify_sector(change),
                )
            )
        sectors.sort(key=lambda s: s.change, reverse=True)

        self._store("sectors", sectors)
        return sectors

    async def summarize(self) -> MarketSummary:
        try:
            agent = self._get_summary_agent()
            result = await agent.run("Summarize the market right now.")
        except Exception as exc:
            logger.warning("Market summary generation failed: %s", exc)
            raise AuxiliaryFetchFailure(
                f"Market summary unavailable: {type(exc).__name__}", source="summary"
            ) from exc
        return result.output

    def clear_cache(self) -> None:
        self._cache.clear()

    def _get_summary_agent(self) -> Agent[None, MarketSummary]:
        """Create the summary agent on first use so no API key is needed at import."""
        if self._summary_agent is None:
            self._summary_agent = Agent(
                get_text_model(),
                output_type=MarketSummary,
                system_prompt=SUMMARY_SYSTEM_PROMPT,
            )
        return self._summary_agent

    async def _fetch_fmp(self, endpoint: str) -> Any:
        if not self._settings.FMP_API_KEY:
            raise AuxiliaryFetchFailure("FMP_API_KEY not configured", source="fmp")

        url = f"{self._settings.FMP_BASE_URL.rstrip('/')}{endpoint}"
        params = {"apikey": self._settings.FMP_API_KEY}
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params)
            else:
                async with httpx.AsyncClient(timeout=10) as client:
                    response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("FMP request %s failed: %s", endpoint, type(exc).__name__)
            raise AuxiliaryFetchFailure(
                f"FMP request failed: {type(exc).__name__}", source="fmp"
            ) from exc

    def _cached(self, key: str) -> Any | None:
        entry = self._cache.get(key)
        if entry and datetime.now(UTC) - entry.fetched_at < self._ttl:
            return entry.payload
        return None

    def _store(self, key: str, payload: Any) -> None:
        self._cache[key] = MarketCacheEntry(fetched_at=datetime.now(UTC), payload=payload)


def _classify_sector(change: float) -> str:
    if change > SECTOR_LEADING_THRESHOLD:
        return "Leading"
    if change < -SECTOR_LEADING_THRESHOLD:
        return "Lagging"
    return "Neutral"

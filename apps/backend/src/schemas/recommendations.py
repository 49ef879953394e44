"""Schemas for portfolio recommendation requests, queue responses and SSE events.

Field names are snake_case in Python and camelCase on the wire, matching the
front end that posts ``formData`` and reads ``availableSlots``.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


MAX_SSE_EVENT_BYTES: int = 262_144


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class AllocationSlice(CamelModel):
    """One asset class of the target allocation, e.g. ``Equities: 60%``."""

    name: str = Field(..., min_length=1, max_length=80)
    value: float = Field(..., ge=0, le=100)
    color: str | None = None
    breakdown: str | None = Field(default=None, max_length=500)


class InvestorProfile(CamelModel):
    age: str = Field(..., max_length=20)
    risk: int = Field(..., ge=0, le=100)
    horizon: str = Field(..., max_length=40)
    capital: str = Field(..., max_length=40)
    goal: str = Field(..., max_length=200)
    sectors: list[str] = Field(default_factory=list, max_length=20)


class RecommendationRequest(CamelModel):
    """Investor profile plus target allocation.

    ``market_context`` lets a client pass back a Stage 1 result it already
    fetched from ``/market-context``.
    """

    portfolio: list[AllocationSlice] = Field(..., min_length=1, max_length=20)
    form_data: InvestorProfile
    market_context: MarketContextResponse | None = None

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class SocialPostsRequest(CamelModel):
    tickers: list[str] = Field(default_factory=list, max_length=50)


# -----------------------------------------------------------------------------
# Market context (Stage 1)
# -----------------------------------------------------------------------------


class IndexQuote(CamelModel):
    symbol: str
    name: str
    price: float
    change_percent: float = 0.0


class SectorPerformance(CamelModel):
    sector: str
    change: float
    performance: Literal["Leading", "Lagging", "Neutral"] = "Neutral"


class MarketSummary(BaseModel):
    """Structured output of the market summary agent."""

    summary: str = Field(
        description="Two or three sentences on index levels, sentiment and sector moves",
        max_length=1200,
    )
    sentiment: Literal["Bullish", "Neutral", "Bearish", "Cautious"] = "Neutral"


class MarketContextResponse(CamelModel):
    """Stage 1 result; every part is optional because sources fail independently."""

    indices: list[IndexQuote] = Field(default_factory=list)
    sectors: list[SectorPerformance] = Field(default_factory=list)
    summary: MarketSummary | None = None


# -----------------------------------------------------------------------------
# Social posts (Stage 3)
# -----------------------------------------------------------------------------


class SocialPost(CamelModel):
    author: str
    content: str = Field(..., max_length=600)
    engagement: int = Field(0, ge=0)
    timestamp: str
    sentiment: Literal["Bullish", "Neutral", "Bearish"] = "Neutral"


class SocialPostsResult(BaseModel):
    """Structured output of the social posts agent."""

    posts: dict[str, list[SocialPost]] = Field(default_factory=dict)


# -----------------------------------------------------------------------------
# Queue
# -----------------------------------------------------------------------------


class QueueStatusResponse(CamelModel):
    processing: int
    queued: int
    capacity: int
    available_slots: int


class QueuedResponse(CamelModel):
    """Returned instead of a stream when no slot is free and the caller won't wait."""

    queued: Literal[True] = True
    position: int
    estimated_wait: int = Field(..., description="Estimated wait in seconds")
    message: str


# -----------------------------------------------------------------------------
# SSE
# -----------------------------------------------------------------------------


class PipelineSseEvent(BaseModel):
    """SSE envelope for the full three-stage pipeline stream."""

    event: Literal[
        "stage",
        "context",
        "queued",
        "delta",
        "record",
        "result",
        "error",
        "done",
    ]
    job_id: str = Field(serialization_alias="jobId")
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    def to_sse(self) -> str:
        """Serialize event to SSE format with size validation."""
        payload = self.model_dump_json(by_alias=True)
        if len(payload.encode("utf-8")) > MAX_SSE_EVENT_BYTES:
            raise ValueError("SSE payload exceeded MAX_SSE_EVENT_BYTES")
        return f"data: {payload}\n\n"


RecommendationRequest.model_rebuild()

"""Recommendation generation endpoints.

``POST /stock-recommendations`` relays the generated document as plain text,
or answers immediately with a queue position when every slot is busy and the
caller did not ask to wait. ``POST /recommendations/stream`` runs the full
three-stage pipeline and reports progress as server-sent events.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import aclosing
from typing import Annotated, Any
from uuid import uuid4

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse

from core.ratelimit import check_rate_limit
from dependencies.gateway import Admission, Orchestrator
from schemas.recommendations import (
    PipelineSseEvent,
    QueuedResponse,
    RecommendationRequest,
)
from services.gateway.exceptions import GatewayError
from services.gateway.orchestrator import PipelineEvent, PipelineEventType


logger = logging.getLogger(__name__)

router = APIRouter(tags=["recommendations"])


@router.post(
    "/stock-recommendations",
    response_class=StreamingResponse,
    response_model=None,
    dependencies=[Depends(check_rate_limit)],
    responses={
        200: {
            "content": {"text/plain": {}, "application/json": {}},
            "description": "Streamed document text, or a queue position.",
        }
    },
)
async def generate_recommendations(
    payload: RecommendationRequest,
    admission: Admission,
    orchestrator: Orchestrator,
    wait: Annotated[
        bool, Query(description="Hold the connection while queued for a slot")
    ] = False,
) -> StreamingResponse | JSONResponse:
    """Stream the recommendation document for one investor."""
    job_id = uuid4().hex

    if not wait:
        decision = admission.request_slot(job_id)
        if not decision.granted:
            # The client retries later; leave no phantom place in the queue.
            admission.cancel_wait(job_id)
            position = decision.position or 1
            queued = QueuedResponse(
                position=position,
                estimated_wait=admission.estimated_wait_seconds(position),
                message=admission.queue_message(position),
            )
            logger.info("Job %s short-circuited at queue position %d", job_id, position)
            return JSONResponse(queued.model_dump(by_alias=True))

    chunks = orchestrator.stream_generation(payload, job_id=job_id)
    # Pull the first chunk here so admission and upstream failures become a
    # proper HTTP error instead of an empty 200 stream.
    try:
        first = await anext(chunks)
    except StopAsyncIteration:
        first = ""

    return StreamingResponse(
        _relay_text(first, chunks, job_id),
        media_type="text/plain; charset=utf-8",
        headers={"X-Job-ID": job_id},
    )


async def _relay_text(
    first: str, chunks: AsyncIterator[str], job_id: str
) -> AsyncGenerator[str, None]:
    async with aclosing(chunks):
        try:
            if first:
                yield first
            async for chunk in chunks:
                yield chunk
        except GatewayError as exc:
            # Headers are gone; ending the body early is the only signal left.
            logger.error("Job %s stream ended early: %s", job_id, exc)


@router.post(
    "/recommendations/stream",
    response_class=StreamingResponse,
    response_model=None,
    dependencies=[Depends(check_rate_limit)],
)
async def stream_pipeline(
    payload: RecommendationRequest,
    orchestrator: Orchestrator,
) -> StreamingResponse:
    """Run context, generation and enrichment, streaming each step as SSE."""
    job_id = uuid4().hex

    async def event_stream() -> AsyncGenerator[str, None]:
        try:
            async with aclosing(orchestrator.run(payload, job_id)) as events:
                async for event in events:
                    yield _to_sse(event, job_id)
        except Exception:
            logger.exception("Pipeline %s failed unexpectedly", job_id)
            yield PipelineSseEvent(
                event="error",
                job_id=job_id,
                data={"type": "internal_server_error", "message": "Pipeline failed"},
            ).to_sse()
        yield PipelineSseEvent(event="done", job_id=job_id).to_sse()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Job-ID": job_id},
    )


def _to_sse(event: PipelineEvent, job_id: str) -> str:
    data: dict[str, Any]
    if event.type is PipelineEventType.RESULT and event.result is not None:
        data = {
            "document": event.result.document,
            "context": event.result.context,
            "enrichment": event.result.enrichment,
        }
    else:
        data = event.data
    return PipelineSseEvent(
        event=event.type.value,
        job_id=job_id,
        data=jsonable_encoder(data, by_alias=True),
    ).to_sse()

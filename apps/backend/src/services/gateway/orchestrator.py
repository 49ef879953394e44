"""Three-stage recommendation pipeline.

Stage 1 gathers market context from several independent sources, Stage 2
generates the recommendation document through the admission-gated upstream
stream, and Stage 3 enriches the result with social posts for the recommended
tickers. Only Stage 2 can fail a run; Stage 1 and Stage 3 degrade to empty
results.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from uuid import uuid4

import httpx

from core.config import Settings
from services.gateway.admission import AdmissionController
from services.gateway.exceptions import GatewayError, GenerationTimeout
from services.gateway.extractor import IncrementalExtractor, parse_document, record_tickers
from services.gateway.relay import StreamRelay
from services.gateway.session import StreamSession
from services.gateway.upstream import UpstreamStream, UpstreamStreamingClient


logger = logging.getLogger(__name__)

ContextSource = Callable[[], Awaitable[Any]]
EnrichmentFetcher = Callable[[list[str]], Awaitable[dict[str, Any]]]
PromptBuilder = Callable[[Any, dict[str, Any] | None], str]


class PipelineState(StrEnum):
    STAGE1_CONTEXT = "stage1_context"
    STAGE2_GENERATION = "stage2_generation"
    STAGE3_ENRICHMENT = "stage3_enrichment"
    DONE = "done"
    FAILED = "failed"


class PipelineEventType(StrEnum):
    STAGE = "stage"
    CONTEXT = "context"
    QUEUED = "queued"
    DELTA = "delta"
    RECORD = "record"
    RESULT = "result"
    ERROR = "error"


@dataclass(slots=True)
class PipelineResult:
    job_id: str
    document: dict[str, Any]
    context: dict[str, Any] | None = None
    enrichment: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PipelineEvent:
    type: PipelineEventType
    data: dict[str, Any] = field(default_factory=dict)
    error: GatewayError | None = None
    result: PipelineResult | None = None


class PipelineOrchestrator:
    """Runs the context, generation and enrichment stages for one request."""

    def __init__(
        self,
        *,
        admission: AdmissionController,
        upstream: UpstreamStreamingClient,
        settings: Settings,
        prompt_builder: PromptBuilder,
        system_message: str | None = None,
        context_sources: Mapping[str, ContextSource] | None = None,
        enrichment: EnrichmentFetcher | None = None,
    ) -> None:
        self._admission = admission
        self._upstream = upstream
        self._settings = settings
        self._prompt_builder = prompt_builder
        self._system_message = system_message
        self._context_sources = dict(context_sources or {})
        self._enrichment = enrichment
        self._relay = StreamRelay()
        self._extractor = IncrementalExtractor()
        # Upstream closes still running after their caller went away.
        self._pending_closes: set[asyncio.Task[None]] = set()

    @property
    def admission(self) -> AdmissionController:
        return self._admission

    # ------------------------------------------------------------------
    # Stage 1
    # ------------------------------------------------------------------
    async def fetch_context(self) -> dict[str, Any] | None:
        """Fetch every context source concurrently; failed sources are omitted."""
        if not self._context_sources:
            return None

        timeout = self._settings.CONTEXT_FETCH_TIMEOUT_SECONDS
        names = list(self._context_sources)
        outcomes = await asyncio.gather(
            *(
                asyncio.wait_for(self._context_sources[name](), timeout)
                for name in names
            ),
            return_exceptions=True,
        )

        context: dict[str, Any] = {}
        for name, outcome in zip(names, outcomes, strict=True):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Context source %s failed: %s", name, type(outcome).__name__
                )
                continue
            if outcome is not None:
                context[name] = outcome
        return context or None

    # ------------------------------------------------------------------
    # Stage 3
    # ------------------------------------------------------------------
    async def enrich(self, tickers: list[str]) -> dict[str, Any]:
        """Best-effort enrichment; any failure yields an empty mapping."""
        if not tickers or self._enrichment is None:
            return {}
        try:
            enrichment = await asyncio.wait_for(
                self._enrichment(tickers),
                self._settings.ENRICHMENT_TIMEOUT_SECONDS,
            )
        except Exception as exc:
            logger.warning(
                "Enrichment for %d tickers failed: %s", len(tickers), type(exc).__name__
            )
            return {}
        return enrichment if isinstance(enrichment, dict) else {}

    # ------------------------------------------------------------------
    # Stage 2
    # ------------------------------------------------------------------
    async def stream_generation(
        self,
        request: Any,
        context: dict[str, Any] | None = None,
        job_id: str | None = None,
    ) -> AsyncIterator[str]:
        """Stage 2 only: relayed document text, chunk by chunk.

        The caller may already hold the slot for `job_id`; it is released when
        this iterator finishes, fails or is closed.
        """
        job_id = job_id or uuid4().hex
        session = StreamSession(job_id=job_id)
        try:
            async with aclosing(self._generate(request, context, session)) as events:
                async for event in events:
                    if event.type is PipelineEventType.DELTA:
                        yield event.data["text"]
        finally:
            session.release()

    async def run(
        self, request: Any, job_id: str | None = None
    ) -> AsyncIterator[PipelineEvent]:
        """Run all three stages, yielding progress events as they happen.

        A Stage 2 failure ends the run with a single ``error`` event; there is
        no ``result`` event in that case.
        """
        job_id = job_id or uuid4().hex

        yield _stage(PipelineState.STAGE1_CONTEXT, job_id)
        context = await self.fetch_context()
        yield PipelineEvent(PipelineEventType.CONTEXT, {"context": context})

        yield _stage(PipelineState.STAGE2_GENERATION, job_id)
        session = StreamSession(job_id=job_id)
        try:
            async with aclosing(self._generate(request, context, session)) as events:
                async for event in events:
                    yield event
            document = parse_document(session.text)
        except GatewayError as exc:
            logger.error("Pipeline %s failed in generation: %s", job_id, exc)
            yield _stage(PipelineState.FAILED, job_id)
            yield PipelineEvent(
                PipelineEventType.ERROR,
                {"type": exc.error_code, "message": exc.message},
                error=exc,
            )
            return
        finally:
            session.release()

        yield _stage(PipelineState.STAGE3_ENRICHMENT, job_id)
        enrichment = await self.enrich(record_tickers(document))

        result = PipelineResult(
            job_id=job_id, document=document, context=context, enrichment=enrichment
        )
        yield _stage(PipelineState.DONE, job_id)
        yield PipelineEvent(PipelineEventType.RESULT, result=result)

    async def run_to_completion(
        self, request: Any, job_id: str | None = None
    ) -> PipelineResult:
        """Consume `run` and return its result, raising the Stage 2 error if any."""
        async with aclosing(self.run(request, job_id)) as events:
            async for event in events:
                if event.type is PipelineEventType.ERROR and event.error is not None:
                    raise event.error
                if event.type is PipelineEventType.RESULT and event.result is not None:
                    return event.result
        raise RuntimeError("Pipeline finished without a result")

    async def _generate(
        self,
        request: Any,
        context: dict[str, Any] | None,
        session: StreamSession,
    ) -> AsyncIterator[PipelineEvent]:
        job_id = session.job_id
        decision = self._admission.request_slot(job_id)
        if not decision.granted and decision.position is not None:
            yield PipelineEvent(
                PipelineEventType.QUEUED,
                {
                    "position": decision.position,
                    "estimatedWait": self._admission.estimated_wait_seconds(
                        decision.position
                    ),
                    "message": self._admission.queue_message(decision.position),
                },
            )

        stream: UpstreamStream | None = None
        try:
            await self._admission.acquire(
                job_id, timeout=self._settings.QUEUE_WAIT_TIMEOUT_SECONDS
            )
            loop = asyncio.get_running_loop()
            deadline = loop.time() + self._settings.GENERATION_TIMEOUT_SECONDS

            payload = self._upstream.build_chat_payload(
                self._prompt_builder(request, context), self._system_message
            )
            async with asyncio.timeout_at(deadline):
                stream = await self._upstream.open(payload)

            chunks = self._relay.relay(stream.fragments(), session)
            try:
                while True:
                    try:
                        async with asyncio.timeout_at(deadline):
                            text = await anext(chunks)
                    except StopAsyncIteration:
                        break
                    yield PipelineEvent(PipelineEventType.DELTA, {"text": text})
                    for name, record in self._extractor.update(session).items():
                        yield PipelineEvent(
                            PipelineEventType.RECORD, {"name": name, "record": record}
                        )
            finally:
                await chunks.aclose()
        except TimeoutError as exc:
            limit = self._settings.GENERATION_TIMEOUT_SECONDS
            logger.error("Generation for %s exceeded %ss", job_id, limit)
            raise GenerationTimeout(
                f"Generation did not finish within {limit:g}s"
            ) from exc
        finally:
            self._admission.release_slot(job_id)
            if stream is not None:
                await self._close_upstream(stream)

    async def _close_upstream(self, stream: UpstreamStream) -> None:
        grace = self._settings.DISCONNECT_GRACE_SECONDS
        task = asyncio.ensure_future(asyncio.wait_for(stream.aclose(), grace))
        self._pending_closes.add(task)
        task.add_done_callback(self._close_finished)
        try:
            await asyncio.shield(task)
        except (TimeoutError, httpx.HTTPError):
            # Reported by _close_finished.
            return

    def _close_finished(self, task: asyncio.Task[None]) -> None:
        self._pending_closes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, TimeoutError | httpx.HTTPError):
            logger.warning("Upstream close did not complete cleanly: %s", type(exc).__name__)
        elif exc is not None:
            logger.error("Unexpected error closing upstream stream", exc_info=exc)


def _stage(state: PipelineState, job_id: str) -> PipelineEvent:
    return PipelineEvent(PipelineEventType.STAGE, {"stage": state.value, "jobId": job_id})

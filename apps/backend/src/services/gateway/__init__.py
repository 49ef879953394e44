"""Streaming recommendation gateway: admission, relay, extraction, pipeline."""

from .admission import AdmissionController, AdmissionDecision, QueueStatus
from .exceptions import (
    AdmissionTimeout,
    AuxiliaryFetchFailure,
    DocumentParseError,
    GatewayError,
    GenerationTimeout,
    MalformedFragment,
    UpstreamStreamError,
    UpstreamUnavailable,
)
from .extractor import IncrementalExtractor, parse_document, record_tickers
from .orchestrator import (
    PipelineEvent,
    PipelineEventType,
    PipelineOrchestrator,
    PipelineResult,
    PipelineState,
)
from .relay import SseLineDecoder, StreamRelay
from .session import SessionState, StreamSession
from .upstream import UpstreamStream, UpstreamStreamingClient


__all__ = [
    "AdmissionController",
    "AdmissionDecision",
    "QueueStatus",
    "GatewayError",
    "AdmissionTimeout",
    "UpstreamUnavailable",
    "UpstreamStreamError",
    "GenerationTimeout",
    "DocumentParseError",
    "MalformedFragment",
    "AuxiliaryFetchFailure",
    "IncrementalExtractor",
    "parse_document",
    "record_tickers",
    "PipelineOrchestrator",
    "PipelineEvent",
    "PipelineEventType",
    "PipelineResult",
    "PipelineState",
    "SseLineDecoder",
    "StreamRelay",
    "SessionState",
    "StreamSession",
    "UpstreamStream",
    "UpstreamStreamingClient",
]

"""Error taxonomy for the streaming recommendation gateway.

Each exception carries a stable `error_code` used for log tagging and for the
`type` field of API error envelopes. Only Stage 2 errors are fatal to a
pipeline run; `MalformedFragment` and `AuxiliaryFetchFailure` are always
absorbed by the component that raises them.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(eq=False, slots=True)
class GatewayError(Exception):
    """Base class for gateway domain errors."""

    message: str
    error_code: str

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.error_code}: {self.message}"


class AdmissionTimeout(GatewayError):
    """Raised when a queued job was not granted a slot within its wait bound."""

    def __init__(
        self,
        message: str = "Timed out waiting for a generation slot",
        retry_after_seconds: int = 30,
    ) -> None:
        super().__init__(message=message, error_code="admission_timeout")
        self.retry_after_seconds = retry_after_seconds


class UpstreamUnavailable(GatewayError):
    def __init__(
        self,
        message: str = "Generation service unavailable",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message=message, error_code="upstream_unavailable")
        self.status_code = status_code


class UpstreamStreamError(GatewayError):
    def __init__(
        self,
        message: str = "Generation stream interrupted",
        fragments_delivered: int = 0,
    ) -> None:
        super().__init__(message=message, error_code="upstream_stream_error")
        self.fragments_delivered = fragments_delivered


class GenerationTimeout(GatewayError):
    def __init__(self, message: str = "Generation exceeded its time limit") -> None:
        super().__init__(message=message, error_code="generation_timeout")


class DocumentParseError(GatewayError):
    def __init__(
        self, message: str = "Generated document is not valid JSON"
    ) -> None:
        super().__init__(message=message, error_code="invalid_document")


class MalformedFragment(GatewayError):
    def __init__(self, message: str = "Stream event payload could not be parsed") -> None:
        super().__init__(message=message, error_code="malformed_fragment")


class AuxiliaryFetchFailure(GatewayError):
    def __init__(
        self, message: str = "Auxiliary data fetch failed", source: str = "unknown"
    ) -> None:
        super().__init__(message=message, error_code="auxiliary_fetch_failed")
        self.source = source

"""Per-job stream state shared by the relay (writer) and extractor (reader)."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class SessionState(StrEnum):
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class StreamSession:
    """Accumulated text of one generation call.

    The buffer is append-only for the lifetime of the session. `cursor` is the
    buffer length the extractor last scanned; `partial` is the job's Partial
    Document (record name -> parsed record), which only ever grows.
    """

    job_id: str
    state: SessionState = SessionState.STREAMING
    cursor: int = 0
    partial: dict[str, Any] = field(default_factory=dict)
    _chunks: list[str] = field(default_factory=list, init=False, repr=False)
    _length: int = field(default=0, init=False, repr=False)
    _joined: str | None = field(default=None, init=False, repr=False)

    def append(self, text: str) -> None:
        if self.state is not SessionState.STREAMING:
            raise RuntimeError(f"Cannot append to a {self.state} session")
        if not text:
            return
        self._chunks.append(text)
        self._length += len(text)
        self._joined = None

    @property
    def text(self) -> str:
        if self._joined is None:
            self._joined = "".join(self._chunks)
            # Keep one chunk so later joins only concatenate new text.
            self._chunks = [self._joined]
        return self._joined

    def __len__(self) -> int:
        return self._length

    @property
    def has_unscanned_text(self) -> bool:
        return self.cursor < self._length

    def mark_completed(self) -> None:
        self.state = SessionState.COMPLETED

    def mark_failed(self) -> None:
        self.state = SessionState.FAILED

    def release(self) -> None:
        """Drop the buffer once the response to the client has closed."""
        self._chunks = []
        self._joined = None

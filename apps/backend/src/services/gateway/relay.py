"""Relay of server-sent chat-completion events as plain text chunks."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from services.gateway.exceptions import MalformedFragment
from services.gateway.session import StreamSession


logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_MARKER = "[DONE]"


class SseLineDecoder:
    """Splits arbitrarily fragmented SSE text into complete event payloads.

    A line split across two fragments is held back until its terminator
    arrives. Only ``data: `` lines carry payloads; everything else (comments,
    ``event:`` lines, blank separators) is ignored.
    """

    def __init__(self) -> None:
        self._residual = ""
        self.done = False

    def feed(self, fragment: str) -> list[str]:
        if self.done or not fragment:
            return []
        lines = (self._residual + fragment).split("\n")
        self._residual = lines.pop()
        return self._payloads(lines)

    def flush(self) -> list[str]:
        """Process a final line that arrived without a terminator."""
        if self.done or not self._residual:
            self._residual = ""
            return []
        line, self._residual = self._residual, ""
        return self._payloads([line])

    def _payloads(self, lines: list[str]) -> list[str]:
        payloads: list[str] = []
        for raw in lines:
            line = raw.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX) :].strip()
            if payload == DONE_MARKER:
                self.done = True
                self._residual = ""
                break
            if payload:
                payloads.append(payload)
        return payloads


def extract_delta_text(payload: str) -> str | None:
    """Return ``choices[0].delta.content`` from one event payload.

    Raises `MalformedFragment` when the payload is not a JSON object.
    """
    try:
        event: Any = json.loads(payload)
    except ValueError as exc:
        raise MalformedFragment(f"Unparseable event payload: {payload[:80]!r}") from exc
    if not isinstance(event, dict):
        raise MalformedFragment("Event payload is not an object")

    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    delta = first.get("delta") if isinstance(first, dict) else None
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) and content else None


class StreamRelay:
    """Turns upstream fragments into text chunks and records them in a session."""

    async def relay(
        self, fragments: AsyncIterable[str], session: StreamSession
    ) -> AsyncIterator[str]:
        decoder = SseLineDecoder()
        try:
            async for fragment in fragments:
                for payload in decoder.feed(fragment):
                    text = self._delta(payload)
                    if text is not None:
                        session.append(text)
                        yield text
                if decoder.done:
                    break
            for payload in decoder.flush():
                text = self._delta(payload)
                if text is not None:
                    session.append(text)
                    yield text
        except BaseException:
            # Upstream error, cancellation or consumer close; never a completion.
            session.mark_failed()
            raise
        session.mark_completed()
        logger.debug("Relay for %s finished with %d chars", session.job_id, len(session))

    @staticmethod
    def _delta(payload: str) -> str | None:
        try:
            return extract_delta_text(payload)
        except MalformedFragment as exc:
            logger.debug("Skipping malformed stream event: %s", exc.message)
            return None

"""Incremental extraction of completed records from a partially streamed document.

The generation stream carries one JSON object whose top-level keys are asset
class names, each mapped to an object record::

    {"Equities": {"recommendations": [...], "breakdown": [...]},
     "Bonds": {...},
     "marketContext": "..."}

While the object is still arriving it cannot be parsed as a whole, but each
record becomes parseable on its own as soon as its closing brace arrives. The
scanner below walks the text with an explicit container stack, tracking string
and escape state so that braces inside strings are ignored, and reports every
record-level ``"name": {...}`` span whose braces have balanced.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from services.gateway.exceptions import DocumentParseError
from services.gateway.session import StreamSession


logger = logging.getLogger(__name__)

# String-valued summary fields; only available once the whole document parses.
RESERVED_KEYS: frozenset[str] = frozenset({"marketContext", "context"})

_WHITESPACE = frozenset(" \t\r\n")


@dataclass(frozen=True, slots=True)
class RecordSpan:
    """A balanced ``{...}`` value for record `name` at ``text[start:end]``."""

    name: str
    start: int
    end: int


def scan_records(text: str) -> Iterator[RecordSpan]:
    """Yield every closed record-level object span in `text`, in order.

    A key is record-level when it sits directly inside the root object
    (depth 1) or outside any container (depth 0, e.g. trailing text after
    the root closed). Keys inside another key's object are never candidates.
    Unterminated candidates are simply not yielded.
    """
    stack: list[str] = []
    # Open record candidates: stack depth once the '{' is pushed -> (name, start)
    open_records: dict[int, tuple[str, int]] = {}

    in_string = False
    escaped = False
    string_start = 0
    last_string: tuple[str, int] | None = None  # raw key text, stack depth
    pending_key: tuple[str, int] | None = None  # key followed by ':', depth

    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
                last_string = (text[string_start + 1 : index], len(stack))
            continue

        if char in _WHITESPACE:
            continue

        if char == '"':
            in_string = True
            string_start = index
            pending_key = None
            continue

        if char == ":":
            if last_string is not None and last_string[1] == len(stack):
                pending_key = last_string
            last_string = None
            continue

        last_string = None

        if char == "{":
            depth = len(stack)
            if pending_key is not None and pending_key[1] == depth and depth <= 1:
                name = _decode_key(pending_key[0])
                if name:
                    open_records[depth + 1] = (name, index)
            stack.append("{")
        elif char == "[":
            stack.append("[")
        elif char in "}]":
            if not stack:
                # Stray closer outside any container.
                pending_key = None
                continue
            depth = len(stack)
            opener = stack.pop()
            record = open_records.pop(depth, None)
            if record is not None and opener == "{" and char == "}":
                yield RecordSpan(name=record[0], start=record[1], end=index + 1)
        pending_key = None


def _decode_key(raw: str) -> str | None:
    try:
        key = json.loads(f'"{raw}"')
    except ValueError:
        return None
    return key if isinstance(key, str) else None


class IncrementalExtractor:
    """Lifts completed records out of a session buffer into its Partial Document.

    Every call rescans the whole buffer: a region that looked incomplete on an
    earlier scan may start a different valid record once more text arrives.
    Records already present are never overwritten.
    """

    def __init__(self, reserved_keys: frozenset[str] = RESERVED_KEYS):
        self.reserved_keys = reserved_keys

    def update(self, session: StreamSession) -> dict[str, Any]:
        """Scan the session buffer; return the records added by this scan."""
        if not session.has_unscanned_text:
            return {}
        text = session.text
        session.cursor = len(text)
        added = self.extract(text, session.partial)
        session.partial.update(added)
        return added

    def extract(self, text: str, known: dict[str, Any] | None = None) -> dict[str, Any]:
        """Return completed records in `text` that are not already in `known`."""
        known = known or {}
        found: dict[str, Any] = {}
        for span in scan_records(text):
            if span.name in self.reserved_keys:
                continue
            if span.name in known or span.name in found:
                continue
            try:
                value = json.loads(text[span.start : span.end])
            except ValueError:
                logger.debug("Balanced span for %s did not parse; skipping", span.name)
                continue
            if isinstance(value, dict):
                found[span.name] = value
        return found


def parse_document(text: str) -> dict[str, Any]:
    """Parse the complete generated document.

    The model may wrap the object in code fences or a short preamble, so the
    parse covers the first ``{`` through the last ``}``.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise DocumentParseError("Generated output contains no JSON object")
    try:
        document = json.loads(text[start : end + 1])
    except ValueError as exc:
        raise DocumentParseError(f"Generated document is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise DocumentParseError("Generated document is not a JSON object")
    return document


def record_tickers(document: dict[str, Any]) -> list[str]:
    """Collect ``recommendations[].ticker`` values across records, deduplicated."""
    tickers: list[str] = []
    seen: set[str] = set()
    for name, record in document.items():
        if name in RESERVED_KEYS or not isinstance(record, dict):
            continue
        recommendations = record.get("recommendations")
        if not isinstance(recommendations, list):
            continue
        for item in recommendations:
            ticker = item.get("ticker") if isinstance(item, dict) else None
            if not isinstance(ticker, str):
                continue
            ticker = ticker.strip()
            if ticker and ticker not in seen:
                seen.add(ticker)
                tickers.append(ticker)
    return tickers

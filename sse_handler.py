"""Server-Sent Events (SSE) decoding of upstream completion streams."""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterable, List, Optional, Tuple, Union

from logger import LOGGER_NAME

log = logging.getLogger(LOGGER_NAME)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"
SSE_EVENT_DELIMITER = "\n\n"

PathKey = Union[str, int]


def sse_event_data_text(raw_event: str) -> Optional[str]:
    """
    Join all `data:` lines of one event into a single payload.

    SSE concatenates multiple data lines with '\n'. Returns None for
    events without data lines (comments, keepalives, `event:`-only events).
    """
    parts: List[str] = []
    for ln in raw_event.split("\n"):
        if ln.startswith(SSE_DATA_PREFIX):
            parts.append(ln[len(SSE_DATA_PREFIX):].lstrip())
    if not parts:
        return None
    return "\n".join(parts)


def is_done_payload(payload: str) -> bool:
    """Accept "[DONE]" with surrounding whitespace tolerated."""
    return payload.strip() == SSE_DONE


class SSEEventParser:
    """
    Incremental SSE event parser.

    State is limited to the undecoded tail of a multi-byte UTF-8 sequence and
    the text received since the last event boundary. Each `feed` returns the
    payloads of the events it completed; partial events stay buffered.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._residue = ""

    @property
    def residue(self) -> str:
        return self._residue

    def feed(self, chunk: bytes) -> List[str]:
        return self._drain(self._decoder.decode(chunk))

    def flush(self) -> List[str]:
        """End of input: complete pending events, including an unterminated last one."""
        payloads = self._drain(self._decoder.decode(b"", final=True))
        tail, self._residue = self._residue, ""
        if tail.strip():
            payload = sse_event_data_text(tail)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def _drain(self, text: str) -> List[str]:
        buf = (self._residue + text).replace("\r\n", "\n")
        payloads: List[str] = []
        while True:
            idx = buf.find(SSE_EVENT_DELIMITER)
            if idx < 0:
                break
            raw_event, buf = buf[:idx], buf[idx + len(SSE_EVENT_DELIMITER):]
            payload = sse_event_data_text(raw_event)
            if payload is not None:
                payloads.append(payload)
        self._residue = buf
        return payloads


@dataclass(frozen=True)
class ExtractionRule:
    """Where one upstream response shape keeps its text fragment."""

    name: str
    path: Tuple[PathKey, ...]

    def extract(self, obj: Any) -> Optional[str]:
        node = obj
        for key in self.path:
            if isinstance(key, int):
                if not isinstance(node, list) or len(node) <= key:
                    return None
            elif not isinstance(node, dict):
                return None
            node = node[key] if isinstance(key, int) else node.get(key)
        if isinstance(node, str) and node:
            return node
        return None


# Checked in order; the first non-empty match wins.
EXTRACTION_RULES: Tuple[ExtractionRule, ...] = (
    ExtractionRule("chat-delta", ("choices", 0, "delta", "content")),
    ExtractionRule("chat-message", ("choices", 0, "message", "content")),
    ExtractionRule("output-text", ("output_text",)),
    ExtractionRule("data-content", ("data", "content")),
)


def extract_text_delta(
    obj: Any, rules: Iterable[ExtractionRule] = EXTRACTION_RULES
) -> Optional[str]:
    """Extract the text fragment from a decoded event payload."""
    for rule in rules:
        text = rule.extract(obj)
        if text:
            return text
    return None


def _payload_text(payload: str, rules: Iterable[ExtractionRule]) -> Optional[str]:
    try:
        obj = json.loads(payload)
    except (ValueError, RecursionError):
        log.debug("Skipping non-JSON SSE payload: %r", payload[:200])
        return None
    return extract_text_delta(obj, rules)


async def iter_text_deltas(
    chunks: AsyncIterator[bytes],
    rules: Iterable[ExtractionRule] = EXTRACTION_RULES,
) -> AsyncIterator[str]:
    """
    Decode an upstream SSE byte stream into plain text deltas.

    Ends at the `[DONE]` sentinel (anything buffered after it is dropped) or
    when the byte stream ends.
    """
    rules = tuple(rules)
    parser = SSEEventParser()

    async for chunk in chunks:
        for payload in parser.feed(chunk):
            if is_done_payload(payload):
                return
            text = _payload_text(payload, rules)
            if text:
                yield text

    for payload in parser.flush():
        if is_done_payload(payload):
            return
        text = _payload_text(payload, rules)
        if text:
            yield text

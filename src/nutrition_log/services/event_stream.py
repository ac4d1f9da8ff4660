"""Framing for the suggestion event stream (``data: {...}`` blocks)."""

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from pydantic import ValidationError

from nutrition_log.domain.suggestions import StreamFrame

_logger = logging.getLogger(__name__)

_DELIMITER = "\n\n"


@dataclass
class FrameDecoder:
    """Splits streamed text into frame payloads.

    Frames are separated by a blank line. An incomplete trailing frame stays
    buffered until the next chunk (or ``flush``) completes it.
    """

    _buffer: str = ""

    def feed(self, chunk: str) -> list[str]:
        """Add a chunk and return the payloads of every completed frame."""
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")
        *complete, self._buffer = self._buffer.split(_DELIMITER)
        return [payload for payload in map(_payload, complete) if payload]

    def flush(self) -> list[str]:
        """Return the payload of whatever is left once the stream closes."""
        remainder, self._buffer = self._buffer, ""
        payload = _payload(remainder.rstrip("\r"))
        return [payload] if payload else []


async def iter_frame_payloads(chunks: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield frame payloads from a stream of text chunks."""
    decoder = FrameDecoder()
    async for chunk in chunks:
        if not chunk:
            continue
        for payload in decoder.feed(chunk):
            yield payload
    for payload in decoder.flush():
        yield payload


def parse_frame(payload: str) -> StreamFrame | None:
    """Decode one payload; malformed frames are logged and dropped."""
    try:
        return StreamFrame.model_validate(json.loads(payload))
    except (json.JSONDecodeError, ValidationError) as exc:
        _logger.warning("Dropping malformed stream frame: %s", exc)
        return None


def _payload(event: str) -> str | None:
    lines = [
        line[5:].removeprefix(" ")
        for line in event.strip().split("\n")
        if line.startswith("data:")
    ]
    if not lines:
        return None
    return "\n".join(lines).strip() or None

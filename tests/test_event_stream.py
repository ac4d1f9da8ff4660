"""Tests for event-stream framing."""

import asyncio

from nutrition_log.services.event_stream import (
    FrameDecoder,
    iter_frame_payloads,
    parse_frame,
)


async def _collect(chunks: list[str]) -> list[str]:
    async def source():  # type: ignore[no-untyped-def]
        for chunk in chunks:
            yield chunk

    return [payload async for payload in iter_frame_payloads(source())]


def test_decoder_buffers_frames_split_across_chunks() -> None:
    decoder = FrameDecoder()

    assert decoder.feed('data: {"type": "in') == []
    assert decoder.feed('it"}\n\ndata: {"type"') == ['{"type": "init"}']
    assert decoder.feed(': "complete"}\n\n') == ['{"type": "complete"}']


def test_decoder_handles_crlf_and_multiline_data() -> None:
    decoder = FrameDecoder()

    payloads = decoder.feed('data: {"type":\r\ndata: "init"}\r\n\r\n')

    assert payloads == ['{"type":\n"init"}']


def test_decoder_ignores_comments_and_events_without_data() -> None:
    decoder = FrameDecoder()

    assert decoder.feed(": keep-alive\n\nevent: ping\n\n") == []


def test_flush_returns_unterminated_last_frame() -> None:
    payloads = asyncio.run(
        _collect(['data: {"type": "init"}\n\n', 'data: {"type": "complete"}'])
    )

    assert payloads == ['{"type": "init"}', '{"type": "complete"}']


def test_parse_frame_reads_camel_case_fields() -> None:
    frame = parse_frame(
        '{"type": "partial", "category": "nutrition", "isSingleSuggestion": true,'
        ' "data": {"suggestion": {"title": "Drink water"}}}'
    )

    assert frame is not None
    assert frame.type == "partial"
    assert frame.is_single_suggestion is True
    assert frame.data == {"suggestion": {"title": "Drink water"}}


def test_parse_frame_drops_malformed_payloads() -> None:
    assert parse_frame("{not json") is None
    assert parse_frame('{"type": "mystery"}') is None

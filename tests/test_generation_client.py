from __future__ import annotations

import pytest

from src.weathervis.services.generation_client import (
    STREAM_ERROR,
    UPSTREAM_ERROR,
    GenerationEvent,
    LineBuffer,
)
from .utils import FakeOllama, fragment_chunks, ndjson


async def _collect(client, prompt="tip please"):
    return [event async for event in client.stream(prompt)]


def test_line_buffer_reassembles_line_split_across_chunks():
    buf = LineBuffer()
    assert buf.feed(b'{"resp') == []
    assert buf.residual == b'{"resp'
    assert buf.feed(b'onse":"hi"}\n') == ['{"response":"hi"}']
    assert buf.residual == b""


def test_line_buffer_emits_several_lines_and_keeps_remainder():
    buf = LineBuffer()
    lines = buf.feed(b'{"a":1}\n\n{"b":2}\r\n{"c"')
    assert lines == ['{"a":1}', '{"b":2}']
    assert buf.flush() == ['{"c"']
    assert buf.flush() == []


def test_line_buffer_keeps_multibyte_characters_split_between_chunks():
    encoded = '{"response":"20°C"}\n'.encode("utf-8")
    cut = encoded.index(b"\xb0")  # second byte of the degree sign
    buf = LineBuffer()
    assert buf.feed(encoded[:cut]) == []
    assert buf.feed(encoded[cut:]) == ['{"response":"20°C"}']


def test_event_from_line_variants():
    event = GenerationEvent.from_line('{"response":"Wear ","done":false}')
    assert event.response_text == "Wear "
    assert not event.is_done
    assert event.raw == {"response": "Wear ", "done": False}

    done = GenerationEvent.from_line('{"done":true}')
    assert done.is_done and done.response_text is None

    raw = GenerationEvent.from_line("not json at all")
    assert raw.response_text == "not json at all"
    assert raw.raw == "not json at all"

    listy = GenerationEvent.from_line("[1, 2]")
    assert listy.response_text == "[1, 2]"


@pytest.mark.asyncio
async def test_stream_posts_prompt_and_yields_fragments_until_done():
    fake = FakeOllama(fragment_chunks("Wear ", "a light jacket.") + [ndjson({"response": "ignored"})])
    events = await _collect(fake.client(), "Seattle, 20C, clear.")

    assert fake.requests[0]["url"] == "http://ollama.test/api/generate"
    assert fake.requests[0]["json"] == {"model": "test-model", "prompt": "Seattle, 20C, clear.", "stream": True}
    assert [e.response_text for e in events] == ["Wear ", "a light jacket.", ""]
    assert events[-1].is_done
    assert fake.stream.closed


@pytest.mark.asyncio
async def test_stream_reassembles_json_split_mid_token():
    fake = FakeOllama([b'{"resp', b'onse":"hi"}\n{"done"', b":true}\n"])
    events = await _collect(fake.client())
    assert [e.response_text for e in events] == ["hi", None]
    assert events[-1].is_done


@pytest.mark.asyncio
async def test_stream_forwards_unparseable_lines_and_flushes_tail():
    fake = FakeOllama([b"plain words\n", b'{"response":"tail"}'])
    events = await _collect(fake.client())
    assert [e.response_text for e in events] == ["plain words", "tail"]
    assert not any(e.is_error for e in events)


@pytest.mark.asyncio
async def test_stream_reports_unreachable_service_as_upstream_error():
    fake = FakeOllama(connect_error=True)
    events = await _collect(fake.client())
    assert len(events) == 1
    assert events[0].error_code == UPSTREAM_ERROR
    assert "refused" in events[0].error_message


@pytest.mark.asyncio
async def test_stream_reports_http_failure_as_upstream_error():
    fake = FakeOllama([b'{"error":"model not found"}'], status_code=404)
    events = await _collect(fake.client())
    assert len(events) == 1
    assert events[0].error_code == UPSTREAM_ERROR
    assert events[0].error_message == "HTTP 404: model not found"


@pytest.mark.asyncio
async def test_stream_keeps_plain_text_body_of_http_failure():
    fake = FakeOllama([b"Bad Gateway"], status_code=502)
    events = await _collect(fake.client())
    assert events[0].error_message == "HTTP 502: Bad Gateway"


@pytest.mark.asyncio
async def test_stream_reports_mid_stream_failure_as_stream_error():
    fake = FakeOllama(fragment_chunks("one ", "two ", "three"), fail_after=2)
    events = await _collect(fake.client())
    assert [e.response_text for e in events[:2]] == ["one ", "two "]
    assert events[-1].error_code == STREAM_ERROR
    assert len(events) == 3


@pytest.mark.asyncio
async def test_closing_the_generator_closes_upstream_response():
    fake = FakeOllama(fragment_chunks("a", "b", "c", "d"))
    gen = fake.client().stream("x")
    first = await gen.__anext__()
    assert first.response_text == "a"
    await gen.aclose()
    assert fake.stream.closed
    assert fake.stream.sent < len(fake.stream.chunks)


def test_event_from_error_line_is_stream_error():
    event = GenerationEvent.from_line('{"error":"model runner has unexpectedly stopped"}')
    assert event.is_error
    assert event.error_code == STREAM_ERROR
    assert event.error_message == "model runner has unexpectedly stopped"
    assert event.response_text is None


@pytest.mark.asyncio
async def test_stream_ends_at_error_line_reported_inside_ok_response():
    fake = FakeOllama(
        [
            ndjson({"response": "Wear "}),
            ndjson({"error": "model runner has unexpectedly stopped"}),
            ndjson({"response": "never"}),
        ]
    )
    events = await _collect(fake.client())

    assert [e.response_text for e in events[:1]] == ["Wear "]
    assert len(events) == 2
    assert events[-1].error_code == STREAM_ERROR
    assert events[-1].error_message == "model runner has unexpectedly stopped"
    assert fake.stream.closed

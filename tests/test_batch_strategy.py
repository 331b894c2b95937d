from __future__ import annotations

import asyncio

import httpx
import numpy as np

from parley.asr.batch import BatchStrategy
from parley.audio.mic import MicCapture
from parley.errors import TransportError


def _strategy(capture: MicCapture, handler, *, api_key: str | None = "sk-test") -> BatchStrategy:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return BatchStrategy(
        capture,
        endpoint="https://stt.test/v1/audio/transcriptions",
        api_key=api_key,
        chunk_seconds=0.5,
        client=client,
    )


def test_uploads_chunks_as_multipart_and_emits_finals() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"text": f"chunk {len(requests)}"})

    async def scenario():
        capture = MicCapture(sample_rate=16000)
        strategy = _strategy(capture, handler)
        segments, errors = [], []
        handle = await strategy.start("es-MX", segments.append, errors.append)
        capture.feed(np.full(8000, 0.1, dtype=np.float32))
        capture.feed(np.full(8000, 0.1, dtype=np.float32))
        await asyncio.sleep(0.1)
        await strategy.stop(handle)
        return segments, errors

    segments, errors = asyncio.run(scenario())
    assert [(s.text, s.is_final) for s in segments] == [("chunk 1", True), ("chunk 2", True)]
    assert errors == []
    body = requests[0].content
    assert b'name="model"' in body and b"whisper-1" in body
    assert b'name="language"' in body and b"\r\n\r\nes\r\n" in body
    assert b'name="response_format"' in body
    assert b'filename="audio.wav"' in body
    assert requests[0].headers["Authorization"] == "Bearer sk-test"


def test_server_errors_skip_the_chunk() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) == 1:
            return httpx.Response(500, json={"error": "boom"})
        return httpx.Response(200, json={"text": "second"})

    async def scenario():
        capture = MicCapture(sample_rate=16000)
        strategy = _strategy(capture, handler)
        segments, errors = [], []
        handle = await strategy.start("en-US", segments.append, errors.append)
        capture.feed(np.full(8000, 0.1, dtype=np.float32))
        capture.feed(np.full(8000, 0.1, dtype=np.float32))
        await asyncio.sleep(0.1)
        await strategy.stop(handle)
        return segments, errors

    segments, errors = asyncio.run(scenario())
    assert [s.text for s in segments] == ["second"]
    assert errors == []


def test_rejected_credentials_end_strategy_with_fallback() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "bad key"})

    async def scenario():
        capture = MicCapture(sample_rate=16000)
        strategy = _strategy(capture, handler)
        errors = []
        handle = await strategy.start("en-US", lambda s: None, errors.append)
        capture.feed(np.full(8000, 0.1, dtype=np.float32))
        await asyncio.sleep(0.05)
        capture.feed(np.full(160, 0.1, dtype=np.float32))
        await asyncio.sleep(0.05)
        await strategy.stop(handle)
        return errors

    errors = asyncio.run(scenario())
    assert len(errors) == 1
    assert isinstance(errors[0], TransportError)
    assert errors[0].fallback


def test_unavailable_without_key() -> None:
    strategy = _strategy(MicCapture(), lambda r: httpx.Response(200), api_key=None)
    assert not strategy.available()

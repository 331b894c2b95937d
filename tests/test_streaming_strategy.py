from __future__ import annotations

import asyncio
import json

import numpy as np
import pytest
from websockets.exceptions import ConnectionClosedError

from parley.asr.negotiation import StreamingSession
from parley.asr.streaming import StreamingStrategy, parse_message
from parley.audio.mic import MicCapture
from parley.errors import RecognizerEnded, TransportError
from parley.retry import RetryPolicy

_END = object()


def _result(text: str, final: bool) -> str:
    return json.dumps({"result": {"alternatives": [{"transcript": text}], "final": final}})


class FakeWebSocket:
    def __init__(self, messages) -> None:
        self.sent: list[bytes] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()
        for message in messages:
            self._incoming.put_nowait(message)

    def push(self, item) -> None:
        self._incoming.put_nowait(item)

    async def send(self, data: bytes) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakeNegotiator:
    def __init__(self) -> None:
        self.languages: list[str] = []

    async def negotiate(self, language: str) -> StreamingSession:
        self.languages.append(language)
        return StreamingSession(websocket_url="wss://asr.test/ws", session_id="s-1")

    async def aclose(self) -> None:
        return None


class FlakyNegotiator(FakeNegotiator):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def negotiate(self, language: str) -> StreamingSession:
        if self.failures > 0:
            self.failures -= 1
            self.languages.append(language)
            raise TransportError("negotiation busy", status=503)
        return await super().negotiate(language)


def _strategy(ws: FakeWebSocket, capture: MicCapture) -> StreamingStrategy:
    async def connect(url: str) -> FakeWebSocket:
        assert url == "wss://asr.test/ws"
        return ws

    return StreamingStrategy(capture, FakeNegotiator(), retry=RetryPolicy(), connect=connect)


def test_parse_message_reads_first_alternative() -> None:
    seg = parse_message(_result(" hello ", True))
    assert seg is not None
    assert seg.text == "hello"
    assert seg.is_final
    assert parse_message(_result("   ", False)) is None
    assert parse_message("not json") is None
    assert parse_message(json.dumps({"result": {"alternatives": []}})) is None


def test_streams_audio_and_delivers_segments() -> None:
    async def scenario():
        capture = MicCapture(sample_rate=16000)
        ws = FakeWebSocket([_result("hel", False), b"\x00", _result("hello", True)])
        strategy = _strategy(ws, capture)
        segments, errors = [], []
        handle = await strategy.start("en-US", segments.append, errors.append)
        capture.feed(np.full(1600, 0.2, dtype=np.float32))
        await asyncio.sleep(0.05)
        await strategy.stop(handle)
        return ws, segments, errors, capture

    ws, segments, errors, capture = asyncio.run(scenario())
    assert [(s.text, s.is_final) for s in segments] == [("hel", False), ("hello", True)]
    assert errors == []
    assert len(ws.sent) == 1
    assert len(ws.sent[0]) == 3200
    assert ws.closed
    assert capture._subscribers == []


def test_abnormal_close_reports_retryable_transport_error() -> None:
    async def scenario():
        capture = MicCapture(sample_rate=16000)
        ws = FakeWebSocket([ConnectionClosedError(None, None)])
        strategy = _strategy(ws, capture)
        errors = []
        handle = await strategy.start("en-US", lambda s: None, errors.append)
        await asyncio.sleep(0.05)
        await strategy.stop(handle)
        return errors

    errors = asyncio.run(scenario())
    assert len(errors) == 1
    assert isinstance(errors[0], TransportError)
    assert errors[0].retryable


def test_server_ending_stream_counts_as_unexpected_end() -> None:
    async def scenario():
        capture = MicCapture(sample_rate=16000)
        ws = FakeWebSocket([_END])
        strategy = _strategy(ws, capture)
        errors = []
        handle = await strategy.start("en-US", lambda s: None, errors.append)
        await asyncio.sleep(0.05)
        await strategy.stop(handle)
        return errors

    errors = asyncio.run(scenario())
    assert len(errors) == 1
    assert isinstance(errors[0], RecognizerEnded)


def test_unconfigured_streaming_is_unavailable() -> None:
    strategy = StreamingStrategy(MicCapture(), None)
    assert not strategy.available()


def test_initial_start_retries_negotiation_but_restart_does_not() -> None:
    async def connect(url: str) -> FakeWebSocket:
        return FakeWebSocket([])

    async def scenario():
        capture = MicCapture(sample_rate=16000)
        negotiator = FlakyNegotiator(failures=2)
        strategy = StreamingStrategy(capture, negotiator, retry=RetryPolicy(base_delay=0.0), connect=connect)
        handle = await strategy.start("en-US", lambda s: None, lambda e: None)
        initial_attempts = len(negotiator.languages)
        await strategy.stop(handle)

        negotiator.failures = 1
        with pytest.raises(TransportError):
            await strategy.restart("en-US", lambda s: None, lambda e: None)
        return initial_attempts, len(negotiator.languages)

    initial_attempts, total_attempts = asyncio.run(scenario())
    assert initial_attempts == 3
    assert total_attempts == 4

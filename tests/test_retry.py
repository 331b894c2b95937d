from __future__ import annotations

import asyncio

import pytest

from parley.errors import RecognizerEnded, TransportError
from parley.retry import RetryPolicy


def test_delay_doubles_per_attempt() -> None:
    policy = RetryPolicy()
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]
    assert RetryPolicy(max_delay=3.0).delay_for(3) == 3.0


def test_should_retry_follows_transport_status() -> None:
    policy = RetryPolicy(max_attempts=3)
    assert policy.should_retry(TransportError("down", status=503), 1)
    assert policy.should_retry(TransportError("slow down", status=429), 3)
    assert policy.should_retry(TransportError("network"), 1)
    assert policy.should_retry(RecognizerEnded("ended"), 1)
    assert not policy.should_retry(TransportError("down", status=503), 4)
    assert not policy.should_retry(TransportError("nope", status=401), 1)
    assert not policy.should_retry(TransportError("bad request", status=400), 1)
    assert not policy.should_retry(ValueError("x"), 1)


def test_run_retries_until_success() -> None:
    calls = []
    sleeps = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransportError("busy", status=429)
        return "ok"

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    result = asyncio.run(RetryPolicy().run(flaky, sleep=fake_sleep))
    assert result == "ok"
    assert len(calls) == 3
    assert sleeps == [2.0, 4.0]


def test_run_raises_non_retryable_immediately() -> None:
    calls = []

    async def rejected():
        calls.append(1)
        raise TransportError("forbidden", status=403)

    async def fake_sleep(delay: float) -> None:
        raise AssertionError("should not sleep")

    with pytest.raises(TransportError) as info:
        asyncio.run(RetryPolicy().run(rejected, sleep=fake_sleep))
    assert info.value.fallback
    assert len(calls) == 1


def test_run_gives_up_after_max_attempts() -> None:
    calls = []

    async def always_down():
        calls.append(1)
        raise TransportError("down", status=500)

    async def fake_sleep(delay: float) -> None:
        return None

    with pytest.raises(TransportError):
        asyncio.run(RetryPolicy(max_attempts=2).run(always_down, sleep=fake_sleep))
    assert len(calls) == 3

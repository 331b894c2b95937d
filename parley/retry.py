from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable


def _reads_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with exponential backoff.
    Attempts are 1-based, so the defaults wait 2s, 4s, 8s before retries 1..3.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float | None = None
    is_retryable: Callable[[BaseException], bool] = field(default=_reads_retryable)

    def delay_for(self, attempt: int) -> float:
        delay = float(self.base_delay) * (float(self.factor) ** max(0, int(attempt)))
        if self.max_delay is not None:
            delay = min(delay, float(self.max_delay))
        return delay

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        return attempt <= self.max_attempts and self.is_retryable(exc)

    async def run(
        self,
        fn: Callable[[], Awaitable[Any]],
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> Any:
        attempt = 0
        while True:
            try:
                return await fn()
            except Exception as exc:
                attempt += 1
                if not self.should_retry(exc, attempt):
                    raise
                await sleep(self.delay_for(attempt))

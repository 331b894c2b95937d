from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from parley.app.logging_setup import log_event
from parley.contracts import AudioChunk, TranscriptSegment
from parley.errors import ParleyError, RecognizerEnded, TransportError

OnSegment = Callable[[TranscriptSegment], None]
OnError = Callable[[BaseException], None]


@dataclass
class StrategyHandle:
    strategy: str
    language: str
    frames: "asyncio.Queue[AudioChunk | None] | None" = None
    task: asyncio.Task | None = None
    closing: bool = False
    extras: dict[str, Any] = field(default_factory=dict)


class TranscriptionStrategy(ABC):
    """
    One interchangeable way of turning microphone audio into transcript segments.

    `start` returns once the strategy is running; later failures are reported through
    `on_error` exactly once per handle. A handle whose work finishes on its own while
    not being stopped reports `RecognizerEnded`.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    def available(self) -> bool:
        return True

    @abstractmethod
    async def start(self, language: str, on_segment: OnSegment, on_error: OnError) -> StrategyHandle: ...

    async def restart(self, language: str, on_segment: OnSegment, on_error: OnError) -> StrategyHandle:
        """Start again after an unexpected end; the caller already applies backoff."""
        return await self.start(language, on_segment, on_error)

    @abstractmethod
    async def stop(self, handle: StrategyHandle) -> None: ...

    async def aclose(self) -> None:
        return None


def supervise(
    handle: StrategyHandle,
    work: Awaitable[None],
    on_error: OnError,
    logger: logging.Logger | None = None,
) -> asyncio.Task:
    async def _runner() -> None:
        try:
            await work
        except asyncio.CancelledError:
            raise
        except ParleyError as exc:
            if not handle.closing:
                log_event(logger, logging.WARNING, "strategy_failed", strategy=handle.strategy, error=str(exc))
                on_error(exc)
            return
        except Exception as exc:
            if not handle.closing:
                log_event(logger, logging.WARNING, "strategy_failed", strategy=handle.strategy, error=str(exc))
                on_error(TransportError(f"{handle.strategy}: {exc or type(exc).__name__}"))
            return
        if not handle.closing:
            log_event(logger, logging.INFO, "strategy_ended", strategy=handle.strategy)
            on_error(RecognizerEnded(f"{handle.strategy} recognizer ended unexpectedly"))

    handle.task = asyncio.get_running_loop().create_task(_runner(), name=f"asr-{handle.strategy}")
    return handle.task


async def close_handle(handle: StrategyHandle) -> None:
    handle.closing = True
    task = handle.task
    if task is None or task.done():
        return
    if task is asyncio.current_task():
        return
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

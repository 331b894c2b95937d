from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence

from parley.app.logging_setup import log_event
from parley.asr.base import StrategyHandle, TranscriptionStrategy
from parley.contracts import TranscriptSegment
from parley.errors import TranscriptionUnavailable, TransportError, UnsupportedPlatform
from parley.retry import RetryPolicy


class TranscriptionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class _Event:
    kind: str
    token: int
    payload: Any


class TranscriptionManager:
    """
    Owns at most one running transcription strategy.

    Strategy callbacks never act directly: they post events tagged with the handle's
    token onto one queue consumed by a supervisor task, and events from superseded
    handles are dropped. Unexpected terminations restart the same strategy with
    backoff while the retry policy allows it (the count resets whenever a segment
    arrives), then fall back to the next strategy in priority order. When nothing is
    left the manager enters ERROR and reports through `on_fatal`.
    """

    def __init__(
        self,
        strategies: Sequence[TranscriptionStrategy],
        *,
        on_segment: Callable[[TranscriptSegment], None],
        on_fatal: Callable[[BaseException], None] | None = None,
        on_idle: Callable[[], None] | None = None,
        on_state: Callable[[TranscriptionState], None] | None = None,
        retry: RetryPolicy | None = None,
        idle_timeout: float | None = 120.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._strategies = list(strategies)
        self._on_segment = on_segment
        self._on_fatal = on_fatal
        self._on_idle = on_idle
        self._on_state = on_state
        self._retry = retry or RetryPolicy()
        self.idle_timeout = idle_timeout
        self._sleep = sleep
        self._logger = logger

        self._state = TranscriptionState.IDLE
        self._running = False
        self._language = ""
        self._token = 0
        self._index = -1
        self._restarts = 0
        self._handle: StrategyHandle | None = None
        self._events: asyncio.Queue[_Event] = asyncio.Queue()
        self._supervisor: asyncio.Task | None = None
        self._idle_task: asyncio.Task | None = None
        self._last_activity = 0.0

    @property
    def state(self) -> TranscriptionState:
        return self._state

    @property
    def running(self) -> bool:
        return self._running

    @property
    def active_strategy(self) -> str | None:
        if self._handle is None:
            return None
        return self._handle.strategy

    @property
    def restarts(self) -> int:
        return self._restarts

    def _set_state(self, state: TranscriptionState) -> None:
        if state == self._state:
            return
        self._state = state
        log_event(self._logger, logging.INFO, "transcription_state", state=state.value)
        if self._on_state is not None:
            self._on_state(state)

    async def start(self, language: str) -> None:
        if self._running:
            return
        self._running = True
        self._language = language
        self._restarts = 0
        self._events = asyncio.Queue()
        loop = asyncio.get_running_loop()
        try:
            await self._start_from(0)
        except BaseException:
            self._running = False
            raise
        self._last_activity = loop.time()
        self._supervisor = loop.create_task(self._supervise(), name="asr-supervisor")
        if self.idle_timeout:
            self._idle_task = loop.create_task(self._watch_idle(), name="asr-idle")

    async def _start_from(self, first: int) -> None:
        last_exc: BaseException | None = None
        tried = 0
        for index in range(first, len(self._strategies)):
            strategy = self._strategies[index]
            if not strategy.available():
                log_event(self._logger, logging.INFO, "strategy_unavailable", strategy=strategy.name)
                continue
            tried += 1
            try:
                await self._start_at(index)
                return
            except Exception as exc:
                last_exc = exc
                log_event(
                    self._logger,
                    logging.WARNING,
                    "strategy_start_failed",
                    strategy=strategy.name,
                    error=str(exc) or type(exc).__name__,
                )
        self._set_state(TranscriptionState.ERROR)
        if tried == 0 and first == 0:
            raise UnsupportedPlatform("No transcription strategy is available on this system.")
        if last_exc is None:
            raise TranscriptionUnavailable("No fallback transcription strategy is available.")
        raise TranscriptionUnavailable(f"All transcription strategies failed: {last_exc}") from last_exc

    async def _start_at(self, index: int, *, restart: bool = False) -> None:
        strategy = self._strategies[index]
        self._index = index
        self._token += 1
        token = self._token
        self._set_state(TranscriptionState.CONNECTING)
        begin = strategy.restart if restart else strategy.start
        handle = await begin(self._language, self._segment_callback(token), self._error_callback(token))
        if not self._running or token != self._token:
            await strategy.stop(handle)
            return
        self._handle = handle
        self._set_state(TranscriptionState.CONNECTED)
        log_event(self._logger, logging.INFO, "strategy_started", strategy=strategy.name, restarts=self._restarts)

    def _segment_callback(self, token: int) -> Callable[[TranscriptSegment], None]:
        def _callback(segment: TranscriptSegment) -> None:
            self._post(_Event("segment", token, segment))

        return _callback

    def _error_callback(self, token: int) -> Callable[[BaseException], None]:
        def _callback(exc: BaseException) -> None:
            self._post(_Event("error", token, exc))

        return _callback

    def _post(self, event: _Event) -> None:
        if self._running and event.token == self._token:
            self._events.put_nowait(event)

    async def _supervise(self) -> None:
        while self._running:
            event = await self._events.get()
            if event.token != self._token:
                continue
            if event.kind == "segment":
                self._restarts = 0
                self._last_activity = asyncio.get_running_loop().time()
                self._on_segment(event.payload)
            else:
                await self._recover(event.payload)

    async def _recover(self, exc: BaseException) -> None:
        await self._teardown()
        self._set_state(TranscriptionState.DISCONNECTED)
        while self._running:
            if self._retry.should_retry(exc, self._restarts + 1):
                self._restarts += 1
                delay = self._retry.delay_for(self._restarts)
                log_event(
                    self._logger,
                    logging.INFO,
                    "strategy_restart",
                    strategy=self._strategies[self._index].name,
                    attempt=self._restarts,
                    delay=delay,
                    error=str(exc),
                )
                await self._sleep(delay)
                if not self._running:
                    return
                try:
                    await self._start_at(self._index, restart=True)
                    return
                except Exception as restart_exc:
                    exc = restart_exc
                    continue

            log_event(
                self._logger,
                logging.WARNING,
                "strategy_fallback",
                strategy=self._strategies[self._index].name,
                error=str(exc),
            )
            self._restarts = 0
            if self._index + 1 >= len(self._strategies):
                self._fail(_exhausted(exc))
                return
            try:
                await self._start_from(self._index + 1)
            except (TranscriptionUnavailable, UnsupportedPlatform) as fatal:
                self._fail(fatal)
            return

    def _fail(self, exc: BaseException) -> None:
        self._running = False
        self._token += 1
        self._set_state(TranscriptionState.ERROR)
        log_event(self._logger, logging.ERROR, "transcription_failed", error=str(exc))
        idle, self._idle_task = self._idle_task, None
        if idle is not None and not idle.done() and idle is not asyncio.current_task():
            idle.cancel()
        if self._on_fatal is not None:
            self._on_fatal(exc)

    async def _teardown(self) -> None:
        handle, self._handle = self._handle, None
        self._token += 1
        if handle is None:
            return
        strategy = self._strategies[self._index]
        try:
            await strategy.stop(handle)
        except Exception as e:
            log_event(self._logger, logging.WARNING, "strategy_stop_failed", strategy=strategy.name, error=str(e))

    async def _watch_idle(self) -> None:
        assert self.idle_timeout
        loop = asyncio.get_running_loop()
        while self._running:
            remaining = self._last_activity + float(self.idle_timeout) - loop.time()
            if remaining <= 0:
                log_event(self._logger, logging.INFO, "transcription_idle_timeout", timeout=self.idle_timeout)
                await self.stop()
                if self._on_idle is not None:
                    self._on_idle()
                return
            await asyncio.sleep(remaining)

    async def stop(self) -> None:
        if not self._running and self._handle is None:
            return
        self._running = False
        current = asyncio.current_task()
        tasks = [self._supervisor, self._idle_task]
        self._supervisor = None
        self._idle_task = None
        for task in tasks:
            if task is not None and task is not current and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        await self._teardown()
        self._set_state(TranscriptionState.IDLE)
        log_event(self._logger, logging.INFO, "transcription_stopped")

    async def aclose(self) -> None:
        await self.stop()
        for strategy in self._strategies:
            await strategy.aclose()


def _exhausted(exc: BaseException) -> TranscriptionUnavailable:
    if isinstance(exc, TransportError) and exc.fallback:
        return TranscriptionUnavailable(f"Transcription rejected and no fallback is left: {exc}")
    return TranscriptionUnavailable(f"Transcription kept failing and no fallback is left: {exc}")

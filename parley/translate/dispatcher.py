from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Mapping

from parley.app.logging_setup import log_event
from parley.contracts import Speaker, TranslationRequest, TranslationResult
from parley.errors import ProviderError, ServiceUnavailable
from parley.languages import same_base_language
from parley.translate.base import Translator
from parley.translate.cache import TranslationCache
from parley.translate.routing import ProviderId, ProviderRouter

FALLBACK_MARKER = "[Fallback Translation]"


def degraded_result(text: str) -> TranslationResult:
    return TranslationResult(
        translation=f"{FALLBACK_MARKER} {text}",
        speaker=Speaker.UNKNOWN,
        provider="fallback",
        degraded=True,
    )


@dataclass
class _QueueItem:
    request: TranslationRequest
    future: "asyncio.Future[TranslationResult]"
    generation: int


class TranslationDispatcher:
    """
    Serialized translation queue.

    One worker task drains the queue one item at a time, so providers never see two
    concurrent requests and results are delivered in enqueue order. `translate` never
    raises for provider failures: the worst case is a degraded result.
    """

    def __init__(
        self,
        translators: Mapping[ProviderId, Translator],
        *,
        router: ProviderRouter | None = None,
        cache: TranslationCache | None = None,
        on_result: Callable[[TranslationRequest, TranslationResult], None] | None = None,
        failure_delay: float = 1.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._translators = dict(translators)
        self.router = router or ProviderRouter()
        self.cache = cache if cache is not None else TranslationCache()
        self.on_result = on_result
        self.failure_delay = float(failure_delay)
        self._logger = logger
        self._queue: Deque[_QueueItem] = deque()
        self._worker: asyncio.Task | None = None
        self._busy = False
        self._generation = 0

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def busy(self) -> bool:
        return self._busy

    def translator_for(self, provider: ProviderId) -> Translator | None:
        return self._translators.get(provider)

    def enqueue(
        self,
        text: str,
        input_lang: str,
        output_lang: str,
        model: str,
    ) -> "asyncio.Future[TranslationResult]":
        loop = asyncio.get_running_loop()
        future: asyncio.Future[TranslationResult] = loop.create_future()
        request = TranslationRequest(text=text, input_lang=input_lang, output_lang=output_lang, model=model)
        self._queue.append(_QueueItem(request=request, future=future, generation=self._generation))
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain(), name="translation-dispatcher")
        return future

    async def _drain(self) -> None:
        while self._queue:
            item = self._queue.popleft()
            self._busy = True
            failed = False
            try:
                result = await self._translate(item.request, item.generation)
            except asyncio.CancelledError:
                item.future.cancel()
                raise
            except Exception as exc:
                failed = True
                log_event(
                    self._logger,
                    logging.ERROR,
                    "translation_item_failed",
                    error=str(exc) or type(exc).__name__,
                )
                result = degraded_result(item.request.text)
            finally:
                self._busy = False

            if item.generation != self._generation:
                item.future.cancel()
            else:
                if not item.future.done():
                    item.future.set_result(result)
                self._deliver(item.request, result)
            if failed:
                await asyncio.sleep(self.failure_delay)

    def _deliver(self, request: TranslationRequest, result: TranslationResult) -> None:
        if self.on_result is None:
            return
        try:
            self.on_result(request, result)
        except Exception as exc:
            log_event(
                self._logger,
                logging.ERROR,
                "translation_delivery_failed",
                error=str(exc) or type(exc).__name__,
                error_type=type(exc).__name__,
            )

    async def translate(self, request: TranslationRequest) -> TranslationResult:
        return await self._translate(request, self._generation)

    async def _translate(self, request: TranslationRequest, generation: int) -> TranslationResult:
        if same_base_language(request.input_lang, request.output_lang):
            return TranslationResult(translation=request.text, speaker=Speaker.UNKNOWN, provider="identity")

        cached = self.cache.get(request.cache_key)
        if cached is not None:
            log_event(self._logger, logging.DEBUG, "translation_cache_hit", model=request.model)
            return cached

        primary = self.router.primary_for(request.model)
        try:
            result = await self._attempt(primary, request.model, request)
        except ProviderError as exc:
            secondary = self.router.secondary_for(primary)
            log_event(
                self._logger,
                logging.WARNING,
                "translation_failover",
                primary=primary.value,
                secondary=secondary.value,
                unavailable=isinstance(exc, ServiceUnavailable),
                status=exc.status,
                error=str(exc),
            )
            translator = self._translators.get(secondary)
            fallback_model = translator.default_model if translator is not None else self.router.default_model(secondary)
            try:
                result = await self._attempt(secondary, fallback_model, request)
            except ProviderError as exc2:
                log_event(
                    self._logger,
                    logging.ERROR,
                    "translation_degraded",
                    primary_error=str(exc),
                    secondary_error=str(exc2),
                )
                return degraded_result(request.text)

        if generation == self._generation:
            self.cache.put(request.cache_key, result)
        return result

    async def _attempt(self, provider: ProviderId, model: str, request: TranslationRequest) -> TranslationResult:
        translator = self._translators.get(provider)
        if translator is None:
            raise ProviderError(f"{provider.value} is not configured", provider=provider.value)
        return await translator.translate(request.text, request.input_lang, request.output_lang, model)

    def clear_pending(self) -> int:
        self._generation += 1
        dropped = 0
        while self._queue:
            self._queue.popleft().future.cancel()
            dropped += 1
        if dropped:
            log_event(self._logger, logging.INFO, "translation_queue_cleared", dropped=dropped)
        return dropped

    def reset(self) -> None:
        self.clear_pending()
        self.cache.clear()

    async def aclose(self) -> None:
        self.clear_pending()
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)
        for translator in self._translators.values():
            await translator.aclose()

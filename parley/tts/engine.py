from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Protocol

import numpy as np

from parley.app.logging_setup import log_event
from parley.audio.mic import load_sounddevice
from parley.audio.pcm import resample_linear
from parley.tts.synth import HttpSpeechSynthesizer

END_COMPLETED = "completed"
END_INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class Voice:
    name: str
    locale: str


@dataclass(eq=False)
class Utterance:
    text: str
    lang: str
    voice: Optional[Voice] = None
    rate: float = 1.0
    volume: float = 1.0
    on_start: Optional[Callable[[], None]] = None
    on_end: Optional[Callable[[str], None]] = None


class SpeechEngine(Protocol):
    @property
    def speaking(self) -> bool: ...

    @property
    def pending(self) -> bool: ...

    def voices(self) -> List[Voice]: ...

    def speak(self, utterance: Utterance) -> None: ...

    def cancel(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...


def _default_output_factory(**kwargs: Any) -> Any:
    return load_sounddevice().OutputStream(**kwargs)


class _Playback:
    def __init__(self, samples: np.ndarray, loop: asyncio.AbstractEventLoop) -> None:
        self.samples = samples
        self.pos = 0
        self.paused = False
        self.done = asyncio.Event()
        self._loop = loop
        self._signalled = False

    def callback(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        if self.paused or self._signalled:
            outdata.fill(0)
            return
        chunk = self.samples[self.pos : self.pos + frames]
        n = len(chunk)
        outdata[:n, 0] = chunk
        outdata[n:] = 0
        self.pos += n
        if self.pos >= len(self.samples):
            self._signalled = True
            try:
                self._loop.call_soon_threadsafe(self.done.set)
            except RuntimeError:
                # Loop already closed.
                return


class SoundDeviceSpeechEngine:
    """
    Speech engine that synthesizes over HTTP and plays through a sounddevice OutputStream.
    One utterance at a time; `speak` replaces whatever is playing.
    """

    def __init__(
        self,
        synthesizer: HttpSpeechSynthesizer,
        *,
        voices: Iterable[Voice] = (),
        device: Optional[int] = None,
        stream_factory: Callable[..., Any] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._synth = synthesizer
        self._voices = list(voices)
        self.device = device
        self._stream_factory = stream_factory or _default_output_factory
        self._logger = logger
        self._current: Utterance | None = None
        self._task: asyncio.Task | None = None
        self._playback: _Playback | None = None
        self._pending = False

    @property
    def speaking(self) -> bool:
        return self._playback is not None and not self._playback.paused

    @property
    def pending(self) -> bool:
        return self._pending

    def voices(self) -> List[Voice]:
        return list(self._voices)

    def speak(self, utterance: Utterance) -> None:
        self.cancel()
        self._current = utterance
        self._pending = True
        self._task = asyncio.get_running_loop().create_task(self._play(utterance), name="tts-play")

    async def _play(self, utterance: Utterance) -> None:
        try:
            samples, rate = await self._synth.synthesize(
                utterance.text,
                voice=utterance.voice.name if utterance.voice else None,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._pending = False
            log_event(self._logger, logging.WARNING, "tts_synthesis_failed", error=str(e))
            self._finish(utterance, f"synthesis-failed: {e}")
            return

        if utterance.rate and utterance.rate != 1.0:
            samples = resample_linear(samples, int(rate * utterance.rate), rate)
        samples = np.clip(samples * float(utterance.volume), -1.0, 1.0).astype(np.float32)

        playback = _Playback(samples, asyncio.get_running_loop())
        try:
            stream = self._stream_factory(
                samplerate=rate,
                channels=1,
                dtype="float32",
                device=self.device,
                callback=playback.callback,
            )
            stream.start()
        except Exception as e:
            self._pending = False
            log_event(self._logger, logging.WARNING, "tts_output_failed", error=str(e))
            self._finish(utterance, f"audio-output-failed: {e}")
            return

        self._pending = False
        self._playback = playback
        if utterance.on_start is not None:
            utterance.on_start()
        try:
            await playback.done.wait()
        finally:
            self._playback = None
            stream.stop()
            stream.close()
        self._finish(utterance, END_COMPLETED)

    def _finish(self, utterance: Utterance, reason: str) -> None:
        if self._current is not utterance:
            return
        self._current = None
        self._task = None
        if utterance.on_end is not None:
            utterance.on_end(reason)

    def cancel(self) -> None:
        utterance = self._current
        task, self._task = self._task, None
        self._pending = False
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._playback = None
        if utterance is not None:
            self._finish(utterance, END_INTERRUPTED)

    def pause(self) -> None:
        if self._playback is not None:
            self._playback.paused = True

    def resume(self) -> None:
        if self._playback is not None:
            self._playback.paused = False

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import numpy as np

from parley.app.logging_setup import log_event
from parley.audio.level import LevelMeter
from parley.audio.pcm import StreamResampler, downmix_to_mono, float_to_pcm16
from parley.contracts import AudioChunk
from parley.errors import DeviceUnavailable, MicError, PermissionDenied, UnsupportedPlatform

_PERMISSION_MARKERS = ("permission", "denied", "not authorized", "notallowed", "access")


def load_sounddevice():
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        raise UnsupportedPlatform(
            "Audio capture backend unavailable. Install sounddevice and the PortAudio library."
        ) from e
    return sd


def _default_stream_factory(**kwargs: Any) -> Any:
    return load_sounddevice().InputStream(**kwargs)


def classify_open_error(exc: BaseException) -> MicError:
    detail = str(exc) or type(exc).__name__
    lowered = detail.lower()
    if isinstance(exc, PermissionError) or any(m in lowered for m in _PERMISSION_MARKERS):
        return PermissionDenied(f"Microphone permission denied: {detail}")
    return DeviceUnavailable(
        f"Failed to open microphone stream ({detail}). "
        "Try --list-devices and select a device id with --device."
    )


def _queue_put_drop_oldest(q: "asyncio.Queue[AudioChunk | None]", item: AudioChunk | None) -> bool:
    try:
        q.put_nowait(item)
        return False
    except asyncio.QueueFull:
        try:
            _ = q.get_nowait()
        except asyncio.QueueEmpty:
            return False
        try:
            q.put_nowait(item)
        except asyncio.QueueFull:
            pass
        return True


class MicCapture:
    """
    Live microphone capture using the `sounddevice` package (PortAudio).

    PortAudio calls back on its own thread; samples hop onto the event loop through
    `call_soon_threadsafe` and are fanned out, as mono PCM16 at `target_rate`, to every
    subscriber queue. The level meter sees the raw (pre-resample) mono signal.
    """

    def __init__(
        self,
        *,
        sample_rate: int = 48000,
        channels: int = 1,
        blocksize: int = 1024,
        device: Optional[int] = None,
        target_rate: int = 16000,
        meter: LevelMeter | None = None,
        queue_size: int = 200,
        stream_factory: Callable[..., Any] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if sample_rate <= 0 or target_rate <= 0:
            raise ValueError("sample rates must be > 0")
        if channels not in (1, 2):
            raise ValueError("channels must be 1 or 2")
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.blocksize = int(blocksize)
        self.device = device
        self.target_rate = int(target_rate)
        self.meter = meter if meter is not None else LevelMeter()
        self.queue_size = int(queue_size)
        self._stream_factory = stream_factory or _default_stream_factory
        self._logger = logger
        self._stream: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._subscribers: list[asyncio.Queue[AudioChunk | None]] = []
        self._frames_out = 0
        self._resampler = StreamResampler(self.sample_rate, self.target_rate)
        self.dropped_chunks = 0

    @staticmethod
    def list_devices() -> str:
        return str(load_sounddevice().query_devices())

    @property
    def is_active(self) -> bool:
        return self._stream is not None

    @property
    def volume_level(self) -> float:
        return self.meter.level

    async def acquire(self) -> None:
        if self._stream is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._frames_out = 0
        self._resampler.reset()
        self._stream = await asyncio.to_thread(self._open)
        self.meter.start()
        log_event(
            self._logger,
            logging.INFO,
            "mic_acquired",
            device=self.device,
            sample_rate=self.sample_rate,
            channels=self.channels,
        )

    def _open(self) -> Any:
        try:
            stream = self._stream_factory(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                blocksize=self.blocksize,
                device=self.device,
                callback=self._on_audio,
            )
        except UnsupportedPlatform:
            raise
        except Exception as e:
            raise classify_open_error(e) from e
        try:
            stream.start()
        except Exception as e:
            try:
                stream.close()
            except Exception:
                pass
            raise classify_open_error(e) from e
        return stream

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        loop = self._loop
        if loop is None:
            return
        mono = downmix_to_mono(np.array(indata, dtype=np.float32, copy=True))
        try:
            loop.call_soon_threadsafe(self.feed, mono)
        except RuntimeError:
            # Loop already closed; capture is being torn down.
            return

    def feed(self, samples: np.ndarray) -> None:
        mono = downmix_to_mono(samples)
        self.meter.push(mono)
        resampled = self._resampler.process(mono)
        if resampled.size == 0:
            return
        chunk = AudioChunk(
            pcm16=float_to_pcm16(resampled),
            sample_rate=self.target_rate,
            channels=1,
            start_time=self._frames_out / float(self.target_rate),
            duration=resampled.size / float(self.target_rate),
        )
        self._frames_out += int(resampled.size)
        for q in list(self._subscribers):
            if _queue_put_drop_oldest(q, chunk):
                self.dropped_chunks += 1

    def subscribe(self) -> "asyncio.Queue[AudioChunk | None]":
        q: asyncio.Queue[AudioChunk | None] = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: "asyncio.Queue[AudioChunk | None]") -> None:
        if q in self._subscribers:
            self._subscribers.remove(q)

    def release(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
            except Exception as e:
                log_event(self._logger, logging.WARNING, "mic_stop_failed", error=str(e))
            try:
                stream.close()
            except Exception as e:
                log_event(self._logger, logging.WARNING, "mic_close_failed", error=str(e))
        subscribers, self._subscribers = self._subscribers, []
        for q in subscribers:
            _queue_put_drop_oldest(q, None)
        try:
            self.meter.stop()
        except Exception as e:
            log_event(self._logger, logging.WARNING, "meter_stop_failed", error=str(e))
        self._loop = None
        if stream is not None:
            log_event(self._logger, logging.INFO, "mic_released", dropped_chunks=self.dropped_chunks)

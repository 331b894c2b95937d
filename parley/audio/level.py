from __future__ import annotations

import asyncio
import contextlib

import numpy as np


class LevelMeter:
    """
    Rolling 0..1 input level for visualization.

    Mirrors an analyser node: the latest `fft_size` samples are Blackman-windowed,
    transformed, smoothed over time, mapped from dB onto byte bins 0..255 and
    averaged. The meter only observes samples pushed to it and never blocks capture.
    """

    def __init__(
        self,
        *,
        fft_size: int = 256,
        min_db: float = -100.0,
        max_db: float = -30.0,
        smoothing: float = 0.8,
        interval: float = 1.0 / 60.0,
    ) -> None:
        if fft_size <= 0 or fft_size % 2:
            raise ValueError("fft_size must be a positive even number")
        if max_db <= min_db:
            raise ValueError("max_db must be > min_db")
        if not 0.0 <= smoothing < 1.0:
            raise ValueError("smoothing must be in [0, 1)")
        self.fft_size = int(fft_size)
        self.min_db = float(min_db)
        self.max_db = float(max_db)
        self.smoothing = float(smoothing)
        self.interval = float(interval)
        self._buffer = np.zeros(self.fft_size, dtype=np.float32)
        self._window = np.blackman(self.fft_size).astype(np.float32)
        self._smoothed = np.zeros(self.fft_size // 2, dtype=np.float64)
        self._level = 0.0
        self._task: asyncio.Task | None = None

    @property
    def level(self) -> float:
        return self._level

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def push(self, samples: np.ndarray) -> None:
        arr = np.asarray(samples, dtype=np.float32).reshape(-1)
        if arr.size >= self.fft_size:
            self._buffer = arr[-self.fft_size :].copy()
            return
        self._buffer = np.concatenate((self._buffer[arr.size :], arr))

    def byte_frequency_data(self) -> np.ndarray:
        spectrum = np.abs(np.fft.rfft(self._buffer * self._window))[: self.fft_size // 2] / self.fft_size
        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * spectrum
        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(self._smoothed)
        scaled = np.floor((255.0 / (self.max_db - self.min_db)) * (db - self.min_db))
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)

    def compute(self) -> float:
        bins = self.byte_frequency_data()
        self._level = float(bins.mean()) / 255.0 if bins.size else 0.0
        return self._level

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="level-meter")

    async def _run(self) -> None:
        while True:
            self.compute()
            await asyncio.sleep(self.interval)

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self._buffer = np.zeros(self.fft_size, dtype=np.float32)
        self._smoothed = np.zeros(self.fft_size // 2, dtype=np.float64)
        self._level = 0.0

    async def aclose(self) -> None:
        task = self._task
        self.stop()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

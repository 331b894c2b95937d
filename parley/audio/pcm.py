from __future__ import annotations

import io
import wave

import numpy as np


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert float samples in [-1, 1] to little-endian int16 bytes."""
    arr = np.clip(np.asarray(samples, dtype=np.float32).reshape(-1), -1.0, 1.0)
    scaled = np.where(arr < 0, arr * 0x8000, arr * 0x7FFF)
    return scaled.astype("<i2").tobytes()


def pcm16_to_float(pcm16: bytes) -> np.ndarray:
    usable = len(pcm16) - (len(pcm16) % 2)
    if usable <= 0:
        return np.zeros(0, dtype=np.float32)
    ints = np.frombuffer(pcm16[:usable], dtype="<i2").astype(np.float32)
    return np.where(ints < 0, ints / 0x8000, ints / 0x7FFF).astype(np.float32)


def downmix_to_mono(samples: np.ndarray) -> np.ndarray:
    arr = np.asarray(samples, dtype=np.float32)
    if arr.ndim == 1:
        return arr
    return arr.mean(axis=1).astype(np.float32)


def resample_linear(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    arr = np.asarray(samples, dtype=np.float32).reshape(-1)
    if src_rate == dst_rate or arr.size == 0:
        return arr
    if src_rate <= 0 or dst_rate <= 0:
        raise ValueError("sample rates must be > 0")
    out_len = max(1, int(round(arr.size * float(dst_rate) / float(src_rate))))
    src_pos = np.arange(out_len, dtype=np.float64) * (float(src_rate) / float(dst_rate))
    return np.interp(src_pos, np.arange(arr.size), arr).astype(np.float32)


class StreamResampler:
    """
    Linear resampler for consecutive blocks of one stream.

    The read position and the last input sample carry over between calls, so the
    output matches resampling the concatenated input in one go.
    """

    def __init__(self, src_rate: int, dst_rate: int) -> None:
        if src_rate <= 0 or dst_rate <= 0:
            raise ValueError("sample rates must be > 0")
        self.src_rate = int(src_rate)
        self.dst_rate = int(dst_rate)
        self._step = float(src_rate) / float(dst_rate)
        self.reset()

    def reset(self) -> None:
        self._pos = 0.0
        self._tail: np.ndarray | None = None

    def process(self, samples: np.ndarray) -> np.ndarray:
        arr = np.asarray(samples, dtype=np.float32).reshape(-1)
        if self.src_rate == self.dst_rate:
            return arr
        buf = arr if self._tail is None else np.concatenate([self._tail, arr])
        if buf.size == 0:
            return arr
        last = buf.size - 1
        if self._pos > last:
            count = 0
        else:
            count = int(np.floor((last - self._pos) / self._step)) + 1
        positions = self._pos + self._step * np.arange(count, dtype=np.float64)
        out = np.interp(positions, np.arange(buf.size), buf).astype(np.float32)
        # Next call's buffer starts at this call's last sample.
        self._pos = self._pos + self._step * count - last
        self._tail = buf[-1:].copy()
        return out


def pcm16_to_wav(pcm16: bytes, sample_rate: int, channels: int = 1) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm16)
    return buf.getvalue()


def wav_to_float(data: bytes) -> tuple[np.ndarray, int]:
    """Decode a PCM16 WAV payload to mono float32 samples and its sample rate."""
    with wave.open(io.BytesIO(data), "rb") as wf:
        if wf.getsampwidth() != 2:
            raise ValueError(f"unsupported WAV sample width: {wf.getsampwidth()}")
        channels = wf.getnchannels()
        rate = wf.getframerate()
        frames = wf.readframes(wf.getnframes())
    samples = pcm16_to_float(frames)
    if channels > 1:
        samples = downmix_to_mono(samples[: samples.size - samples.size % channels].reshape(-1, channels))
    return samples, rate

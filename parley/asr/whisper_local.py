from __future__ import annotations

import importlib.util
from typing import Optional

from parley.audio.pcm import pcm16_to_float, resample_linear
from parley.errors import UnsupportedPlatform

WHISPER_SAMPLE_RATE = 16000


def dedupe_repeated_words(text: str, max_repeat: int = 2) -> str:
    words = text.split()
    if not words:
        return ""
    out = []
    prev = None
    run = 0
    for w in words:
        wl = w.lower()
        if wl == prev:
            run += 1
        else:
            prev = wl
            run = 1
        if run <= max_repeat:
            out.append(w)
    return " ".join(out).strip()


class FasterWhisperRecognizer:
    def __init__(
        self,
        *,
        model_size: str = "tiny",
        device: str = "cpu",
        compute_type: str = "int8",
        beam_size: int = 1,
    ) -> None:
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.beam_size = beam_size
        self._model = None

    def available(self) -> bool:
        return self._model is not None or importlib.util.find_spec("faster_whisper") is not None

    def _get_model(self):
        if self._model is None:
            try:
                from faster_whisper import WhisperModel
            except ImportError as e:
                raise UnsupportedPlatform(
                    "faster-whisper is not installed. Install with: python -m pip install faster-whisper"
                ) from e

            self._model = WhisperModel(
                self.model_size,
                device=self.device,
                compute_type=self.compute_type,
            )
        return self._model

    def load(self) -> None:
        self._get_model()

    def transcribe(self, pcm16: bytes, sample_rate: int, language: Optional[str] = None) -> str:
        if not pcm16:
            return ""
        audio = pcm16_to_float(pcm16)
        if sample_rate != WHISPER_SAMPLE_RATE:
            audio = resample_linear(audio, sample_rate, WHISPER_SAMPLE_RATE)
        segments, _info = self._get_model().transcribe(
            audio,
            language=language or None,
            beam_size=self.beam_size,
            vad_filter=False,
            condition_on_previous_text=False,
        )
        texts = [(s.text or "").strip() for s in segments]
        return dedupe_repeated_words(" ".join(t for t in texts if t))

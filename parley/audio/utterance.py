from __future__ import annotations

from dataclasses import dataclass

from parley.audio.vad import EnergyVAD
from parley.contracts import AudioChunk


@dataclass(frozen=True)
class UtteranceEvent:
    pcm16: bytes
    sample_rate: int
    t0: float
    is_final: bool
    reason: str


class UtteranceChunker:
    """
    Push-based utterance detector.

    Incoming chunks are regrouped into fixed `window_sec` windows and classified by the
    VAD. An utterance is finalized after `silence_chunks` non-speech windows, or forced
    once it reaches `max_utter_sec`. With `interim_every` > 0 the growing utterance is
    also emitted as an interim event every N speech windows.
    """

    def __init__(
        self,
        vad: EnergyVAD,
        *,
        window_sec: float = 0.5,
        silence_chunks: int = 2,
        min_utter_sec: float = 0.6,
        max_utter_sec: float | None = 6.0,
        interim_every: int = 0,
    ) -> None:
        if window_sec <= 0:
            raise ValueError("window_sec must be > 0")
        if silence_chunks <= 0:
            raise ValueError("silence_chunks must be > 0")
        if min_utter_sec < 0:
            raise ValueError("min_utter_sec must be >= 0")
        if max_utter_sec is not None and max_utter_sec <= 0:
            raise ValueError("max_utter_sec must be > 0 when set")
        if interim_every < 0:
            raise ValueError("interim_every must be >= 0")
        self.vad = vad
        self.window_sec = float(window_sec)
        self.silence_chunks = int(silence_chunks)
        self.min_utter_sec = float(min_utter_sec)
        self.max_utter_sec = float(max_utter_sec) if max_utter_sec is not None else None
        self.interim_every = int(interim_every)
        self._reset_utterance()
        self._window = bytearray()
        self._window_t0 = 0.0
        self._sample_rate = 0

    def _reset_utterance(self) -> None:
        self._parts: list[bytes] = []
        self._utter_t0 = 0.0
        self._in_utterance = False
        self._trailing_silence = 0
        self._speech_windows = 0

    def _seconds(self, nbytes: int) -> float:
        if self._sample_rate <= 0:
            return 0.0
        return nbytes / float(self._sample_rate * 2)

    def push(self, chunk: AudioChunk) -> list[UtteranceEvent]:
        if chunk.channels != 1:
            raise ValueError("UtteranceChunker expects mono audio")
        if self._sample_rate and chunk.sample_rate != self._sample_rate:
            raise ValueError("sample rate changed mid-stream")
        self._sample_rate = int(chunk.sample_rate)
        if not self._window:
            self._window_t0 = float(chunk.start_time)
        self._window.extend(chunk.pcm16)

        window_bytes = max(2, int(round(self.window_sec * self._sample_rate)) * 2)
        events: list[UtteranceEvent] = []
        while len(self._window) >= window_bytes:
            window = bytes(self._window[:window_bytes])
            del self._window[:window_bytes]
            events.extend(self._process_window(window, self._window_t0))
            self._window_t0 += self.window_sec
        return events

    def _process_window(self, window: bytes, t0: float) -> list[UtteranceEvent]:
        if self.vad.is_speech(window):
            if not self._in_utterance:
                self._in_utterance = True
                self._parts = []
                self._utter_t0 = t0
                self._speech_windows = 0
            self._parts.append(window)
            self._trailing_silence = 0
            self._speech_windows += 1

            utter_sec = self._seconds(sum(len(p) for p in self._parts))
            if self.max_utter_sec is not None and utter_sec >= self.max_utter_sec:
                return self._finalize("max_utter_sec")
            if self.interim_every and self._speech_windows % self.interim_every == 0:
                return [
                    UtteranceEvent(
                        pcm16=b"".join(self._parts),
                        sample_rate=self._sample_rate,
                        t0=self._utter_t0,
                        is_final=False,
                        reason="interim",
                    )
                ]
            return []

        if self._in_utterance:
            self._trailing_silence += 1
            if self._trailing_silence >= self.silence_chunks:
                return self._finalize("silence")
        return []

    def _finalize(self, reason: str) -> list[UtteranceEvent]:
        pcm16 = b"".join(self._parts)
        t0 = self._utter_t0
        self._reset_utterance()
        if self._seconds(len(pcm16)) < self.min_utter_sec:
            return []
        return [
            UtteranceEvent(
                pcm16=pcm16,
                sample_rate=self._sample_rate,
                t0=t0,
                is_final=True,
                reason=reason,
            )
        ]

    def flush(self) -> list[UtteranceEvent]:
        if self._in_utterance and self._window:
            self._parts.append(bytes(self._window))
        self._window = bytearray()
        if not self._in_utterance or not self._parts:
            self._reset_utterance()
            return []
        return self._finalize("stream_end")

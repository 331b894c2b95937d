from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Speaker(str, Enum):
    PATIENT = "patient"
    PROVIDER = "provider"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> "Speaker":
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.UNKNOWN


@dataclass(frozen=True)
class AudioChunk:
    """
    Mono PCM16 audio captured from the microphone, already resampled for transport.
    pcm16: little-endian signed 16-bit PCM bytes.
    """
    pcm16: bytes
    sample_rate: int
    channels: int
    start_time: float  # seconds since capture start
    duration: float    # seconds


@dataclass(frozen=True)
class TranscriptSegment:
    text: str
    is_final: bool
    speaker: Speaker = Speaker.UNKNOWN


@dataclass(frozen=True)
class TranslationSegment:
    text: str
    speaker: Speaker = Speaker.UNKNOWN


@dataclass(frozen=True)
class TranslationRequest:
    text: str
    input_lang: str
    output_lang: str
    model: str

    @property
    def cache_key(self) -> tuple[str, str, str, str]:
        return (self.text, self.input_lang, self.output_lang, self.model)


@dataclass(frozen=True)
class TranslationResult:
    translation: str
    speaker: Speaker = Speaker.UNKNOWN
    provider: str = ""
    degraded: bool = False


class BannerKind(str, Enum):
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class Banner:
    kind: BannerKind
    message: str

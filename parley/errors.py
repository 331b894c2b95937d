from __future__ import annotations


class ParleyError(RuntimeError):
    pass


class MicError(ParleyError):
    pass


class PermissionDenied(MicError):
    pass


class DeviceUnavailable(MicError):
    pass


class UnsupportedPlatform(ParleyError):
    pass


class TranscriptionUnavailable(ParleyError):
    pass


class TransportError(ParleyError):
    """
    Failure talking to a transcription backend.
    `status` is the HTTP status when one was received (None for network failures).
    `fallback` marks failures that should move on to the next strategy instead of retrying.
    """

    def __init__(self, message: str, *, status: int | None = None, fallback: bool = False) -> None:
        super().__init__(message)
        self.status = status
        self.fallback = bool(fallback or status in (401, 403))

    @property
    def retryable(self) -> bool:
        if self.fallback:
            return False
        if self.status is None:
            return True
        return self.status == 429 or self.status >= 500


class RecognizerEnded(TransportError):
    pass


class ProviderError(ParleyError):
    def __init__(self, message: str, *, status: int | None = None, provider: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.provider = provider


class ServiceUnavailable(ProviderError):
    pass


class SpeechError(ParleyError):
    pass

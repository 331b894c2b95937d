from __future__ import annotations

from parley.errors import (
    DeviceUnavailable,
    PermissionDenied,
    ProviderError,
    TranscriptionUnavailable,
    TransportError,
    UnsupportedPlatform,
)


def summarize_exception(detail: str, *, max_len: int = 220) -> str:
    text = str(detail or "").strip()
    if not text:
        return "Unknown runtime error."
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    if not lines:
        return "Unknown runtime error."
    for ln in reversed(lines):
        if ln.startswith("File "):
            continue
        if ln.startswith("^"):
            continue
        if ln.startswith("Traceback "):
            continue
        out = ln
        break
    else:
        out = lines[-1]
    if len(out) > max_len:
        return out[: max_len - 3].rstrip() + "..."
    return out


def hint_for_exception(summary: str) -> str:
    s = str(summary or "").lower()
    if "permission" in s or "not authorized" in s:
        return "Microphone access was denied. Allow microphone access for this app and try again."
    if "no module named" in s:
        return "A required package is missing in this virtualenv. Reinstall dependencies and retry."
    if "config file not found" in s:
        return "Configured JSON file is missing. Update the config path or restore the file."
    if "portaudio" in s or ("microphone" in s and "failed" in s):
        return "Microphone init failed. Check input device selection with --list-devices."
    if "api key" in s or "401" in s:
        return "A provider rejected its API key. Check GROQ_API_KEY / TOGETHER_API_KEY / OPENAI_API_KEY."
    if "timed out" in s or "connect" in s:
        return "Network request failed. Check your connection and retry."
    return "Check logs for full traceback."


def describe_error(exc: BaseException) -> str:
    """User-facing banner text for an error that reached the session."""
    if isinstance(exc, PermissionDenied):
        return "Microphone access denied. Allow microphone access and press start again."
    if isinstance(exc, DeviceUnavailable):
        return f"Microphone unavailable: {summarize_exception(str(exc))}"
    if isinstance(exc, UnsupportedPlatform):
        return f"Speech recognition is not supported here: {summarize_exception(str(exc))}"
    if isinstance(exc, TranscriptionUnavailable):
        return "No transcription service is available. Check your API keys and network, then retry."
    if isinstance(exc, TransportError):
        return f"Transcription connection failed: {summarize_exception(str(exc))}"
    if isinstance(exc, ProviderError):
        return f"Translation provider error: {summarize_exception(str(exc))}"
    summary = summarize_exception(str(exc) or type(exc).__name__)
    return f"{summary} {hint_for_exception(summary)}"

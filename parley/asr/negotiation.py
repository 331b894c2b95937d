from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from parley.app.logging_setup import log_event
from parley.errors import TransportError


@dataclass(frozen=True)
class StreamingSession:
    websocket_url: str
    session_id: str


class SessionNegotiator:
    """
    Asks the negotiation service for a streaming endpoint.

    `GET <url>?language=xx-YY` -> `{"websocketUrl": ..., "sessionId": ...}`; error payloads
    look like `{"error": ...}` and their HTTP status decides retry (429/5xx) or
    fallback (401/403).
    """

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = float(timeout)
        self._client = client
        self._owns_client = client is None
        self._logger = logger

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def negotiate(self, language: str) -> StreamingSession:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            resp = await self._get_client().get(self.url, params={"language": language}, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"session negotiation failed: {e or type(e).__name__}") from e

        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            payload = {}

        if resp.status_code >= 400:
            message = payload.get("error") or f"session negotiation returned HTTP {resp.status_code}"
            log_event(self._logger, logging.WARNING, "session_negotiation_failed", status=resp.status_code)
            raise TransportError(str(message), status=resp.status_code)

        websocket_url = payload.get("websocketUrl")
        if not websocket_url:
            raise TransportError("session negotiation returned no websocketUrl", status=resp.status_code)
        session = StreamingSession(websocket_url=str(websocket_url), session_id=str(payload.get("sessionId") or ""))
        log_event(self._logger, logging.INFO, "session_negotiated", session_id=session.session_id)
        return session

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

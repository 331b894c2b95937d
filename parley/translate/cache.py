from __future__ import annotations

from typing import Dict, Tuple

from parley.contracts import TranslationResult

CacheKey = Tuple[str, str, str, str]


class TranslationCache:
    """Exact-key translation cache; only ever cleared as a whole."""

    def __init__(self) -> None:
        self._entries: Dict[CacheKey, TranslationResult] = {}

    def get(self, key: CacheKey) -> TranslationResult | None:
        return self._entries.get(key)

    def put(self, key: CacheKey, result: TranslationResult) -> None:
        self._entries[key] = result

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from parley.app.logging_setup import log_event
from parley.translate.base import CredentialStatus, Translator


@dataclass(frozen=True)
class ProbeResult:
    translator: Translator
    status: CredentialStatus


async def probe_providers(
    translators: Sequence[Translator],
    logger: logging.Logger | None = None,
) -> list[ProbeResult]:
    """Check each provider's credential in priority order. Failures are results, never exceptions."""
    results: list[ProbeResult] = []
    for translator in translators:
        try:
            status = await translator.check()
        except Exception as e:
            status = CredentialStatus(valid=False, error=f"{translator.name} check failed: {e}")
        log_event(
            logger,
            logging.INFO if status.valid else logging.WARNING,
            "provider_probe",
            provider=translator.name,
            valid=status.valid,
            error=status.error,
        )
        results.append(ProbeResult(translator=translator, status=status))
    return results


def first_usable(results: Sequence[ProbeResult]) -> Translator | None:
    for result in results:
        if result.status.valid:
            return result.translator
    return None

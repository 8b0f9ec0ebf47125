"""Run every configured OCR provider concurrently and keep the best result."""

import asyncio
import logging
import time
from typing import Sequence

from models import AggregatedOCRResult, EngineResult
from ocr_providers import OCRProvider

logger = logging.getLogger(__name__)


async def aggregate_ocr(data: bytes, providers: Sequence[OCRProvider]) -> AggregatedOCRResult:
    """Fan out to all providers, wait for every branch, then select the winner.

    Slower providers are never cancelled on a fast success: a later result
    with higher confidence still wins.
    """
    if not providers:
        logger.warning("No OCR providers configured")
        return AggregatedOCRResult(engine="none", error="no OCR providers configured")

    start = time.monotonic()
    results = await asyncio.gather(
        *(_run_provider(provider, data) for provider in providers)
    )
    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.info("OCR fan-out over %d providers completed in %dms", len(providers), elapsed_ms)

    return select_best([p.name for p in providers], results)


async def _run_provider(provider: OCRProvider, data: bytes) -> EngineResult:
    try:
        return await provider.extract(data)
    except Exception as e:
        # Adapters are not supposed to raise; record it as a failed engine
        logger.error("%s raised unexpectedly: %s", provider.name, e)
        return EngineResult.failed(str(e))


def select_best(engines: Sequence[str], results: Sequence[EngineResult]) -> AggregatedOCRResult:
    """Pick the highest-confidence successful result; ties go to longer text, then input order.

    With no success, the first attempted result is returned as-is.
    """
    candidates = [
        (index, result)
        for index, result in enumerate(results)
        if result.success and result.text.strip()
    ]

    if not candidates:
        logger.warning("No OCR engine returned a usable result")
        first = results[0]
        return AggregatedOCRResult(engine=engines[0], **first.model_dump())

    index, best = max(candidates, key=lambda c: (c[1].confidence, len(c[1].text), -c[0]))
    logger.info(
        "Selected OCR result from %s (confidence=%.2f, text=%d chars, form_fields=%d)",
        engines[index], best.confidence, len(best.text), len(best.key_value_pairs),
    )
    return AggregatedOCRResult(engine=engines[index], **best.model_dump())

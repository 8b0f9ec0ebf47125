"""Pipeline entry point: OCR fan-out -> de-identification -> model ensemble -> consensus -> field mapping."""

import asyncio
import logging
import time
from typing import Sequence

from pydantic import BaseModel, Field, field_validator

from client_registry import ClientRegistry
from config import settings
from consensus import build_consensus
from deidentify import (
    deidentify_key_value_pairs,
    deidentify_text,
    extract_phi,
    merge_phi_into_consensus,
    validate_deidentification,
)
from document_classifier import classify_by_patterns
from extraction_models import EXTRACTION_MODELS, ExtractionModel, build_models
from field_mapper import map_to_assessment
from models import AggregatedOCRResult, PipelineResult
from ocr_aggregator import aggregate_ocr
from ocr_providers import OCR_PROVIDERS, OCRProvider, build_providers

logger = logging.getLogger(__name__)


class PipelineConfig(BaseModel):
    """Which adapters one invocation runs, in invocation order."""

    ocr_providers: list[str] = Field(default_factory=lambda: settings.ocr_provider_list, validate_default=True)
    models: list[str] = Field(default_factory=lambda: settings.ai_model_list, validate_default=True)

    @field_validator("ocr_providers")
    @classmethod
    def _known_providers(cls, names: list[str]) -> list[str]:
        unknown = [n for n in names if n not in OCR_PROVIDERS]
        if unknown:
            raise ValueError(f"unknown OCR providers: {', '.join(unknown)}")
        return names

    @field_validator("models")
    @classmethod
    def _known_models(cls, names: list[str]) -> list[str]:
        unknown = [n for n in names if n not in EXTRACTION_MODELS]
        if unknown:
            raise ValueError(f"unknown extraction models: {', '.join(unknown)}")
        return names


class NoUsableOCRResult(Exception):
    """Every OCR provider failed or none was configured."""

    def __init__(self, ocr: AggregatedOCRResult):
        self.ocr = ocr
        super().__init__(f"no usable OCR result (engine={ocr.engine}, error={ocr.error})")


async def aprocess_document(
    data: bytes,
    config: PipelineConfig | None = None,
    *,
    providers: Sequence[OCRProvider] | None = None,
    models: Sequence[ExtractionModel] | None = None,
    registry: ClientRegistry | None = None,
) -> PipelineResult:
    """Process one document end to end.

    Explicit providers/models override the ones named in config.
    Raises NoUsableOCRResult when no OCR engine produced text.
    """
    if not data:
        raise ValueError("document is empty")

    start = time.monotonic()
    config = config or PipelineConfig()
    if providers is None:
        providers = build_providers(config.ocr_providers, registry=registry)
    if models is None:
        models = build_models(config.models, registry=registry)

    # Sizes and counts only in logs
    logger.info(
        "Processing document (%d bytes) with %d OCR providers and %d models",
        len(data), len(providers), len(models),
    )

    ocr = await aggregate_ocr(data, providers)
    if not ocr.success:
        logger.error("All OCR providers failed: %s", ocr.error)
        raise NoUsableOCRResult(ocr)

    # Identifiers stay local; models only see the tokenized text
    phi = extract_phi(ocr.text, ocr.key_value_pairs)
    safe = deidentify_text(ocr.text, phi)
    issues = validate_deidentification(safe.text)
    if issues:
        logger.warning("De-identification left possible PHI: %s", "; ".join(issues))
    safe_pairs = deidentify_key_value_pairs(ocr.key_value_pairs, phi)
    logger.info(
        "De-identified OCR text: %d replacements, %d form fields withheld",
        safe.replacement_count, sum(1 for key in ocr.key_value_pairs if key not in safe_pairs),
    )

    results = await asyncio.gather(
        *(model.extract(safe.text, safe_pairs) for model in models)
    )

    consensus = build_consensus(results)
    if not consensus.usable:
        logger.warning("No model produced usable data; mapping locally extracted fields only")
    consensus = merge_phi_into_consensus(consensus, phi, confidence=ocr.confidence)

    fields = map_to_assessment(consensus, fallback_document_type=classify_by_patterns(ocr.text))

    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "Document processed in %dms: engine=%s models=%d/%d fields=%d",
        elapsed_ms, ocr.engine,
        sum(1 for r in results if r.data is not None), len(results),
        len(fields.field_confidence),
    )

    return PipelineResult(
        ocr=ocr,
        consensus=consensus,
        fields=fields,
        processing_time_ms=elapsed_ms,
    )


def process_document(data: bytes, config: PipelineConfig | None = None) -> PipelineResult:
    """Synchronous wrapper for callers without an event loop."""
    return asyncio.run(aprocess_document(data, config))

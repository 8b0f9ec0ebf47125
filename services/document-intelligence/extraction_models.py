"""AI extraction model adapters: call a model, parse its JSON, normalize fields.

Each adapter exposes `extract(text, key_value_pairs) -> ParseResult` and
never raises on model failure: the error is recorded in the ParseResult so
one failing model cannot abort the ensemble.
"""

import asyncio
import json
import logging
import re
import time
from typing import Any

import ollama

from client_registry import ClientRegistry, ProviderNotConfigured, build_http_client, default_registry
from config import settings
from models import LIST_FIELDS, ExtractedDocumentData, ParseResult
from normalizers import (
    clean_text,
    normalize_date_string,
    normalize_list,
    normalize_state,
    parse_amount,
    parse_number,
)
from prompts import EXTRACTION_SYSTEM_PROMPT, build_user_prompt
from retry_policy import raise_for_status, with_retry

logger = logging.getLogger(__name__)


class ModelExtractionFailed(Exception):
    """Model call failed or returned no usable JSON."""


# Extra raw keys seen in model output, beyond camelCase and snake_case
EXTRA_ALIASES: dict[str, tuple[str, ...]] = {
    "date_of_birth": ("dob",),
    "account_number": ("acct", "accountNo"),
    "mrn": ("medicalRecordNumber", "medical_record_number"),
    "date_of_service": ("dos", "serviceDate", "service_date"),
    "length_of_stay": ("los",),
    "amount_due": ("balanceDue", "balance_due"),
    "facility_name": ("hospital", "hospitalName"),
    "insurance_type": ("payerType", "payer_type"),
    "insurance_name": ("payer", "payerName"),
    "insurance_id": ("memberId", "member_id", "subscriberId"),
    "diagnoses": ("diagnosis", "diagnosisCodes"),
    "procedures": ("procedure", "procedureCodes"),
}

DATE_FIELDS = {"date_of_birth", "date_of_service", "admission_date", "discharge_date"}
STATE_FIELDS = {"patient_state", "facility_state"}
AMOUNT_FIELDS = {"total_charges", "total_billed", "amount_due"}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _lookup(raw: dict, field: str) -> Any:
    for key in (_camel(field), field, *EXTRA_ALIASES.get(field, ())):
        value = raw.get(key)
        if value not in (None, "", []):
            return value
    return None


def normalize_extracted_data(raw: dict) -> ExtractedDocumentData:
    """Map raw model JSON (camelCase or snake_case keys) onto ExtractedDocumentData."""
    values: dict[str, Any] = {}

    for field in ExtractedDocumentData.model_fields:
        value = _lookup(raw, field)
        if value is None:
            continue

        if field in AMOUNT_FIELDS:
            values[field] = parse_amount(value)
        elif field == "length_of_stay":
            values[field] = parse_number(value)
        elif field in LIST_FIELDS:
            values[field] = normalize_list(value)
        elif field in DATE_FIELDS:
            values[field] = normalize_date_string(value)
        elif field in STATE_FIELDS:
            values[field] = normalize_state(value) or clean_text(value)
        else:
            values[field] = clean_text(value)

    return ExtractedDocumentData(**values)


def try_parse_json(raw: str) -> dict | None:
    """Try to extract a JSON object from the model output.

    Handles: direct JSON, markdown fences, preamble text, and <think> blocks.
    """
    if not raw:
        return None

    cleaned = re.sub(r"<think>.*?</think>", "", raw, flags=re.DOTALL).strip()

    candidates = [cleaned]
    fence = re.search(r"```(?:json)?\s*\n?(.*?)\n?```", cleaned, re.DOTALL)
    if fence:
        candidates.append(fence.group(1).strip())
    braces = re.search(r"\{.*\}", cleaned, re.DOTALL)
    if braces:
        candidates.append(braces.group(0))

    for candidate in candidates:
        try:
            result = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(result, dict):
            return result

    logger.warning("Could not parse JSON from model response (%d chars)", len(cleaned))
    return None


class ExtractionModel:
    """Base adapter. Subclasses build their client and implement _complete."""

    name: str = ""
    # Self-reported confidence attached to a successful extraction
    confidence: float = 0.8

    def __init__(
        self,
        registry: ClientRegistry | None = None,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
    ):
        self._registry = registry or default_registry
        self._retry_attempts = retry_attempts if retry_attempts is not None else settings.RETRY_ATTEMPTS
        self._retry_delay = retry_delay if retry_delay is not None else settings.RETRY_BASE_DELAY

    def _build_client(self) -> Any:
        raise NotImplementedError

    def _complete(self, client: Any, system: str, user: str) -> str:
        raise NotImplementedError

    async def extract(self, text: str, key_value_pairs: dict[str, str] | None = None) -> ParseResult:
        start = time.monotonic()

        client = await self._registry.aget(self.name, self._build_client)
        if client is None:
            return ParseResult(model=self.name, error="API key not configured")

        user_prompt = build_user_prompt(text, key_value_pairs)

        try:
            raw = await with_retry(
                lambda: asyncio.to_thread(self._complete, client, EXTRACTION_SYSTEM_PROMPT, user_prompt),
                name=self.name,
                max_attempts=self._retry_attempts,
                base_delay=self._retry_delay,
            )
            parsed = try_parse_json(raw)
            if parsed is None:
                raise ModelExtractionFailed("No valid JSON in response")
            data = normalize_extracted_data(parsed)
        except Exception as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.error("%s extraction failed after %dms: %s", self.name, elapsed_ms, e)
            return ParseResult(model=self.name, error=str(e), response_time_ms=elapsed_ms)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "%s extracted %d fields in %dms",
            self.name, len(data.present_fields()), elapsed_ms,
        )
        return ParseResult(
            model=self.name,
            data=data,
            confidence=self.confidence,
            response_time_ms=elapsed_ms,
        )


class OpenAIModel(ExtractionModel):
    name = "gpt-4o-mini"
    confidence = 0.85

    def _build_client(self):
        if not settings.OPENAI_API_KEY:
            raise ProviderNotConfigured("OPENAI_API_KEY is empty")
        return build_http_client(
            base_url=settings.OPENAI_BASE_URL,
            headers={"Authorization": f"Bearer {settings.OPENAI_API_KEY}"},
        )

    def _complete(self, client, system: str, user: str) -> str:
        resp = client.post(
            "/chat/completions",
            json={
                "model": settings.OPENAI_MODEL,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                "temperature": 0.2,
                "max_tokens": 2000,
                "response_format": {"type": "json_object"},
            },
        )
        raise_for_status(resp, self.name, ModelExtractionFailed)
        choices = resp.json().get("choices") or []
        if not choices:
            raise ModelExtractionFailed("No choices in response")
        return choices[0].get("message", {}).get("content") or ""


class AnthropicModel(ExtractionModel):
    name = "claude-3-5-haiku"
    confidence = 0.95

    API_VERSION = "2023-06-01"

    def _build_client(self):
        if not settings.ANTHROPIC_API_KEY:
            raise ProviderNotConfigured("ANTHROPIC_API_KEY is empty")
        return build_http_client(
            base_url=settings.ANTHROPIC_BASE_URL,
            headers={
                "x-api-key": settings.ANTHROPIC_API_KEY,
                "anthropic-version": self.API_VERSION,
            },
        )

    def _complete(self, client, system: str, user: str) -> str:
        resp = client.post(
            "/messages",
            json={
                "model": settings.ANTHROPIC_MODEL,
                "max_tokens": 4000,
                "temperature": 0.1,
                "system": system,
                "messages": [{"role": "user", "content": user}],
            },
        )
        raise_for_status(resp, self.name, ModelExtractionFailed)
        blocks = resp.json().get("content") or []
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")


class GeminiModel(ExtractionModel):
    name = "gemini-2.5-flash"
    confidence = 0.90

    def _build_client(self):
        if not settings.GOOGLE_AI_API_KEY:
            raise ProviderNotConfigured("GOOGLE_AI_API_KEY is empty")
        return build_http_client(
            base_url=settings.GEMINI_BASE_URL,
            params={"key": settings.GOOGLE_AI_API_KEY},
        )

    def _complete(self, client, system: str, user: str) -> str:
        resp = client.post(
            f"/models/{settings.GEMINI_MODEL}:generateContent",
            json={
                "systemInstruction": {"parts": [{"text": system}]},
                "contents": [{"role": "user", "parts": [{"text": user}]}],
                "generationConfig": {
                    "temperature": 0.1,
                    "maxOutputTokens": 2000,
                    "responseMimeType": "application/json",
                },
            },
        )
        raise_for_status(resp, self.name, ModelExtractionFailed)
        candidates = resp.json().get("candidates") or []
        if not candidates:
            raise ModelExtractionFailed("No candidates in response")
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(p.get("text", "") for p in parts)


class OllamaModel(ExtractionModel):
    """Self-hosted model served by Ollama (disabled while OLLAMA_URL is empty)."""

    name = "ollama"
    confidence = 0.80

    def _build_client(self):
        if not settings.OLLAMA_URL:
            raise ProviderNotConfigured("OLLAMA_URL is empty")
        return ollama.Client(host=settings.OLLAMA_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)

    def _complete(self, client, system: str, user: str) -> str:
        response = client.chat(
            model=settings.OLLAMA_MODEL,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            format="json",
            options={"temperature": 0.1},
        )
        # ollama v0.4+ returns Pydantic ChatResponse, use attribute access
        return response.message.content or ""


EXTRACTION_MODELS: dict[str, type[ExtractionModel]] = {
    cls.name: cls for cls in (OpenAIModel, AnthropicModel, GeminiModel, OllamaModel)
}


def build_models(names: list[str], registry: ClientRegistry | None = None) -> list[ExtractionModel]:
    """Instantiate the configured models in the given order."""
    unknown = [n for n in names if n not in EXTRACTION_MODELS]
    if unknown:
        raise ValueError(f"Unknown extraction models: {', '.join(unknown)}")
    return [EXTRACTION_MODELS[n](registry=registry) for n in names]

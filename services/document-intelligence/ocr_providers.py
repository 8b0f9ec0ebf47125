"""OCR provider adapters: AWS Textract, Google Cloud Vision and Azure Read.

Each adapter exposes `extract(data) -> EngineResult` and never raises for a
missing configuration or a provider failure; it returns a failed result so
the aggregator can treat every provider uniformly. Remote requests run in a
worker thread through the shared retry policy.
"""

import asyncio
import base64
import logging
import time
from statistics import mean
from typing import Any, Callable

import boto3
from botocore.config import Config as BotoConfig

from client_registry import ClientRegistry, ProviderNotConfigured, build_http_client, default_registry
from config import settings
from models import EngineResult
from retry_policy import raise_for_status, with_retry

logger = logging.getLogger(__name__)


class OCRProviderError(Exception):
    """Provider rejected the document or returned an unusable response (non-retryable)."""


class OCRTimeout(Exception):
    """Asynchronous provider did not finish within its polling budget."""


class OCRProvider:
    """Base adapter. Subclasses build their client and implement _extract."""

    name: str = ""

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

    async def _extract(self, client: Any, data: bytes) -> EngineResult:
        raise NotImplementedError

    async def extract(self, data: bytes) -> EngineResult:
        """Run OCR on the document bytes; failures come back as success=False."""
        client = await self._registry.aget(self.name, self._build_client)
        if client is None:
            return EngineResult.failed(f"{self.name} not configured")

        start = time.monotonic()
        # PHI: log byte count only, never document content
        logger.info("%s: processing document (%d bytes)", self.name, len(data))

        try:
            result = await self._extract(client, data)
        except OCRTimeout as e:
            logger.warning("%s timed out: %s", self.name, e)
            return EngineResult.failed(f"timeout: {e}")
        except Exception as e:
            logger.error("%s failed: %s", self.name, e)
            return EngineResult.failed(str(e))

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "%s completed in %dms: success=%s text=%d chars confidence=%.2f form_fields=%d",
            self.name, elapsed_ms, result.success, len(result.text),
            result.confidence, len(result.key_value_pairs),
        )
        return result

    async def _call(self, fn: Callable[[], Any]) -> Any:
        """Run a blocking request in a thread, retrying rate limits."""
        return await with_retry(
            lambda: asyncio.to_thread(fn),
            name=self.name,
            max_attempts=self._retry_attempts,
            base_delay=self._retry_delay,
        )


class TextractProvider(OCRProvider):
    """Provider A: synchronous bulk text and form extraction (AnalyzeDocument)."""

    name = "aws-textract"

    def _build_client(self):
        if not settings.AWS_ACCESS_KEY_ID:
            raise ProviderNotConfigured("AWS_ACCESS_KEY_ID is empty")

        return boto3.client(
            "textract",
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            # Throttling is retried by our own policy
            config=BotoConfig(
                connect_timeout=settings.HTTP_CONNECT_TIMEOUT,
                read_timeout=settings.HTTP_TIMEOUT_SECONDS,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )

    async def _extract(self, client, data: bytes) -> EngineResult:
        response = await self._call(
            lambda: client.analyze_document(
                Document={"Bytes": data},
                FeatureTypes=["FORMS", "TABLES"],
            )
        )
        blocks = response.get("Blocks") or []

        text = textract_lines(blocks)
        if not text.strip():
            return EngineResult.failed("no text detected")

        return EngineResult(
            text=text,
            confidence=textract_confidence(blocks),
            key_value_pairs=textract_key_values(blocks),
            success=True,
        )


def textract_lines(blocks: list[dict]) -> str:
    return "\n".join(b["Text"] for b in blocks if b.get("BlockType") == "LINE" and b.get("Text"))


def textract_confidence(blocks: list[dict]) -> float:
    scores = [b["Confidence"] for b in blocks if b.get("Confidence") is not None]
    if not scores:
        return 0.0
    return min(max(mean(scores) / 100, 0.0), 1.0)


def textract_key_values(blocks: list[dict]) -> dict[str, str]:
    """Resolve KEY_VALUE_SET blocks into a {key text: value text} mapping."""
    by_id = {b["Id"]: b for b in blocks if "Id" in b}
    pairs: dict[str, str] = {}

    for block in blocks:
        if block.get("BlockType") != "KEY_VALUE_SET" or "KEY" not in block.get("EntityTypes", []):
            continue

        key = _child_text(block, by_id)
        if not key:
            continue

        value = ""
        for rel in block.get("Relationships", []):
            if rel.get("Type") == "VALUE" and rel.get("Ids"):
                value_block = by_id.get(rel["Ids"][0])
                if value_block is not None:
                    value = _child_text(value_block, by_id)
                break

        pairs[key.strip()] = value.strip()

    return pairs


def _child_text(block: dict, by_id: dict[str, dict]) -> str:
    words = []
    for rel in block.get("Relationships", []):
        if rel.get("Type") != "CHILD":
            continue
        for child_id in rel.get("Ids", []):
            child = by_id.get(child_id)
            if child and child.get("Text"):
                words.append(child["Text"])
    return " ".join(words)


class GoogleVisionProvider(OCRProvider):
    """Provider B: Cloud Vision images:annotate with document text detection."""

    name = "google-vision"

    # Used when the response carries no page-level confidence
    DEFAULT_CONFIDENCE = 0.85

    def _build_client(self):
        if not settings.GOOGLE_CLOUD_VISION_API_KEY:
            raise ProviderNotConfigured("GOOGLE_CLOUD_VISION_API_KEY is empty")
        return build_http_client(params={"key": settings.GOOGLE_CLOUD_VISION_API_KEY})

    async def _extract(self, client, data: bytes) -> EngineResult:
        payload = {
            "requests": [
                {
                    "image": {"content": base64.b64encode(data).decode()},
                    "features": [{"type": "DOCUMENT_TEXT_DETECTION", "maxResults": 1}],
                }
            ]
        }
        body = await self._call(lambda: self._annotate(client, payload))

        response = (body.get("responses") or [{}])[0]
        if "error" in response:
            raise OCRProviderError(response["error"].get("message", "annotate error"))

        full = response.get("fullTextAnnotation") or {}
        text = full.get("text") or ""
        if not text:
            annotations = response.get("textAnnotations") or []
            text = annotations[0].get("description", "") if annotations else ""

        if not text.strip():
            return EngineResult.failed("no text detected")

        page_scores = [p["confidence"] for p in full.get("pages", []) if p.get("confidence") is not None]
        confidence = mean(page_scores) if page_scores else self.DEFAULT_CONFIDENCE

        return EngineResult(text=text, confidence=confidence, key_value_pairs={}, success=True)

    def _annotate(self, client, payload: dict) -> dict:
        resp = client.post(settings.GOOGLE_VISION_URL, json=payload)
        raise_for_status(resp, self.name, OCRProviderError)
        return resp.json()


class AzureReadProvider(OCRProvider):
    """Provider C: asynchronous Read API (submit, then poll the operation)."""

    name = "azure-read"

    READ_PATH = "/vision/v3.2/read/analyze"
    DEFAULT_CONFIDENCE = 0.85
    PENDING = ("notStarted", "running")

    def __init__(
        self,
        registry: ClientRegistry | None = None,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
        poll_interval: float | None = None,
        poll_max_attempts: int | None = None,
    ):
        super().__init__(registry, retry_attempts, retry_delay)
        self._poll_interval = poll_interval if poll_interval is not None else settings.OCR_POLL_INTERVAL
        self._poll_max_attempts = (
            poll_max_attempts if poll_max_attempts is not None else settings.OCR_POLL_MAX_ATTEMPTS
        )

    def _build_client(self):
        if not settings.AZURE_COMPUTER_VISION_KEY or not settings.AZURE_COMPUTER_VISION_ENDPOINT:
            raise ProviderNotConfigured("AZURE_COMPUTER_VISION_KEY/ENDPOINT not set")
        return build_http_client(
            base_url=settings.AZURE_COMPUTER_VISION_ENDPOINT,
            headers={"Ocp-Apim-Subscription-Key": settings.AZURE_COMPUTER_VISION_KEY},
        )

    async def _extract(self, client, data: bytes) -> EngineResult:
        operation_url = await self._call(lambda: self._submit(client, data))
        result = await self._poll(client, operation_url)

        if result.get("status") != "succeeded":
            raise OCRProviderError(f"read operation {result.get('status')}")

        lines, word_scores = [], []
        for page in (result.get("analyzeResult") or {}).get("readResults", []):
            for line in page.get("lines", []):
                if line.get("text"):
                    lines.append(line["text"])
                word_scores.extend(
                    w["confidence"] for w in line.get("words", []) if w.get("confidence") is not None
                )

        text = "\n".join(lines)
        if not text.strip():
            return EngineResult.failed("no text detected")

        confidence = mean(word_scores) if word_scores else self.DEFAULT_CONFIDENCE
        return EngineResult(text=text, confidence=confidence, key_value_pairs={}, success=True)

    def _submit(self, client, data: bytes) -> str:
        resp = client.post(
            self.READ_PATH,
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        raise_for_status(resp, self.name, OCRProviderError)

        location = resp.headers.get("Operation-Location")
        if not location:
            raise OCRProviderError("no Operation-Location returned")
        return location

    async def _poll(self, client, operation_url: str) -> dict:
        for attempt in range(1, self._poll_max_attempts + 1):
            await asyncio.sleep(self._poll_interval)
            body = await self._call(lambda: self._fetch(client, operation_url))
            if body.get("status") not in self.PENDING:
                logger.debug("%s: operation finished after %d polls", self.name, attempt)
                return body

        raise OCRTimeout(f"no result after {self._poll_max_attempts} polls")

    def _fetch(self, client, operation_url: str) -> dict:
        resp = client.get(operation_url)
        raise_for_status(resp, self.name, OCRProviderError)
        return resp.json()


OCR_PROVIDERS: dict[str, type[OCRProvider]] = {
    cls.name: cls for cls in (TextractProvider, GoogleVisionProvider, AzureReadProvider)
}


def build_providers(names: list[str], registry: ClientRegistry | None = None) -> list[OCRProvider]:
    """Instantiate the configured providers in the given order."""
    unknown = [n for n in names if n not in OCR_PROVIDERS]
    if unknown:
        raise ValueError(f"Unknown OCR providers: {', '.join(unknown)}")
    return [OCR_PROVIDERS[n](registry=registry) for n in names]

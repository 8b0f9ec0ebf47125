"""Tests for OCR fan-out and best-result selection."""

import asyncio
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).parent.parent))

from models import EngineResult
from ocr_aggregator import aggregate_ocr, select_best


class StaticProvider:
    """Provider stub returning a fixed result after an optional delay."""

    def __init__(self, name: str, result: EngineResult | None = None, delay: float = 0.0, error: Exception | None = None):
        self.name = name
        self.result = result
        self.delay = delay
        self.error = error
        self.calls = 0

    async def extract(self, data: bytes) -> EngineResult:
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def ok(text: str, confidence: float, pairs: dict | None = None) -> EngineResult:
    return EngineResult(text=text, confidence=confidence, key_value_pairs=pairs or {}, success=True)


class TestSelectBest:
    def test_highest_confidence_wins(self):
        best = select_best(
            ["a", "b", "c"],
            [ok("alpha", 0.80), ok("beta", 0.95), ok("gamma", 0.90)],
        )
        assert best.engine == "b"
        assert best.text == "beta"
        assert best.confidence == 0.95

    def test_tie_goes_to_longer_text(self):
        best = select_best(["a", "b"], [ok("short", 0.9), ok("much longer text", 0.9)])
        assert best.engine == "b"

    def test_full_tie_goes_to_first(self):
        best = select_best(["a", "b"], [ok("same", 0.9), ok("same", 0.9)])
        assert best.engine == "a"

    def test_failures_ignored(self):
        best = select_best(
            ["a", "b"],
            [EngineResult.failed("boom"), ok("text", 0.5)],
        )
        assert best.engine == "b"
        assert best.success is True

    def test_no_success_returns_first_attempted(self):
        best = select_best(
            ["a", "b"],
            [EngineResult.failed("a down"), EngineResult.failed("b down")],
        )
        assert best.engine == "a"
        assert best.success is False
        assert best.text == ""
        assert best.confidence == 0.0
        assert best.error == "a down"

    def test_key_value_pairs_carried(self):
        best = select_best(["a"], [ok("text", 0.9, {"Total": "$10"})])
        assert best.key_value_pairs == {"Total": "$10"}


class TestAggregateOCR:
    def test_waits_for_slower_better_provider(self):
        fast = StaticProvider("fast", ok("fast text", 0.70), delay=0.0)
        slow = StaticProvider("slow", ok("slow text", 0.95), delay=0.05)

        best = asyncio.run(aggregate_ocr(b"doc", [fast, slow]))

        assert best.engine == "slow"
        assert best.text == "slow text"

    def test_every_provider_invoked_once(self):
        providers = [StaticProvider(name, ok(name, 0.5)) for name in ("a", "b", "c")]

        asyncio.run(aggregate_ocr(b"doc", providers))

        assert [p.calls for p in providers] == [1, 1, 1]

    def test_raising_provider_recorded_as_failure(self):
        broken = StaticProvider("broken", error=RuntimeError("unexpected"))
        working = StaticProvider("working", ok("text", 0.6))

        best = asyncio.run(aggregate_ocr(b"doc", [broken, working]))

        assert best.engine == "working"

    def test_all_raising_returns_first_failure(self):
        providers = [
            StaticProvider("a", error=RuntimeError("a broke")),
            StaticProvider("b", error=RuntimeError("b broke")),
        ]

        best = asyncio.run(aggregate_ocr(b"doc", providers))

        assert best.engine == "a"
        assert best.success is False
        assert best.error == "a broke"

    def test_no_providers(self):
        best = asyncio.run(aggregate_ocr(b"doc", []))

        assert best.engine == "none"
        assert best.success is False
        assert best.text == ""

    def test_single_provider(self):
        best = asyncio.run(aggregate_ocr(b"doc", [StaticProvider("only", ok("text", 0.4))]))

        assert best.engine == "only"
        assert best.confidence == 0.4


class BlankTextProvider:
    """Provider that reports success without any recognized text."""

    def __init__(self, name: str, text: str):
        self.name = name
        self.text = text

    async def extract(self, data: bytes) -> EngineResult:
        return EngineResult(text=self.text, confidence=0.5, success=True)


class TestNeverSuccessWithoutText:
    @pytest.mark.parametrize("text", ["", "   \n"])
    def test_blank_success_rejected(self, text: str):
        with pytest.raises(ValidationError):
            EngineResult(text=text, confidence=0.5, success=True)

    @pytest.mark.parametrize("text", ["", "   \n"])
    def test_blank_provider_never_wins(self, text: str):
        providers = [BlankTextProvider("blank", text), StaticProvider("down", EngineResult.failed("x"))]

        best = asyncio.run(aggregate_ocr(b"doc", providers))

        assert best.success is False
        assert best.text == ""
        assert best.engine == "blank"

    def test_blank_provider_loses_to_real_text(self):
        providers = [BlankTextProvider("blank", "  "), StaticProvider("real", ok("TOTAL CHARGES", 0.4))]

        best = asyncio.run(aggregate_ocr(b"doc", providers))

        assert best.engine == "real"
        assert best.success is True

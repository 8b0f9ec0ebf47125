"""Merge the ensemble's ParseResults into one consensus record.

Per field, only models that reported the field vote:
- text fields: plurality of case-insensitive values; ties go to the group
  holding the most confident model, then to the earliest model
- numeric fields: low median, agreement measured within a relative tolerance
- list fields: case-insensitive union in first-seen order

agreement_score averages per-field agreement over voted fields; confidence
is the plain mean of self-reported confidence over models that produced at
least one field.
"""

import logging
from statistics import mean, median_low
from typing import Sequence

from config import settings
from models import (
    LIST_FIELDS,
    NUMERIC_FIELDS,
    ConsensusResult,
    ExtractedDocumentData,
    ParseResult,
    is_present,
)

logger = logging.getLogger(__name__)


def build_consensus(
    results: Sequence[ParseResult],
    numeric_tolerance: float | None = None,
) -> ConsensusResult:
    """Build the consensus record; model_results keeps the input order."""
    tolerance = numeric_tolerance if numeric_tolerance is not None else settings.CONSENSUS_NUMERIC_TOLERANCE

    reporting = [r for r in results if r.data is not None]
    contributors = [r for r in reporting if r.data.present_fields()]

    if not contributors:
        logger.warning("No usable consensus: %d/%d models returned data", len(reporting), len(results))
        return ConsensusResult(model_results=list(results))

    values: dict = {}
    agreement: dict[str, float] = {}

    for field in ExtractedDocumentData.model_fields:
        votes = [(r, getattr(r.data, field)) for r in contributors if is_present(getattr(r.data, field))]
        if not votes:
            continue

        if field in NUMERIC_FIELDS:
            values[field], agreement[field] = _numeric_vote(votes, tolerance)
        elif field in LIST_FIELDS:
            values[field], agreement[field] = _list_vote(votes)
        else:
            values[field], agreement[field] = _text_vote(votes)

    confidence = mean(r.confidence for r in contributors)
    agreement_score = mean(agreement.values()) if agreement else 0.0
    field_confidence = {f: _clamp(confidence * a) for f, a in agreement.items()}

    logger.info(
        "Consensus over %d/%d models: %d fields, confidence=%.2f, agreement=%.2f",
        len(contributors), len(results), len(values), confidence, agreement_score,
    )

    return ConsensusResult(
        consensus=ExtractedDocumentData(**values),
        confidence=_clamp(confidence),
        agreement_score=_clamp(agreement_score),
        model_results=list(results),
        field_agreement=agreement,
        field_confidence=field_confidence,
    )


def _text_vote(votes: list[tuple[ParseResult, str]]) -> tuple[str, float]:
    groups: dict[str, list[tuple[int, ParseResult, str]]] = {}
    for order, (result, value) in enumerate(votes):
        groups.setdefault(value.strip().casefold(), []).append((order, result, value))

    def rank(members):
        # Larger group, then most confident member, then earliest reporter
        return (len(members), max(m[1].confidence for m in members), -members[0][0])

    winner = max(groups.values(), key=rank)
    return winner[0][2], len(winner) / len(votes)


def _numeric_vote(votes: list[tuple[ParseResult, float]], tolerance: float) -> tuple[float, float]:
    numbers = [value for _, value in votes]
    consensus = median_low(numbers)
    agreeing = sum(1 for n in numbers if _within(n, consensus, tolerance))
    return consensus, agreeing / len(numbers)


def _within(value: float, target: float, tolerance: float) -> bool:
    if target == 0:
        return value == 0
    return abs(value - target) <= tolerance * abs(target)


def _list_vote(votes: list[tuple[ParseResult, list[str]]]) -> tuple[list[str], float]:
    union: list[str] = []
    seen: set[str] = set()
    for _, items in votes:
        for item in items:
            key = item.strip().casefold()
            if key and key not in seen:
                seen.add(key)
                union.append(item.strip())

    # Each voter agrees in proportion to how much of the union it reported
    overlaps = [len({i.strip().casefold() for i in items} & seen) / len(seen) for _, items in votes]
    return union, mean(overlaps)


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)

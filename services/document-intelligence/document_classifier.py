"""Keyword-based document type classification (no model call)."""

import logging

from models import DocumentType

logger = logging.getLogger(__name__)

PATTERNS: dict[str, tuple[str, ...]] = {
    "HOSPITAL_BILL": (
        "total charges", "amount due", "balance due", "statement date",
        "pay this amount", "patient responsibility", "service charges",
        "itemized statement",
    ),
    "UB04_CLAIM": (
        "type of bill", "form locator", "revenue code", "hcpcs",
        "occurrence code", "value code", "ub-04", "cms-1450",
    ),
    "MEDICAL_RECORD": (
        "history and physical", "chief complaint", "physical exam",
        "assessment and plan", "review of systems", "past medical history",
        "progress note", "clinical note",
    ),
    "DISCHARGE_SUMMARY": (
        "discharge summary", "discharge diagnosis", "hospital course",
        "discharge instructions", "discharge disposition", "follow up",
        "condition at discharge",
    ),
    "INSURANCE_EOB": (
        "explanation of benefits", "this is not a bill", "amount billed",
        "amount allowed", "amount paid", "patient responsibility",
        "claim number", "processed date",
    ),
    "PATIENT_INFO_FORM": (
        "patient registration", "patient information", "emergency contact",
        "insurance information", "responsible party", "consent to treat",
        "hipaa acknowledgement",
    ),
}

# Runner-up within this share of the leader means the upload mixes documents
MIXED_RATIO = 0.6
MIN_MATCHES = 2


def classify_by_patterns(text: str) -> DocumentType:
    lowered = text.lower()
    scores = {
        doc_type: sum(1 for pattern in patterns if pattern in lowered)
        for doc_type, patterns in PATTERNS.items()
    }

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    (best_type, best), (_, runner_up) = ranked[0], ranked[1]

    if best > 0 and runner_up > 0 and runner_up >= best * MIXED_RATIO:
        result = "MIXED"
    elif best < MIN_MATCHES:
        result = "UNKNOWN"
    else:
        result = best_type

    logger.debug("Pattern classification: %s (scores=%s)", result, scores)
    return result

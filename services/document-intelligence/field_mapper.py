"""Map a consensus record onto the enumerated assessment schema.

Pure and deterministic. Categorical values are matched against closed alias
tables and dropped when unrecognized; amounts and dates fail closed. Derived
fields take the minimum confidence of the inputs they were computed from.
"""

import logging
import re

from models import ConsensusResult, DocumentType, MappedAssessmentFields
from normalizers import alias_key, clean_text, normalize_state, parse_amount, parse_date, parse_number

logger = logging.getLogger(__name__)

ENCOUNTER_TYPES: dict[str, str] = {
    "inpatient": "inpatient", "in patient": "inpatient", "ip": "inpatient",
    "inpt": "inpatient", "acute inpatient": "inpatient", "admit": "inpatient",
    "observation": "observation", "obs": "observation", "observation stay": "observation",
    "ed": "ed", "er": "ed", "emergency": "ed", "emergency department": "ed",
    "emergency room": "ed",
    "outpatient": "outpatient", "out patient": "outpatient", "op": "outpatient",
    "outpt": "outpatient",
}

FACILITY_TYPES: dict[str, str] = {
    "public hospital": "public_hospital", "public": "public_hospital",
    "county hospital": "public_hospital", "municipal hospital": "public_hospital",
    "dsh hospital": "dsh_hospital", "dsh": "dsh_hospital",
    "disproportionate share hospital": "dsh_hospital",
    "safety net": "safety_net", "safety net hospital": "safety_net",
    "critical access": "critical_access", "critical access hospital": "critical_access",
    "cah": "critical_access",
    "standard": "standard", "general": "standard", "general hospital": "standard",
}

INSURANCE_TYPES: dict[str, str] = {
    "medicaid": "medicaid", "medi cal": "medicaid", "managed medicaid": "medicaid",
    "medicare": "medicare", "medicare advantage": "medicare",
    "commercial": "commercial", "private": "commercial", "hmo": "commercial",
    "ppo": "commercial", "employer": "commercial",
    "self pay": "uninsured", "selfpay": "uninsured", "uninsured": "uninsured",
    "cash": "uninsured",
    "underinsured": "underinsured",
}

DOCUMENT_TYPES: set[str] = {
    "HOSPITAL_BILL", "UB04_CLAIM", "MEDICAL_RECORD", "DISCHARGE_SUMMARY",
    "INSURANCE_EOB", "INSURANCE_CARD", "PATIENT_INFO_FORM", "MIXED", "UNKNOWN",
}
DOCUMENT_TYPE_ALIASES: dict[str, str] = {
    "UB04": "UB04_CLAIM", "UB_04": "UB04_CLAIM", "UB04_FORM": "UB04_CLAIM",
    "EOB": "INSURANCE_EOB", "HOSPITAL_STATEMENT": "HOSPITAL_BILL", "BILL": "HOSPITAL_BILL",
}

# ICD-10 prefixes and keywords; LOS in days
HIGH_DISABILITY_CODES = (
    "C", "N18.5", "N18.6", "Z99.2", "Z94", "I50", "I63", "I69", "J44", "J96",
    "G81", "G82", "G83", "G30", "F03", "G35", "G12.21",
)
HIGH_DISABILITY_TERMS = (
    "cancer", "malignant", "dialysis", "transplant", "stroke", "paralysis",
    "heart failure", "chf", "copd", "end stage", "terminal", "chronic kidney",
    "renal failure", "dementia", "alzheimer", "multiple sclerosis", "als",
)
MEDIUM_DISABILITY_CODES = (
    "E10", "E11", "I10", "I11", "F32", "F33", "F41", "F20", "F31",
    "M54", "M19", "M06", "M17", "J45", "G89", "G40",
)
MEDIUM_DISABILITY_TERMS = (
    "diabetes", "hypertension", "depression", "anxiety", "back pain",
    "arthritis", "asthma", "chronic pain", "schizophrenia", "bipolar", "epilepsy",
)
LONG_STAY_DAYS = 10
EXTENDED_STAY_DAYS = 5


class _Mapper:
    """Collects mapped values and their confidence for one consensus record."""

    def __init__(self, consensus: ConsensusResult):
        self._source = consensus.consensus
        self._field_confidence = consensus.field_confidence
        self._overall = consensus.confidence
        self.values: dict = {}
        self.confidence: dict[str, float] = {}

    def raw(self, field: str):
        return getattr(self._source, field)

    def source_confidence(self, field: str) -> float:
        return self._field_confidence.get(field, self._overall)

    def first(self, *fields: str, parse=clean_text):
        """First source field that parses, with the field it came from."""
        for field in fields:
            value = parse(self.raw(field))
            if value is not None:
                return value, field
        return None, None

    def put(self, name: str, value, *sources: str, confidence: float | None = None) -> None:
        if value is None:
            return
        self.values[name] = value
        if confidence is None:
            confidence = min(self.source_confidence(s) for s in sources)
        self.confidence[name] = confidence


def map_to_assessment(
    consensus: ConsensusResult,
    fallback_document_type: DocumentType | None = None,
) -> MappedAssessmentFields:
    """Project a consensus record into MappedAssessmentFields."""
    m = _Mapper(consensus)

    # Patient name, falling back to first + last
    name, src = m.first("patient_name")
    if name is not None:
        m.put("patient_name", name, src)
    else:
        parts = [p for p in (clean_text(m.raw("patient_first_name")), clean_text(m.raw("patient_last_name"))) if p]
        if parts:
            used = [f for f in ("patient_first_name", "patient_last_name") if clean_text(m.raw(f))]
            m.put("patient_name", " ".join(parts), *used)

    value, src = m.first("date_of_birth", parse=parse_date)
    m.put("date_of_birth", value, src)

    value, src = m.first("patient_state", "facility_state", parse=normalize_state)
    m.put("state_of_residence", value, src)

    value, src = m.first("account_number", "mrn")
    m.put("account_number", value, src)

    value, src = m.first("date_of_service", "admission_date", parse=parse_date)
    m.put("date_of_service", value, src)

    value, src = m.first("encounter_type", parse=lambda v: _lookup_alias(v, ENCOUNTER_TYPES))
    m.put("encounter_type", value, src)

    _map_length_of_stay(m)

    value, src = m.first("total_charges", "total_billed", parse=parse_amount)
    m.put("total_charges", value, src)

    value, src = m.first("facility_state", "patient_state", parse=normalize_state)
    m.put("facility_state", value, src)

    _map_facility_type(m)
    _map_insurance(m)
    _map_disability(m)

    document_type, doc_confidence = _document_type(m, fallback_document_type)
    if doc_confidence is not None:
        m.confidence["document_type"] = doc_confidence

    mapped = MappedAssessmentFields(
        **m.values,
        field_confidence=m.confidence,
        document_type=document_type,
    )
    logger.info("Mapped %d assessment fields (document_type=%s)", len(m.values), document_type)
    return mapped


def _lookup_alias(value, table: dict[str, str]) -> str | None:
    text = clean_text(value)
    if text is None:
        return None
    return table.get(alias_key(text))


def _map_length_of_stay(m: _Mapper) -> None:
    value = parse_number(m.raw("length_of_stay"))
    if value is not None and value >= 0:
        m.put("length_of_stay", int(round(value)), "length_of_stay")
        return

    admitted = parse_date(m.raw("admission_date"))
    discharged = parse_date(m.raw("discharge_date"))
    if admitted is None or discharged is None or discharged < admitted:
        return

    # Same-day stays count as one day
    m.put("length_of_stay", max((discharged - admitted).days, 1), "admission_date", "discharge_date")


def _map_facility_type(m: _Mapper) -> None:
    reported = _lookup_alias(m.raw("facility_type"), FACILITY_TYPES)
    if reported is not None:
        m.put("facility_type", reported, "facility_type")
        return

    name = clean_text(m.raw("facility_name"))
    if name is None:
        return
    m.put("facility_type", infer_facility_type(name), "facility_name")


def infer_facility_type(facility_name: str) -> str:
    name = facility_name.lower()
    if "critical access" in name or "rural" in name:
        return "critical_access"
    if "safety net" in name or "community health" in name:
        return "safety_net"
    if any(word in name for word in ("county", "public", "municipal", "district")):
        return "public_hospital"
    return "standard"


def _map_insurance(m: _Mapper) -> None:
    """Insurance status on DOS plus Medicaid/Medicare program status."""
    insurance_type = _lookup_alias(m.raw("insurance_type"), INSURANCE_TYPES)
    medicaid_id = clean_text(m.raw("medicaid_id"))
    medicare_id = clean_text(m.raw("medicare_id"))
    payer = clean_text(m.raw("insurance_name"))

    if medicaid_id or insurance_type == "medicaid":
        sources = ["medicaid_id"] if medicaid_id else ["insurance_type"]
        m.put("insurance_status_on_dos", "medicaid", *sources)
        m.put("medicaid_status", "active", *sources)
        if medicare_id:
            # Dual eligible
            m.put("medicare_status", "active_part_a", "medicare_id")
    elif medicare_id or insurance_type == "medicare":
        sources = ["medicare_id"] if medicare_id else ["insurance_type"]
        m.put("insurance_status_on_dos", "medicare", *sources)
        m.put("medicare_status", "active_part_a", *sources)
    elif insurance_type in ("commercial", "underinsured") or (insurance_type is None and payer):
        sources = ["insurance_type"] if insurance_type else ["insurance_name"]
        m.put("insurance_status_on_dos", insurance_type or "commercial", *sources)
        m.put("medicaid_status", "never", *sources)
        m.put("medicare_status", "none", *sources)
    elif insurance_type == "uninsured":
        m.put("insurance_status_on_dos", "uninsured", "insurance_type")
        m.put("medicaid_status", "unknown", "insurance_type")
        m.put("medicare_status", "none", "insurance_type")


def _map_disability(m: _Mapper) -> None:
    diagnoses = list(m.raw("diagnoses") or [])
    sources = ["diagnoses"] if diagnoses else []
    primary = clean_text(m.raw("primary_diagnosis"))
    if primary:
        diagnoses.append(primary)
        sources.append("primary_diagnosis")
    if not diagnoses:
        return

    likelihood = infer_disability_likelihood(diagnoses, m.values.get("length_of_stay"))
    if "length_of_stay" in m.values:
        stay_confidence = m.confidence["length_of_stay"]
        confidence = min(min(m.source_confidence(s) for s in sources), stay_confidence)
        m.put("disability_likelihood", likelihood, confidence=confidence)
    else:
        m.put("disability_likelihood", likelihood, *sources)


def infer_disability_likelihood(diagnoses: list[str], length_of_stay: int | None = None) -> str:
    """Rule table: severe conditions are high, chronic conditions medium, long stays escalate."""
    high = any(_matches(d, HIGH_DISABILITY_CODES, HIGH_DISABILITY_TERMS) for d in diagnoses)
    medium = any(_matches(d, MEDIUM_DISABILITY_CODES, MEDIUM_DISABILITY_TERMS) for d in diagnoses)
    stay = length_of_stay or 0

    if high or (medium and stay >= LONG_STAY_DAYS):
        return "high"
    if medium or stay >= EXTENDED_STAY_DAYS:
        return "medium"
    return "low"


def _matches(diagnosis: str, codes: tuple[str, ...], terms: tuple[str, ...]) -> bool:
    text = diagnosis.strip()
    code = text.upper().split()[0] if text else ""
    # OCR often drops the dot: E119 == E11.9
    if re.fullmatch(r"[A-Z]\d{2}\.?\w{0,4}", code):
        bare = code.replace(".", "")
        if any(bare.startswith(prefix.replace(".", "")) for prefix in codes):
            return True
    lowered = text.lower()
    return any(re.search(rf"\b{re.escape(term)}\b", lowered) for term in terms)


def _document_type(m: _Mapper, fallback: str | None) -> tuple[str, float | None]:
    raw = clean_text(m.raw("document_type"))
    if raw is not None:
        key = re.sub(r"[^A-Z0-9]+", "_", raw.upper()).strip("_")
        key = DOCUMENT_TYPE_ALIASES.get(key, key)
        if key in DOCUMENT_TYPES:
            return key, m.source_confidence("document_type")

    if fallback in DOCUMENT_TYPES:
        return fallback, None
    return "UNKNOWN", None


def low_confidence_fields(mapped: MappedAssessmentFields, threshold: float = 0.7) -> list[str]:
    """Fields that were filled but need a human look."""
    return [f for f, c in mapped.field_confidence.items() if 0 < c < threshold]


def high_confidence_fields(mapped: MappedAssessmentFields, threshold: float = 0.9) -> list[str]:
    """Fields confident enough to auto-fill."""
    return [f for f, c in mapped.field_confidence.items() if c >= threshold]


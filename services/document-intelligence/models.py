"""Pydantic models for OCR results, model extractions, consensus and mapped fields."""

from datetime import date
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

EncounterType = Literal["inpatient", "observation", "ed", "outpatient"]
FacilityType = Literal["public_hospital", "dsh_hospital", "safety_net", "critical_access", "standard"]
InsuranceStatus = Literal["uninsured", "underinsured", "medicaid", "medicare", "commercial"]
MedicaidStatus = Literal["active", "pending", "recently_terminated", "never", "unknown"]
MedicareStatus = Literal["active_part_a", "active_part_b", "pending", "none"]
DisabilityLikelihood = Literal["high", "medium", "low"]
DocumentType = Literal[
    "HOSPITAL_BILL",
    "UB04_CLAIM",
    "MEDICAL_RECORD",
    "DISCHARGE_SUMMARY",
    "INSURANCE_EOB",
    "INSURANCE_CARD",
    "PATIENT_INFO_FORM",
    "MIXED",
    "UNKNOWN",
]


class EngineResult(BaseModel):
    """Output of a single OCR provider call."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    key_value_pairs: dict[str, str] = Field(default_factory=dict)
    success: bool = False
    error: str | None = None

    @model_validator(mode="after")
    def _success_matches_text(self):
        if not self.success and self.text:
            raise ValueError("unsuccessful OCR result must not carry text")
        if self.success and not self.text.strip():
            raise ValueError("successful OCR result must carry text")
        return self

    @classmethod
    def failed(cls, error: str | None = None) -> "EngineResult":
        return cls(text="", confidence=0.0, key_value_pairs={}, success=False, error=error)


class AggregatedOCRResult(EngineResult):
    """Best OCR result across providers, tagged with the engine that produced it."""

    engine: str


class ExtractedDocumentData(BaseModel):
    """Flat set of document fields reported by one model (or by consensus).

    Every field is optional; None means "not found".
    """

    # Patient
    patient_name: str | None = None
    patient_first_name: str | None = None
    patient_last_name: str | None = None
    date_of_birth: str | None = None
    patient_address: str | None = None
    patient_state: str | None = None

    # Account / encounter
    account_number: str | None = None
    mrn: str | None = None
    date_of_service: str | None = None
    admission_date: str | None = None
    discharge_date: str | None = None
    encounter_type: str | None = None
    length_of_stay: float | None = None

    # Financial
    total_charges: float | None = None
    total_billed: float | None = None
    amount_due: float | None = None

    # Facility
    facility_name: str | None = None
    facility_state: str | None = None
    facility_type: str | None = None

    # Insurance
    insurance_type: str | None = None
    insurance_name: str | None = None
    insurance_id: str | None = None
    medicaid_id: str | None = None
    medicare_id: str | None = None
    policy_number: str | None = None
    group_number: str | None = None

    # Clinical
    diagnoses: list[str] | None = None
    procedures: list[str] | None = None
    primary_diagnosis: str | None = None

    document_type: str | None = None

    def present_fields(self) -> dict:
        return {k: v for k, v in self.model_dump().items() if is_present(v)}


def is_present(value) -> bool:
    """None, blank strings and empty lists all mean "not found"."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, list):
        return any(is_present(v) for v in value)
    return True


NUMERIC_FIELDS: tuple[str, ...] = ("length_of_stay", "total_charges", "total_billed", "amount_due")
LIST_FIELDS: tuple[str, ...] = ("diagnoses", "procedures")


class ParseResult(BaseModel):
    """Output of one AI model invocation. data=None means the extraction failed."""

    model: str
    data: ExtractedDocumentData | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    error: str | None = None
    response_time_ms: int = 0


class ConsensusResult(BaseModel):
    consensus: ExtractedDocumentData = Field(default_factory=ExtractedDocumentData)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    agreement_score: float = Field(default=0.0, ge=0.0, le=1.0)
    model_results: list[ParseResult] = Field(default_factory=list)
    field_agreement: dict[str, float] = Field(default_factory=dict)
    field_confidence: dict[str, float] = Field(default_factory=dict)

    @property
    def usable(self) -> bool:
        return bool(self.consensus.present_fields())


class MappedAssessmentFields(BaseModel):
    """Normalized assessment fields with per-field confidence."""

    # Patient demographics
    patient_name: str | None = None
    date_of_birth: date | None = None
    state_of_residence: str | None = None

    # Encounter
    account_number: str | None = None
    date_of_service: date | None = None
    encounter_type: EncounterType | None = None
    length_of_stay: int | None = None
    total_charges: float | None = None

    # Facility
    facility_state: str | None = None
    facility_type: FacilityType | None = None

    # Insurance
    insurance_status_on_dos: InsuranceStatus | None = None
    medicaid_status: MedicaidStatus | None = None
    medicare_status: MedicareStatus | None = None

    # Inferred
    disability_likelihood: DisabilityLikelihood | None = None

    field_confidence: dict[str, float] = Field(default_factory=dict)
    document_type: DocumentType = "UNKNOWN"


class PipelineResult(BaseModel):
    ocr: AggregatedOCRResult
    consensus: ConsensusResult
    fields: MappedAssessmentFields
    processing_time_ms: int

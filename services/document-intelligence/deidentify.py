"""PHI de-identification around the model ensemble.

Identifiers are pulled out of the OCR result locally, replaced with
placeholder tokens before any text leaves the process, and merged back
into the consensus afterwards. Remote models never see them and never
supply them.
"""

import logging
import re
from collections import Counter
from datetime import date

from pydantic import BaseModel, Field

from models import ConsensusResult
from normalizers import STATE_CODES, clean_text, normalize_state, parse_date

logger = logging.getLogger(__name__)

# Age is reported as 90 for anyone older than 89
MAX_REPORTED_AGE = 90

DATE_PATTERN = r"(?:0?[1-9]|1[0-2])[/-](?:0?[1-9]|[12]\d|3[01])[/-](?:19|20)\d{2}"

SSN_RE = re.compile(r"\b\d{3}[-\s]?\d{2}[-\s]?\d{4}\b")
PHONE_RE = re.compile(r"(?<!\d)(?:\+?1[-.\s]?)?\(?[2-9]\d{2}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b")
EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
IP_RE = re.compile(r"\b(?:(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\.){3}(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\b")
STREET_RE = re.compile(
    r"\b\d{1,5}[ \t]+(?:[A-Z][a-z]+[ \t]+)+"
    r"(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Drive|Dr|Lane|Ln|Way|Court|Ct|Circle|Cir)\b\.?"
    r"(?:[ \t]*,?[ \t]*(?:Apt|Suite|Unit|#)[ \t]*[A-Z0-9-]+)?"
)
MEDICARE_ID_RE = re.compile(r"\b[1-9][A-Z][A-Z0-9]\d[A-Z][A-Z0-9]\d[A-Z][A-Z0-9]\d{2}\b")

# Labeled values in free text; group 1 is the value
PATIENT_NAME_RE = re.compile(r"\bPATIENT[ \t]+NAME[ \t]*[:#]?[ \t]*([A-Za-z][A-Za-z ,.'-]*[A-Za-z.])", re.IGNORECASE)
DOB_RE = re.compile(
    rf"\b(?:DOB|D\.O\.B\.|DATE[ \t]+OF[ \t]+BIRTH|BIRTH[ \t]*DATE)[ \t]*[:#]?[ \t]*({DATE_PATTERN})\b",
    re.IGNORECASE,
)
ACCOUNT_RE = re.compile(r"\b(?:Patient[ \t]+Account|Account|Acct)(?:[ \t]+(?:No|Number))?[\s#:.]*((?=[A-Z-]*\d)[A-Z0-9-]{5,15})\b", re.IGNORECASE)
MRN_RE = re.compile(r"\b(?:MRN|Medical[ \t]+Record|Med[ \t]+Rec)(?:[ \t]+(?:No|Number))?[\s#:.]*(\d{5,10})\b", re.IGNORECASE)

# Form-field labels (lowercased) for each identifier, most specific first
KV_LABELS: dict[str, tuple[str, ...]] = {
    "patient_name": ("patient name", "patient", "name"),
    "date_of_birth": ("date of birth", "dob", "birth date", "birthdate"),
    "patient_address": ("patient address", "address"),
    "patient_state": ("state",),
    "account_number": ("account number", "patient account", "account", "acct"),
    "mrn": ("mrn", "medical record number"),
    "insurance_id": ("member id", "subscriber id", "insurance id"),
    "medicaid_id": ("medicaid id", "medicaid"),
    "medicare_id": ("medicare id", "medicare", "hic", "mbi"),
    "policy_number": ("policy number", "policy"),
    "group_number": ("group number", "group"),
    "phone": ("phone", "telephone"),
    "email": ("email", "e-mail"),
}

# Form fields never forwarded to a model
PHI_KEYS = frozenset({
    "patient name", "patient", "name", "first name", "last name",
    "date of birth", "dob", "birth date", "birthdate",
    "ssn", "social security", "social security number",
    "address", "patient address", "street", "street address",
    "phone", "telephone", "cell", "mobile",
    "email", "e-mail",
    "account number", "account", "acct", "patient account",
    "mrn", "medical record number", "medical record",
    "member id", "subscriber id", "insurance id",
    "medicaid id", "medicaid number", "medicaid",
    "medicare id", "medicare number", "medicare", "hic", "mbi",
    "policy number", "policy",
    "group number", "group",
})

# Consensus fields that are always taken from local extraction
MERGED_FIELDS: tuple[str, ...] = (
    "patient_name", "patient_first_name", "patient_last_name", "date_of_birth",
    "patient_address", "patient_state", "account_number", "mrn", "insurance_id",
    "medicaid_id", "medicare_id", "policy_number", "group_number",
)


class ExtractedPHI(BaseModel):
    """Identifiers found locally. Kept in process, never sent to a model."""

    patient_name: str | None = None
    patient_name_raw: str | None = None
    patient_first_name: str | None = None
    patient_last_name: str | None = None
    date_of_birth: str | None = None
    age: int | None = None
    patient_address: str | None = None
    patient_state: str | None = None
    account_number: str | None = None
    mrn: str | None = None
    insurance_id: str | None = None
    medicaid_id: str | None = None
    medicare_id: str | None = None
    policy_number: str | None = None
    group_number: str | None = None
    phone: str | None = None
    email: str | None = None
    ssn_detected: bool = False

    @property
    def found(self) -> list[str]:
        """Names of the identifiers present, for count-only logging."""
        return [k for k, v in self.model_dump(exclude={"patient_name_raw", "ssn_detected"}).items() if v is not None]


class DeidentifiedText(BaseModel):
    text: str
    replacements: dict[str, int] = Field(default_factory=dict)

    @property
    def replacement_count(self) -> int:
        return sum(self.replacements.values())


def calculate_age(date_of_birth: str, today: date | None = None) -> int | None:
    """Whole years since date_of_birth, capped at MAX_REPORTED_AGE."""
    born = parse_date(date_of_birth)
    if born is None:
        return None
    today = today or date.today()
    if born > today:
        return None

    age = today.year - born.year - ((today.month, today.day) < (born.month, born.day))
    return min(age, MAX_REPORTED_AGE)


def state_from_address(address: str) -> str | None:
    """Two-letter state from "... TX 78701" or a spelled-out state name."""
    if not address:
        return None

    match = re.search(r"\b([A-Z]{2})[ \t]*\d{5}\b", address)
    if match and normalize_state(match.group(1)):
        return match.group(1)

    upper = address.upper()
    # Longest names first so "WEST VIRGINIA" beats "VIRGINIA"
    for name in sorted(STATE_CODES, key=len, reverse=True):
        if re.search(rf"\b{name}\b", upper):
            return STATE_CODES[name]
    return None


def split_name(name: str) -> tuple[str, str | None, str | None]:
    """Display name plus first/last parts. Handles "LAST, FIRST" as printed on claim forms."""
    if "," in name:
        last, _, rest = name.partition(",")
        last, rest = last.strip(), rest.strip()
        if last and rest:
            first = rest.split()[0]
            return f"{rest} {last}", first, last

    parts = name.split()
    if len(parts) >= 2:
        return name, parts[0], parts[-1]
    return name, None, None


def extract_phi(text: str, key_value_pairs: dict[str, str] | None = None) -> ExtractedPHI:
    """Collect identifiers from form fields first, then labeled text."""
    kv = {k.lower().strip(): v for k, v in (key_value_pairs or {}).items()}
    values: dict[str, str | None] = {
        field: next((clean_text(kv[label]) for label in labels if clean_text(kv.get(label))), None)
        for field, labels in KV_LABELS.items()
    }

    if values["patient_name"] is None:
        match = PATIENT_NAME_RE.search(text)
        if match:
            values["patient_name"] = match.group(1).strip()
    if values["date_of_birth"] is None:
        match = DOB_RE.search(text)
        if match:
            values["date_of_birth"] = match.group(1)
    if values["account_number"] is None:
        match = ACCOUNT_RE.search(text)
        if match:
            values["account_number"] = match.group(1)
    if values["mrn"] is None:
        match = MRN_RE.search(text)
        if match:
            values["mrn"] = match.group(1)
    if values["medicare_id"] is None:
        match = MEDICARE_ID_RE.search(text)
        if match:
            values["medicare_id"] = match.group(0)
    if values["phone"] is None:
        match = PHONE_RE.search(text)
        if match:
            values["phone"] = match.group(0)
    if values["email"] is None:
        match = EMAIL_RE.search(text)
        if match:
            values["email"] = match.group(0)

    phi = ExtractedPHI(**values, ssn_detected=bool(SSN_RE.search(text)))

    if phi.patient_name:
        phi.patient_name_raw = phi.patient_name
        phi.patient_name, phi.patient_first_name, phi.patient_last_name = split_name(phi.patient_name)
    if phi.date_of_birth:
        phi.age = calculate_age(phi.date_of_birth)
    if phi.patient_state:
        phi.patient_state = normalize_state(phi.patient_state) or phi.patient_state
    elif phi.patient_address:
        phi.patient_state = state_from_address(phi.patient_address)

    # PHI: field names only
    logger.debug("Local PHI extraction found: %s", ", ".join(phi.found) or "nothing")
    return phi


def _replace_value(text: str, value: str | None, token: str) -> tuple[str, int]:
    """Replace whole-token, case-insensitive occurrences of a known value."""
    if not value or not value.strip():
        return text, 0
    pattern = re.compile(rf"(?<!\w){re.escape(value.strip())}(?!\w)", re.IGNORECASE)
    return pattern.subn(token, text)


def deidentify_text(text: str, phi: ExtractedPHI) -> DeidentifiedText:
    """Swap known identifiers for tokens, then scrub any pattern-shaped leftovers."""
    counts: Counter[str] = Counter()

    def swap(kind: str, value: str | None, token: str) -> None:
        nonlocal text
        text, n = _replace_value(text, value, token)
        counts[kind] += n

    # Contact values first so names inside them are not split
    swap("email", phi.email, "[EMAIL]")
    swap("phone", phi.phone, "[PHONE]")

    # Full name before its parts
    swap("name", phi.patient_name_raw, "[PATIENT]")
    if phi.patient_name != phi.patient_name_raw:
        swap("name", phi.patient_name, "[PATIENT]")
    swap("name", phi.patient_first_name, "[FIRST_NAME]")
    swap("name", phi.patient_last_name, "[LAST_NAME]")

    if phi.date_of_birth:
        swap("dob", phi.date_of_birth, f"[AGE: {phi.age}]" if phi.age is not None else "[DOB_REDACTED]")
    if phi.patient_address:
        swap("address", phi.patient_address, f"[ADDRESS in {phi.patient_state}]" if phi.patient_state else "[ADDRESS_REDACTED]")

    swap("account", phi.account_number, "[ACCOUNT]")
    swap("mrn", phi.mrn, "[MRN]")
    swap("insurance_id", phi.insurance_id, "[INSURANCE_ID]")
    swap("medicaid_id", phi.medicaid_id, "[MEDICAID_ID]")
    swap("medicare_id", phi.medicare_id, "[MEDICARE_ID]")
    swap("policy", phi.policy_number, "[POLICY]")
    swap("group", phi.group_number, "[GROUP]")

    for kind, pattern, token in (
        ("ssn", SSN_RE, "[SSN_REDACTED]"),
        ("phone", PHONE_RE, "[PHONE]"),
        ("email", EMAIL_RE, "[EMAIL]"),
        ("ip", IP_RE, "[IP_REDACTED]"),
        ("address", STREET_RE, "[ADDRESS]"),
        ("medicare_id", MEDICARE_ID_RE, "[MEDICARE_ID]"),
    ):
        text, n = pattern.subn(token, text)
        counts[kind] += n

    return DeidentifiedText(text=text, replacements={k: n for k, n in counts.items() if n})


def deidentify_key_value_pairs(key_value_pairs: dict[str, str], phi: ExtractedPHI) -> dict[str, str]:
    """Drop identifying form fields; keep age and state in their place."""
    safe: dict[str, str] = {}
    for key, value in key_value_pairs.items():
        label = key.lower().strip()
        if label not in PHI_KEYS:
            safe[key] = value
            continue
        if label in {"date of birth", "dob", "birth date", "birthdate"} and phi.age is not None:
            safe["Age"] = str(phi.age)
        if "address" in label and phi.patient_state:
            safe["Patient State"] = phi.patient_state
    return safe


def validate_deidentification(text: str) -> list[str]:
    """Identifier patterns still present after de-identification. Empty means clean."""
    issues = []
    if SSN_RE.search(text):
        issues.append("SSN pattern detected")
    if EMAIL_RE.search(text):
        issues.append("Email address detected")
    if MEDICARE_ID_RE.search(text):
        issues.append("Medicare ID pattern detected")
    return issues


def merge_phi_into_consensus(consensus: ConsensusResult, phi: ExtractedPHI, confidence: float) -> ConsensusResult:
    """Overwrite identifier fields with the local values.

    confidence is recorded for every merged field; the pipeline passes the
    OCR confidence since the values were read straight off the OCR result.
    """
    values = {field: getattr(phi, field) for field in MERGED_FIELDS if getattr(phi, field) is not None}
    if not values:
        return consensus

    field_confidence = dict(consensus.field_confidence)
    field_confidence.update({field: confidence for field in values})
    return consensus.model_copy(update={
        "consensus": consensus.consensus.model_copy(update=values),
        "field_confidence": field_confidence,
    })

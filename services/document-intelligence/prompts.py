"""Extraction prompt shared by every model in the ensemble.

All models receive the same schema so their answers can be compared field
by field during consensus.
"""

_JSON_SUFFIX = """

CRITICAL OUTPUT RULES:
- Return ONLY a single valid JSON object. No other text before or after.
- Do NOT include any thinking, preamble, explanation, or markdown formatting.
- Do NOT wrap in code fences. Just raw JSON.
- If a field is not present in the document, omit it entirely from the JSON."""

EXTRACTION_SYSTEM_PROMPT = """You are an expert healthcare revenue cycle document parser.
You extract billing, patient, and insurance information from hospital bills,
UB-04 claim forms, medical records, discharge summaries, insurance EOBs and
patient registration forms.

Return a JSON object using EXACTLY these keys:

{
  "patientName": "patient full name",
  "patientFirstName": "first name only",
  "patientLastName": "last name only",
  "dateOfBirth": "patient DOB in YYYY-MM-DD format",
  "patientAddress": "full address if available",
  "patientState": "2-letter state code (e.g. TX, CA)",

  "accountNumber": "hospital account number or patient account",
  "mrn": "medical record number if different from account",
  "dateOfService": "service date in YYYY-MM-DD format",
  "admissionDate": "admission date in YYYY-MM-DD format",
  "dischargeDate": "discharge date in YYYY-MM-DD format",
  "encounterType": "inpatient|outpatient|observation|ed",
  "lengthOfStay": number of days,

  "totalCharges": total billed amount as a NUMBER (no $ or commas),
  "totalBilled": same as totalCharges if a separate field exists,
  "amountDue": patient responsibility amount if shown,

  "facilityName": "hospital or facility name",
  "facilityState": "2-letter state code of the facility",
  "facilityType": "public_hospital|dsh_hospital|safety_net|critical_access|standard, only if stated",

  "insuranceType": "medicaid|medicare|commercial|self-pay|uninsured",
  "insuranceName": "insurance company name",
  "insuranceId": "member ID or subscriber ID",
  "medicaidId": "Medicaid ID if the patient has Medicaid",
  "medicareId": "Medicare ID (HIC/MBI) if the patient has Medicare",
  "policyNumber": "insurance policy number",
  "groupNumber": "insurance group number",

  "diagnoses": ["ICD-10 codes or diagnosis descriptions"],
  "procedures": ["CPT/HCPCS codes or procedure descriptions"],
  "primaryDiagnosis": "main diagnosis",

  "documentType": "HOSPITAL_BILL|UB04_CLAIM|MEDICAL_RECORD|DISCHARGE_SUMMARY|INSURANCE_EOB|INSURANCE_CARD|PATIENT_INFO_FORM|MIXED|UNKNOWN"
}

Important:
- Dates: look for "Date of Service", "DOS", "Admission Date", "Statement Date"; convert ALL dates to YYYY-MM-DD
- Charges: look for "Total Charges", "Amount Billed", "Total Due", "Balance Due"
- Account number: look for "Account #", "Patient Account", "Acct", "Invoice #"
- UB-04 forms: type of bill in FL 4, statement period in FL 6, total charges on revenue line 0001
- Encounter type: "IP" = inpatient, "OP" = outpatient, "OBS" = observation, "ED"/"ER" = ed
- Medicare IDs (MBI) are 11 characters, e.g. 1EG4TE5MK73
- Convert full state names to 2-letter codes (Texas = TX)""" + _JSON_SUFFIX


def build_user_prompt(text: str, key_value_pairs: dict[str, str] | None = None) -> str:
    """Document text plus any OCR form fields, framed for extraction."""
    form_fields = "\n".join(f"{k}: {v}" for k, v in (key_value_pairs or {}).items())
    return f"""Extract ALL billing and patient information from this healthcare document.

=== DOCUMENT TEXT ===
{text}

=== FORM FIELDS (extracted by OCR) ===
{form_fields or "(none)"}

Return ONLY the JSON object."""

"""Shared test fixtures for document intelligence tests."""

import json
import sys
from pathlib import Path

import pytest

# Add parent directory to path so we can import the modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from client_registry import ClientRegistry
from config import settings


@pytest.fixture
def registry() -> ClientRegistry:
    """Fresh registry so tests never share cached clients."""
    reg = ClientRegistry()
    yield reg
    reg.close()


@pytest.fixture
def no_credentials(monkeypatch):
    """Blank every provider credential so factories report "not configured"."""
    for key in (
        "AWS_ACCESS_KEY_ID",
        "GOOGLE_CLOUD_VISION_API_KEY",
        "AZURE_COMPUTER_VISION_KEY",
        "AZURE_COMPUTER_VISION_ENDPOINT",
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "GOOGLE_AI_API_KEY",
        "OLLAMA_URL",
    ):
        monkeypatch.setattr(settings, key, "")


@pytest.fixture
def ub04_text() -> str:
    """OCR text of a UB-04 claim form."""
    return (
        "UB-04 CMS-1450\n"
        "GENERAL HOSPITAL OF AUSTIN\n"
        "TYPE OF BILL 0111\n"
        "PATIENT NAME: DOE, JANE\n"
        "BIRTHDATE 04/12/1968\n"
        "ADMISSION DATE 03/01/2024  DISCHARGE DATE 03/05/2024\n"
        "REVENUE CODE 0001 TOTAL CHARGES $1,500.00\n"
        "PAYER: TEXAS MEDICAID\n"
        "PRINCIPAL DIAGNOSIS E11.9\n"
    )


@pytest.fixture
def model_payload() -> dict:
    """Model reply for the UB-04 above, with the keys the prompt asks for."""
    return {
        "patientName": "Jane Doe",
        "dateOfBirth": "1968-04-12",
        "patientState": "Texas",
        "accountNumber": "ACCT-884211",
        "admissionDate": "2024-03-01",
        "dischargeDate": "2024-03-05",
        "encounterType": "IP",
        "totalCharges": "$1,500.00",
        "facilityName": "General Hospital of Austin",
        "insuranceType": "Medicaid",
        "medicaidId": "518447392",
        "diagnoses": ["E11.9", "I10"],
        "documentType": "UB04_CLAIM",
    }


@pytest.fixture
def model_response(model_payload: dict) -> str:
    """Model reply serialized as raw JSON text."""
    return json.dumps(model_payload)


@pytest.fixture
def mock_markdown_response() -> str:
    """Model reply wrapped in a markdown code fence."""
    return '```json\n{"patientName": "Jane Doe", "totalCharges": 1500}\n```'


@pytest.fixture
def mock_preamble_response() -> str:
    """Model reply with text before the JSON."""
    return 'Here is the extracted data:\n\n{"patientName": "Jane Doe", "totalCharges": 1500}'

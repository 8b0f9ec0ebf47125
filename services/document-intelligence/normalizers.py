"""Value normalizers shared by model-output cleanup and the field mapper.

All parsers fail closed: an unparsable value returns None, never a default.
"""

import logging
import re
from datetime import date, datetime

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

DATE_FORMATS = [
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%Y/%m/%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%m%d%Y",
]

MIN_YEAR = 1900
MAX_YEAR = 2100

STATE_CODES: dict[str, str] = {
    "ALABAMA": "AL", "ALASKA": "AK", "ARIZONA": "AZ", "ARKANSAS": "AR",
    "CALIFORNIA": "CA", "COLORADO": "CO", "CONNECTICUT": "CT", "DELAWARE": "DE",
    "FLORIDA": "FL", "GEORGIA": "GA", "HAWAII": "HI", "IDAHO": "ID",
    "ILLINOIS": "IL", "INDIANA": "IN", "IOWA": "IA", "KANSAS": "KS",
    "KENTUCKY": "KY", "LOUISIANA": "LA", "MAINE": "ME", "MARYLAND": "MD",
    "MASSACHUSETTS": "MA", "MICHIGAN": "MI", "MINNESOTA": "MN", "MISSISSIPPI": "MS",
    "MISSOURI": "MO", "MONTANA": "MT", "NEBRASKA": "NE", "NEVADA": "NV",
    "NEW HAMPSHIRE": "NH", "NEW JERSEY": "NJ", "NEW MEXICO": "NM", "NEW YORK": "NY",
    "NORTH CAROLINA": "NC", "NORTH DAKOTA": "ND", "OHIO": "OH", "OKLAHOMA": "OK",
    "OREGON": "OR", "PENNSYLVANIA": "PA", "RHODE ISLAND": "RI", "SOUTH CAROLINA": "SC",
    "SOUTH DAKOTA": "SD", "TENNESSEE": "TN", "TEXAS": "TX", "UTAH": "UT",
    "VERMONT": "VT", "VIRGINIA": "VA", "WASHINGTON": "WA", "WEST VIRGINIA": "WV",
    "WISCONSIN": "WI", "WYOMING": "WY", "DISTRICT OF COLUMBIA": "DC",
    "PUERTO RICO": "PR",
}
VALID_STATE_CODES = frozenset(STATE_CODES.values())


def clean_text(value) -> str | None:
    """Strip a scalar to text; empty, null-ish and non-scalar values become None."""
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    if not text or text.lower() in {"null", "none", "n/a", "unknown"}:
        return None
    return text


def parse_amount(value) -> float | None:
    """Parse a currency value such as "$1,500.00", "1500" or "(25.00)"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    negative = text.startswith("(") and text.endswith(")")
    cleaned = re.sub(r"[$,\s()]|USD", "", text, flags=re.IGNORECASE)
    if cleaned.endswith("-"):
        negative, cleaned = True, cleaned[:-1]

    try:
        amount = float(cleaned)
    except ValueError:
        logger.debug("Could not parse amount: %r", text[:40])
        return None
    return -amount if negative else amount


def parse_number(value) -> float | None:
    """Parse a plain count such as "3", "3 days" or 3.0."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    match = re.search(r"-?\d+(?:\.\d+)?", str(value).replace(",", ""))
    return float(match.group(0)) if match else None


def parse_date(value) -> date | None:
    """Parse a date string into a date, trying explicit formats before dateutil."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = clean_text(value)
    if text is None:
        return None

    parsed = None
    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt).date()
            break
        except ValueError:
            continue

    if parsed is None:
        try:
            parsed = date_parser.parse(text, fuzzy=False).date()
        except (ValueError, OverflowError):
            logger.debug("Could not parse date: %r", text[:40])
            return None

    if not MIN_YEAR <= parsed.year <= MAX_YEAR:
        return None
    return parsed


def normalize_date_string(value) -> str | None:
    """Canonical ISO date string when parseable, otherwise the cleaned raw text."""
    parsed = parse_date(value)
    if parsed is not None:
        return parsed.isoformat()
    return clean_text(value)


def normalize_state(value) -> str | None:
    """Two-letter US state code, or None when the value is not a state."""
    text = clean_text(value)
    if text is None:
        return None

    cleaned = re.sub(r"[^A-Z ]", "", text.upper()).strip()
    if cleaned in VALID_STATE_CODES:
        return cleaned
    return STATE_CODES.get(cleaned)


def normalize_list(value) -> list[str] | None:
    """Accept a list or a comma/semicolon separated string; empty becomes None."""
    if value is None:
        return None
    if isinstance(value, str):
        items = re.split(r"[,;]", value)
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        return None

    cleaned = [text for text in (clean_text(item) for item in items) if text]
    return cleaned or None


def alias_key(value: str) -> str:
    """Lowercase and collapse punctuation so "In-Patient" and "in patient" match."""
    return re.sub(r"[^a-z0-9]+", " ", value.lower()).strip()

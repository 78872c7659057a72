# backend/placeholder_engine.py
import re
from datetime import date, datetime
from openpyxl.utils.datetime import from_excel

from placeholder_hints import column_candidates, is_date_column

QR_PLACEHOLDER = "QRCode"
AUTO = "AUTO"  # QRCode mapping: build the payload from the job's QR pattern

DEFAULT_FILENAME_PATTERN = "{CertificateNo}_{Name}"
DEFAULT_QR_PATTERN = (
    "Cert:{CertificateNo}|Name:{Name}|Aadhar:{AadharNo}|DOB:{DOB}|Enroll:{EnrollmentNo}"
    "|Job:{JobRole}|Duration:{Duration}|Center:{TrainingCenter}|Dist:{District}|State:{State}"
    "|Partner:{AssessmentPartner}|Place:{IssuePlace}|Grade:{Grade}|Date:{IssueDate}"
)

PATTERN_TOKEN_RE = re.compile(r"\{([A-Za-z0-9_]+)\}")
UNSAFE_FILENAME_RE = re.compile(r'[\\/:*?"<>|\r\n\t]+')

def normalize_key(key: str) -> str:
    """
    Loose form used to match placeholders against column headers:
    strip braces, lowercase, drop spaces/underscores/dashes.
    """
    k = key.strip().strip("{}[]").strip().lower()
    return re.sub(r"[\s_\-]+", "", k)

def auto_map(placeholders: list[str], columns: list[str], existing: dict | None = None) -> dict:
    """Bind each placeholder to a dataset column; keeps bindings already made."""
    existing = existing or {}
    by_norm = {}
    for c in columns:
        by_norm.setdefault(normalize_key(c), c)
    out = {}
    for ph in placeholders:
        if existing.get(ph):
            out[ph] = existing[ph]; continue
        col = None
        for cand in column_candidates(ph):
            col = by_norm.get(normalize_key(cand))
            if col: break
        if ph == QR_PLACEHOLDER and not col:
            col = AUTO
        out[ph] = col
    return out

def unmapped(placeholders: list[str], mappings: dict) -> list[str]:
    return [p for p in placeholders if p != QR_PLACEHOLDER and not mappings.get(p)]

def format_value(value, date_like: bool = False) -> str:
    if value is None or value == "":
        return ""
    if isinstance(value, (datetime, date)):
        return value.strftime("%d/%m/%Y")
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        if date_like:
            # Excel serial day number
            return from_excel(value).strftime("%d/%m/%Y")
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    return str(value).strip()

def lookup(row: dict, placeholder: str, column: str | None):
    """Value for a placeholder: its mapped column, else the first known alias with a value."""
    if column and column != AUTO:
        return column, row.get(column)
    for cand in column_candidates(placeholder):
        v = row.get(cand)
        if v is not None and str(v).strip() != "":
            return cand, v
    return None, None

def build_values(row: dict, mappings: dict) -> dict[str, str]:
    values = {}
    for ph, col in mappings.items():
        if ph == QR_PLACEHOLDER:
            continue
        col, raw = lookup(row, ph, col)
        values[ph] = format_value(raw, is_date_column(col or ph))
    return values

def fill_pattern(pattern: str, values: dict) -> str:
    return PATTERN_TOKEN_RE.sub(lambda m: str(values.get(m.group(1), "") or ""), pattern)

def qr_text(row: dict, values: dict, pattern: str, column: str | None = None) -> str:
    """The row's own QR column wins when filled; otherwise the job pattern."""
    col = column if column and column != AUTO else QR_PLACEHOLDER
    own = row.get(col)
    if own is not None and str(own).strip():
        return str(own)
    return fill_pattern(pattern, values)

def certificate_filename(pattern: str, values: dict, ext: str = ".docx") -> str:
    name = UNSAFE_FILENAME_RE.sub("_", fill_pattern(pattern or DEFAULT_FILENAME_PATTERN, values)).strip(" ._")
    return (name or "certificate") + ext

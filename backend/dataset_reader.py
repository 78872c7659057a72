# backend/dataset_reader.py
import io
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from placeholder_hints import REQUIRED_COLUMNS


class DatasetError(ValueError):
    """The uploaded spreadsheet could not be read."""


@dataclass
class DatasetSheet:
    columns: list[str] = field(default_factory=list)
    rows: list[dict] = field(default_factory=list)


@dataclass
class ValidationResult:
    is_valid: bool
    missing_columns: list[str]
    total_rows: int


def _cell(value):
    # rows are stored as JSON, so dates become dd/mm/YYYY text here
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.strftime("%d/%m/%Y")
    if isinstance(value, time):
        return value.isoformat()
    return value

def read_dataset(xlsx_bytes: bytes) -> DatasetSheet:
    """First worksheet; first row is the header; blank cells become ""."""
    try:
        wb = load_workbook(io.BytesIO(xlsx_bytes), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise DatasetError(f"Could not read spreadsheet: {e}") from e
    try:
        ws = wb.worksheets[0]
        it = ws.iter_rows(values_only=True)
        header = next(it, None)
        if header is None:
            return DatasetSheet()
        cols = [(i, str(h)) for i, h in enumerate(header) if h is not None and str(h) != ""]
        rows = []
        for values in it:
            if values is None or all(v is None or v == "" for v in values):
                continue
            rows.append({name: _cell(values[i] if i < len(values) else None) for i, name in cols})
        return DatasetSheet(columns=[name for _, name in cols], rows=rows)
    finally:
        wb.close()

def validate_columns(sheet: DatasetSheet, required: list[str] = REQUIRED_COLUMNS) -> ValidationResult:
    missing = [c for c in required if c not in sheet.columns]
    return ValidationResult(is_valid=not missing, missing_columns=missing, total_rows=len(sheet.rows))

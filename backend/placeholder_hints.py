# backend/placeholder_hints.py
import re

# Placeholders the certificate templates are expected to use; offered for
# mapping even when the uploaded template doesn't mention them yet.
STANDARD_PLACEHOLDERS = [
    "Name", "DOB", "CertificateNo", "RegistrationNo", "Level", "CandidateId",
    "IssueDate", "Grade", "AadharNo", "EnrollmentNo", "SonOrDaughterOf",
    "JobRole", "Duration", "TrainingCenter", "District", "State",
    "AssessmentPartner", "IssuePlace",
    "QRCode",  # column holding the QR payload, or AUTO
]

REQUIRED_COLUMNS = ["Name", "AadharNo", "DOB", "CertificateNo"]

# Spreadsheet headers seen in the wild for placeholders whose column is named differently.
COLUMN_ALIASES = {
    "Grade": ["Grade", "GRADE", "grade", "Grade ", " Result", "Result", "RESULT"],
    "IssueDate": ["Date of Issue", "Issue Date"],
    "EnrollmentNo": ["Enrollment", "Enrolment No"],
    "JobRole": ["job role", "Job Role"],
    "TrainingCenter": ["Training Centre", "Training Center"],
    "AssessmentPartner": ["Assessment Partner"],
    "IssuePlace": ["Place of Issue"],
    "SonOrDaughterOf": ["S/O D/O", "Father Name"],
}

DATE_HINT_TOKENS = {"date", "dob"}
WORD_RE = re.compile(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])|\d+")

def column_candidates(placeholder: str) -> list[str]:
    """Column names to try, in order, for a placeholder with no explicit mapping."""
    return [placeholder] + COLUMN_ALIASES.get(placeholder, [])

def is_date_column(name: str) -> bool:
    # "IssueDate", "Date of Issue", "DOB" yes; "CandidateId" no
    return any(w.lower() in DATE_HINT_TOKENS for w in WORD_RE.findall(name or ""))

# backend/app.py
import os, uuid, json, logging
from fastapi import FastAPI, UploadFile, File, HTTPException, Form, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.orm import Session

import crud
from config import DATA_DIR, LOG_LEVEL, CORS_ORIGINS
from db import Base, engine, SessionLocal
from dataset_reader import DatasetError, read_dataset, validate_columns
from docx_parser import TemplateRenderError, find_placeholders
from generator import run_generation_job
from placeholder_engine import (
    QR_PLACEHOLDER, AUTO, DEFAULT_FILENAME_PATTERN, DEFAULT_QR_PATTERN, auto_map, unmapped,
)
from placeholder_hints import STANDARD_PLACEHOLDERS
from render_service import docx_to_html

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger("certgen")

os.makedirs(os.path.join(DATA_DIR, "templates"), exist_ok=True)
Base.metadata.create_all(bind=engine)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

app = FastAPI(title="Certificate Generator API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS, allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)

def db_sess():
    db = SessionLocal()
    try: yield db
    finally: db.close()

# ---------- helpers ----------
def _ts(d):
    return d.isoformat() if d else None

def dataset_out(d, with_data=False):
    out = {"id": d.id, "name": d.name, "description": d.description, "file_name": d.file_name,
           "file_size": d.file_size, "total_rows": d.total_rows, "columns": d.columns,
           "status": d.status, "created_at": _ts(d.created_at)}
    if with_data: out["data"] = d.data
    return out

def template_out(t):
    return {"id": t.id, "name": t.name, "description": t.description, "file_name": t.file_name,
            "file_size": t.file_size, "placeholders": t.placeholders, "mappings": t.mappings,
            "status": t.status, "created_at": _ts(t.created_at)}

def job_out(j):
    return {"id": j.id, "dataset_id": j.dataset_id, "template_id": j.template_id,
            "dataset_name": j.dataset.name if j.dataset else None,
            "template_name": j.template.name if j.template else None,
            "output_format": j.output_format, "filename_pattern": j.filename_pattern,
            "total_certificates": j.total_certificates,
            "successful_certificates": j.successful_certificates,
            "failed_certificates": j.failed_certificates,
            "status": j.status, "progress": j.progress, "current_row": j.current_row,
            "created_at": _ts(j.created_at), "completed_at": _ts(j.completed_at)}

def certificate_out(c):
    return {"id": c.id, "generation_job_id": c.generation_job_id, "participant_name": c.participant_name,
            "certificate_no": c.certificate_no, "filename": c.filename, "file_size": c.file_size,
            "qr_code_data": c.qr_code_data, "status": c.status, "error": c.error,
            "created_at": _ts(c.created_at)}

def get_or_404(service, db, id, what):
    rec = service.get_by_id(db, id)
    if not rec: raise HTTPException(404, f"{what} not found")
    return rec

# ---------- datasets ----------
@app.post("/api/datasets")
def upload_dataset(file: UploadFile = File(...), name: str | None = Form(None), db: Session = Depends(db_sess)):
    if not file.filename.lower().endswith(".xlsx"):
        raise HTTPException(status_code=400, detail="Only .xlsx supported")
    raw = file.file.read()
    try:
        sheet = read_dataset(raw)
    except DatasetError as e:
        raise HTTPException(status_code=400, detail=str(e))
    check = validate_columns(sheet)
    if not check.is_valid:
        raise HTTPException(status_code=400, detail=f"Missing required columns: {', '.join(check.missing_columns)}")

    ds = crud.datasets.create(
        db, name=name or os.path.splitext(file.filename)[0],
        description=f"Dataset uploaded from {file.filename}", file_name=file.filename,
        file_size=len(raw), total_rows=check.total_rows, columns=sheet.columns, data=sheet.rows,
    )
    crud.history.create(db, type="dataset", name=ds.name, description=ds.description, status="active",
                        details={"rows": ds.total_rows, "file_size": f"{round(len(raw) / 1024)} KB"})
    log.info("Dataset %s saved (%d rows)", ds.id, ds.total_rows)
    return dataset_out(ds)

@app.get("/api/datasets")
def list_datasets(db: Session = Depends(db_sess)):
    return [dataset_out(d) for d in crud.datasets.get_all(db)]

@app.get("/api/datasets/{dataset_id}")
def get_dataset(dataset_id: str, db: Session = Depends(db_sess)):
    return dataset_out(get_or_404(crud.datasets, db, dataset_id, "Dataset"), with_data=True)

# ---------- templates ----------
@app.post("/api/templates")
def upload_template(file: UploadFile = File(...), name: str | None = Form(None),
                    description: str | None = Form(None), dataset_id: str | None = Form(None),
                    db: Session = Depends(db_sess)):
    if not file.filename.lower().endswith(".docx"):
        raise HTTPException(status_code=400, detail="Only .docx supported")
    raw = file.file.read()
    try:
        placeholders = find_placeholders(raw)
    except TemplateRenderError as e:
        raise HTTPException(status_code=400, detail=str(e))

    template_id = str(uuid.uuid4())
    path = os.path.join(DATA_DIR, "templates", f"{template_id}.docx")
    with open(path, "wb") as f: f.write(raw)

    tpl = crud.templates.create(
        db, id=template_id, name=name or os.path.splitext(file.filename)[0], description=description,
        file_name=file.filename, file_size=len(raw), file_path=path, placeholders=placeholders, mappings={},
    )
    crud.history.create(db, type="template", name=tpl.name, description=description or "", status="active",
                        details={"placeholders": len(placeholders), "file_size": f"{round(len(raw) / 1024)} KB"})

    suggested = {}
    if dataset_id:
        ds = get_or_404(crud.datasets, db, dataset_id, "Dataset")
        suggested = auto_map(placeholders, ds.columns)
    return {"template": template_out(tpl), "placeholders": placeholders,
            "standard_placeholders": STANDARD_PLACEHOLDERS, "suggested_mappings": suggested}

@app.get("/api/templates")
def list_templates(db: Session = Depends(db_sess)):
    return [template_out(t) for t in crud.templates.get_all(db)]

@app.get("/api/templates/{template_id}")
def get_template(template_id: str, db: Session = Depends(db_sess)):
    return template_out(get_or_404(crud.templates, db, template_id, "Template"))

@app.get("/api/templates/{template_id}/preview")
def preview_template(template_id: str, db: Session = Depends(db_sess)):
    tpl = get_or_404(crud.templates, db, template_id, "Template")
    with open(tpl.file_path, "rb") as f: raw = f.read()
    try:
        return JSONResponse({"html": docx_to_html(raw)})
    except TemplateRenderError as e:
        raise HTTPException(status_code=400, detail=str(e))

@app.get("/api/templates/{template_id}/auto-map")
def suggest_mappings(template_id: str, dataset_id: str, db: Session = Depends(db_sess)):
    tpl = get_or_404(crud.templates, db, template_id, "Template")
    ds = get_or_404(crud.datasets, db, dataset_id, "Dataset")
    return auto_map(tpl.placeholders, ds.columns, tpl.mappings)

@app.post("/api/templates/{template_id}/mappings")
def save_mappings(template_id: str, mapping_json: str = Form(...), db: Session = Depends(db_sess)):
    tpl = get_or_404(crud.templates, db, template_id, "Template")
    try:
        mapping = json.loads(mapping_json)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="mapping_json must be a JSON object")
    if not isinstance(mapping, dict):
        raise HTTPException(status_code=400, detail="mapping_json must be a JSON object")

    mapping = {k: v for k, v in mapping.items() if k in tpl.placeholders}
    if QR_PLACEHOLDER in tpl.placeholders and not mapping.get(QR_PLACEHOLDER):
        mapping[QR_PLACEHOLDER] = AUTO
    missing = unmapped(tpl.placeholders, mapping)
    if missing:
        raise HTTPException(status_code=400,
                            detail=f"Please map all placeholders before saving ({len(missing)} remaining)")
    tpl = crud.templates.update(db, tpl.id, mappings=mapping)
    return template_out(tpl)

# ---------- generation ----------
@app.post("/api/generate")
def generate(dataset_id: str = Form(...), template_id: str = Form(...),
             filename_pattern: str = Form(DEFAULT_FILENAME_PATTERN),
             include_qr: bool = Form(True), qr_pattern: str = Form(DEFAULT_QR_PATTERN),
             db: Session = Depends(db_sess)):
    ds = get_or_404(crud.datasets, db, dataset_id, "Dataset")
    tpl = get_or_404(crud.templates, db, template_id, "Template")
    job = crud.generation_jobs.create(
        db, dataset_id=ds.id, template_id=tpl.id, output_format="docx",
        filename_pattern=filename_pattern, qr_pattern=qr_pattern if include_qr else None,
        total_certificates=ds.total_rows,
    )
    try:
        job = run_generation_job(db, job.id)
    except TemplateRenderError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return job_out(job)

@app.get("/api/jobs")
def list_jobs(db: Session = Depends(db_sess)):
    return [job_out(j) for j in crud.generation_jobs.get_all(db)]

@app.get("/api/jobs/{job_id}")
def get_job(job_id: str, db: Session = Depends(db_sess)):
    return job_out(get_or_404(crud.generation_jobs, db, job_id, "Job"))

@app.get("/api/jobs/{job_id}/certificates")
def job_certificates(job_id: str, db: Session = Depends(db_sess)):
    get_or_404(crud.generation_jobs, db, job_id, "Job")
    return [certificate_out(c) for c in crud.certificates.get_by_generation_job(db, job_id)]

@app.get("/api/certificates/{certificate_id}/download")
def download(certificate_id: str, db: Session = Depends(db_sess)):
    cert = get_or_404(crud.certificates, db, certificate_id, "Certificate")
    if cert.status != "ready" or not cert.file_path:
        raise HTTPException(404, "Certificate was not generated")
    return FileResponse(path=cert.file_path, filename=cert.filename, media_type=DOCX_MIME)

# ---------- history ----------
@app.get("/api/history")
def list_history(type: str | None = None, db: Session = Depends(db_sess)):
    rows = crud.history.get_by_type(db, type) if type else crud.history.get_all(db)
    return [{"id": h.id, "type": h.type, "name": h.name, "description": h.description,
             "status": h.status, "details": h.details, "created_at": _ts(h.created_at)} for h in rows]

# backend/generator.py
import os
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from qrcode.exceptions import DataOverflowError
from sqlalchemy.orm import Session

import crud
from config import DATA_DIR, GENERATION_WORKERS
from docx_parser import TemplateRenderError
from models import GenerationJob
from placeholder_engine import (
    QR_PLACEHOLDER, DEFAULT_FILENAME_PATTERN, DEFAULT_QR_PATTERN,
    auto_map, build_values, qr_text, certificate_filename,
)
from qr_image import make_qr_data_url
from template_renderer import render

log = logging.getLogger(__name__)


@dataclass
class GenerationOptions:
    filename_pattern: str = DEFAULT_FILENAME_PATTERN
    qr_pattern: str | None = DEFAULT_QR_PATTERN   # None: no QR code
    max_workers: int = GENERATION_WORKERS


@dataclass
class RowResult:
    row_index: int
    filename: str
    values: dict = field(default_factory=dict)
    qr_data: str | None = None
    content: bytes | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchResult:
    results: list[RowResult]
    cancelled: bool = False

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)


def render_row(template_bytes: bytes, row: dict, index: int, mappings: dict, options: GenerationOptions) -> RowResult:
    """Render one dataset row. Row-level problems come back as an errored RowResult."""
    result = RowResult(index, f"row_{index + 1}.docx")
    try:
        result.values = build_values(row, mappings)
        result.filename = certificate_filename(options.filename_pattern, result.values)
        qr_url = None
        if options.qr_pattern is not None:
            result.qr_data = qr_text(row, result.values, options.qr_pattern, mappings.get(QR_PLACEHOLDER))
            qr_url = make_qr_data_url(result.qr_data) if result.qr_data else None
        result.content = render(template_bytes, result.values, qr_url).content
    except (TemplateRenderError, DataOverflowError, ValueError, OverflowError) as e:
        log.warning("Row %d failed: %s", index + 1, e)
        result.error = str(e) or e.__class__.__name__
    return result

def generate_batch(template_bytes: bytes, rows: list[dict], mappings: dict,
                   options: GenerationOptions | None = None,
                   on_progress: Callable[[int, int], None] | None = None,
                   cancel: threading.Event | None = None) -> BatchResult:
    """
    Render every row against the same template bytes in a worker pool.
    Each render unpacks its own copy of the archive, so workers share nothing
    but the immutable input. on_progress(done, total) runs on the calling thread.
    """
    options = options or GenerationOptions()
    total = len(rows)
    results: list[RowResult | None] = [None] * total
    cancelled, done = False, 0
    with ThreadPoolExecutor(max_workers=max(1, options.max_workers)) as pool:
        futures = [pool.submit(render_row, template_bytes, row, i, mappings, options) for i, row in enumerate(rows)]
        for fut in as_completed(futures):
            r = fut.result()
            results[r.row_index] = r
            done += 1
            if on_progress:
                on_progress(done, total)
            if cancel is not None and cancel.is_set():
                cancelled = True
                for f in futures: f.cancel()
                break
    if cancelled:
        log.info("Generation cancelled after %d of %d rows", done, total)
    return BatchResult([r for r in results if r is not None], cancelled=cancelled)


# ---------- persisted jobs ----------
def _write_certificates(job: GenerationJob, batch: BatchResult) -> list[dict]:
    out_dir = os.path.join(DATA_DIR, "certificates", job.id)
    os.makedirs(out_dir, exist_ok=True)
    records = []
    for r in batch.results:
        path = None
        if r.ok:
            path = os.path.join(out_dir, f"{r.row_index + 1:05d}_{r.filename}")
            with open(path, "wb") as f: f.write(r.content)
        records.append(dict(
            generation_job_id=job.id, row_index=r.row_index,
            participant_name=r.values.get("Name", ""), certificate_no=r.values.get("CertificateNo", ""),
            filename=r.filename, file_size=len(r.content) if r.ok else 0, file_path=path,
            qr_code_data=r.qr_data, fields=r.values,
            status="ready" if r.ok else "error", error=r.error,
        ))
    return records

def run_generation_job(db: Session, job_id: str, cancel: threading.Event | None = None) -> GenerationJob:
    job = crud.generation_jobs.get_by_id(db, job_id)
    if job is None:
        raise LookupError(f"generation job {job_id} not found")
    dataset, template = job.dataset, job.template
    rows = dataset.data or []
    mappings = template.mappings or auto_map(template.placeholders, dataset.columns)

    # one read of the template per batch; every row renders from these bytes
    try:
        with open(template.file_path, "rb") as f:
            template_bytes = f.read()
    except OSError as e:
        crud.generation_jobs.update(db, job.id, status="failed", completed_at=datetime.now(timezone.utc))
        raise TemplateRenderError(f"Template file unavailable: {e}") from e

    crud.generation_jobs.update(db, job.id, status="running", total_certificates=len(rows))

    def progress(done, total):
        crud.generation_jobs.update(db, job.id, progress=round(done * 100 / total), current_row=done)

    options = GenerationOptions(filename_pattern=job.filename_pattern, qr_pattern=job.qr_pattern)
    batch = generate_batch(template_bytes, rows, mappings, options, progress, cancel)
    crud.certificates.create_batch(db, _write_certificates(job, batch))

    status = "failed" if rows and batch.successful == 0 else "completed"
    job = crud.generation_jobs.update(
        db, job.id, status=status, progress=100 if not batch.cancelled else job.progress,
        successful_certificates=batch.successful, failed_certificates=batch.failed,
        completed_at=datetime.now(timezone.utc),
    )
    log.info("Job %s %s: %d ok, %d failed", job.id, status, batch.successful, batch.failed)
    crud.history.create(
        db, type="generation", name=f"{dataset.name} - {template.name}",
        description=f"Generated {batch.successful} certificates ({batch.failed} failed)",
        status=status, details={"certificates": batch.successful, "failed": batch.failed},
    )
    return job

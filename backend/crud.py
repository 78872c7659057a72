# backend/crud.py
from sqlalchemy.orm import Session

from models import Dataset, Template, GenerationJob, Certificate, HistoryRecord


class CrudService:
    """create / get_all / get_by_id / update / delete over one record type."""

    def __init__(self, model):
        self.model = model

    def get_all(self, db: Session):
        return db.query(self.model).order_by(self.model.created_at.desc()).all()

    def get_by_id(self, db: Session, id: str):
        return db.get(self.model, id)

    def create(self, db: Session, **fields):
        rec = self.model(**fields)
        db.add(rec); db.commit(); db.refresh(rec)
        return rec

    def update(self, db: Session, id: str, **changes):
        rec = self.get_by_id(db, id)
        if rec is None:
            raise LookupError(f"{self.model.__tablename__}: {id} not found")
        for k, v in changes.items():
            setattr(rec, k, v)
        db.commit(); db.refresh(rec)
        return rec

    def delete(self, db: Session, id: str) -> None:
        rec = self.get_by_id(db, id)
        if rec is not None:
            db.delete(rec); db.commit()


class CertificateService(CrudService):
    def __init__(self):
        super().__init__(Certificate)

    def get_by_generation_job(self, db: Session, job_id: str):
        return (db.query(Certificate)
                .filter(Certificate.generation_job_id == job_id)
                .order_by(Certificate.row_index)
                .all())

    def create_batch(self, db: Session, rows: list[dict]):
        recs = [Certificate(**r) for r in rows]
        db.add_all(recs); db.commit()
        for r in recs: db.refresh(r)
        return recs


class HistoryService(CrudService):
    def __init__(self):
        super().__init__(HistoryRecord)

    def get_by_type(self, db: Session, type: str):
        return (db.query(HistoryRecord)
                .filter(HistoryRecord.type == type)
                .order_by(HistoryRecord.created_at.desc())
                .all())


datasets = CrudService(Dataset)
templates = CrudService(Template)
generation_jobs = CrudService(GenerationJob)
certificates = CertificateService()
history = HistoryService()

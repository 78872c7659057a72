# backend/models.py
from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, ForeignKey, DateTime, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.types import Integer, BigInteger
from db import Base
import uuid

def uuid4str():
    return str(uuid.uuid4())

def utcnow():
    return datetime.now(timezone.utc)

class Dataset(Base):
    __tablename__ = "datasets"
    id = Column(String, primary_key=True, default=uuid4str)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    file_name = Column(String, nullable=False)
    file_size = Column(BigInteger, nullable=False)
    total_rows = Column(Integer, nullable=False)
    columns = Column(JSON, nullable=False, default=list)
    data = Column(JSON, nullable=False, default=list)   # one dict per row
    status = Column(String, default="active")           # active|locked
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

class Template(Base):
    __tablename__ = "templates"
    id = Column(String, primary_key=True, default=uuid4str)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    file_name = Column(String, nullable=False)
    file_size = Column(BigInteger, nullable=False)
    file_path = Column(String)                           # disk path
    placeholders = Column(JSON, nullable=False, default=list)
    mappings = Column(JSON, nullable=False, default=dict)  # placeholder -> column
    status = Column(String, default="active")           # active|archived
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

class GenerationJob(Base):
    __tablename__ = "generation_jobs"
    id = Column(String, primary_key=True, default=uuid4str)
    dataset_id = Column(String, ForeignKey("datasets.id"), index=True, nullable=False)
    template_id = Column(String, ForeignKey("templates.id"), index=True, nullable=False)
    output_format = Column(String, default="docx")
    filename_pattern = Column(String, nullable=False)
    qr_pattern = Column(Text, nullable=True)             # null = no QR code
    total_certificates = Column(Integer, nullable=False)
    successful_certificates = Column(Integer, default=0)
    failed_certificates = Column(Integer, default=0)
    status = Column(String, default="pending")          # pending|running|completed|failed
    progress = Column(Integer, default=0)                # 0..100
    current_row = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    dataset = relationship("Dataset")
    template = relationship("Template")

class Certificate(Base):
    __tablename__ = "certificates"
    id = Column(String, primary_key=True, default=uuid4str)
    generation_job_id = Column(String, ForeignKey("generation_jobs.id"), index=True, nullable=False)
    row_index = Column(Integer, default=0)
    participant_name = Column(String, default="")
    certificate_no = Column(String, default="")
    filename = Column(String, nullable=False)
    file_size = Column(BigInteger, default=0)
    file_path = Column(String, nullable=True)            # disk path, null on error
    qr_code_data = Column(Text, nullable=True)
    fields = Column(JSON, default=dict)                  # rendered placeholder values
    status = Column(String, default="ready")            # ready|error
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

class HistoryRecord(Base):
    __tablename__ = "history_records"
    id = Column(String, primary_key=True, default=uuid4str)
    type = Column(String, index=True, nullable=False)   # dataset|template|generation
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    status = Column(String, nullable=False)             # active|locked|completed|failed
    details = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

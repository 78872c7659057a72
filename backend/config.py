# backend/config.py
import os
from dotenv import load_dotenv

load_dotenv()

# SQLite for speed; point DATABASE_URL at Postgres for a shared deployment
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./app.db")
DATA_DIR = os.getenv("DATA_DIR", "data")

GENERATION_WORKERS = int(os.getenv("GENERATION_WORKERS", "4"))
QR_SIZE = int(os.getenv("QR_SIZE", "100"))  # pixels
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

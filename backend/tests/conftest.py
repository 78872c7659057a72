# backend/tests/conftest.py
import os
import tempfile

# point the app at a throwaway database and data dir before anything imports config
_tmp = tempfile.mkdtemp(prefix="certgen_test_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp, 'test.db')}"
os.environ["DATA_DIR"] = os.path.join(_tmp, "data")
os.environ["GENERATION_WORKERS"] = "2"

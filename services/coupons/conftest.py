# Points the service at a throwaway SQLite database before ``repo`` is imported
import os
import sys
import tempfile
from pathlib import Path

SERVICE_DIR = Path(__file__).resolve().parent
if str(SERVICE_DIR) not in sys.path:
    sys.path.insert(0, str(SERVICE_DIR))

_DB_DIR = tempfile.mkdtemp(prefix="coupons-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/coupons.db"

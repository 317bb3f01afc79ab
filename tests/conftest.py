"""
Shared test configuration.

Environment is set before any application module is imported so the
module-level settings pick up an in-memory database and test credentials.
"""

import io
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["API_KEYS"] = "test-key"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "secret"
os.environ["EXPIRING_SOON_DAYS"] = "30"
os.environ.setdefault("FLASK_SECRET_KEY", "test-secret-key")

import pandas as pd
import pytest

from record_store import ControllerStore


@pytest.fixture
def store():
    """Fresh in-memory controller store."""
    return ControllerStore("sqlite://")


@pytest.fixture
def workbook_factory():
    """Build an xlsx workbook in memory from a list of row dicts."""
    def make(rows, columns=None):
        buffer = io.BytesIO()
        pd.DataFrame(rows, columns=columns).to_excel(buffer, index=False, engine="openpyxl")
        buffer.seek(0)
        return buffer
    return make

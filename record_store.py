"""
Record Store Module

Single-table SQLite store for controller license records.

All statements are built with SQLAlchemy Core so column names are checked
against the table definition and values are always bound parameters.
"""

import os
import logging
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from sqlalchemy import (
    JSON, Column, Integer, MetaData, Table, Text,
    create_engine, delete, func, insert, select, text, update
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from license_status import EXPIRY_FIELDS

load_dotenv()

logger = logging.getLogger(__name__)

# Persistent disk on the host, falls back to the working directory
DATA_DIR = os.getenv("DATA_DIR") or os.getenv("RENDER_DISK_PATH") or os.getcwd()
DATABASE_URL = os.getenv("DATABASE_URL") or f"sqlite:///{os.path.join(DATA_DIR, 'licenses.db')}"

TABLE_NAME = "controllers"


# =====================================================
# Schema
# =====================================================

TEXT_FIELDS: Dict[str, str] = {
    "full_name": "الاسم الكامل",
    "date_of_birth": "تاريخ الميلاد",
    "license_number": "رقم الرخصة",
    "eligibility": "الأهلية",
    "workplace": "مكان العمل",
}

# Column order as shown in the dashboard grid
RECORD_FIELDS: List[str] = list(TEXT_FIELDS) + list(EXPIRY_FIELDS)

# Column -> header used in the source spreadsheets
FIELD_LABELS: Dict[str, str] = {**TEXT_FIELDS, **EXPIRY_FIELDS}

# Header variants accepted on input -> column
FIELD_ALIASES: Dict[str, str] = {}
for _field, _label in FIELD_LABELS.items():
    FIELD_ALIASES[_field] = _field
    FIELD_ALIASES[_label.lower()] = _field
    FIELD_ALIASES[_field.replace("_", " ")] = _field
FIELD_ALIASES.update({
    "name": "full_name",
    "full name": "full_name",
    "dob": "date_of_birth",
    "date of birth": "date_of_birth",
    "license no": "license_number",
    "license number": "license_number",
    "atco license expiry": "atco_license_expiry",
    "elp expiry": "language_proficiency_expiry",
    "med expiry": "medical_expiry",
    "medical expiry": "medical_expiry",
})

metadata = MetaData()

# Expiry cells are JSON so Excel serial numbers stay numeric
controllers = Table(
    TABLE_NAME,
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    *[Column(name, Text, nullable=True) for name in TEXT_FIELDS],
    *[Column(name, JSON(none_as_null=True), nullable=True) for name in EXPIRY_FIELDS],
    sqlite_autoincrement=True,
)


def resolve_field_name(name: Any) -> Optional[str]:
    """Map an API key or spreadsheet header to its column name."""
    if not isinstance(name, str):
        return None
    key = " ".join(name.strip().split()).lower()
    return FIELD_ALIASES.get(key)


# =====================================================
# Errors
# =====================================================

class NotFoundError(Exception):
    """Raised when a controller id does not exist."""

    def __init__(self, record_id: Any):
        self.record_id = record_id
        super().__init__(f"Controller {record_id} not found")


class PersistenceError(Exception):
    """Unexpected failure talking to the database."""


# =====================================================
# Store
# =====================================================

class ControllerStore:
    """
    CRUD access to the controllers table.

    Every method runs in its own connection and transaction.
    """

    def __init__(self, database_url: str = None, echo: bool = False):
        self.database_url = database_url or DATABASE_URL

        engine_kwargs: Dict[str, Any] = {"echo": echo, "future": True}
        if self.database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if self.database_url in ("sqlite://", "sqlite:///:memory:"):
                # Share one in-memory database across connections
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(self.database_url, **engine_kwargs)
        self.create_schema()

    def create_schema(self):
        """Create the controllers table if missing."""
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Schema creation failed: {e}")
            raise PersistenceError(str(e)) from e

    @property
    def is_sqlite(self) -> bool:
        return self.engine.dialect.name == "sqlite"

    def _check_columns(self, fields: Dict[str, Any]):
        unknown = [name for name in fields if name not in RECORD_FIELDS]
        if unknown:
            raise PersistenceError(f"Unknown column(s): {', '.join(map(str, unknown))}")

    # -------------------------------------------------
    # Reads
    # -------------------------------------------------

    def list_all(self) -> List[Dict[str, Any]]:
        """All records in insertion order."""
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(select(controllers).order_by(controllers.c.id)).mappings().all()
            return [dict(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"List controllers failed: {e}")
            raise PersistenceError(str(e)) from e

    def find_by_id(self, record_id: int) -> Optional[Dict[str, Any]]:
        """Record by id, or None."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(controllers).where(controllers.c.id == record_id)
                ).mappings().first()
            return dict(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Find controller {record_id} failed: {e}")
            raise PersistenceError(str(e)) from e

    def get(self, record_id: int) -> Dict[str, Any]:
        """Record by id, raising NotFoundError when absent."""
        record = self.find_by_id(record_id)
        if record is None:
            raise NotFoundError(record_id)
        return record

    def find_by_license_number(self, license_number: str) -> List[Dict[str, Any]]:
        """All records sharing a license number (not unique)."""
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    select(controllers)
                    .where(controllers.c.license_number == license_number)
                    .order_by(controllers.c.id)
                ).mappings().all()
            return [dict(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Find by license number failed: {e}")
            raise PersistenceError(str(e)) from e

    def count(self) -> int:
        try:
            with self.engine.connect() as conn:
                return conn.execute(select(func.count()).select_from(controllers)).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Count controllers failed: {e}")
            raise PersistenceError(str(e)) from e

    # -------------------------------------------------
    # Writes
    # -------------------------------------------------

    def insert(self, fields: Dict[str, Any]) -> int:
        """
        Insert a record with exactly the supplied fields.

        Returns:
            The new record id
        """
        self._check_columns(fields)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(insert(controllers).values(**fields))
            new_id = result.inserted_primary_key[0]
            logger.info(f"Inserted controller {new_id}")
            return new_id
        except SQLAlchemyError as e:
            logger.error(f"Insert controller failed: {e}")
            raise PersistenceError(str(e)) from e

    def update(self, record_id: int, fields: Dict[str, Any]) -> bool:
        """
        Overwrite the supplied fields of an existing record.

        Returns:
            True if a record matched
        """
        self._check_columns(fields)
        if not fields:
            return self.find_by_id(record_id) is not None

        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(controllers).where(controllers.c.id == record_id).values(**fields)
                )
            matched = result.rowcount > 0
            if matched:
                logger.info(f"Updated controller {record_id}: {sorted(fields)}")
            return matched
        except SQLAlchemyError as e:
            logger.error(f"Update controller {record_id} failed: {e}")
            raise PersistenceError(str(e)) from e

    def delete(self, record_id: int) -> bool:
        """Delete a record. Returns True if a record matched."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(delete(controllers).where(controllers.c.id == record_id))
            deleted = result.rowcount > 0
            if deleted:
                logger.info(f"Deleted controller {record_id}")
            return deleted
        except SQLAlchemyError as e:
            logger.error(f"Delete controller {record_id} failed: {e}")
            raise PersistenceError(str(e)) from e

    def delete_all(self) -> int:
        """
        Delete every record and reset id numbering.

        Returns:
            Number of deleted records
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(delete(controllers))
                if self.is_sqlite:
                    conn.execute(
                        text("DELETE FROM sqlite_sequence WHERE name = :name"),
                        {"name": TABLE_NAME}
                    )
            logger.info(f"Deleted all controllers ({result.rowcount} rows)")
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Delete all controllers failed: {e}")
            raise PersistenceError(str(e)) from e

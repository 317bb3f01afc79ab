"""
Spreadsheet Import Module

Loads controller records from an uploaded Excel workbook.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, IO, List, Tuple

import pandas as pd

from date_normalizer import date_to_excel_serial
from license_status import EXPIRY_FIELDS
from record_store import ControllerStore, resolve_field_name
from security import ValidationError, validate_record_body

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"xlsx", "xls"}

EXCEL_MIMETYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
    "application/octet-stream",
}

# Numbering / filler columns produced by spreadsheet exports
IGNORED_COLUMN_PREFIXES = ("__empty", "empty", "unnamed:")
IGNORED_COLUMNS = {"ت", "id"}


def allowed_file(filename: str, mimetype: str = None) -> bool:
    """Check extension, and the MIME type when the client sent one."""
    if not filename or '.' not in filename:
        return False
    if filename.rsplit('.', 1)[1].lower() not in ALLOWED_EXTENSIONS:
        return False
    if mimetype:
        return mimetype.split(";")[0].strip().lower() in EXCEL_MIMETYPES
    return True


def is_ignored_column(header: Any) -> bool:
    name = str(header).strip().lower()
    return name in IGNORED_COLUMNS or name.startswith(IGNORED_COLUMN_PREFIXES)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def convert_cell(field: str, value: Any) -> Any:
    """
    Convert a pandas cell to the value stored for a column.

    Date cells become Excel serials in expiry columns and ISO text elsewhere;
    whole floats become ints.
    """
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, (datetime, date)):
        if field in EXPIRY_FIELDS:
            return date_to_excel_serial(value)
        return (value.date() if isinstance(value, datetime) else value).isoformat()
    if hasattr(value, "item"):
        # numpy scalar
        value = value.item()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def map_columns(headers: List[Any]) -> Tuple[Dict[Any, str], List[str]]:
    """
    Map sheet headers to columns.

    Returns:
        (header -> column, ignored header names)
    """
    mapping = {}
    ignored = []
    for header in headers:
        if is_ignored_column(header):
            continue
        field = resolve_field_name(str(header))
        if field is None or field in mapping.values():
            ignored.append(str(header))
            continue
        mapping[header] = field
    return mapping, ignored


def read_controller_rows(source: IO, filename: str = None) -> Dict[str, Any]:
    """
    Read controller rows from the first sheet of a workbook.

    Args:
        source: File path or binary file object
        filename: Uploaded file name (used to pick the xls reader)

    Returns:
        Dictionary with rows, skipped_rows and ignored_columns
    """
    engine = None
    if filename and filename.lower().endswith(".xls"):
        engine = "xlrd"

    try:
        df = pd.read_excel(source, sheet_name=0, dtype=object, engine=engine)
    except Exception as e:
        logger.error(f"Failed to read workbook {filename}: {e}")
        raise ValidationError([f"Could not read Excel file: {e}"])

    mapping, ignored = map_columns(list(df.columns))
    if ignored:
        logger.warning(f"Ignoring unknown columns: {ignored}")
    if not mapping:
        raise ValidationError(["No recognised controller columns found in the sheet"])

    rows = []
    skipped = 0
    for _, series in df.iterrows():
        raw = {
            field: convert_cell(field, series[header])
            for header, field in mapping.items()
            if not _is_blank(series[header])
        }
        if not raw:
            skipped += 1
            continue
        try:
            rows.append(validate_record_body(raw))
        except ValidationError as e:
            logger.warning(f"Skipping invalid row: {e}")
            skipped += 1

    return {"rows": rows, "skipped_rows": skipped, "ignored_columns": ignored}


def import_controllers(
    store: ControllerStore,
    source: IO,
    filename: str = None,
    replace: bool = False
) -> Dict[str, Any]:
    """
    Import controllers from a workbook into the store.

    Args:
        store: Target store
        source: File path or binary file object
        filename: Uploaded file name
        replace: Delete existing records first

    Returns:
        Summary with imported, skipped_rows and ignored_columns
    """
    parsed = read_controller_rows(source, filename)

    if replace:
        removed = store.delete_all()
        logger.info(f"Replace import: removed {removed} existing records")

    imported = 0
    for row in parsed["rows"]:
        store.insert(row)
        imported += 1

    logger.info(f"Imported {imported} controllers from {filename or 'workbook'}")
    return {
        "imported": imported,
        "skipped_rows": parsed["skipped_rows"],
        "ignored_columns": parsed["ignored_columns"],
    }

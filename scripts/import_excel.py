"""
Excel Import Script

Loads controller records from a workbook into the database from the
command line.
"""

import os
import sys
import logging

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from record_store import ControllerStore, PersistenceError
from security import ValidationError
from spreadsheet_import import allowed_file, import_controllers

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("import_excel")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Import controllers from an Excel workbook")
    parser.add_argument("path", help="Path to an .xlsx or .xls workbook")
    parser.add_argument(
        "--replace",
        action="store_true",
        help="Delete all existing records before importing"
    )
    parser.add_argument(
        "--database-url",
        help="Override DATABASE_URL"
    )

    args = parser.parse_args()

    print("="*60)
    print("ATC License Dashboard - Excel Import")
    print("="*60)

    if not allowed_file(args.path):
        print(f"❌ Not an Excel workbook: {args.path}")
        sys.exit(1)

    try:
        store = ControllerStore(args.database_url)
        with open(args.path, "rb") as fh:
            summary = import_controllers(store, fh, os.path.basename(args.path), replace=args.replace)
    except (ValidationError, PersistenceError, OSError) as e:
        print(f"❌ Import failed: {e}")
        sys.exit(1)

    print(f"✅ Imported {summary['imported']} records")
    if summary["skipped_rows"]:
        print(f"   Skipped rows: {summary['skipped_rows']}")
    if summary["ignored_columns"]:
        print(f"   Ignored columns: {', '.join(summary['ignored_columns'])}")

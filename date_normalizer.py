"""
Date Normalizer Module

Converts raw spreadsheet cell values (Excel serial numbers, date strings,
free text with an embedded date) into plain calendar dates.
"""

import math
import re
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)


# =====================================================
# Constants
# =====================================================

# Excel serial day 25569 is 1970-01-01 (day 0 = 1899-12-30)
EXCEL_UNIX_EPOCH_OFFSET = 25569
EXCEL_EPOCH = date(1899, 12, 30)
MS_PER_DAY = 86400 * 1000

UNIX_EPOCH = datetime(1970, 1, 1)

# Missing components in a textual date fall back to these
_PARSE_DEFAULT = datetime(1900, 1, 1)

# DD/MM/YYYY or DD-MM-YYYY anywhere in the text, e.g. "LEVEL 4 25/12/2024"
EMBEDDED_DATE_PATTERN = re.compile(r'(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})')

DIGIT_PATTERN = re.compile(r"\d")

DISPLAY_FORMAT = "%Y/%m/%d"


# =====================================================
# Conversion Helpers
# =====================================================

def is_numeric_value(value: Any) -> bool:
    """True for int/float/Decimal cell values (bool excluded)."""
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def excel_serial_to_date(serial: Any) -> Optional[date]:
    """
    Convert an Excel serial number to a calendar date.

    The serial is aligned to the Unix epoch, rounded to the millisecond and
    the time-of-day is dropped.

    Args:
        serial: Excel serial day count (e.g. 45432)

    Returns:
        Calendar date, or None if the value is out of range
    """
    try:
        ms = round((float(serial) - EXCEL_UNIX_EPOCH_OFFSET) * MS_PER_DAY)
        return (UNIX_EPOCH + timedelta(milliseconds=ms)).date()
    except (OverflowError, ValueError, TypeError):
        return None


def utc_today() -> date:
    """Current UTC calendar date."""
    return datetime.now(timezone.utc).date()


def date_to_excel_serial(value: date) -> int:
    """Convert a calendar date to its Excel serial day count."""
    if isinstance(value, datetime):
        value = value.date()
    return (value - EXCEL_EPOCH).days


def _parse_whole_string(text: str) -> Optional[date]:
    """
    Parse the whole string as a date.

    Digit-only strings are not dates, and neither is text without any digit
    ("May", "Sun").
    """
    text = text.strip()
    if not text or text.isdigit() or not DIGIT_PATTERN.search(text):
        return None

    try:
        parsed = date_parser.parse(text, default=_PARSE_DEFAULT)
    except (ValueError, OverflowError):
        return None

    return parsed.date()


def _extract_embedded_date(text: str) -> Optional[date]:
    """
    Find a D/M/YYYY or D-M-YYYY date inside free text.

    Day is only checked against 1..31; a day past the end of the month rolls
    over into the following month.
    """
    match = EMBEDDED_DATE_PATTERN.search(text)
    if not match:
        return None

    day = int(match.group(1))
    month = int(match.group(2))
    year = int(match.group(3))

    if year > 1900 and 1 <= month <= 12 and 1 <= day <= 31:
        return date(year, month, 1) + timedelta(days=day - 1)

    return None


# =====================================================
# Public API
# =====================================================

def normalize(value: Any) -> Optional[date]:
    """
    Normalize a raw cell value to a calendar date.

    Rules, first success wins:
        1. Number greater than 1 -> Excel serial date
        2. String that parses as a date as a whole
        3. String containing an embedded D/M/YYYY date
        4. Anything else -> None (not a date-bearing cell)

    Never raises.

    Args:
        value: Raw cell value

    Returns:
        Calendar date or None
    """
    if is_numeric_value(value):
        try:
            if not math.isfinite(value) or value <= 1:
                return None
        except OverflowError:
            return None
        return excel_serial_to_date(value)

    if isinstance(value, str):
        parsed = _parse_whole_string(value)
        if parsed:
            return parsed
        return _extract_embedded_date(value)

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    return None


def format_display_date(value: date) -> str:
    """Format a calendar date as YYYY/MM/DD."""
    return value.strftime(DISPLAY_FORMAT)


def render_date_cell(value: Any) -> str:
    """
    Render a date-like grid cell for display.

    Normalizable values are shown as YYYY/MM/DD, other text (e.g. "LEVEL 4")
    is shown unchanged, and empty cells render as an empty string.
    """
    if value is None:
        return ""

    if value != "" and value != 0:
        parsed = normalize(value)
        if parsed:
            return format_display_date(parsed)

    return str(value)

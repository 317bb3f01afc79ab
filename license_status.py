"""
License Status Module

Classifies license expiry dates as expired, expiring soon or active
relative to a reference date.
"""

import os
import math
import logging
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv

from date_normalizer import normalize, utc_today

load_dotenv()

logger = logging.getLogger(__name__)


# =====================================================
# Status & Thresholds
# =====================================================

class LicenseStatus(Enum):
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring-soon"
    ACTIVE = "active"
    UNDATED = "undated"


# Days before expiry at which a license counts as expiring soon
EXPIRING_SOON_DAYS = int(os.getenv("EXPIRING_SOON_DAYS", 30))

# Expiry columns tracked per controller -> license type label
EXPIRY_FIELDS: Dict[str, str] = {
    "atco_license_expiry": "ATCO LIC Expiry",
    "unit_endorsement_expiry": "Unit Endorsement Expiry",
    "language_proficiency_expiry": "ELP Expiry",
    "medical_expiry": "MED Expiry",
}

DATED_STATUSES = (
    LicenseStatus.EXPIRED,
    LicenseStatus.EXPIRING_SOON,
    LicenseStatus.ACTIVE,
)


def parse_status(value: str) -> LicenseStatus:
    """
    Parse a status name from a URL or query parameter.

    Accepts the enum values plus the camelCase "expiringSoon" used by the
    old report buttons.

    Raises:
        ValueError: If the status is unknown or "undated"
    """
    key = (value or "").strip().lower().replace("_", "-")
    if key == "expiringsoon":
        key = LicenseStatus.EXPIRING_SOON.value

    status = LicenseStatus(key)
    if status not in DATED_STATUSES:
        raise ValueError(f"{value} is not a reportable status")
    return status


# =====================================================
# Classification
# =====================================================

def days_until(
    expiry: date,
    reference: date,
    rounding: Callable[[float], int] = math.ceil
) -> int:
    """
    Days from reference to expiry.

    Args:
        expiry: Expiry calendar date
        reference: Reference calendar date ("today")
        rounding: math.ceil or math.floor

    Returns:
        Whole number of days (negative when already past)
    """
    return rounding((expiry - reference).total_seconds() / 86400)


def classify(
    expiry: date,
    reference: date = None,
    soon_threshold_days: int = None,
    rounding: Callable[[float], int] = math.ceil
) -> LicenseStatus:
    """
    Classify an expiry date.

    diff < 1 -> EXPIRED (includes today), 1..threshold -> EXPIRING_SOON,
    above threshold -> ACTIVE.
    """
    reference = reference or utc_today()
    if soon_threshold_days is None:
        soon_threshold_days = EXPIRING_SOON_DAYS

    diff_days = days_until(expiry, reference, rounding)

    if diff_days < 1:
        return LicenseStatus.EXPIRED
    elif diff_days <= soon_threshold_days:
        return LicenseStatus.EXPIRING_SOON
    else:
        return LicenseStatus.ACTIVE


def classify_for_dashboard(expiry: date, reference: date = None, soon_threshold_days: int = None) -> LicenseStatus:
    """Dashboard statistics and cell colouring round the day difference up."""
    return classify(expiry, reference, soon_threshold_days, rounding=math.ceil)


def classify_for_report(expiry: date, reference: date = None, soon_threshold_days: int = None) -> LicenseStatus:
    """Report generation rounds the day difference down."""
    return classify(expiry, reference, soon_threshold_days, rounding=math.floor)


def classify_value(
    value: Any,
    reference: date = None,
    for_report: bool = False,
    soon_threshold_days: int = None
) -> LicenseStatus:
    """
    Normalize a raw expiry cell and classify it.

    Returns:
        LicenseStatus.UNDATED when the cell holds no usable date
    """
    expiry = normalize(value)
    if expiry is None:
        return LicenseStatus.UNDATED

    if for_report:
        return classify_for_report(expiry, reference, soon_threshold_days)
    return classify_for_dashboard(expiry, reference, soon_threshold_days)


def classify_record(record: Dict[str, Any], reference: date = None, for_report: bool = False) -> Dict[str, LicenseStatus]:
    """Classify every expiry field of a controller record."""
    return {
        field: classify_value(record.get(field), reference, for_report)
        for field in EXPIRY_FIELDS
    }


def get_license_type_label(field: str) -> Optional[str]:
    """Label shown for an expiry field in reports."""
    return EXPIRY_FIELDS.get(field)

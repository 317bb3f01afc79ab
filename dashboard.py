"""
Dashboard Module

License statistics, grid cell styling, workplace filtering and the
controller object behind the dashboard's add / edit / delete workflow.
"""

import re
import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Dict, Any, Optional, Tuple

from date_normalizer import is_numeric_value, normalize, render_date_cell, utc_today
from license_status import (
    EXPIRY_FIELDS,
    LicenseStatus,
    classify_for_dashboard,
)
from record_store import (
    FIELD_LABELS,
    RECORD_FIELDS,
    ControllerStore,
    NotFoundError,
)
from security import ValidationError, validate_record_body

logger = logging.getLogger(__name__)


# =====================================================
# Configuration
# =====================================================

CELL_CLASSES = {
    LicenseStatus.EXPIRED: "cell-expired",
    LicenseStatus.EXPIRING_SOON: "cell-expiring-soon",
    LicenseStatus.ACTIVE: "cell-active",
}

# Login form workplace codes -> workplace column values
WORKPLACES = {
    "hq": "المقر الرئيسي",
    "tripoli": "مطار طرابلس الدولي",
    "benghazi": "مطار بنينا الدولي",
    "misrata": "مطار مصراتة الدولي",
}

DATE_HINTS = ("date", "expiry", "تاريخ", "انتهاء")

LETTER_PATTERN = re.compile(r'[a-zA-Z]')


def is_date_column(field_name: str) -> bool:
    """Columns rendered through the date formatter."""
    label = FIELD_LABELS.get(field_name, field_name)
    lowered = f"{field_name} {label}".lower()
    return any(hint in lowered for hint in DATE_HINTS)


def is_pure_date_value(value: Any) -> bool:
    """
    A number, or a string without Latin letters.

    Cells such as "LEVEL 4 25/12/2024" still count in statistics but are not
    coloured in the grid.
    """
    if is_numeric_value(value):
        return True
    return isinstance(value, str) and not LETTER_PATTERN.search(value)


# =====================================================
# Statistics
# =====================================================

def compute_license_stats(records: List[Dict[str, Any]], today: date = None) -> Dict[str, int]:
    """
    Count licenses by status across all expiry fields.

    Counts are per license, so a controller with two expired licenses adds
    two to the expired total. Cells without a date are not counted.

    Args:
        records: Controller records
        today: Reference date (default: today)

    Returns:
        Dictionary with total_controllers and per-status license counts
    """
    today = today or utc_today()
    counts = {status: 0 for status in CELL_CLASSES}

    for record in records:
        for field_name in EXPIRY_FIELDS:
            expiry = normalize(record.get(field_name))
            if expiry is None:
                continue
            counts[classify_for_dashboard(expiry, today)] += 1

    return {
        "total_controllers": len(records),
        "active_licenses": counts[LicenseStatus.ACTIVE],
        "expiring_soon_licenses": counts[LicenseStatus.EXPIRING_SOON],
        "expired_licenses": counts[LicenseStatus.EXPIRED],
    }


def get_cell_class(value: Any, today: date = None) -> Optional[str]:
    """CSS class for an expiry cell, or None when it should stay plain."""
    if not is_pure_date_value(value):
        return None

    expiry = normalize(value)
    if expiry is None:
        return None

    return CELL_CLASSES[classify_for_dashboard(expiry, today or utc_today())]


# =====================================================
# Grid
# =====================================================

def build_grid(records: List[Dict[str, Any]], today: date = None) -> List[Dict[str, Any]]:
    """
    Build display rows for the dashboard table.

    Each row carries the record id, a 1-based row number and one cell per
    column with the raw value, display text and optional CSS class.
    """
    today = today or utc_today()
    rows = []

    for number, record in enumerate(records, start=1):
        cells = []
        for field_name in RECORD_FIELDS:
            value = record.get(field_name)
            if is_date_column(field_name):
                display = render_date_cell(value)
            else:
                display = "" if value is None else str(value)

            cells.append({
                "field": field_name,
                "label": FIELD_LABELS[field_name],
                "value": value,
                "display": display,
                "css_class": get_cell_class(value, today) if field_name in EXPIRY_FIELDS else None,
            })

        rows.append({"id": record.get("id"), "number": number, "cells": cells})

    return rows


def grid_columns() -> List[Dict[str, str]]:
    return [{"field": f, "label": FIELD_LABELS[f]} for f in RECORD_FIELDS]


# =====================================================
# Workplace Filter
# =====================================================

def unique_workplaces(records: List[Dict[str, Any]]) -> List[str]:
    """Sorted distinct non-empty workplaces."""
    return sorted({r["workplace"] for r in records if r.get("workplace")})


def filter_by_workplace(records: List[Dict[str, Any]], workplace: Optional[str]) -> List[Dict[str, Any]]:
    """Exact-match workplace filter; empty workplace returns everything."""
    if not workplace:
        return list(records)
    return [r for r in records if r.get("workplace") == workplace]


def resolve_workplace(code: Optional[str]) -> Optional[str]:
    """Workplace column value for a login workplace code."""
    if not code:
        return None
    return WORKPLACES.get(code.strip().lower())


def default_workplace_filter(records: List[Dict[str, Any]], code: Optional[str]) -> Optional[str]:
    """
    Filter pre-selected from the login workplace, if that workplace exists
    in the data.
    """
    workplace = resolve_workplace(code)
    if workplace and workplace in unique_workplaces(records):
        return workplace
    return None


# =====================================================
# Dashboard Controller
# =====================================================

@dataclass
class Notification:
    message: str
    level: str = "success"


@dataclass
class GridState:
    """Selection and pending action of the dashboard grid."""
    action: Optional[str] = None
    selected_id: Optional[int] = None

    @property
    def crud_enabled(self) -> bool:
        """Edit / delete are only available with a selected row."""
        return self.selected_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "selected_id": self.selected_id}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GridState":
        data = data or {}
        return cls(action=data.get("action"), selected_id=data.get("selected_id"))


@dataclass
class FormField:
    name: str
    label: str
    value: str = ""


class DashboardController:
    """
    Add / edit / delete workflow for the dashboard grid.

    State is passed in and handed back as a GridState instead of living in
    module globals; callers persist it (the web layer keeps it in the session).
    """

    def __init__(self, store: ControllerStore, state: GridState = None):
        self.store = store
        self.state = state or GridState()

    # -------------------------------------------------
    # Selection
    # -------------------------------------------------

    def toggle_selection(self, record_id: int) -> GridState:
        """Select a row, or clear the selection if it is already selected."""
        if self.state.selected_id == record_id:
            self.state = GridState()
        else:
            self.store.get(record_id)
            self.state = GridState(action=None, selected_id=record_id)
        return self.state

    def clear_selection(self) -> GridState:
        self.state = GridState()
        return self.state

    def selected_record(self) -> Optional[Dict[str, Any]]:
        if self.state.selected_id is None:
            return None
        return self.store.find_by_id(self.state.selected_id)

    # -------------------------------------------------
    # Forms
    # -------------------------------------------------

    def begin_add(self) -> List[FormField]:
        """Start an add: one empty field per column."""
        self.state = GridState(action="add", selected_id=self.state.selected_id)
        return [FormField(name=f, label=FIELD_LABELS[f]) for f in RECORD_FIELDS]

    def begin_edit(self) -> List[FormField]:
        """
        Start editing the selected row.

        Date-like values are pre-formatted as YYYY/MM/DD.

        Raises:
            ValidationError: If no row is selected
            NotFoundError: If the selected row was deleted meanwhile
        """
        if self.state.selected_id is None:
            raise ValidationError(["Select a row to edit first."])

        record = self.store.get(self.state.selected_id)
        self.state = GridState(action="edit", selected_id=self.state.selected_id)

        fields = []
        for name in RECORD_FIELDS:
            value = record.get(name)
            if is_date_column(name) and normalize(value):
                value = render_date_cell(value)
            fields.append(FormField(name=name, label=FIELD_LABELS[name], value="" if value is None else str(value)))
        return fields

    def save(self, form_data: Dict[str, Any]) -> Tuple[Dict[str, Any], Notification]:
        """
        Persist the pending add or edit.

        Returns:
            (reloaded record, notification)
        """
        fields = validate_record_body(form_data)

        if self.state.action == "add":
            new_id = self.store.insert(fields)
            record = self.store.get(new_id)
            self.state = GridState(selected_id=self.state.selected_id)
            return record, Notification("Record added.")

        if self.state.action == "edit" and self.state.selected_id is not None:
            record_id = self.state.selected_id
            if not self.store.update(record_id, fields):
                self.state = GridState()
                raise NotFoundError(record_id)
            record = self.store.get(record_id)
            # Deselect after a successful edit
            self.state = GridState()
            return record, Notification("Record updated.")

        raise ValidationError(["No add or edit in progress."])

    def delete_selected(self) -> Notification:
        """Delete the selected row and clear the selection."""
        if self.state.selected_id is None:
            raise ValidationError(["Select a row to delete first."])

        record_id = self.state.selected_id
        deleted = self.store.delete(record_id)
        self.state = GridState()
        if not deleted:
            raise NotFoundError(record_id)
        return Notification("Record deleted.")

    def cancel(self) -> GridState:
        self.state = GridState(selected_id=self.state.selected_id)
        return self.state

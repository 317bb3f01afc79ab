"""
Unit Tests - Dashboard Module

Tests for statistics, grid building, workplace filters and the
add / edit / delete workflow.
"""

import pytest
from datetime import date

from dashboard import (
    DashboardController,
    GridState,
    build_grid,
    compute_license_stats,
    default_workplace_filter,
    filter_by_workplace,
    get_cell_class,
    grid_columns,
    is_date_column,
    resolve_workplace,
    unique_workplaces,
)
from date_normalizer import date_to_excel_serial
from record_store import NotFoundError, RECORD_FIELDS
from security import ValidationError

TODAY = date(2024, 1, 1)
TRIPOLI = "مطار طرابلس الدولي"
BENGHAZI = "مطار بنينا الدولي"


@pytest.fixture
def records():
    return [
        {
            "id": 1,
            "full_name": "Ali Omar",
            "date_of_birth": "1990-02-03",
            "workplace": TRIPOLI,
            "atco_license_expiry": date_to_excel_serial(date(2023, 12, 1)),
            "unit_endorsement_expiry": date_to_excel_serial(date(2024, 1, 15)),
            "language_proficiency_expiry": "LEVEL 4 01/06/2025",
            "medical_expiry": None,
        },
        {
            "id": 2,
            "full_name": "Sara Ahmed",
            "workplace": BENGHAZI,
            "atco_license_expiry": date_to_excel_serial(date(2025, 1, 1)),
        },
    ]


class TestStatistics:
    """Tests for compute_license_stats function."""

    def test_counts_per_license(self, records):
        stats = compute_license_stats(records, TODAY)

        assert stats == {
            "total_controllers": 2,
            "active_licenses": 2,
            "expiring_soon_licenses": 1,
            "expired_licenses": 1,
        }

    def test_empty(self):
        stats = compute_license_stats([], TODAY)

        assert stats["total_controllers"] == 0
        assert stats["expired_licenses"] == 0

    def test_undated_cells_not_counted(self):
        stats = compute_license_stats([{"medical_expiry": "LEVEL 6"}], TODAY)

        assert stats["active_licenses"] + stats["expiring_soon_licenses"] + stats["expired_licenses"] == 0


class TestCellClass:
    """Tests for get_cell_class function."""

    def test_expired_serial(self):
        assert get_cell_class(date_to_excel_serial(date(2023, 6, 1)), TODAY) == "cell-expired"

    def test_expiring_soon_string(self):
        assert get_cell_class("2024-01-15", TODAY) == "cell-expiring-soon"

    def test_active(self):
        assert get_cell_class("2030/01/01", TODAY) == "cell-active"

    def test_text_with_letters_not_coloured(self):
        """Test embedded dates are counted but not coloured."""
        assert get_cell_class("LEVEL 4 01/06/2020", TODAY) is None

    @pytest.mark.parametrize("value", [None, "", "n/a"])
    def test_plain_cells(self, value):
        assert get_cell_class(value, TODAY) is None


class TestGrid:
    """Tests for build_grid function."""

    def test_rows_and_cells(self, records):
        rows = build_grid(records, TODAY)

        assert [row["number"] for row in rows] == [1, 2]
        assert rows[0]["id"] == 1
        assert [cell["field"] for cell in rows[0]["cells"]] == RECORD_FIELDS

    def test_cell_display(self, records):
        cells = {cell["field"]: cell for cell in build_grid(records, TODAY)[0]["cells"]}

        assert cells["date_of_birth"]["display"] == "1990/02/03"
        assert cells["atco_license_expiry"]["display"] == "2023/12/01"
        assert cells["atco_license_expiry"]["css_class"] == "cell-expired"
        assert cells["unit_endorsement_expiry"]["css_class"] == "cell-expiring-soon"
        assert cells["language_proficiency_expiry"]["display"] == "2025/06/01"
        assert cells["language_proficiency_expiry"]["css_class"] is None
        assert cells["medical_expiry"]["display"] == ""
        assert cells["workplace"]["display"] == TRIPOLI
        assert cells["date_of_birth"]["css_class"] is None

    def test_columns(self):
        columns = grid_columns()

        assert [c["field"] for c in columns] == RECORD_FIELDS
        assert columns[-1]["label"] == "MED Expiry"

    def test_date_columns(self):
        assert is_date_column("date_of_birth")
        assert is_date_column("medical_expiry")
        assert not is_date_column("full_name")
        assert not is_date_column("workplace")


class TestWorkplaces:
    """Tests for workplace filtering."""

    def test_unique_sorted(self, records):
        records.append({"workplace": TRIPOLI})
        records.append({"workplace": ""})

        assert unique_workplaces(records) == sorted([TRIPOLI, BENGHAZI])

    def test_filter(self, records):
        assert [r["id"] for r in filter_by_workplace(records, TRIPOLI)] == [1]

    def test_empty_filter_returns_all(self, records):
        assert len(filter_by_workplace(records, "")) == 2
        assert len(filter_by_workplace(records, None)) == 2

    def test_resolve_workplace(self):
        assert resolve_workplace("HQ") == "المقر الرئيسي"
        assert resolve_workplace("unknown") is None
        assert resolve_workplace(None) is None

    def test_default_filter_from_login(self, records):
        assert default_workplace_filter(records, "tripoli") == TRIPOLI

    def test_default_filter_absent_from_data(self, records):
        assert default_workplace_filter(records, "misrata") is None


class TestGridState:
    """Tests for GridState dataclass."""

    def test_crud_enabled(self):
        assert GridState().crud_enabled is False
        assert GridState(selected_id=3).crud_enabled is True

    def test_dict_roundtrip(self):
        state = GridState(action="edit", selected_id=4)

        assert GridState.from_dict(state.to_dict()) == state
        assert GridState.from_dict(None) == GridState()


class TestDashboardController:
    """Tests for DashboardController class."""

    @pytest.fixture
    def controller(self, store):
        store.insert({"full_name": "Ali Omar", "medical_expiry": 45432})
        return DashboardController(store)

    def test_toggle_selection(self, controller):
        assert controller.toggle_selection(1).selected_id == 1
        assert controller.selected_record()["full_name"] == "Ali Omar"
        assert controller.toggle_selection(1).selected_id is None

    def test_select_missing_row(self, controller):
        with pytest.raises(NotFoundError):
            controller.toggle_selection(99)

    def test_begin_add(self, controller):
        fields = controller.begin_add()

        assert [f.name for f in fields] == RECORD_FIELDS
        assert all(f.value == "" for f in fields)
        assert controller.state.action == "add"

    def test_add_record(self, controller, store):
        controller.begin_add()

        record, notification = controller.save({"full_name": "Sara Ahmed", "medical_expiry": "45500"})

        assert record["id"] == 2
        assert record["medical_expiry"] == 45500
        assert notification.level == "success"
        assert controller.state.action is None
        assert store.count() == 2

    def test_edit_requires_selection(self, controller):
        with pytest.raises(ValidationError):
            controller.begin_edit()

    def test_begin_edit_formats_dates(self, controller):
        controller.toggle_selection(1)

        fields = {f.name: f.value for f in controller.begin_edit()}

        assert fields["full_name"] == "Ali Omar"
        assert fields["medical_expiry"] == "2024/05/20"
        assert controller.state.action == "edit"

    def test_edit_record_deselects(self, controller, store):
        controller.toggle_selection(1)
        controller.begin_edit()

        record, _ = controller.save({"full_name": "Ali O. Omar"})

        assert record["full_name"] == "Ali O. Omar"
        assert store.get(1)["full_name"] == "Ali O. Omar"
        assert controller.state == GridState()

    def test_edit_deleted_row(self, controller, store):
        controller.toggle_selection(1)
        controller.begin_edit()
        store.delete(1)

        with pytest.raises(NotFoundError):
            controller.save({"full_name": "Gone"})
        assert controller.state.selected_id is None

    def test_save_without_action(self, controller):
        with pytest.raises(ValidationError):
            controller.save({"full_name": "Nobody"})

    def test_save_invalid_data(self, controller):
        controller.begin_add()

        with pytest.raises(ValidationError):
            controller.save({"salary": 10})

    def test_delete_selected(self, controller, store):
        controller.toggle_selection(1)

        notification = controller.delete_selected()

        assert notification.message == "Record deleted."
        assert store.count() == 0
        assert controller.state.crud_enabled is False

    def test_delete_without_selection(self, controller):
        with pytest.raises(ValidationError):
            controller.delete_selected()

    def test_cancel_keeps_selection(self, controller):
        controller.toggle_selection(1)
        controller.begin_edit()

        state = controller.cancel()

        assert state.action is None
        assert state.selected_id == 1

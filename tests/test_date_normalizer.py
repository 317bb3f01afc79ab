"""
Unit Tests - Date Normalizer Module

Tests for converting raw spreadsheet cells to calendar dates.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from date_normalizer import (
    date_to_excel_serial,
    excel_serial_to_date,
    format_display_date,
    normalize,
    render_date_cell,
    utc_today,
)


class TestExcelSerials:
    """Tests for Excel serial conversion."""

    def test_serial_to_date(self):
        """Test a known serial."""
        assert excel_serial_to_date(45432) == date(2024, 5, 20)

    def test_unix_epoch_serial(self):
        assert excel_serial_to_date(25569) == date(1970, 1, 1)

    def test_fractional_serial_drops_time(self):
        """Test time-of-day is discarded."""
        assert excel_serial_to_date(45432.75) == date(2024, 5, 20)

    @pytest.mark.parametrize("serial", [2, 45432, 45432.99, 60000.5])
    def test_serial_recovers_whole_days(self, serial):
        assert date_to_excel_serial(excel_serial_to_date(serial)) == int(serial)

    def test_out_of_range_serial(self):
        assert excel_serial_to_date(1e20) is None

    def test_utc_today(self):
        assert utc_today() == datetime.now(timezone.utc).date()

    def test_date_to_serial(self):
        assert date_to_excel_serial(date(2024, 5, 20)) == 45432
        assert date_to_excel_serial(datetime(2024, 5, 20, 13, 30)) == 45432


class TestNormalizeNumbers:
    """Tests for numeric cells."""

    def test_integer_serial(self):
        assert normalize(45432) == date(2024, 5, 20)

    def test_float_serial(self):
        assert normalize(45432.0) == date(2024, 5, 20)

    def test_decimal_serial(self):
        assert normalize(Decimal("45432")) == date(2024, 5, 20)

    @pytest.mark.parametrize("value", [1, 0, -5, 0.5])
    def test_small_numbers_are_not_dates(self, value):
        """Test numbers not greater than 1 are rejected."""
        assert normalize(value) is None

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_numbers(self, value):
        assert normalize(value) is None

    def test_integer_beyond_float_range(self):
        assert normalize(10 ** 400) is None

    @pytest.mark.parametrize("value", [True, False])
    def test_booleans_are_not_numbers(self, value):
        assert normalize(value) is None


class TestNormalizeStrings:
    """Tests for text cells."""

    def test_iso_date(self):
        assert normalize("2024-05-20") == date(2024, 5, 20)

    def test_slash_date(self):
        assert normalize("2024/05/20") == date(2024, 5, 20)

    def test_day_first_date(self):
        """Test a date whose first part can only be a day."""
        assert normalize("25/12/2024") == date(2024, 12, 25)

    def test_embedded_date(self):
        """Test a date inside free text."""
        assert normalize("LEVEL 4 25/12/2024") == date(2024, 12, 25)

    def test_embedded_dash_date(self):
        assert normalize("LEVEL 6 01-03-2030") == date(2030, 3, 1)

    def test_embedded_day_rolls_over(self):
        """Test day 31 of a 30-day month rolls into the next month."""
        assert normalize("LEVEL 4 31/04/2024") == date(2024, 5, 1)

    def test_embedded_invalid_month(self):
        assert normalize("LEVEL 4 10/13/2024") is None

    def test_day_and_month_out_of_range(self):
        assert normalize("32/13/2024") is None

    def test_embedded_old_year(self):
        assert normalize("issued 10/10/1850") is None

    def test_text_without_date(self):
        assert normalize("LEVEL 4") is None

    @pytest.mark.parametrize("value", ["May", "Sun", "LEVEL"])
    def test_words_without_digits(self, value):
        """Test bare month or weekday names are not dates."""
        assert normalize(value) is None

    def test_month_name_with_day_and_year(self):
        assert normalize("20 May 2024") == date(2024, 5, 20)

    def test_digit_only_string(self):
        """Test digit-only strings are not treated as dates."""
        assert normalize("45432") is None

    @pytest.mark.parametrize("value", ["", "   "])
    def test_empty_strings(self, value):
        assert normalize(value) is None


class TestNormalizeOther:
    """Tests for other cell types."""

    def test_none(self):
        assert normalize(None) is None

    def test_date_passthrough(self):
        assert normalize(date(2024, 1, 2)) == date(2024, 1, 2)

    def test_datetime_is_truncated(self):
        assert normalize(datetime(2024, 1, 2, 23, 59)) == date(2024, 1, 2)

    @pytest.mark.parametrize("value", [[], {}, object()])
    def test_unsupported_types(self, value):
        assert normalize(value) is None


class TestRenderDateCell:
    """Tests for grid display of date cells."""

    def test_format_display_date(self):
        assert format_display_date(date(2024, 5, 2)) == "2024/05/02"

    def test_serial_cell(self):
        assert render_date_cell(45432) == "2024/05/20"

    def test_embedded_date_cell(self):
        assert render_date_cell("LEVEL 4 25/12/2024") == "2024/12/25"

    def test_text_cell_unchanged(self):
        assert render_date_cell("LEVEL 4") == "LEVEL 4"

    def test_empty_cells(self):
        assert render_date_cell(None) == ""
        assert render_date_cell("") == ""

    def test_zero_cell(self):
        assert render_date_cell(0) == "0"

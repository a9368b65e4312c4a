"""
Tests for month arithmetic and variable lookup.
"""

from datetime import date, datetime

import pytest

from app.forecast.months import add_months, month_range, months_between, normalize_to_month_start
from app.forecast.types import TimeSeriesPoint
from app.forecast.variables import VariableDataService, get_variable_value

from forecast_graphs import variable


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def revenue_variable():
    return variable(
        "var_revenue",
        {
            date(2024, 11, 1): 800,
            date(2024, 12, 1): 900,
            date(2025, 1, 1): 1000,
            date(2025, 2, 1): None,
        },
    )


# =============================================================================
# Month arithmetic
# =============================================================================

class TestMonths:
    """Calendar month helpers."""

    def test_normalize_to_month_start(self):
        """Any day normalizes to the first of its month."""
        assert normalize_to_month_start(date(2025, 3, 31)) == date(2025, 3, 1)
        assert normalize_to_month_start(datetime(2025, 3, 15, 13, 45)) == date(2025, 3, 1)

    def test_add_months_crosses_year_boundary(self):
        """Offsets use calendar months in both directions."""
        assert add_months(date(2025, 1, 31), -1) == date(2024, 12, 1)
        assert add_months(date(2024, 11, 10), 3) == date(2025, 2, 1)

    def test_months_between_is_inclusive(self):
        """Both endpoint months are counted."""
        assert months_between(date(2025, 1, 1), date(2025, 3, 31)) == 3
        assert months_between(date(2025, 1, 20), date(2025, 1, 5)) == 1

    def test_months_between_reversed_is_zero(self):
        """An end month before the start month gives an empty horizon."""
        assert months_between(date(2025, 3, 1), date(2025, 1, 1)) == 0
        assert month_range(date(2025, 3, 1), date(2025, 1, 1)) == []

    def test_month_range_dates_are_aligned(self):
        """Every date is a first-of-month and strictly increasing."""
        months = month_range(date(2024, 11, 17), date(2025, 2, 3))

        assert months == [date(2024, 11, 1), date(2024, 12, 1), date(2025, 1, 1), date(2025, 2, 1)]
        assert all(m.day == 1 for m in months)
        assert all(a < b for a, b in zip(months, months[1:]))


# =============================================================================
# Time series intake
# =============================================================================

class TestTimeSeriesPoint:
    """Normalization at the intake boundary."""

    def test_date_normalized_to_month_start(self):
        """Mid-month dates are stored as the first of the month."""
        point = TimeSeriesPoint(date="2025-03-17", value=5)
        assert point.date == date(2025, 3, 1)

    def test_iso_datetime_string_accepted(self):
        """Timestamps sent by clients are reduced to their month."""
        point = TimeSeriesPoint(date="2025-03-17T10:00:00Z", value=5)
        assert point.date == date(2025, 3, 1)

    def test_non_finite_values_become_null(self):
        """NaN and infinities never enter a calculation."""
        assert TimeSeriesPoint(date="2025-01-01", value=float("nan")).value is None
        assert TimeSeriesPoint(date="2025-01-01", value=float("inf")).value is None


# =============================================================================
# Variable lookup
# =============================================================================

class TestVariableDataService:
    """Lookups by id, month and offset."""

    def test_value_for_any_day_in_month(self, revenue_variable):
        """The target day is irrelevant, only its month matters."""
        service = VariableDataService([revenue_variable])
        assert service.get_variable_value_for_month("var_revenue", date(2025, 1, 23)) == 1000

    def test_negative_offset_reads_earlier_month(self, revenue_variable):
        """offset_months=-1 reads the previous calendar month."""
        service = VariableDataService([revenue_variable])
        assert service.get_variable_value_with_offset("var_revenue", date(2025, 1, 1), -1) == 900
        assert service.get_variable_value_with_offset("var_revenue", date(2025, 1, 1), -2) == 800

    def test_positive_offset_reads_later_month(self, revenue_variable):
        service = VariableDataService([revenue_variable])
        assert service.get_variable_value_with_offset("var_revenue", date(2024, 12, 1), 1) == 1000

    def test_missing_month_returns_none(self, revenue_variable):
        """No entry for the month is a null, not an error."""
        service = VariableDataService([revenue_variable])
        assert service.get_variable_value_for_month("var_revenue", date(2026, 1, 1)) is None

    def test_null_entry_returns_none(self, revenue_variable):
        service = VariableDataService([revenue_variable])
        assert service.get_variable_value_for_month("var_revenue", date(2025, 2, 1)) is None

    def test_missing_variable_returns_none(self, revenue_variable):
        """Unknown ids are distinguishable only through has_variable."""
        service = VariableDataService([revenue_variable])
        assert service.get_variable_value_for_month("var_unknown", date(2025, 1, 1)) is None
        assert service.has_variable("var_unknown") is False
        assert service.has_variable("var_revenue") is True

    def test_first_entry_for_month_wins(self):
        """Duplicate entries for a month resolve to the first one."""
        duplicated = variable("var_dup", {date(2025, 1, 1): 1, date(2025, 1, 15): 2})
        service = VariableDataService([duplicated])
        assert service.get_variable_value_for_month("var_dup", date(2025, 1, 1)) == 1

    def test_module_level_lookup(self, revenue_variable):
        """One-off lookup without building the service explicitly."""
        assert get_variable_value("var_revenue", date(2025, 1, 9), [revenue_variable], offset_months=-1) == 900

    def test_offset_past_calendar_range_returns_none(self, revenue_variable):
        """Shifting beyond the supported years has no data rather than failing."""
        service = VariableDataService([revenue_variable])
        assert service.get_variable_value_with_offset("var_revenue", date(2025, 1, 1), 100000) is None
        assert service.get_variable_value_with_offset("var_revenue", date(2025, 1, 1), -30000) is None

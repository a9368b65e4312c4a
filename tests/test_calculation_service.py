"""
Tests for the Forecast Calculation Service.

Tests cover orchestration, period checks, persistence of runs and
history queries against a mocked database session.
"""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.forecast.errors import GraphValidationError, InvalidForecastPeriodError
from app.forecast.models import ForecastCalculationRun
from app.forecast.schemas import CalculateForecastRequest
from app.forecast.service import (
    ForecastCalculationService,
    _forecast_locks,
    calculate_forecast_graph,
    check_forecast_period,
    get_forecast_lock,
)
from app.forecast.types import SeedBootstrap

from forecast_graphs import metric_node, seed_node, edge


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def calculate_request(revenue_graph):
    nodes, edges, variables = revenue_graph
    return CalculateForecastRequest(
        organization_id="org_1",
        forecast_start_date=date(2025, 1, 1),
        forecast_end_date=date(2025, 3, 31),
        nodes=nodes,
        edges=edges,
        variables=variables,
    )


def stored_run(forecast_id="forecast_1", run_id="calc_1"):
    return ForecastCalculationRun(
        id=run_id,
        forecast_id=forecast_id,
        organization_id="org_1",
        calculated_at=datetime(2025, 1, 15, tzinfo=timezone.utc),
        metrics=[],
        all_nodes=None,
    )


# =============================================================================
# Unit Tests - Period checks
# =============================================================================

class TestForecastPeriod:
    """Horizon validation before any evaluation."""

    def test_returns_month_count(self):
        assert check_forecast_period(date(2025, 1, 15), date(2025, 12, 1)) == 12

    def test_end_before_start(self):
        with pytest.raises(InvalidForecastPeriodError, match="before start date"):
            check_forecast_period(date(2025, 3, 1), date(2025, 2, 28))

    def test_horizon_over_cap(self):
        with pytest.raises(InvalidForecastPeriodError, match="exceeds the maximum of 6"):
            check_forecast_period(date(2025, 1, 1), date(2025, 12, 1), max_months=6)


# =============================================================================
# Unit Tests - One-shot calculation
# =============================================================================

class TestCalculateForecastGraph:
    """Validate, convert and evaluate without persistence."""

    def test_calculates_revenue(self, revenue_graph):
        nodes, edges, variables = revenue_graph
        result = calculate_forecast_graph(
            nodes, edges, variables, date(2025, 1, 1), date(2025, 3, 1), forecast_id="forecast_1",
        )

        assert result.forecast_id == "forecast_1"
        assert [v.forecast for v in result.metrics[0].values] == [1000, 1000, 1000]

    def test_orphaned_seed_rejected_before_evaluation(self):
        nodes = [seed_node("seed", "deleted"), metric_node("m")]

        with pytest.raises(GraphValidationError):
            calculate_forecast_graph(nodes, [edge("seed", "m")], [], date(2025, 1, 1), date(2025, 3, 1))

    def test_seed_bootstrap_override(self):
        """A self-seeding metric with no history starts null under either rule."""
        nodes = [seed_node("prev", "m"), metric_node("m")]
        result = calculate_forecast_graph(
            nodes, [edge("prev", "m")], [], date(2025, 1, 1), date(2025, 2, 1),
            seed_bootstrap=SeedBootstrap.NULL,
        )
        assert [v.forecast for v in result.metrics[0].values] == [None, None]


# =============================================================================
# Unit Tests - ForecastCalculationService
# =============================================================================

class TestForecastCalculationService:
    """Calculation runs are stored and read back newest first."""

    @pytest.mark.asyncio
    async def test_calculate_stores_run(self, mock_db, calculate_request):
        """A successful calculation adds one run and commits."""
        service = ForecastCalculationService(mock_db)

        run = await service.calculate_forecast("forecast_1", calculate_request)

        mock_db.add.assert_called_once_with(run)
        mock_db.commit.assert_awaited_once()
        assert run.id.startswith("calc_")
        assert run.forecast_id == "forecast_1"
        assert run.organization_id == "org_1"
        assert run.metrics[0]["metric_node_id"] == "revenue"
        assert run.metrics[0]["values"][0] == {
            "date": "2025-01-01",
            "forecast": 1000.0,
            "budget": 1300.0,
            "historical": None,
        }

    @pytest.mark.asyncio
    async def test_node_values_follow_request(self, mock_db, calculate_request):
        service = ForecastCalculationService(mock_db)

        calculate_request.include_node_values = False
        run = await service.calculate_forecast("forecast_1", calculate_request)
        assert run.all_nodes is None

        calculate_request.include_node_values = True
        run = await service.calculate_forecast("forecast_1", calculate_request)
        assert [n["node_id"] for n in run.all_nodes] == ["revenue", "multiply", "units", "price"]

    @pytest.mark.asyncio
    async def test_invalid_graph_not_stored(self, mock_db, calculate_request):
        """Validation failures never reach the database."""
        calculate_request.edges = []
        service = ForecastCalculationService(mock_db)

        with pytest.raises(GraphValidationError):
            await service.calculate_forecast("forecast_1", calculate_request)

        mock_db.add.assert_not_called()
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_latest(self, mock_db):
        run = stored_run()
        result = MagicMock()
        result.scalar_one_or_none.return_value = run
        mock_db.execute.return_value = result

        latest = await ForecastCalculationService(mock_db).get_latest_calculation_results("forecast_1")

        assert latest is run
        mock_db.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_latest_never_calculated(self, mock_db):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_db.execute.return_value = result

        assert await ForecastCalculationService(mock_db).get_latest_calculation_results("forecast_x") is None

    @pytest.mark.asyncio
    async def test_get_history(self, mock_db):
        runs = [stored_run(run_id="calc_2"), stored_run(run_id="calc_1")]
        result = MagicMock()
        result.scalars.return_value.all.return_value = runs
        mock_db.execute.return_value = result

        history = await ForecastCalculationService(mock_db).get_calculation_history("forecast_1", limit=10)

        assert [r.id for r in history] == ["calc_2", "calc_1"]

    def test_lock_per_forecast(self):
        """Requests for one forecast share a lock, other forecasts do not."""
        assert get_forecast_lock("forecast_1") is get_forecast_lock("forecast_1")
        assert get_forecast_lock("forecast_1") is not get_forecast_lock("forecast_2")

    def test_unused_lock_released(self):
        """A forecast's lock is dropped once nobody holds it."""
        lock = get_forecast_lock("forecast_idle")
        assert _forecast_locks.get("forecast_idle") is lock

        del lock
        assert "forecast_idle" not in _forecast_locks

    @pytest.mark.asyncio
    async def test_no_lock_left_after_calculation(self, mock_db, calculate_request):
        await ForecastCalculationService(mock_db).calculate_forecast("forecast_done", calculate_request)

        assert "forecast_done" not in _forecast_locks

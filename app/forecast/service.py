"""
Forecast Calculation Service.

Orchestrates one calculation: period check -> validate -> convert -> evaluate
-> persist. Calculations for the same forecast are serialized within the
process so two overlapping requests never interleave their history rows.
"""
import asyncio
import logging
import weakref
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.forecast.converter import convert_to_trees
from app.forecast.engine import CalculationEngine
from app.forecast.errors import InvalidForecastPeriodError
from app.forecast.history import CalculationHistoryStore
from app.forecast.models import ForecastCalculationRun
from app.forecast.months import DateLike, months_between, normalize_to_month_start
from app.forecast.schemas import CalculateForecastRequest
from app.forecast.types import (
    ForecastCalculationResult,
    ForecastEdge,
    ForecastNode,
    SeedBootstrap,
    Variable,
)

logger = logging.getLogger(__name__)

# forecast id -> lock, shared by every service instance in the process.
# An entry lives only while some caller holds or waits on its lock.
_forecast_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def get_forecast_lock(forecast_id: str) -> asyncio.Lock:
    lock = _forecast_locks.get(forecast_id)
    if lock is None:
        lock = asyncio.Lock()
        _forecast_locks[forecast_id] = lock
    return lock


def check_forecast_period(
    forecast_start_date: DateLike,
    forecast_end_date: DateLike,
    max_months: Optional[int] = None,
) -> int:
    """
    Validate a forecast horizon and return its length in months.

    Raises:
        InvalidForecastPeriodError: end before start, or longer than ``max_months``
    """
    max_months = settings.MAX_FORECAST_MONTHS if max_months is None else max_months
    start = normalize_to_month_start(forecast_start_date)
    end = normalize_to_month_start(forecast_end_date)
    if end < start:
        raise InvalidForecastPeriodError(
            f"Forecast end date {end.isoformat()} is before start date {start.isoformat()}"
        )
    months = months_between(start, end)
    if months > max_months:
        raise InvalidForecastPeriodError(
            f"Forecast horizon of {months} months exceeds the maximum of {max_months}"
        )
    return months


def calculate_forecast_graph(
    nodes: Sequence[ForecastNode],
    edges: Sequence[ForecastEdge],
    variables: Iterable[Variable],
    forecast_start_date: DateLike,
    forecast_end_date: DateLike,
    include_node_values: bool = False,
    forecast_id: str = "",
    seed_bootstrap: Optional[SeedBootstrap] = None,
) -> ForecastCalculationResult:
    """
    One-shot calculation without persistence.

    Raises the same errors as ``convert_to_trees`` and
    ``CalculationEngine.calculate_forecast``.
    """
    check_forecast_period(forecast_start_date, forecast_end_date)
    trees = convert_to_trees(nodes, edges)
    engine = CalculationEngine(seed_bootstrap or SeedBootstrap(settings.SEED_BOOTSTRAP))
    return engine.calculate_forecast(
        trees,
        forecast_start_date,
        forecast_end_date,
        variables,
        include_node_values=include_node_values,
        forecast_id=forecast_id,
    )


class ForecastCalculationService:
    """
    Calculates forecasts and keeps their calculation history.

    Usage:
        service = ForecastCalculationService(db)
        run = await service.calculate_forecast("forecast_1", request)
        latest = await service.get_latest_calculation_results("forecast_1")
    """

    def __init__(self, db: AsyncSession, seed_bootstrap: Optional[SeedBootstrap] = None):
        self.db = db
        self.history = CalculationHistoryStore(db)
        self.seed_bootstrap = seed_bootstrap or SeedBootstrap(settings.SEED_BOOTSTRAP)

    async def calculate_forecast(
        self,
        forecast_id: str,
        request: CalculateForecastRequest,
    ) -> ForecastCalculationRun:
        """
        Calculate a forecast graph and store the result.

        Args:
            forecast_id: Forecast the graph belongs to
            request: Graph, variables and horizon

        Returns:
            The stored ForecastCalculationRun
        """
        include_node_values = (
            settings.INCLUDE_NODE_VALUES
            if request.include_node_values is None
            else request.include_node_values
        )

        async with get_forecast_lock(forecast_id):
            logger.info(
                f"Calculating forecast {forecast_id} for organization {request.organization_id}: "
                f"{len(request.nodes)} nodes, {len(request.edges)} edges, {len(request.variables)} variables"
            )

            result = calculate_forecast_graph(
                nodes=request.nodes,
                edges=request.edges,
                variables=request.variables,
                forecast_start_date=request.forecast_start_date,
                forecast_end_date=request.forecast_end_date,
                include_node_values=include_node_values,
                forecast_id=forecast_id,
                seed_bootstrap=self.seed_bootstrap,
            )

            run = await self.history.record(result, organization_id=request.organization_id)
            await self.db.commit()

        logger.info(f"Stored calculation run {run.id} for forecast {forecast_id} ({len(result.metrics)} metrics)")
        return run

    async def get_latest_calculation_results(self, forecast_id: str) -> Optional[ForecastCalculationRun]:
        """Most recent stored run, or None."""
        return await self.history.get_latest(forecast_id)

    async def get_calculation_history(self, forecast_id: str, limit: int = 50) -> List[ForecastCalculationRun]:
        """Stored runs, newest first."""
        return await self.history.get_history(forecast_id, limit=limit)

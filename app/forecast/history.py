"""
Calculation history - append-only storage of calculation runs.

Mirrors the audit log: rows are only ever added, and the caller owns the
transaction.
"""
from typing import List, Optional

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import generate_id
from app.forecast.models import ForecastCalculationRun
from app.forecast.types import ForecastCalculationResult


class CalculationHistoryStore:
    """
    Reads and appends calculation runs for forecasts.

    Usage:
        history = CalculationHistoryStore(db)
        run = await history.record(result, organization_id="org_1")
        await db.commit()
        latest = await history.get_latest("forecast_1")
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, result: ForecastCalculationResult, organization_id: str) -> ForecastCalculationRun:
        """Add a run for ``result``. Does not commit."""
        run = ForecastCalculationRun(
            id=generate_id("calc"),
            forecast_id=result.forecast_id,
            organization_id=organization_id,
            calculated_at=result.calculated_at,
            metrics=[metric.model_dump(mode="json") for metric in result.metrics],
            all_nodes=(
                [node.model_dump(mode="json") for node in result.all_nodes]
                if result.all_nodes is not None
                else None
            ),
        )
        self.db.add(run)
        await self.db.flush()
        return run

    async def get_latest(self, forecast_id: str) -> Optional[ForecastCalculationRun]:
        """Most recent run for a forecast, or None if it was never calculated."""
        result = await self.db.execute(
            select(ForecastCalculationRun)
            .where(ForecastCalculationRun.forecast_id == forecast_id)
            .order_by(desc(ForecastCalculationRun.calculated_at))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_history(self, forecast_id: str, limit: int = 50) -> List[ForecastCalculationRun]:
        """Runs for a forecast, newest first."""
        result = await self.db.execute(
            select(ForecastCalculationRun)
            .where(ForecastCalculationRun.forecast_id == forecast_id)
            .order_by(desc(ForecastCalculationRun.calculated_at))
            .limit(limit)
        )
        return list(result.scalars().all())

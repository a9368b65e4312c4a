"""
Forecast calculation run model.

Each calculation appends one immutable row, so the table doubles as the
calculation history of a forecast.
"""
from sqlalchemy import Column, DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from app.database import Base, generate_id


class ForecastCalculationRun(Base):
    """Stored output of one forecast calculation."""

    __tablename__ = "forecast_calculation_runs"

    id = Column(String, primary_key=True, default=lambda: generate_id("calc"))

    forecast_id = Column(String, nullable=False, index=True)
    organization_id = Column(String, nullable=False, index=True)

    calculated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # [{metric_node_id, label, values: [{date, forecast, budget, historical}]}]
    metrics = Column(JSONB, nullable=False)

    # Per-node values, only when requested
    all_nodes = Column(JSONB, nullable=True)

    __table_args__ = (
        Index("ix_forecast_calculation_runs_forecast_time", "forecast_id", "calculated_at"),
    )

    def __repr__(self):
        return f"<ForecastCalculationRun {self.id}: forecast {self.forecast_id} at {self.calculated_at}>"

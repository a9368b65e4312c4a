"""Forecast calculation request/response schemas."""
from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.forecast.types import (
    ForecastEdge,
    ForecastNode,
    MetricCalculationResult,
    NodeCalculationResult,
    Variable,
    coerce_date,
)


class GraphPayload(BaseModel):
    """Nodes and edges of a forecast graph."""
    nodes: List[ForecastNode] = Field(default_factory=list)
    edges: List[ForecastEdge] = Field(default_factory=list)


class ValidateGraphRequest(GraphPayload):
    """Request to validate a graph without calculating it."""


class CalculateForecastRequest(GraphPayload):
    """Request to calculate a forecast graph over a horizon."""
    organization_id: str
    forecast_start_date: date
    forecast_end_date: date
    variables: List[Variable] = Field(default_factory=list)
    include_node_values: Optional[bool] = None  # None -> INCLUDE_NODE_VALUES setting

    @field_validator("forecast_start_date", "forecast_end_date", mode="before")
    @classmethod
    def parse_dates(cls, value: Any) -> Any:
        return coerce_date(value)


class CalculationRunResponse(BaseModel):
    """A stored calculation run."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    forecast_id: str
    organization_id: str
    calculated_at: datetime
    metrics: List[MetricCalculationResult]
    all_nodes: Optional[List[NodeCalculationResult]] = None


class CalculationHealthResponse(BaseModel):
    status: str
    timestamp: datetime

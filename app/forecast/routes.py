"""Forecast calculation API routes."""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.forecast.errors import (
    CalculationDataError,
    ForecastCalculationError,
    GraphValidationError,
    InvalidForecastPeriodError,
    SeedDependencyCycleError,
    TreeBuildError,
)
from app.forecast.schemas import (
    CalculateForecastRequest,
    CalculationHealthResponse,
    CalculationRunResponse,
    ValidateGraphRequest,
)
from app.forecast.service import ForecastCalculationService
from app.forecast.types import GraphValidationResult
from app.forecast.validation import validate_graph

logger = logging.getLogger(__name__)

router = APIRouter()


def get_calculation_service(db: AsyncSession = Depends(get_db)) -> ForecastCalculationService:
    return ForecastCalculationService(db)


def calculation_error_to_http(error: ForecastCalculationError) -> HTTPException:
    """Map a calculation error to the client-facing response."""
    if isinstance(error, GraphValidationError):
        return HTTPException(
            status_code=400,
            detail={
                "error": "invalid_graph",
                "message": str(error),
                "errors": error.errors,
                "warnings": error.warnings,
            },
        )
    if isinstance(error, SeedDependencyCycleError):
        return HTTPException(
            status_code=400,
            detail={"error": "seed_dependency_cycle", "message": str(error), "metric_ids": error.metric_ids},
        )
    if isinstance(error, TreeBuildError):
        return HTTPException(
            status_code=400,
            detail={"error": "invalid_graph", "message": str(error), "node_id": error.node_id},
        )
    if isinstance(error, CalculationDataError):
        return HTTPException(status_code=400, detail={"error": "missing_data", "message": str(error)})
    if isinstance(error, InvalidForecastPeriodError):
        return HTTPException(status_code=400, detail={"error": "invalid_period", "message": str(error)})

    logger.error(f"Internal forecast calculation error: {error}")
    return HTTPException(
        status_code=500,
        detail={"error": "calculation_failed", "message": "Forecast calculation failed"},
    )


# Static paths are registered before /{forecast_id} paths

@router.get("/calculation/health", response_model=CalculationHealthResponse)
async def calculation_health():
    """Health check for the calculation service."""
    return CalculationHealthResponse(status="healthy", timestamp=datetime.now(timezone.utc))


@router.post("/validate", response_model=GraphValidationResult)
async def validate_forecast_graph(request: ValidateGraphRequest):
    """
    Validate a forecast graph without calculating it.

    Always returns 200; ``is_valid`` tells whether the graph can be calculated.
    """
    return validate_graph(request.nodes, request.edges)


@router.post("/{forecast_id}/calculate", response_model=CalculationRunResponse)
async def calculate_forecast(
    forecast_id: str,
    request: CalculateForecastRequest,
    service: ForecastCalculationService = Depends(get_calculation_service),
):
    """
    Calculate a forecast graph and store the result.

    Args:
        forecast_id: Forecast the graph belongs to
        request: Graph, variables and horizon

    Returns:
        The stored calculation run
    """
    try:
        run = await service.calculate_forecast(forecast_id, request)
    except ForecastCalculationError as e:
        raise calculation_error_to_http(e)
    return CalculationRunResponse.model_validate(run)


@router.get("/{forecast_id}/calculation-results", response_model=Optional[CalculationRunResponse])
async def get_latest_calculation_results(
    forecast_id: str,
    service: ForecastCalculationService = Depends(get_calculation_service),
):
    """Latest stored calculation run, or null if the forecast was never calculated."""
    run = await service.get_latest_calculation_results(forecast_id)
    if run is None:
        return None
    return CalculationRunResponse.model_validate(run)


@router.get("/{forecast_id}/calculation-results/history", response_model=List[CalculationRunResponse])
async def get_calculation_history(
    forecast_id: str,
    limit: int = Query(50, ge=1, le=500, description="Maximum number of runs"),
    service: ForecastCalculationService = Depends(get_calculation_service),
):
    """Stored calculation runs, newest first."""
    runs = await service.get_calculation_history(forecast_id, limit=limit)
    return [CalculationRunResponse.model_validate(run) for run in runs]

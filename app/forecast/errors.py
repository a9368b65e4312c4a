"""
Forecast calculation errors.

Three families, mapped to different client responses by the routes:
- Structural: the graph itself is malformed (never evaluated)
- Data: the graph references ids that are not in the supplied data
- Internal: invariant violations discovered during evaluation
"""
from datetime import date
from typing import List, Optional, Sequence


class ForecastCalculationError(Exception):
    """Base class for all calculation failures."""


# =============================================================================
# Structural
# =============================================================================

class GraphStructureError(ForecastCalculationError):
    """The graph cannot be turned into evaluation trees."""


class GraphValidationError(GraphStructureError):
    """Validation found one or more errors."""

    def __init__(self, errors: Sequence[str], warnings: Optional[Sequence[str]] = None):
        self.errors: List[str] = list(errors)
        self.warnings: List[str] = list(warnings or [])
        super().__init__(f"Invalid forecast graph: {', '.join(self.errors)}")


class TreeBuildError(GraphStructureError):
    """A tree could not be built from the graph."""

    def __init__(self, message: str, node_id: Optional[str] = None):
        self.node_id = node_id
        super().__init__(message)


class SeedDependencyCycleError(GraphStructureError):
    """Metrics seed from each other in a loop, so no evaluation order exists."""

    def __init__(self, metric_ids: Sequence[str]):
        self.metric_ids: List[str] = list(metric_ids)
        super().__init__(
            f"Circular seed dependency between metrics: {' -> '.join(self.metric_ids)}"
        )


class InvalidForecastPeriodError(ForecastCalculationError):
    """The requested forecast horizon is empty or too long."""


# =============================================================================
# Data
# =============================================================================

class CalculationDataError(ForecastCalculationError):
    """The graph references data that was not supplied."""


class VariableNotFoundError(CalculationDataError):
    """A DATA or METRIC node references an unknown variable."""

    def __init__(self, variable_id: str, node_id: str):
        self.variable_id = variable_id
        self.node_id = node_id
        super().__init__(f"Variable not found: {variable_id} (referenced by node {node_id})")


class MetricNotFoundError(CalculationDataError):
    """A SEED node references a metric that has no calculation tree."""

    def __init__(self, metric_id: str, node_id: str):
        self.metric_id = metric_id
        self.node_id = node_id
        super().__init__(
            f"Referenced metric node {metric_id} not found in calculation trees "
            f"(referenced by SEED node {node_id})"
        )


# =============================================================================
# Internal
# =============================================================================

class NodeEvaluationError(ForecastCalculationError):
    """A node could not be evaluated (unknown kind, malformed attributes)."""

    def __init__(self, node_id: str, message: str, month: Optional[date] = None):
        self.node_id = node_id
        self.month = month
        where = f" for {month.isoformat()}" if month else ""
        super().__init__(f"Node evaluation failed for {node_id}{where}: {message}")


class EvaluationCycleError(ForecastCalculationError):
    """A node was reached again while it was still being evaluated."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Cycle detected during evaluation at node {node_id}")

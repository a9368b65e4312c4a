"""
Forecast Graph Types - Core Data Structures.

Implements the data contract between the calculation engine and its callers:
- Variable / TimeSeriesPoint: read-only monthly input data
- ForecastNode / ForecastEdge: the user-defined calculation graph
- CalculationTree: per-metric evaluation tree derived from the graph
- ForecastCalculationResult: monthly values per metric (and per node)
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from app.forecast.months import normalize_to_month_start


# =============================================================================
# ENUMS
# =============================================================================

class NodeKind(str, Enum):
    """Kinds of vertices in a forecast graph."""
    DATA = "DATA"          # References a variable, optionally month-shifted
    CONSTANT = "CONSTANT"  # Fixed scalar, identical every month
    OPERATOR = "OPERATOR"  # Arithmetic fold over ordered inputs
    METRIC = "METRIC"      # Tree root, produces forecast/budget/historical
    SEED = "SEED"          # Previous month's forecast of a metric


class VariableType(str, Enum):
    """Origin of a variable's time series."""
    ACTUAL = "ACTUAL"
    BUDGET = "BUDGET"
    INPUT = "INPUT"
    UNKNOWN = "UNKNOWN"


class SeedBootstrap(str, Enum):
    """How a SEED node resolves the first month of the forecast horizon."""
    PRIOR_HISTORICAL = "prior_historical"  # Source metric's historical value for the month before start
    NULL = "null"                          # No prior value, first month is null


OperatorSymbol = Literal["+", "-", "*", "/", "^"]


def coerce_date(value: Any) -> Any:
    """Accept dates, datetimes and ISO strings (with or without a time part)."""
    if isinstance(value, str) and "T" in value:
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        return value.date()
    return value


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


# =============================================================================
# VARIABLES
# =============================================================================

class TimeSeriesPoint(BaseModel):
    """A single monthly observation. ``date`` is always the first of the month."""
    date: date
    value: Optional[float] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Any:
        return coerce_date(value)

    @field_validator("date")
    @classmethod
    def normalize_date(cls, value: date) -> date:
        return normalize_to_month_start(value)

    @field_validator("value")
    @classmethod
    def drop_non_finite(cls, value: Optional[float]) -> Optional[float]:
        # NaN and infinities never reach the engine
        if value is not None and not math.isfinite(value):
            return None
        return value


class Variable(BaseModel):
    """A named, organization-scoped monthly time series."""
    id: str
    name: str = ""
    type: VariableType = VariableType.UNKNOWN
    organization_id: Optional[str] = None
    time_series: List[TimeSeriesPoint] = Field(default_factory=list)


# =============================================================================
# NODE ATTRIBUTES
# =============================================================================

class DataNodeAttributes(BaseModel):
    """DATA node: reads a variable, shifted by ``offset_months``."""
    name: Optional[str] = None
    variable_id: Optional[str] = None
    offset_months: int = 0

    @field_validator("variable_id", mode="before")
    @classmethod
    def blank_variable_id(cls, value: Any) -> Any:
        return _blank_to_none(value)


class ConstantNodeAttributes(BaseModel):
    """CONSTANT node: a month-invariant scalar."""
    name: Optional[str] = None
    value: Optional[float] = None


class OperatorNodeAttributes(BaseModel):
    """OPERATOR node: folds its inputs left-to-right in ``input_order``."""
    op: OperatorSymbol
    input_order: List[str] = Field(default_factory=list)


class MetricNodeAttributes(BaseModel):
    """METRIC node: root of an evaluation tree."""
    label: Optional[str] = None
    budget_variable_id: Optional[str] = None
    historical_variable_id: Optional[str] = None
    use_calculated: bool = True

    @field_validator("budget_variable_id", "historical_variable_id", mode="before")
    @classmethod
    def blank_variable_ids(cls, value: Any) -> Any:
        return _blank_to_none(value)


class SeedNodeAttributes(BaseModel):
    """SEED node: recurs from the referenced metric's previous forecast."""
    source_metric_id: Optional[str] = None

    @field_validator("source_metric_id", mode="before")
    @classmethod
    def blank_source_metric_id(cls, value: Any) -> Any:
        return _blank_to_none(value)


NodeAttributes = Union[
    DataNodeAttributes,
    ConstantNodeAttributes,
    OperatorNodeAttributes,
    MetricNodeAttributes,
    SeedNodeAttributes,
]

ATTRIBUTE_MODELS: Dict[NodeKind, type] = {
    NodeKind.DATA: DataNodeAttributes,
    NodeKind.CONSTANT: ConstantNodeAttributes,
    NodeKind.OPERATOR: OperatorNodeAttributes,
    NodeKind.METRIC: MetricNodeAttributes,
    NodeKind.SEED: SeedNodeAttributes,
}


# =============================================================================
# GRAPH
# =============================================================================

class NodePosition(BaseModel):
    """Canvas position, carried through untouched."""
    x: float = 0
    y: float = 0


class ForecastNode(BaseModel):
    """One vertex of a forecast graph."""
    id: str
    kind: NodeKind
    attributes: NodeAttributes
    position: Optional[NodePosition] = None

    @field_validator("attributes", mode="before")
    @classmethod
    def parse_attributes(cls, value: Any, info: ValidationInfo) -> Any:
        """Parse the attribute payload according to the node's kind."""
        kind = info.data.get("kind")
        if kind is None:
            return value
        model = ATTRIBUTE_MODELS[NodeKind(kind)]
        if isinstance(value, model):
            return value
        return model.model_validate(value or {})


class ForecastEdge(BaseModel):
    """A directed input link: ``source_node_id`` feeds ``target_node_id``."""
    id: str
    source_node_id: str
    target_node_id: str


class GraphValidationResult(BaseModel):
    """Outcome of structural graph validation."""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# =============================================================================
# CALCULATION TREES
# =============================================================================

@dataclass
class CalculationTreeNode:
    """A node inside a per-metric evaluation tree."""
    node_id: str
    node_type: NodeKind
    node_data: NodeAttributes
    children: List["CalculationTreeNode"] = field(default_factory=list)
    input_order: Optional[List[str]] = None

    def walk(self) -> Iterator["CalculationTreeNode"]:
        """Yield this node and all descendants, depth-first pre-order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type.value,
            "node_data": self.node_data.model_dump(),
            "children": [child.to_dict() for child in self.children],
            "input_order": list(self.input_order) if self.input_order is not None else None,
        }


@dataclass
class CalculationTree:
    """Evaluation tree rooted at one METRIC node."""
    root_metric_node_id: str
    tree: CalculationTreeNode

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_metric_node_id": self.root_metric_node_id,
            "tree": self.tree.to_dict(),
        }


# =============================================================================
# RESULTS
# =============================================================================

class MonthlyForecastValue(BaseModel):
    """Metric values for one month."""
    date: date
    forecast: Optional[float] = None
    budget: Optional[float] = None
    historical: Optional[float] = None


class MonthlyNodeValue(MonthlyForecastValue):
    """Node values for one month, including the node's own calculated value."""
    calculated: Optional[float] = None


class MetricCalculationResult(BaseModel):
    """Monthly series for one METRIC tree."""
    metric_node_id: str
    label: Optional[str] = None
    values: List[MonthlyForecastValue] = Field(default_factory=list)


class NodeCalculationResult(BaseModel):
    """Monthly series for any node, used for graph inspection."""
    node_id: str
    node_type: NodeKind
    values: List[MonthlyNodeValue] = Field(default_factory=list)


class ForecastCalculationResult(BaseModel):
    """Output of one calculation run."""
    forecast_id: str = ""
    calculated_at: datetime
    metrics: List[MetricCalculationResult] = Field(default_factory=list)
    all_nodes: Optional[List[NodeCalculationResult]] = None

"""
Forecast Calculation Engine.

Evaluates ordered calculation trees month-by-month over an inclusive horizon.

Evaluation order:
1. Trees in the order given (seed dependencies first)
2. Within a tree, months chronologically
3. Within a month, nodes depth-first through the tree

Each METRIC's monthly forecast is written to a metric x month table as soon
as it is computed; SEED nodes read the previous month from that table.
"""
import logging
import math
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from app.forecast.errors import (
    EvaluationCycleError,
    ForecastCalculationError,
    InvalidForecastPeriodError,
    MetricNotFoundError,
    NodeEvaluationError,
    VariableNotFoundError,
)
from app.forecast.months import DateLike, month_range, normalize_to_month_start
from app.forecast.types import (
    CalculationTree,
    CalculationTreeNode,
    ConstantNodeAttributes,
    DataNodeAttributes,
    ForecastCalculationResult,
    MetricCalculationResult,
    MetricNodeAttributes,
    MonthlyForecastValue,
    MonthlyNodeValue,
    NodeCalculationResult,
    NodeKind,
    OperatorNodeAttributes,
    SeedBootstrap,
    SeedNodeAttributes,
    Variable,
)
from app.forecast.variables import VariableDataService

logger = logging.getLogger(__name__)


# Node kind -> evaluator method on _CalculationRun
_NODE_HANDLERS: Dict[NodeKind, str] = {
    NodeKind.DATA: "_evaluate_data",
    NodeKind.CONSTANT: "_evaluate_constant",
    NodeKind.OPERATOR: "_evaluate_operator",
    NodeKind.METRIC: "_evaluate_metric",
    NodeKind.SEED: "_evaluate_seed",
}

_unhandled = set(NodeKind) - set(_NODE_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No evaluator registered for node kinds: {sorted(k.value for k in _unhandled)}")


def finite_or_none(value: Optional[float]) -> Optional[float]:
    """Collapse NaN and infinities to None."""
    if value is None or not math.isfinite(value):
        return None
    return value


def apply_operator(op: str, left: float, right: float) -> Optional[float]:
    """Apply a binary operator. Undefined results are None, never raised."""
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if op == "/":
        if right == 0:
            return None
        return left / right
    if op == "^":
        try:
            return math.pow(left, right)
        except (ValueError, OverflowError, ZeroDivisionError):
            return None
    raise ValueError(f"Unknown operator: {op}")


class CalculationEngine:
    """
    Stateless evaluator for calculation trees.

    All per-run state lives in a private ``_CalculationRun`` so one engine can
    be shared between concurrent callers.
    """

    def __init__(self, seed_bootstrap: SeedBootstrap = SeedBootstrap.PRIOR_HISTORICAL):
        self.seed_bootstrap = SeedBootstrap(seed_bootstrap)

    def calculate_forecast(
        self,
        trees: Sequence[CalculationTree],
        forecast_start_date: DateLike,
        forecast_end_date: DateLike,
        variables: Iterable[Variable],
        include_node_values: bool = False,
        forecast_id: str = "",
    ) -> ForecastCalculationResult:
        """
        Evaluate every tree for every month in the horizon.

        Args:
            trees: Calculation trees, seed dependencies first
            forecast_start_date: Any day in the first forecast month
            forecast_end_date: Any day in the last forecast month (inclusive)
            variables: Monthly input data
            include_node_values: Also return per-node values in ``all_nodes``
            forecast_id: Carried through to the result

        Returns:
            ForecastCalculationResult with one entry per tree, in tree order
        """
        start = normalize_to_month_start(forecast_start_date)
        end = normalize_to_month_start(forecast_end_date)
        if end < start:
            raise InvalidForecastPeriodError(
                f"Forecast end date {end.isoformat()} is before start date {start.isoformat()}"
            )

        months = month_range(start, end)
        logger.info(
            f"Starting forecast calculation: {len(trees)} trees, {len(months)} months "
            f"({start.isoformat()} to {end.isoformat()})"
        )

        run = _CalculationRun(
            trees=trees,
            months=months,
            variables=VariableDataService(variables),
            seed_bootstrap=self.seed_bootstrap,
        )
        metrics = run.execute()

        result = ForecastCalculationResult(
            forecast_id=forecast_id,
            calculated_at=datetime.now(timezone.utc),
            metrics=metrics,
            all_nodes=run.node_results() if include_node_values else None,
        )
        logger.info(f"Forecast calculation complete: {len(metrics)} metrics")
        return result


class _CalculationRun:
    """State for a single ``calculate_forecast`` call."""

    def __init__(
        self,
        trees: Sequence[CalculationTree],
        months: List[date],
        variables: VariableDataService,
        seed_bootstrap: SeedBootstrap,
    ):
        self.trees = list(trees)
        self.months = months
        self.variables = variables
        self.seed_bootstrap = seed_bootstrap

        self.metric_roots: Dict[str, CalculationTreeNode] = {
            tree.root_metric_node_id: tree.tree for tree in self.trees
        }
        # metric id -> month -> values
        self.metric_table: Dict[str, Dict[date, MonthlyForecastValue]] = {}

        self._memo: Dict[Tuple[str, date], Optional[float]] = {}
        self._metric_months: Dict[Tuple[str, date], MonthlyNodeValue] = {}
        self._seen_nodes: Dict[str, NodeKind] = {}
        self._handlers: Dict[NodeKind, Callable] = {
            kind: getattr(self, name) for kind, name in _NODE_HANDLERS.items()
        }

    def execute(self) -> List[MetricCalculationResult]:
        results = []
        for tree in self.trees:
            root = tree.tree
            if root.node_type != NodeKind.METRIC:
                raise NodeEvaluationError(root.node_id, f"tree root must be a METRIC node, found {root.node_type.value}")

            values = []
            for month_index, month in enumerate(self.months):
                self.evaluate(root, month_index, set())
                monthly = self._metric_months[(root.node_id, month)]
                values.append(
                    MonthlyForecastValue(
                        date=month,
                        forecast=monthly.forecast,
                        budget=monthly.budget,
                        historical=monthly.historical,
                    )
                )

            logger.debug(f"Calculated metric {root.node_id}: {len(values)} months")
            results.append(
                MetricCalculationResult(
                    metric_node_id=root.node_id,
                    label=root.node_data.label,
                    values=values,
                )
            )
        return results

    def node_results(self) -> List[NodeCalculationResult]:
        """Per-node monthly values, one entry per node id in first-seen order."""
        results = []
        for node_id, kind in self._seen_nodes.items():
            values = []
            for month in self.months:
                if kind == NodeKind.METRIC:
                    values.append(self._metric_months[(node_id, month)])
                else:
                    values.append(MonthlyNodeValue(date=month, calculated=self._memo.get((node_id, month))))
            results.append(NodeCalculationResult(node_id=node_id, node_type=kind, values=values))
        return results

    # =========================================================================
    # Dispatch
    # =========================================================================

    def evaluate(self, node: CalculationTreeNode, month_index: int, stack: Set[str]) -> Optional[float]:
        """Evaluate ``node`` for ``months[month_index]``, memoized per run."""
        month = self.months[month_index]
        key = (node.node_id, month)
        if key in self._memo:
            return self._memo[key]
        if node.node_id in stack:
            raise EvaluationCycleError(node.node_id)

        handler = self._handlers.get(node.node_type)
        if handler is None:
            raise NodeEvaluationError(node.node_id, f"unknown node type {node.node_type}", month)

        self._seen_nodes.setdefault(node.node_id, node.node_type)
        stack.add(node.node_id)
        try:
            value = handler(node, month_index, stack)
        except ForecastCalculationError:
            raise
        except (AttributeError, TypeError, ValueError) as e:
            logger.error(f"Error evaluating node {node.node_id} for {month.isoformat()}: {e}")
            raise NodeEvaluationError(node.node_id, str(e), month) from e
        finally:
            stack.discard(node.node_id)

        value = finite_or_none(value)
        self._memo[key] = value
        return value

    # =========================================================================
    # Handlers
    # =========================================================================

    def _evaluate_data(self, node: CalculationTreeNode, month_index: int, stack: Set[str]) -> Optional[float]:
        attributes = self._attributes(node, DataNodeAttributes, month_index)
        if not self.variables.has_variable(attributes.variable_id):
            raise VariableNotFoundError(attributes.variable_id, node.node_id)
        return self.variables.get_variable_value_with_offset(
            attributes.variable_id, self.months[month_index], attributes.offset_months
        )

    def _evaluate_constant(self, node: CalculationTreeNode, month_index: int, stack: Set[str]) -> Optional[float]:
        return self._attributes(node, ConstantNodeAttributes, month_index).value

    def _evaluate_operator(self, node: CalculationTreeNode, month_index: int, stack: Set[str]) -> Optional[float]:
        attributes = self._attributes(node, OperatorNodeAttributes, month_index)
        if not node.children:
            raise NodeEvaluationError(node.node_id, "OPERATOR node has no inputs", self.months[month_index])

        # Every child is evaluated so per-node results are complete
        operands = [self.evaluate(child, month_index, stack) for child in node.children]
        if any(operand is None for operand in operands):
            return None

        result = operands[0]
        for operand in operands[1:]:
            result = finite_or_none(apply_operator(attributes.op, result, operand))
            if result is None:
                return None
        return result

    def _evaluate_seed(self, node: CalculationTreeNode, month_index: int, stack: Set[str]) -> Optional[float]:
        attributes = self._attributes(node, SeedNodeAttributes, month_index)
        source_metric_id = attributes.source_metric_id
        if source_metric_id not in self.metric_roots:
            raise MetricNotFoundError(source_metric_id, node.node_id)

        if month_index == 0:
            return self._bootstrap_seed(node, source_metric_id)

        previous = self.metric_table.get(source_metric_id, {}).get(self.months[month_index - 1])
        return previous.forecast if previous else None

    def _bootstrap_seed(self, node: CalculationTreeNode, source_metric_id: str) -> Optional[float]:
        """First-month value for a SEED, before any forecast exists."""
        if self.seed_bootstrap == SeedBootstrap.NULL:
            return None

        source = self.metric_roots[source_metric_id].node_data
        historical_variable_id = source.historical_variable_id
        if not historical_variable_id:
            logger.warning(
                f"SEED node {node.node_id}: metric {source_metric_id} has no historical variable, "
                f"first month will be null"
            )
            return None

        value = self.variables.get_variable_value_with_offset(historical_variable_id, self.months[0], -1)
        if value is None:
            logger.warning(
                f"SEED node {node.node_id}: no historical value for the month before {self.months[0].isoformat()} "
                f"in variable {historical_variable_id}, first month will be null"
            )
        return value

    def _evaluate_metric(self, node: CalculationTreeNode, month_index: int, stack: Set[str]) -> Optional[float]:
        month = self.months[month_index]
        attributes = self._attributes(node, MetricNodeAttributes, month_index)
        if len(node.children) > 1:
            raise NodeEvaluationError(node.node_id, f"METRIC node has {len(node.children)} inputs", month)

        calculated = None
        if node.children:
            calculated = self.evaluate(node.children[0], month_index, stack)

        budget = finite_or_none(self._lookup(attributes.budget_variable_id, month, node.node_id))
        historical = finite_or_none(self._lookup(attributes.historical_variable_id, month, node.node_id))

        if attributes.use_calculated and node.children:
            forecast = calculated
        else:
            forecast = budget

        monthly = MonthlyNodeValue(
            date=month,
            forecast=forecast,
            budget=budget,
            historical=historical,
            calculated=calculated,
        )
        self._metric_months[(node.node_id, month)] = monthly
        self.metric_table.setdefault(node.node_id, {})[month] = monthly
        return forecast

    # =========================================================================
    # Helpers
    # =========================================================================

    def _lookup(self, variable_id: Optional[str], month: date, node_id: str) -> Optional[float]:
        if not variable_id:
            return None
        if not self.variables.has_variable(variable_id):
            raise VariableNotFoundError(variable_id, node_id)
        return self.variables.get_variable_value_for_month(variable_id, month)

    def _attributes(self, node: CalculationTreeNode, expected: type, month_index: int):
        if not isinstance(node.node_data, expected):
            raise NodeEvaluationError(
                node.node_id,
                f"{node.node_type.value} node has attributes of type {type(node.node_data).__name__}",
                self.months[month_index],
            )
        return node.node_data

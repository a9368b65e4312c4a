"""Builders for forecast graphs used across the test suite."""
from datetime import date
from typing import Dict, List, Optional

from app.forecast.types import ForecastEdge, ForecastNode, Variable


def data_node(node_id: str, variable_id: Optional[str], offset_months: int = 0) -> ForecastNode:
    return ForecastNode.model_validate({
        "id": node_id,
        "kind": "DATA",
        "attributes": {"name": node_id, "variable_id": variable_id, "offset_months": offset_months},
    })


def constant_node(node_id: str, value: Optional[float]) -> ForecastNode:
    return ForecastNode.model_validate({
        "id": node_id,
        "kind": "CONSTANT",
        "attributes": {"name": node_id, "value": value},
    })


def operator_node(node_id: str, op: str, input_order: List[str]) -> ForecastNode:
    return ForecastNode.model_validate({
        "id": node_id,
        "kind": "OPERATOR",
        "attributes": {"op": op, "input_order": input_order},
    })


def metric_node(
    node_id: str,
    label: Optional[str] = None,
    budget_variable_id: Optional[str] = None,
    historical_variable_id: Optional[str] = None,
    use_calculated: bool = True,
) -> ForecastNode:
    return ForecastNode.model_validate({
        "id": node_id,
        "kind": "METRIC",
        "attributes": {
            "label": node_id if label is None else label,
            "budget_variable_id": budget_variable_id,
            "historical_variable_id": historical_variable_id,
            "use_calculated": use_calculated,
        },
    })


def seed_node(node_id: str, source_metric_id: Optional[str]) -> ForecastNode:
    return ForecastNode.model_validate({
        "id": node_id,
        "kind": "SEED",
        "attributes": {"source_metric_id": source_metric_id},
    })


def edge(source: str, target: str) -> ForecastEdge:
    return ForecastEdge(id=f"{source}->{target}", source_node_id=source, target_node_id=target)


def variable(variable_id: str, values: Dict[date, Optional[float]], variable_type: str = "ACTUAL") -> Variable:
    return Variable.model_validate({
        "id": variable_id,
        "name": variable_id,
        "type": variable_type,
        "organization_id": "org_1",
        "time_series": [{"date": d, "value": v} for d, v in values.items()],
    })


def end_to_end_graph():
    """
    Revenue = Units * Price, with a budget variable for comparison.

    Units = 10 each month, Price = 100 -> forecast 1000 for Jan-Mar 2025.
    """
    nodes = [
        data_node("units", "var_units"),
        constant_node("price", 100),
        operator_node("multiply", "*", ["units", "price"]),
        metric_node("revenue", "Revenue", budget_variable_id="var_budget", historical_variable_id="var_actuals"),
    ]
    edges = [
        edge("units", "multiply"),
        edge("price", "multiply"),
        edge("multiply", "revenue"),
    ]
    variables = [
        variable("var_units", {date(2025, 1, 1): 10, date(2025, 2, 1): 10, date(2025, 3, 1): 10}, variable_type="INPUT"),
        variable(
            "var_budget",
            {date(2025, 1, 1): 1300, date(2025, 2, 1): 1400, date(2025, 3, 1): 1500},
            variable_type="BUDGET",
        ),
        variable("var_actuals", {date(2024, 12, 1): 900}),
    ]
    return nodes, edges, variables

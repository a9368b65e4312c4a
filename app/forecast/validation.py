"""
Graph Validation - structural checks run before any evaluation.

Validation is a pure function over the node and edge lists. Every problem is
collected rather than raised so the caller can show the full list at once.
"""
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from app.forecast.types import (
    ForecastEdge,
    ForecastNode,
    GraphValidationResult,
    NodeKind,
)

logger = logging.getLogger(__name__)


def is_recurrence_edge(edge: ForecastEdge, nodes_by_id: Dict[str, ForecastNode]) -> bool:
    """Edges into SEED nodes describe temporal recurrence, not data flow."""
    target = nodes_by_id.get(edge.target_node_id)
    return target is not None and target.kind == NodeKind.SEED


def index_incoming(edges: Iterable[ForecastEdge]) -> Dict[str, List[str]]:
    """Map target node id -> source node ids, in edge order."""
    incoming: Dict[str, List[str]] = {}
    for edge in edges:
        incoming.setdefault(edge.target_node_id, []).append(edge.source_node_id)
    return incoming


def find_cycle(node_ids: Sequence[str], edges: Iterable[ForecastEdge]) -> Optional[List[str]]:
    """
    Depth-first search with a recursion stack.

    Returns the node ids forming the first cycle found (first id repeated at
    the end), or None when the edges are acyclic.
    """
    outgoing: Dict[str, List[str]] = {}
    for edge in edges:
        outgoing.setdefault(edge.source_node_id, []).append(edge.target_node_id)

    visited = set()
    stack: List[str] = []
    on_stack = set()

    def visit(node_id: str) -> Optional[List[str]]:
        if node_id in on_stack:
            return stack[stack.index(node_id):] + [node_id]
        if node_id in visited:
            return None
        visited.add(node_id)
        stack.append(node_id)
        on_stack.add(node_id)
        for target_id in outgoing.get(node_id, []):
            cycle = visit(target_id)
            if cycle:
                return cycle
        stack.pop()
        on_stack.discard(node_id)
        return None

    for node_id in node_ids:
        if node_id not in visited:
            cycle = visit(node_id)
            if cycle:
                return cycle
    return None


def validate_graph(
    nodes: Sequence[ForecastNode],
    edges: Sequence[ForecastEdge],
) -> GraphValidationResult:
    """
    Validate a forecast graph.

    Errors block calculation; warnings describe graphs that evaluate but are
    probably not what the user intended.
    """
    errors: List[str] = []
    warnings: List[str] = []

    nodes_by_id: Dict[str, ForecastNode] = {}
    for node in nodes:
        if node.id in nodes_by_id:
            errors.append(f"Duplicate node id: {node.id}")
            continue
        nodes_by_id[node.id] = node

    if not any(node.kind == NodeKind.METRIC for node in nodes_by_id.values()):
        errors.append("Graph must contain at least one METRIC node")

    # Dangling edges are reported and then left out of every other check
    connected_edges: List[ForecastEdge] = []
    for edge in edges:
        dangling = False
        if edge.source_node_id not in nodes_by_id:
            errors.append(f"Edge {edge.id} references non-existent source node: {edge.source_node_id}")
            dangling = True
        if edge.target_node_id not in nodes_by_id:
            errors.append(f"Edge {edge.id} references non-existent target node: {edge.target_node_id}")
            dangling = True
        if not dangling:
            connected_edges.append(edge)

    structural_edges = [e for e in connected_edges if not is_recurrence_edge(e, nodes_by_id)]
    recurrence_edges = [e for e in connected_edges if is_recurrence_edge(e, nodes_by_id)]

    cycle = find_cycle(list(nodes_by_id), structural_edges)
    if cycle:
        errors.append(
            f"Graph contains a cycle: {' -> '.join(cycle)} - forecast graphs must be acyclic"
        )

    incoming = index_incoming(structural_edges)
    recurrence_incoming = index_incoming(recurrence_edges)

    for node in nodes_by_id.values():
        sources = incoming.get(node.id, [])
        if node.kind == NodeKind.OPERATOR:
            _validate_operator(node, sources, errors)
        elif node.kind == NodeKind.METRIC:
            _validate_metric(node, sources, errors, warnings)
        elif node.kind == NodeKind.SEED:
            _validate_seed(node, nodes_by_id, recurrence_incoming.get(node.id, []), errors)
        elif node.kind == NodeKind.DATA:
            if sources:
                errors.append(f"DATA node {node.id} cannot have inputs (found {len(sources)})")
            if not node.attributes.variable_id:
                errors.append(f"DATA node {node.id} has no variable selected")
        elif node.kind == NodeKind.CONSTANT:
            if sources:
                errors.append(f"CONSTANT node {node.id} cannot have inputs (found {len(sources)})")
            if node.attributes.value is None:
                warnings.append(f"CONSTANT node {node.id} has no value - it will evaluate to null")

    _check_connectivity(nodes_by_id, connected_edges, structural_edges, warnings)

    result = GraphValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
    logger.info(
        f"Graph validation complete - {'VALID' if result.is_valid else 'INVALID'} "
        f"({len(nodes_by_id)} nodes, {len(connected_edges)} edges, "
        f"{len(errors)} errors, {len(warnings)} warnings)"
    )
    for error in errors:
        logger.debug(f"Validation error: {error}")
    return result


def _validate_operator(node: ForecastNode, sources: List[str], errors: List[str]) -> None:
    """An operator's input_order must name exactly its connected inputs."""
    input_order = node.attributes.input_order

    if not sources:
        errors.append(f"OPERATOR node {node.id} has no inputs")
    if len(set(sources)) != len(sources):
        errors.append(f"OPERATOR node {node.id} has duplicate input edges")
    if len(set(input_order)) != len(input_order):
        errors.append(f"OPERATOR node {node.id} lists an input more than once in its input order")

    missing = [s for s in sources if s not in input_order]
    unexpected = [i for i in input_order if i not in sources]
    if missing or unexpected:
        details = []
        if missing:
            details.append(f"connected but not in input order: [{', '.join(missing)}]")
        if unexpected:
            details.append(f"in input order but not connected: [{', '.join(unexpected)}]")
        errors.append(
            f"OPERATOR node {node.id} input order does not match its inputs ({'; '.join(details)})"
        )


def _validate_metric(
    node: ForecastNode,
    sources: List[str],
    errors: List[str],
    warnings: List[str],
) -> None:
    attributes = node.attributes

    if len(sources) > 1:
        errors.append(f"METRIC node {node.id} has {len(sources)} inputs but accepts at most one")
    elif not sources:
        warnings.append(
            f"METRIC node {node.id} has no inputs - forecast will fall back to its budget variable"
        )

    if not attributes.budget_variable_id:
        warnings.append(f"METRIC node {node.id} has no budget variable configured - budget values will be null")
    if not attributes.historical_variable_id:
        warnings.append(
            f"METRIC node {node.id} has no historical variable configured - historical values will be null"
        )
    if not attributes.label:
        warnings.append(f"METRIC node {node.id} missing label")


def _validate_seed(
    node: ForecastNode,
    nodes_by_id: Dict[str, ForecastNode],
    recurrence_sources: List[str],
    errors: List[str],
) -> None:
    source_metric_id = node.attributes.source_metric_id

    if not source_metric_id:
        errors.append(f"SEED node {node.id} missing required source_metric_id")
        return

    referenced = nodes_by_id.get(source_metric_id)
    if referenced is None:
        # Usually means the client saved the seed before the metric it points to
        errors.append(
            f"SEED node {node.id} references non-existent metric: {source_metric_id}. "
            f"The forecast data is out of sync - save the forecast and try again."
        )
        return
    if referenced.kind != NodeKind.METRIC:
        errors.append(
            f"SEED node {node.id} source_metric_id must reference a METRIC node, found: {referenced.kind.value}"
        )
        return

    for source_id in recurrence_sources:
        if source_id != source_metric_id:
            errors.append(
                f"SEED node {node.id} is linked from {source_id} but seeds from metric {source_metric_id}"
            )


def _check_connectivity(
    nodes_by_id: Dict[str, ForecastNode],
    connected_edges: List[ForecastEdge],
    structural_edges: List[ForecastEdge],
    warnings: List[str],
) -> None:
    """Warn about nodes that never contribute to a metric."""
    touched = set()
    for edge in connected_edges:
        touched.add(edge.source_node_id)
        touched.add(edge.target_node_id)

    # Walk backwards from every metric to find contributing nodes
    incoming = index_incoming(structural_edges)
    contributing = set()
    pending = [n.id for n in nodes_by_id.values() if n.kind == NodeKind.METRIC]
    while pending:
        node_id = pending.pop()
        if node_id in contributing:
            continue
        contributing.add(node_id)
        pending.extend(incoming.get(node_id, []))

    for node in nodes_by_id.values():
        if node.kind == NodeKind.METRIC:
            continue
        if node.id not in touched:
            warnings.append(f"Node {node.id} ({node.kind.value}) is not connected to any other nodes")
        elif node.id not in contributing:
            warnings.append(f"Node {node.id} ({node.kind.value}) does not feed any METRIC node")

"""
Graph-to-Tree Converter.

Turns a validated node/edge graph into one evaluation tree per METRIC node
and orders those trees so that every metric referenced by a SEED node is
evaluated before the trees that read it.
"""
import logging
from graphlib import CycleError, TopologicalSorter
from typing import Dict, List, Sequence, Set

from app.forecast.errors import GraphValidationError, MetricNotFoundError, SeedDependencyCycleError, TreeBuildError
from app.forecast.types import (
    CalculationTree,
    CalculationTreeNode,
    ForecastEdge,
    ForecastNode,
    NodeKind,
)
from app.forecast.validation import index_incoming, is_recurrence_edge, validate_graph

logger = logging.getLogger(__name__)

LEAF_KINDS = {NodeKind.DATA, NodeKind.CONSTANT, NodeKind.SEED}


class GraphConverter:
    """Builds per-metric calculation trees from a forecast graph."""

    def convert_to_trees(
        self,
        nodes: Sequence[ForecastNode],
        edges: Sequence[ForecastEdge],
    ) -> List[CalculationTree]:
        """
        Validate the graph, build one tree per METRIC node and order them.

        Raises:
            GraphValidationError: the graph failed validation
            TreeBuildError: a tree could not be assembled
            SeedDependencyCycleError: metrics seed from each other in a loop
        """
        logger.info(f"Starting graph-to-tree conversion: {len(nodes)} nodes, {len(edges)} edges")

        validation = validate_graph(nodes, edges)
        if not validation.is_valid:
            logger.error(f"Graph validation failed: {validation.errors}")
            raise GraphValidationError(validation.errors, validation.warnings)
        if validation.warnings:
            logger.warning(f"Graph validation warnings: {validation.warnings}")

        nodes_by_id: Dict[str, ForecastNode] = {node.id: node for node in nodes}
        structural_edges = [e for e in edges if not is_recurrence_edge(e, nodes_by_id)]
        incoming = index_incoming(structural_edges)

        trees = []
        for node in nodes:
            if node.kind != NodeKind.METRIC:
                continue
            trees.append(
                CalculationTree(
                    root_metric_node_id=node.id,
                    tree=self._build_tree(node.id, nodes_by_id, incoming, set()),
                )
            )

        ordered = order_trees_by_dependencies(trees)
        logger.info(
            f"Created {len(ordered)} calculation trees, "
            f"order: [{', '.join(t.root_metric_node_id for t in ordered)}]"
        )
        return ordered

    def _build_tree(
        self,
        node_id: str,
        nodes_by_id: Dict[str, ForecastNode],
        incoming: Dict[str, List[str]],
        path: Set[str],
    ) -> CalculationTreeNode:
        """Recursively collect a node's inputs. ``path`` guards against cycles."""
        if node_id in path:
            raise TreeBuildError(f"Cycle reached while building tree at node {node_id}", node_id)

        node = nodes_by_id.get(node_id)
        if node is None:
            raise TreeBuildError(f"Node {node_id} not found", node_id)

        if node.kind in LEAF_KINDS:
            return CalculationTreeNode(node_id=node.id, node_type=node.kind, node_data=node.attributes)

        sources = incoming.get(node_id, [])
        input_order = None
        if node.kind == NodeKind.OPERATOR:
            input_order = list(node.attributes.input_order)
            for child_id in input_order:
                if child_id not in sources:
                    raise TreeBuildError(
                        f"OPERATOR node {node_id} is missing input {child_id} listed in its input order",
                        node_id,
                    )
            child_ids = input_order
        else:
            child_ids = sources

        path = path | {node_id}
        children = [self._build_tree(child_id, nodes_by_id, incoming, path) for child_id in child_ids]
        logger.debug(f"Node {node_id} ({node.kind.value}) has {len(children)} children")

        return CalculationTreeNode(
            node_id=node.id,
            node_type=node.kind,
            node_data=node.attributes,
            children=children,
            input_order=input_order,
        )


def order_trees_by_dependencies(trees: Sequence[CalculationTree]) -> List[CalculationTree]:
    """
    Topologically sort trees by their SEED references.

    A SEED that points at its own tree's root is a self-recurrence and adds no
    ordering constraint.
    """
    trees_by_root = {tree.root_metric_node_id: tree for tree in trees}
    # Every root is registered first so independent trees keep their node order
    sorter = TopologicalSorter()
    for tree in trees:
        sorter.add(tree.root_metric_node_id)

    for tree in trees:
        dependencies: List[str] = []
        for node in tree.tree.walk():
            if node.node_type != NodeKind.SEED:
                continue
            source_metric_id = node.node_data.source_metric_id
            if source_metric_id not in trees_by_root:
                raise MetricNotFoundError(source_metric_id, node.node_id)
            if source_metric_id != tree.root_metric_node_id and source_metric_id not in dependencies:
                dependencies.append(source_metric_id)
        if dependencies:
            sorter.add(tree.root_metric_node_id, *dependencies)
            logger.debug(f"Tree {tree.root_metric_node_id} depends on: {dependencies}")

    try:
        order = list(sorter.static_order())
    except CycleError as e:
        cycle = e.args[1]
        logger.error(f"Circular seed dependency detected: {' -> '.join(cycle)}")
        raise SeedDependencyCycleError(cycle) from e

    return [trees_by_root[root_id] for root_id in order]


def convert_to_trees(nodes: Sequence[ForecastNode], edges: Sequence[ForecastEdge]) -> List[CalculationTree]:
    """Convenience wrapper around ``GraphConverter().convert_to_trees``."""
    return GraphConverter().convert_to_trees(nodes, edges)

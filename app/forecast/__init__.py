"""Forecast module - forecast graph validation, tree conversion and calculation."""
from app.forecast.converter import convert_to_trees
from app.forecast.engine import CalculationEngine
from app.forecast.validation import validate_graph

__all__ = ["convert_to_trees", "CalculationEngine", "validate_graph"]

"""Shared test fixtures and configuration for forecaster backend tests."""
import pytest

from forecast_graphs import end_to_end_graph

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


@pytest.fixture
def revenue_graph():
    """Nodes, edges and variables for the Units * Price revenue forecast."""
    return end_to_end_graph()

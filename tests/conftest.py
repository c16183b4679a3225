"""
Shared pytest fixtures for all tests.

Isolates settings, the global graph registry and the global metrics
collector between tests.
"""

import pytest

from workgraph.domain.workflow.graph_registry import reset_graph_registry
from workgraph.observability.metrics import reset_metrics_collector
from workgraph.settings import clear_settings_cache


_ENV_VARS = (
    "WORKGRAPH_ENVIRONMENT",
    "WORKGRAPH_MAX_STEPS",
    "WORKGRAPH_FAILURE_POLICY",
    "WORKGRAPH_MAX_CONCURRENCY",
    "WORKGRAPH_NODE_TIMEOUT",
    "WORKGRAPH_WORKFLOWS_DIR",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


# =============================================================================
# CONFIGURATION FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def isolate_config(tmp_path, monkeypatch):
    """
    Automatically isolate config for all tests.

    Clears workgraph environment variables, points the workflows directory
    at an empty temporary directory and resets cached globals.
    """
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    workflows_dir = tmp_path / "workflows"
    workflows_dir.mkdir()
    monkeypatch.setenv("WORKGRAPH_WORKFLOWS_DIR", str(workflows_dir))
    # Keep a stray .env in the working directory out of the tests
    monkeypatch.chdir(tmp_path)

    clear_settings_cache()
    reset_graph_registry()
    reset_metrics_collector()

    yield {"workflows_dir": workflows_dir}

    clear_settings_cache()
    reset_graph_registry()
    reset_metrics_collector()

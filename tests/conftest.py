"""Shared fixtures."""

import pytest
from converge.config.settings import RetrySettings, Settings, StateSettings
from converge.engine import Engine
from converge.graph.builder import build_graph
from converge.ingest.config_loader import parse_configuration
from converge.providers.memory import MemoryProvider
from converge.state.store import LocalStateStore


@pytest.fixture
def settings(tmp_path):
    """Settings with no backoff so retry tests run instantly."""
    return Settings(
        parallelism=2,
        operation_timeout=5,
        retry=RetrySettings(max_attempts=3, backoff_min=0, backoff_max=0),
        state=StateSettings(path=str(tmp_path / "state.json")),
    )


@pytest.fixture
def provider():
    return MemoryProvider()


@pytest.fixture
def store(settings):
    return LocalStateStore(settings.state.path)


@pytest.fixture
def engine(settings, provider, store):
    return Engine(settings, provider, store)


@pytest.fixture
def make_graph(tmp_path):
    """Build a graph from an in-memory declaration dict."""
    def _make(data, variables=None):
        return build_graph(parse_configuration(data, str(tmp_path)), variables)
    return _make

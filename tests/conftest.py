"""Shared fixtures."""
import pytest

from tsdb_client.core.telemetry import TelemetryRecorder, set_recorder


@pytest.fixture(autouse=True)
def recorder():
    """Install a fresh global telemetry recorder for every test."""
    fresh = TelemetryRecorder(collect_stats=True)
    set_recorder(fresh)
    yield fresh
    set_recorder(TelemetryRecorder())

"""Shared fixtures for the imagine bot tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from imagine_bot.telemetry import TelemetryCollector, set_telemetry


@pytest.fixture(autouse=True)
def telemetry(tmp_path: Path):
    """Route all telemetry into a throwaway database."""
    collector = TelemetryCollector(tmp_path / "telemetry.db")
    set_telemetry(collector)
    yield collector
    set_telemetry(None)

"""
Pytest configuration and fixtures.
"""

import sys
from pathlib import Path

import pytest

# Add project root and this directory (for the shared factories) to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(Path(__file__).parent))

from config.settings import LedgerConfig, Settings  # noqa: E402
from data.payloads import parse_phase_payload, parse_signal_payload, parse_trend_payload  # noqa: E402
from execution.ledger import SQLiteLedger  # noqa: E402
from factories import FIXED_NOW, phase_payload, signal_payload, trend_payload  # noqa: E402


@pytest.fixture(scope="session")
def project_path():
    """Return project root path."""
    return project_root


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def make_signal():
    """Build a validated Signal; keyword arguments go to signal_payload."""

    def _make(**kwargs):
        return parse_signal_payload(signal_payload(**kwargs))

    return _make


@pytest.fixture
def make_phase():
    def _make(**kwargs):
        return parse_phase_payload(phase_payload(**kwargs))

    return _make


@pytest.fixture
def make_trend():
    def _make(**kwargs):
        return parse_trend_payload(trend_payload(**kwargs))

    return _make


@pytest.fixture
def ledger_config():
    return LedgerConfig(max_retry_attempts=3, retry_base_delay=0.01, connect_timeout=5.0, query_timeout=5.0)


@pytest.fixture
def ledger(tmp_path, ledger_config):
    store = SQLiteLedger(tmp_path / "ledger.db", config=ledger_config)
    yield store
    store.close()


@pytest.fixture
def settings(tmp_path, ledger_config):
    return Settings(ledger=ledger_config.model_copy(update={"db_path": str(tmp_path / "pipeline.db")}))

"""
pytest configuration for the probe test suite.

Adds src directory to Python path for imports and clears probe
environment variables so a developer's shell can't leak into unit tests.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

PROBE_ENV_VARS = [
    "KAFKA_BOOTSTRAP_SERVERS",
    "KAFKA_API_VERSION",
    "KAFKA_SECURITY_PROTOCOL",
    "KAFKA_SASL_MECHANISM",
    "KAFKA_SASL_PLAIN_USERNAME",
    "KAFKA_SASL_PLAIN_PASSWORD",
    "KAFKA_SESSION_TIMEOUT_MS",
    "PROBE_INITIAL_OFFSET",
    "PROBE_WORKER_COUNT",
    "PROBE_PARTITION_COUNT",
    "PROBE_READINESS_TIMEOUT_S",
    "PROBE_SETTLE_TIMEOUT_S",
    "PROBE_TOPIC_PREFIX",
    "PROBE_GROUP_PREFIX",
    "PROBE_VERBOSE",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every probe environment variable for the test."""
    for name in PROBE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch

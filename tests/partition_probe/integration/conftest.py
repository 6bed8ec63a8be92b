"""
Pytest fixtures for probe integration tests.

Provides fixtures for:
- Docker-based Kafka test container
- ProbeConfig pointed at the container
"""

import os
from typing import Generator

import pytest
from testcontainers.kafka import KafkaContainer

from partition_probe.config import ProbeConfig


@pytest.fixture(scope="session")
def kafka_container() -> Generator[KafkaContainer, None, None]:
    """
    Provide a Kafka container for integration tests.

    The container runs for the entire test session and is shared across
    tests; every probe run uses its own uuid-named topic and group.

    Yields:
        KafkaContainer: Started Kafka container instance
    """
    kafka = KafkaContainer()
    kafka.start()

    # Lets ProbeConfig.load_config() find the container
    os.environ["KAFKA_BOOTSTRAP_SERVERS"] = kafka.get_bootstrap_server()

    yield kafka

    kafka.stop()
    os.environ.pop("KAFKA_BOOTSTRAP_SERVERS", None)


@pytest.fixture
def integration_config(kafka_container: KafkaContainer) -> ProbeConfig:
    """
    Probe configuration for the test container.

    Short session timeouts keep rebalances fast; deadlines stay generous
    because the first group join on a fresh broker is slow.
    """
    return ProbeConfig(
        bootstrap_servers=kafka_container.get_bootstrap_server(),
        session_timeout_ms=6000,
        heartbeat_interval_ms=1000,
        readiness_timeout_s=60.0,
        settle_timeout_s=15.0,
    )

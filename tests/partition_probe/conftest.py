"""
Pytest fixtures for partition probe unit tests.

Provides:
- ProbeConfig instances with short deadlines
- Fake admin/worker doubles that script broker behaviour for the orchestrator
- A recording session double for worker tests
"""

import asyncio
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiokafka.structs import ConsumerRecord, TopicPartition

from core.errors import ConsumeError, SessionClosedError
from partition_probe.admin import ControllerInfo, TopicCreateOutcome, TopicCreationResult
from partition_probe.config import ProbeConfig


@pytest.fixture
def probe_config() -> ProbeConfig:
    """Two workers, one partition, deadlines short enough for unit tests."""
    return ProbeConfig(
        bootstrap_servers=("localhost:9092",),
        worker_count=2,
        partition_count=1,
        readiness_timeout_s=2.0,
        settle_timeout_s=0.5,
    )


def make_record(topic: str, partition: int, offset: int) -> ConsumerRecord:
    return ConsumerRecord(
        topic=topic,
        partition=partition,
        offset=offset,
        timestamp=0,
        timestamp_type=0,
        key=None,
        value=b"payload",
        checksum=None,
        serialized_key_size=-1,
        serialized_value_size=7,
        headers=(),
    )


class RecordingSession:
    """Session double that records commits the way GroupSession would issue them."""

    def __init__(self, group_id: str = "probe-group"):
        self.group_id = group_id
        self.marked: List[tuple] = []
        self.closed = False

    async def mark_message(self, record: ConsumerRecord, metadata: str = "") -> None:
        # Yield so interleaving would show up if acknowledgements ran concurrently
        await asyncio.sleep(0)
        self.marked.append((record.partition, record.offset, metadata))


@pytest.fixture
def recording_session() -> RecordingSession:
    return RecordingSession()


def assigned(topic: str, *partitions: int):
    return {TopicPartition(topic, p) for p in partitions}


class FakeAdmin:
    """Scripted BrokerAdmin: returns a fixed topic creation outcome."""

    def __init__(self, config, result: Optional[TopicCreationResult] = None):
        self.config = config
        self.result = result
        self.created: List[tuple] = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True
        return False

    async def resolve_controller(self) -> ControllerInfo:
        return ControllerInfo(node_id=1, host="localhost", port=9092)

    async def create_topic(self, name, partition_count, replication_factor, timeout_ms):
        self.created.append((name, partition_count, replication_factor, timeout_ms))
        if self.result is not None:
            return TopicCreationResult(
                topic=name,
                outcome=self.result.outcome,
                error_code=self.result.error_code,
                error_name=self.result.error_name,
                error_message=self.result.error_message,
            )
        return TopicCreationResult(topic=name, outcome=TopicCreateOutcome.CREATED)


def admin_factory(result: Optional[TopicCreationResult] = None):
    def factory(config):
        admin = FakeAdmin(config, result)
        factory.instances.append(admin)
        return admin

    factory.instances = []
    return factory


class FakeWorker:
    """
    Scripted ClaimWorker.

    Args:
        claims: Claimed counts reported by successive setup() calls
        fail_with: Exception raised from run() after the claims are reported
        fail_delay: Seconds to keep consuming before fail_with is raised
        exit_early: run() returns right after reporting, as if the group closed
        setup_delay: Seconds to wait before each readiness event
    """

    def __init__(
        self,
        worker_id: int,
        config,
        claims=(1,),
        fail_with: Optional[BaseException] = None,
        fail_delay: float = 0.0,
        exit_early: bool = False,
        setup_delay: float = 0.0,
    ):
        self.worker_id = worker_id
        self.config = config
        self.claims = list(claims)
        self.fail_with = fail_with
        self.fail_delay = fail_delay
        self.exit_early = exit_early
        self.setup_delay = setup_delay
        self.session = None
        self.close_roles: List[str] = []
        self.cancelled = False
        self._claimed = 0
        self._ready: asyncio.Queue = asyncio.Queue()
        self._closed_event = asyncio.Event()

    @property
    def claimed_partitions(self) -> int:
        return self._claimed

    @property
    def closed(self) -> bool:
        return self._closed_event.is_set()

    async def run(self, topic: str, group_id: str) -> None:
        self.session = MagicMock(group_id=group_id)
        try:
            for claimed in self.claims:
                if self.setup_delay:
                    await asyncio.sleep(self.setup_delay)
                self._claimed = claimed
                await self._ready.put(claimed)
            if self.fail_with is not None:
                if self.fail_delay:
                    await asyncio.sleep(self.fail_delay)
                raise ConsumeError(self.worker_id, "consume loop failed", cause=self.fail_with)
            if self.exit_early:
                return
            await self._closed_event.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise

    async def wait_ready(self) -> int:
        return await self._ready.get()

    async def close(self, role: str = "loser") -> None:
        if self.closed:
            raise SessionClosedError(f"worker {self.worker_id} already closed")
        self.close_roles.append(role)
        self._closed_event.set()


def worker_factory(scripts: dict):
    """Build FakeWorkers from {worker_id: kwargs}; unlisted ids claim 1."""
    created = {}

    def factory(worker_id, config):
        worker = FakeWorker(worker_id, config, **scripts.get(worker_id, {}))
        created[worker_id] = worker
        return worker

    factory.created = created
    return factory


@pytest.fixture
def mock_consumer():
    """AIOKafkaConsumer double with no assignment and no records."""
    consumer = MagicMock()
    consumer.start = AsyncMock()
    consumer.stop = AsyncMock()
    consumer.commit = AsyncMock()
    consumer.getmany = AsyncMock(return_value={})
    consumer.assignment = MagicMock(return_value=set())
    return consumer


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def partitions_of():
    return assigned


@pytest.fixture
def fake_admin_factory():
    return admin_factory


@pytest.fixture
def fake_worker_factory():
    return worker_factory

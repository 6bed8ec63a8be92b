"""
Competing consumer-group worker.

Each ClaimWorker is one identity in the race for the probe topic's
partitions. Its setup hook records how many partitions the broker handed it
and releases a readiness signal; the orchestrator reads the recorded count
only after it has received that signal.
"""

import asyncio
import logging
import threading
from typing import Callable, List, Optional, Set, Tuple

from aiokafka.structs import ConsumerRecord, TopicPartition

from core.errors import ConsumeError, ProbeError
from core.logging import get_logger, log_exception, log_with_context
from partition_probe.config import ProbeConfig
from partition_probe.metrics import (
    record_message_acknowledged,
    record_rebalance_event,
    record_session_closed,
    update_claimed_partitions,
)
from partition_probe.session import GroupSession

logger = get_logger(__name__)


class ClaimWorker:
    """
    One competing consumer in the probe group.

    State:
        worker_id: stable small integer identity
        claimed_partitions: partitions held per the latest setup() call
        readiness queue: one event per setup() call, unbounded
        session: GroupSession owned exclusively by this worker
    """

    def __init__(
        self,
        worker_id: int,
        config: ProbeConfig,
        session_factory: Callable[..., GroupSession] = GroupSession,
    ):
        self.worker_id = worker_id
        self.config = config
        self._session_factory = session_factory
        self.session: Optional[GroupSession] = None
        self.group_id: Optional[str] = None

        # setup() runs inside aiokafka's rebalance listener and must never block
        self._ready: asyncio.Queue = asyncio.Queue()
        self._claims = 0
        self._claims_lock = threading.Lock()
        self._setup_count = 0

        # (partition, offset) in acknowledgement order
        self.acknowledged: List[Tuple[int, int]] = []

    @property
    def claimed_partitions(self) -> int:
        with self._claims_lock:
            return self._claims

    def _store_claims(self, count: int) -> None:
        with self._claims_lock:
            self._claims = count

    @property
    def setup_count(self) -> int:
        return self._setup_count

    @property
    def closed(self) -> bool:
        return self.session is not None and self.session.closed

    # ------------------------------------------------------------------
    # Session callbacks
    # ------------------------------------------------------------------

    async def setup(self, session: GroupSession, assigned: Set[TopicPartition]) -> None:
        """Record the claim for this rebalance, then signal readiness once."""
        claimed = len(assigned)
        self._store_claims(claimed)
        self._setup_count += 1

        update_claimed_partitions(session.group_id, self.worker_id, claimed)
        record_rebalance_event(session.group_id, self.worker_id, "assigned")
        log_with_context(
            logger,
            logging.INFO,
            "Worker setup complete",
            worker_id=self.worker_id,
            consumer_group=session.group_id,
            claimed=claimed,
            partitions=sorted(f"{tp.topic}:{tp.partition}" for tp in assigned),
        )

        self._ready.put_nowait(claimed)

    async def cleanup(self, session: GroupSession, revoked: Set[TopicPartition]) -> None:
        record_rebalance_event(session.group_id, self.worker_id, "revoked")
        log_with_context(
            logger,
            logging.INFO,
            "Worker cleanup",
            worker_id=self.worker_id,
            consumer_group=session.group_id,
            partitions=sorted(f"{tp.topic}:{tp.partition}" for tp in revoked),
        )

    async def consume_claim(
        self,
        session: GroupSession,
        tp: TopicPartition,
        records: List[ConsumerRecord],
    ) -> None:
        """Acknowledge each record in delivery order. No concurrency here."""
        for record in records:
            value = _display_value(record.value)
            log_with_context(
                logger,
                logging.DEBUG,
                "Message claimed: value=%s timestamp=%s topic=%s"
                % (value, record.timestamp, record.topic),
                worker_id=self.worker_id,
                topic=record.topic,
                partition=record.partition,
                offset=record.offset,
                timestamp=record.timestamp,
                value=value,
            )
            await session.mark_message(record, "")
            self.acknowledged.append((record.partition, record.offset))
            record_message_acknowledged(record.topic, self.worker_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self, topic: str, group_id: str) -> None:
        """
        Join the group and consume until the session is closed.

        A closed group ends the task quietly. Anything else is wrapped in
        ConsumeError and propagated; the orchestrator treats it as fatal.
        """
        self.group_id = group_id
        self.session = self._session_factory(
            self.config,
            group_id=group_id,
            topics=[topic],
            client_id=f"{self.config.client_id_prefix}-{self.worker_id}",
        )

        log_with_context(
            logger,
            logging.INFO,
            "Worker started",
            worker_id=self.worker_id,
            topic=topic,
            consumer_group=group_id,
        )

        try:
            await self.session.join(self)
            while True:
                logger.debug("Consume at worker %s", self.worker_id)
                await self.session.consume()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if isinstance(e, ProbeError) and not e.is_fatal:
                log_with_context(
                    logger,
                    logging.INFO,
                    "Worker consume loop ended, group closed",
                    worker_id=self.worker_id,
                )
                return
            log_exception(
                logger,
                e,
                "Worker consume loop failed",
                worker_id=self.worker_id,
            )
            raise ConsumeError(self.worker_id, "consume loop failed", cause=e) from e

    async def wait_ready(self) -> int:
        """Wait for the next readiness event; returns the claim it reported."""
        return await self._ready.get()

    async def close(self, role: str = "loser") -> None:
        """
        Close the worker's group session.

        Raises:
            SessionClosedError: If the session was already closed
        """
        if self.session is None:
            raise ConsumeError(self.worker_id, "close() called before run()")

        await self.session.close()
        record_session_closed(self.session.group_id, role)
        log_with_context(
            logger,
            logging.INFO,
            "Worker closed",
            worker_id=self.worker_id,
            consumer_group=self.session.group_id,
            claimed=self.claimed_partitions,
        )


def _display_value(value: Optional[bytes]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)

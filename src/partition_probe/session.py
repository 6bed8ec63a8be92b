"""
Consumer-group session over aiokafka.

A GroupSession is one member of a consumer group. It drives a handler
through the same per-rebalance lifecycle a group member goes through:

    setup(session, assigned)        once per assignment, before delivery
    consume_claim(session, tp, records)
                                    per partition batch, strictly sequential
    cleanup(session, revoked)       once per revocation (session end)

The broker's group coordinator decides the assignment; aiokafka's
coordinator task runs the join/sync protocol and calls back into the
rebalance listener below.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from aiokafka import AIOKafkaConsumer, ConsumerRebalanceListener
from aiokafka.errors import ConsumerStoppedError
from aiokafka.structs import ConsumerRecord, OffsetAndMetadata, TopicPartition

from core.errors import GroupClosedError, SessionClosedError
from core.logging import get_logger, log_with_context
from partition_probe.config import ProbeConfig

logger = get_logger(__name__)

# How long to sleep between assignment checks while holding no partitions
ASSIGNMENT_POLL_INTERVAL_S = 0.5


class SessionHandler(Protocol):
    async def setup(self, session: "GroupSession", assigned: Set[TopicPartition]) -> None:
        ...

    async def cleanup(self, session: "GroupSession", revoked: Set[TopicPartition]) -> None:
        ...

    async def consume_claim(
        self,
        session: "GroupSession",
        tp: TopicPartition,
        records: List[ConsumerRecord],
    ) -> None:
        ...


class _SessionRebalanceListener(ConsumerRebalanceListener):
    """Routes aiokafka rebalance callbacks to the session handler.

    aiokafka logs and swallows listener exceptions, so failures are parked
    on the session and re-raised from consume().
    """

    def __init__(self, session: "GroupSession"):
        self.session = session

    async def on_partitions_revoked(self, revoked):
        handler = self.session.handler
        if handler is None:
            return
        try:
            await handler.cleanup(self.session, set(revoked))
        except Exception as e:
            self.session.record_callback_error(e)

    async def on_partitions_assigned(self, assigned):
        handler = self.session.handler
        if handler is None:
            return
        try:
            await handler.setup(self.session, set(assigned))
        except Exception as e:
            self.session.record_callback_error(e)


class GroupSession:
    """
    One consumer-group membership backed by an AIOKafkaConsumer.

    The handle is owned by exactly one worker and closed at most once.

    Usage:
        >>> session = GroupSession(config, group_id="g", topics=["t"], client_id="w1")
        >>> await session.join(handler)
        >>> await session.consume()        # raises GroupClosedError once closed
        >>> await session.close()
    """

    def __init__(
        self,
        config: ProbeConfig,
        group_id: str,
        topics: List[str],
        client_id: str,
        consumer_factory: Callable[..., Any] = AIOKafkaConsumer,
    ):
        if not topics:
            raise ValueError("At least one topic must be specified")

        self.config = config
        self.group_id = group_id
        self.topics = topics
        self.client_id = client_id
        self.handler: Optional[SessionHandler] = None
        self._consumer_factory = consumer_factory
        self._consumer: Optional[Any] = None
        self._closed = False
        self._callback_error: Optional[BaseException] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def record_callback_error(self, error: BaseException) -> None:
        # Keep the first failure; later ones are usually consequences
        if self._callback_error is None:
            self._callback_error = error

    def assignment(self) -> Set[TopicPartition]:
        if self._consumer is None or self._closed:
            return set()
        return set(self._consumer.assignment())

    async def join(self, handler: SessionHandler) -> None:
        """
        Subscribe to the topics and start the consumer (joins the group).

        Raises:
            GroupClosedError: If the session was already closed
        """
        if self._closed:
            raise GroupClosedError(f"Session {self.client_id} is closed")
        if self._consumer is not None:
            logger.warning("Session already joined, ignoring duplicate join call")
            return

        self.handler = handler
        consumer = self._consumer_factory(
            **self.config.consumer_kwargs(self.group_id, self.client_id)
        )
        consumer.subscribe(topics=self.topics, listener=_SessionRebalanceListener(self))
        self._consumer = consumer
        await consumer.start()

        log_with_context(
            logger,
            logging.INFO,
            "Joined consumer group",
            topic=",".join(self.topics),
            consumer_group=self.group_id,
        )

    async def consume(self) -> None:
        """
        Deliver fetched records to the handler until the session is closed.

        Records of one partition go to a single consume_claim() call in
        delivery order; partitions are handled one after another.

        Raises:
            GroupClosedError: When the session has been closed (normal end)
            Exception: Anything raised by the client or a handler callback
        """
        if self._closed:
            raise GroupClosedError(f"Session {self.client_id} is closed")
        if self.handler is None or self._consumer is None:
            raise RuntimeError("join() must be called before consume()")

        while True:
            self._raise_if_finished()

            # getmany() can block during a rebalance regardless of timeout_ms,
            # so only fetch while partitions are assigned
            if not self.assignment():
                await asyncio.sleep(ASSIGNMENT_POLL_INTERVAL_S)
                continue

            try:
                data: Dict[TopicPartition, List[ConsumerRecord]] = (
                    await self._consumer.getmany(timeout_ms=self.config.fetch_timeout_ms)
                )
            except ConsumerStoppedError as e:
                raise GroupClosedError(f"Session {self.client_id} is closed", cause=e) from e
            except Exception:
                if self._closed:
                    # Fetch interrupted by our own close()
                    raise GroupClosedError(f"Session {self.client_id} is closed")
                raise

            for tp, records in data.items():
                self._raise_if_finished()
                await self.handler.consume_claim(self, tp, records)

    async def mark_message(self, record: ConsumerRecord, metadata: str = "") -> None:
        """Commit the offset after record, with the given commit metadata."""
        if self._closed or self._consumer is None:
            raise GroupClosedError(f"Session {self.client_id} is closed")
        tp = TopicPartition(record.topic, record.partition)
        await self._consumer.commit({tp: OffsetAndMetadata(record.offset + 1, metadata)})

    async def close(self) -> None:
        """
        Leave the group and release the consumer.

        Raises:
            SessionClosedError: If the session was already closed
        """
        if self._closed:
            raise SessionClosedError(
                f"Session {self.client_id} already closed",
                context={"consumer_group": self.group_id},
            )
        self._closed = True

        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            await consumer.stop()

        log_with_context(
            logger,
            logging.INFO,
            "Left consumer group",
            consumer_group=self.group_id,
        )

    def _raise_if_finished(self) -> None:
        if self._callback_error is not None:
            error, self._callback_error = self._callback_error, None
            raise error
        if self._closed:
            raise GroupClosedError(f"Session {self.client_id} is closed")

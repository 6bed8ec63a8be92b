"""
Broker admin facade over aiokafka's AIOKafkaAdminClient.

Covers the bootstrap half of the broker contract:
- open a connection (idempotent, reports "already connected")
- resolve the cluster controller
- create the probe topic, reporting the outcome as an explicit result
  instead of comparing against a "no error" sentinel
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import KafkaError, TopicAlreadyExistsError, for_code

from core.errors import BrokerConnectionError
from core.logging import get_logger, log_with_context
from partition_probe.config import ProbeConfig

logger = get_logger(__name__)

NO_ERROR_CODE = 0


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    ALREADY_CONNECTED = "already_connected"


class TopicCreateOutcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"


@dataclass(frozen=True)
class ControllerInfo:
    node_id: int
    host: Optional[str] = None
    port: Optional[int] = None


@dataclass(frozen=True)
class TopicCreationResult:
    """Outcome of a CreateTopics request for a single topic."""

    topic: str
    outcome: TopicCreateOutcome
    error_code: int = NO_ERROR_CODE
    error_name: str = ""
    error_message: str = ""

    @property
    def ok(self) -> bool:
        """True unless the broker rejected the topic for a real reason."""
        return self.outcome is not TopicCreateOutcome.FAILED

    @classmethod
    def from_error_code(
        cls, topic: str, error_code: int, error_message: str = ""
    ) -> "TopicCreationResult":
        """Map a Kafka protocol error code to a creation outcome."""
        if error_code == NO_ERROR_CODE:
            return cls(topic=topic, outcome=TopicCreateOutcome.CREATED)

        error_cls = for_code(error_code)
        if error_cls is TopicAlreadyExistsError:
            outcome = TopicCreateOutcome.ALREADY_EXISTS
        else:
            outcome = TopicCreateOutcome.FAILED
        return cls(
            topic=topic,
            outcome=outcome,
            error_code=error_code,
            error_name=error_cls.__name__,
            error_message=error_message or "",
        )

    @classmethod
    def from_exception(cls, topic: str, error: KafkaError) -> "TopicCreationResult":
        if isinstance(error, TopicAlreadyExistsError):
            outcome = TopicCreateOutcome.ALREADY_EXISTS
        else:
            outcome = TopicCreateOutcome.FAILED
        return cls(
            topic=topic,
            outcome=outcome,
            error_code=getattr(error, "errno", -1) or -1,
            error_name=type(error).__name__,
            error_message=str(error),
        )


class BrokerAdmin:
    """
    Thin async wrapper around AIOKafkaAdminClient.

    Usage:
        >>> async with BrokerAdmin(config) as admin:
        ...     controller = await admin.resolve_controller()
        ...     result = await admin.create_topic("probe-topic", 1, 1, 60000)
    """

    def __init__(
        self,
        config: ProbeConfig,
        client_factory: Callable[..., Any] = AIOKafkaAdminClient,
    ):
        self.config = config
        self._client_factory = client_factory
        self._client: Optional[Any] = None

    async def __aenter__(self) -> "BrokerAdmin":
        await self.open_connection()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def open_connection(self) -> ConnectionState:
        """
        Connect the admin client to the bootstrap brokers.

        Returns:
            ALREADY_CONNECTED when called on an open connection

        Raises:
            BrokerConnectionError: If the cluster can't be reached
        """
        if self._client is not None:
            return ConnectionState.ALREADY_CONNECTED

        client = self._client_factory(
            client_id=f"{self.config.client_id_prefix}-admin",
            **self.config.connection_kwargs(),
        )
        try:
            await client.start()
        except KafkaError as e:
            # start() may have opened some connections before failing
            await client.close()
            raise BrokerConnectionError(
                "Cannot connect to Kafka bootstrap brokers",
                cause=e,
                context={"bootstrap_servers": self.config.bootstrap_servers_str},
            ) from e

        self._client = client
        log_with_context(
            logger,
            logging.INFO,
            "Admin client connected",
            bootstrap_servers=self.config.bootstrap_servers_str,
        )
        return ConnectionState.CONNECTED

    async def resolve_controller(self) -> ControllerInfo:
        """
        Find the cluster controller (the broker that serves CreateTopics).

        Raises:
            BrokerConnectionError: If cluster metadata is unavailable or
                names no controller
        """
        client = self._require_client()
        try:
            cluster = await client.describe_cluster()
        except KafkaError as e:
            raise BrokerConnectionError("Cannot obtain cluster controller", cause=e) from e

        controller_id = cluster.get("controller_id")
        if controller_id is None or controller_id < 0:
            raise BrokerConnectionError(
                "Cluster metadata does not name a controller",
                context={"cluster": cluster},
            )

        host = port = None
        for broker in cluster.get("brokers", []):
            if broker.get("node_id") == controller_id:
                host, port = broker.get("host"), broker.get("port")
                break

        controller = ControllerInfo(node_id=controller_id, host=host, port=port)
        log_with_context(
            logger,
            logging.INFO,
            "Cluster controller resolved",
            controller_id=controller_id,
        )
        return controller

    async def create_topic(
        self,
        name: str,
        partition_count: int,
        replication_factor: int,
        timeout_ms: int,
    ) -> TopicCreationResult:
        """
        Create a topic and report the outcome.

        Never raises for broker-side rejections; the caller decides what is
        fatal. Both per-topic error tuples in the response and errors raised
        by the client are folded into the result.
        """
        client = self._require_client()
        new_topic = NewTopic(
            name=name,
            num_partitions=partition_count,
            replication_factor=replication_factor,
        )

        try:
            response = await client.create_topics([new_topic], timeout_ms=timeout_ms)
        except KafkaError as e:
            result = TopicCreationResult.from_exception(name, e)
        else:
            result = self._result_from_response(name, response)

        log_with_context(
            logger,
            logging.INFO if result.ok else logging.ERROR,
            f"Topic creation {result.outcome.value}",
            topic=name,
            partition_count=partition_count,
            error_code=result.error_code,
            error_name=result.error_name or None,
        )
        return result

    async def close(self) -> None:
        """Close the admin client. Safe to call multiple times."""
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.close()
        logger.debug("Admin client closed")

    def _require_client(self) -> Any:
        if self._client is None:
            raise BrokerConnectionError("Admin client is not connected")
        return self._client

    @staticmethod
    def _result_from_response(topic: str, response: Any) -> TopicCreationResult:
        # topic_errors entries are (topic, error_code) for protocol v0 and
        # (topic, error_code, error_message) for v1+
        for topic_error in getattr(response, "topic_errors", None) or []:
            entry = tuple(topic_error)
            if len(entry) < 2 or entry[0] != topic:
                continue
            error_message = str(entry[2]) if len(entry) >= 3 and entry[2] else ""
            return TopicCreationResult.from_error_code(topic, int(entry[1]), error_message)
        return TopicCreationResult(topic=topic, outcome=TopicCreateOutcome.CREATED)

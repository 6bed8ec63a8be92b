"""Probe configuration from config.yaml, environment variables and CLI overrides."""

import dataclasses
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from core.errors import ConfigurationError

# Default config path: config.yaml in src/ directory
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

# Initial offset policy -> aiokafka auto_offset_reset
OFFSET_POLICIES = {
    "oldest": "earliest",
    "newest": "latest",
}

_VERSION_RE = re.compile(r"^\d+(\.\d+){1,3}$")


def parse_api_version(version: str) -> Optional[Tuple[int, ...]]:
    """Parse a Kafka protocol version string.

    Returns None for "auto" (let the client negotiate), else the version tuple.

    Raises:
        ConfigurationError: If the string is not "auto" or dotted integers
    """
    version = version.strip()
    if version == "auto":
        return None
    if not _VERSION_RE.match(version):
        raise ConfigurationError(f"Invalid Kafka version string: {version!r}")
    return tuple(int(part) for part in version.split("."))


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def parse_bootstrap_servers(value: str) -> List[str]:
    """Split a comma separated broker list, dropping blanks."""
    return [server.strip() for server in value.split(",") if server.strip()]


@dataclass(frozen=True)
class ProbeConfig:
    """Immutable probe configuration.

    Built once at startup (ProbeConfig.load_config()) and passed to every
    component. Derive variants with with_overrides(); never mutate.
    All timing values in milliseconds unless the name says otherwise.
    """

    # Connection
    bootstrap_servers: Tuple[str, ...]
    api_version: str = "auto"
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = ""
    sasl_plain_username: str = ""
    sasl_plain_password: str = field(default="", repr=False)
    client_id_prefix: str = "partition-probe"

    # Consumer behaviour
    initial_offset: str = "oldest"
    session_timeout_ms: int = 10000
    heartbeat_interval_ms: int = 3000
    max_poll_interval_ms: int = 300000
    request_timeout_ms: int = 40000
    fetch_timeout_ms: int = 1000
    verbose: bool = False

    # Race shape
    worker_count: int = 2
    partition_count: int = 1
    replication_factor: int = 1
    topic_prefix: str = "partition-probe"
    group_prefix: str = "partition-probe"

    # Deadlines
    topic_create_timeout_ms: int = 60000
    readiness_timeout_s: float = 60.0
    settle_timeout_s: float = 10.0
    hold_after_close_s: float = 0.0

    def __post_init__(self):
        # Accept a list or comma separated string, store a tuple
        servers = self.bootstrap_servers
        if isinstance(servers, str):
            servers = parse_bootstrap_servers(servers)
        object.__setattr__(self, "bootstrap_servers", tuple(servers))
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError on any invalid field."""
        if not self.bootstrap_servers:
            raise ConfigurationError(
                "No Kafka bootstrap brokers defined, please set --brokers "
                "or KAFKA_BOOTSTRAP_SERVERS"
            )
        parse_api_version(self.api_version)
        if self.initial_offset not in OFFSET_POLICIES:
            raise ConfigurationError(
                f"initial_offset must be one of {sorted(OFFSET_POLICIES)}, "
                f"got {self.initial_offset!r}"
            )
        if self.worker_count < 1:
            raise ConfigurationError("worker_count must be at least 1")
        if self.partition_count < 1:
            raise ConfigurationError("partition_count must be at least 1")
        if self.replication_factor < 1:
            raise ConfigurationError("replication_factor must be at least 1")
        if self.readiness_timeout_s <= 0:
            raise ConfigurationError("readiness_timeout_s must be positive")
        if self.settle_timeout_s < 0:
            raise ConfigurationError("settle_timeout_s must not be negative")
        if self.hold_after_close_s < 0:
            raise ConfigurationError("hold_after_close_s must not be negative")

    @property
    def auto_offset_reset(self) -> str:
        return OFFSET_POLICIES[self.initial_offset]

    @property
    def bootstrap_servers_str(self) -> str:
        return ",".join(self.bootstrap_servers)

    def with_overrides(self, **overrides: Any) -> "ProbeConfig":
        """Return a copy with the non-None overrides applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes)

    def connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments shared by the aiokafka admin client and consumers."""
        kwargs: Dict[str, Any] = {
            "bootstrap_servers": self.bootstrap_servers_str,
            "request_timeout_ms": self.request_timeout_ms,
        }
        # Leave "auto" to the client default
        if parse_api_version(self.api_version) is not None:
            kwargs["api_version"] = self.api_version.strip()

        # Configure security based on protocol
        if self.security_protocol != "PLAINTEXT":
            kwargs["security_protocol"] = self.security_protocol
            kwargs["sasl_mechanism"] = self.sasl_mechanism
            if self.sasl_mechanism == "PLAIN":
                kwargs["sasl_plain_username"] = self.sasl_plain_username
                kwargs["sasl_plain_password"] = self.sasl_plain_password

        return kwargs

    def consumer_kwargs(self, group_id: str, client_id: str) -> Dict[str, Any]:
        """Keyword arguments for one competing AIOKafkaConsumer."""
        kwargs = self.connection_kwargs()
        kwargs.update(
            {
                "group_id": group_id,
                "client_id": client_id,
                "enable_auto_commit": False,
                "auto_offset_reset": self.auto_offset_reset,
                "session_timeout_ms": self.session_timeout_ms,
                "heartbeat_interval_ms": self.heartbeat_interval_ms,
                "max_poll_interval_ms": self.max_poll_interval_ms,
            }
        )
        return kwargs

    @classmethod
    def load_config(
        cls, config_path: Optional[Path] = None, **overrides: Any
    ) -> "ProbeConfig":
        """Load probe configuration from config.yaml and environment variables.

        Configuration priority (highest to lowest):
        1. Environment variables
        2. config.yaml file (under 'probe:' key)
        3. Dataclass defaults

        Keyword overrides (CLI flags) with a non-None value take precedence
        over all of the above.

        Environment variables:
            KAFKA_BOOTSTRAP_SERVERS: Comma separated broker list (required
                unless set in YAML or on the command line)
            KAFKA_API_VERSION: Protocol version, "auto" or e.g. "2.1.1"
            KAFKA_SECURITY_PROTOCOL: PLAINTEXT (default)
            KAFKA_SASL_MECHANISM / KAFKA_SASL_PLAIN_USERNAME / KAFKA_SASL_PLAIN_PASSWORD
            PROBE_INITIAL_OFFSET: oldest (default) or newest
            PROBE_WORKER_COUNT: 2 (default)
            PROBE_PARTITION_COUNT: 1 (default)
            PROBE_READINESS_TIMEOUT_S: 60 (default)
            PROBE_SETTLE_TIMEOUT_S: 10 (default)
            PROBE_VERBOSE: false (default), true logs Kafka client internals
            PROBE_TOPIC_PREFIX / PROBE_GROUP_PREFIX: partition-probe (default)

        Raises:
            ConfigurationError: If the YAML is unreadable or a value is invalid
        """
        config_path = config_path or DEFAULT_CONFIG_PATH

        probe_data: Dict[str, Any] = {}
        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    yaml_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(
                    f"Cannot parse config file {config_path}", cause=e
                ) from e
            probe_data = yaml_data.get("probe", {}) or {}

        def _get(env_name: str, key: str, default: Any) -> Any:
            value = os.getenv(env_name)
            if value is not None:
                return value
            return probe_data.get(key, default)

        try:
            values: Dict[str, Any] = dict(
                bootstrap_servers=_get(
                    "KAFKA_BOOTSTRAP_SERVERS", "bootstrap_servers", ""
                ),
                api_version=str(_get("KAFKA_API_VERSION", "api_version", "auto")),
                security_protocol=_get(
                    "KAFKA_SECURITY_PROTOCOL", "security_protocol", "PLAINTEXT"
                ),
                sasl_mechanism=_get("KAFKA_SASL_MECHANISM", "sasl_mechanism", ""),
                sasl_plain_username=_get(
                    "KAFKA_SASL_PLAIN_USERNAME", "sasl_plain_username", ""
                ),
                sasl_plain_password=_get(
                    "KAFKA_SASL_PLAIN_PASSWORD", "sasl_plain_password", ""
                ),
                initial_offset=_get("PROBE_INITIAL_OFFSET", "initial_offset", "oldest"),
                verbose=_parse_bool(_get("PROBE_VERBOSE", "verbose", False)),
                session_timeout_ms=int(
                    _get("KAFKA_SESSION_TIMEOUT_MS", "session_timeout_ms", 10000)
                ),
                worker_count=int(_get("PROBE_WORKER_COUNT", "worker_count", 2)),
                partition_count=int(_get("PROBE_PARTITION_COUNT", "partition_count", 1)),
                readiness_timeout_s=float(
                    _get("PROBE_READINESS_TIMEOUT_S", "readiness_timeout_s", 60.0)
                ),
                settle_timeout_s=float(
                    _get("PROBE_SETTLE_TIMEOUT_S", "settle_timeout_s", 10.0)
                ),
                topic_prefix=_get("PROBE_TOPIC_PREFIX", "topic_prefix", "partition-probe"),
                group_prefix=_get("PROBE_GROUP_PREFIX", "group_prefix", "partition-probe"),
            )
            values.update(
                {key: value for key, value in overrides.items() if value is not None}
            )
            return cls(**values)
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid probe configuration: {e}", cause=e) from e

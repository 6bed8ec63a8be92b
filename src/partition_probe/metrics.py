"""
Prometheus metrics for the partition probe.

Provides instrumentation for:
- Partitions claimed per worker
- Rebalance callbacks observed per worker
- Message acknowledgements
- Session closures by role
- Readiness rendezvous latency
- Run outcomes
"""

from prometheus_client import Counter, Gauge, Histogram

# Claim tracking
worker_claimed_partitions = Gauge(
    "probe_worker_claimed_partitions",
    "Partitions assigned to a worker by its latest rebalance",
    ["consumer_group", "worker"],
)

rebalance_events_total = Counter(
    "probe_rebalance_events_total",
    "Rebalance callbacks observed by workers",
    ["consumer_group", "worker", "event"],  # event: assigned, revoked
)

# Message acknowledgement
messages_acknowledged_total = Counter(
    "probe_messages_acknowledged_total",
    "Messages acknowledged (offset committed) by workers",
    ["topic", "worker"],
)

# Session lifecycle
sessions_closed_total = Counter(
    "probe_sessions_closed_total",
    "Group sessions closed by the orchestrator",
    ["consumer_group", "role"],  # role: loser, winner
)

# Rendezvous
readiness_wait_seconds = Histogram(
    "probe_readiness_wait_seconds",
    "Time from worker launch until every worker signalled readiness",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

# Outcomes
probe_runs_total = Counter(
    "probe_runs_total",
    "Completed probe runs by outcome",
    ["outcome"],  # ClaimVerdict value, timeout, consume_error, topic_error
)


def update_claimed_partitions(consumer_group: str, worker_id: int, count: int) -> None:
    """
    Update the claimed-partitions gauge for a worker.

    Args:
        consumer_group: Consumer group ID
        worker_id: Worker identity
        count: Partitions assigned in the latest rebalance
    """
    worker_claimed_partitions.labels(
        consumer_group=consumer_group, worker=str(worker_id)
    ).set(count)


def record_rebalance_event(consumer_group: str, worker_id: int, event: str) -> None:
    rebalance_events_total.labels(
        consumer_group=consumer_group, worker=str(worker_id), event=event
    ).inc()


def record_message_acknowledged(topic: str, worker_id: int) -> None:
    messages_acknowledged_total.labels(topic=topic, worker=str(worker_id)).inc()


def record_session_closed(consumer_group: str, role: str) -> None:
    """
    Record a group session closure.

    Args:
        consumer_group: Consumer group ID
        role: "loser" (held no partitions) or "winner"
    """
    sessions_closed_total.labels(consumer_group=consumer_group, role=role).inc()


def observe_readiness_wait(seconds: float) -> None:
    readiness_wait_seconds.observe(seconds)


def record_probe_outcome(outcome: str) -> None:
    probe_runs_total.labels(outcome=outcome).inc()

"""
Rendezvous orchestrator for the exclusive-claim race.

Flow of one run:
    1. Create a fresh topic (P partitions, replication factor 1)
    2. Generate a fresh consumer group name
    3. Launch N ClaimWorkers concurrently against {topic, group}
    4. Wait for one readiness event from every worker (bounded)
    5. Evaluate the claimed-partition counts
    6. Close every loser; their consume loops must end via "group closed"
    7. Close the winners and join every task before returning

Any worker failure while the orchestrator is waiting aborts the run.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Tuple

from core.errors import (
    ClaimInvariantError,
    ConsumeError,
    ProbeError,
    ReadinessTimeoutError,
    TopicCreationError,
)
from core.logging import get_logger, log_exception, log_with_context, set_log_context
from partition_probe.admin import BrokerAdmin, TopicCreateOutcome
from partition_probe.config import ProbeConfig
from partition_probe.evaluator import ClaimEvaluation, evaluate_claims
from partition_probe.metrics import observe_readiness_wait, record_probe_outcome
from partition_probe.worker import ClaimWorker

logger = get_logger(__name__)


@dataclass
class ProbeReport:
    """Result of a successful probe run."""

    run_id: str
    topic: str
    group_id: str
    evaluation: ClaimEvaluation
    topic_outcome: TopicCreateOutcome
    closed_losers: List[int] = field(default_factory=list)
    closed_winners: List[int] = field(default_factory=list)
    readiness_wait_s: float = 0.0


class RendezvousOrchestrator:
    """
    Drives N competing workers through one exclusive-claim race.

    Usage:
        >>> config = ProbeConfig.load_config()
        >>> report = await RendezvousOrchestrator(config).run()
        >>> report.evaluation.verdict
        <ClaimVerdict.EXCLUSIVE: 'exclusive'>
    """

    def __init__(
        self,
        config: ProbeConfig,
        admin_factory: Callable[[ProbeConfig], BrokerAdmin] = BrokerAdmin,
        worker_factory: Callable[[int, ProbeConfig], ClaimWorker] = ClaimWorker,
    ):
        self.config = config
        self._admin_factory = admin_factory
        self._worker_factory = worker_factory
        self.run_id = uuid.uuid4().hex[:12]
        self.workers: List[ClaimWorker] = []
        self._tasks: Dict[int, asyncio.Task] = {}

    async def run(self) -> ProbeReport:
        """
        Execute the probe.

        Returns:
            ProbeReport for an EXCLUSIVE outcome

        Raises:
            TopicCreationError: Topic rejected for a reason other than "already exists"
            BrokerConnectionError: Admin connection or controller lookup failed
            ConsumeError: A worker's consume loop failed
            ReadinessTimeoutError: Not every worker became ready in time
            ClaimInvariantError: Claims never settled into exclusive assignment
        """
        set_log_context(run_id=self.run_id)
        log_with_context(
            logger,
            logging.INFO,
            "Starting partition claim probe",
            bootstrap_servers=self.config.bootstrap_servers_str,
            worker_count=self.config.worker_count,
            partition_count=self.config.partition_count,
        )

        try:
            topic, topic_outcome = await self._create_topic()
            group_id = f"{self.config.group_prefix}-{uuid.uuid4()}"
            log_with_context(logger, logging.INFO, "New consumer group", consumer_group=group_id)

            self._launch_workers(topic, group_id)
            readiness_wait_s = await self._await_readiness()
            evaluation = await self._settle_claims()

            closed_losers = await self._close_losers(evaluation)
            if self.config.hold_after_close_s > 0:
                await self._hold(self.config.hold_after_close_s)
            closed_winners = await self._close_winners(evaluation)
        except ProbeError as e:
            record_probe_outcome(_outcome_label(e))
            raise
        finally:
            await self._shutdown()

        record_probe_outcome(evaluation.verdict.value)
        log_with_context(
            logger,
            logging.INFO,
            "Probe succeeded: exclusive partition assignment observed",
            topic=topic,
            consumer_group=group_id,
            verdict=evaluation.verdict.value,
            winners=list(evaluation.winners),
            losers=list(evaluation.losers),
        )
        return ProbeReport(
            run_id=self.run_id,
            topic=topic,
            group_id=group_id,
            evaluation=evaluation,
            topic_outcome=topic_outcome,
            closed_losers=closed_losers,
            closed_winners=closed_winners,
            readiness_wait_s=readiness_wait_s,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _create_topic(self) -> Tuple[str, TopicCreateOutcome]:
        topic = f"{self.config.topic_prefix}-{uuid.uuid4()}"

        async with self._admin_factory(self.config) as admin:
            await admin.resolve_controller()
            result = await admin.create_topic(
                topic,
                self.config.partition_count,
                self.config.replication_factor,
                self.config.topic_create_timeout_ms,
            )

        if not result.ok:
            raise TopicCreationError(
                topic,
                error_name=result.error_name,
                error_message=result.error_message,
                error_code=result.error_code,
            )

        log_with_context(
            logger,
            logging.INFO,
            "New topic with %d partition(s)" % self.config.partition_count,
            topic=topic,
            partition_count=self.config.partition_count,
        )
        return topic, result.outcome

    def _launch_workers(self, topic: str, group_id: str) -> None:
        for worker_id in range(1, self.config.worker_count + 1):
            worker = self._worker_factory(worker_id, self.config)
            self.workers.append(worker)
            self._tasks[worker_id] = asyncio.create_task(
                worker.run(topic, group_id), name=f"claim-worker-{worker_id}"
            )
            log_with_context(logger, logging.INFO, "Starting worker", worker_id=worker_id)

    async def _await_readiness(self) -> float:
        """Take exactly one readiness event per worker, watching for failures."""
        started = time.monotonic()
        pending = {
            asyncio.create_task(worker.wait_ready(), name=f"ready-{worker.worker_id}"): worker
            for worker in self.workers
        }
        deadline = started + self.config.readiness_timeout_s

        try:
            while pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ReadinessTimeoutError(
                        self.config.readiness_timeout_s,
                        sorted(w.worker_id for w in pending.values()),
                    )

                done, _ = await asyncio.wait(
                    set(pending) | set(self._tasks.values()),
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                self._raise_for_finished_workers(done, phase="readiness")

                for ready_task in done & set(pending):
                    worker = pending.pop(ready_task)
                    log_with_context(
                        logger,
                        logging.INFO,
                        "Worker ready",
                        worker_id=worker.worker_id,
                        claimed=ready_task.result(),
                    )
        finally:
            for ready_task in pending:
                ready_task.cancel()

        elapsed = time.monotonic() - started
        observe_readiness_wait(elapsed)
        log_with_context(
            logger,
            logging.INFO,
            "All workers up and running",
            duration_ms=round(elapsed * 1000, 2),
        )
        return elapsed

    async def _settle_claims(self) -> ClaimEvaluation:
        """
        Evaluate claims, re-evaluating on later rebalances until settled.

        A worker's first readiness event can predate the rebalance triggered
        by the last member joining, so a non-exclusive snapshot is re-checked
        after each further setup() until settle_timeout_s runs out.
        """
        deadline = time.monotonic() + self.config.settle_timeout_s

        while True:
            evaluation = evaluate_claims(
                [(w.worker_id, w.claimed_partitions) for w in self.workers],
                self.config.partition_count,
            )
            log_with_context(
                logger,
                logging.INFO if evaluation.ok else logging.WARNING,
                "Claims evaluated",
                verdict=evaluation.verdict.value,
                winners=list(evaluation.winners),
                losers=list(evaluation.losers),
            )
            if evaluation.ok:
                return evaluation

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                evaluation.raise_for_verdict()

            if not await self._next_rebalance(remaining):
                evaluation.raise_for_verdict()

    async def _next_rebalance(self, timeout: float) -> bool:
        """Wait for any worker's next readiness event. False on timeout."""
        waiters = {
            asyncio.create_task(worker.wait_ready()): worker for worker in self.workers
        }
        try:
            done, _ = await asyncio.wait(
                set(waiters) | set(self._tasks.values()),
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            self._raise_for_finished_workers(done, phase="settle")
            return bool(done & set(waiters))
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def _close_losers(self, evaluation: ClaimEvaluation) -> List[int]:
        """Close every zero-claim worker and confirm its loop ended cleanly."""
        closed = []
        for worker_id in evaluation.losers:
            worker = self._worker(worker_id)
            # Closing is only sound while the worker provably holds nothing
            if worker.claimed_partitions != 0:
                raise ClaimInvariantError(
                    f"Worker {worker_id} claimed partitions after evaluation",
                    context={"worker_id": worker_id, "claimed": worker.claimed_partitions},
                )
            log_with_context(logger, logging.INFO, "Trying to close loser", worker_id=worker_id)
            await worker.close(role="loser")
            closed.append(worker_id)

        await self._join_workers(closed)
        return closed

    async def _hold(self, seconds: float) -> None:
        """Keep the winners consuming; any worker failure is fatal."""
        running = [task for task in self._tasks.values() if not task.done()]
        if not running:
            return
        done, _ = await asyncio.wait(
            running, timeout=seconds, return_when=asyncio.FIRST_COMPLETED
        )
        self._raise_for_finished_workers(done, phase="hold")

    async def _close_winners(self, evaluation: ClaimEvaluation) -> List[int]:
        closed = []
        for worker_id in evaluation.winners:
            worker = self._worker(worker_id)
            if worker.closed:
                continue
            await worker.close(role="winner")
            closed.append(worker_id)
        await self._join_workers(closed)
        return closed

    async def _join_workers(self, worker_ids: List[int]) -> None:
        """Wait for the consume loops of closed workers to end."""
        tasks = [self._tasks[worker_id] for worker_id in worker_ids]
        if not tasks:
            return
        done, _ = await asyncio.wait(tasks)
        self._raise_for_finished_workers(done, phase="shutdown", allow_clean_exit=True)

    async def _shutdown(self) -> None:
        """Cancel anything still running and close every open session."""
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

        for worker in self.workers:
            if worker.session is None or worker.closed:
                continue
            try:
                await worker.close(role="winner" if worker.claimed_partitions else "loser")
            except Exception as e:
                # The run's own outcome takes precedence over close failures
                log_exception(
                    logger,
                    e,
                    "Error closing worker during shutdown",
                    level=logging.WARNING,
                    worker_id=worker.worker_id,
                )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _worker(self, worker_id: int) -> ClaimWorker:
        for worker in self.workers:
            if worker.worker_id == worker_id:
                return worker
        raise KeyError(worker_id)

    def _raise_for_finished_workers(
        self, done, phase: str, allow_clean_exit: bool = False
    ) -> None:
        for worker_id, task in self._tasks.items():
            if task not in done:
                continue
            if task.cancelled():
                raise ConsumeError(worker_id, f"consume task cancelled during {phase}")
            error = task.exception()
            if error is not None:
                if isinstance(error, ConsumeError):
                    raise error
                raise ConsumeError(worker_id, f"failed during {phase}", cause=error) from error
            if not allow_clean_exit:
                raise ConsumeError(worker_id, f"consume loop exited during {phase}")


def _outcome_label(error: ProbeError) -> str:
    if isinstance(error, ClaimInvariantError):
        return error.context.get("verdict", "invariant")
    return {
        "timeout": "timeout",
        "consume": "consume_error",
        "bootstrap": "topic_error",
    }.get(error.category.value, error.category.value)

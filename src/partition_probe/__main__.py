"""
Entry point for the partition claim probe.

Usage:
    # Two workers race for a single-partition topic
    python -m partition_probe --brokers localhost:9092

    # Three workers, two partitions, human-readable logs
    JSON_LOGS=false python -m partition_probe --brokers kafka:9092 --workers 3 --partitions 2

    # Expose Prometheus metrics while the probe runs
    python -m partition_probe --brokers kafka:9092 --metrics-port 8000

Exit status:
    0 exclusive assignment observed, 2 configuration, 3 bootstrap/topic,
    4 consume failure, 5 claim invariant violated, 6 readiness timeout,
    130 interrupted, 1 anything else
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
import uuid
from pathlib import Path
from typing import List, Optional

from prometheus_client import start_http_server

from core.errors import ConfigurationError, ProbeError, exit_code_for
from core.logging import get_logger, log_exception, setup_logging
from partition_probe.config import ProbeConfig
from partition_probe.orchestrator import ProbeReport, RendezvousOrchestrator

EXIT_INTERRUPTED = 130

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)

# Set by signal handlers; the probe is cancelled and shuts its workers down
_shutdown_event: Optional[asyncio.Event] = None


def get_shutdown_event() -> asyncio.Event:
    """Get or create the global shutdown event."""
    global _shutdown_event
    if _shutdown_event is None:
        _shutdown_event = asyncio.Event()
    return _shutdown_event


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="partition-probe",
        description="Verify exclusive consumer-group partition assignment on a Kafka cluster",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Default race: 2 workers, 1 partition
    python -m partition_probe --brokers localhost:9092

    # Pin the protocol version and start from the newest offset
    python -m partition_probe --brokers localhost:9092 --version 2.1.1 --newest
        """,
    )

    parser.add_argument(
        "--brokers",
        type=str,
        default=None,
        help="Kafka bootstrap brokers, comma separated (default: KAFKA_BOOTSTRAP_SERVERS)",
    )

    parser.add_argument(
        "--version",
        dest="api_version",
        type=str,
        default=None,
        help='Kafka cluster version, e.g. "2.1.1" (default: auto)',
    )

    offset = parser.add_mutually_exclusive_group()
    offset.add_argument(
        "--oldest",
        dest="initial_offset",
        action="store_const",
        const="oldest",
        help="Consume from the oldest offset when the group has none (default)",
    )
    offset.add_argument(
        "--newest",
        dest="initial_offset",
        action="store_const",
        const="newest",
        help="Consume from the newest offset when the group has none",
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log Kafka client internals at DEBUG",
    )

    parser.add_argument(
        "--workers",
        dest="worker_count",
        type=int,
        default=None,
        help="Number of competing workers (default: 2)",
    )

    parser.add_argument(
        "--partitions",
        dest="partition_count",
        type=int,
        default=None,
        help="Partitions on the probe topic (default: 1)",
    )

    parser.add_argument(
        "--readiness-timeout",
        dest="readiness_timeout_s",
        type=float,
        default=None,
        help="Seconds to wait for every worker to report its assignment (default: 60)",
    )

    parser.add_argument(
        "--settle-timeout",
        dest="settle_timeout_s",
        type=float,
        default=None,
        help="Seconds to wait for a non-exclusive snapshot to settle (default: 10)",
    )

    parser.add_argument(
        "--hold-after-close",
        dest="hold_after_close_s",
        type=float,
        default=None,
        help="Seconds winners keep consuming after the losers close (default: 0)",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file with a 'probe:' section (default: src/config.yaml)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: LOG_DIR env var, console only if unset)",
    )

    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for a Prometheus metrics server (default: disabled)",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ProbeConfig:
    """
    Merge CLI flags over environment, YAML and defaults.

    Raises:
        ConfigurationError: On a missing config file or any invalid value
    """
    if args.config is not None and not args.config.exists():
        raise ConfigurationError(f"Config file not found: {args.config}")

    return ProbeConfig.load_config(
        args.config,
        bootstrap_servers=args.brokers,
        api_version=args.api_version,
        initial_offset=args.initial_offset,
        verbose=args.verbose or None,
        worker_count=args.worker_count,
        partition_count=args.partition_count,
        readiness_timeout_s=args.readiness_timeout_s,
        settle_timeout_s=args.settle_timeout_s,
        hold_after_close_s=args.hold_after_close_s,
    )


async def run_probe(config: ProbeConfig) -> ProbeReport:
    """Run one probe; a shutdown signal cancels it (workers are still joined)."""
    orchestrator = RendezvousOrchestrator(config)
    shutdown_event = get_shutdown_event()

    probe_task = asyncio.create_task(orchestrator.run(), name="probe")

    async def shutdown_watcher():
        """Wait for shutdown signal and cancel the probe."""
        await shutdown_event.wait()
        logger.info("Shutdown signal received, stopping probe...")
        probe_task.cancel()

    watcher_task = asyncio.create_task(shutdown_watcher())

    try:
        return await probe_task
    finally:
        watcher_task.cancel()
        try:
            await watcher_task
        except asyncio.CancelledError:
            pass


def setup_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    """
    Set up signal handlers for graceful shutdown.

    First SIGINT/SIGTERM sets the shutdown event (probe is cancelled and
    its workers' sessions are closed). A second signal cancels every task.

    Note: Signal handlers are not supported on Windows. On Windows,
    KeyboardInterrupt is used instead.
    """

    def handle_signal(sig):
        logger.info(f"Received signal {sig.name}, initiating graceful shutdown...")
        shutdown_event = get_shutdown_event()
        if not shutdown_event.is_set():
            shutdown_event.set()
        else:
            # Second signal - force immediate shutdown
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    if sys.platform == "win32":
        logger.debug("Signal handlers not supported on Windows, using KeyboardInterrupt")
        return

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


def init_logging(args: argparse.Namespace, verbose: bool, run_id: str) -> None:
    """Configure console and file logging; verbose turns on Kafka client DEBUG."""
    log_level = getattr(logging, args.log_level)

    # JSON logs: controlled via JSON_LOGS env var (default: true)
    # Set JSON_LOGS=false for human-readable logs during local development
    json_logs = os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes")

    # Log directory: CLI arg > env var > console only
    log_dir_str = args.log_dir or os.getenv("LOG_DIR")
    log_dir = Path(log_dir_str) if log_dir_str else None

    setup_logging(
        name="partition_probe",
        stage="rendezvous",
        domain="probe",
        log_dir=log_dir,
        json_format=json_logs,
        console_level=log_level,
        suppress_noisy=not verbose,
        run_id=run_id,
    )


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point. Always terminates through sys.exit()."""
    global logger, _shutdown_event
    args = parse_args(argv)
    run_id = uuid.uuid4().hex[:12]

    init_logging(args, verbose=args.verbose, run_id=run_id)

    # Re-get logger after setup to use new handlers
    logger = get_logger(__name__)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        log_exception(logger, e, "Configuration error", include_traceback=False)
        sys.exit(e.exit_code)

    # verbose may also come from PROBE_VERBOSE or the YAML file
    if config.verbose and not args.verbose:
        init_logging(args, verbose=True, run_id=run_id)

    if args.metrics_port is not None:
        logger.info(f"Starting metrics server on port {args.metrics_port}")
        start_http_server(args.metrics_port)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    _shutdown_event = None

    setup_signal_handlers(loop)

    exit_code = 0
    try:
        report = loop.run_until_complete(run_probe(config))
        logger.info(
            f"Probe passed: topic={report.topic} group={report.group_id} "
            f"winners={list(report.evaluation.winners)} "
            f"losers={list(report.evaluation.losers)}"
        )
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.warning("Probe interrupted, shutting down...")
        exit_code = EXIT_INTERRUPTED
    except ProbeError as e:
        log_exception(logger, e, "Probe failed", include_traceback=False)
        exit_code = exit_code_for(e)
    except Exception as e:
        log_exception(logger, e, "Fatal error")
        exit_code = exit_code_for(e)
    finally:
        loop.close()
        logger.info("Probe shutdown complete")

    sys.exit(exit_code)


if __name__ == "__main__":
    main()

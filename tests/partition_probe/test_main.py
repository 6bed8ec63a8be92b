"""Tests for the command line entry point."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from core.errors import (
    BrokerConnectionError,
    ClaimInvariantError,
    ConsumeError,
    ReadinessTimeoutError,
)
from partition_probe import __main__ as cli
from partition_probe.evaluator import evaluate_claims
from partition_probe.orchestrator import ProbeReport
from partition_probe.admin import TopicCreateOutcome


@pytest.fixture
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", MagicMock())


@pytest.fixture
def orchestrator_cls(monkeypatch):
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock()
    cls = MagicMock(return_value=orchestrator)
    monkeypatch.setattr(cli, "RendezvousOrchestrator", cls)
    return cls


def exclusive_report() -> ProbeReport:
    return ProbeReport(
        run_id="run",
        topic="partition-probe-t",
        group_id="partition-probe-g",
        evaluation=evaluate_claims([(1, 1), (2, 0)], 1),
        topic_outcome=TopicCreateOutcome.CREATED,
        closed_losers=[2],
        closed_winners=[1],
    )


def run_main(argv) -> int:
    with pytest.raises(SystemExit) as exc_info:
        cli.main(argv)
    return exc_info.value.code


class TestParseArgs:
    def test_defaults_are_unset(self):
        args = cli.parse_args([])

        assert args.brokers is None
        assert args.initial_offset is None
        assert args.worker_count is None
        assert args.metrics_port is None
        assert args.verbose is False

    def test_all_flags(self):
        args = cli.parse_args(
            [
                "--brokers", "k1:9092,k2:9092",
                "--version", "2.1.1",
                "--newest",
                "--verbose",
                "--workers", "3",
                "--partitions", "2",
                "--readiness-timeout", "30",
                "--settle-timeout", "5",
                "--hold-after-close", "1.5",
            ]
        )

        assert args.brokers == "k1:9092,k2:9092"
        assert args.api_version == "2.1.1"
        assert args.initial_offset == "newest"
        assert args.worker_count == 3
        assert args.partition_count == 2
        assert args.readiness_timeout_s == 30.0
        assert args.settle_timeout_s == 5.0
        assert args.hold_after_close_s == 1.5

    def test_oldest_and_newest_are_exclusive(self):
        with pytest.raises(SystemExit):
            cli.parse_args(["--oldest", "--newest"])


class TestBuildConfig:
    def test_cli_overrides_env(self, clean_env, tmp_path):
        clean_env.setenv("KAFKA_BOOTSTRAP_SERVERS", "env-kafka:9092")
        config_file = tmp_path / "config.yaml"
        config_file.write_text("probe: {}\n")
        args = cli.parse_args(
            ["--brokers", "cli-kafka:9092", "--workers", "4", "--config", str(config_file)]
        )

        config = cli.build_config(args)

        assert config.bootstrap_servers == ("cli-kafka:9092",)
        assert config.worker_count == 4
        assert config.verbose is False


class TestMain:
    def test_success_exits_zero(self, clean_env, quiet_logging, orchestrator_cls):
        orchestrator_cls.return_value.run.return_value = exclusive_report()

        assert run_main(["--brokers", "kafka:9092"]) == 0

        config = orchestrator_cls.call_args.args[0]
        assert config.bootstrap_servers == ("kafka:9092",)

    def test_missing_config_file(self, clean_env, quiet_logging, orchestrator_cls, tmp_path):
        assert run_main(["--config", str(tmp_path / "nope.yaml")]) == 2
        orchestrator_cls.assert_not_called()

    def test_no_brokers_anywhere(self, clean_env, quiet_logging, orchestrator_cls):
        assert run_main([]) == 2
        orchestrator_cls.assert_not_called()

    def test_invalid_worker_count(self, clean_env, quiet_logging, orchestrator_cls):
        assert run_main(["--brokers", "kafka:9092", "--workers", "0"]) == 2

    @pytest.mark.parametrize(
        "error,code",
        [
            (BrokerConnectionError("unreachable"), 3),
            (ConsumeError(2, "consume loop failed"), 4),
            (ClaimInvariantError("no loser"), 5),
            (ReadinessTimeoutError(60.0, [2]), 6),
            (RuntimeError("unexpected"), 1),
        ],
    )
    def test_failure_exit_codes(self, clean_env, quiet_logging, orchestrator_cls, error, code):
        orchestrator_cls.return_value.run.side_effect = error

        assert run_main(["--brokers", "kafka:9092"]) == code

    def test_interrupted(self, clean_env, quiet_logging, orchestrator_cls):
        orchestrator_cls.return_value.run.side_effect = KeyboardInterrupt()

        assert run_main(["--brokers", "kafka:9092"]) == cli.EXIT_INTERRUPTED

    def test_verbose_flag_enables_client_logging(self, clean_env, quiet_logging, orchestrator_cls):
        orchestrator_cls.return_value.run.return_value = exclusive_report()

        assert run_main(["--brokers", "kafka:9092", "--verbose"]) == 0

        assert cli.setup_logging.call_count == 1
        assert cli.setup_logging.call_args.kwargs["suppress_noisy"] is False

    def test_verbose_from_env_enables_client_logging(
        self, clean_env, quiet_logging, orchestrator_cls
    ):
        clean_env.setenv("PROBE_VERBOSE", "true")
        orchestrator_cls.return_value.run.return_value = exclusive_report()

        assert run_main(["--brokers", "kafka:9092"]) == 0

        assert cli.setup_logging.call_args.kwargs["suppress_noisy"] is False
        assert orchestrator_cls.call_args.args[0].verbose is True


"""Log formatters for JSON and console output."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from core.logging.context import get_log_context


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Broker resources
        "topic",
        "consumer_group",
        "bootstrap_servers",
        "controller_id",
        "partitions",
        "partition",
        "offset",
        "timestamp",
        "value",
        # Claim tracking
        "claimed",
        "winners",
        "losers",
        "verdict",
        "worker_count",
        "partition_count",
        # Timing
        "duration_ms",
        "timeout_s",
        # Errors
        "error_category",
        "error_message",
        "error_code",
        "error_name",
    ]

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        # Inject context variables
        ctx = get_log_context()
        for key in ("domain", "stage", "run_id"):
            if ctx[key]:
                log_entry[key] = ctx[key]

        # Explicit worker_id extra wins over the context value
        worker_id = getattr(record, "worker_id", None) or ctx["worker_id"]
        if worker_id is not None:
            log_entry["worker_id"] = worker_id

        # Add source location for DEBUG/ERROR
        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

    Includes context when available.
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()

        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
        ]

        if ctx["domain"]:
            parts.append(f"[{ctx['domain']}]")
        if ctx["stage"]:
            parts.append(f"[{ctx['stage']}]")

        prefix = " - ".join(parts)

        worker_id = getattr(record, "worker_id", None)
        if worker_id is not None:
            line = f"{prefix} - [worker {worker_id}] {record.getMessage()}"
        else:
            line = f"{prefix} - {record.getMessage()}"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line

"""Logging setup and configuration."""

import io
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

# Default settings
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Broker client loggers, raised to WARNING unless verbose client logging is on
NOISY_LOGGERS = [
    "aiokafka",
    "kafka",
]


class _ClientDebugFilter(logging.Filter):
    """Pass client logger records at any level, everything else from min_level up."""

    def __init__(self, min_level: int):
        super().__init__()
        self.min_level = min_level

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= self.min_level:
            return True
        return any(
            record.name == name or record.name.startswith(name + ".")
            for name in NOISY_LOGGERS
        )


def get_log_file_path(
    log_dir: Path,
    domain: Optional[str] = None,
    stage: Optional[str] = None,
    instance_id: Optional[str] = None,
) -> Path:
    """
    Build log file path with domain/date subfolder structure.

    Structure: {log_dir}/{domain}/{YYYY-MM-DD}/{domain}_{stage}_{YYYYMMDD}[_instance].log

    Args:
        log_dir: Base log directory
        domain: Log domain (e.g. "probe")
        stage: Stage name (e.g. "rendezvous")
        instance_id: Unique instance identifier (e.g., process ID) so that
            concurrent probe runs don't share a file

    Returns:
        Full path to log file
    """
    date_folder = datetime.now().strftime("%Y-%m-%d")
    date_str = datetime.now().strftime("%Y%m%d")

    if domain and stage:
        base_name = f"{domain}_{stage}_{date_str}"
    elif domain:
        base_name = f"{domain}_{date_str}"
    elif stage:
        base_name = f"{stage}_{date_str}"
    else:
        base_name = f"probe_{date_str}"

    if instance_id:
        filename = f"{base_name}_{instance_id}.log"
    else:
        filename = f"{base_name}.log"

    if domain:
        return log_dir / domain / date_folder / filename
    return log_dir / date_folder / filename


def setup_logging(
    name: str = "partition_probe",
    stage: Optional[str] = None,
    domain: Optional[str] = None,
    log_dir: Optional[Path] = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    worker_id: Optional[str] = None,
    run_id: Optional[str] = None,
    use_instance_id: bool = True,
) -> logging.Logger:
    """
    Configure logging with a stdout handler and an optional rotating file handler.

    The console handler always writes to stdout. A file handler is only
    attached when log_dir is given; files are organized by domain and date:
        logs/probe/2025-01-15/probe_rendezvous_20250115_p12345.log

    Args:
        name: Logger name to return
        stage: Stage name for log context and file name
        domain: Log domain for context and file layout
        log_dir: Directory for log files (None = console only)
        json_format: Use JSON format for file logs (default: True)
        console_level: Console handler level (default: INFO)
        file_level: File handler level (default: DEBUG)
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep
        suppress_noisy: Quiet down broker client loggers; pass False to send
            their DEBUG output to the console (other loggers keep console_level)
        worker_id: Worker identifier for context
        run_id: Probe run identifier for context
        use_instance_id: Append process ID to log filename

    Returns:
        Configured logger instance
    """
    if worker_id:
        set_log_context(worker_id=worker_id)
    if stage:
        set_log_context(stage=stage)
    if domain:
        set_log_context(domain=domain)
    if run_id:
        set_log_context(run_id=run_id)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter

    # Remove existing handlers to avoid duplicates on re-init
    root_logger.handlers.clear()

    # Console handler
    if sys.platform == "win32":
        safe_stdout = io.TextIOWrapper(
            sys.stdout.buffer, encoding="utf-8", errors="replace"
        )
        console_handler = logging.StreamHandler(safe_stdout)
    else:
        console_handler = logging.StreamHandler(sys.stdout)
    if suppress_noisy:
        console_handler.setLevel(console_level)
    else:
        # Client DEBUG reaches stdout without lowering the level for our own loggers
        console_handler.setLevel(logging.DEBUG)
        console_handler.addFilter(_ClientDebugFilter(console_level))
    console_handler.setFormatter(ConsoleFormatter())
    root_logger.addHandler(console_handler)

    log_file = None
    if log_dir is not None:
        instance_id = f"p{os.getpid()}" if use_instance_id else None
        log_file = get_log_file_path(
            log_dir, domain=domain, stage=stage, instance_id=instance_id
        )
        log_file.parent.mkdir(parents=True, exist_ok=True)

        if json_format:
            file_formatter: logging.Formatter = JSONFormatter()
        else:
            file_formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(
            logging.WARNING if suppress_noisy else logging.DEBUG
        )

    logger = logging.getLogger(name)
    logger.debug(
        f"Logging initialized: file={log_file}, json={json_format}",
        extra={"stage": stage or "probe", "domain": domain or "unknown"},
    )

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Use this instead of logging.getLogger() to ensure consistent naming.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)

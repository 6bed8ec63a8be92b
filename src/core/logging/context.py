"""Log context propagated through contextvars (survives asyncio task boundaries)."""

from contextvars import ContextVar
from typing import Dict, Optional

_domain: ContextVar[Optional[str]] = ContextVar("log_domain", default=None)
_stage: ContextVar[Optional[str]] = ContextVar("log_stage", default=None)
_worker_id: ContextVar[Optional[str]] = ContextVar("log_worker_id", default=None)
_run_id: ContextVar[Optional[str]] = ContextVar("log_run_id", default=None)


def set_log_context(
    domain: Optional[str] = None,
    stage: Optional[str] = None,
    worker_id: Optional[str] = None,
    run_id: Optional[str] = None,
) -> None:
    """Set context fields; arguments left as None are not touched."""
    if domain is not None:
        _domain.set(domain)
    if stage is not None:
        _stage.set(stage)
    if worker_id is not None:
        _worker_id.set(worker_id)
    if run_id is not None:
        _run_id.set(run_id)


def get_log_context() -> Dict[str, Optional[str]]:
    return {
        "domain": _domain.get(),
        "stage": _stage.get(),
        "worker_id": _worker_id.get(),
        "run_id": _run_id.get(),
    }


def clear_log_context() -> None:
    _domain.set(None)
    _stage.set(None)
    _worker_id.set(None)
    _run_id.set(None)

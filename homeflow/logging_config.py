"""Logging setup for homeflow.

Two streams are produced:
- the ``homeflow`` logger, written to ``<data dir>/logs/<service>-<date>.log``
- a job-event log (``job-events-<date>.log``) with one line per lifecycle
  event, used for operational review of transitions, offers and ledger
  entries
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_homeflow_home() -> Path:
    """Data directory for homeflow (HOMEFLOW_DATA_DIR or ~/.homeflow)."""
    raw = os.environ.get("HOMEFLOW_DATA_DIR")
    if raw:
        return Path(raw)
    return Path.home() / ".homeflow"


def _log_dir() -> Path:
    log_dir = get_homeflow_home() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def setup_homeflow_logging(service: str = "local", level: str = "INFO") -> logging.Logger:
    """Configure the ``homeflow`` logger.

    Args:
        service: Prefix for the log file name (e.g. "local", "api", "sweeper")
        level: Logging level name; unknown names fall back to INFO

    Returns:
        The configured ``homeflow`` logger. Repeated calls do not add
        duplicate handlers.
    """
    logger = logging.getLogger("homeflow")
    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    formatter = logging.Formatter(LOG_FORMAT)

    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        log_file = _log_dir() / f"{service}-{_today()}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Console output only when debugging
    if resolved <= logging.DEBUG:
        has_console = any(
            isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
            for h in logger.handlers
        )
        if not has_console:
            console = logging.StreamHandler()
            console.setFormatter(formatter)
            logger.addHandler(console)

    return logger


def log_job_event(event_type: str, details: str, job_id: Optional[str] = None) -> None:
    """Append a single line to the job-event log."""
    timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
    line = f"{timestamp} | {event_type} | job={job_id or '-'} | {details}\n"
    event_file = _log_dir() / f"job-events-{_today()}.log"
    with open(event_file, "a", encoding="utf-8") as f:
        f.write(line)


def log_transition(
    job_id: str,
    from_status: str,
    to_status: str,
    actor_role: str,
    actor_id: Optional[str] = None,
) -> None:
    """Record a status change."""
    log_job_event(
        "transition",
        f"from={from_status}, to={to_status}, actor={actor_role}:{actor_id or '-'}",
        job_id=job_id,
    )


def log_offer(job_id: str, provider_id: Optional[str], reason: str) -> None:
    """Record an offer pointer change (provider None means cleared)."""
    log_job_event("offer", f"provider={provider_id or 'none'}, reason={reason}", job_id=job_id)


def log_scope_lock(job_id: str, visit_id: str, tier: str, price: str, minutes: int) -> None:
    """Record a visit scope lock."""
    log_job_event(
        "scope_lock",
        f"visit={visit_id[:8]}..., tier={tier}, price={price}, minutes={minutes}",
        job_id=job_id,
    )


def log_ledger(job_id: str, kind: str, amount: str, status: str = "PENDING") -> None:
    """Record a ledger entry."""
    log_job_event("ledger", f"type={kind}, amount={amount}, status={status}", job_id=job_id)

"""Advisory stuck-job detection. Never changes state."""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from homeflow.jobs.models import Job


@dataclass(frozen=True)
class StuckReport:
    """A job that has sat in its status longer than the threshold."""

    job_id: str
    status: str
    age_minutes: int
    threshold_minutes: int


def compute_stuck(job: Job, now: datetime, thresholds: Dict[str, int]) -> Optional[StuckReport]:
    """Report the job if its status age exceeds the configured threshold."""
    threshold = thresholds.get(job.status)
    since = job.status_updated_at or job.created_at
    if threshold is None or since is None:
        return None
    age = int((now - since).total_seconds() // 60)
    if age <= threshold:
        return None
    return StuckReport(job_id=job.id, status=job.status, age_minutes=age, threshold_minutes=threshold)


def find_stuck_jobs(
    jobs: Iterable[Job], now: datetime, thresholds: Dict[str, int]
) -> List[StuckReport]:
    reports = [r for r in (compute_stuck(j, now, thresholds) for j in jobs) if r is not None]
    return sorted(reports, key=lambda r: r.age_minutes, reverse=True)

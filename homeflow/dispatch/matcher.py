"""Provider eligibility for dispatch.

Eligibility is recomputed from scratch on every dispatch step, so a
provider that goes offline or is suspended mid-cycle simply drops out of
the list.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from homeflow.catalogue.models import SPECIALIST_EXCLUSIVE_CATEGORIES
from homeflow.jobs.models import Job, Provider, ProviderType, Visit

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class EligibleProvider:
    """A provider that may be offered the job, with why it matched."""

    provider_id: str
    provider_type: str
    match_reason: str  # "capability", "category" or "fallback"
    distance_km: Optional[float] = None


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def required_capabilities(visits: Iterable[Visit]) -> List[str]:
    """Union of capability tags across the job's live visits, first-seen order."""
    tags: List[str] = []
    for visit in visits:
        if visit.is_cancelled:
            continue
        if visit.capability_tag and visit.capability_tag not in tags:
            tags.append(visit.capability_tag)
    return tags


def match_reason(provider: Provider, required: Sequence[str], category: str) -> Optional[str]:
    """Why the provider qualifies for the job, or None if it does not."""
    if required and set(required) <= set(provider.capabilities):
        return "capability"
    if category and category in provider.categories:
        return "category"
    if not required:
        return "fallback"
    return None


def _distance(job: Job, provider: Provider) -> Optional[float]:
    if None in (job.latitude, job.longitude, provider.latitude, provider.longitude):
        return None
    return haversine_km(job.latitude, job.longitude, provider.latitude, provider.longitude)


def _rank(candidates: List[EligibleProvider]) -> List[EligibleProvider]:
    # Nearest first; providers without a known location go last
    return sorted(
        candidates,
        key=lambda c: (c.distance_km is None, c.distance_km or 0.0, c.provider_id),
    )


def find_eligible_providers(
    job: Job, visits: Iterable[Visit], providers: Iterable[Provider]
) -> List[EligibleProvider]:
    """Ordered list of providers that may be offered ``job``.

    Generalists are tried first unless the category is specialist-exclusive;
    specialists are only returned when no generalist qualifies. An empty
    list is a normal outcome.
    """
    required = required_capabilities(visits)
    excluded = set(job.declined_provider_ids)
    generalists: List[EligibleProvider] = []
    specialists: List[EligibleProvider] = []

    for provider in providers:
        if not provider.is_available or provider.id in excluded:
            continue
        reason = match_reason(provider, required, job.category)
        if reason is None:
            continue
        candidate = EligibleProvider(
            provider_id=provider.id,
            provider_type=provider.provider_type,
            match_reason=reason,
            distance_km=_distance(job, provider),
        )
        if provider.provider_type == ProviderType.GENERALIST.value:
            generalists.append(candidate)
        else:
            specialists.append(candidate)

    if job.category not in SPECIALIST_EXCLUSIVE_CATEGORIES and generalists:
        return _rank(generalists)
    return _rank(specialists)

"""Dispatch: eligible-provider matching, the offer engine and its sweeps."""

from homeflow.dispatch.engine import DispatchEngine
from homeflow.dispatch.matcher import (
    EligibleProvider,
    find_eligible_providers,
    haversine_km,
    required_capabilities,
)
from homeflow.dispatch.tracker import (
    DispatchAction,
    DispatchTracker,
    in_dispatch_window,
    scope_fully_locked,
)

__all__ = [
    "DispatchAction",
    "DispatchEngine",
    "DispatchTracker",
    "EligibleProvider",
    "find_eligible_providers",
    "haversine_km",
    "in_dispatch_window",
    "required_capabilities",
    "scope_fully_locked",
]

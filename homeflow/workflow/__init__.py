"""Workflow operations composed into JobWorkflow."""

from homeflow.workflow.admin import FlagAction
from homeflow.workflow.interruptions import (
    FLAG_SYSTEM_ACTIONS,
    FlagReason,
    MismatchDecision,
    MismatchResolution,
    PartsDecision,
)
from homeflow.workflow.lifecycle import Quote, QuotePreview
from homeflow.workflow.scope_lock import ScopeLockResult
from homeflow.workflow.service import JobWorkflow

__all__ = [
    "FLAG_SYSTEM_ACTIONS",
    "FlagAction",
    "FlagReason",
    "JobWorkflow",
    "MismatchDecision",
    "MismatchResolution",
    "PartsDecision",
    "Quote",
    "QuotePreview",
    "ScopeLockResult",
]

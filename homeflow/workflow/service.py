"""JobWorkflow: the single entry point for job lifecycle operations.

This module composes the workflow mixins into one class and wires the
state machine, dispatch engine and sweeps around a shared store.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from homeflow.catalogue.source import CatalogueSource, JsonCatalogue
from homeflow.config import HomeflowConfig
from homeflow.dispatch.engine import DispatchEngine
from homeflow.dispatch.tracker import DispatchTracker
from homeflow.evidence import EvidenceStore
from homeflow.jobs.state_machine import JobStateMachine, utc_now
from homeflow.storage.sqlite import SQLiteStore
from homeflow.workflow.admin import AdminMixin
from homeflow.workflow.interruptions import InterruptionsMixin
from homeflow.workflow.lifecycle import LifecycleMixin
from homeflow.workflow.offers import OffersMixin
from homeflow.workflow.payments import PaymentsMixin
from homeflow.workflow.scope_lock import ScopeLockMixin

logger = logging.getLogger(__name__)


class JobWorkflow(
    LifecycleMixin,
    ScopeLockMixin,
    OffersMixin,
    InterruptionsMixin,
    PaymentsMixin,
    AdminMixin,
):
    """Main interface for job operations.

    Every operation takes an :class:`~homeflow.jobs.models.Actor` and
    raises a :class:`~homeflow.errors.HomeflowError` subclass on failure,
    leaving no partial state behind.

    Examples:
        store = SQLiteStore("~/.homeflow/homeflow.db")
        workflow = JobWorkflow(store)
        quote = workflow.create_job(Actor("CUSTOMER", "c1"), "Mount my TV", ["tv_mount_standard"])
    """

    def __init__(
        self,
        store: Union[SQLiteStore, str, Path],
        catalogue: Optional[CatalogueSource] = None,
        evidence: Optional[EvidenceStore] = None,
        config: Optional[HomeflowConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if not isinstance(store, SQLiteStore):
            store = SQLiteStore(Path(store).expanduser())
        self.store = store
        self.catalogue = catalogue or JsonCatalogue.default()
        self.evidence = evidence
        self.config = config or HomeflowConfig()
        self.clock = clock
        self.state_machine = JobStateMachine(store, clock=clock)
        self.dispatch = DispatchEngine(store, self.config, clock=clock)
        self.tracker = DispatchTracker(
            store, self.dispatch, self.state_machine, self.config, clock=clock
        )
        logger.debug(f"JobWorkflow ready on {store.db_path}")

    def __repr__(self) -> str:
        return f"JobWorkflow(db={self.store.db_path!s})"

    def run_dispatch_sweep(self):
        """Activate due jobs and advance expired offers. Safe to call repeatedly."""
        return self.tracker.run_once()

"""Workflow wiring for the Homeflow backend.

One SQLiteStore and JobWorkflow per process, built lazily from settings.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends

from homeflow.config import HomeflowConfig
from homeflow.evidence import LocalEvidenceStore
from homeflow.storage.sqlite import SQLiteStore
from homeflow.workflow import JobWorkflow

from .config import get_settings
from .logging_config import get_logger

logger = get_logger("homeflow.database")


@lru_cache
def get_workflow() -> JobWorkflow:
    """Get the cached workflow for this process."""
    settings = get_settings()
    config = HomeflowConfig.from_env()
    store = SQLiteStore(Path(settings.database_path).expanduser())
    evidence = None
    if settings.evidence_secret:
        evidence = LocalEvidenceStore(
            Path(settings.evidence_dir).expanduser(),
            settings.evidence_secret,
            default_ttl=config.evidence_url_ttl_seconds,
        )
    else:
        logger.warning("EVIDENCE_SECRET not set; photo uploads are disabled")
    logger.info(f"Workflow ready | db={store.db_path}")
    return JobWorkflow(store, evidence=evidence, config=config)


# Type alias for dependency injection
Workflow = Annotated[JobWorkflow, Depends(get_workflow)]

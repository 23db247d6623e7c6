"""API routes."""

from .admin import router as admin_router
from .catalogue import router as catalogue_router
from .evidence import router as evidence_router
from .jobs import router as jobs_router
from .maintenance import router as maintenance_router
from .pricing import router as pricing_router
from .providers import router as providers_router
from .visits import router as visits_router

__all__ = [
    "admin_router",
    "catalogue_router",
    "evidence_router",
    "jobs_router",
    "maintenance_router",
    "pricing_router",
    "providers_router",
    "visits_router",
]

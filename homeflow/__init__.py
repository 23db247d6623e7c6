"""
Homeflow - job lifecycle orchestration for a home-services marketplace.

Fixed-price visits, scope lock, sequential dispatch and audited state changes.
"""

from .jobs.models import Actor, Role
from .workflow import JobWorkflow

try:
    from importlib.metadata import version

    __version__ = version("homeflow")
except Exception:
    __version__ = "0.0.0"

__all__ = ["Actor", "JobWorkflow", "Role"]

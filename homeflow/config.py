"""Runtime configuration for homeflow.

Defaults match the operating rules of the marketplace; every value can be
overridden through ``HOMEFLOW_*`` environment variables.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict

# Minutes a job may sit in a status before it is reported as stuck
DEFAULT_STUCK_MINUTES: Dict[str, int] = {
    "REQUESTED": 30,
    "BOOKED": 45,
    "ASSIGNED": 60,
    "IN_PROGRESS": 180,
    "COMPLETED": 120,
}


@dataclass
class HomeflowConfig:
    """Tunable constants for dispatch, pricing fees and maintenance."""

    offer_timeout_seconds: int = 10
    activation_lead_minutes: int = 120
    cancellation_fee_percent: Decimal = Decimal("0.20")
    platform_fee_percent: Decimal = Decimal("0.20")
    provider_cancellation_share: Decimal = Decimal("0.50")
    evidence_url_ttl_seconds: int = 3600
    stuck_minutes: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_STUCK_MINUTES))

    def __post_init__(self):
        if self.offer_timeout_seconds <= 0:
            raise ValueError("offer_timeout_seconds must be positive")
        if self.activation_lead_minutes < 0:
            raise ValueError("activation_lead_minutes cannot be negative")
        for name in (
            "cancellation_fee_percent",
            "platform_fee_percent",
            "provider_cancellation_share",
        ):
            value = Decimal(str(getattr(self, name)))
            if not Decimal("0") <= value <= Decimal("1"):
                raise ValueError(f"{name} must be between 0 and 1")
            setattr(self, name, value)
        if self.evidence_url_ttl_seconds <= 0:
            raise ValueError("evidence_url_ttl_seconds must be positive")

    @classmethod
    def from_env(cls) -> "HomeflowConfig":
        """Build a config from HOMEFLOW_* environment variables."""
        kwargs = {}
        int_vars = {
            "HOMEFLOW_OFFER_TIMEOUT_SECONDS": "offer_timeout_seconds",
            "HOMEFLOW_ACTIVATION_LEAD_MINUTES": "activation_lead_minutes",
            "HOMEFLOW_EVIDENCE_URL_TTL_SECONDS": "evidence_url_ttl_seconds",
        }
        decimal_vars = {
            "HOMEFLOW_CANCELLATION_FEE_PERCENT": "cancellation_fee_percent",
            "HOMEFLOW_PLATFORM_FEE_PERCENT": "platform_fee_percent",
            "HOMEFLOW_PROVIDER_CANCELLATION_SHARE": "provider_cancellation_share",
        }
        for env_name, attr in int_vars.items():
            raw = os.environ.get(env_name)
            if raw:
                kwargs[attr] = int(raw)
        for env_name, attr in decimal_vars.items():
            raw = os.environ.get(env_name)
            if raw:
                kwargs[attr] = Decimal(raw)
        return cls(**kwargs)

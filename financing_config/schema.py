"""
Financing engine configuration schema.

Defines the tunable policy of the workflow engine with defaults that match
the platform's standard terms.  Values are loaded from YAML at runtime
(see ``financing_config.loader``) or constructed directly in tests.
"""

from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Self

from financing_kernel.db.types import validate_currency
from financing_kernel.logging_config import get_logger

logger = get_logger("config.schema")

EXPIRED_OFFER_POLICIES = ("expire", "revert_to_draft")

_DECIMAL_FIELDS = (
    "max_discount_percent",
    "max_bid_discount_rate",
    "max_processing_fee_rate",
    "invoice_total_tolerance",
)


@dataclass(frozen=True)
class FinancingConfig:
    """
    Configuration schema for the invoice financing workflow.

    Override at instantiation:

        config = FinancingConfig(
            offer_expiry_hours=24,
            expired_offer_policy="revert_to_draft",
        )
    """

    # Discount offers
    offer_expiry_hours: int = 48
    max_discount_percent: Decimal = Decimal("50")
    min_rejection_reason_length: int = 10
    expired_offer_policy: str = "expire"  # "expire" or "revert_to_draft"

    # Bidding
    max_bid_discount_rate: Decimal = Decimal("100")
    max_processing_fee_rate: Decimal = Decimal("50")
    max_bidding_window_hours: int = 168

    # Invoices
    default_currency: str = "INR"
    invoice_total_tolerance: Decimal = Decimal("1")
    allow_cancel_during_bidding: bool = True

    # Orchestrator
    concurrency_retries: int = 1

    def __post_init__(self):
        if self.offer_expiry_hours <= 0:
            raise ValueError("offer_expiry_hours must be positive")
        if not Decimal("0") < self.max_discount_percent <= Decimal("100"):
            raise ValueError("max_discount_percent must be in (0, 100]")
        if self.min_rejection_reason_length < 0:
            raise ValueError("min_rejection_reason_length cannot be negative")
        if self.expired_offer_policy not in EXPIRED_OFFER_POLICIES:
            raise ValueError(
                f"expired_offer_policy must be one of {EXPIRED_OFFER_POLICIES}, "
                f"got '{self.expired_offer_policy}'"
            )
        if not Decimal("0") < self.max_bid_discount_rate <= Decimal("100"):
            raise ValueError("max_bid_discount_rate must be in (0, 100]")
        if not Decimal("0") <= self.max_processing_fee_rate <= Decimal("100"):
            raise ValueError("max_processing_fee_rate must be in [0, 100]")
        if self.max_bidding_window_hours <= 0:
            raise ValueError("max_bidding_window_hours must be positive")
        if self.invoice_total_tolerance < 0:
            raise ValueError("invoice_total_tolerance cannot be negative")
        if self.concurrency_retries < 0:
            raise ValueError("concurrency_retries cannot be negative")
        # Normalizes case; raises ValidationError for unknown codes.
        object.__setattr__(self, "default_currency", validate_currency(self.default_currency))

        logger.debug(
            "financing_config_initialized",
            extra={
                "offer_expiry_hours": self.offer_expiry_hours,
                "expired_offer_policy": self.expired_offer_policy,
                "max_bidding_window_hours": self.max_bidding_window_hours,
                "allow_cancel_during_bidding": self.allow_cancel_during_bidding,
                "default_currency": self.default_currency,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the platform's standard terms."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g. parsed YAML)."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown financing config keys: {unknown}")
        values = dict(data)
        for name in _DECIMAL_FIELDS:
            if name in values and not isinstance(values[name], Decimal):
                values[name] = Decimal(str(values[name]))
        logger.info(
            "financing_config_loading_from_dict",
            extra={"keys": sorted(values.keys())},
        )
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

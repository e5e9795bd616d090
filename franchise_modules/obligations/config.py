"""
Billing Policy Configuration Schema.

Defines the policy values that govern obligation billing (late-fee rate,
grace period, default technology fee, currency, number prefixes) and how
a franchise's own overrides are layered on top of them.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Self

from franchise_kernel.exceptions import InvalidPolicyError
from franchise_kernel.logging_config import get_logger

logger = get_logger("modules.obligations.config")

DEFAULT_NUMBER_PREFIXES: dict[str, str] = {
    "royalty": "ROY",
    "revenue": "REV",
    "transaction": "TXN",
}


@dataclass
class BillingPolicy:
    """
    Configuration schema for obligation billing.

    Field defaults are the house policy.  Override per deployment through
    YAML (see ``franchise_config.loader``) or per franchise through the
    override columns on the ``franchises`` row:

        policy = BillingPolicy.with_defaults().resolve_for(franchise)
    """

    late_fee_rate: Decimal = Decimal("0.05")
    grace_period_days: int = 15
    default_technology_fee: Decimal = Decimal("50.00")
    currency: str = "SAR"
    number_prefixes: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_NUMBER_PREFIXES)
    )
    ledger_prefix: str = "LED"

    def __post_init__(self):
        self.late_fee_rate = Decimal(str(self.late_fee_rate))
        self.default_technology_fee = Decimal(str(self.default_technology_fee))

        if self.late_fee_rate < 0 or self.late_fee_rate > 1:
            raise InvalidPolicyError(
                "late_fee_rate", self.late_fee_rate, "must be between 0 and 1"
            )
        if self.grace_period_days < 0:
            raise InvalidPolicyError(
                "grace_period_days", self.grace_period_days, "cannot be negative"
            )
        if self.default_technology_fee < 0:
            raise InvalidPolicyError(
                "default_technology_fee",
                self.default_technology_fee,
                "cannot be negative",
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise InvalidPolicyError(
                "currency", self.currency, "must be a 3-letter ISO 4217 code"
            )
        self.currency = self.currency.upper()

        missing = set(DEFAULT_NUMBER_PREFIXES) - set(self.number_prefixes)
        if missing:
            raise InvalidPolicyError(
                "number_prefixes", sorted(missing), "missing prefix for kind"
            )
        for kind, prefix in self.number_prefixes.items():
            if not prefix or not prefix.isalnum():
                raise InvalidPolicyError(
                    f"number_prefixes.{kind}", prefix, "must be alphanumeric"
                )

        logger.debug(
            "billing_policy_initialized",
            extra={
                "late_fee_rate": str(self.late_fee_rate),
                "grace_period_days": self.grace_period_days,
                "currency": self.currency,
            },
        )

    def prefix_for(self, kind: str) -> str:
        return self.number_prefixes[str(getattr(kind, "value", kind))]

    def resolve_for(self, franchise: Any) -> Self:
        """
        Layer a franchise's overrides on top of this policy.

        ``franchise`` is anything exposing the nullable override attributes
        ``late_fee_rate``, ``grace_period_days``, ``technology_fee_amount``
        and ``currency`` (normally a ``FranchiseModel``).  Unset attributes
        keep the policy value.
        """
        overrides: dict[str, Any] = {}
        if getattr(franchise, "late_fee_rate", None) is not None:
            overrides["late_fee_rate"] = franchise.late_fee_rate
        if getattr(franchise, "grace_period_days", None) is not None:
            overrides["grace_period_days"] = franchise.grace_period_days
        if getattr(franchise, "technology_fee_amount", None) is not None:
            overrides["default_technology_fee"] = franchise.technology_fee_amount
        if getattr(franchise, "currency", None):
            overrides["currency"] = franchise.currency
        if not overrides:
            return self
        return replace(self, number_prefixes=dict(self.number_prefixes), **overrides)

    @classmethod
    def with_defaults(cls) -> Self:
        """Create policy with house defaults."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create policy from a dictionary (e.g. a parsed YAML document)."""
        logger.info(
            "billing_policy_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        known = {
            "late_fee_rate",
            "grace_period_days",
            "default_technology_fee",
            "currency",
            "number_prefixes",
            "ledger_prefix",
        }
        unknown = set(data) - known
        if unknown:
            raise InvalidPolicyError(
                "billing_policy", sorted(unknown), "unknown setting(s)"
            )
        data = dict(data)
        if "number_prefixes" in data:
            data["number_prefixes"] = {
                **DEFAULT_NUMBER_PREFIXES,
                **(data["number_prefixes"] or {}),
            }
        return cls(**data)

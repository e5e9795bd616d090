"""
Configuration Loader (``franchise_config.loader``).

Responsibility
--------------
Loads the deployment billing policy from YAML and turns it into a
validated ``BillingPolicy``.

Expected document shape::

    billing_policy:
      late_fee_rate: "0.05"
      grace_period_days: 15
      default_technology_fee: "50.00"
      currency: SAR
      number_prefixes:
        royalty: ROY

Decimal-valued settings should be quoted so YAML does not parse them as
floats; unquoted numbers are converted through ``str`` to keep their
written precision.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range or unknown settings  -> ``InvalidPolicyError``.
"""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from franchise_kernel.exceptions import InvalidPolicyError
from franchise_kernel.logging_config import get_logger
from franchise_modules.obligations.config import BillingPolicy

logger = get_logger("config.loader")

CONFIG_ENV_VAR = "FRANCHISE_BILLING_CONFIG"

_DECIMAL_SETTINGS = ("late_fee_rate", "default_technology_fee")


def load_yaml_file(path: Path | str) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_billing_policy(data: dict[str, Any]) -> BillingPolicy:
    """Build a ``BillingPolicy`` from a parsed YAML document."""
    section = data.get("billing_policy", data)
    if not isinstance(section, dict):
        raise InvalidPolicyError("billing_policy", section, "must be a mapping")
    section = dict(section)
    for key in _DECIMAL_SETTINGS:
        if key in section and section[key] is not None:
            section[key] = Decimal(str(section[key]))
    return BillingPolicy.from_dict(section)


def load_billing_policy(path: Path | str) -> BillingPolicy:
    """Load and validate the billing policy stored at ``path``."""
    policy = parse_billing_policy(load_yaml_file(path))
    logger.info(
        "billing_policy_loaded",
        extra={
            "path": str(path),
            "late_fee_rate": str(policy.late_fee_rate),
            "grace_period_days": policy.grace_period_days,
            "currency": policy.currency,
        },
    )
    return policy


def get_billing_policy(path: Path | str | None = None) -> BillingPolicy:
    """
    The active billing policy.

    Resolution order: explicit ``path``, then the file named by the
    ``FRANCHISE_BILLING_CONFIG`` environment variable, then the defaults.
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        logger.debug("billing_policy_defaults_used")
        return BillingPolicy.with_defaults()
    return load_billing_policy(path)

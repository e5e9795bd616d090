"""
franchise_config -- billing policy configuration.

``get_billing_policy()`` is the entrypoint scripts use to obtain the
deployment ``BillingPolicy``.  Per-franchise overrides are applied later,
by ``BillingPolicy.resolve_for``.
"""

from franchise_config.loader import (
    CONFIG_ENV_VAR,
    get_billing_policy,
    load_billing_policy,
    load_yaml_file,
    parse_billing_policy,
)

__all__ = [
    "CONFIG_ENV_VAR",
    "get_billing_policy",
    "load_billing_policy",
    "load_yaml_file",
    "parse_billing_policy",
]

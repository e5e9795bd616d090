"""
Typed Exception Hierarchy for the Franchise Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Billing code must report failures precisely.  Callers (controllers, job
runners, the monthly sweep) decide what to do by exception TYPE and read
the details from structured attributes -- never by parsing messages.

    try:
        service.mark_paid(obligation_id, method, reference, actor_id)
    except InvalidStateTransitionError as e:
        api_response(code=e.code, state=e.current_state, action=e.action)

Every exception:
  1. Has a typed class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (``to_dict()`` exposes them)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FranchiseKernelError (base)
    |
    +-- ValidationError
    |
    +-- ObligationError
    |   +-- ObligationNotFoundError
    |   +-- InvalidStateTransitionError
    |   |   +-- LateFeeAlreadyAppliedError
    |   +-- DuplicateObligationError
    |
    +-- ConfigurationError
    |   +-- ConfigurationMissingError
    |   +-- InvalidPolicyError
    |
    +-- ScopeError
        +-- FranchiseNotFoundError
        +-- UnitNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Malformed / out-of-range input
----------------|-----------------------------|-----------------------------------------
Obligation      | OBLIGATION_NOT_FOUND        | Obligation ID doesn't exist
                | INVALID_STATE_TRANSITION    | Action not allowed from current status
                | LATE_FEE_ALREADY_APPLIED    | Late fee already charged (no double charge)
                | DUPLICATE_OBLIGATION        | Same scope + period already billed
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_MISSING       | Franchise lacks required rate settings
                | INVALID_POLICY              | Billing policy values out of range
----------------|-----------------------------|-----------------------------------------
Scope           | FRANCHISE_NOT_FOUND         | Franchise ID doesn't exist
                | UNIT_NOT_FOUND              | Unit ID doesn't exist

===============================================================================
HANDLING PATTERNS
===============================================================================

1. DIRECT CREATION surfaces duplicates:

    try:
        service.create_obligation(data, actor_id)
    except DuplicateObligationError as e:
        return {"error": e.code, "existing_id": e.existing_id}

2. BATCH CONTEXT converts errors into report entries (never aborts):

    except ConfigurationMissingError as e:
        failures.append(SweepFailure(..., error_code=e.code, message=str(e)))

3. STATE ERRORS are never retried automatically; they describe a caller
   mistake (paying a disputed record, refunding an unpaid one).

===============================================================================
"""

from typing import Any


class FranchiseKernelError(Exception):
    """
    Base exception for all franchise kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FRANCHISE_KERNEL_ERROR"

    def to_dict(self) -> dict[str, Any]:
        """Structured payload for API responses and batch reports."""
        payload: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if not key.startswith("_"):
                payload[key] = value
        return payload


# Validation


class ValidationError(FranchiseKernelError):
    """Input failed validation before any computation ran."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}: {message}")


# Obligation-related exceptions


class ObligationError(FranchiseKernelError):
    """Base exception for obligation lifecycle errors."""

    code: str = "OBLIGATION_ERROR"


class ObligationNotFoundError(ObligationError):
    """Obligation with given ID was not found."""

    code: str = "OBLIGATION_NOT_FOUND"

    def __init__(self, obligation_id: str):
        self.obligation_id = obligation_id
        super().__init__(f"Obligation not found: {obligation_id}")


class InvalidStateTransitionError(ObligationError):
    """
    Action attempted from a status that does not permit it.

    Always surfaced to the caller; the record is left unchanged.
    """

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        obligation_id: str,
        current_state: str,
        action: str,
        reason: str | None = None,
    ):
        self.obligation_id = obligation_id
        self.current_state = current_state
        self.action = action
        self.reason = reason
        message = (
            f"Cannot {action} obligation {obligation_id} "
            f"in state '{current_state}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class LateFeeAlreadyAppliedError(InvalidStateTransitionError):
    """A late fee has already been charged on this obligation."""

    code: str = "LATE_FEE_ALREADY_APPLIED"

    def __init__(self, obligation_id: str, current_state: str, late_fee: str):
        self.late_fee = late_fee
        super().__init__(
            obligation_id=obligation_id,
            current_state=current_state,
            action="calculate_late_fee",
            reason=f"late fee {late_fee} already applied",
        )


class DuplicateObligationError(ObligationError):
    """An obligation already exists for the same scope and period."""

    code: str = "DUPLICATE_OBLIGATION"

    def __init__(self, dedupe_key: str, existing_id: str | None = None):
        self.dedupe_key = dedupe_key
        self.existing_id = existing_id
        super().__init__(
            f"Obligation already exists for {dedupe_key}"
            + (f" (id={existing_id})" if existing_id else "")
        )


# Configuration-related exceptions


class ConfigurationError(FranchiseKernelError):
    """Base exception for billing configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class ConfigurationMissingError(ConfigurationError):
    """A franchise lacks the rate configuration needed to bill it."""

    code: str = "CONFIGURATION_MISSING"

    def __init__(self, franchise_id: str, missing_fields: list[str]):
        self.franchise_id = franchise_id
        self.missing_fields = missing_fields
        super().__init__(
            f"Franchise {franchise_id} is missing billing configuration: "
            f"{', '.join(missing_fields)}"
        )


class InvalidPolicyError(ConfigurationError):
    """A billing policy value is out of its allowed range."""

    code: str = "INVALID_POLICY"

    def __init__(self, setting: str, value: Any, reason: str):
        self.setting = setting
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid billing policy {setting}={value!r}: {reason}")


# Scope-related exceptions


class ScopeError(FranchiseKernelError):
    """Base exception for franchise / unit lookup errors."""

    code: str = "SCOPE_ERROR"


class FranchiseNotFoundError(ScopeError):
    """Franchise with given ID was not found."""

    code: str = "FRANCHISE_NOT_FOUND"

    def __init__(self, franchise_id: str):
        self.franchise_id = franchise_id
        super().__init__(f"Franchise not found: {franchise_id}")


class UnitNotFoundError(ScopeError):
    """Unit with given ID was not found."""

    code: str = "UNIT_NOT_FOUND"

    def __init__(self, unit_id: str):
        self.unit_id = unit_id
        super().__init__(f"Unit not found: {unit_id}")

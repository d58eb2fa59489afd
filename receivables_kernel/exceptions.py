"""
Typed Exception Hierarchy for the Receivables Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every lifecycle operation can be refused for a small number of reasons, and
callers (API layer, bulk approve, batch tasks) must react to each reason
differently: a stale version is retried with a fresh read, a locked period
needs an administrator, a validation failure goes back to the user.

Every exception therefore:
  1. Is a TYPED class (catch by type, not by message)
  2. Has a CODE class attribute drawn from the error taxonomy below
  3. Carries STRUCTURED data (entity ids, versions, period keys)

Example:
    try:
        receipts.approve(receipt_id, version=3)
    except OptimisticLockError as e:
        reload_and_retry(e.entity_id)
    except PeriodLockedError as e:
        ask_for_override(e.locked_periods)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ReceivablesError (INTERNAL)
    |
    +-- ValidationError (VALIDATION)
    |   +-- MissingFieldError
    |   +-- InvalidAmountError
    |   +-- InvalidTargetError
    |   +-- InvalidStatusTransitionError
    |   +-- OverrideReasonRequiredError
    |
    +-- ConcurrencyError (CONFLICT)
    |   +-- OptimisticLockError
    |
    +-- PeriodLockedError (LOCKED)
    |
    +-- AccessDeniedError (FORBIDDEN)
    |   +-- OverrideNotPermittedError
    |
    +-- EntityNotFoundError (NOT_FOUND)
    |
    +-- InternalError (INTERNAL)
        +-- AuditWriteError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code        | When Raised
------------|------------------------------------------------------------
VALIDATION  | Missing/invalid input, illegal status transition,
            | override requested without a reason
CONFLICT    | Caller-supplied version is stale, or a compare-and-swap
            | update matched zero rows
LOCKED      | Document date falls in a locked period and no override
FORBIDDEN   | Actor is neither Admin nor the customer's owner, or may
            | not override period locks
NOT_FOUND   | Receipt / invoice / advance / customer / seller missing
INTERNAL    | Anything unexpected, including audit sink failure

===============================================================================
PROPAGATION
===============================================================================

Validation and authorization errors are raised before the first write.
Conflict and lock errors are raised inside the transaction before target or
balance updates.  Anything raised after writes started causes the owning
service to roll back; unexpected exceptions are re-raised as InternalError
with the original chained as ``__cause__``.
"""


class ReceivablesError(Exception):
    """
    Base exception for all receivables engine errors.

    All subclasses carry a ``code`` class attribute from the error taxonomy.
    """

    code: str = "INTERNAL"


# Validation


class ValidationError(ReceivablesError):
    """Input failed validation before any write."""

    code: str = "VALIDATION"


class MissingFieldError(ValidationError):
    """A required field was not supplied."""

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"{field_name} is required")


class InvalidAmountError(ValidationError):
    """A monetary amount is out of range."""

    def __init__(self, field_name: str, amount: object):
        self.field_name = field_name
        self.amount = str(amount)
        super().__init__(f"{field_name} must be greater than 0 (got {amount})")


class InvalidTargetError(ValidationError):
    """A selected allocation target is not an open item of the customer."""

    def __init__(self, target_id: str, target_type: str, reason: str):
        self.target_id = target_id
        self.target_type = target_type
        self.reason = reason
        super().__init__(
            f"Allocation target {target_type} {target_id} is not valid: {reason}"
        )


class InvalidStatusTransitionError(ValidationError):
    """The requested operation is not allowed from the current status."""

    def __init__(self, entity_type: str, entity_id: str, status: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity_type} {entity_id} in status {status}"
        )


class OverrideReasonRequiredError(ValidationError):
    """Period lock override was requested without a reason."""

    def __init__(self, locked_periods: list[str]):
        self.locked_periods = locked_periods
        super().__init__(
            "Override reason is required to commit into locked period(s) "
            + ", ".join(locked_periods)
        )


# Concurrency


class ConcurrencyError(ReceivablesError):
    """Base exception for concurrency conflicts."""

    code: str = "CONFLICT"


class OptimisticLockError(ConcurrencyError):
    """Version mismatch: the row changed since the caller read it."""

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"{entity_type} {entity_id} was modified by another transaction "
            f"(expected version {expected_version}, found {actual_version})"
        )


# Period locks


class PeriodLockedError(ReceivablesError):
    """Document date falls inside a locked period and no override was given."""

    code: str = "LOCKED"

    def __init__(self, document_date: str, locked_periods: list[str]):
        self.document_date = document_date
        self.locked_periods = locked_periods
        super().__init__(
            f"Period is locked for {document_date}: " + ", ".join(locked_periods)
        )


# Authorization


class AccessDeniedError(ReceivablesError):
    """The acting user may not perform the operation."""

    code: str = "FORBIDDEN"

    def __init__(self, user_id: str | None, operation: str, customer_tax_code: str | None = None):
        self.user_id = user_id
        self.operation = operation
        self.customer_tax_code = customer_tax_code
        target = f" for customer {customer_tax_code}" if customer_tax_code else ""
        super().__init__(f"User {user_id} is not allowed to {operation}{target}")


class OverrideNotPermittedError(AccessDeniedError):
    """Only override roles may commit into a locked period."""

    def __init__(self, user_id: str | None, locked_periods: list[str]):
        self.locked_periods = locked_periods
        super().__init__(user_id, "override period lock")


# Lookup


class EntityNotFoundError(ReceivablesError):
    """Referenced entity does not exist (or is soft-deleted)."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Internal


class InternalError(ReceivablesError):
    """Unexpected failure; the transaction was rolled back."""

    code: str = "INTERNAL"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Internal error during {operation}; no changes were saved")


class AuditWriteError(InternalError):
    """The audit sink failed; the surrounding transaction must roll back."""

    def __init__(self, action: str, entity_type: str, entity_id: str):
        self.action = action
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"audit {action} on {entity_type} {entity_id}")

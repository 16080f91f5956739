"""
Typed Exception Hierarchy for the Stock Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (UI and API layers) must tell apart "your input is wrong",
"the document is in the wrong state" and "your data is safe, but the commit
failed" without parsing message strings.  Every exception therefore has:

  1. A TYPED class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockLedgerError (base)
    |
    +-- ValidationFailedError
    |   +-- InputValidationError
    |   +-- BusinessRuleViolation
    |       +-- InsufficientStockError
    |       +-- StockInvariantError
    |
    +-- StateTransitionError
    |
    +-- ProcessingError
    |
    +-- NotFoundError
    |   +-- DocumentNotFoundError
    |   +-- StockLevelNotFoundError
    |
    +-- PermissionDeniedError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                        | When Raised
----------------------------|-----------------------------------------------
INPUT_VALIDATION_FAILED     | Field-level rule failed (line-indexed issues)
BUSINESS_RULE_VIOLATION     | Cross-field/document rule failed
INSUFFICIENT_STOCK          | Available quantity below the requested amount
STOCK_INVARIANT_VIOLATION   | Mutation would drive quantity/reserved below 0
INVALID_STATE_TRANSITION    | Operation on a document in the wrong status
PROCESSING_FAILED           | Commit phase failed after validation passed
NOT_FOUND                   | Referenced entity does not exist
DOCUMENT_NOT_FOUND          | Receipt/transfer/count id does not exist
PERMISSION_DENIED           | Actor may not act on this document
OPTIMISTIC_LOCK_CONFLICT    | Stock row changed under a concurrent writer
IMMUTABILITY_VIOLATION      | Update/delete of a terminal or append-only row
"""

from __future__ import annotations

from stock_kernel.domain.issues import ValidationIssue, ValidationResult


class StockLedgerError(Exception):
    """Base exception for all stock ledger errors."""

    code: str = "STOCK_LEDGER_ERROR"


# Validation failures


class ValidationFailedError(StockLedgerError):
    """Base for rule failures.  ``errors`` and ``warnings`` are never partial."""

    code: str = "VALIDATION_FAILED"

    def __init__(
        self,
        errors: tuple[ValidationIssue, ...] | list[ValidationIssue],
        warnings: tuple[ValidationIssue, ...] | list[ValidationIssue] = (),
        message: str | None = None,
    ):
        self.errors = tuple(errors)
        self.warnings = tuple(warnings)
        if message is None:
            summary = "; ".join(e.message for e in self.errors[:3])
            more = f" (+{len(self.errors) - 3} more)" if len(self.errors) > 3 else ""
            message = f"{type(self).__name__}: {summary}{more}"
        super().__init__(message)

    @property
    def error_codes(self) -> set:
        return {e.code for e in self.errors}


class InputValidationError(ValidationFailedError):
    """Field-level failure, optionally line-indexed."""

    code: str = "INPUT_VALIDATION_FAILED"


class BusinessRuleViolation(ValidationFailedError):
    """Cross-field or document-level rule failure."""

    code: str = "BUSINESS_RULE_VIOLATION"


class InsufficientStockError(BusinessRuleViolation):
    """Requested quantity exceeds available stock."""

    code: str = "INSUFFICIENT_STOCK"


class StockInvariantError(BusinessRuleViolation):
    """A stock mutation would break non-negativity."""

    code: str = "STOCK_INVARIANT_VIOLATION"

    def __init__(self, store_id: str, product_id: str, reason: str):
        self.store_id = store_id
        self.product_id = product_id
        self.reason = reason
        super().__init__(
            errors=(),
            message=f"Stock invariant violated for ({store_id}, {product_id}): {reason}",
        )


def raise_for_result(result: ValidationResult) -> None:
    """Raise the matching ValidationFailedError subclass if ``result`` has errors.

    Any business-category error makes the whole failure a
    BusinessRuleViolation; otherwise it is an InputValidationError.
    """
    if result.is_valid:
        return
    if result.has_business_errors:
        raise BusinessRuleViolation(result.errors, result.warnings)
    raise InputValidationError(result.errors, result.warnings)


# Lifecycle


class StateTransitionError(StockLedgerError):
    """Operation attempted on a document in the wrong status."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        document_type: str,
        document_id: str,
        current_status: str,
        operation: str,
    ):
        self.document_type = document_type
        self.document_id = str(document_id)
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {document_type} {document_id}: "
            f"status is '{current_status}'"
        )


class ProcessingError(StockLedgerError):
    """Commit phase failed after validation passed.

    The document was reverted to its pre-commit status and no stock
    mutation is visible.  Entered data is preserved.
    """

    code: str = "PROCESSING_FAILED"

    def __init__(self, document_type: str, document_id: str | None, cause: str):
        self.document_type = document_type
        self.document_id = None if document_id is None else str(document_id)
        self.cause = cause
        super().__init__(
            f"Processing of {document_type} {document_id} failed and was "
            f"rolled back: {cause}"
        )


# Lookups


class NotFoundError(StockLedgerError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


class DocumentNotFoundError(NotFoundError):
    code: str = "DOCUMENT_NOT_FOUND"


class StockLevelNotFoundError(NotFoundError):
    code: str = "STOCK_LEVEL_NOT_FOUND"

    def __init__(self, store_id: str, product_id: str):
        self.store_id = store_id
        self.product_id = product_id
        super().__init__("StockLevel", f"{store_id}/{product_id}")


class PermissionDeniedError(StockLedgerError):
    """Actor may not perform this action on the document (e.g. not its creator)."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, document_type: str, document_id: str, actor_id: str, reason: str):
        self.document_type = document_type
        self.document_id = str(document_id)
        self.actor_id = actor_id
        self.reason = reason
        super().__init__(f"{actor_id} may not modify {document_type} {document_id}: {reason}")


# Concurrency-related exceptions


class ConcurrencyError(StockLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability-related exceptions


class ImmutabilityError(StockLedgerError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only or terminal record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )

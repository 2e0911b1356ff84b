"""
Typed exception hierarchy for the stock kernel.

Every error has a typed class (catch by type, not by message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes
(not just a message string).

    StockKernelError (base)
    |
    +-- StockValidationError
    |   +-- InvalidMovementTypeError
    |   +-- DuplicateStockItemError
    |
    +-- NotFoundError
    |   +-- ScopeNotFoundError
    |   +-- StockItemNotFoundError
    |
    +-- StockRuleError
    |   +-- InsufficientStockError
    |   +-- NegativeResultRejectedError
    |   +-- StockItemInUseError
    |
    +-- ConcurrencyError
    |   +-- TransactionConflictError
    |
    +-- ImmutabilityViolationError

Category     | Code                      | When Raised
-------------|---------------------------|------------------------------------------
Validation   | VALIDATION_ERROR          | Non-positive quantity, missing references
             | INVALID_MOVEMENT_TYPE     | Movement type outside IN/OUT/ADJUST
             | DUPLICATE_STOCK_ITEM      | Item name or SKU already used in the company
-------------|---------------------------|------------------------------------------
Not found    | SCOPE_NOT_FOUND           | Project missing or owned by another company
             | STOCK_ITEM_NOT_FOUND      | Stock item missing or owned by another company
-------------|---------------------------|------------------------------------------
Stock rule   | INSUFFICIENT_STOCK        | OUT exceeds the persisted on-hand quantity
             | NEGATIVE_RESULT_REJECTED  | Computed on-hand quantity would be negative
             | STOCK_ITEM_IN_USE         | Deleting an item that has movements
-------------|---------------------------|------------------------------------------
Concurrency  | TRANSACTION_CONFLICT      | Serialization failure, stale balance version
             |                           | or duplicate-key race; safe to retry
-------------|---------------------------|------------------------------------------
Immutability | IMMUTABILITY_VIOLATION    | UPDATE or DELETE of a stock movement

Stock-rule errors are business rejections, not faults: retrying with the
same input reproduces them.  Only ``ConcurrencyError`` subclasses are
retried, and the idempotency key protects the retry from double effects.
"""

from decimal import Decimal
from uuid import UUID


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Validation


class StockValidationError(StockKernelError):
    """Input rejected before any state was read or written."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidMovementTypeError(StockValidationError):
    """Movement type is not one of IN, OUT, ADJUST."""

    code: str = "INVALID_MOVEMENT_TYPE"

    def __init__(self, movement_type: str):
        self.movement_type = movement_type
        super().__init__(f"Invalid movement type: {movement_type}", field="type")


class DuplicateStockItemError(StockValidationError):
    """Another item of the company already uses this name or SKU."""

    code: str = "DUPLICATE_STOCK_ITEM"

    def __init__(self, field: str, value: str):
        self.value = value
        label = "SKU" if field == "sku" else field
        super().__init__(f"Stock item with this {label} already exists", field=field)


# Not found


class NotFoundError(StockKernelError):
    """Base exception for references that do not resolve for the company."""

    code: str = "NOT_FOUND"


class ScopeNotFoundError(NotFoundError):
    """Scope does not exist: an unknown company, or a project of another company."""

    code: str = "SCOPE_NOT_FOUND"

    def __init__(self, company_id: UUID | str, project_id: UUID | str | None = None):
        self.company_id = str(company_id)
        self.project_id = str(project_id) if project_id is not None else None
        if project_id is None:
            message = f"Company {company_id} not found"
        else:
            message = f"Project {project_id} not found or does not belong to company {company_id}"
        super().__init__(message)


class StockItemNotFoundError(NotFoundError):
    """Stock item does not exist or belongs to another company."""

    code: str = "STOCK_ITEM_NOT_FOUND"

    def __init__(self, company_id: UUID | str, stock_item_id: UUID | str):
        self.company_id = str(company_id)
        self.stock_item_id = str(stock_item_id)
        super().__init__(
            f"Stock item {stock_item_id} not found or does not belong to company {company_id}"
        )


# Stock rules


class StockRuleError(StockKernelError):
    """Base exception for business-rule rejections on stock quantities."""

    code: str = "STOCK_RULE_VIOLATION"


class InsufficientStockError(StockRuleError):
    """Outbound quantity exceeds what is on hand."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        stock_item_id: UUID | str,
        available: Decimal,
        requested: Decimal,
        unit: str | None = None,
    ):
        self.stock_item_id = str(stock_item_id)
        self.available = available
        self.requested = requested
        self.unit = unit
        suffix = f" {unit}" if unit else ""
        super().__init__(
            f"Insufficient stock. Available: {_plain(available)}{suffix}, "
            f"Requested: {_plain(requested)}{suffix}"
        )


class NegativeResultRejectedError(StockRuleError):
    """The computed on-hand quantity would drop below zero."""

    code: str = "NEGATIVE_RESULT_REJECTED"

    def __init__(self, stock_item_id: UUID | str, resulting_quantity: Decimal):
        self.stock_item_id = str(stock_item_id)
        self.resulting_quantity = resulting_quantity
        super().__init__("Stock adjustment would result in negative quantity")


class StockItemInUseError(StockRuleError):
    """The item has movements, so it can only be deactivated."""

    code: str = "STOCK_ITEM_IN_USE"

    def __init__(self, stock_item_id: UUID | str, movement_count: int):
        self.stock_item_id = str(stock_item_id)
        self.movement_count = movement_count
        super().__init__(
            "Cannot delete this item because stock movements exist. Disable it instead."
        )


# Concurrency


class ConcurrencyError(StockKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class TransactionConflictError(ConcurrencyError):
    """Concurrent writers collided on the same balance row."""

    code: str = "TRANSACTION_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, attempts: int | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        message = (
            f"Transaction conflict on {entity_type} {entity_id}: "
            "row was modified by another transaction"
        )
        if attempts is not None:
            message += f" (gave up after {attempts} attempts)"
        super().__init__(message)


# Immutability


class ImmutabilityViolationError(StockKernelError):
    """Attempted to modify or delete an append-only stock movement."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


def _plain(value: Decimal) -> str:
    """Render a Decimal without exponent or trailing zeros."""
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal(1)))
    return format(normalized, "f")

"""
ORM-level append-only enforcement for stock movements.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below intercept those events for
StockMovementModel and raise ImmutabilityViolationError, aborting the flush:

    session.flush()
         |
         v
    [before_update] --> _check_movement_immutability() --> ImmutabilityViolationError
    [before_delete] --> _check_movement_delete() --------> ImmutabilityViolationError

Corrections to stock are always new movements (an ADJUSTMENT, or a
PURCHASE_REVERSAL OUT), never edits of an existing row.

Raw SQL and bulk ``update()`` statements bypass mapper events.  Nothing in
the stock services issues those against stock_movements.
"""

from sqlalchemy import event

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_movement_immutability(mapper, connection, target):
    """Block any UPDATE of a stock movement."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "StockMovement",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="StockMovement",
        entity_id=str(target.id),
        reason="Stock movements are append-only and cannot be modified",
    )


def _check_movement_delete(mapper, connection, target):
    """Block DELETE of a stock movement."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "StockMovement",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="StockMovement",
        entity_id=str(target.id),
        reason="Stock movements are append-only and cannot be deleted",
    )


_LISTENERS = (
    ("before_update", _check_movement_immutability),
    ("before_delete", _check_movement_delete),
)


def register_immutability_listeners() -> None:
    """
    Register append-only enforcement on StockMovementModel.

    Safe to call more than once.  Call during application initialization,
    after models are imported and before any database writes.
    """
    from stock_kernel.models.stock import StockMovementModel

    for event_name, listener in _LISTENERS:
        if not event.contains(StockMovementModel, event_name, listener):
            event.listen(StockMovementModel, event_name, listener)


def unregister_immutability_listeners() -> None:
    """
    Remove the append-only listeners.

    WARNING: Only use this in tests that intentionally violate immutability.
    """
    from stock_kernel.models.stock import StockMovementModel

    for event_name, listener in _LISTENERS:
        if event.contains(StockMovementModel, event_name, listener):
            event.remove(StockMovementModel, event_name, listener)

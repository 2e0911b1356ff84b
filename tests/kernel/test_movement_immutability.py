"""
Tests for append-only enforcement on stock movements.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from stock_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stock_kernel.domain.movements import MovementType
from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.models.stock import StockMovementModel


@pytest.fixture
def movement(adjust, session, cement_id):
    result = adjust(cement_id, MovementType.IN, 5, unit_cost=10)
    return session.get(StockMovementModel, result.movement_id)


def test_update_is_blocked(movement, session, captured_logs):
    movement_id = movement.id
    movement.quantity = Decimal("50")

    with pytest.raises(ImmutabilityViolationError) as exc_info:
        session.flush()

    assert exc_info.value.entity_id == str(movement_id)
    assert "cannot be modified" in str(exc_info.value)
    blocked = next(r for r in captured_logs() if r["message"] == "immutability_violation_blocked")
    assert blocked["operation"] == "UPDATE"
    session.rollback()


def test_delete_is_blocked(movement, session):
    session.delete(movement)

    with pytest.raises(ImmutabilityViolationError, match="cannot be deleted"):
        session.flush()
    session.rollback()


def test_row_survives_blocked_update(movement, session):
    movement_id = movement.id
    movement.notes = "edited"
    with pytest.raises(ImmutabilityViolationError):
        session.flush()
    session.rollback()

    stored = session.execute(
        select(StockMovementModel).where(StockMovementModel.id == movement_id)
    ).scalar_one()
    assert stored.notes is None
    assert stored.quantity == Decimal("5")


def test_registration_is_idempotent(movement, session):
    register_immutability_listeners()
    register_immutability_listeners()
    unregister_immutability_listeners()

    try:
        # One unregister removes them however often they were registered.
        movement.notes = "allowed while unregistered"
        session.flush()
    finally:
        register_immutability_listeners()

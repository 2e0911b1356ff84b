"""
Tests for the Movement Classifier.

Covers:
- Every recorded kind maps to its category regardless of type and sign
- Kindless rows fall back to the legacy type, ADJUST branching on sign
- Unknown kinds and types never raise and default to IN
- Exhaustive (kind, type, sign) table: exactly one category per combination
"""

import itertools
from decimal import Decimal
from types import SimpleNamespace

import pytest

from stock_engines.classifier import classify, classify_movement
from stock_kernel.domain.movements import MovementCategory, MovementKind, MovementType

KIND_CATEGORY = {
    MovementKind.OPENING: MovementCategory.OPENING,
    MovementKind.RECEIVE: MovementCategory.IN,
    MovementKind.TRANSFER_IN: MovementCategory.IN,
    MovementKind.RETURN_IN: MovementCategory.IN,
    MovementKind.ISSUE: MovementCategory.OUT,
    MovementKind.TRANSFER_OUT: MovementCategory.OUT,
    MovementKind.WASTAGE: MovementCategory.WASTAGE,
    MovementKind.ADJUSTMENT: MovementCategory.ADJUST,
}

TYPES = [MovementType.IN, MovementType.OUT, MovementType.ADJUST, None, "BOGUS"]
QUANTITIES = [Decimal("5"), Decimal("0"), Decimal("-5")]


def expected_category(kind, movement_type, quantity) -> MovementCategory:
    if kind in KIND_CATEGORY:
        return KIND_CATEGORY[kind]
    if movement_type is MovementType.IN:
        return MovementCategory.IN
    if movement_type is MovementType.OUT:
        return MovementCategory.OUT
    if movement_type is MovementType.ADJUST:
        return MovementCategory.IN if quantity > 0 else MovementCategory.OUT
    return MovementCategory.IN


@pytest.mark.parametrize(
    "kind,movement_type,quantity",
    list(itertools.product(list(MovementKind) + [None, "MYSTERY"], TYPES, QUANTITIES)),
)
def test_every_combination_has_exactly_one_category(kind, movement_type, quantity):
    category = classify(kind, movement_type, quantity)
    assert isinstance(category, MovementCategory)
    assert category == expected_category(kind, movement_type, quantity)


class TestKindTakesPrecedence:
    def test_issue_kind_overrides_in_type(self):
        assert classify(MovementKind.ISSUE, MovementType.IN, Decimal("3")) is MovementCategory.OUT

    def test_receive_kind_overrides_out_type(self):
        assert classify(MovementKind.RECEIVE, MovementType.OUT, Decimal("3")) is MovementCategory.IN

    def test_wastage_is_its_own_category(self):
        assert classify("WASTAGE", "OUT", Decimal("1")) is MovementCategory.WASTAGE

    def test_string_kinds_are_accepted(self):
        assert classify("opening", None, Decimal("1")) is MovementCategory.OPENING
        assert classify("transfer_in", None, Decimal("1")) is MovementCategory.IN


class TestLegacyTypeFallback:
    def test_positive_adjust_is_inbound(self):
        assert classify(None, MovementType.ADJUST, Decimal("2")) is MovementCategory.IN

    def test_zero_adjust_is_outbound(self):
        assert classify(None, MovementType.ADJUST, Decimal("0")) is MovementCategory.OUT

    def test_negative_adjust_is_outbound(self):
        assert classify(None, "ADJUST", Decimal("-2")) is MovementCategory.OUT

    def test_unknown_type_defaults_to_in(self):
        assert classify(None, "TELEPORT", Decimal("1")) is MovementCategory.IN

    def test_missing_quantity_does_not_raise(self):
        assert classify(None, MovementType.ADJUST, None) is MovementCategory.OUT


def test_classify_movement_reads_attributes():
    movement = SimpleNamespace(kind=None, type="OUT", quantity=Decimal("4"))
    assert classify_movement(movement) is MovementCategory.OUT

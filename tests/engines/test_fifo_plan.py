"""
Tests for the pure FIFO draw planner.

Tests cover:
- Oldest-lot-first ordering, with insertion sequence breaking date ties
- Partial and multi-lot draws
- Shortfall pricing at the fallback cost, with and without a fallback
- Input validation
- Plan description used in logs
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_engines.fifo import (
    LotSnapshot,
    describe_plan,
    order_lots,
    plan_fifo_draw,
    shortfall_warning,
)


def _lot(lot_date, quantity, unit_cost, sequence=1):
    return LotSnapshot(
        lot_id=uuid4(),
        lot_date=lot_date,
        sequence=sequence,
        remaining_quantity=Decimal(quantity),
        unit_cost=Decimal(unit_cost),
    )


class TestOrdering:
    """Lots are drawn oldest first."""

    def test_lots_sorted_by_date(self):
        late = _lot(date(2024, 1, 5), "50", "12", sequence=1)
        early = _lot(date(2024, 1, 1), "100", "10", sequence=2)

        assert order_lots([late, early]) == [early, late]

    def test_sequence_breaks_date_ties(self):
        second = _lot(date(2024, 1, 1), "10", "9", sequence=7)
        first = _lot(date(2024, 1, 1), "10", "11", sequence=3)

        plan = plan_fifo_draw(lots=[second, first], requested_quantity=Decimal("15"))

        assert [d.lot_id for d in plan.draws] == [first.lot_id, second.lot_id]
        assert plan.draws[0].quantity == Decimal("10")
        assert plan.draws[1].quantity == Decimal("5")


class TestDraws:
    """Draw quantities and costs."""

    def test_draw_spans_two_lots(self):
        lot_a = _lot(date(2024, 1, 1), "100", "10", sequence=1)
        lot_b = _lot(date(2024, 1, 5), "50", "12", sequence=2)

        plan = plan_fifo_draw(lots=[lot_a, lot_b], requested_quantity=Decimal("120"))

        assert [(d.lot_id, d.quantity) for d in plan.draws] == [
            (lot_a.lot_id, Decimal("100")),
            (lot_b.lot_id, Decimal("20")),
        ]
        assert plan.draws[0].remaining_after == Decimal("0")
        assert plan.draws[1].remaining_after == Decimal("30")
        assert plan.total_cost == Decimal("1240.00")
        assert plan.shortfall_quantity == Decimal("0")
        assert plan.warnings == ()

    def test_draw_within_one_lot_leaves_later_lots_untouched(self):
        lot_a = _lot(date(2024, 1, 1), "100", "10", sequence=1)
        lot_b = _lot(date(2024, 1, 5), "50", "12", sequence=2)

        plan = plan_fifo_draw(lots=[lot_a, lot_b], requested_quantity=Decimal("40"))

        assert len(plan.draws) == 1
        assert plan.draws[0].lot_id == lot_a.lot_id
        assert plan.total_cost == Decimal("400.00")

    def test_exhausted_lots_skipped(self):
        empty = _lot(date(2024, 1, 1), "0", "5", sequence=1)
        full = _lot(date(2024, 1, 2), "10", "7", sequence=2)

        plan = plan_fifo_draw(lots=[empty, full], requested_quantity=Decimal("3"))

        assert [d.lot_id for d in plan.draws] == [full.lot_id]
        assert plan.available_quantity == Decimal("10")

    def test_fractional_quantities_rounded_once(self):
        lot = _lot(date(2024, 1, 1), "10", "3.333", sequence=1)

        plan = plan_fifo_draw(lots=[lot], requested_quantity=Decimal("1.5"))

        assert plan.draws[0].total_cost == Decimal("4.9995")
        assert plan.total_cost == Decimal("5.00")

    def test_quantities_add_up_to_request(self):
        lots = [
            _lot(date(2024, 1, 1), "3", "1", sequence=1),
            _lot(date(2024, 1, 2), "4", "2", sequence=2),
        ]

        plan = plan_fifo_draw(lots=lots, requested_quantity=Decimal("10"))

        assert plan.drawn_quantity + plan.shortfall_quantity == Decimal("10")


class TestShortfall:
    """Stock-outs are priced, never refused."""

    def test_shortfall_costed_at_fallback(self):
        lot = _lot(date(2024, 1, 1), "30", "10", sequence=1)

        plan = plan_fifo_draw(
            lots=[lot],
            requested_quantity=Decimal("50"),
            fallback_unit_cost=Decimal("11"),
            product_label="Widget",
        )

        assert plan.has_shortfall
        assert plan.shortfall_quantity == Decimal("20")
        assert plan.shortfall_cost == Decimal("220")
        assert plan.total_cost == Decimal("520.00")
        assert len(plan.warnings) == 1
        assert 'Product "Widget" only has 30 units in stock' in plan.warnings[0]
        assert "fallback cost of 11.00/unit" in plan.warnings[0]

    def test_no_lots_and_no_fallback_costs_zero(self):
        plan = plan_fifo_draw(lots=[], requested_quantity=Decimal("5"), product_label="Gadget")

        assert plan.draws == ()
        assert plan.shortfall_quantity == Decimal("5")
        assert plan.total_cost == Decimal("0.00")
        assert plan.warnings[0].endswith("costed at 0 (no fallback cost set).")

    def test_warning_text(self):
        text = shortfall_warning(
            "Widget",
            Decimal("30"),
            Decimal("50"),
            Decimal("20"),
            Decimal("11"),
        )

        assert text == (
            'Product "Widget" only has 30 units in stock, but 50 were requested. '
            "Shortfall of 20 units costed at fallback cost of 11.00/unit."
        )

    def test_fractional_quantities_not_rounded(self):
        text = shortfall_warning(
            "Powder",
            Decimal("0.375"),
            Decimal("0.5"),
            Decimal("0.125"),
            Decimal("0"),
        )

        assert text == (
            'Product "Powder" only has 0.375 units in stock, but 0.5 were requested. '
            "Shortfall of 0.125 units costed at 0 (no fallback cost set)."
        )


class TestValidation:
    """Invalid requests are rejected before planning."""

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-1")])
    def test_non_positive_quantity_rejected(self, quantity):
        with pytest.raises(ValueError, match="must be positive"):
            plan_fifo_draw(lots=[], requested_quantity=quantity)

    @pytest.mark.parametrize("raw", ["Infinity", "NaN", "sNaN"])
    def test_non_finite_quantity_rejected(self, raw):
        with pytest.raises(ValueError, match="must be positive"):
            plan_fifo_draw(lots=[], requested_quantity=Decimal(raw))

    def test_non_finite_fallback_rejected(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            plan_fifo_draw(
                lots=[],
                requested_quantity=Decimal("1"),
                fallback_unit_cost=Decimal("Infinity"),
            )

    def test_negative_fallback_rejected(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            plan_fifo_draw(
                lots=[],
                requested_quantity=Decimal("1"),
                fallback_unit_cost=Decimal("-0.01"),
            )


class TestDescribePlan:

    def test_describe_lists_draws_and_shortfall(self):
        lot = _lot(date(2024, 1, 1), "100", "10", sequence=1)

        plan = plan_fifo_draw(
            lots=[lot],
            requested_quantity=Decimal("120"),
            fallback_unit_cost=Decimal("12"),
        )

        assert describe_plan(plan) == "100@10, 20@12 (shortfall) = 1240.00"

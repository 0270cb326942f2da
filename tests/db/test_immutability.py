"""
Tests for ORM-level immutability enforcement.

Tests cover:
- Recalculation audit entries can be neither updated nor deleted
- Frozen StockLot fields; remaining quantity and cost stay mutable
- Frozen consumption fields; the cost snapshot stays mutable
- A lot cannot be deleted while a consumption references it
- Listener registration is idempotent
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import event

from stock_kernel.db.immutability import (
    _check_stock_lot_immutability,
    register_immutability_listeners,
)
from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.models.recalculation_audit import ReasonCode
from stock_kernel.models.stock_lot import StockLot
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.audit_service import AuditService
from stock_kernel.services.consumption_service import FIFOConsumptionEngine


@pytest.fixture
def audit_entry(session, create_product, deterministic_clock):
    product = create_product()
    return AuditService(session, deterministic_clock).record_recalculation(
        product_id=product.id,
        trigger_date=date(2024, 1, 2),
        reason_code=ReasonCode.MANUAL,
        note=None,
        lines_replayed=1,
        cogs_before=Decimal("1240.00"),
        cogs_after=Decimal("1160.00"),
    )


@pytest.fixture
def consumed_lot(session, deterministic_clock, create_product, create_lot, create_demand_line):
    product = create_product()
    lot = create_lot(product, "10", "4", date(2024, 1, 1))
    line = create_demand_line(product, "3", date(2024, 1, 2))
    FIFOConsumptionEngine(session, deterministic_clock).consume(
        product.id, Decimal("3"), line.id, date(2024, 1, 2),
    )
    consumption = StockSelector(session).consumptions_for_line(line.id)[0]
    return lot, consumption


class TestAuditEntryImmutability:

    def test_update_blocked(self, session, audit_entry, captured_logs):
        audit_entry.note = "rewritten"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "RecalculationAuditEntry"
        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["operation"] == "UPDATE"

    def test_delete_blocked(self, session, audit_entry):
        session.delete(audit_entry)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestStockLotImmutability:

    @pytest.mark.parametrize(
        "field_name, value",
        [
            ("initial_quantity", Decimal("99")),
            ("warehouse_id", "WH-9"),
            ("source_type", "opening"),
        ],
    )
    def test_frozen_field_blocked(self, session, create_product, create_lot, field_name, value):
        lot = create_lot(create_product(), "10", "4", date(2024, 1, 1))
        setattr(lot, field_name, value)

        with pytest.raises(ImmutabilityViolationError, match=field_name):
            session.flush()

    def test_remaining_and_cost_may_change(self, session, create_product, create_lot):
        lot = create_lot(create_product(), "10", "4", date(2024, 1, 1))
        lot.remaining_quantity = Decimal("6")
        lot.unit_cost = Decimal("4.5")

        session.flush()

        assert session.get(StockLot, lot.id).unit_cost == Decimal("4.5")

    def test_delete_blocked_while_consumed(self, session, consumed_lot):
        lot, _ = consumed_lot
        session.delete(lot)

        with pytest.raises(ImmutabilityViolationError, match="consumption"):
            session.flush()


class TestConsumptionImmutability:

    def test_quantity_frozen(self, session, consumed_lot):
        _, consumption = consumed_lot
        consumption.quantity = Decimal("1")

        with pytest.raises(ImmutabilityViolationError, match="quantity"):
            session.flush()

    def test_cost_snapshot_may_change(self, session, consumed_lot):
        _, consumption = consumed_lot
        consumption.unit_cost = Decimal("5")
        consumption.total_cost = Decimal("15")

        session.flush()

        assert consumption.total_cost == Decimal("15")


class TestRegistration:

    def test_register_is_idempotent(self, db_tables):
        register_immutability_listeners()
        register_immutability_listeners()

        assert event.contains(StockLot, "before_update", _check_stock_lot_immutability)

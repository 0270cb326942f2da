"""
Warehouse isolation.

A warehouse-scoped demand draws only from its own warehouse's lots and from
lots recorded without a warehouse; never from another warehouse.  Unscoped
demand sees every lot.
"""

from datetime import date
from decimal import Decimal

import pytest

from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.consumption_service import FIFOConsumptionEngine


@pytest.fixture
def warehouse_lots(create_product, create_lot):
    product = create_product(name="Pallet")
    global_lot = create_lot(product, "10", "5", date(2024, 1, 1))
    north = create_lot(product, "10", "6", date(2024, 1, 2), warehouse_id="WH-NORTH")
    south = create_lot(product, "10", "7", date(2024, 1, 3), warehouse_id="WH-SOUTH")
    return product, global_lot, north, south


class TestScopedConsumption:

    def test_scoped_demand_skips_other_warehouses(
        self, session, deterministic_clock, warehouse_lots, create_demand_line,
    ):
        product, global_lot, north, south = warehouse_lots
        engine = FIFOConsumptionEngine(session, deterministic_clock)
        line = create_demand_line(product, "25", date(2024, 1, 10), warehouse_id="WH-NORTH")

        result = engine.consume(product.id, Decimal("25"), line.id, date(2024, 1, 10), "WH-NORTH")

        assert {c.lot_id for c in result.consumptions} == {global_lot.id, north.id}
        assert south.remaining_quantity == Decimal("10")
        assert result.shortfall_quantity == Decimal("5")

    def test_unscoped_demand_sees_everything(
        self, session, deterministic_clock, warehouse_lots, create_demand_line,
    ):
        product, global_lot, north, south = warehouse_lots
        engine = FIFOConsumptionEngine(session, deterministic_clock)
        line = create_demand_line(product, "30", date(2024, 1, 10))

        result = engine.consume(product.id, Decimal("30"), line.id, date(2024, 1, 10))

        assert [c.lot_id for c in result.consumptions] == [global_lot.id, north.id, south.id]
        assert not result.has_shortfall

    def test_global_lots_can_be_hidden(
        self, session, deterministic_clock, warehouse_lots, create_demand_line,
    ):
        product, global_lot, north, _ = warehouse_lots
        engine = FIFOConsumptionEngine(
            session, deterministic_clock, legacy_global_lots_visible=False,
        )
        line = create_demand_line(product, "5", date(2024, 1, 10), warehouse_id="WH-NORTH")

        result = engine.consume(product.id, Decimal("5"), line.id, date(2024, 1, 10), "WH-NORTH")

        assert [c.lot_id for c in result.consumptions] == [north.id]
        assert global_lot.remaining_quantity == Decimal("10")


class TestScopedAvailability:

    def test_available_stock_by_warehouse(self, session, warehouse_lots):
        product, _, _, _ = warehouse_lots
        selector = StockSelector(session)

        assert selector.get_available_stock(product.id) == Decimal("30")
        assert selector.get_available_stock(product.id, "WH-NORTH") == Decimal("20")
        assert selector.get_available_stock(product.id, "WH-EAST") == Decimal("10")

    def test_snapshot(self, session, warehouse_lots):
        product, _, north, _ = warehouse_lots

        snapshot = StockSelector(session).get_product_stock(product.id, "WH-NORTH")

        assert snapshot.total_quantity == Decimal("20")
        assert snapshot.total_value == Decimal("110")
        assert snapshot.average_unit_cost == Decimal("5.5")
        assert [v.warehouse_id for v in snapshot.lots] == [None, "WH-NORTH"]

"""
Tests for RecalculationService.

Tests cover:
- Backdated lot insertion changes which lot a later sale drew from
- Lines before the recalculation date are left alone
- Replay order is (transaction_date, sequence)
- One audit entry per recalculation; none when there is nothing to replay
- Failures are wrapped in RecalculationError with the cause chained
- A failed recalculation rolled back to a savepoint leaves history unchanged
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from stock_kernel.exceptions import (
    ConcurrencyConflictError,
    ProductNotFoundError,
    RecalculationError,
)
from stock_kernel.models.recalculation_audit import ReasonCode, RecalculationAuditEntry
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.audit_service import AuditService
from stock_kernel.services.consumption_service import FIFOConsumptionEngine
from stock_kernel.services.recalculation_service import RecalculationService


@pytest.fixture
def engine_service(session, deterministic_clock):
    return FIFOConsumptionEngine(session, deterministic_clock)


@pytest.fixture
def recalculation(session, deterministic_clock, engine_service):
    return RecalculationService(session, deterministic_clock, consumption_engine=engine_service)


@pytest.fixture
def consumed_sale(engine_service, create_product, create_lot, create_demand_line):
    """A(100@10) and B(50@12), then a sale of 120 on 2024-01-10."""
    product = create_product(name="Widget")
    lot_a = create_lot(product, "100", "10", date(2024, 1, 1))
    lot_b = create_lot(product, "50", "12", date(2024, 1, 5))
    line = create_demand_line(product, "120", date(2024, 1, 10))
    engine_service.consume(product.id, Decimal("120"), line.id, date(2024, 1, 10))
    return product, lot_a, lot_b, line


def _history(session, lots, lines):
    """Lot remainders, persisted draws and line COGS, read back from the database."""
    session.expire_all()
    selector = StockSelector(session)
    return (
        [lot.remaining_quantity for lot in lots],
        [selector.consumptions_for_line(line.id) for line in lines],
        [(line.cost_of_goods_sold, line.shortfall_quantity) for line in lines],
    )


class TestBackdatedLot:
    """The headline scenario: a cheaper lot appears in the past."""

    def test_backdated_lot_reprices_sale(self, session, recalculation, consumed_sale, create_lot):
        product, lot_a, lot_b, line = consumed_sale
        assert line.cost_of_goods_sold == Decimal("1240.00")

        lot_c = create_lot(product, "200", "8", date(2024, 1, 2))
        result = recalculation.recalculate_from_date(
            product.id,
            date(2024, 1, 2),
            reason_code=ReasonCode.BACKDATED_LOT,
        )

        assert line.cost_of_goods_sold == Decimal("1160.00")
        assert lot_a.remaining_quantity == Decimal("0")
        assert lot_b.remaining_quantity == Decimal("50")
        assert lot_c.remaining_quantity == Decimal("180")

        draws = {c.lot_id: c.quantity for c in StockSelector(session).consumptions_for_line(line.id)}
        assert draws == {lot_a.id: Decimal("100"), lot_c.id: Decimal("20")}

        assert result.lines_replayed == 1
        assert result.consumptions_reversed == 2
        assert result.cogs_before == Decimal("1240.00")
        assert result.cogs_after == Decimal("1160.00")
        assert result.cogs_delta == Decimal("-80.00")

    def test_audit_entry_written_once(self, session, recalculation, consumed_sale, create_lot):
        product, _, _, _ = consumed_sale
        create_lot(product, "200", "8", date(2024, 1, 2))

        result = recalculation.recalculate_from_date(
            product.id,
            date(2024, 1, 2),
            reason_code=ReasonCode.BACKDATED_LOT,
            note="PO-42",
        )

        history = AuditService(session).history(product.id)
        assert len(history) == 1
        entry = history[0]
        assert entry.id == result.audit_entry_id
        assert entry.reason_code == ReasonCode.BACKDATED_LOT.value
        assert entry.trigger_date == date(2024, 1, 2)
        assert entry.note == "PO-42"
        assert entry.lines_replayed == 1
        assert entry.cogs_before == Decimal("1240.00")
        assert entry.cogs_after == Decimal("1160.00")

    def test_cogs_change_logged_per_line(self, recalculation, consumed_sale, create_lot, captured_logs):
        product, _, _, line = consumed_sale
        create_lot(product, "200", "8", date(2024, 1, 2))

        recalculation.recalculate_from_date(product.id, date(2024, 1, 2))

        changes = [r for r in captured_logs() if r["message"] == "demand_cogs_changed"]
        assert len(changes) == 1
        assert changes[0]["demand_line_id"] == str(line.id)
        assert changes[0]["old_cogs"] == "1240.00"
        assert changes[0]["new_cogs"] == "1160.00"


class TestScope:
    """Only lines on or after from_date are touched."""

    def test_earlier_lines_untouched(
        self, session, engine_service, recalculation, create_product, create_lot, create_demand_line,
    ):
        product = create_product()
        lot_a = create_lot(product, "100", "10", date(2024, 1, 1))
        early = create_demand_line(product, "30", date(2024, 1, 3))
        engine_service.consume(product.id, Decimal("30"), early.id, date(2024, 1, 3))
        late = create_demand_line(product, "50", date(2024, 1, 10))
        engine_service.consume(product.id, Decimal("50"), late.id, date(2024, 1, 10))
        early_draws = StockSelector(session).consumptions_for_line(early.id)

        result = recalculation.recalculate_from_date(product.id, date(2024, 1, 5))

        assert result.lines_replayed == 1
        assert StockSelector(session).consumptions_for_line(early.id) == early_draws
        assert lot_a.remaining_quantity == Decimal("20")

    def test_replay_follows_transaction_date_not_entry_order(
        self, session, recalculation, create_product, create_lot, create_demand_line,
    ):
        product = create_product()
        cheap = create_lot(product, "10", "1", date(2024, 1, 1))
        dear = create_lot(product, "10", "5", date(2024, 1, 1))
        # Entered first but dated later
        later = create_demand_line(product, "10", date(2024, 1, 9))
        earlier = create_demand_line(product, "10", date(2024, 1, 8))

        recalculation.recalculate_from_date(product.id, date(2024, 1, 1))

        assert earlier.cost_of_goods_sold == Decimal("10.00")
        assert later.cost_of_goods_sold == Decimal("50.00")
        assert cheap.remaining_quantity == Decimal("0")
        assert dear.remaining_quantity == Decimal("0")

    def test_same_date_lines_replay_in_sequence_order(
        self, recalculation, create_product, create_lot, create_demand_line,
    ):
        product = create_product()
        create_lot(product, "5", "2", date(2024, 1, 1))
        create_lot(product, "5", "4", date(2024, 1, 2))
        first = create_demand_line(product, "5", date(2024, 1, 3))
        second = create_demand_line(product, "5", date(2024, 1, 3))

        recalculation.recalculate_from_date(product.id, date(2024, 1, 3))

        assert first.cost_of_goods_sold == Decimal("10.00")
        assert second.cost_of_goods_sold == Decimal("20.00")


class TestIdempotence:

    def test_second_recalculation_changes_nothing(self, session, recalculation, consumed_sale):
        product, lot_a, lot_b, line = consumed_sale

        first = recalculation.recalculate_from_date(product.id, date(2024, 1, 1))
        draws_after_first = StockSelector(session).consumptions_for_line(line.id)
        second = recalculation.recalculate_from_date(product.id, date(2024, 1, 1))

        assert first.cogs_after == second.cogs_after == Decimal("1240.00")
        assert [(c.lot_id, c.quantity, c.total_cost) for c in draws_after_first] == [
            (c.lot_id, c.quantity, c.total_cost)
            for c in StockSelector(session).consumptions_for_line(line.id)
        ]
        assert lot_a.remaining_quantity == Decimal("0")
        assert lot_b.remaining_quantity == Decimal("30")


class TestNothingToReplay:

    def test_no_demand_skips_without_audit(self, session, recalculation, create_product, create_lot):
        product = create_product()
        create_lot(product, "10", "1", date(2024, 1, 1))

        result = recalculation.recalculate_from_date(product.id, date(2024, 1, 1))

        assert result.lines_replayed == 0
        assert result.audit_entry_id is None
        assert AuditService(session).history(product.id) == []


class TestFailures:

    def test_unknown_product(self, recalculation):
        with pytest.raises(ProductNotFoundError):
            recalculation.recalculate_from_date(uuid4(), date(2024, 1, 1))

    def test_failure_wrapped_and_chained(self, recalculation, consumed_sale, captured_logs):
        product, _, _, _ = consumed_sale

        def broken():
            raise RuntimeError("disk on fire")

        with pytest.raises(RecalculationError) as exc_info:
            recalculation.recalculate_from_date(
                product.id, date(2024, 1, 1), after_reversal=broken,
            )

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.code == "RECALCULATION_FAILED"
        assert any(r["message"] == "recalculation_failed" for r in captured_logs())

    def test_concurrency_conflict_passes_through(self, recalculation, consumed_sale):
        product, _, _, _ = consumed_sale

        def conflicted():
            raise ConcurrencyConflictError("recalculate_from_date", "deadlock detected")

        with pytest.raises(ConcurrencyConflictError):
            recalculation.recalculate_from_date(
                product.id, date(2024, 1, 1), after_reversal=conflicted,
            )


class TestRollback:
    """A failed recalculation leaves nothing behind once its savepoint is rolled back."""

    def test_failing_hook_rolled_back(self, session, recalculation, consumed_sale, create_lot):
        product, lot_a, lot_b, line = consumed_sale
        lot_c = create_lot(product, "200", "8", date(2024, 1, 2))
        before = _history(session, [lot_a, lot_b, lot_c], [line])

        def broken():
            lot_c.unit_cost = Decimal("7")
            raise RuntimeError("correction failed")

        savepoint = session.begin_nested()
        with pytest.raises(RecalculationError):
            recalculation.recalculate_from_date(
                product.id, date(2024, 1, 2), after_reversal=broken,
            )
        savepoint.rollback()

        assert _history(session, [lot_a, lot_b, lot_c], [line]) == before
        assert lot_c.unit_cost == Decimal("8")
        audits = session.execute(
            select(func.count()).select_from(RecalculationAuditEntry)
        ).scalar_one()
        assert audits == 0

    def test_failure_after_partial_replay_rolled_back(
        self, session, recalculation, engine_service, consumed_sale, create_lot,
        create_demand_line, monkeypatch,
    ):
        product, lot_a, lot_b, line = consumed_sale
        second = create_demand_line(product, "20", date(2024, 1, 12))
        engine_service.consume(product.id, Decimal("20"), second.id, date(2024, 1, 12))
        lot_c = create_lot(product, "200", "8", date(2024, 1, 2))
        lots = [lot_a, lot_b, lot_c]
        before = _history(session, lots, [line, second])

        replay_consume = engine_service.consume
        replayed = []

        def interrupted(*args, **kwargs):
            replayed.append(args)
            if len(replayed) == 2:
                raise RuntimeError("replay interrupted")
            return replay_consume(*args, **kwargs)

        monkeypatch.setattr(engine_service, "consume", interrupted)

        savepoint = session.begin_nested()
        with pytest.raises(RecalculationError):
            recalculation.recalculate_from_date(product.id, date(2024, 1, 2))
        # The first line was already re-costed (100 from A, 20 from C) when replay stopped
        assert lot_c.remaining_quantity == Decimal("180")
        savepoint.rollback()

        assert _history(session, lots, [line, second]) == before
        assert before[2] == [
            (Decimal("1240.00"), Decimal("0")),
            (Decimal("240.00"), Decimal("0")),
        ]


class TestPhases:
    """reverse_from_date and replay can run separately."""

    def test_reverse_then_replay(self, session, recalculation, consumed_sale):
        product, lot_a, lot_b, line = consumed_sale

        reversed_count, lines = recalculation.reverse_from_date(product.id, date(2024, 1, 1))

        assert reversed_count == 2
        assert lines == [line]
        assert lot_a.remaining_quantity == Decimal("100")
        assert lot_b.remaining_quantity == Decimal("50")
        assert line.cost_of_goods_sold == Decimal("0")

        results = recalculation.replay(lines)

        assert results[0].total_cost == Decimal("1240.00")
        assert line.cost_of_goods_sold == Decimal("1240.00")

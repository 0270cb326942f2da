"""
ORM-Level Immutability Enforcement for the stock ledger.

===============================================================================
WHY THIS EXISTS
===============================================================================

FIFO costing is only auditable if the records it is derived from cannot be
silently rewritten.  Services mutate lots through consume/reverse, and the
recalculation audit trail is append-only.  These listeners catch any code
path that tries to go around those contracts:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                   | Rule
-------------------------|------------------------------------------------------
RecalculationAuditEntry  | ALWAYS immutable, never deleted
StockLot                 | product_id, warehouse_id, initial_quantity and
                         | source_type frozen; delete blocked while any
                         | consumption references the lot
StockLotConsumption      | lot_id, demand_line_id, quantity frozen; only the
                         | cost snapshot may change (lot repricing)

===============================================================================
USAGE
===============================================================================

Called once at startup (and by the test conftest):

    from stock_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, func, inspect, select

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

STOCK_LOT_FROZEN_FIELDS = frozenset({
    "product_id",
    "warehouse_id",
    "initial_quantity",
    "source_type",
})

CONSUMPTION_FROZEN_FIELDS = frozenset({
    "lot_id",
    "demand_line_id",
    "quantity",
})


def _block(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    extra = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "operation": operation,
    }
    if field is not None:
        extra["field"] = field
    logger.error("immutability_violation_blocked", extra=extra)
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_frozen_fields(target, entity_type: str, frozen: frozenset[str]) -> None:
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key not in frozen:
            continue
        if attr.history.has_changes():
            _block(
                entity_type,
                target.id,
                "UPDATE",
                f"Field '{attr.key}' cannot be modified after creation",
                field=attr.key,
            )


def _check_audit_entry_immutability(mapper, connection, target):
    """Recalculation audit entries are never modified."""
    _block(
        "RecalculationAuditEntry",
        target.id,
        "UPDATE",
        "Recalculation audit entries are immutable and cannot be modified",
    )


def _check_audit_entry_delete(mapper, connection, target):
    """Recalculation audit entries are never deleted."""
    _block(
        "RecalculationAuditEntry",
        target.id,
        "DELETE",
        "Recalculation audit entries cannot be deleted",
    )


def _check_stock_lot_immutability(mapper, connection, target):
    """Lot identity and initial quantity are frozen; remaining and cost may change."""
    _check_frozen_fields(target, "StockLot", STOCK_LOT_FROZEN_FIELDS)


def _check_stock_lot_delete(mapper, connection, target):
    """A lot cannot be deleted while any consumption references it."""
    from stock_kernel.models.stock_lot_consumption import StockLotConsumption

    count = connection.execute(
        select(func.count())
        .select_from(StockLotConsumption.__table__)
        .where(StockLotConsumption.__table__.c.lot_id == target.id)
    ).scalar_one()
    if count:
        _block(
            "StockLot",
            target.id,
            "DELETE",
            f"Lot is referenced by {count} consumption(s); reverse them first",
        )


def _check_consumption_immutability(mapper, connection, target):
    """Only the cost snapshot of a consumption may change."""
    _check_frozen_fields(target, "StockLotConsumption", CONSUMPTION_FROZEN_FIELDS)


_LISTENERS: list[tuple[str, str, object]] = [
    ("RecalculationAuditEntry", "before_update", _check_audit_entry_immutability),
    ("RecalculationAuditEntry", "before_delete", _check_audit_entry_delete),
    ("StockLot", "before_update", _check_stock_lot_immutability),
    ("StockLot", "before_delete", _check_stock_lot_delete),
    ("StockLotConsumption", "before_update", _check_consumption_immutability),
]


def _model_targets() -> dict:
    from stock_kernel.models.recalculation_audit import RecalculationAuditEntry
    from stock_kernel.models.stock_lot import StockLot
    from stock_kernel.models.stock_lot_consumption import StockLotConsumption

    return {
        "RecalculationAuditEntry": RecalculationAuditEntry,
        "StockLot": StockLot,
        "StockLotConsumption": StockLotConsumption,
    }


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are not added twice.
    """
    targets = _model_targets()
    for model_name, event_name, listener in _LISTENERS:
        target = targets[model_name]
        if not event.contains(target, event_name, listener):
            event.listen(target, event_name, listener)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that deliberately violate the rules.
    """
    targets = _model_targets()
    for model_name, event_name, listener in _LISTENERS:
        _safe_remove_listener(targets[model_name], event_name, listener)

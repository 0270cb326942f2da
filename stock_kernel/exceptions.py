"""
Typed Exception Hierarchy for the Stock Costing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the costing kernel (invoice handlers, receipt handlers, admin
tooling) must react to failures precisely. Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

Example:
    try:
        inventory.record_sale(...)
    except RecalculationError as e:
        api_response(code=e.code, product=e.product_id)  # nothing was saved
    except ConcurrencyConflictError:
        retry_from_clean_transaction()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- InvalidCostError
    |
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- LotNotFoundError
    |   +-- DemandLineNotFoundError
    |
    +-- InsufficientStockError
    |
    +-- RecalculationError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- InvalidConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                    | When Raised
------------------------|------------------------------------------------------
INVALID_QUANTITY        | Zero or negative quantity (rejected before mutation)
INVALID_COST            | Negative unit cost
PRODUCT_NOT_FOUND       | Product id does not exist
LOT_NOT_FOUND           | Stock lot id does not exist
DEMAND_LINE_NOT_FOUND   | Demand line id does not exist
INSUFFICIENT_STOCK      | Strict operation (supplier return) exceeds stock
RECALCULATION_FAILED    | Any failure during reversal or replay
CONCURRENCY_CONFLICT    | Storage layer reported serialization/deadlock
IMMUTABILITY_VIOLATION  | Audit entry modified, lot identity changed
INVALID_CONFIGURATION   | Costing configuration file is malformed

Stock shortfalls on sales are NOT exceptions: a sale is always recorded and
the shortfall is surfaced as a warning on the consumption result.

ConcurrencyConflictError is the only retryable error. All kernel operations
are safe to re-run from a clean transaction.
"""


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Validation exceptions


class ValidationError(StockKernelError):
    """Base exception for caller input errors."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Requested or received quantity is zero or negative."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: str, context: str):
        self.quantity = quantity
        self.context = context
        super().__init__(
            f"Quantity must be positive for {context}, got {quantity}"
        )


class InvalidCostError(ValidationError):
    """Unit cost is negative."""

    code: str = "INVALID_COST"

    def __init__(self, unit_cost: str, context: str):
        self.unit_cost = unit_cost
        self.context = context
        super().__init__(
            f"Unit cost cannot be negative for {context}, got {unit_cost}"
        )


# Lookup exceptions


class NotFoundError(StockKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    """Product does not exist."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class LotNotFoundError(NotFoundError):
    """Stock lot does not exist."""

    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_id: str):
        self.lot_id = lot_id
        super().__init__(f"Stock lot not found: {lot_id}")


class DemandLineNotFoundError(NotFoundError):
    """Demand line does not exist."""

    code: str = "DEMAND_LINE_NOT_FOUND"

    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__(f"Demand line not found: {line_id}")


# Stock exceptions


class InsufficientStockError(StockKernelError):
    """
    Strict consumption exceeded the eligible stock.

    Only raised by operations that must not degrade (returning goods to a
    supplier). Sales never raise this.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        requested_quantity: str,
        available_quantity: str,
    ):
        self.product_id = product_id
        self.requested_quantity = requested_quantity
        self.available_quantity = available_quantity
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested_quantity}, available {available_quantity}"
        )


# Recalculation exceptions


class RecalculationError(StockKernelError):
    """
    Reversal or replay failed.

    The enclosing transaction MUST be rolled back; lots and COGS are
    mutually inconsistent until it is.
    """

    code: str = "RECALCULATION_FAILED"

    def __init__(self, product_id: str, from_date: str, reason: str):
        self.product_id = product_id
        self.from_date = from_date
        self.reason = reason
        super().__init__(
            f"Recalculation failed for product {product_id} "
            f"from {from_date}: {reason}"
        )


# Concurrency exceptions


class ConcurrencyError(StockKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """The storage layer aborted the transaction on a lot-row conflict."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(
            f"Concurrency conflict during {operation}: {detail}"
        )


# Immutability exceptions


class ImmutabilityError(StockKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record or field."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class InvalidConfigurationError(StockKernelError):
    """Costing configuration failed validation."""

    code: str = "INVALID_CONFIGURATION"

    def __init__(self, field_name: str, reason: str):
        self.field_name = field_name
        self.reason = reason
        super().__init__(f"Invalid configuration for '{field_name}': {reason}")

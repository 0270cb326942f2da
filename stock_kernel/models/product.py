"""
Module: stock_kernel.models.product
Responsibility: Minimal product record the costing kernel reads.  Products are
    owned by the catalogue of the host application; the kernel only needs a
    stable id, a unique sku for lookups, and the fallback cost used when a
    sale draws more than the eligible stock.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - sku is unique.
    - default_cost >= 0 (enforced at service layer); 0 means "none set".
"""

from decimal import Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TimestampedBase


class Product(TimestampedBase):
    """
    Product collaborator record.

    Contract:
        default_cost is the unit cost applied to shortfall quantities.  It is
        refreshed from the latest purchase or opening receipt when
        ``update_default_cost_on_receipt`` is enabled.
    """

    __tablename__ = "products"

    sku: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    default_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    def __repr__(self) -> str:
        return f"<Product {self.sku}: default_cost={self.default_cost}>"

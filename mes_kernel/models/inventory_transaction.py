"""
Module: mes_kernel.models.inventory_transaction
Responsibility: Append-only record of every quantity change on a lot
    (issue to production, consumption, disposal, adjustment, split).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    T1 -- quantity_after = quantity_before - quantity for outbound types
          (ISSUE, CONSUME, DISPOSE, SPLIT).  ADJUST rows carry the signed
          delta: quantity = quantity_after - quantity_before.
    T2 -- Rows are never updated after insert.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mes_kernel.db.base import Base


class TransactionType(str, Enum):
    """Kinds of lot quantity movements."""

    ISSUE = "ISSUE"           # Warehouse issue to production (material request)
    CONSUME = "CONSUME"       # Production consumption
    DISPOSE = "DISPOSE"       # Disposal completion
    ADJUST = "ADJUST"         # Manual quantity correction
    SPLIT = "SPLIT"           # Quantity moved to a child lot


class InventoryTransactionModel(Base):
    """One quantity movement on one lot."""

    __tablename__ = "inventory_transactions"

    __table_args__ = (
        Index("idx_inv_txn_tenant_lot", "tenant_id", "lot_id"),
        Index("idx_inv_txn_reference", "reference_no"),
        Index("idx_inv_txn_transacted_at", "transacted_at"),
    )

    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)

    lot_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("lots.id"),
        nullable=False,
    )

    lot_no: Mapped[str] = mapped_column(String(100), nullable=False)

    warehouse_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    quantity_before: Mapped[Decimal] = mapped_column(nullable=False)

    quantity_after: Mapped[Decimal] = mapped_column(nullable=False)

    reference_no: Mapped[str | None] = mapped_column(String(100), nullable=True)

    actor_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    transacted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<InventoryTransaction {self.id}: {self.transaction_type} "
            f"lot={self.lot_no} qty={self.quantity}>"
        )

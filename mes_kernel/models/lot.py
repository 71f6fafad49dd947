"""
Module: mes_kernel.models.lot
Responsibility: ORM persistence for inventory lots.  Each lot is a traceable
    batch of one product held at one warehouse, with its own quantity,
    manufacturing/expiry dates and quality status.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    L1 -- 0 <= current_quantity <= initial_quantity (CHECK constraints and
          service-layer validation).
    L2 -- lot_no is unique within a tenant.
    L3 -- Optimistic locking.  ``version`` is SQLAlchemy's version_id_col;
          an UPDATE against a stale version raises StaleDataError.
    L4 -- Soft delete only.  Lots referenced by inventory transactions are
          deactivated (is_active=False), never deleted.

Failure modes:
    - IntegrityError on duplicate (tenant_id, lot_no) or CHECK violation.
    - StaleDataError on concurrent update (translated by the consumption
      service into ConcurrentModificationError).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from mes_kernel.db.base import TrackedBase
from mes_kernel.domain.lot import LotSnapshot, QualityStatus


class LotModel(TrackedBase):
    """
    Persistent storage for inventory lots.

    Guarantees:
        - (tenant_id, warehouse_id, product_id) index supports allocation
          queries; (product_id, manufacturing_date) and (product_id,
          expiry_date) indexes support FIFO/FEFO ordering.
        - ``to_snapshot()`` returns a frozen LotSnapshot for engines.
    """

    __tablename__ = "lots"

    __table_args__ = (
        UniqueConstraint("tenant_id", "lot_no", name="uk_lot_tenant_lot_no"),
        CheckConstraint("current_quantity >= 0", name="ck_lot_current_non_negative"),
        CheckConstraint(
            "current_quantity <= initial_quantity",
            name="ck_lot_current_within_initial",
        ),
        # Query: eligible lots for an allocation scope
        Index("idx_lot_scope", "tenant_id", "warehouse_id", "product_id"),
        # Query: FIFO ordering
        Index("idx_lot_product_mfg_date", "product_id", "manufacturing_date"),
        # Query: FEFO ordering and expiring-lot discovery
        Index("idx_lot_tenant_expiry", "tenant_id", "expiry_date"),
        Index("idx_lot_quality_status", "quality_status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False)

    warehouse_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    work_order_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    lot_no: Mapped[str] = mapped_column(String(100), nullable=False)

    batch_no: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # INVARIANT L1: fixed at creation
    initial_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    # INVARIANT L1: decremented by consumption, split, adjustment
    current_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="EA")

    manufacturing_date: Mapped[date] = mapped_column(Date, nullable=False)

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    quality_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=QualityStatus.PENDING.value,
    )

    supplier_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    supplier_lot_no: Mapped[str | None] = mapped_column(String(100), nullable=True)

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # INVARIANT L4
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # INVARIANT L3
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def to_snapshot(self) -> LotSnapshot:
        return LotSnapshot(
            lot_id=self.id,
            lot_no=self.lot_no,
            tenant_id=self.tenant_id,
            warehouse_id=self.warehouse_id,
            product_id=self.product_id,
            current_quantity=self.current_quantity,
            initial_quantity=self.initial_quantity,
            unit=self.unit,
            manufacturing_date=self.manufacturing_date,
            expiry_date=self.expiry_date,
            quality_status=QualityStatus(self.quality_status),
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return (
            f"<Lot {self.id}: {self.lot_no} product={self.product_id} "
            f"qty={self.current_quantity}/{self.initial_quantity} {self.unit}>"
        )

"""
Module: mes_kernel.models.return_order
Responsibility: ORM persistence for material returns (production -> warehouse)
    and their line items with receiving / inspection quantities.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    R1 -- return_no is unique within a tenant (RT-YYYYMMDD-NNNN).
    R2 -- header totals equal the sums of item quantities; missing item
          quantities count as zero (recomputed by the service).
    R3 -- per item: passed + failed <= received <= return quantity
          (service layer).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mes_kernel.db.base import Base, TrackedBase


class ReturnType(str, Enum):
    DEFECTIVE = "DEFECTIVE"
    EXCESS = "EXCESS"
    WRONG_DELIVERY = "WRONG_DELIVERY"
    OTHER = "OTHER"


class ReturnModel(TrackedBase):
    """A material return document."""

    __tablename__ = "returns"

    __table_args__ = (
        UniqueConstraint("tenant_id", "return_no", name="uk_return_no"),
        Index("idx_return_status", "tenant_id", "return_status"),
        Index("idx_return_type", "tenant_id", "return_type"),
    )

    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False)

    return_no: Mapped[str] = mapped_column(String(50), nullable=False)

    return_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    return_type: Mapped[str] = mapped_column(String(30), nullable=False)

    material_request_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("material_requests.id"),
        nullable=True,
    )

    work_order_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    warehouse_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    requester_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    requester_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # PENDING, APPROVED, REJECTED, RECEIVED, INSPECTING, COMPLETED, CANCELLED
    return_status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="PENDING",
    )

    approver_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    approver_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    received_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # INVARIANT R2
    total_return_quantity: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    total_received_quantity: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    total_passed_quantity: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    total_failed_quantity: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    items: Mapped[list[ReturnItemModel]] = relationship(
        back_populates="return_order",
        cascade="all, delete-orphan",
        order_by="ReturnItemModel.id",
    )

    def calculate_totals(self) -> None:
        zero = Decimal("0")
        self.total_return_quantity = sum(
            (i.return_quantity for i in self.items), zero
        )
        self.total_received_quantity = sum(
            (i.received_quantity or zero for i in self.items), zero
        )
        self.total_passed_quantity = sum(
            (i.passed_quantity or zero for i in self.items), zero
        )
        self.total_failed_quantity = sum(
            (i.failed_quantity or zero for i in self.items), zero
        )

    def __repr__(self) -> str:
        return f"<Return {self.id}: {self.return_no} {self.return_status}>"


class ReturnItemModel(Base):
    """One product/lot line of a return."""

    __tablename__ = "return_items"

    return_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("returns.id"),
        nullable=False,
    )

    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    lot_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("lots.id"),
        nullable=True,
    )

    lot_no: Mapped[str | None] = mapped_column(String(100), nullable=True)

    return_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    # INVARIANT R3
    received_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    passed_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    failed_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)

    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    return_order: Mapped[ReturnModel] = relationship(back_populates="items")

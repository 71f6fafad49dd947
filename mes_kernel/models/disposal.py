"""
Module: mes_kernel.models.disposal
Responsibility: ORM persistence for disposal documents (scrapping of
    defective, expired, damaged or obsolete stock) and their line items.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    D1 -- disposal_no is unique within a tenant (DIS-YYYYMMDD-NNNN).
    D2 -- total_disposal_quantity equals the sum of item quantities
          (recomputed by the service on create and complete).
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


class DisposalType(str, Enum):
    DEFECTIVE = "DEFECTIVE"
    EXPIRED = "EXPIRED"
    DAMAGED = "DAMAGED"
    OBSOLETE = "OBSOLETE"
    OTHER = "OTHER"


class DisposalModel(TrackedBase):
    """A disposal document."""

    __tablename__ = "disposals"

    __table_args__ = (
        UniqueConstraint("tenant_id", "disposal_no", name="uk_disposal_no"),
        Index("idx_disposal_status", "tenant_id", "disposal_status"),
        Index("idx_disposal_type", "tenant_id", "disposal_type"),
    )

    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False)

    disposal_no: Mapped[str] = mapped_column(String(50), nullable=False)

    disposal_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    disposal_type: Mapped[str] = mapped_column(String(30), nullable=False)

    work_order_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    warehouse_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    requester_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    requester_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # PENDING, APPROVED, REJECTED, PROCESSED, COMPLETED, CANCELLED
    disposal_status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="PENDING",
    )

    approver_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    approver_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    processor_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    processor_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Incineration, landfill, outsourced treatment, recycling, ...
    disposal_method: Mapped[str | None] = mapped_column(String(100), nullable=True)
    disposal_location: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # INVARIANT D2
    total_disposal_quantity: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    items: Mapped[list[DisposalItemModel]] = relationship(
        back_populates="disposal",
        cascade="all, delete-orphan",
        order_by="DisposalItemModel.id",
    )

    def calculate_totals(self) -> None:
        self.total_disposal_quantity = sum(
            (item.disposal_quantity for item in self.items),
            Decimal("0"),
        )

    def __repr__(self) -> str:
        return f"<Disposal {self.id}: {self.disposal_no} {self.disposal_status}>"


class DisposalItemModel(Base):
    """One product/lot line of a disposal."""

    __tablename__ = "disposal_items"

    disposal_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("disposals.id"),
        nullable=False,
    )

    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    lot_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("lots.id"),
        nullable=True,
    )

    lot_no: Mapped[str | None] = mapped_column(String(100), nullable=True)

    disposal_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    disposal: Mapped[DisposalModel] = relationship(back_populates="items")

"""
Module: mes_kernel.models.material_handover
Responsibility: ORM persistence for material requests and the handovers
    (warehouse -> production) issued against them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    H1 -- handover_no is unique within a tenant.
    H2 -- handover_status is one of PENDING, CONFIRMED, REJECTED; only the
          assigned receiver moves it out of PENDING (service layer).
    H3 -- A request in ISSUED status whose handovers are all CONFIRMED is
          completed automatically (service layer).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mes_kernel.db.base import TrackedBase


class MaterialRequestModel(TrackedBase):
    """A production request for materials from a warehouse."""

    __tablename__ = "material_requests"

    __table_args__ = (
        UniqueConstraint("tenant_id", "request_no", name="uk_material_request_no"),
        Index("idx_material_request_status", "tenant_id", "request_status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False)

    request_no: Mapped[str] = mapped_column(String(50), nullable=False)

    warehouse_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    requester_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # PENDING, APPROVED, ISSUED, COMPLETED, REJECTED, CANCELLED
    request_status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="PENDING",
    )

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    handovers: Mapped[list[MaterialHandoverModel]] = relationship(
        back_populates="material_request",
        order_by="MaterialHandoverModel.id",
    )

    def __repr__(self) -> str:
        return f"<MaterialRequest {self.id}: {self.request_no} {self.request_status}>"


class MaterialHandoverModel(TrackedBase):
    """One lot quantity handed from the warehouse to production."""

    __tablename__ = "material_handovers"

    __table_args__ = (
        UniqueConstraint("tenant_id", "handover_no", name="uk_material_handover_no"),
        Index("idx_material_handover_request", "material_request_id"),
        Index("idx_material_handover_receiver", "receiver_id", "handover_status"),
        Index("idx_material_handover_status", "tenant_id", "handover_status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False)

    material_request_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("material_requests.id"),
        nullable=False,
    )

    inventory_transaction_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("inventory_transactions.id"),
        nullable=True,
    )

    handover_no: Mapped[str] = mapped_column(String(50), nullable=False)

    handover_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    lot_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("lots.id"),
        nullable=True,
    )

    lot_no: Mapped[str | None] = mapped_column(String(100), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Issuer (warehouse side)
    issuer_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    issuer_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    issue_location: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Receiver (production side)
    receiver_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    receiver_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    receive_location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # INVARIANT H2
    handover_status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="PENDING",
    )

    confirmation_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    material_request: Mapped[MaterialRequestModel] = relationship(
        back_populates="handovers",
    )

    def __repr__(self) -> str:
        return (
            f"<MaterialHandover {self.id}: {self.handover_no} "
            f"{self.handover_status} qty={self.quantity}>"
        )

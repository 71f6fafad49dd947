"""
mes_kernel.domain.lot -- Lot snapshot and allocation value objects.

Responsibility:
    Immutable value objects exchanged between the lot selectors, the pure
    selection engine, and the allocation / consumption services:
    LotSnapshot, Allocation, AllocationBatch, and the quality-status
    eligibility policy.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.  MUST NOT import
    db/, models/, selectors/ or outer layers.

Invariants enforced:
    - LotSnapshot: 0 <= current_quantity <= initial_quantity.
    - Allocation: 0 < allocated_quantity <= available_quantity.
    - AllocationBatch: allocations are kept in selection order.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum


class QualityStatus(str, Enum):
    """Quality disposition of a lot."""

    PENDING = "PENDING"   # Awaiting inspection
    PASS = "PASS"         # Released for use
    HOLD = "HOLD"         # Quarantined pending investigation
    REJECT = "REJECT"     # Failed inspection


class AllocationStrategy(str, Enum):
    """Lot selection strategies."""

    FIFO = "fifo"           # Oldest manufacturing date first
    FEFO = "fefo"           # Earliest expiry date first
    SPECIFIC = "specific"   # Caller names the lot


@dataclass(frozen=True, slots=True)
class LotSnapshot:
    """
    Read-only copy of a lot's state at selection time.

    Selectors build snapshots from ORM rows; engines never see the rows.
    """

    lot_id: int
    lot_no: str
    tenant_id: str
    warehouse_id: int
    product_id: int
    current_quantity: Decimal
    initial_quantity: Decimal
    unit: str
    manufacturing_date: date
    expiry_date: date | None = None
    quality_status: QualityStatus = QualityStatus.PASS
    is_active: bool = True

    def __post_init__(self) -> None:
        if self.current_quantity < 0:
            raise ValueError(
                f"Lot {self.lot_no} current quantity cannot be negative, "
                f"got {self.current_quantity}"
            )
        if self.current_quantity > self.initial_quantity:
            raise ValueError(
                f"Lot {self.lot_no} current quantity {self.current_quantity} "
                f"exceeds initial quantity {self.initial_quantity}"
            )

    @property
    def is_exhausted(self) -> bool:
        return self.current_quantity == 0

    def matches_scope(self, tenant_id: str, warehouse_id: int, product_id: int) -> bool:
        """True if the lot belongs to the given tenant/warehouse/product."""
        return (
            self.tenant_id == tenant_id
            and self.warehouse_id == warehouse_id
            and self.product_id == product_id
        )


@dataclass(frozen=True, slots=True)
class Allocation:
    """A quantity drawn from one lot to satisfy part of a requirement."""

    lot_id: int
    lot_no: str
    allocated_quantity: Decimal
    available_quantity: Decimal
    expiry_date: date | None = None

    def __post_init__(self) -> None:
        if self.allocated_quantity <= 0:
            raise ValueError(
                f"Allocated quantity must be positive, got {self.allocated_quantity}"
            )
        if self.allocated_quantity > self.available_quantity:
            raise ValueError(
                f"Allocated quantity {self.allocated_quantity} exceeds "
                f"available {self.available_quantity} on lot {self.lot_no}"
            )

    @property
    def remaining_after(self) -> Decimal:
        """Lot quantity left once this allocation is consumed."""
        return self.available_quantity - self.allocated_quantity


@dataclass(frozen=True, slots=True)
class AllocationBatch:
    """Ordered result of one selection call."""

    strategy: AllocationStrategy
    required_quantity: Decimal
    allocations: tuple[Allocation, ...]

    @property
    def total_allocated(self) -> Decimal:
        return sum((a.allocated_quantity for a in self.allocations), Decimal("0"))

    @property
    def lot_count(self) -> int:
        return len(self.allocations)

    @property
    def is_fully_allocated(self) -> bool:
        return self.total_allocated == self.required_quantity

    @property
    def lot_ids(self) -> tuple[int, ...]:
        return tuple(a.lot_id for a in self.allocations)

    def __iter__(self):
        return iter(self.allocations)

    def __len__(self) -> int:
        return len(self.allocations)


@dataclass(frozen=True)
class EligibilityPolicy:
    """
    Decides which lots may be allocated.

    A lot is eligible when it is active, not exhausted, and its quality
    status is one of ``admitted_statuses``.
    """

    admitted_statuses: frozenset[QualityStatus] = frozenset({QualityStatus.PASS})

    @classmethod
    def from_status_names(cls, names: Iterable[str]) -> EligibilityPolicy:
        return cls(admitted_statuses=frozenset(QualityStatus(n) for n in names))

    def is_eligible(self, lot: LotSnapshot) -> bool:
        return (
            lot.is_active
            and not lot.is_exhausted
            and lot.quality_status in self.admitted_statuses
        )

    def __call__(self, lot: LotSnapshot) -> bool:
        return self.is_eligible(lot)


# Any predicate over a snapshot can stand in for EligibilityPolicy.
EligibilityPredicate = Callable[[LotSnapshot], bool]

"""
mes_services.lot_consumption_service -- Apply allocations to lot stock.

Responsibility:
    The transactional half of allocation.  Takes an AllocationBatch
    computed from a snapshot, re-reads the lots under a row lock,
    re-validates that each still holds the allocated quantity, decrements
    ``current_quantity`` and records one inventory transaction per
    allocation.

Architecture position:
    Services -- stateful orchestration.  Holds the caller's Session; never
    commits or rolls back (the caller owns the transaction boundary).

Invariants enforced:
    - Stock never goes negative: ``current_quantity >= allocated_quantity``
      is re-checked under ``SELECT ... FOR UPDATE`` immediately before the
      write.
    - All-or-nothing: every allocation is validated before any lot is
      decremented.
    - Optimistic locking: LotModel.version is bumped on each write; a
      StaleDataError on flush is translated to ConcurrentModificationError.
    - Lots are locked in lot_id order.

Failure modes:
    - ValidationError on an empty tenant or empty batch.
    - LotNotFoundError if an allocated lot no longer exists for the tenant.
    - ConcurrentModificationError if a lot was drawn down, deactivated or
      version-bumped since the batch was computed.  The caller should roll
      back and may re-run selection.

Audit relevance:
    Every decrement produces an InventoryTransactionModel row with the
    before/after quantities, reference number and actor.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from mes_kernel.domain.clock import Clock, SystemClock
from mes_kernel.domain.lot import Allocation, AllocationBatch
from mes_kernel.exceptions import (
    ConcurrentModificationError,
    LotNotFoundError,
    ValidationError,
)
from mes_kernel.logging_config import get_logger
from mes_kernel.models.inventory_transaction import (
    InventoryTransactionModel,
    TransactionType,
)
from mes_kernel.models.lot import LotModel

logger = get_logger("services.lot_consumption")


@dataclass(frozen=True)
class ConsumptionRecord:
    """One lot decrement."""

    lot_id: int
    lot_no: str
    quantity: Decimal
    quantity_before: Decimal
    quantity_after: Decimal
    transaction_id: int


@dataclass(frozen=True)
class ConsumptionResult:
    """Outcome of consuming one batch."""

    transaction_type: TransactionType
    reference_no: str | None
    records: tuple[ConsumptionRecord, ...]

    @property
    def total_consumed(self) -> Decimal:
        return sum((r.quantity for r in self.records), Decimal("0"))


class LotConsumptionService:
    """
    Decrements lot stock from allocations.

    Contract:
        Receives Session and Clock via constructor injection.  Runs inside
        the caller's transaction and only flushes.
    Guarantees:
        - Either every allocation is applied or none is.
        - One InventoryTransactionModel per allocation.
    Non-goals:
        - Does not select lots; see LotAllocator.
        - Does not retry on ConcurrentModificationError.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def consume(
        self,
        tenant_id: str,
        batch: AllocationBatch | Iterable[Allocation],
        transaction_type: TransactionType = TransactionType.CONSUME,
        reference_no: str | None = None,
        actor_id: int | None = None,
        remarks: str | None = None,
    ) -> ConsumptionResult:
        """
        Apply every allocation of ``batch`` to its lot.

        Args:
            tenant_id: Tenant owning the lots.
            batch: Allocations to apply, usually an AllocationBatch.
            transaction_type: Kind of movement recorded per allocation.
            reference_no: Document number the movement belongs to.
            actor_id: User performing the movement.
            remarks: Free text copied onto each transaction.

        Returns:
            ConsumptionResult with one record per allocation, in batch order.

        Raises:
            ConcurrentModificationError: A lot changed since selection.
            LotNotFoundError: A lot vanished or belongs to another tenant.
        """
        if not tenant_id:
            raise ValidationError("tenant_id", "must not be empty")
        allocations = tuple(batch)
        if not allocations:
            raise ValidationError("batch", "contains no allocations")

        logger.info("lot_consumption_started", extra={
            "tenant_id": tenant_id,
            "transaction_type": transaction_type.value,
            "reference_no": reference_no,
            "lot_count": len(allocations),
        })

        lots = self._lock_lots(tenant_id, {a.lot_id for a in allocations})

        # Validate everything before touching anything.
        required: dict[int, Decimal] = {}
        for allocation in allocations:
            required[allocation.lot_id] = (
                required.get(allocation.lot_id, Decimal("0"))
                + allocation.allocated_quantity
            )
        for lot_id, quantity in required.items():
            lot = lots.get(lot_id)
            if lot is None:
                logger.warning("lot_consumption_lot_missing", extra={
                    "tenant_id": tenant_id,
                    "lot_id": lot_id,
                })
                raise LotNotFoundError(lot_id, tenant_id)
            if not lot.is_active or lot.current_quantity < quantity:
                logger.warning("lot_consumption_conflict", extra={
                    "tenant_id": tenant_id,
                    "lot_id": lot_id,
                    "expected_quantity": str(quantity),
                    "actual_quantity": str(lot.current_quantity),
                    "is_active": lot.is_active,
                })
                raise ConcurrentModificationError(
                    lot_id,
                    expected_quantity=quantity,
                    actual_quantity=lot.current_quantity,
                )

        now = self._clock.now()
        records: list[ConsumptionRecord] = []
        for allocation in allocations:
            lot = lots[allocation.lot_id]
            before = lot.current_quantity
            after = before - allocation.allocated_quantity
            lot.current_quantity = after

            txn = InventoryTransactionModel(
                tenant_id=tenant_id,
                transaction_type=transaction_type.value,
                lot_id=lot.id,
                lot_no=lot.lot_no,
                warehouse_id=lot.warehouse_id,
                product_id=lot.product_id,
                quantity=allocation.allocated_quantity,
                quantity_before=before,
                quantity_after=after,
                reference_no=reference_no,
                actor_id=actor_id,
                remarks=remarks,
                transacted_at=now,
            )
            self._session.add(txn)
            try:
                self._session.flush()
            except StaleDataError as exc:
                logger.warning("lot_consumption_stale_version", extra={
                    "tenant_id": tenant_id,
                    "lot_id": lot.id,
                })
                raise ConcurrentModificationError(lot.id) from exc

            records.append(
                ConsumptionRecord(
                    lot_id=lot.id,
                    lot_no=lot.lot_no,
                    quantity=allocation.allocated_quantity,
                    quantity_before=before,
                    quantity_after=after,
                    transaction_id=txn.id,
                )
            )
            logger.info("lot_consumed", extra={
                "lot_id": lot.id,
                "lot_no": lot.lot_no,
                "quantity": str(allocation.allocated_quantity),
                "quantity_after": str(after),
            })

        result = ConsumptionResult(
            transaction_type=transaction_type,
            reference_no=reference_no,
            records=tuple(records),
        )
        logger.info("lot_consumption_completed", extra={
            "tenant_id": tenant_id,
            "reference_no": reference_no,
            "total_consumed": str(result.total_consumed),
        })
        return result

    def _lock_lots(self, tenant_id: str, lot_ids: set[int]) -> dict[int, LotModel]:
        stmt = (
            select(LotModel)
            .where(LotModel.tenant_id == tenant_id, LotModel.id.in_(lot_ids))
            .order_by(LotModel.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {lot.id: lot for lot in self._session.scalars(stmt)}

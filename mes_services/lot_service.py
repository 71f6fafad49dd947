"""
mes_services.lot_service -- Lot lifecycle management.

Responsibility:
    Create, look up, split, re-grade, adjust and deactivate lots.  Every
    quantity change made here (split, adjustment) is recorded as an
    inventory transaction.

Architecture position:
    Services -- stateful orchestration over LotModel.  Flushes but never
    commits; the caller owns the transaction.

Invariants enforced:
    - lot_no unique within a tenant (LotAlreadyExistsError).
    - 0 <= current_quantity <= initial_quantity after every operation.
    - Split: 0 < split_quantity < parent.current_quantity; the child takes
      the first free ``<parent>-SNN`` number.
    - Lots are deactivated, never deleted.
    - Mutations load the lot with SELECT ... FOR UPDATE and re-validate
      against the freshly read row.

Failure modes:
    - ValidationError for non-positive quantities, bad dates, or an
      adjustment outside [0, initial_quantity].
    - LotNotFoundError when a lot id / number is unknown to the tenant.
    - InvalidSplitQuantityError for an out-of-range split.
    - ConcurrentModificationError when the locked row changed version
      before the flush.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from mes_kernel.domain.clock import Clock, SystemClock
from mes_kernel.domain.lot import QualityStatus
from mes_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidSplitQuantityError,
    LotAlreadyExistsError,
    LotNotFoundError,
    ValidationError,
)
from mes_kernel.logging_config import get_logger
from mes_kernel.models.inventory_transaction import (
    InventoryTransactionModel,
    TransactionType,
)
from mes_kernel.models.lot import LotModel

logger = get_logger("services.lot")

SPLIT_SUFFIX_FORMAT = "{parent}-S{index:02d}"


class LotService:
    """
    Lot CRUD plus split and quantity adjustment.

    Contract:
        Receives Session and Clock via constructor injection.
    Guarantees:
        - Returned LotModel rows are flushed and carry their id.
        - Split and adjust write one InventoryTransactionModel each.
    Non-goals:
        - Does not allocate or consume stock; see LotAllocator and
          LotConsumptionService.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_lot(
        self,
        tenant_id: str,
        lot_no: str,
        warehouse_id: int,
        product_id: int,
        initial_quantity: Decimal,
        manufacturing_date: date,
        unit: str = "EA",
        expiry_date: date | None = None,
        quality_status: QualityStatus = QualityStatus.PENDING,
        work_order_id: int | None = None,
        batch_no: str | None = None,
        supplier_name: str | None = None,
        supplier_lot_no: str | None = None,
        remarks: str | None = None,
    ) -> LotModel:
        """
        Register a new lot with ``current_quantity == initial_quantity``.

        Raises:
            ValidationError: Empty tenant / lot_no, non-positive quantity,
                or expiry before manufacture.
            LotAlreadyExistsError: lot_no already used by the tenant.
        """
        if not tenant_id:
            raise ValidationError("tenant_id", "must not be empty")
        if not lot_no:
            raise ValidationError("lot_no", "must not be empty")
        if initial_quantity is None or initial_quantity <= 0:
            raise ValidationError(
                "initial_quantity", f"must be positive, got {initial_quantity}"
            )
        if expiry_date is not None and expiry_date < manufacturing_date:
            raise ValidationError(
                "expiry_date",
                f"{expiry_date} is before manufacturing date {manufacturing_date}",
            )
        if self._find_by_lot_no(tenant_id, lot_no) is not None:
            logger.warning("lot_already_exists", extra={
                "tenant_id": tenant_id,
                "lot_no": lot_no,
            })
            raise LotAlreadyExistsError(lot_no, tenant_id)

        lot = LotModel(
            tenant_id=tenant_id,
            lot_no=lot_no,
            warehouse_id=warehouse_id,
            product_id=product_id,
            work_order_id=work_order_id,
            batch_no=batch_no,
            initial_quantity=initial_quantity,
            current_quantity=initial_quantity,
            unit=unit,
            manufacturing_date=manufacturing_date,
            expiry_date=expiry_date,
            quality_status=QualityStatus(quality_status).value,
            supplier_name=supplier_name,
            supplier_lot_no=supplier_lot_no,
            remarks=remarks,
            is_active=True,
        )
        self._session.add(lot)
        self._session.flush()

        logger.info("lot_created", extra={
            "tenant_id": tenant_id,
            "lot_id": lot.id,
            "lot_no": lot_no,
            "product_id": product_id,
            "warehouse_id": warehouse_id,
            "quantity": str(initial_quantity),
            "quality_status": lot.quality_status,
        })
        return lot

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_lot(self, tenant_id: str, lot_id: int) -> LotModel:
        lot = self._session.scalars(
            select(LotModel).where(
                LotModel.id == lot_id,
                LotModel.tenant_id == tenant_id,
            )
        ).one_or_none()
        if lot is None:
            raise LotNotFoundError(lot_id, tenant_id)
        return lot

    def find_by_lot_no(self, tenant_id: str, lot_no: str) -> LotModel:
        lot = self._find_by_lot_no(tenant_id, lot_no)
        if lot is None:
            raise LotNotFoundError(lot_no, tenant_id)
        return lot

    def list_lots(
        self,
        tenant_id: str,
        product_id: int | None = None,
        quality_status: QualityStatus | None = None,
        include_inactive: bool = False,
    ) -> list[LotModel]:
        """Lots of a tenant, optionally narrowed, ordered by id."""
        stmt = select(LotModel).where(LotModel.tenant_id == tenant_id)
        if product_id is not None:
            stmt = stmt.where(LotModel.product_id == product_id)
        if quality_status is not None:
            stmt = stmt.where(
                LotModel.quality_status == QualityStatus(quality_status).value
            )
        if not include_inactive:
            stmt = stmt.where(LotModel.is_active.is_(True))
        return list(self._session.scalars(stmt.order_by(LotModel.id)))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def split_lot(
        self,
        tenant_id: str,
        parent_lot_id: int,
        split_quantity: Decimal,
        remarks: str | None = None,
        actor_id: int | None = None,
    ) -> LotModel:
        """
        Move ``split_quantity`` from a lot into a new child lot.

        The child copies product, warehouse, dates, unit, batch, supplier,
        work order and quality status from the parent.

        Returns:
            The child LotModel.

        Raises:
            LotNotFoundError: Parent unknown or inactive.
            InvalidSplitQuantityError: split_quantity not in (0, current).
            ConcurrentModificationError: Parent changed during the flush.
        """
        parent = self._lock_lot(tenant_id, parent_lot_id)
        if not parent.is_active:
            raise LotNotFoundError(parent_lot_id, tenant_id, reason="inactive")
        if split_quantity is None or not (0 < split_quantity < parent.current_quantity):
            logger.warning("lot_split_rejected", extra={
                "lot_id": parent.id,
                "split_quantity": str(split_quantity),
                "current_quantity": str(parent.current_quantity),
            })
            raise InvalidSplitQuantityError(
                parent.id, split_quantity, parent.current_quantity,
            )

        child_lot_no = self._next_split_lot_no(tenant_id, parent.lot_no)
        before = parent.current_quantity
        parent.current_quantity = before - split_quantity

        child = LotModel(
            tenant_id=tenant_id,
            lot_no=child_lot_no,
            warehouse_id=parent.warehouse_id,
            product_id=parent.product_id,
            work_order_id=parent.work_order_id,
            batch_no=parent.batch_no,
            initial_quantity=split_quantity,
            current_quantity=split_quantity,
            unit=parent.unit,
            manufacturing_date=parent.manufacturing_date,
            expiry_date=parent.expiry_date,
            quality_status=parent.quality_status,
            supplier_name=parent.supplier_name,
            supplier_lot_no=parent.supplier_lot_no,
            remarks=remarks if remarks is not None else f"Split from {parent.lot_no}",
            is_active=True,
        )
        self._session.add(child)
        self._session.add(
            InventoryTransactionModel(
                tenant_id=tenant_id,
                transaction_type=TransactionType.SPLIT.value,
                lot_id=parent.id,
                lot_no=parent.lot_no,
                warehouse_id=parent.warehouse_id,
                product_id=parent.product_id,
                quantity=split_quantity,
                quantity_before=before,
                quantity_after=parent.current_quantity,
                reference_no=child_lot_no,
                actor_id=actor_id,
                remarks=f"Split into {child_lot_no}",
                transacted_at=self._clock.now(),
            )
        )
        self._flush(tenant_id, parent)

        logger.info("lot_split", extra={
            "tenant_id": tenant_id,
            "parent_lot_id": parent.id,
            "parent_lot_no": parent.lot_no,
            "child_lot_id": child.id,
            "child_lot_no": child_lot_no,
            "split_quantity": str(split_quantity),
            "parent_quantity_before": str(before),
            "parent_quantity_after": str(parent.current_quantity),
        })
        return child

    def update_quality_status(
        self,
        tenant_id: str,
        lot_id: int,
        quality_status: QualityStatus,
    ) -> LotModel:
        lot = self._lock_lot(tenant_id, lot_id)
        previous = lot.quality_status
        lot.quality_status = QualityStatus(quality_status).value
        self._flush(tenant_id, lot)
        logger.info("lot_quality_status_updated", extra={
            "lot_id": lot.id,
            "lot_no": lot.lot_no,
            "from_status": previous,
            "to_status": lot.quality_status,
        })
        return lot

    def adjust_quantity(
        self,
        tenant_id: str,
        lot_id: int,
        new_quantity: Decimal,
        reason: str,
        actor_id: int | None = None,
    ) -> LotModel:
        """
        Set a lot's current quantity directly (stock count correction).

        Raises:
            ValidationError: new_quantity outside [0, initial_quantity] or
                no reason given.
            ConcurrentModificationError: Lot changed during the flush.
        """
        if not reason:
            raise ValidationError("reason", "is required for a quantity adjustment")
        lot = self._lock_lot(tenant_id, lot_id)
        if new_quantity is None or not (0 <= new_quantity <= lot.initial_quantity):
            raise ValidationError(
                "new_quantity",
                f"must be between 0 and {lot.initial_quantity}, got {new_quantity}",
            )

        before = lot.current_quantity
        lot.current_quantity = new_quantity
        self._session.add(
            InventoryTransactionModel(
                tenant_id=tenant_id,
                transaction_type=TransactionType.ADJUST.value,
                lot_id=lot.id,
                lot_no=lot.lot_no,
                warehouse_id=lot.warehouse_id,
                product_id=lot.product_id,
                quantity=new_quantity - before,
                quantity_before=before,
                quantity_after=new_quantity,
                actor_id=actor_id,
                remarks=reason,
                transacted_at=self._clock.now(),
            )
        )
        self._flush(tenant_id, lot)
        logger.info("lot_quantity_adjusted", extra={
            "lot_id": lot.id,
            "lot_no": lot.lot_no,
            "quantity_before": str(before),
            "quantity_after": str(new_quantity),
            "reason": reason,
        })
        return lot

    def deactivate_lot(self, tenant_id: str, lot_id: int) -> LotModel:
        lot = self._lock_lot(tenant_id, lot_id)
        lot.is_active = False
        self._flush(tenant_id, lot)
        logger.info("lot_deactivated", extra={"lot_id": lot.id, "lot_no": lot.lot_no})
        return lot

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_lot(self, tenant_id: str, lot_id: int) -> LotModel:
        """Load one lot FOR UPDATE, refreshing any copy already in the session."""
        stmt = (
            select(LotModel)
            .where(LotModel.id == lot_id, LotModel.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        lot = self._session.scalars(stmt).one_or_none()
        if lot is None:
            raise LotNotFoundError(lot_id, tenant_id)
        return lot

    def _flush(self, tenant_id: str, lot: LotModel) -> None:
        lot_id = lot.id
        try:
            self._session.flush()
        except StaleDataError as exc:
            logger.warning("lot_stale_version", extra={
                "tenant_id": tenant_id,
                "lot_id": lot_id,
            })
            raise ConcurrentModificationError(lot_id) from exc

    def _find_by_lot_no(self, tenant_id: str, lot_no: str) -> LotModel | None:
        return self._session.scalars(
            select(LotModel).where(
                LotModel.tenant_id == tenant_id,
                LotModel.lot_no == lot_no,
            )
        ).one_or_none()

    def _next_split_lot_no(self, tenant_id: str, parent_lot_no: str) -> str:
        index = 1
        while True:
            candidate = SPLIT_SUFFIX_FORMAT.format(parent=parent_lot_no, index=index)
            if self._find_by_lot_no(tenant_id, candidate) is None:
                return candidate
            index += 1

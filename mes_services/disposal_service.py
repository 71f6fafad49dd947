"""
mes_services.disposal_service -- Stock disposal documents.

Responsibility:
    Create disposal requests for defective, expired or damaged stock and
    drive them through approval, processing and completion.  Completion
    writes the disposed quantities off their lots.

Architecture position:
    Services -- stateful orchestration.  Status rules come from
    DISPOSAL_WORKFLOW via WorkflowExecutor; lot decrements go through
    LotConsumptionService.  Flushes; never commits.

Invariants enforced:
    - disposal_no is ``DIS-YYYYMMDD-NNNN``, unique per tenant.
    - total_disposal_quantity equals the sum of item quantities.
    - Only PENDING disposals may be deleted.
    - Completion decrements every item that names a lot (DISPOSE
      transactions, reference = disposal_no); items without a lot are
      records only.

Failure modes:
    - ValidationError for empty items or non-positive quantities.
    - LotNotFoundError at creation when an item names another tenant's
      lot or an unknown one.
    - DocumentNotFoundError, InvalidStatusTransitionError,
      UnauthorizedActorError, DocumentNotDeletableError.
    - ConcurrentModificationError / LotNotFoundError at completion when
      a lot no longer holds the disposed quantity.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from mes_config import MesConfig, get_active_config
from mes_kernel.domain.clock import Clock, SystemClock
from mes_kernel.domain.lot import Allocation, AllocationBatch, AllocationStrategy
from mes_kernel.domain.workflow import Actor
from mes_kernel.exceptions import (
    DocumentNotDeletableError,
    DocumentNotFoundError,
    LotNotFoundError,
    ValidationError,
)
from mes_kernel.logging_config import get_logger
from mes_kernel.models.disposal import DisposalItemModel, DisposalModel, DisposalType
from mes_kernel.models.inventory_transaction import TransactionType
from mes_kernel.models.lot import LotModel
from mes_services.document_numbers import DISPOSAL_PREFIX, next_document_no
from mes_services.lot_consumption_service import LotConsumptionService
from mes_services.workflow_executor import WorkflowExecutor
from mes_services.workflows import DISPOSAL_WORKFLOW

logger = get_logger("services.disposal")


@dataclass(frozen=True)
class DisposalItemInput:
    """One line of a new disposal."""

    product_id: int
    disposal_quantity: Decimal
    lot_id: int | None = None
    lot_no: str | None = None
    unit: str | None = None
    remarks: str | None = None


class DisposalService:
    """
    Disposal document lifecycle.

    Contract:
        Receives Session, Clock and MesConfig via constructor injection.
    Guarantees:
        - Each status change is validated by the workflow executor first.
        - Totals are recomputed whenever items change.
    Non-goals:
        - Does not check stock at creation; the lot is checked at
          completion, under lock.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: MesConfig | None = None,
        executor: WorkflowExecutor | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        config = config or get_active_config()
        self._workflow = DISPOSAL_WORKFLOW.with_role_grants(
            config.workflows.grants_for(DISPOSAL_WORKFLOW.name)
        )
        self._executor = executor or WorkflowExecutor()
        self._consumption = LotConsumptionService(session, self._clock)

    # ------------------------------------------------------------------
    # Create / delete
    # ------------------------------------------------------------------

    def create(
        self,
        tenant_id: str,
        disposal_type: DisposalType,
        warehouse_id: int,
        requester: Actor,
        items: Sequence[DisposalItemInput],
        work_order_id: int | None = None,
        remarks: str | None = None,
    ) -> DisposalModel:
        """
        Open a PENDING disposal with its items.

        Items naming a lot without a lot_no get the lot's number and unit
        filled in.

        Raises:
            ValidationError: No items, or an item quantity <= 0.
            LotNotFoundError: An item names a lot the tenant does not own.
        """
        if not tenant_id:
            raise ValidationError("tenant_id", "must not be empty")
        if not items:
            raise ValidationError("items", "a disposal needs at least one item")
        for item in items:
            if item.disposal_quantity is None or item.disposal_quantity <= 0:
                raise ValidationError(
                    "disposal_quantity",
                    f"must be positive, got {item.disposal_quantity}",
                )

        now = self._clock.now()
        disposal = DisposalModel(
            tenant_id=tenant_id,
            disposal_no=next_document_no(
                self._session,
                DisposalModel.disposal_no,
                DisposalModel.tenant_id,
                tenant_id,
                DISPOSAL_PREFIX,
                now.date(),
            ),
            disposal_date=now,
            disposal_type=DisposalType(disposal_type).value,
            work_order_id=work_order_id,
            warehouse_id=warehouse_id,
            requester_id=requester.actor_id,
            requester_name=requester.name or None,
            disposal_status=DISPOSAL_WORKFLOW.initial_state,
            remarks=remarks,
            is_active=True,
        )
        for item in items:
            lot_no, unit = item.lot_no, item.unit
            if item.lot_id is not None:
                lot = self._tenant_lot(tenant_id, item.lot_id)
                lot_no = lot_no or lot.lot_no
                unit = unit or lot.unit
            disposal.items.append(
                DisposalItemModel(
                    product_id=item.product_id,
                    lot_id=item.lot_id,
                    lot_no=lot_no,
                    disposal_quantity=item.disposal_quantity,
                    unit=unit,
                    remarks=item.remarks,
                )
            )
        disposal.calculate_totals()
        self._session.add(disposal)
        self._session.flush()

        logger.info("disposal_created", extra={
            "tenant_id": tenant_id,
            "disposal_no": disposal.disposal_no,
            "disposal_type": disposal.disposal_type,
            "item_count": len(disposal.items),
            "total_disposal_quantity": str(disposal.total_disposal_quantity),
        })
        return disposal

    def delete(self, tenant_id: str, disposal_id: int) -> None:
        disposal = self.get(tenant_id, disposal_id)
        if disposal.disposal_status != DISPOSAL_WORKFLOW.initial_state:
            raise DocumentNotDeletableError(
                "Disposal", disposal.disposal_no, disposal.disposal_status,
            )
        self._session.delete(disposal)
        self._session.flush()
        logger.info("disposal_deleted", extra={
            "tenant_id": tenant_id,
            "disposal_no": disposal.disposal_no,
        })

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, tenant_id: str, disposal_id: int) -> DisposalModel:
        disposal = self._session.scalars(
            select(DisposalModel).where(
                DisposalModel.id == disposal_id,
                DisposalModel.tenant_id == tenant_id,
            )
        ).one_or_none()
        if disposal is None:
            raise DocumentNotFoundError("Disposal", disposal_id)
        return disposal

    def find_by_tenant(self, tenant_id: str) -> list[DisposalModel]:
        return self._query(DisposalModel.tenant_id == tenant_id)

    def find_by_status(self, tenant_id: str, status: str) -> list[DisposalModel]:
        return self._query(
            DisposalModel.tenant_id == tenant_id,
            DisposalModel.disposal_status == status,
        )

    def find_by_type(self, tenant_id: str, disposal_type: DisposalType) -> list[DisposalModel]:
        return self._query(
            DisposalModel.tenant_id == tenant_id,
            DisposalModel.disposal_type == DisposalType(disposal_type).value,
        )

    def find_approved(self, tenant_id: str) -> list[DisposalModel]:
        """Approved disposals waiting to be processed."""
        return self.find_by_status(tenant_id, "APPROVED")

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def approve(self, tenant_id: str, disposal_id: int, actor: Actor) -> DisposalModel:
        disposal = self._transition(tenant_id, disposal_id, "approve", actor)
        disposal.approver_id = actor.actor_id
        disposal.approver_name = actor.name or None
        disposal.approved_at = self._clock.now()
        self._session.flush()
        return disposal

    def reject(
        self, tenant_id: str, disposal_id: int, actor: Actor, reason: str,
    ) -> DisposalModel:
        if not reason:
            raise ValidationError("reason", "is required to reject a disposal")
        disposal = self._transition(tenant_id, disposal_id, "reject", actor)
        disposal.approver_id = actor.actor_id
        disposal.approver_name = actor.name or None
        disposal.rejection_reason = reason
        self._session.flush()
        return disposal

    def process(
        self,
        tenant_id: str,
        disposal_id: int,
        actor: Actor,
        disposal_method: str | None = None,
        disposal_location: str | None = None,
    ) -> DisposalModel:
        disposal = self._transition(tenant_id, disposal_id, "process", actor)
        disposal.processor_id = actor.actor_id
        disposal.processor_name = actor.name or None
        disposal.processed_at = self._clock.now()
        disposal.disposal_method = disposal_method
        disposal.disposal_location = disposal_location
        self._session.flush()
        return disposal

    def complete(self, tenant_id: str, disposal_id: int, actor: Actor) -> DisposalModel:
        """
        Close a PROCESSED disposal and write its lot items off.

        The lot decrement happens before the status change, so a conflict
        leaves the disposal PROCESSED.
        """
        disposal = self.get(tenant_id, disposal_id)
        transition = self._executor.execute_transition(
            workflow=self._workflow,
            document_type="Disposal",
            document_id=disposal.id,
            current_state=disposal.disposal_status,
            action="complete",
            actor=actor,
        )

        lot_items = [item for item in disposal.items if item.lot_id is not None]
        if lot_items:
            total = sum((item.disposal_quantity for item in lot_items), Decimal("0"))
            batch = AllocationBatch(
                strategy=AllocationStrategy.SPECIFIC,
                required_quantity=total,
                allocations=tuple(
                    Allocation(
                        lot_id=item.lot_id,
                        lot_no=item.lot_no or "",
                        allocated_quantity=item.disposal_quantity,
                        available_quantity=item.disposal_quantity,
                    )
                    for item in lot_items
                ),
            )
            self._consumption.consume(
                tenant_id,
                batch,
                transaction_type=TransactionType.DISPOSE,
                reference_no=disposal.disposal_no,
                actor_id=actor.actor_id,
                remarks=f"Disposal {disposal.disposal_no}",
            )

        disposal.disposal_status = transition.to_state
        disposal.completed_at = self._clock.now()
        disposal.calculate_totals()
        self._session.flush()

        logger.info("disposal_completed", extra={
            "tenant_id": tenant_id,
            "disposal_no": disposal.disposal_no,
            "lot_item_count": len(lot_items),
            "total_disposal_quantity": str(disposal.total_disposal_quantity),
        })
        return disposal

    def cancel(
        self, tenant_id: str, disposal_id: int, actor: Actor, reason: str | None = None,
    ) -> DisposalModel:
        disposal = self._transition(tenant_id, disposal_id, "cancel", actor)
        disposal.cancellation_reason = reason
        self._session.flush()
        return disposal

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(
        self, tenant_id: str, disposal_id: int, action: str, actor: Actor,
    ) -> DisposalModel:
        disposal = self.get(tenant_id, disposal_id)
        transition = self._executor.execute_transition(
            workflow=self._workflow,
            document_type="Disposal",
            document_id=disposal.id,
            current_state=disposal.disposal_status,
            action=action,
            actor=actor,
        )
        disposal.disposal_status = transition.to_state
        self._session.flush()
        logger.info(f"disposal_{action}", extra={
            "tenant_id": tenant_id,
            "disposal_no": disposal.disposal_no,
            "status": disposal.disposal_status,
            "actor_id": actor.actor_id,
        })
        return disposal

    def _query(self, *criteria) -> list[DisposalModel]:
        stmt = select(DisposalModel).where(*criteria).order_by(DisposalModel.id)
        return list(self._session.scalars(stmt))

    def _tenant_lot(self, tenant_id: str, lot_id: int) -> LotModel:
        lot = self._session.scalars(
            select(LotModel).where(
                LotModel.id == lot_id,
                LotModel.tenant_id == tenant_id,
            )
        ).one_or_none()
        if lot is None:
            raise LotNotFoundError(lot_id, tenant_id)
        return lot

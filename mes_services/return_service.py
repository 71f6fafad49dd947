"""
mes_services.return_service -- Material returns from production.

Responsibility:
    Record materials sent back from the line to the warehouse: approval,
    receipt (with received quantities), quality inspection (passed /
    failed per item) and completion.

Architecture position:
    Services -- stateful orchestration.  Status rules come from
    RETURN_WORKFLOW via WorkflowExecutor.  Flushes; never commits.

Invariants enforced:
    - return_no is ``RT-YYYYMMDD-NNNN``, unique per tenant.
    - Document totals equal the sums over items after every change.
    - Per item: received <= returned and passed + failed <= received.
    - Inspection results are accepted only while INSPECTING.
    - Only PENDING returns may be deleted.

Failure modes:
    - ValidationError for empty items, non-positive or inconsistent
      quantities.
    - LotNotFoundError at creation when an item names a lot outside the
      tenant.
    - DocumentNotFoundError, InvalidStatusTransitionError,
      UnauthorizedActorError, DocumentNotDeletableError.

Non-goals:
    Returned stock is not credited back to the originating lot; putting
    passed quantities back into inventory is a separate receiving step.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from mes_config import MesConfig, get_active_config
from mes_kernel.domain.clock import Clock, SystemClock
from mes_kernel.domain.workflow import Actor
from mes_kernel.exceptions import (
    DocumentNotDeletableError,
    DocumentNotFoundError,
    InvalidStatusTransitionError,
    LotNotFoundError,
    ValidationError,
)
from mes_kernel.logging_config import get_logger
from mes_kernel.models.lot import LotModel
from mes_kernel.models.return_order import ReturnItemModel, ReturnModel, ReturnType
from mes_services.document_numbers import RETURN_PREFIX, next_document_no
from mes_services.workflow_executor import WorkflowExecutor
from mes_services.workflows import RETURN_WORKFLOW

logger = get_logger("services.return")


@dataclass(frozen=True)
class ReturnItemInput:
    """One line of a new return."""

    product_id: int
    return_quantity: Decimal
    lot_id: int | None = None
    lot_no: str | None = None
    unit: str | None = None
    remarks: str | None = None


class ReturnService:
    """
    Return document lifecycle.

    Contract:
        Receives Session, Clock and MesConfig via constructor injection.
    Guarantees:
        - Each status change is validated by the workflow executor first.
        - calculate_totals() runs after every quantity change.
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
        self._workflow = RETURN_WORKFLOW.with_role_grants(
            config.workflows.grants_for(RETURN_WORKFLOW.name)
        )
        self._executor = executor or WorkflowExecutor()

    # ------------------------------------------------------------------
    # Create / delete
    # ------------------------------------------------------------------

    def create(
        self,
        tenant_id: str,
        return_type: ReturnType,
        warehouse_id: int,
        requester: Actor,
        items: Sequence[ReturnItemInput],
        material_request_id: int | None = None,
        work_order_id: int | None = None,
        remarks: str | None = None,
    ) -> ReturnModel:
        if not tenant_id:
            raise ValidationError("tenant_id", "must not be empty")
        if not items:
            raise ValidationError("items", "a return needs at least one item")
        for item in items:
            if item.return_quantity is None or item.return_quantity <= 0:
                raise ValidationError(
                    "return_quantity", f"must be positive, got {item.return_quantity}"
                )

        now = self._clock.now()
        return_order = ReturnModel(
            tenant_id=tenant_id,
            return_no=next_document_no(
                self._session,
                ReturnModel.return_no,
                ReturnModel.tenant_id,
                tenant_id,
                RETURN_PREFIX,
                now.date(),
            ),
            return_date=now,
            return_type=ReturnType(return_type).value,
            material_request_id=material_request_id,
            work_order_id=work_order_id,
            warehouse_id=warehouse_id,
            requester_id=requester.actor_id,
            requester_name=requester.name or None,
            return_status=RETURN_WORKFLOW.initial_state,
            remarks=remarks,
            is_active=True,
        )
        for item in items:
            lot_no, unit = item.lot_no, item.unit
            if item.lot_id is not None:
                lot = self._tenant_lot(tenant_id, item.lot_id)
                lot_no = lot_no or lot.lot_no
                unit = unit or lot.unit
            return_order.items.append(
                ReturnItemModel(
                    product_id=item.product_id,
                    lot_id=item.lot_id,
                    lot_no=lot_no,
                    return_quantity=item.return_quantity,
                    unit=unit,
                    remarks=item.remarks,
                )
            )
        return_order.calculate_totals()
        self._session.add(return_order)
        self._session.flush()

        logger.info("return_created", extra={
            "tenant_id": tenant_id,
            "return_no": return_order.return_no,
            "return_type": return_order.return_type,
            "item_count": len(return_order.items),
            "total_return_quantity": str(return_order.total_return_quantity),
        })
        return return_order

    def delete(self, tenant_id: str, return_id: int) -> None:
        return_order = self.get(tenant_id, return_id)
        if return_order.return_status != RETURN_WORKFLOW.initial_state:
            raise DocumentNotDeletableError(
                "Return", return_order.return_no, return_order.return_status,
            )
        self._session.delete(return_order)
        self._session.flush()
        logger.info("return_deleted", extra={
            "tenant_id": tenant_id,
            "return_no": return_order.return_no,
        })

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, tenant_id: str, return_id: int) -> ReturnModel:
        return_order = self._session.scalars(
            select(ReturnModel).where(
                ReturnModel.id == return_id,
                ReturnModel.tenant_id == tenant_id,
            )
        ).one_or_none()
        if return_order is None:
            raise DocumentNotFoundError("Return", return_id)
        return return_order

    def find_by_tenant(self, tenant_id: str) -> list[ReturnModel]:
        return self._query(ReturnModel.tenant_id == tenant_id)

    def find_by_status(self, tenant_id: str, status: str) -> list[ReturnModel]:
        return self._query(
            ReturnModel.tenant_id == tenant_id,
            ReturnModel.return_status == status,
        )

    def find_by_material_request(
        self, tenant_id: str, material_request_id: int,
    ) -> list[ReturnModel]:
        return self._query(
            ReturnModel.tenant_id == tenant_id,
            ReturnModel.material_request_id == material_request_id,
        )

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def approve(self, tenant_id: str, return_id: int, actor: Actor) -> ReturnModel:
        return_order = self._transition(tenant_id, return_id, "approve", actor)
        return_order.approver_id = actor.actor_id
        return_order.approver_name = actor.name or None
        return_order.approved_at = self._clock.now()
        self._session.flush()
        return return_order

    def reject(
        self, tenant_id: str, return_id: int, actor: Actor, reason: str,
    ) -> ReturnModel:
        if not reason:
            raise ValidationError("reason", "is required to reject a return")
        return_order = self._transition(tenant_id, return_id, "reject", actor)
        return_order.approver_id = actor.actor_id
        return_order.approver_name = actor.name or None
        return_order.rejection_reason = reason
        self._session.flush()
        return return_order

    def receive(
        self,
        tenant_id: str,
        return_id: int,
        actor: Actor,
        received_quantities: Mapping[int, Decimal] | None = None,
    ) -> ReturnModel:
        """
        Record physical receipt of an APPROVED return.

        Args:
            received_quantities: Item id -> quantity actually received.
                Items not listed are taken as received in full.

        Raises:
            ValidationError: A received quantity is negative, exceeds the
                returned quantity, or names an item of another return.
        """
        return_order = self.get(tenant_id, return_id)
        received_quantities = dict(received_quantities or {})
        items_by_id = {item.id: item for item in return_order.items}
        unknown = set(received_quantities) - set(items_by_id)
        if unknown:
            raise ValidationError(
                "received_quantities",
                f"items {sorted(unknown)} do not belong to {return_order.return_no}",
            )
        for item_id, quantity in received_quantities.items():
            limit = items_by_id[item_id].return_quantity
            if quantity is None or not (0 <= quantity <= limit):
                raise ValidationError(
                    "received_quantity",
                    f"item {item_id}: must be between 0 and {limit}, got {quantity}",
                )

        transition = self._check(return_order, "receive", actor)
        for item in return_order.items:
            item.received_quantity = received_quantities.get(item.id, item.return_quantity)
        return_order.return_status = transition.to_state
        return_order.received_at = self._clock.now()
        return_order.calculate_totals()
        self._session.flush()

        logger.info("return_received", extra={
            "tenant_id": tenant_id,
            "return_no": return_order.return_no,
            "total_received_quantity": str(return_order.total_received_quantity),
        })
        return return_order

    def start_inspection(self, tenant_id: str, return_id: int, actor: Actor) -> ReturnModel:
        return self._transition(tenant_id, return_id, "start_inspection", actor)

    def record_inspection(
        self,
        tenant_id: str,
        return_id: int,
        item_id: int,
        passed_quantity: Decimal,
        failed_quantity: Decimal,
    ) -> ReturnItemModel:
        """
        Store the inspection result for one item of an INSPECTING return.

        Raises:
            InvalidStatusTransitionError: The return is not INSPECTING.
            ValidationError: Unknown item, negative quantities, or
                passed + failed above the received quantity.
        """
        return_order = self.get(tenant_id, return_id)
        if return_order.return_status != "INSPECTING":
            raise InvalidStatusTransitionError(
                RETURN_WORKFLOW.name, return_order.return_status, "record_inspection",
            )
        item = next((i for i in return_order.items if i.id == item_id), None)
        if item is None:
            raise ValidationError(
                "item_id", f"item {item_id} does not belong to {return_order.return_no}"
            )
        if passed_quantity is None or failed_quantity is None:
            raise ValidationError("inspection", "passed and failed quantities are required")
        if passed_quantity < 0 or failed_quantity < 0:
            raise ValidationError("inspection", "quantities must not be negative")
        received = item.received_quantity
        if received is None:
            received = item.return_quantity
        if passed_quantity + failed_quantity > received:
            raise ValidationError(
                "inspection",
                f"passed {passed_quantity} + failed {failed_quantity} "
                f"exceeds received {received}",
            )

        item.passed_quantity = passed_quantity
        item.failed_quantity = failed_quantity
        return_order.calculate_totals()
        self._session.flush()

        logger.info("return_item_inspected", extra={
            "return_no": return_order.return_no,
            "item_id": item.id,
            "passed_quantity": str(passed_quantity),
            "failed_quantity": str(failed_quantity),
        })
        return item

    def complete(self, tenant_id: str, return_id: int, actor: Actor) -> ReturnModel:
        return_order = self._transition(tenant_id, return_id, "complete", actor)
        return_order.completed_at = self._clock.now()
        return_order.calculate_totals()
        self._session.flush()
        return return_order

    def cancel(
        self, tenant_id: str, return_id: int, actor: Actor, reason: str | None = None,
    ) -> ReturnModel:
        return_order = self._transition(tenant_id, return_id, "cancel", actor)
        return_order.cancellation_reason = reason
        self._session.flush()
        return return_order

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check(self, return_order: ReturnModel, action: str, actor: Actor):
        return self._executor.execute_transition(
            workflow=self._workflow,
            document_type="Return",
            document_id=return_order.id,
            current_state=return_order.return_status,
            action=action,
            actor=actor,
        )

    def _transition(
        self, tenant_id: str, return_id: int, action: str, actor: Actor,
    ) -> ReturnModel:
        return_order = self.get(tenant_id, return_id)
        transition = self._check(return_order, action, actor)
        return_order.return_status = transition.to_state
        self._session.flush()
        logger.info(f"return_{action}", extra={
            "tenant_id": tenant_id,
            "return_no": return_order.return_no,
            "status": return_order.return_status,
            "actor_id": actor.actor_id,
        })
        return return_order

    def _query(self, *criteria) -> list[ReturnModel]:
        stmt = select(ReturnModel).where(*criteria).order_by(ReturnModel.id)
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

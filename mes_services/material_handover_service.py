"""
mes_services.material_handover_service -- Material requests and handovers.

Responsibility:
    Track production requests for materials, issue stock against them
    (lot selection + consumption, one handover per allocated lot) and
    record the receiver's confirmation or rejection of each handover.

Architecture position:
    Services -- stateful orchestration.  Composes LotAllocator (which lots),
    LotConsumptionService (decrement + ISSUE transactions) and
    WorkflowExecutor (status rules).  Flushes; never commits.

Invariants enforced:
    - Handover status moves PENDING -> CONFIRMED | REJECTED only, and only
      for the assigned receiver (``assigned_receiver`` guard).
    - A request in ISSUED status whose handovers are all CONFIRMED is moved
      to COMPLETED in the same transaction as the last confirmation.
    - Issuing is all-or-nothing: if stock is short, no lot is touched and
      no handover is created.

Failure modes:
    - DocumentNotFoundError for unknown request / handover ids.
    - InvalidStatusTransitionError, UnauthorizedActorError from the
      workflow executor.
    - InsufficientStockError, LotNotFoundError, ConcurrentModificationError
      from allocation and consumption.

Audit relevance:
    Each handover references the ISSUE inventory transaction that moved
    its stock, so a confirmed receipt traces back to the lot decrement.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from mes_config import MesConfig, get_active_config
from mes_kernel.domain.clock import Clock, SystemClock
from mes_kernel.domain.lot import AllocationStrategy
from mes_kernel.domain.workflow import Actor
from mes_kernel.exceptions import DocumentNotFoundError
from mes_kernel.logging_config import get_logger
from mes_kernel.models.inventory_transaction import TransactionType
from mes_kernel.models.lot import LotModel
from mes_kernel.models.material_handover import (
    MaterialHandoverModel,
    MaterialRequestModel,
)
from mes_kernel.selectors.lot_selector import LotSelector
from mes_services.document_numbers import (
    HANDOVER_PREFIX,
    MATERIAL_REQUEST_PREFIX,
    next_document_no,
)
from mes_services.lot_allocation_service import LotAllocator
from mes_services.lot_consumption_service import LotConsumptionService
from mes_services.workflow_executor import WorkflowExecutor
from mes_services.workflows import HANDOVER_WORKFLOW, MATERIAL_REQUEST_WORKFLOW

logger = get_logger("services.material_handover")


class MaterialHandoverService:
    """
    Material request / handover lifecycle.

    Contract:
        Receives Session, Clock and MesConfig via constructor injection;
        falls back to SystemClock and get_active_config().
    Guarantees:
        - issue_materials creates one PENDING handover per allocated lot.
        - confirm_handover may complete the parent request.
    Non-goals:
        - Does not return rejected stock to the lot; a rejected handover
          is a record for follow-up (e.g. a return document).
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
        self._default_strategy = config.allocation.default_strategy
        self._request_workflow = MATERIAL_REQUEST_WORKFLOW.with_role_grants(
            config.workflows.grants_for(MATERIAL_REQUEST_WORKFLOW.name)
        )
        self._handover_workflow = HANDOVER_WORKFLOW.with_role_grants(
            config.workflows.grants_for(HANDOVER_WORKFLOW.name)
        )
        self._executor = executor or WorkflowExecutor()
        self._allocator = LotAllocator(
            LotSelector(session),
            eligibility=config.allocation.eligibility_policy(),
            clock=self._clock,
        )
        self._consumption = LotConsumptionService(session, self._clock)

    # ------------------------------------------------------------------
    # Material requests
    # ------------------------------------------------------------------

    def create_material_request(
        self,
        tenant_id: str,
        warehouse_id: int,
        requester_id: int,
        remarks: str | None = None,
    ) -> MaterialRequestModel:
        request = MaterialRequestModel(
            tenant_id=tenant_id,
            request_no=next_document_no(
                self._session,
                MaterialRequestModel.request_no,
                MaterialRequestModel.tenant_id,
                tenant_id,
                MATERIAL_REQUEST_PREFIX,
                self._clock.today(),
            ),
            warehouse_id=warehouse_id,
            requester_id=requester_id,
            request_status=MATERIAL_REQUEST_WORKFLOW.initial_state,
            remarks=remarks,
        )
        self._session.add(request)
        self._session.flush()
        logger.info("material_request_created", extra={
            "tenant_id": tenant_id,
            "request_id": request.id,
            "request_no": request.request_no,
        })
        return request

    def get_material_request(self, tenant_id: str, request_id: int) -> MaterialRequestModel:
        request = self._session.scalars(
            select(MaterialRequestModel).where(
                MaterialRequestModel.id == request_id,
                MaterialRequestModel.tenant_id == tenant_id,
            )
        ).one_or_none()
        if request is None:
            raise DocumentNotFoundError("MaterialRequest", request_id)
        return request

    def approve_material_request(
        self, tenant_id: str, request_id: int, actor: Actor,
    ) -> MaterialRequestModel:
        return self._transition_request(tenant_id, request_id, "approve", actor)

    def reject_material_request(
        self, tenant_id: str, request_id: int, actor: Actor, reason: str | None = None,
    ) -> MaterialRequestModel:
        request = self._transition_request(tenant_id, request_id, "reject", actor)
        if reason:
            request.remarks = reason
        return request

    def cancel_material_request(
        self, tenant_id: str, request_id: int, actor: Actor,
    ) -> MaterialRequestModel:
        return self._transition_request(tenant_id, request_id, "cancel", actor)

    def issue_materials(
        self,
        tenant_id: str,
        request_id: int,
        product_id: int,
        quantity: Decimal,
        issuer: Actor,
        receiver_id: int,
        strategy: AllocationStrategy | None = None,
        lot_id: int | None = None,
        receiver_name: str | None = None,
        issue_location: str | None = None,
        receive_location: str | None = None,
    ) -> list[MaterialHandoverModel]:
        """
        Issue ``quantity`` of a product against an approved request.

        Lots are chosen by ``strategy`` (configured default when None),
        decremented with ISSUE transactions, and one PENDING handover is
        created per lot for ``receiver_id`` to confirm.

        Returns:
            The new handovers in allocation order.
        """
        request = self.get_material_request(tenant_id, request_id)
        transition = self._executor.execute_transition(
            workflow=self._request_workflow,
            document_type="MaterialRequest",
            document_id=request.id,
            current_state=request.request_status,
            action="issue",
            actor=issuer,
        )

        batch = self._allocator.select(
            strategy or self._default_strategy,
            tenant_id,
            request.warehouse_id,
            product_id,
            quantity,
            lot_id=lot_id,
        )
        consumed = self._consumption.consume(
            tenant_id,
            batch,
            transaction_type=TransactionType.ISSUE,
            reference_no=request.request_no,
            actor_id=issuer.actor_id,
        )

        now = self._clock.now()
        handovers: list[MaterialHandoverModel] = []
        for record in consumed.records:
            lot = self._session.get(LotModel, record.lot_id)
            handover = MaterialHandoverModel(
                tenant_id=tenant_id,
                material_request=request,
                inventory_transaction_id=record.transaction_id,
                handover_no=next_document_no(
                    self._session,
                    MaterialHandoverModel.handover_no,
                    MaterialHandoverModel.tenant_id,
                    tenant_id,
                    HANDOVER_PREFIX,
                    now.date(),
                ),
                handover_date=now,
                product_id=product_id,
                lot_id=record.lot_id,
                lot_no=record.lot_no,
                quantity=record.quantity,
                unit=lot.unit if lot is not None else None,
                issuer_id=issuer.actor_id,
                issuer_name=issuer.name or None,
                issue_location=issue_location,
                receiver_id=receiver_id,
                receiver_name=receiver_name,
                receive_location=receive_location,
                handover_status=HANDOVER_WORKFLOW.initial_state,
            )
            self._session.add(handover)
            # Flush per handover so the next number sees this one.
            self._session.flush()
            handovers.append(handover)

        request.request_status = transition.to_state
        self._session.flush()

        logger.info("materials_issued", extra={
            "tenant_id": tenant_id,
            "request_no": request.request_no,
            "product_id": product_id,
            "quantity": str(quantity),
            "strategy": batch.strategy.value,
            "handover_nos": [h.handover_no for h in handovers],
        })
        return handovers

    # ------------------------------------------------------------------
    # Handover queries
    # ------------------------------------------------------------------

    def get_handover(self, tenant_id: str, handover_id: int) -> MaterialHandoverModel:
        handover = self._session.scalars(
            select(MaterialHandoverModel).where(
                MaterialHandoverModel.id == handover_id,
                MaterialHandoverModel.tenant_id == tenant_id,
            )
        ).one_or_none()
        if handover is None:
            raise DocumentNotFoundError("MaterialHandover", handover_id)
        return handover

    def list_handovers(self, tenant_id: str) -> list[MaterialHandoverModel]:
        return self._query_handovers(MaterialHandoverModel.tenant_id == tenant_id)

    def find_by_status(self, tenant_id: str, status: str) -> list[MaterialHandoverModel]:
        return self._query_handovers(
            MaterialHandoverModel.tenant_id == tenant_id,
            MaterialHandoverModel.handover_status == status,
        )

    def find_by_material_request(
        self, tenant_id: str, request_id: int,
    ) -> list[MaterialHandoverModel]:
        return self._query_handovers(
            MaterialHandoverModel.tenant_id == tenant_id,
            MaterialHandoverModel.material_request_id == request_id,
        )

    def find_pending_by_receiver(
        self, tenant_id: str, receiver_id: int,
    ) -> list[MaterialHandoverModel]:
        return self._query_handovers(
            MaterialHandoverModel.tenant_id == tenant_id,
            MaterialHandoverModel.receiver_id == receiver_id,
            MaterialHandoverModel.handover_status == "PENDING",
        )

    # ------------------------------------------------------------------
    # Handover workflow
    # ------------------------------------------------------------------

    def confirm_handover(
        self,
        tenant_id: str,
        handover_id: int,
        actor: Actor,
        remarks: str | None = None,
    ) -> MaterialHandoverModel:
        """
        Receiver acknowledges the handover.

        Completes the parent request when it is ISSUED and every one of its
        handovers is now CONFIRMED.
        """
        handover = self._transition_handover(tenant_id, handover_id, "confirm", actor, remarks)
        self._complete_request_if_all_confirmed(handover.material_request)
        return handover

    def reject_handover(
        self,
        tenant_id: str,
        handover_id: int,
        actor: Actor,
        reason: str | None = None,
    ) -> MaterialHandoverModel:
        return self._transition_handover(tenant_id, handover_id, "reject", actor, reason)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition_request(
        self, tenant_id: str, request_id: int, action: str, actor: Actor,
    ) -> MaterialRequestModel:
        request = self.get_material_request(tenant_id, request_id)
        transition = self._executor.execute_transition(
            workflow=self._request_workflow,
            document_type="MaterialRequest",
            document_id=request.id,
            current_state=request.request_status,
            action=action,
            actor=actor,
        )
        request.request_status = transition.to_state
        self._session.flush()
        return request

    def _transition_handover(
        self,
        tenant_id: str,
        handover_id: int,
        action: str,
        actor: Actor,
        remarks: str | None,
    ) -> MaterialHandoverModel:
        handover = self.get_handover(tenant_id, handover_id)
        transition = self._executor.execute_transition(
            workflow=self._handover_workflow,
            document_type="MaterialHandover",
            document_id=handover.id,
            current_state=handover.handover_status,
            action=action,
            actor=actor,
            context={"receiver_id": handover.receiver_id},
        )
        handover.handover_status = transition.to_state
        handover.received_at = self._clock.now()
        handover.confirmation_remarks = remarks
        self._session.flush()

        logger.info(f"handover_{transition.to_state.lower()}", extra={
            "tenant_id": tenant_id,
            "handover_no": handover.handover_no,
            "receiver_id": actor.actor_id,
        })
        return handover

    def _complete_request_if_all_confirmed(self, request: MaterialRequestModel) -> None:
        handovers = self.find_by_material_request(request.tenant_id, request.id)
        if not handovers:
            return
        if not all(h.handover_status == "CONFIRMED" for h in handovers):
            return
        transition = self._request_workflow.find_transition(request.request_status, "complete")
        if transition is None:
            return
        request.request_status = transition.to_state
        self._session.flush()
        logger.info("material_request_auto_completed", extra={
            "tenant_id": request.tenant_id,
            "request_no": request.request_no,
            "handover_count": len(handovers),
        })

    def _query_handovers(self, *criteria) -> list[MaterialHandoverModel]:
        stmt = select(MaterialHandoverModel).where(*criteria).order_by(MaterialHandoverModel.id)
        return list(self._session.scalars(stmt))

"""
mes_services.lot_allocation_service -- Lot selection for material issue.

Responsibility:
    Select which lots satisfy a requested quantity of a product at a
    warehouse, by FIFO, FEFO or a caller-named lot, and discover lots that
    are about to expire.  Selection is read-only; decrementing stock is
    the job of ``LotConsumptionService``.

Architecture position:
    Services -- orchestration over the pure ``mes_engines.lot_selection``
    engine.  Reads lots through the ``LotQuery`` protocol (implemented by
    ``mes_kernel.selectors.LotSelector``), so the allocator itself holds no
    session and is storage-agnostic.

Invariants enforced:
    - Input validation: tenant_id non-empty, identifiers present,
      required_quantity > 0; ValidationError otherwise.
    - Eligibility: the policy is re-applied to every snapshot the query
      returns; inactive and exhausted lots are always excluded.
    - All-or-nothing: on shortfall InsufficientStockError is raised and no
      allocation is returned.
    - Determinism: same lot snapshots -> same AllocationBatch.
    - Explicit tenant: the tenant is a parameter of every call, never read
      from ambient context.

Failure modes:
    - ValidationError on bad input.
    - LotNotFoundError when a specific lot is missing, out of scope,
      inactive or ineligible.
    - InsufficientStockError when eligible stock is below the requirement.

Audit relevance:
    Every selection logs its scope, strategy and outcome (lot ids and
    quantities) so a later consumption can be traced to the snapshot it
    was computed from.

Usage:
    from mes_kernel.selectors import LotSelector
    from mes_services.lot_allocation_service import LotAllocator

    allocator = LotAllocator(LotSelector(session), clock=clock)
    batch = allocator.select_by_fifo("T1", warehouse_id=1, product_id=7,
                                     required_quantity=Decimal("60"))
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable

from mes_engines.lot_selection import (
    allocate_greedy,
    filter_eligible,
    lots_expiring_within,
)
from mes_kernel.domain.clock import Clock, SystemClock
from mes_kernel.domain.lot import (
    AllocationBatch,
    AllocationStrategy,
    EligibilityPolicy,
    EligibilityPredicate,
    LotSnapshot,
)
from mes_kernel.exceptions import (
    InsufficientStockError,
    LotNotFoundError,
    ValidationError,
)
from mes_kernel.logging_config import get_logger

logger = get_logger("services.lot_allocation")


@runtime_checkable
class LotQuery(Protocol):
    """Read access to lot snapshots."""

    def find_eligible_lots(
        self, tenant_id: str, warehouse_id: int, product_id: int,
    ) -> list[LotSnapshot]: ...

    def find_lot_by_id(
        self, tenant_id: str, warehouse_id: int, product_id: int, lot_id: int,
    ) -> LotSnapshot | None: ...

    def find_active_lots_for_tenant(self, tenant_id: str) -> list[LotSnapshot]: ...


class LotAllocator:
    """
    Selects lots to cover a required quantity.

    Contract:
        Receives a LotQuery, an eligibility predicate and a Clock via
        constructor injection.
    Guarantees:
        - A returned batch allocates exactly the required quantity.
        - No allocation exceeds the lot's quantity at selection time.
        - Lot state is never modified.
    Non-goals:
        - Does not lock or decrement lots; see LotConsumptionService.
        - Does not retry after InsufficientStockError.
    """

    def __init__(
        self,
        lot_query: LotQuery,
        eligibility: EligibilityPredicate | None = None,
        clock: Clock | None = None,
    ):
        self._lots = lot_query
        self._eligibility = eligibility or EligibilityPolicy()
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Selection entry points
    # ------------------------------------------------------------------

    def select_by_fifo(
        self,
        tenant_id: str,
        warehouse_id: int,
        product_id: int,
        required_quantity: Decimal,
    ) -> AllocationBatch:
        """
        Allocate from the oldest manufacturing date first.

        Ties are broken by lot_id ascending.

        Raises:
            ValidationError: Bad identifiers or required_quantity <= 0.
            InsufficientStockError: Eligible stock below the requirement.
        """
        return self._select_ordered(
            AllocationStrategy.FIFO, tenant_id, warehouse_id, product_id,
            required_quantity,
        )

    def select_by_fefo(
        self,
        tenant_id: str,
        warehouse_id: int,
        product_id: int,
        required_quantity: Decimal,
    ) -> AllocationBatch:
        """
        Allocate from the earliest expiry date first.

        Lots without an expiry date come after every dated lot; ties are
        broken by lot_id ascending.
        """
        return self._select_ordered(
            AllocationStrategy.FEFO, tenant_id, warehouse_id, product_id,
            required_quantity,
        )

    def select_specific_lot(
        self,
        tenant_id: str,
        warehouse_id: int,
        product_id: int,
        lot_id: int,
        required_quantity: Decimal,
    ) -> AllocationBatch:
        """
        Allocate the full quantity from one named lot.

        Raises:
            ValidationError: Bad identifiers or required_quantity <= 0.
            LotNotFoundError: Lot missing, outside the tenant/warehouse/
                product scope, inactive, or not admitted by the policy.
            InsufficientStockError: Lot holds less than required_quantity.
        """
        self._validate(tenant_id, warehouse_id, product_id, required_quantity)
        if lot_id is None:
            raise ValidationError("lot_id", "is required for specific-lot selection")

        logger.info("specific_lot_selection_started", extra={
            "tenant_id": tenant_id,
            "warehouse_id": warehouse_id,
            "product_id": product_id,
            "lot_id": lot_id,
            "required_quantity": str(required_quantity),
        })

        lot = self._lots.find_lot_by_id(tenant_id, warehouse_id, product_id, lot_id)
        if lot is None or not lot.matches_scope(tenant_id, warehouse_id, product_id):
            logger.warning("specific_lot_not_found", extra={
                "tenant_id": tenant_id,
                "lot_id": lot_id,
            })
            raise LotNotFoundError(
                lot_id, tenant_id,
                reason=(
                    f"not found in warehouse {warehouse_id} "
                    f"for product {product_id}"
                ),
            )

        if not lot.is_active or not self._eligibility(lot):
            logger.warning("specific_lot_ineligible", extra={
                "tenant_id": tenant_id,
                "lot_id": lot_id,
                "quality_status": lot.quality_status.value,
                "is_active": lot.is_active,
            })
            raise LotNotFoundError(lot_id, tenant_id, reason="not eligible for allocation")

        if lot.current_quantity < required_quantity:
            logger.warning("specific_lot_insufficient", extra={
                "lot_id": lot_id,
                "required_quantity": str(required_quantity),
                "available_quantity": str(lot.current_quantity),
            })
            raise InsufficientStockError(
                product_id=product_id,
                requested_quantity=required_quantity,
                available_quantity=lot.current_quantity,
                lot_id=lot_id,
            )

        batch = allocate_greedy(
            lots=[lot],
            required_quantity=required_quantity,
            strategy=AllocationStrategy.SPECIFIC,
            product_id=product_id,
        )
        self._log_completed(batch, tenant_id, warehouse_id, product_id)
        return batch

    def select(
        self,
        strategy: AllocationStrategy,
        tenant_id: str,
        warehouse_id: int,
        product_id: int,
        required_quantity: Decimal,
        lot_id: int | None = None,
    ) -> AllocationBatch:
        """Dispatch to the entry point for ``strategy``."""
        match strategy:
            case AllocationStrategy.FIFO:
                return self.select_by_fifo(
                    tenant_id, warehouse_id, product_id, required_quantity,
                )
            case AllocationStrategy.FEFO:
                return self.select_by_fefo(
                    tenant_id, warehouse_id, product_id, required_quantity,
                )
            case AllocationStrategy.SPECIFIC:
                return self.select_specific_lot(
                    tenant_id, warehouse_id, product_id, lot_id, required_quantity,
                )
            case _:
                raise ValidationError("strategy", f"unknown strategy {strategy!r}")

    # ------------------------------------------------------------------
    # Expiry discovery
    # ------------------------------------------------------------------

    def find_expiring_lots(
        self,
        tenant_id: str,
        days_until_expiry: int,
    ) -> list[LotSnapshot]:
        """
        Eligible lots expiring between today and today + days, inclusive.

        Ordered by expiry date, then lot_id.  Already-expired lots and lots
        without an expiry date are not returned.
        """
        if not tenant_id:
            raise ValidationError("tenant_id", "must not be empty")
        if days_until_expiry is None or days_until_expiry < 0:
            raise ValidationError(
                "days_until_expiry", f"must be non-negative, got {days_until_expiry}"
            )

        today = self._clock.today()
        eligible = filter_eligible(
            lots=self._lots.find_active_lots_for_tenant(tenant_id),
            policy=self._eligibility,
        )
        expiring = lots_expiring_within(lots=eligible, today=today, days=days_until_expiry)

        logger.info("expiring_lots_found", extra={
            "tenant_id": tenant_id,
            "today": today,
            "days_until_expiry": days_until_expiry,
            "lot_count": len(expiring),
        })
        return expiring

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _select_ordered(
        self,
        strategy: AllocationStrategy,
        tenant_id: str,
        warehouse_id: int,
        product_id: int,
        required_quantity: Decimal,
    ) -> AllocationBatch:
        self._validate(tenant_id, warehouse_id, product_id, required_quantity)

        logger.info(f"{strategy.value}_selection_started", extra={
            "tenant_id": tenant_id,
            "warehouse_id": warehouse_id,
            "product_id": product_id,
            "required_quantity": str(required_quantity),
        })

        # Re-check scope and eligibility; the query is not trusted to filter.
        candidates = [
            lot for lot in self._lots.find_eligible_lots(tenant_id, warehouse_id, product_id)
            if lot.matches_scope(tenant_id, warehouse_id, product_id)
        ]
        eligible = filter_eligible(lots=candidates, policy=self._eligibility)

        batch = allocate_greedy(
            lots=eligible,
            required_quantity=required_quantity,
            strategy=strategy,
            product_id=product_id,
        )
        self._log_completed(batch, tenant_id, warehouse_id, product_id)
        return batch

    @staticmethod
    def _validate(
        tenant_id: str,
        warehouse_id: int,
        product_id: int,
        required_quantity: Decimal,
    ) -> None:
        if not tenant_id:
            raise ValidationError("tenant_id", "must not be empty")
        if warehouse_id is None:
            raise ValidationError("warehouse_id", "is required")
        if product_id is None:
            raise ValidationError("product_id", "is required")
        if required_quantity is None:
            raise ValidationError("required_quantity", "is required")
        if not isinstance(required_quantity, Decimal):
            raise ValidationError(
                "required_quantity",
                f"must be a Decimal, got {type(required_quantity).__name__}",
            )
        if not required_quantity.is_finite() or required_quantity <= 0:
            raise ValidationError(
                "required_quantity", f"must be positive, got {required_quantity}"
            )

    @staticmethod
    def _log_completed(
        batch: AllocationBatch,
        tenant_id: str,
        warehouse_id: int,
        product_id: int,
    ) -> None:
        logger.info("lot_selection_completed", extra={
            "tenant_id": tenant_id,
            "warehouse_id": warehouse_id,
            "product_id": product_id,
            "strategy": batch.strategy.value,
            "required_quantity": str(batch.required_quantity),
            "lot_count": batch.lot_count,
            "allocations": [
                {"lot_id": a.lot_id, "quantity": str(a.allocated_quantity)}
                for a in batch
            ],
        })

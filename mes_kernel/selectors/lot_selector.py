"""
Lot query selector.

Read access to lots for the allocator and for expiring-lot discovery.

Key design decisions:
- Returns LotSnapshot values, never LotModel rows
- Uses the caller's Session; never creates its own
- Quality-status eligibility is NOT applied here; the allocator applies the
  configured EligibilityPolicy to whatever the selector returns
- Every query is ordered by id so results are deterministic
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from mes_kernel.domain.lot import LotSnapshot
from mes_kernel.models.lot import LotModel
from mes_kernel.selectors.base import BaseSelector


class LotSelector(BaseSelector[LotModel]):
    """
    SQLAlchemy-backed lot query.

    Satisfies the ``LotQuery`` protocol consumed by
    ``mes_services.lot_allocation_service.LotAllocator``.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def find_eligible_lots(
        self,
        tenant_id: str,
        warehouse_id: int,
        product_id: int,
    ) -> list[LotSnapshot]:
        """Active lots with stock on hand for one tenant/warehouse/product."""
        stmt = (
            select(LotModel)
            .where(
                LotModel.tenant_id == tenant_id,
                LotModel.warehouse_id == warehouse_id,
                LotModel.product_id == product_id,
                LotModel.is_active.is_(True),
                LotModel.current_quantity > 0,
            )
            .order_by(LotModel.id)
        )
        return [lot.to_snapshot() for lot in self.session.scalars(stmt)]

    def find_lot_by_id(
        self,
        tenant_id: str,
        warehouse_id: int,
        product_id: int,
        lot_id: int,
    ) -> LotSnapshot | None:
        """
        Snapshot of one lot, or None if it is missing or out of scope.

        Inactive and exhausted lots are returned; the caller decides whether
        they are usable.
        """
        stmt = select(LotModel).where(
            LotModel.id == lot_id,
            LotModel.tenant_id == tenant_id,
            LotModel.warehouse_id == warehouse_id,
            LotModel.product_id == product_id,
        )
        lot = self.session.scalars(stmt).one_or_none()
        return lot.to_snapshot() if lot is not None else None

    def find_active_lots_for_tenant(self, tenant_id: str) -> list[LotSnapshot]:
        """Every active lot of the tenant that still holds stock."""
        stmt = (
            select(LotModel)
            .where(
                LotModel.tenant_id == tenant_id,
                LotModel.is_active.is_(True),
                LotModel.current_quantity > 0,
            )
            .order_by(LotModel.id)
        )
        return [lot.to_snapshot() for lot in self.session.scalars(stmt)]

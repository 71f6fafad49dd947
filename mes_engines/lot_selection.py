"""
Module: mes_engines.lot_selection
Responsibility:
    Order lot snapshots per strategy and greedily draw a required quantity
    from them.  One shared greedy routine serves FIFO, FEFO and
    specific-lot selection; strategies differ only in their sort key.

Architecture position:
    Engines -- pure selection layer, zero I/O.
    May only import mes_kernel.domain, mes_kernel.exceptions and sibling
    engine modules.

Invariants enforced:
    - Sum: a returned batch allocates exactly ``required_quantity``.
    - No over-draw: each allocation takes at most the lot's current quantity.
    - All-or-nothing: when eligible stock is short, InsufficientStockError is
      raised and no allocations are returned.
    - Determinism: ties are broken by lot_id, so a fixed snapshot list always
      yields the same batch regardless of input order.
    - Purity: "today" is passed in; the engine never reads a clock.

Failure modes:
    - ValueError if required_quantity <= 0 or days < 0.
    - InsufficientStockError on shortfall (carries requested / available).

Usage:
    from mes_engines.lot_selection import allocate_greedy, filter_eligible

    eligible = filter_eligible(lots=snapshots, policy=EligibilityPolicy())
    batch = allocate_greedy(
        lots=eligible,
        required_quantity=Decimal("60"),
        strategy=AllocationStrategy.FIFO,
        product_id=7,
    )
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import date, timedelta
from decimal import Decimal

from mes_engines.tracer import traced_engine
from mes_kernel.domain.lot import (
    Allocation,
    AllocationBatch,
    AllocationStrategy,
    EligibilityPredicate,
    LotSnapshot,
)
from mes_kernel.exceptions import InsufficientStockError
from mes_kernel.logging_config import get_logger

logger = get_logger("engines.lot_selection")

SortKey = Callable[[LotSnapshot], tuple]


def fifo_sort_key(lot: LotSnapshot) -> tuple:
    """Oldest manufacturing date first, then lowest lot_id."""
    return (lot.manufacturing_date, lot.lot_id)


def fefo_sort_key(lot: LotSnapshot) -> tuple:
    """Earliest expiry first; lots without expiry after every dated lot."""
    return (
        lot.expiry_date is None,
        lot.expiry_date or date.max,
        lot.lot_id,
    )


def expiry_sort_key(lot: LotSnapshot) -> tuple:
    return (lot.expiry_date or date.max, lot.lot_id)


SORT_KEYS: Mapping[AllocationStrategy, SortKey] = {
    AllocationStrategy.FIFO: fifo_sort_key,
    AllocationStrategy.FEFO: fefo_sort_key,
}


@traced_engine("lot_selection", "1.0")
def filter_eligible(
    lots: Iterable[LotSnapshot],
    policy: EligibilityPredicate,
) -> list[LotSnapshot]:
    """
    Keep lots that the policy admits.

    Inactive and exhausted lots are dropped whatever the policy says, so a
    permissive custom predicate can never let them through.
    """
    return [
        lot for lot in lots
        if lot.is_active and not lot.is_exhausted and policy(lot)
    ]


def order_lots(
    lots: Iterable[LotSnapshot],
    strategy: AllocationStrategy,
) -> list[LotSnapshot]:
    """Lots in draw order; SPECIFIC keeps the caller's order."""
    key = SORT_KEYS.get(strategy)
    if key is None:
        return list(lots)
    return sorted(lots, key=key)


@traced_engine(
    "lot_selection", "1.0",
    fingerprint_fields=("required_quantity", "strategy", "product_id"),
)
def allocate_greedy(
    lots: Sequence[LotSnapshot],
    required_quantity: Decimal,
    strategy: AllocationStrategy,
    product_id: int | None = None,
) -> AllocationBatch:
    """
    Draw ``required_quantity`` from ``lots`` in strategy order.

    Each lot contributes ``min(current_quantity, remaining)`` until nothing
    remains.  The caller is expected to pass eligible lots only.

    Args:
        lots: Eligible lot snapshots, in any order.
        required_quantity: Quantity to cover; must be positive.
        strategy: Determines the ordering (see SORT_KEYS).
        product_id: Reported on InsufficientStockError.

    Returns:
        AllocationBatch whose total equals required_quantity.

    Raises:
        ValueError: required_quantity <= 0.
        InsufficientStockError: total stock across ``lots`` is below
            required_quantity.
    """
    if required_quantity <= 0:
        raise ValueError(
            f"Required quantity must be positive, got {required_quantity}"
        )

    remaining = required_quantity
    allocations: list[Allocation] = []

    for lot in order_lots(lots, strategy):
        if remaining <= 0:
            break
        take = min(lot.current_quantity, remaining)
        if take <= 0:
            continue
        allocations.append(
            Allocation(
                lot_id=lot.lot_id,
                lot_no=lot.lot_no,
                allocated_quantity=take,
                available_quantity=lot.current_quantity,
                expiry_date=lot.expiry_date,
            )
        )
        remaining -= take

    if remaining > 0:
        available = required_quantity - remaining
        logger.warning("lot_selection_shortfall", extra={
            "strategy": strategy.value,
            "product_id": product_id,
            "required_quantity": str(required_quantity),
            "available_quantity": str(available),
            "lot_count": len(lots),
        })
        raise InsufficientStockError(
            product_id=product_id,
            requested_quantity=required_quantity,
            available_quantity=available,
        )

    return AllocationBatch(
        strategy=strategy,
        required_quantity=required_quantity,
        allocations=tuple(allocations),
    )


@traced_engine("lot_selection", "1.0", fingerprint_fields=("today", "days"))
def lots_expiring_within(
    lots: Iterable[LotSnapshot],
    today: date,
    days: int,
) -> list[LotSnapshot]:
    """
    Lots whose expiry date lies in ``[today, today + days]`` inclusive,
    ordered by (expiry_date, lot_id).  Lots without expiry never match.
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")
    horizon = today + timedelta(days=days)
    expiring = [
        lot for lot in lots
        if lot.expiry_date is not None and today <= lot.expiry_date <= horizon
    ]
    return sorted(expiring, key=expiry_sort_key)

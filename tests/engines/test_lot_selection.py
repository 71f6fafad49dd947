"""
Tests for the pure lot selection engine.

Covers:
- FIFO / FEFO ordering and tie-breaking
- Greedy allocation and the sum invariant
- Eligibility filtering
- Expiry window
- Engine trace records
"""

from datetime import date
from decimal import Decimal

import pytest

from mes_engines.lot_selection import (
    allocate_greedy,
    fefo_sort_key,
    fifo_sort_key,
    filter_eligible,
    lots_expiring_within,
    order_lots,
)
from mes_engines.tracer import compute_input_fingerprint
from mes_kernel.domain.lot import (
    AllocationStrategy,
    EligibilityPolicy,
    LotSnapshot,
    QualityStatus,
)
from mes_kernel.exceptions import InsufficientStockError


def make_lot(
    lot_id: int,
    quantity: str = "10",
    mfg: date = date(2024, 1, 1),
    expiry: date | None = None,
    status: QualityStatus = QualityStatus.PASS,
    active: bool = True,
    initial: str | None = None,
) -> LotSnapshot:
    return LotSnapshot(
        lot_id=lot_id,
        lot_no=f"L{lot_id}",
        tenant_id="T1",
        warehouse_id=1,
        product_id=100,
        current_quantity=Decimal(quantity),
        initial_quantity=Decimal(initial or quantity),
        unit="EA",
        manufacturing_date=mfg,
        expiry_date=expiry,
        quality_status=status,
        is_active=active,
    )


class TestOrdering:
    """Sort keys and order_lots."""

    def test_fifo_orders_by_manufacturing_date(self):
        lots = [
            make_lot(1, mfg=date(2024, 1, 5)),
            make_lot(2, mfg=date(2024, 1, 1)),
            make_lot(3, mfg=date(2024, 1, 3)),
        ]

        ordered = order_lots(lots, AllocationStrategy.FIFO)

        assert [lot.lot_id for lot in ordered] == [2, 3, 1]

    def test_fifo_ties_broken_by_lot_id(self):
        lots = [make_lot(7), make_lot(3), make_lot(5)]

        ordered = sorted(lots, key=fifo_sort_key)

        assert [lot.lot_id for lot in ordered] == [3, 5, 7]

    def test_fefo_puts_undated_lots_last(self):
        lots = [
            make_lot(1, expiry=date(2024, 3, 1)),
            make_lot(2, expiry=date(2024, 2, 1)),
            make_lot(3, expiry=None),
        ]

        ordered = sorted(lots, key=fefo_sort_key)

        assert [lot.lot_id for lot in ordered] == [2, 1, 3]

    def test_fefo_undated_lots_ordered_by_lot_id(self):
        lots = [make_lot(9), make_lot(4, expiry=date(2030, 1, 1)), make_lot(2)]

        ordered = order_lots(lots, AllocationStrategy.FEFO)

        assert [lot.lot_id for lot in ordered] == [4, 2, 9]

    def test_specific_keeps_caller_order(self):
        lots = [make_lot(3), make_lot(1)]

        ordered = order_lots(lots, AllocationStrategy.SPECIFIC)

        assert [lot.lot_id for lot in ordered] == [3, 1]


class TestAllocateGreedy:
    """Greedy draw in strategy order."""

    def test_draws_oldest_lot_fully_first(self):
        lots = [
            make_lot(1, "50", mfg=date(2024, 1, 1)),
            make_lot(2, "30", mfg=date(2024, 1, 5)),
        ]

        batch = allocate_greedy(
            lots=lots,
            required_quantity=Decimal("60"),
            strategy=AllocationStrategy.FIFO,
        )

        assert [(a.lot_id, a.allocated_quantity) for a in batch] == [
            (1, Decimal("50")),
            (2, Decimal("10")),
        ]
        assert batch.total_allocated == Decimal("60")
        assert batch.is_fully_allocated

    def test_exact_fit_uses_single_lot(self):
        batch = allocate_greedy(
            lots=[make_lot(1, "25"), make_lot(2, "25")],
            required_quantity=Decimal("25"),
            strategy=AllocationStrategy.FIFO,
        )

        assert batch.lot_ids == (1,)
        assert batch.allocations[0].remaining_after == Decimal("0")

    def test_fractional_quantities(self):
        batch = allocate_greedy(
            lots=[make_lot(1, "0.750"), make_lot(2, "2.500")],
            required_quantity=Decimal("1.125"),
            strategy=AllocationStrategy.FIFO,
        )

        assert [a.allocated_quantity for a in batch] == [
            Decimal("0.750"),
            Decimal("0.375"),
        ]

    def test_shortfall_raises_with_shortfall(self):
        lots = [make_lot(1, "50"), make_lot(2, "30")]

        with pytest.raises(InsufficientStockError) as exc_info:
            allocate_greedy(
                lots=lots,
                required_quantity=Decimal("100"),
                strategy=AllocationStrategy.FIFO,
                product_id=100,
            )

        assert exc_info.value.shortfall == Decimal("20")
        assert exc_info.value.available_quantity == Decimal("80")
        assert exc_info.value.product_id == 100

    def test_no_lots_is_a_full_shortfall(self):
        with pytest.raises(InsufficientStockError) as exc_info:
            allocate_greedy(
                lots=[],
                required_quantity=Decimal("5"),
                strategy=AllocationStrategy.FEFO,
            )

        assert exc_info.value.shortfall == Decimal("5")

    @pytest.mark.parametrize("required", [Decimal("0"), Decimal("-1")])
    def test_non_positive_requirement_rejected(self, required):
        with pytest.raises(ValueError):
            allocate_greedy(
                lots=[make_lot(1)],
                required_quantity=required,
                strategy=AllocationStrategy.FIFO,
            )

    def test_allocation_records_available_quantity(self):
        batch = allocate_greedy(
            lots=[make_lot(1, "8", initial="20")],
            required_quantity=Decimal("5"),
            strategy=AllocationStrategy.FIFO,
        )

        allocation = batch.allocations[0]
        assert allocation.available_quantity == Decimal("8")
        assert allocation.allocated_quantity <= allocation.available_quantity


class TestFilterEligible:
    """Eligibility filtering."""

    def test_default_policy_admits_pass_only(self):
        lots = [
            make_lot(1, status=QualityStatus.PASS),
            make_lot(2, status=QualityStatus.PENDING),
            make_lot(3, status=QualityStatus.REJECT),
        ]

        eligible = filter_eligible(lots=lots, policy=EligibilityPolicy())

        assert [lot.lot_id for lot in eligible] == [1]

    def test_exhausted_and_inactive_dropped_by_permissive_predicate(self):
        lots = [
            make_lot(1, "0", initial="10"),
            make_lot(2, active=False),
            make_lot(3),
        ]

        eligible = filter_eligible(lots=lots, policy=lambda lot: True)

        assert [lot.lot_id for lot in eligible] == [3]

    def test_custom_predicate(self):
        lots = [
            make_lot(1, status=QualityStatus.PENDING),
            make_lot(2, status=QualityStatus.PASS),
        ]
        policy = EligibilityPolicy.from_status_names(["PASS", "PENDING"])

        eligible = filter_eligible(lots=lots, policy=policy)

        assert [lot.lot_id for lot in eligible] == [1, 2]


class TestLotsExpiringWithin:
    """Expiry window [today, today + days]."""

    def test_window_is_inclusive(self):
        today = date(2024, 1, 1)
        lots = [
            make_lot(1, expiry=date(2024, 1, 1)),
            make_lot(2, expiry=date(2024, 1, 31)),
            make_lot(3, expiry=date(2024, 2, 1)),
            make_lot(4, expiry=date(2023, 12, 31)),
            make_lot(5, expiry=None),
        ]

        expiring = lots_expiring_within(lots=lots, today=today, days=30)

        assert [lot.lot_id for lot in expiring] == [1, 2]

    def test_sorted_by_expiry_then_id(self):
        today = date(2024, 1, 1)
        lots = [
            make_lot(3, expiry=date(2024, 1, 10)),
            make_lot(2, expiry=date(2024, 1, 5)),
            make_lot(1, expiry=date(2024, 1, 10)),
        ]

        expiring = lots_expiring_within(lots=lots, today=today, days=30)

        assert [lot.lot_id for lot in expiring] == [2, 1, 3]

    def test_zero_days_means_today_only(self):
        today = date(2024, 1, 1)
        lots = [make_lot(1, expiry=today), make_lot(2, expiry=date(2024, 1, 2))]

        expiring = lots_expiring_within(lots=lots, today=today, days=0)

        assert [lot.lot_id for lot in expiring] == [1]

    def test_negative_days_rejected(self):
        with pytest.raises(ValueError):
            lots_expiring_within(lots=[], today=date(2024, 1, 1), days=-1)


class TestEngineTrace:
    """MES_ENGINE_TRACE records."""

    def test_allocate_emits_trace(self, captured_logs):
        allocate_greedy(
            lots=[make_lot(1)],
            required_quantity=Decimal("5"),
            strategy=AllocationStrategy.FIFO,
            product_id=100,
        )

        traces = [r for r in captured_logs() if r["message"] == "MES_ENGINE_TRACE"]
        assert traces
        trace = traces[-1]
        assert trace["engine_name"] == "lot_selection"
        assert trace["function"] == "allocate_greedy"
        assert len(trace["input_fingerprint"]) == 16

    def test_fingerprint_ignores_decimal_exponent(self):
        fields = ("required_quantity", "strategy")

        a = compute_input_fingerprint(
            fields, {"required_quantity": Decimal("10"), "strategy": AllocationStrategy.FIFO},
        )
        b = compute_input_fingerprint(
            fields, {"required_quantity": Decimal("10.000"), "strategy": AllocationStrategy.FIFO},
        )

        assert a == b

    def test_fingerprint_differs_by_strategy(self):
        fields = ("required_quantity", "strategy")

        a = compute_input_fingerprint(
            fields, {"required_quantity": Decimal("10"), "strategy": AllocationStrategy.FIFO},
        )
        b = compute_input_fingerprint(
            fields, {"required_quantity": Decimal("10"), "strategy": AllocationStrategy.FEFO},
        )

        assert a != b

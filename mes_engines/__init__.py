"""
Module: mes_engines
Responsibility:
    Package entrypoint that re-exports the pure selection engines.  This is
    the canonical import surface for mes_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import mes_kernel.domain, mes_kernel.exceptions and
    mes_kernel.logging_config.  MUST NOT import mes_services.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      Dates are passed in by the calling service.
    - Decimal-only quantity arithmetic.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine`` (see
    ``mes_engines.tracer``), emitting MES_ENGINE_TRACE records.
"""

from mes_engines.lot_selection import (
    SORT_KEYS,
    allocate_greedy,
    expiry_sort_key,
    fefo_sort_key,
    fifo_sort_key,
    filter_eligible,
    lots_expiring_within,
    order_lots,
)
from mes_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "SORT_KEYS",
    "allocate_greedy",
    "compute_input_fingerprint",
    "expiry_sort_key",
    "fefo_sort_key",
    "fifo_sort_key",
    "filter_eligible",
    "lots_expiring_within",
    "order_lots",
    "traced_engine",
]

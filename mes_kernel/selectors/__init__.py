"""Selectors for the MES kernel (read side)."""

from mes_kernel.selectors.lot_selector import LotSelector

__all__ = [
    "LotSelector",
]

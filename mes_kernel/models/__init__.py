"""
ORM models for the MES kernel.

Importing this package registers every table on ``Base.metadata``.
"""

from mes_kernel.models.disposal import DisposalItemModel, DisposalModel, DisposalType
from mes_kernel.models.inventory_transaction import (
    InventoryTransactionModel,
    TransactionType,
)
from mes_kernel.models.lot import LotModel
from mes_kernel.models.material_handover import (
    MaterialHandoverModel,
    MaterialRequestModel,
)
from mes_kernel.models.return_order import ReturnItemModel, ReturnModel, ReturnType

__all__ = [
    "DisposalItemModel",
    "DisposalModel",
    "DisposalType",
    "InventoryTransactionModel",
    "LotModel",
    "MaterialHandoverModel",
    "MaterialRequestModel",
    "ReturnItemModel",
    "ReturnModel",
    "ReturnType",
    "TransactionType",
]

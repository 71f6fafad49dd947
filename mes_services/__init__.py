"""
mes_services -- Package init and public API.

Responsibility:
    Stateful orchestration services that compose the pure selection
    engines (mes_engines/) with database sessions, configuration and the
    workflow executor.  This is the only layer that holds sessions or
    reads wall-clock time (through an injected Clock).

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundary.py):
        mes_services/ -> mes_engines/  (allowed)
        mes_services/ -> mes_kernel/   (allowed)
        mes_services/ -> mes_config/   (allowed)
        mes_engines/  -> mes_services/ (FORBIDDEN)
        mes_kernel/   -> mes_services/ (FORBIDDEN)

Invariants enforced:
    - Services flush but never commit; the caller owns the transaction.
    - Every status change of a document goes through WorkflowExecutor.
"""

from mes_kernel.logging_config import get_logger

logger = get_logger("services")

from mes_services.disposal_service import DisposalItemInput, DisposalService
from mes_services.lot_allocation_service import LotAllocator, LotQuery
from mes_services.lot_consumption_service import (
    ConsumptionRecord,
    ConsumptionResult,
    LotConsumptionService,
)
from mes_services.lot_service import LotService
from mes_services.material_handover_service import MaterialHandoverService
from mes_services.return_service import ReturnItemInput, ReturnService
from mes_services.workflow_executor import (
    GuardExecutor,
    WorkflowExecutor,
    default_guard_executor,
)

__all__ = [
    "ConsumptionRecord",
    "ConsumptionResult",
    "DisposalItemInput",
    "DisposalService",
    "GuardExecutor",
    "LotAllocator",
    "LotConsumptionService",
    "LotQuery",
    "LotService",
    "MaterialHandoverService",
    "ReturnItemInput",
    "ReturnService",
    "WorkflowExecutor",
    "default_guard_executor",
]

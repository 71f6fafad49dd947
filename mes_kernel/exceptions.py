"""
Typed Exception Hierarchy for the MES Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from MesKernelError:

    MesKernelError (base)
    |
    +-- ValidationError
    |
    +-- LotError
    |   +-- LotNotFoundError
    |   +-- LotAlreadyExistsError
    |   +-- InsufficientStockError
    |   +-- InvalidSplitQuantityError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- WorkflowError
        +-- DocumentNotFoundError
        +-- InvalidStatusTransitionError
        +-- UnauthorizedActorError
        +-- DocumentNotDeletableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Non-positive quantity, missing identifier
----------------|-----------------------------|-----------------------------------------
Lot             | LOT_NOT_FOUND               | Lot missing or outside tenant/warehouse/product
                | LOT_ALREADY_EXISTS          | Duplicate lot number within tenant
                | INSUFFICIENT_STOCK          | Eligible stock below requirement
                | INVALID_SPLIT_QUANTITY      | Split quantity not inside (0, current)
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENT_MODIFICATION     | Lot changed between selection and consumption
----------------|-----------------------------|-----------------------------------------
Workflow        | DOCUMENT_NOT_FOUND          | Handover / disposal / return id unknown
                | INVALID_STATUS_TRANSITION   | Action not allowed from current status
                | UNAUTHORIZED_ACTOR          | Actor lacks role or is not the assignee
                | DOCUMENT_NOT_DELETABLE      | Delete attempted outside PENDING

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CATCH SPECIFIC EXCEPTIONS:

    try:
        batch = allocator.select_by_fifo(tenant_id, wh_id, product_id, qty)
    except InsufficientStockError as e:
        notify_planner(shortfall=e.shortfall)

2. USE STRUCTURED DATA (not message parsing):

    except InsufficientStockError as e:
        return {
            "error": e.code,
            "requested": e.requested_quantity,
            "available": e.available_quantity,
        }

3. CONCURRENT MODIFICATION IS A CALLER DECISION:

    except ConcurrentModificationError:
        # Stock changed since selection; re-run selection explicitly.
        batch = allocator.select_by_fifo(...)
"""

from decimal import Decimal


class MesKernelError(Exception):
    """
    Base exception for all MES kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "MES_KERNEL_ERROR"


class ValidationError(MesKernelError):
    """Input rejected before any lookup was attempted."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Lot-related exceptions


class LotError(MesKernelError):
    """Base exception for lot-related errors."""

    code: str = "LOT_ERROR"


class LotNotFoundError(LotError):
    """Lot does not exist or does not match the requested scope.

    ``lot_id`` is the lot number when the lookup was by number.
    """

    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_id: int | str, tenant_id: str, reason: str = "not found"):
        self.lot_id = lot_id
        self.tenant_id = tenant_id
        self.reason = reason
        super().__init__(f"Lot {lot_id} for tenant {tenant_id}: {reason}")


class LotAlreadyExistsError(LotError):
    """Lot number is already used within the tenant."""

    code: str = "LOT_ALREADY_EXISTS"

    def __init__(self, lot_no: str, tenant_id: str):
        self.lot_no = lot_no
        self.tenant_id = tenant_id
        super().__init__(f"Lot {lot_no} already exists for tenant {tenant_id}")


class InsufficientStockError(LotError):
    """
    Eligible stock is below the required quantity.

    No partial allocation accompanies this error; ``shortfall`` is the
    quantity that could not be covered.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: int,
        requested_quantity: Decimal,
        available_quantity: Decimal,
        lot_id: int | None = None,
    ):
        self.product_id = product_id
        self.requested_quantity = requested_quantity
        self.available_quantity = available_quantity
        self.shortfall = requested_quantity - available_quantity
        self.lot_id = lot_id
        scope = f"lot {lot_id}" if lot_id is not None else f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {scope}: requested {requested_quantity}, "
            f"available {available_quantity}, short {self.shortfall}"
        )


class InvalidSplitQuantityError(LotError):
    """Split quantity must be positive and strictly below the parent's stock."""

    code: str = "INVALID_SPLIT_QUANTITY"

    def __init__(self, lot_id: int, split_quantity: Decimal, current_quantity: Decimal):
        self.lot_id = lot_id
        self.split_quantity = split_quantity
        self.current_quantity = current_quantity
        super().__init__(
            f"Cannot split {split_quantity} from lot {lot_id} "
            f"holding {current_quantity}"
        )


# Concurrency-related exceptions


class ConcurrencyError(MesKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """
    Lot quantity changed after the allocation was computed.

    Raised only by the consumption step, never by pure selection.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        lot_id: int,
        expected_quantity: Decimal | None = None,
        actual_quantity: Decimal | None = None,
    ):
        self.lot_id = lot_id
        self.expected_quantity = expected_quantity
        self.actual_quantity = actual_quantity
        if expected_quantity is None:
            detail = "row was modified by another transaction"
        else:
            detail = (
                f"needs {expected_quantity} but only {actual_quantity} remains"
            )
        super().__init__(f"Concurrent modification on lot {lot_id}: {detail}")


# Workflow-related exceptions


class WorkflowError(MesKernelError):
    """Base exception for document workflow errors."""

    code: str = "WORKFLOW_ERROR"


class DocumentNotFoundError(WorkflowError):
    """Workflow document with given id was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_type: str, document_id: str):
        self.document_type = document_type
        self.document_id = document_id
        super().__init__(f"{document_type} not found: {document_id}")


class InvalidStatusTransitionError(WorkflowError):
    """The requested action is not allowed from the current status."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, workflow: str, current_status: str, action: str):
        self.workflow = workflow
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"{workflow}: action '{action}' not allowed from status {current_status}"
        )


class UnauthorizedActorError(WorkflowError):
    """Actor is not allowed to perform the action."""

    code: str = "UNAUTHORIZED_ACTOR"

    def __init__(self, workflow: str, action: str, actor_id: str, reason: str):
        self.workflow = workflow
        self.action = action
        self.actor_id = actor_id
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} may not '{action}' on {workflow}: {reason}"
        )


class DocumentNotDeletableError(WorkflowError):
    """Only PENDING documents can be deleted."""

    code: str = "DOCUMENT_NOT_DELETABLE"

    def __init__(self, document_type: str, document_no: str, status: str):
        self.document_type = document_type
        self.document_no = document_no
        self.status = status
        super().__init__(
            f"{document_type} {document_no} cannot be deleted in status {status}"
        )

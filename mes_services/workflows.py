"""
Document Workflows.

State machines for material request, handover, disposal and return
processing.  Role grants are not declared here; services attach them
from configuration with ``Workflow.with_role_grants``.
"""

from mes_kernel.domain.workflow import Guard, Transition, Workflow
from mes_kernel.logging_config import get_logger

logger = get_logger("services.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

ASSIGNED_RECEIVER = Guard(
    name="assigned_receiver",
    description="Actor is the receiver the handover was issued to",
)

logger.info(
    "workflow_guards_defined",
    extra={"guards": [ASSIGNED_RECEIVER.name]},
)


# -----------------------------------------------------------------------------
# Material Request Workflow
# -----------------------------------------------------------------------------

MATERIAL_REQUEST_WORKFLOW = Workflow(
    name="material_request",
    description="Production request for warehouse materials",
    initial_state="PENDING",
    states=(
        "PENDING",
        "APPROVED",
        "ISSUED",
        "COMPLETED",
        "REJECTED",
        "CANCELLED",
    ),
    transitions=(
        Transition("PENDING", "APPROVED", action="approve"),
        Transition("PENDING", "REJECTED", action="reject"),
        Transition("APPROVED", "ISSUED", action="issue"),
        # Partial issues: further lots may be issued against an ISSUED request.
        Transition("ISSUED", "ISSUED", action="issue"),
        Transition("ISSUED", "COMPLETED", action="complete"),
        Transition("PENDING", "CANCELLED", action="cancel"),
        Transition("APPROVED", "CANCELLED", action="cancel"),
    ),
    terminal_states=("COMPLETED", "REJECTED", "CANCELLED"),
)

logger.info(
    "workflow_registered",
    extra={
        "workflow": MATERIAL_REQUEST_WORKFLOW.name,
        "states": list(MATERIAL_REQUEST_WORKFLOW.states),
        "transition_count": len(MATERIAL_REQUEST_WORKFLOW.transitions),
    },
)


# -----------------------------------------------------------------------------
# Material Handover Workflow
# -----------------------------------------------------------------------------

HANDOVER_WORKFLOW = Workflow(
    name="material_handover",
    description="Receiver acknowledgement of materials issued to production",
    initial_state="PENDING",
    states=(
        "PENDING",
        "CONFIRMED",
        "REJECTED",
    ),
    transitions=(
        Transition("PENDING", "CONFIRMED", action="confirm", guard=ASSIGNED_RECEIVER),
        Transition("PENDING", "REJECTED", action="reject", guard=ASSIGNED_RECEIVER),
    ),
    terminal_states=("CONFIRMED", "REJECTED"),
)

logger.info(
    "workflow_registered",
    extra={
        "workflow": HANDOVER_WORKFLOW.name,
        "states": list(HANDOVER_WORKFLOW.states),
        "transition_count": len(HANDOVER_WORKFLOW.transitions),
    },
)


# -----------------------------------------------------------------------------
# Disposal Workflow
# -----------------------------------------------------------------------------

DISPOSAL_WORKFLOW = Workflow(
    name="disposal",
    description="Approval and execution of stock disposal",
    initial_state="PENDING",
    states=(
        "PENDING",
        "APPROVED",
        "REJECTED",
        "PROCESSED",
        "COMPLETED",
        "CANCELLED",
    ),
    transitions=(
        Transition("PENDING", "APPROVED", action="approve"),
        Transition("PENDING", "REJECTED", action="reject"),
        Transition("APPROVED", "PROCESSED", action="process"),
        Transition("PROCESSED", "COMPLETED", action="complete"),
        Transition("PENDING", "CANCELLED", action="cancel"),
        Transition("APPROVED", "CANCELLED", action="cancel"),
        Transition("PROCESSED", "CANCELLED", action="cancel"),
    ),
    terminal_states=("REJECTED", "COMPLETED", "CANCELLED"),
)

logger.info(
    "workflow_registered",
    extra={
        "workflow": DISPOSAL_WORKFLOW.name,
        "states": list(DISPOSAL_WORKFLOW.states),
        "transition_count": len(DISPOSAL_WORKFLOW.transitions),
    },
)


# -----------------------------------------------------------------------------
# Return Workflow
# -----------------------------------------------------------------------------

RETURN_WORKFLOW = Workflow(
    name="return",
    description="Return of materials from production to the warehouse",
    initial_state="PENDING",
    states=(
        "PENDING",
        "APPROVED",
        "REJECTED",
        "RECEIVED",
        "INSPECTING",
        "COMPLETED",
        "CANCELLED",
    ),
    transitions=(
        Transition("PENDING", "APPROVED", action="approve"),
        Transition("PENDING", "REJECTED", action="reject"),
        Transition("APPROVED", "RECEIVED", action="receive"),
        Transition("RECEIVED", "INSPECTING", action="start_inspection"),
        Transition("INSPECTING", "COMPLETED", action="complete"),
        # Returns that need no inspection close straight from RECEIVED.
        Transition("RECEIVED", "COMPLETED", action="complete"),
        Transition("PENDING", "CANCELLED", action="cancel"),
        Transition("APPROVED", "CANCELLED", action="cancel"),
        Transition("RECEIVED", "CANCELLED", action="cancel"),
        Transition("INSPECTING", "CANCELLED", action="cancel"),
    ),
    terminal_states=("REJECTED", "COMPLETED", "CANCELLED"),
)

logger.info(
    "workflow_registered",
    extra={
        "workflow": RETURN_WORKFLOW.name,
        "states": list(RETURN_WORKFLOW.states),
        "transition_count": len(RETURN_WORKFLOW.transitions),
    },
)

"""
mes_services.workflow_executor -- Workflow transition execution.

Responsibility:
    Resolve ``(workflow, current_state, action)`` to a transition, check
    the acting user's roles and the transition's guard, and report the
    target state.  Document services call this before changing a status
    column; the executor itself never touches the database.

Architecture position:
    Services layer.  May import from mes_kernel (domain, exceptions,
    logging).

Invariants enforced:
    - No status change without a declared transition.
    - Role gate: a transition with ``allowed_roles`` fires only for an
      actor holding one of them.
    - Guard gate: a guard with no registered evaluator fails closed.
    - Every attempt, allowed or refused, emits one ``workflow_transition``
      log record.

Failure modes:
    - InvalidStatusTransitionError when no transition matches.
    - UnauthorizedActorError when the actor lacks a role or a guard fails.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any

from mes_kernel.domain.workflow import Actor, Guard, Transition, Workflow
from mes_kernel.exceptions import InvalidStatusTransitionError, UnauthorizedActorError
from mes_kernel.logging_config import get_logger

logger = get_logger("services.workflow_executor")

TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_NO_TRANSITION = "no_transition"
OUTCOME_ROLE_DENIED = "role_denied"
OUTCOME_GUARD_FAILED = "guard_failed"


def _emit_workflow_trace(
    workflow_name: str,
    action: str,
    document_type: str,
    document_id: int | None,
    from_state: str,
    actor_id: int,
    outcome: str,
    reason: str,
    duration_ms: float,
    to_state: str | None = None,
) -> None:
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "workflow": workflow_name,
        "action": action,
        "document_type": document_type,
        "document_id": document_id,
        "from_state": from_state,
        "actor_id": actor_id,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    if to_state is not None:
        record["to_state"] = to_state
    level = logger.info if outcome == OUTCOME_SUCCESS else logger.warning
    level("workflow_transition", extra=record)


# ---------------------------------------------------------------------------
# Guard evaluation
# ---------------------------------------------------------------------------


def _get_attr(context: Any, key: str, default: Any = None) -> Any:
    """Get attribute from context (object or dict)."""
    if context is None:
        return default
    if isinstance(context, Mapping):
        return context.get(key, default)
    return getattr(context, key, default)


def _assigned_receiver(context: Any) -> bool:
    """Handover: the acting user is the assigned receiver."""
    actor_id = _get_attr(context, "actor_id")
    receiver_id = _get_attr(context, "receiver_id")
    if actor_id is None or receiver_id is None:
        return False
    return actor_id == receiver_id


class GuardExecutor:
    """Evaluates workflow guards against context.

    Guards are declared on transitions (name + description).  This executor
    holds the evaluation logic per guard name.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, Callable[[Any], bool]] = {}

    def register(self, guard_name: str, evaluator: Callable[[Any], bool]) -> None:
        self._evaluators[guard_name] = evaluator

    def evaluate(self, guard: Guard, context: Any = None) -> bool:
        fn = self._evaluators.get(guard.name)
        if fn is None:
            logger.warning("guard_no_evaluator", extra={"guard_name": guard.name})
            return False
        return bool(fn(context))


def default_guard_executor() -> GuardExecutor:
    """Return a GuardExecutor with the built-in evaluators registered."""
    executor = GuardExecutor()
    executor.register("assigned_receiver", _assigned_receiver)
    return executor


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class WorkflowExecutor:
    """Validates workflow transitions for document services.

    Thin coordinator: transition lookup comes from the Workflow value,
    guard logic from GuardExecutor.
    """

    def __init__(self, guard_executor: GuardExecutor | None = None) -> None:
        self._guard_executor = guard_executor or default_guard_executor()

    def execute_transition(
        self,
        workflow: Workflow,
        document_type: str,
        document_id: int | None,
        current_state: str,
        action: str,
        actor: Actor,
        context: Mapping[str, Any] | None = None,
    ) -> Transition:
        """
        Check that ``actor`` may fire ``action`` from ``current_state``.

        Returns:
            The matching Transition; its ``to_state`` is the new status.

        Raises:
            InvalidStatusTransitionError: No transition for (state, action).
            UnauthorizedActorError: Role or guard check failed.
        """
        t0 = time.monotonic()

        def trace(outcome: str, reason: str, to_state: str | None = None) -> None:
            _emit_workflow_trace(
                workflow_name=workflow.name,
                action=action,
                document_type=document_type,
                document_id=document_id,
                from_state=current_state,
                actor_id=actor.actor_id,
                outcome=outcome,
                reason=reason,
                duration_ms=(time.monotonic() - t0) * 1000,
                to_state=to_state,
            )

        transition = workflow.find_transition(current_state, action)
        if transition is None:
            trace(
                OUTCOME_NO_TRANSITION,
                f"No transition from '{current_state}' via '{action}'",
            )
            raise InvalidStatusTransitionError(workflow.name, current_state, action)

        if transition.allowed_roles and not actor.has_any_role(transition.allowed_roles):
            reason = f"requires one of {sorted(transition.allowed_roles)}"
            trace(OUTCOME_ROLE_DENIED, reason)
            raise UnauthorizedActorError(workflow.name, action, actor.actor_id, reason)

        if transition.guard is not None:
            ctx = {"actor_id": actor.actor_id, **(context or {})}
            if not self._guard_executor.evaluate(transition.guard, ctx):
                reason = f"guard not satisfied: {transition.guard.description}"
                trace(OUTCOME_GUARD_FAILED, reason)
                raise UnauthorizedActorError(
                    workflow.name, action, actor.actor_id, reason,
                )

        trace(OUTCOME_SUCCESS, "transition allowed", to_state=transition.to_state)
        return transition

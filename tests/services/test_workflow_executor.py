"""
Tests for WorkflowExecutor and GuardExecutor (mes_services.workflow_executor).

Covers:
- execute_transition() success, unknown action, role gate, guard gate
- Role grants attached from configuration
- Guard evaluation with and without a registered evaluator
- workflow_transition trace records
- Static validation of the declared workflows
"""

import pytest

from mes_kernel.domain.workflow import Actor, Guard, Transition, Workflow
from mes_kernel.exceptions import InvalidStatusTransitionError, UnauthorizedActorError
from mes_services.workflow_executor import (
    GuardExecutor,
    WorkflowExecutor,
    default_guard_executor,
)
from mes_services.workflows import (
    DISPOSAL_WORKFLOW,
    HANDOVER_WORKFLOW,
    MATERIAL_REQUEST_WORKFLOW,
    RETURN_WORKFLOW,
)

ALL_WORKFLOWS = (
    MATERIAL_REQUEST_WORKFLOW,
    HANDOVER_WORKFLOW,
    DISPOSAL_WORKFLOW,
    RETURN_WORKFLOW,
)


@pytest.fixture
def executor():
    return WorkflowExecutor()


@pytest.fixture
def disposal_workflow(mes_config):
    return DISPOSAL_WORKFLOW.with_role_grants(mes_config.workflows.grants_for("disposal"))


class TestExecuteTransition:
    """Transition lookup and gates."""

    def test_allowed_transition_returns_target(self, executor, disposal_workflow, quality_manager):
        transition = executor.execute_transition(
            workflow=disposal_workflow,
            document_type="Disposal",
            document_id=1,
            current_state="PENDING",
            action="approve",
            actor=quality_manager,
        )

        assert transition.to_state == "APPROVED"

    def test_unknown_action_rejected(self, executor, disposal_workflow, quality_manager):
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            executor.execute_transition(
                workflow=disposal_workflow,
                document_type="Disposal",
                document_id=1,
                current_state="COMPLETED",
                action="approve",
                actor=quality_manager,
            )

        assert exc_info.value.current_status == "COMPLETED"
        assert exc_info.value.action == "approve"

    def test_missing_role_rejected(self, executor, disposal_workflow, operator):
        with pytest.raises(UnauthorizedActorError) as exc_info:
            executor.execute_transition(
                workflow=disposal_workflow,
                document_type="Disposal",
                document_id=1,
                current_state="PENDING",
                action="approve",
                actor=operator,
            )

        assert exc_info.value.actor_id == operator.actor_id

    def test_ungated_action_open_to_any_actor(self, executor, disposal_workflow, operator):
        transition = executor.execute_transition(
            workflow=disposal_workflow,
            document_type="Disposal",
            document_id=1,
            current_state="PENDING",
            action="cancel",
            actor=operator,
        )

        assert transition.to_state == "CANCELLED"

    def test_admin_role_granted_everywhere(self, executor, disposal_workflow):
        admin = Actor(actor_id=99, roles=frozenset({"ADMIN"}))

        for state, action in [("PENDING", "approve"), ("APPROVED", "process"),
                              ("PROCESSED", "complete")]:
            executor.execute_transition(
                workflow=disposal_workflow,
                document_type="Disposal",
                document_id=1,
                current_state=state,
                action=action,
                actor=admin,
            )

    def test_ungranted_workflow_has_no_role_gate(self, executor, operator):
        transition = executor.execute_transition(
            workflow=DISPOSAL_WORKFLOW,
            document_type="Disposal",
            document_id=1,
            current_state="PENDING",
            action="approve",
            actor=operator,
        )

        assert transition.allowed_roles == frozenset()


class TestGuards:
    """Guard gate on the handover workflow."""

    def test_assigned_receiver_may_confirm(self, executor, operator):
        transition = executor.execute_transition(
            workflow=HANDOVER_WORKFLOW,
            document_type="MaterialHandover",
            document_id=5,
            current_state="PENDING",
            action="confirm",
            actor=operator,
            context={"receiver_id": operator.actor_id},
        )

        assert transition.to_state == "CONFIRMED"

    def test_other_actor_may_not_confirm(self, executor, operator, warehouse_manager):
        with pytest.raises(UnauthorizedActorError) as exc_info:
            executor.execute_transition(
                workflow=HANDOVER_WORKFLOW,
                document_type="MaterialHandover",
                document_id=5,
                current_state="PENDING",
                action="confirm",
                actor=warehouse_manager,
                context={"receiver_id": operator.actor_id},
            )

        assert "guard" in exc_info.value.reason

    def test_missing_context_fails_guard(self, executor, operator):
        with pytest.raises(UnauthorizedActorError):
            executor.execute_transition(
                workflow=HANDOVER_WORKFLOW,
                document_type="MaterialHandover",
                document_id=5,
                current_state="PENDING",
                action="reject",
                actor=operator,
            )

    def test_guard_without_evaluator_fails_closed(self, operator):
        guard = Guard(name="unregistered", description="never registered")
        workflow = Workflow(
            name="probe",
            description="",
            initial_state="A",
            states=("A", "B"),
            transitions=(Transition("A", "B", action="go", guard=guard),),
        )
        executor = WorkflowExecutor(guard_executor=GuardExecutor())

        with pytest.raises(UnauthorizedActorError):
            executor.execute_transition(
                workflow=workflow,
                document_type="Probe",
                document_id=None,
                current_state="A",
                action="go",
                actor=operator,
            )

    def test_custom_evaluator(self, operator):
        guards = GuardExecutor()
        guards.register("always", lambda ctx: True)
        guard = Guard(name="always", description="")

        assert guards.evaluate(guard, {}) is True

    def test_default_executor_evaluates_receiver_from_object(self):
        class Ctx:
            actor_id = 4
            receiver_id = 4

        guard = Guard(name="assigned_receiver", description="")

        assert default_guard_executor().evaluate(guard, Ctx()) is True


class TestTransitionTrace:
    """Every attempt is logged."""

    def test_success_trace(self, executor, disposal_workflow, quality_manager, captured_logs):
        executor.execute_transition(
            workflow=disposal_workflow,
            document_type="Disposal",
            document_id=3,
            current_state="PENDING",
            action="reject",
            actor=quality_manager,
        )

        [record] = [r for r in captured_logs() if r["message"] == "workflow_transition"]
        assert record["outcome"] == "success"
        assert record["from_state"] == "PENDING"
        assert record["to_state"] == "REJECTED"
        assert record["workflow"] == "disposal"

    def test_refusal_trace_is_warning(self, executor, disposal_workflow, operator, captured_logs):
        with pytest.raises(UnauthorizedActorError):
            executor.execute_transition(
                workflow=disposal_workflow,
                document_type="Disposal",
                document_id=3,
                current_state="PENDING",
                action="approve",
                actor=operator,
            )

        [record] = [r for r in captured_logs() if r["message"] == "workflow_transition"]
        assert record["outcome"] == "role_denied"
        assert record["level"] == "WARNING"


class TestDeclaredWorkflows:
    """Static checks over the workflow declarations."""

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda w: w.name)
    def test_terminal_states_have_no_exits(self, workflow):
        for state in workflow.terminal_states:
            assert workflow.actions_from(state) == ()

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda w: w.name)
    def test_every_state_reachable(self, workflow):
        reachable = {workflow.initial_state}
        frontier = [workflow.initial_state]
        while frontier:
            state = frontier.pop()
            for t in workflow.transitions:
                if t.from_state == state and t.to_state not in reachable:
                    reachable.add(t.to_state)
                    frontier.append(t.to_state)

        assert reachable == set(workflow.states)

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda w: w.name)
    def test_configured_grants_name_real_actions(self, workflow, mes_config):
        actions = {t.action for t in workflow.transitions}

        assert set(mes_config.workflows.grants_for(workflow.name)) <= actions

    def test_duplicate_transition_rejected(self):
        with pytest.raises(ValueError):
            Workflow(
                name="dup",
                description="",
                initial_state="A",
                states=("A", "B"),
                transitions=(
                    Transition("A", "B", action="go"),
                    Transition("A", "A", action="go"),
                ),
            )

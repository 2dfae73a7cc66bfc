"""
Instance lifecycle tests.

Covers:
- Subject validation and template preconditions
- Pinned template version, locked template, schema defaults
- Step materialization: dependency and branch ids mapped to instance steps
- Graph validation before any row is inserted
- Cancellation: permissions, idempotency, uniform skip reason
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from tests.conftest import step_dict
from workflow_kernel.domain.types import ActionState, InstanceStatus
from workflow_kernel.exceptions import (
    DependencyIntegrityError,
    ImmutabilityViolationError,
    PreconditionError,
    WorkflowNotFoundError,
    WorkflowPermissionError,
)
from workflow_kernel.models import (
    WorkflowInstanceModel,
    WorkflowTemplateModel,
    WorkflowTemplateStepModel,
)


def by_order(instance):
    return {s.order: s for s in instance.steps}


@pytest.fixture
def template(create_template):
    return create_template(
        [
            step_dict(
                0,
                "Approve engagement",
                "APPROVAL",
                "LAWYER",
                branches=[
                    {"targetOrder": 1, "condition": "approved", "label": "Engage"},
                    {"targetOrder": 2, "condition": "rejected", "label": "Decline"},
                ],
            ),
            step_dict(1, "Draft letter", dependsOn=[0]),
            step_dict(2, "Decline letter", dependsOn=[0], required=False),
            step_dict(3, "Open file", dependsOn=[1, 2], dependencyLogic="ANY"),
        ],
        name="Onboarding",
        context_schema={
            "version": 1,
            "fields": {
                "paymentReceived": {"type": "boolean", "default": False},
                "clientApproved": {"type": "boolean"},
            },
        },
    )


class TestInstantiate:
    def test_subject_must_be_exactly_one(self, services, template, admin):
        with pytest.raises(PreconditionError) as exc_info:
            services.instances.instantiate_template(template.id, actor=admin)
        assert exc_info.value.code == "INVALID_SUBJECT"
        with pytest.raises(PreconditionError):
            services.instances.instantiate_template(
                template.id, actor=admin, matter_id=uuid4(), contact_id=uuid4()
            )

    def test_contact_subject(self, services, template, admin):
        contact_id = uuid4()
        instance = services.instances.instantiate_template(template.id, actor=admin, contact_id=contact_id)
        assert instance.matter_id is None
        assert instance.subject_id == contact_id

    def test_unknown_template(self, services, admin):
        with pytest.raises(WorkflowNotFoundError):
            services.instances.instantiate_template(uuid4(), actor=admin, matter_id=uuid4())

    def test_inactive_template(self, services, create_template, admin):
        draft_only = create_template([step_dict(0, "Intake")], active=False)
        with pytest.raises(PreconditionError) as exc_info:
            services.instances.instantiate_template(draft_only.id, actor=admin, matter_id=uuid4())
        assert exc_info.value.code == "TEMPLATE_INACTIVE"

    def test_template_without_steps(self, services, session, admin):
        empty = WorkflowTemplateModel(name="Empty", version=1, is_active=True, created_by_id=admin.id)
        session.add(empty)
        session.flush()
        with pytest.raises(PreconditionError) as exc_info:
            services.instances.instantiate_template(empty.id, actor=admin, matter_id=uuid4())
        assert exc_info.value.code == "TEMPLATE_EMPTY"

    def test_pins_template_and_applies_defaults(self, create_instance, template, admin, deterministic_clock):
        instance = create_instance(template)
        assert instance.status == InstanceStatus.ACTIVE.value
        assert instance.template_version == template.version
        assert instance.template_name == "Onboarding"
        assert instance.created_by_id == admin.id
        assert instance.created_at == deterministic_clock.now()
        assert instance.context == {"paymentReceived": False}
        assert instance.context_schema == template.context_schema
        assert template.is_locked is True

    def test_steps_reference_instance_ids(self, create_instance, template):
        steps = by_order(create_instance(template))
        assert len(steps) == 4
        assert steps[1].depends_on == [str(steps[0].id)]
        assert steps[3].depends_on == [str(steps[1].id), str(steps[2].id)]
        assert steps[3].dependency_logic == "ANY"
        assert steps[0].branches == [
            {"targetStepId": str(steps[1].id), "condition": "approved", "label": "Engage"},
            {"targetStepId": str(steps[2].id), "condition": "rejected", "label": "Decline"},
        ]
        assert steps[2].required is False

    def test_step_snapshot_and_initial_states(self, create_instance, template):
        steps = by_order(create_instance(template))
        assert steps[0].action_state == ActionState.READY.value
        assert all(steps[o].action_state == ActionState.PENDING.value for o in (1, 2, 3))
        assert steps[0].action_data == {"config": {}, "history": []}
        assert steps[0].template_step is not None
        assert steps[0].title == "Approve engagement"

    def test_records_creation_metric(self, create_instance, template, services):
        create_instance(template)
        create_instance(template)
        assert services.metrics.get("instance.created", f"template_{template.id}") == 2

    def test_locked_template_steps_are_immutable(self, create_instance, template, session):
        create_instance(template)
        template.steps[0].title = "Edited after use"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_cyclic_template_inserts_nothing(self, services, session, admin):
        cyclic = WorkflowTemplateModel(name="Cyclic", version=1, is_active=True, created_by_id=admin.id)
        cyclic.steps.append(WorkflowTemplateStepModel(
            order=0, title="A", action_type="TASK", role_scope="PARALEGAL", depends_on=[1]
        ))
        cyclic.steps.append(WorkflowTemplateStepModel(
            order=1, title="B", action_type="TASK", role_scope="PARALEGAL", depends_on=[0]
        ))
        session.add(cyclic)
        session.flush()

        with pytest.raises(DependencyIntegrityError):
            services.instances.instantiate_template(cyclic.id, actor=admin, matter_id=uuid4())
        assert session.scalar(select(func.count()).select_from(WorkflowInstanceModel)) == 0
        assert cyclic.is_locked is False


class TestCancel:
    def test_cancel_skips_open_steps(self, services, create_instance, template, lawyer, deterministic_clock):
        instance = create_instance(template)
        steps = by_order(instance)
        services.runtime.start_step(steps[0].id, actor=lawyer)
        services.runtime.complete_step(steps[0].id, actor=lawyer, payload={"approved": True})
        deterministic_clock.advance(60)

        services.instances.cancel_instance(instance.id, actor=lawyer, reason="Client withdrew")

        assert instance.status == InstanceStatus.CANCELED.value
        assert instance.canceled_at == deterministic_clock.now()
        assert instance.cancellation_reason == "Client withdrew"
        assert steps[0].action_state == ActionState.COMPLETED.value
        assert steps[2].notes == "Branch not taken: Decline"
        assert "cancellationReason" not in steps[2].action_data
        for order in (1, 3):
            step = steps[order]
            assert step.action_state == ActionState.SKIPPED.value
            assert step.action_data["cancellationReason"] == "Client withdrew"
            assert step.action_data["history"][-1]["payload"] == {"reason": "Client withdrew"}
            assert step.action_data["history"][-1]["by"] == str(lawyer.id)

    def test_cancel_is_idempotent(self, services, create_instance, template, admin):
        instance = create_instance(template)
        services.instances.cancel_instance(instance.id, actor=admin)
        history_len = len(by_order(instance)[0].action_data["history"])
        assert services.instances.cancel_instance(instance.id, actor=admin) is instance
        assert len(by_order(instance)[0].action_data["history"]) == history_len
        assert instance.cancellation_reason == "Workflow canceled"

    def test_only_admins_and_lawyers_cancel(self, services, create_instance, template, paralegal):
        instance = create_instance(template)
        with pytest.raises(WorkflowPermissionError):
            services.instances.cancel_instance(instance.id, actor=paralegal)
        assert instance.status == InstanceStatus.ACTIVE.value

    def test_completed_instance_cannot_be_canceled(self, services, create_template, create_instance, paralegal, admin):
        instance = create_instance(create_template([step_dict(0, "Intake")]))
        step = by_order(instance)[0]
        services.runtime.start_step(step.id, actor=paralegal)
        services.runtime.complete_step(step.id, actor=paralegal)
        with pytest.raises(PreconditionError) as exc_info:
            services.instances.cancel_instance(instance.id, actor=admin)
        assert exc_info.value.code == "INSTANCE_COMPLETED"

    def test_canceled_steps_are_locked(self, services, create_instance, template, admin, lawyer):
        instance = create_instance(template)
        services.instances.cancel_instance(instance.id, actor=admin)
        with pytest.raises(PreconditionError) as exc_info:
            services.runtime.start_step(by_order(instance)[0].id, actor=lawyer)
        assert exc_info.value.code == "STEP_LOCKED"

    def test_unknown_instance(self, services, admin):
        with pytest.raises(WorkflowNotFoundError):
            services.instances.cancel_instance(uuid4(), actor=admin)


class TestLookups:
    def test_get_instance_and_step(self, services, create_instance, template):
        instance = create_instance(template)
        step = by_order(instance)[0]
        assert services.instances.get_instance(instance.id) is instance
        assert services.instances.get_step(step.id) is step

    def test_unknown_step(self, services):
        with pytest.raises(WorkflowNotFoundError) as exc_info:
            services.instances.get_step(uuid4())
        assert exc_info.value.entity == "step"

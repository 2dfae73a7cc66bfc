"""
Tests for YAML template definitions and the bundled library.

The client onboarding template is also run end to end: approval routes
to signature, the retainer payment sets ``paymentReceived`` and the
final step's IF_TRUE gate opens on it.
"""

import pytest
import yaml

from workflow_config.templates import LIBRARY_DIR, load_template_draft, load_template_library
from workflow_kernel.domain.types import ActionState, ActionType, ConditionType, InstanceStatus, RoleScope
from workflow_kernel.exceptions import ConfigValidationError


@pytest.fixture
def onboarding():
    return load_template_draft(LIBRARY_DIR / "client_onboarding.yaml")


class TestLoading:
    def test_library_lists_bundled_templates(self):
        names = [d.name for d in load_template_library()]
        assert "Client Onboarding" in names

    def test_onboarding_shape(self, onboarding):
        assert onboarding.is_active is True
        steps = {s.order: s for s in onboarding.steps}
        assert [steps[o].action_type for o in range(6)] == [
            ActionType.APPROVAL,
            ActionType.SIGNATURE,
            ActionType.TASK,
            ActionType.PAYMENT,
            ActionType.REQUEST_DOC,
            ActionType.TASK,
        ]
        assert steps[0].role_scope == RoleScope.LAWYER
        assert [(b.target_order, b.condition) for b in steps[0].branches] == [(1, "approved"), (2, "rejected")]
        assert steps[2].required is False
        assert steps[5].condition_type == ConditionType.IF_TRUE
        assert steps[1].notification_policies[0].subject_template == "Please sign: {{ step.title }}"
        assert set(onboarding.context_schema["fields"]) == {"clientApproved", "paymentReceived", "paymentAmount"}

    def test_onboarding_validates(self, services, onboarding):
        services.templates.validate_draft(onboarding)

    def test_custom_directory(self, tmp_path):
        (tmp_path / "b.yaml").write_text(yaml.safe_dump({
            "name": "Second",
            "steps": [{"order": 0, "title": "Only", "actionType": "TASK", "roleScope": "ADMIN"}],
        }))
        (tmp_path / "a.yaml").write_text(yaml.safe_dump({
            "name": "First",
            "steps": [{"order": 0, "title": "Only", "actionType": "TASK", "roleScope": "ADMIN"}],
        }))
        (tmp_path / "notes.txt").write_text("ignored")
        assert [d.name for d in load_template_library(tmp_path)] == ["First", "Second"]

    def test_invalid_shape(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text(yaml.safe_dump({
            "name": "Broken",
            "steps": [{"order": 0, "title": "X", "actionType": "FAX", "roleScope": "ADMIN"}],
        }))
        with pytest.raises(ConfigValidationError):
            load_template_draft(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_template_draft(tmp_path / "absent.yaml")


@pytest.mark.integration
class TestOnboardingEndToEnd:
    def test_happy_path(self, services, onboarding, admin, lawyer, client_actor, paralegal):
        runtime = services.runtime
        template = services.templates.create_template(onboarding, actor=admin)
        instance = services.instances.instantiate_template(template.id, actor=admin, matter_id=client_actor.id)
        steps = {s.order: s for s in instance.steps}
        assert instance.context == {"paymentReceived": False}

        runtime.start_step(steps[0].id, actor=lawyer)
        runtime.complete_step(steps[0].id, actor=lawyer, payload={"approved": True})
        assert steps[1].action_state == ActionState.READY.value
        assert steps[2].action_state == ActionState.SKIPPED.value

        runtime.start_step(steps[1].id, actor=client_actor)
        assert runtime.apply_event(steps[1].id, "SIGNATURE_COMPLETED", {"documentId": "engagement-letter"}) == (
            ActionState.COMPLETED
        )
        assert instance.context["signatureCompleted"] is True

        runtime.start_step(steps[3].id, actor=client_actor)
        runtime.apply_event(steps[3].id, "PAYMENT_SUCCEEDED", {"amount": 1500})
        assert instance.context["paymentReceived"] is True
        assert instance.context["paymentAmount"] == 1500

        runtime.start_step(steps[4].id, actor=client_actor)
        runtime.apply_event(steps[4].id, "DOCUMENT_UPLOADED", {"documentName": "ID", "documentId": "d1"})
        assert steps[5].action_state == ActionState.PENDING.value
        runtime.apply_event(
            steps[4].id, "DOCUMENT_UPLOADED", {"documentName": "Proof of address", "documentId": "d2"}
        )
        assert steps[5].action_state == ActionState.READY.value

        runtime.start_step(steps[5].id, actor=paralegal)
        runtime.complete_step(steps[5].id, actor=paralegal)
        assert instance.status == InstanceStatus.COMPLETED.value

    def test_decline_route(self, services, onboarding, admin, lawyer, paralegal):
        template = services.templates.create_template(onboarding, actor=admin)
        instance = services.instances.instantiate_template(template.id, actor=admin, matter_id=admin.id)
        steps = {s.order: s for s in instance.steps}

        services.runtime.start_step(steps[0].id, actor=lawyer)
        services.runtime.complete_step(steps[0].id, actor=lawyer, payload={"approved": False})
        assert steps[1].action_state == ActionState.SKIPPED.value
        assert steps[2].action_state == ActionState.READY.value
        assert instance.context["clientApproved"] is False

        services.runtime.start_step(steps[2].id, actor=paralegal)
        services.runtime.complete_step(steps[2].id, actor=paralegal)
        # Steps downstream of the skipped signature wait for cancellation.
        assert steps[3].action_state == ActionState.PENDING.value
        services.instances.cancel_instance(instance.id, actor=lawyer, reason="Engagement declined")
        assert instance.status == InstanceStatus.CANCELED.value

"""
Tests for workflow log records (workflow_kernel/logging_config.py).

Covers:
- The JSON envelope and the workflow fields bound by LogContext
- Flattening of engine errors into exc_* keys
- Correlation ids shared by the records of one runtime operation
- One-time handler installation
"""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from tests.conftest import step_dict
from workflow_kernel.domain.types import ActionState
from workflow_kernel.exceptions import PreconditionError, WorkflowTransitionError
from workflow_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def lines():
    """Install the JSON handler on a buffer; returns a reader of parsed lines."""
    stream = StringIO()
    configure_logging(stream=stream, level=logging.DEBUG)

    def _read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    return _read


class TestEnvelope:
    def test_step_record(self, lines):
        get_logger("services.runtime").info("step_advanced", extra={"to_state": "READY", "order": 2})

        (record,) = lines()
        assert record["logger"] == "workflow_kernel.services.runtime"
        assert record["level"] == "INFO"
        assert record["message"] == "step_advanced"
        assert record["to_state"] == "READY"
        assert record["order"] == 2
        assert "step_id" not in record

    def test_bound_workflow_fields(self, lines):
        instance_id, step_id = uuid4(), uuid4()
        with LogContext.bind(instance_id=instance_id, step_id=step_id, action_type="APPROVAL"):
            get_logger("services.runtime").info("inside")
        get_logger("services.runtime").info("outside")

        inside, outside = lines()
        assert inside["instance_id"] == str(instance_id)
        assert inside["step_id"] == str(step_id)
        assert inside["action_type"] == "APPROVAL"
        assert not set(CONTEXT_FIELDS) & set(outside)

    def test_extra_wins_over_bound_field(self, lines):
        with LogContext.bind(action_type="TASK"):
            get_logger("engines").info("branch_resolved", extra={"action_type": "SWITCH"})
        assert lines()[0]["action_type"] == "SWITCH"

    def test_states_and_ids_serialize(self, lines):
        template_id = uuid4()
        get_logger("services").info(
            "instance_created",
            extra={"state": ActionState.READY, "template_id": template_id, "opaque": object()},
        )
        record = lines()[0]
        assert record["state"] == "READY"
        assert record["template_id"] == str(template_id)
        assert record["opaque"].startswith("<object object")


class TestEngineErrors:
    def test_precondition_code_and_step(self, lines):
        step_id = uuid4()
        try:
            raise PreconditionError("Step is COMPLETED and can no longer be changed", "STEP_LOCKED", step_id)
        except PreconditionError:
            get_logger("services.runtime").warning("operation_rejected", exc_info=True)

        record = lines()[0]
        assert record["exc_type"] == "PreconditionError"
        assert record["exc_code"] == "STEP_LOCKED"
        assert record["exc_step_id"] == str(step_id)
        assert "Traceback" in record["traceback"]

    def test_transition_error_states(self, lines):
        try:
            raise WorkflowTransitionError("PENDING", "COMPLETED", "not permitted")
        except WorkflowTransitionError:
            get_logger("domain").error("guard_rejected", exc_info=True)

        record = lines()[0]
        assert record["exc_code"] == "INVALID_TRANSITION"
        assert (record["exc_from_state"], record["exc_to_state"]) == ("PENDING", "COMPLETED")


class TestLogContext:
    def test_nested_binds_layer_and_restore(self):
        with LogContext.bind(instance_id="i-1", actor_id="a-1"):
            with LogContext.bind(step_id="s-1", actor_id="a-2"):
                assert LogContext.get_all() == {"instance_id": "i-1", "actor_id": "a-2", "step_id": "s-1"}
            assert LogContext.get_all() == {"instance_id": "i-1", "actor_id": "a-1"}
        assert LogContext.get_all() == {}

    def test_none_is_not_bound(self):
        with LogContext.bind(instance_id="i-1", actor_id=None) as bound:
            assert bound == {"instance_id": "i-1"}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="matter_id"):
            with LogContext.bind(matter_id="m-1"):
                pass

    def test_clear(self):
        with LogContext.bind(step_id="s-1"):
            LogContext.clear()
            assert LogContext.get_all() == {}


class TestOperationRecords:
    @pytest.fixture
    def step(self, create_template, create_instance):
        instance = create_instance(create_template([step_dict(0, "Intake call")]))
        return instance.steps[0]

    def test_one_correlation_id_per_operation(self, runtime, step, paralegal, captured_logs):
        runtime.start_step(step.id, actor=paralegal)
        first = {r["correlation_id"] for r in captured_logs() if "correlation_id" in r}
        runtime.complete_step(step.id, actor=paralegal)
        both = {r["correlation_id"] for r in captured_logs() if "correlation_id" in r}

        assert len(first) == 1
        assert len(both) == 2

    def test_transition_record_carries_workflow_fields(self, runtime, step, paralegal, captured_logs):
        runtime.start_step(step.id, actor=paralegal)
        trace = next(r for r in captured_logs() if r["message"] == "workflow_transition")
        assert trace["instance_id"] == str(step.instance_id)
        assert trace["step_id"] == str(step.id)
        assert trace["actor_id"] == str(paralegal.id)
        assert trace["action_type"] == "TASK"
        assert (trace["from_state"], trace["to_state"]) == ("READY", "IN_PROGRESS")

    def test_caller_correlation_id_is_kept(self, runtime, step, paralegal, captured_logs):
        with LogContext.bind(correlation_id="req-42"):
            runtime.start_step(step.id, actor=paralegal)
        trace = next(r for r in captured_logs() if r["message"] == "workflow_transition")
        assert trace["correlation_id"] == "req-42"


class TestConfigureLogging:
    def test_handler_installed_once(self):
        configure_logging(stream=StringIO())
        configure_logging(stream=StringIO())
        assert len(logging.getLogger("workflow_kernel").handlers) == 1

    def test_level_filters_debug(self):
        stream = StringIO()
        configure_logging(stream=stream)
        get_logger("services").debug("switch_condition_not_evaluated")
        get_logger("services").info("step_advanced")
        assert [json.loads(line)["message"] for line in stream.getvalue().splitlines()] == ["step_advanced"]

    def test_reset_detaches_handlers(self):
        configure_logging(stream=StringIO())
        reset_logging()
        assert logging.getLogger("workflow_kernel").handlers == []

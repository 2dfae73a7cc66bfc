"""
Pytest fixtures for the workflow engine test suite.

Provides:
- Structured logging setup and log capture
- An isolated in-memory SQLite database per test
- Deterministic clock, actors for every role scope
- Wired services (runtime, instances, templates) with a recording
  notification sink
- Factories for templates and instances
"""

import json
import logging
from io import StringIO
from typing import Any, Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from workflow_config import EngineSettings, NotificationSettings, RuntimeSettings
from workflow_kernel.db.engine import (
    create_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.domain.template import TemplateDraft
from workflow_kernel.domain.types import Actor, RoleScope
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from workflow_kernel.models import WorkflowInstanceModel, WorkflowTemplateModel
from workflow_services.bootstrap import WorkflowServices, build_workflow_services
from workflow_services.notifications import RecordingNotificationSink

TEST_DATABASE_URL = "sqlite:///:memory:"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture workflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, services):
            services.runtime.start_step(step.id, actor=actor)
            logs = captured_logs()
            assert any(r["message"] == "workflow_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("workflow_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================
#
# Each test gets a fresh in-memory database: the engine is created, the
# tables are built, and everything is disposed at teardown.  Services only
# flush, so nothing is ever committed.
# =============================================================================


@pytest.fixture
def db_engine():
    eng = init_engine_from_url(TEST_DATABASE_URL)
    create_tables()
    yield eng
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """Provide a database session bound to the per-test database."""
    sess = get_session()
    yield sess
    try:
        sess.rollback()
    finally:
        sess.close()


# =============================================================================
# Clock, actors, settings
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def admin() -> Actor:
    return Actor(id=uuid4(), role=RoleScope.ADMIN)


@pytest.fixture
def lawyer() -> Actor:
    return Actor(id=uuid4(), role=RoleScope.LAWYER)


@pytest.fixture
def paralegal() -> Actor:
    return Actor(id=uuid4(), role=RoleScope.PARALEGAL)


@pytest.fixture
def client_actor() -> Actor:
    return Actor(id=uuid4(), role=RoleScope.CLIENT)


@pytest.fixture
def settings() -> EngineSettings:
    """Engine settings with notifications switched on."""
    return EngineSettings(
        notifications=NotificationSettings(enabled=True),
        runtime=RuntimeSettings(),
    )


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def services(session, settings, deterministic_clock, sink) -> WorkflowServices:
    return build_workflow_services(
        session,
        settings=settings,
        clock=deterministic_clock,
        sink=sink,
    )


@pytest.fixture
def runtime(services):
    return services.runtime


# =============================================================================
# Template and instance factories
# =============================================================================


def step_dict(
    order: int,
    title: str,
    action_type: str = "TASK",
    role_scope: str = "PARALEGAL",
    **fields: Any,
) -> dict[str, Any]:
    """A template step in the authored (camelCase) shape."""
    raw: dict[str, Any] = {
        "order": order,
        "title": title,
        "actionType": action_type,
        "roleScope": role_scope,
    }
    raw.update(fields)
    return raw


@pytest.fixture
def make_step():
    return step_dict


@pytest.fixture
def create_template(services, admin):
    """
    Factory: persist an active template from authored step dicts.

    Usage::

        template = create_template([step_dict(0, "Intake"), ...])
    """

    def _create(
        steps: list[dict[str, Any]],
        *,
        name: str = "Test workflow",
        context_schema: dict[str, Any] | None = None,
        active: bool = True,
    ) -> WorkflowTemplateModel:
        draft = TemplateDraft.from_dict({
            "name": name,
            "isActive": active,
            "contextSchema": context_schema,
            "steps": steps,
        })
        return services.templates.create_template(draft, actor=admin)

    return _create


@pytest.fixture
def create_instance(services, admin):
    """Factory: instantiate a template against a fresh matter."""

    def _create(
        template: WorkflowTemplateModel,
        *,
        matter_id: UUID | None = None,
        actor: Actor | None = None,
    ) -> WorkflowInstanceModel:
        return services.instances.instantiate_template(
            template.id,
            actor=actor or admin,
            matter_id=matter_id or uuid4(),
        )

    return _create

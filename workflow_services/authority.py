"""
workflow_services.authority -- Capability resolution at the step boundary.

Responsibility:
    Decide whether an actor may act on a step: claim it, start it,
    complete it, fail it.  Resolves role scopes to eligible actor ids
    through an authorization snapshot supplied by the caller's identity
    layer.

Architecture position:
    Services layer.  Called by WorkflowRuntime before any handler runs
    and by the notification dispatcher to resolve role recipients.  The
    engine never queries identity storage; snapshots arrive through an
    ``ActorSnapshotProvider``.

Invariants enforced:
    - Administrators may act on any step.
    - Otherwise the actor's role must equal the step's role scope, the
      actor must be eligible in the snapshot when one is supplied, and a
      step claimed by someone else is off limits.
    - Handlers may add domain rules (``can_start``) but never widen
      these checks.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol
from uuid import UUID

from workflow_kernel.domain.types import Actor, ActorSnapshot, RoleScope
from workflow_kernel.exceptions import WorkflowPermissionError
from workflow_kernel.models import WorkflowInstanceModel, WorkflowInstanceStepModel

_SNAPSHOT_FIELDS: dict[RoleScope, str] = {
    RoleScope.ADMIN: "admins",
    RoleScope.LAWYER: "lawyers",
    RoleScope.PARALEGAL: "paralegals",
    RoleScope.CLIENT: "clients",
}


class ActorSnapshotProvider(Protocol):
    """Supplies the eligible actors for the subject of an instance."""

    def snapshot_for(self, instance: WorkflowInstanceModel) -> ActorSnapshot | None:
        ...


class StaticSnapshotProvider:
    """Snapshots keyed by subject (matter or contact) id."""

    def __init__(self, snapshots: Mapping[UUID, ActorSnapshot] | None = None):
        self._snapshots: dict[UUID, ActorSnapshot] = dict(snapshots or {})

    def set_snapshot(self, subject_id: UUID, snapshot: ActorSnapshot) -> None:
        self._snapshots[subject_id] = snapshot

    def snapshot_for(self, instance: WorkflowInstanceModel) -> ActorSnapshot | None:
        return self._snapshots.get(instance.subject_id)


def resolve_eligible_actor_ids(
    role_scope: RoleScope | str,
    snapshot: ActorSnapshot | None,
) -> tuple[UUID, ...]:
    """Actor ids holding ``role_scope`` on the snapshot's subject."""
    if snapshot is None:
        return ()
    return tuple(getattr(snapshot, _SNAPSHOT_FIELDS[RoleScope(role_scope)]))


def check_capability(
    actor: Actor,
    step: WorkflowInstanceStepModel,
    snapshot: ActorSnapshot | None = None,
) -> tuple[bool, str]:
    """Check whether ``actor`` may act on ``step``.

    Returns:
        (allowed, reason). reason is empty when allowed, or a short
        message when denied.
    """
    if actor.is_admin:
        return (True, "")

    scope = RoleScope(step.role_scope)
    if actor.role != scope:
        return (False, f"Step requires role {scope.value}; actor has {actor.role.value}")

    if snapshot is not None and actor.id not in resolve_eligible_actor_ids(scope, snapshot):
        return (False, f"Actor is not an eligible {scope.value} for this matter")

    if step.assigned_to_id is not None and step.assigned_to_id != actor.id:
        return (False, "Step is claimed by another user")

    return (True, "")


def resolve_capability(
    actor: Actor,
    step: WorkflowInstanceStepModel,
    snapshot: ActorSnapshot | None = None,
) -> None:
    """Raise WorkflowPermissionError unless ``actor`` may act on ``step``."""
    allowed, reason = check_capability(actor, step, snapshot)
    if not allowed:
        raise WorkflowPermissionError(reason, actor_id=actor.id, step_id=step.id)

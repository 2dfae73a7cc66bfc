"""
workflow_engines.dependencies -- Pure dependency resolver.

Responsibility:
    Decide which steps of an instance are eligible to become READY given
    their ``depends_on`` edges and ALL/ANY logic, partition steps into
    ready and blocked sets, and validate a dependency graph (dangling
    references, self-dependencies, cycles) before it is persisted.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Works on any object exposing ``id``, ``title``, ``depends_on``,
    ``dependency_logic`` and ``action_state`` (ORM instance steps satisfy
    this structurally; ``DependencyNode`` is the detached form used when
    validating template drafts).

Invariants enforced:
    - A dependency id that does not resolve to a sibling step is an
      integrity error, never treated as satisfied or unsatisfied.
    - ALL: every dependency COMPLETED.  ANY: at least one COMPLETED.
      A step without dependencies is always satisfied.  CUSTOM is
      reserved and evaluated as ALL.
    - ``validate_workflow_dependencies`` rejects self-dependencies,
      dangling references and every cycle.

Failure modes:
    - DependencyIntegrityError from ``is_dependency_satisfied`` (dangling
      id), ``assert_valid_dependencies`` and ``topological_order``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.state_machine import TERMINAL_STATES
from workflow_kernel.domain.types import ActionState, DependencyLogic
from workflow_kernel.exceptions import DependencyIntegrityError


class DependentStep(Protocol):
    id: Any
    title: str
    depends_on: Sequence[Any]
    dependency_logic: Any
    action_state: Any


@dataclass
class DependencyNode:
    """Detached step shape for graph validation and unit tests."""

    id: str
    title: str = ""
    depends_on: list[str] = field(default_factory=list)
    dependency_logic: DependencyLogic = DependencyLogic.ALL
    action_state: ActionState = ActionState.PENDING
    order: int = 0


@dataclass(frozen=True)
class PendingDependency:
    id: str
    title: str
    state: ActionState


@dataclass(frozen=True)
class DependencyStatus:
    step_id: str
    step_title: str
    is_satisfied: bool
    dependency_count: int
    completed_count: int
    pending_dependencies: tuple[PendingDependency, ...]
    missing_dependencies: tuple[str, ...]
    logic: DependencyLogic


@dataclass(frozen=True)
class DependencyValidationResult:
    valid: bool
    errors: tuple[str, ...] = ()


def _key(value: Any) -> str:
    return str(value)


def _state(step: DependentStep) -> ActionState:
    return ActionState(step.action_state)


def _deps(step: DependentStep) -> list[str]:
    return [_key(d) for d in (step.depends_on or ())]


def _title(step: DependentStep) -> str:
    return getattr(step, "title", None) or _key(step.id)


def is_dependency_satisfied(step: DependentStep, all_steps: Iterable[DependentStep]) -> bool:
    """True when the step's dependency logic is met by its siblings' states.

    Raises:
        DependencyIntegrityError: a dependency id has no matching step.
    """
    deps = _deps(step)
    if not deps:
        return True

    by_id = {_key(s.id): s for s in all_steps}
    missing = [d for d in deps if d not in by_id]
    if missing:
        raise DependencyIntegrityError(
            [f"Step {_key(step.id)} has invalid dependencies: {', '.join(missing)}"]
        )

    completed = sum(1 for d in deps if _state(by_id[d]) == ActionState.COMPLETED)
    if DependencyLogic(step.dependency_logic) == DependencyLogic.ANY:
        return completed > 0
    return completed == len(deps)


def get_dependency_graph(steps: Iterable[DependentStep]) -> dict[str, list[str]]:
    return {_key(s.id): _deps(s) for s in steps}


def detect_cycles(steps: Sequence[DependentStep]) -> list[str]:
    """Every cycle reachable by DFS, rendered as a chain of step titles.

    A cycle A -> B -> C -> A yields one description
    ``"A → B → C → A"`` (starting from the first node on the path).
    """
    graph = get_dependency_graph(steps)
    titles = {_key(s.id): _title(s) for s in steps}
    visited: set[str] = set()
    on_stack: set[str] = set()
    cycles: list[str] = []

    def visit(node: str, path: list[str]) -> None:
        if node in on_stack:
            start = path.index(node)
            chain = path[start:] + [node]
            cycles.append(" → ".join(titles.get(n, n) for n in chain))
            return
        if node in visited:
            return
        visited.add(node)
        on_stack.add(node)
        for dep in graph.get(node, ()):
            visit(dep, path + [node])
        on_stack.discard(node)

    for step in steps:
        node = _key(step.id)
        if node not in visited:
            visit(node, [])
    return cycles


def get_ready_steps(steps: Sequence[DependentStep]) -> list[DependentStep]:
    """Non-terminal, not-in-progress steps whose dependencies are satisfied."""
    return [
        step
        for step in steps
        if _state(step) not in TERMINAL_STATES
        and _state(step) != ActionState.IN_PROGRESS
        and is_dependency_satisfied(step, steps)
    ]


def get_blocked_steps(steps: Sequence[DependentStep]) -> list[DependentStep]:
    """PENDING or BLOCKED steps whose dependencies are not yet satisfied."""
    return [
        step
        for step in steps
        if _state(step) in (ActionState.PENDING, ActionState.BLOCKED)
        and not is_dependency_satisfied(step, steps)
    ]


def get_dependency_status(
    step: DependentStep,
    all_steps: Sequence[DependentStep],
) -> DependencyStatus:
    """Progress summary for one step; dangling ids are reported, not raised."""
    deps = _deps(step)
    by_id = {_key(s.id): s for s in all_steps}
    present = [by_id[d] for d in deps if d in by_id]
    missing = tuple(d for d in deps if d not in by_id)
    completed = [s for s in present if _state(s) == ActionState.COMPLETED]
    pending = tuple(
        PendingDependency(id=_key(s.id), title=_title(s), state=_state(s))
        for s in present
        if _state(s) != ActionState.COMPLETED
    )
    return DependencyStatus(
        step_id=_key(step.id),
        step_title=_title(step),
        is_satisfied=not missing and is_dependency_satisfied(step, all_steps),
        dependency_count=len(present),
        completed_count=len(completed),
        pending_dependencies=pending,
        missing_dependencies=missing,
        logic=DependencyLogic(step.dependency_logic),
    )


@traced_engine("dependencies", "1.0")
def validate_workflow_dependencies(steps: Sequence[DependentStep]) -> DependencyValidationResult:
    """Authoring-time graph check: cycles, self-dependencies, dangling ids."""
    errors: list[str] = []

    errors.extend(f"Circular dependency detected: {cycle}" for cycle in detect_cycles(steps))

    for step in steps:
        if _key(step.id) in _deps(step):
            errors.append(f'Step "{_title(step)}" cannot depend on itself')

    known = {_key(s.id) for s in steps}
    for step in steps:
        invalid = [d for d in _deps(step) if d not in known]
        if invalid:
            errors.append(f'Step "{_title(step)}" has invalid dependencies: {", ".join(invalid)}')

    return DependencyValidationResult(valid=not errors, errors=tuple(errors))


def assert_valid_dependencies(steps: Sequence[DependentStep]) -> None:
    result = validate_workflow_dependencies(steps)
    if not result.valid:
        raise DependencyIntegrityError(list(result.errors))


def topological_order(steps: Sequence[DependentStep]) -> list[DependentStep]:
    """Dependencies before dependents; ties broken by ``order`` then id.

    Raises:
        DependencyIntegrityError: the graph is invalid.
    """
    assert_valid_dependencies(steps)

    by_id = {_key(s.id): s for s in steps}
    remaining = {key: set(_deps(s)) for key, s in by_id.items()}

    def sort_key(key: str) -> tuple[int, str]:
        return (getattr(by_id[key], "order", 0) or 0, key)

    ordered: list[DependentStep] = []
    while remaining:
        frontier = sorted((k for k, deps in remaining.items() if not deps), key=sort_key)
        for key in frontier:
            ordered.append(by_id[key])
            del remaining[key]
        for deps in remaining.values():
            deps.difference_update(frontier)
    return ordered

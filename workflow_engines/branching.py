"""
Branch selection engine.

Responsibility:
    Infers a boolean routing decision from a completed step's payload or
    handler data and partitions the step's branch routes into the ones to
    activate and the ones to skip.

Architecture position:
    Engines -- pure functions, zero I/O.  The runtime applies the
    resulting selection to instance steps.

Invariants enforced:
    - The engine never guesses: with no inferable decision and more than
      one branch, nothing is activated and nothing is skipped.
    - A decision that matches none of the branch conditions activates
      nothing.
    - Every branch not activated by a decision is listed for skipping, so
      two mutually exclusive routes are never live together.

Failure modes:
    (none) -- unknown condition words simply never match.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.types import BranchDefinition

TRUE_CONDITIONS = frozenset({"true", "yes", "approved", "success", "pass"})
FALSE_CONDITIONS = frozenset({"false", "no", "rejected", "fail", "denied"})

_DECISION_KEYS = ("approved", "branchDecision")


@dataclass(frozen=True)
class BranchSelection:
    decision: bool | None
    activate: tuple[BranchDefinition, ...] = ()
    skip: tuple[BranchDefinition, ...] = ()

    @property
    def is_resolved(self) -> bool:
        return bool(self.activate)


def infer_branch_decision(*sources: Any) -> bool | None:
    """First boolean found under approved, branchDecision, decision.approved.

    Sources are searched in the order given (completion payload first,
    then handler data); non-mapping sources are ignored.
    """
    for source in sources:
        if not isinstance(source, Mapping):
            continue
        for key in _DECISION_KEYS:
            value = source.get(key)
            if isinstance(value, bool):
                return value
        nested = source.get("decision")
        if isinstance(nested, Mapping) and isinstance(nested.get("approved"), bool):
            return nested["approved"]
    return None


def branch_matches(condition: str, decision: bool) -> bool:
    word = (condition or "").strip().lower()
    if decision:
        return word in TRUE_CONDITIONS
    return word in FALSE_CONDITIONS


@traced_engine("branching", "1.0")
def select_branches(
    branches: Iterable[BranchDefinition],
    decision: bool | None,
) -> BranchSelection:
    """Partition ``branches`` for ``decision``.

    A single branch with no decision is an unconditional route and is
    activated.
    """
    routes = tuple(branches)
    if not routes:
        return BranchSelection(decision=decision)
    if decision is None:
        if len(routes) == 1:
            return BranchSelection(decision=None, activate=routes)
        return BranchSelection(decision=None)

    chosen = tuple(b for b in routes if branch_matches(b.condition, decision))
    if not chosen:
        return BranchSelection(decision=decision)
    others = tuple(b for b in routes if b not in chosen)
    return BranchSelection(decision=decision, activate=chosen, skip=others)

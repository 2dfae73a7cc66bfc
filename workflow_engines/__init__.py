"""
Module: workflow_engines
Responsibility:
    Re-exports the pure engines: the condition evaluator, the
    dependency resolver and branch selection.  Canonical import
    surface for workflow_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import workflow_kernel domain types and exceptions.
    MUST NOT import workflow_services, ORM models or the database layer.

Invariants enforced:
    - Purity: engines never read the clock; timestamps are passed in.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine entry points are wrapped by ``@traced_engine`` (see
    ``workflow_engines.tracer``) and emit WORKFLOW_ENGINE_TRACE records.
"""

from workflow_engines.branching import (
    BranchSelection,
    branch_matches,
    infer_branch_decision,
    select_branches,
)
from workflow_engines.conditions import (
    CompoundCondition,
    Condition,
    ConditionEvaluationError,
    EvaluationResult,
    SimpleCondition,
    build_evaluation_context,
    evaluate_condition,
    parse_condition,
    resolve_field,
    validate_condition,
)
from workflow_engines.dependencies import (
    DependencyNode,
    DependencyStatus,
    DependencyValidationResult,
    assert_valid_dependencies,
    detect_cycles,
    get_blocked_steps,
    get_dependency_status,
    get_ready_steps,
    is_dependency_satisfied,
    topological_order,
    validate_workflow_dependencies,
)

__all__ = [
    "BranchSelection",
    "branch_matches",
    "infer_branch_decision",
    "select_branches",
    "CompoundCondition",
    "Condition",
    "ConditionEvaluationError",
    "EvaluationResult",
    "SimpleCondition",
    "build_evaluation_context",
    "evaluate_condition",
    "parse_condition",
    "resolve_field",
    "validate_condition",
    "DependencyNode",
    "DependencyStatus",
    "DependencyValidationResult",
    "assert_valid_dependencies",
    "detect_cycles",
    "get_blocked_steps",
    "get_dependency_status",
    "get_ready_steps",
    "is_dependency_satisfied",
    "topological_order",
    "validate_workflow_dependencies",
]

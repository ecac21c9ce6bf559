"""probe-budget: bounded-size rendering of hierarchical inspection data."""

from probe_budget.core.budget import (
    BudgetContext,
    BudgetLimits,
    NodeKV,
    OmittedSubtree,
    ProbeNode,
    RunStats,
    configure_budget,
    get_budget_context,
    get_budget_info,
    render_fragments,
    render_tree,
    render_value,
    safe_stringify,
    snapshot_tree,
    snapshot_value,
)
from probe_budget.core.exceptions import InvalidInputError, ProbeBudgetError

__version__ = "0.1.0"

__all__ = [
    "BudgetContext",
    "BudgetLimits",
    "InvalidInputError",
    "NodeKV",
    "OmittedSubtree",
    "ProbeBudgetError",
    "ProbeNode",
    "RunStats",
    "configure_budget",
    "get_budget_context",
    "get_budget_info",
    "render_fragments",
    "render_tree",
    "render_value",
    "safe_stringify",
    "snapshot_tree",
    "snapshot_value",
]

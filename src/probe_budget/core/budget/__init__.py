"""Bounded-size rendering of inspection trees and raw values.

Every entry point returns a string of at most MAX_CHARS UTF-16 code units,
dropping the least important information first.

Usage:
    from probe_budget.core.budget import render_tree, snapshot_tree

    listing = render_tree({"id": "(@/ul)", "label": "ul", "children": [...]})
    envelope = snapshot_tree(nodes)
"""

from probe_budget.core.budget.config import (
    BudgetContext,
    BudgetLimits,
    RunStats,
    configure_budget,
    get_budget_context,
    get_budget_info,
)
from probe_budget.core.budget.formatter import clip_value, converge_string_budget
from probe_budget.core.budget.inspection import render_fragments, render_value, snapshot_value
from probe_budget.core.budget.pipeline import render_tree
from probe_budget.core.budget.serializer import safe_stringify, to_serializable
from probe_budget.core.budget.snapshot import snapshot_tree
from probe_budget.core.budget.types import NodeKV, OmittedSubtree, ProbeNode, coerce_forest

__all__ = [
    "BudgetContext",
    "BudgetLimits",
    "NodeKV",
    "OmittedSubtree",
    "ProbeNode",
    "RunStats",
    "clip_value",
    "coerce_forest",
    "configure_budget",
    "converge_string_budget",
    "get_budget_context",
    "get_budget_info",
    "render_fragments",
    "render_tree",
    "render_value",
    "safe_stringify",
    "snapshot_tree",
    "snapshot_value",
    "to_serializable",
]

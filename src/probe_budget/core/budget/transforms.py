"""Tree transforms used by the degradation stages.

Every function here returns a new forest built from shallow clones; input
nodes are never modified. Transforms only remove information, so applying
them in ladder order gives monotonic loss.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, NamedTuple

from probe_budget.core.budget.config import BudgetLimits
from probe_budget.core.budget.formatter import clip_value
from probe_budget.core.budget.types import NodeKV, ProbeNode, count_nodes, make_placeholder

NodeEdit = Callable[[ProbeNode], None]


class RootCap(NamedTuple):
    """Result of capping the root list (stage 0)."""

    roots: list[ProbeNode]
    omitted_matches: int


class ForestChange(NamedTuple):
    """A transformed forest and whether anything was lost."""

    roots: list[ProbeNode]
    changed: bool


def cap_roots(roots: Sequence[ProbeNode], limits: BudgetLimits) -> RootCap:
    """Keep the first MAX_NODES roots in original order."""
    if len(roots) <= limits.max_nodes:
        return RootCap(list(roots), 0)
    return RootCap(list(roots[: limits.max_nodes]), len(roots) - limits.max_nodes)


# =============================================================================
# Stage 1: structural clip
# =============================================================================


def _clip_node(node: ProbeNode, node_budget: int) -> tuple[ProbeNode, int, bool]:
    """Clip one subtree to node_budget nodes.

    Returns:
        (clipped copy, nodes used, whether anything was dropped)

    """
    root = node.shallow_clone()
    dropped = False
    total = 1
    # Frame: [original, copy, kept children, next index, capacity left, nodes used]
    stack: list[list[Any]] = [[node, root, [], 0, node_budget - 1, 1]]

    while stack:
        frame = stack[-1]
        original, clone, kept, index, capacity, used = frame
        originals = original.children or []

        if index < len(originals):
            # Later siblings need room for at least one placeholder
            reserve = 1 if index < len(originals) - 1 else 0
            if capacity > reserve:
                frame[3] = index + 1
                child = originals[index]
                stack.append([child, child.shallow_clone(), [], 0, capacity - reserve - 1, 1])
                continue
            dropped = True
            if capacity > 0:
                kept.append(make_placeholder("maxNodes", count_nodes(originals[index:])))
                used += 1

        stack.pop()
        if kept:
            clone.children = kept
        if stack:
            parent = stack[-1]
            parent[2].append(clone)
            parent[4] -= used
            parent[5] += used
        else:
            total = used

    return root, total, dropped


def clip_forest(roots: Sequence[ProbeNode], limits: BudgetLimits) -> ForestChange:
    """Clip the forest to MAX_NODES nodes, sharing the budget sequentially.

    Root i receives whatever earlier roots left over; capacity a root does
    not use is not handed back to earlier roots.
    """
    clipped: list[ProbeNode] = []
    used = 0
    dropped = False
    for root in roots:
        if used >= limits.max_nodes:
            dropped = True
            break
        node, root_used, root_dropped = _clip_node(root, limits.max_nodes - used)
        clipped.append(node)
        used += root_used
        dropped = dropped or root_dropped
    return ForestChange(clipped, dropped)


# =============================================================================
# Top-down rebuild shared by the per-node transforms
# =============================================================================

# (node, depth) -> (copy, original children to rebuild under it or None)
NodeVisit = Callable[[ProbeNode, int], tuple[ProbeNode, "list[ProbeNode] | None"]]


def _rebuild(roots: Sequence[ProbeNode], visit: NodeVisit) -> list[ProbeNode]:
    """Copy a forest pre-order with an explicit stack.

    Returning None for the children leaves the copy's children as visit set
    them; otherwise the copy gets a new list holding the rebuilt children.
    """
    copies: list[ProbeNode] = []
    # Reversed pushes keep siblings in order, since each copy is appended on pop
    stack: list[tuple[ProbeNode, int, list[ProbeNode]]] = [
        (root, 0, copies) for root in reversed(roots)
    ]
    while stack:
        node, depth, siblings = stack.pop()
        clone, children = visit(node, depth)
        siblings.append(clone)
        if children is not None:
            clone.children = []
            stack.extend((child, depth + 1, clone.children) for child in reversed(children))
    return copies


# =============================================================================
# Per-node field edits (stages 2 and 3.1-3.4)
# =============================================================================


def map_forest(roots: Sequence[ProbeNode], edit: NodeEdit) -> list[ProbeNode]:
    """Apply an in-place edit to a fresh clone of every node."""

    def visit(node: ProbeNode, depth: int) -> tuple[ProbeNode, list[ProbeNode] | None]:
        clone = node.shallow_clone()
        edit(clone)
        return clone, node.children

    return _rebuild(roots, visit)


def clip_values(roots: Sequence[ProbeNode], limits: BudgetLimits) -> ForestChange:
    """Stage 2: clip dataAttrs values, kv values and text to VALUE_MAX_CHARS."""
    clipped_any = False

    def clip(value: str) -> str:
        nonlocal clipped_any
        result = clip_value(value, limits)
        if result is not value:
            clipped_any = True
        return result

    def edit(node: ProbeNode) -> None:
        if node.data_attrs is not None:
            node.data_attrs = {key: clip(value) for key, value in node.data_attrs.items()}
        if node.kv is not None:
            node.kv = [item if item.v is None else NodeKV(item.k, clip(item.v)) for item in node.kv]
        if node.text is not None:
            node.text = clip(node.text)

    return ForestChange(map_forest(roots, edit), clipped_any)


def drop_text(node: ProbeNode) -> None:
    node.text = None


def drop_kv_values(node: ProbeNode) -> None:
    if node.kv is not None:
        node.kv = [NodeKV(item.k) for item in node.kv]


def drop_kv(node: ProbeNode) -> None:
    node.kv = None


def drop_other_and_aria(node: ProbeNode) -> None:
    node.other_attrs = None
    node.aria_attrs = None


# =============================================================================
# Stage 3.5 and stage 4
# =============================================================================


def fold_depth(roots: Sequence[ProbeNode], depth_cap: int) -> list[ProbeNode]:
    """Replace the children of every node at depth >= depth_cap with one placeholder.

    The placeholder counts the node's direct children in the tree as given,
    which after stages 3.1-3.4 may already differ from the original input.
    """

    def visit(node: ProbeNode, depth: int) -> tuple[ProbeNode, list[ProbeNode] | None]:
        clone = node.shallow_clone()
        if not node.children:
            return clone, None
        if depth >= depth_cap:
            clone.children = [make_placeholder("depth", len(node.children))]
            return clone, None
        return clone, node.children

    return _rebuild(roots, visit)


def _minimal_copy(node: ProbeNode, depth: int) -> tuple[ProbeNode, list[ProbeNode] | None]:
    minimal = ProbeNode(
        id=node.id,
        label=node.label,
        data_attrs=dict(node.data_attrs) if node.data_attrs is not None else None,
        omitted_subtree=node.omitted_subtree,
    )
    return minimal, node.children


def keep_first_minimal(roots: Sequence[ProbeNode]) -> list[ProbeNode]:
    """Stage 4: first root only, reduced to id/label/dataAttrs/children/omittedSubtree."""
    if not roots:
        return []
    return _rebuild(roots[:1], _minimal_copy)

"""Node model for the budget engine.

Tree builders hand the engine either ProbeNode instances or plain mappings
in the wire shape (camelCase keys, as decoded from JSON/YAML):

    {
        "id": "(@/html/body/ul)",
        "label": "ul",
        "dataAttrs": {"data-testid": "menu"},
        "kv": [{"k": "role", "v": "list"}, {"k": "hidden"}],
        "text": "Menu",
        "children": [...],
    }

coerce_forest() validates either form and returns a fresh ProbeNode copy,
so no later stage can touch caller-owned objects.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from probe_budget.core.exceptions import InvalidInputError

__all__ = [
    "NodeKV",
    "OmittedReason",
    "OmittedSubtree",
    "ProbeNode",
    "coerce_forest",
    "count_nodes",
    "forest_depth",
    "make_placeholder",
]

OmittedReason = Literal["maxNodes", "depth"]

_OMITTED_REASONS: tuple[str, ...] = ("maxNodes", "depth")


@dataclass(frozen=True)
class NodeKV:
    """Order-significant detail pair; v is None for key-only entries."""

    k: str
    v: str | None = None

    def to_dict(self) -> dict[str, str]:
        if self.v is None:
            return {"k": self.k}
        return {"k": self.k, "v": self.v}


@dataclass(frozen=True)
class OmittedSubtree:
    """Why a placeholder node stands in for removed content."""

    reason: OmittedReason
    omitted_children: int

    def to_dict(self) -> dict[str, Any]:
        return {"reason": self.reason, "omittedChildren": self.omitted_children}


@dataclass
class ProbeNode:
    """Generic inspection tree node.

    A node with omitted_subtree set is a terminal placeholder: it never
    carries children, kv or text.

    Attributes:
        id: Opaque identity token, unique within one render call.
        label: Display name.
        data_attrs: Unordered annotations, treated as essential identity.
        kv: Ordered detail pairs.
        text: Associated text content.
        children: Ordered child nodes.
        other_attrs: Extension detail, dropped together with aria_attrs.
        aria_attrs: Extension detail, dropped together with other_attrs.
        omitted_subtree: Placeholder marker.

    """

    id: str
    label: str
    data_attrs: dict[str, str] | None = None
    kv: list[NodeKV] | None = None
    text: str | None = None
    children: list[ProbeNode] | None = None
    other_attrs: dict[str, str] | None = None
    aria_attrs: dict[str, str] | None = None
    omitted_subtree: OmittedSubtree | None = None

    @property
    def is_placeholder(self) -> bool:
        return self.omitted_subtree is not None

    def shallow_clone(self) -> ProbeNode:
        """Copy this node's own fields; children are not copied."""
        return ProbeNode(
            id=self.id,
            label=self.label,
            data_attrs=dict(self.data_attrs) if self.data_attrs is not None else None,
            kv=list(self.kv) if self.kv is not None else None,
            text=self.text,
            other_attrs=dict(self.other_attrs) if self.other_attrs is not None else None,
            aria_attrs=dict(self.aria_attrs) if self.aria_attrs is not None else None,
            omitted_subtree=self.omitted_subtree,
        )

    def _own_dict(self) -> dict[str, Any]:
        """Wire fields of this node; children start as an empty list."""
        result: dict[str, Any] = {"id": self.id, "label": self.label}
        if self.data_attrs is not None:
            result["dataAttrs"] = dict(self.data_attrs)
        if self.kv is not None:
            result["kv"] = [item.to_dict() for item in self.kv]
        if self.text is not None:
            result["text"] = self.text
        if self.children is not None:
            result["children"] = []
        if self.other_attrs is not None:
            result["otherAttrs"] = dict(self.other_attrs)
        if self.aria_attrs is not None:
            result["ariaAttrs"] = dict(self.aria_attrs)
        if self.omitted_subtree is not None:
            result["omittedSubtree"] = self.omitted_subtree.to_dict()
        return result

    def to_dict(self) -> dict[str, Any]:
        """Convert the subtree to the wire shape, omitting absent fields.

        Iterative, so chains deeper than the recursion limit convert too.
        """
        result = self._own_dict()
        stack: list[tuple[ProbeNode, dict[str, Any]]] = [(self, result)]
        while stack:
            node, converted = stack.pop()
            for child in node.children or []:
                child_dict = child._own_dict()
                converted["children"].append(child_dict)
                stack.append((child, child_dict))
        return result


def make_placeholder(reason: OmittedReason, omitted_children: int) -> ProbeNode:
    """Create the synthetic leaf standing in for removed content."""
    return ProbeNode(
        id=f"(@omitted:{reason}:{omitted_children})",
        label=f"…(OMITTED_SUBTREE, reason={reason}, omittedChildren={omitted_children})",
        omitted_subtree=OmittedSubtree(reason=reason, omitted_children=omitted_children),
    )


def count_nodes(roots: Sequence[ProbeNode]) -> int:
    """Count nodes in a forest, placeholders included.

    Iterative so that arbitrarily deep input cannot hit the recursion limit.
    """
    count = 0
    stack = list(roots)
    while stack:
        node = stack.pop()
        count += 1
        if node.children:
            stack.extend(node.children)
    return count


def forest_depth(roots: Sequence[ProbeNode]) -> int:
    """Number of levels in a forest; 0 when empty, 1 for lone roots."""
    deepest = 0
    stack: list[tuple[ProbeNode, int]] = [(root, 1) for root in roots]
    while stack:
        node, level = stack.pop()
        deepest = max(deepest, level)
        if node.children:
            stack.extend((child, level + 1) for child in node.children)
    return deepest


# =============================================================================
# Input validation
# =============================================================================

# Wire key -> attribute name, for fields read off either representation
_FIELD_KEYS: tuple[tuple[str, str], ...] = (
    ("id", "id"),
    ("label", "label"),
    ("dataAttrs", "data_attrs"),
    ("kv", "kv"),
    ("text", "text"),
    ("children", "children"),
    ("otherAttrs", "other_attrs"),
    ("ariaAttrs", "aria_attrs"),
    ("omittedSubtree", "omitted_subtree"),
)


def _read_fields(value: Any, path: str) -> dict[str, Any]:
    """Read raw node fields from a ProbeNode or a wire mapping."""
    if isinstance(value, ProbeNode):
        return {attr: getattr(value, attr) for _, attr in _FIELD_KEYS}
    if isinstance(value, Mapping):
        return {attr: value.get(key) for key, attr in _FIELD_KEYS}
    raise InvalidInputError(f"Expected a node, got {type(value).__name__}", path)


def _check_string_map(value: Any, path: str) -> dict[str, str] | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise InvalidInputError(f"Expected a string mapping, got {type(value).__name__}", path)
    result: dict[str, str] = {}
    for key, entry in value.items():
        if not isinstance(key, str) or not isinstance(entry, str):
            raise InvalidInputError("Mapping keys and values must be strings", f"{path}.{key}")
        result[key] = entry
    return result


def _check_kv(value: Any, path: str) -> list[NodeKV] | None:
    if value is None:
        return None
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise InvalidInputError(f"Expected a kv list, got {type(value).__name__}", path)
    items: list[NodeKV] = []
    for index, item in enumerate(value):
        item_path = f"{path}[{index}]"
        if isinstance(item, NodeKV):
            k, v = item.k, item.v
        elif isinstance(item, Mapping):
            k, v = item.get("k"), item.get("v")
        else:
            raise InvalidInputError(f"Expected a kv entry, got {type(item).__name__}", item_path)
        if not isinstance(k, str):
            raise InvalidInputError("kv key must be a string", f"{item_path}.k")
        if v is not None and not isinstance(v, str):
            raise InvalidInputError("kv value must be a string when present", f"{item_path}.v")
        items.append(NodeKV(k=k, v=v))
    return items


def _check_omitted(value: Any, path: str) -> OmittedSubtree | None:
    if value is None:
        return None
    if isinstance(value, OmittedSubtree):
        reason, omitted = value.reason, value.omitted_children
    elif isinstance(value, Mapping):
        reason, omitted = value.get("reason"), value.get("omittedChildren")
    else:
        raise InvalidInputError(f"Expected an omittedSubtree, got {type(value).__name__}", path)
    if reason not in _OMITTED_REASONS:
        raise InvalidInputError(f"Unknown omittedSubtree reason {reason!r}", f"{path}.reason")
    if isinstance(omitted, bool) or not isinstance(omitted, int) or omitted < 0:
        raise InvalidInputError(
            "omittedChildren must be a non-negative integer", f"{path}.omittedChildren"
        )
    return OmittedSubtree(reason=reason, omitted_children=omitted)


def _build_node(value: Any, path: str) -> tuple[ProbeNode, list[Any]]:
    """Validate one node's own fields; return the copy and its raw children."""
    fields = _read_fields(value, path)
    if not isinstance(fields["id"], str):
        raise InvalidInputError("Node id must be a string", f"{path}.id")
    if not isinstance(fields["label"], str):
        raise InvalidInputError("Node label must be a string", f"{path}.label")
    text = fields["text"]
    if text is not None and not isinstance(text, str):
        raise InvalidInputError("Node text must be a string when present", f"{path}.text")

    raw_children = fields["children"]
    if raw_children is not None and (
        isinstance(raw_children, (str, bytes)) or not isinstance(raw_children, Sequence)
    ):
        raise InvalidInputError("Node children must be a list", f"{path}.children")

    node = ProbeNode(
        id=fields["id"],
        label=fields["label"],
        data_attrs=_check_string_map(fields["data_attrs"], f"{path}.dataAttrs"),
        kv=_check_kv(fields["kv"], f"{path}.kv"),
        text=text,
        other_attrs=_check_string_map(fields["other_attrs"], f"{path}.otherAttrs"),
        aria_attrs=_check_string_map(fields["aria_attrs"], f"{path}.ariaAttrs"),
        omitted_subtree=_check_omitted(fields["omitted_subtree"], f"{path}.omittedSubtree"),
    )
    if node.omitted_subtree is not None and (raw_children or node.kv or node.text is not None):
        raise InvalidInputError("Placeholder nodes cannot carry children, kv or text", path)
    return node, list(raw_children) if raw_children is not None else []


def _copy_tree(value: Any, path: str) -> ProbeNode:
    """Validate and copy one root, iteratively, rejecting cycles."""
    root, raw_children = _build_node(value, path)
    # Frame: [copied parent, raw children, next index, parent path, raw identity]
    stack: list[list[Any]] = [[root, raw_children, 0, path, id(value)]]
    ancestors: set[int] = {id(value)}

    while stack:
        frame = stack[-1]
        parent, pending, index, parent_path, ident = frame
        if index >= len(pending):
            stack.pop()
            ancestors.discard(ident)
            continue
        frame[2] = index + 1

        raw = pending[index]
        child_path = f"{parent_path}.children[{index}]"
        if id(raw) in ancestors:
            raise InvalidInputError("Cyclic node graph", child_path)
        child, grand_children = _build_node(raw, child_path)
        if parent.children is None:
            parent.children = []
        parent.children.append(child)
        if grand_children:
            ancestors.add(id(raw))
            stack.append([child, grand_children, 0, child_path, id(raw)])
    return root


def coerce_forest(value: Any) -> list[ProbeNode]:
    """Validate a node or sequence of nodes and return a fresh forest.

    Args:
        value: A ProbeNode, a wire mapping, or a sequence of either.

    Returns:
        Validated deep copy as a list of roots (a single node becomes [node]).

    Raises:
        InvalidInputError: If any node is malformed.

    """
    if isinstance(value, (ProbeNode, Mapping)):
        return [_copy_tree(value, "$")]
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise InvalidInputError(
            f"Expected a node or a list of nodes, got {type(value).__name__}", "$"
        )
    return [_copy_tree(item, f"$[{index}]") for index, item in enumerate(value)]

"""Text formatter and string-level budget enforcement.

All lengths are measured in UTF-16 code units, the unit the consuming
channel counts in, so a character outside the Basic Multilingual Plane
costs two.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from probe_budget.core.budget.config import BudgetLimits
    from probe_budget.core.budget.types import NodeKV, ProbeNode

logger = logging.getLogger(__name__)

# Room kept free for the TRUNCATED_LINE / TRUNCATED_OUTPUT suffixes
HARD_CLIP_RESERVE = 30

TRUNCATED_LINE = "…(TRUNCATED_LINE)"
TRUNCATED_OUTPUT = "…(TRUNCATED_OUTPUT)"


def utf16_len(s: str) -> int:
    """Length of s in UTF-16 code units."""
    if s.isascii():
        return len(s)
    return len(s.encode("utf-16-le", "surrogatepass")) // 2


def utf16_prefix(s: str, units: int) -> str:
    """Longest prefix of s that fits in the given number of UTF-16 units.

    Never splits a surrogate pair, so the prefix may be one unit short.
    """
    if units <= 0:
        return ""
    if s.isascii():
        return s[:units]
    count = 0
    for index, ch in enumerate(s):
        width = 2 if ord(ch) > 0xFFFF else 1
        if count + width > units:
            return s[:index]
        count += width
    return s


def fits(s: str, limits: BudgetLimits) -> bool:
    return utf16_len(s) <= limits.max_chars


def clip_value(s: str, limits: BudgetLimits) -> str:
    """Clip a single value to VALUE_MAX_CHARS with an explicit marker."""
    length = utf16_len(s)
    if length <= limits.value_max_chars:
        return s
    return f"{utf16_prefix(s, limits.value_max_chars)}…(TRUNCATED,len={length})"


def quote(s: str) -> str:
    """Quote a value the way it appears in rendered lines."""
    return json.dumps(s, ensure_ascii=False)


# =============================================================================
# Tree rendering
# =============================================================================


@dataclass(frozen=True)
class RenderMode:
    """Which detail columns a rendered line carries."""

    show_text: bool
    show_kv: bool
    kv_keys_only: bool
    minimal: bool


FULL_MODE = RenderMode(show_text=True, show_kv=True, kv_keys_only=False, minimal=False)
NO_TEXT_MODE = RenderMode(show_text=False, show_kv=True, kv_keys_only=False, minimal=False)
KEYS_ONLY_MODE = RenderMode(show_text=False, show_kv=True, kv_keys_only=True, minimal=False)
NO_KV_MODE = RenderMode(show_text=False, show_kv=False, kv_keys_only=True, minimal=False)
MINIMAL_MODE = RenderMode(show_text=False, show_kv=False, kv_keys_only=True, minimal=True)


def _format_data_attrs(data_attrs: dict[str, str] | None) -> str:
    if not data_attrs:
        return ""
    parts = [f"{key}={quote(data_attrs[key])}" for key in sorted(data_attrs)]
    return f"[{' '.join(parts)}]"


def _format_kv(kv: list[NodeKV] | None, keys_only: bool) -> str:
    if not kv:
        return ""
    parts = [item.k if keys_only or item.v is None else f"{item.k}={quote(item.v)}" for item in kv]
    return "{" + ", ".join(parts) + "}"


def format_node_line(node: ProbeNode, depth: int, mode: RenderMode) -> str:
    """Format one node as a single listing line.

    Args:
        node: Node to format (children are ignored).
        depth: Depth in the tree, 0 for roots.
        mode: Detail columns to include.

    Returns:
        Line such as '  - li [data-x="1"] (@/ul/li[1]) {k="v"} text="hi"'.

    """
    indent = "  " * depth
    if node.omitted_subtree is not None:
        omitted = node.omitted_subtree
        return (
            f"{indent}- …(OMITTED_SUBTREE, reason={omitted.reason}, "
            f"omittedChildren={omitted.omitted_children})"
        )

    parts = [f"{indent}-", node.label]
    data_attrs = _format_data_attrs(node.data_attrs)
    if data_attrs:
        parts.append(data_attrs)
    parts.append(node.id)

    if not mode.minimal:
        if mode.show_kv:
            kv = _format_kv(node.kv, mode.kv_keys_only)
            if kv:
                parts.append(kv)
        if mode.show_text and node.text is not None:
            parts.append(f"text={quote(node.text)}")

    return " ".join(parts)


def render_forest(roots: Sequence[ProbeNode], mode: RenderMode, omitted_matches: int) -> str:
    """Render a forest as an indented pre-order listing.

    Args:
        roots: Roots in output order.
        mode: Detail columns to include.
        omitted_matches: Roots dropped by the root cap; adds a trailer line if > 0.

    Returns:
        Newline-joined listing.

    """
    lines: list[str] = []
    # Iterative pre-order: push children reversed so the first child pops first
    stack: list[tuple[ProbeNode, int]] = [(root, 0) for root in reversed(roots)]
    while stack:
        node, depth = stack.pop()
        lines.append(format_node_line(node, depth, mode))
        if node.omitted_subtree is None and node.children:
            stack.extend((child, depth + 1) for child in reversed(node.children))

    if omitted_matches > 0:
        lines.append(f"…(OMITTED_MATCHES, omitted={omitted_matches})")
    return "\n".join(lines)


# =============================================================================
# String-level fallbacks
# =============================================================================


def trim_rendered_lines(output: str, limits: BudgetLimits) -> str:
    """Drop trailing lines, keeping as many as fit with an omission trailer.

    Returns output unchanged if not even the first line fits.
    """
    lines = output.split("\n")
    # prefix[i] = units used by lines[:i] joined with newlines
    prefix = [0]
    for line in lines:
        prefix.append(prefix[-1] + utf16_len(line) + 1)

    for keep in range(len(lines) - 1, 0, -1):
        omitted = len(lines) - keep
        trailer = f"…(OMITTED_LINES, omitted={omitted})"
        if prefix[keep] + utf16_len(trailer) <= limits.max_chars:
            return "\n".join([*lines[:keep], trailer])
    return output


def hard_clip_lines(output: str, limits: BudgetLimits) -> str:
    """Clip every line longer than MAX_CHARS-30 with a TRUNCATED_LINE marker."""
    limit = max(0, limits.max_chars - HARD_CLIP_RESERVE)
    clipped: list[str] = []
    for line in output.split("\n"):
        if utf16_len(line) <= limit:
            clipped.append(line)
        else:
            clipped.append(f"{utf16_prefix(line, limit)}{TRUNCATED_LINE}")
    return "\n".join(clipped)


def hard_clip_output(output: str, limits: BudgetLimits) -> str:
    """Final stage: always returns a string within MAX_CHARS."""
    line_clipped = hard_clip_lines(output, limits)
    if fits(line_clipped, limits):
        return line_clipped

    limit = max(0, limits.max_chars - HARD_CLIP_RESERVE)
    clipped = f"{utf16_prefix(line_clipped, limit)}{TRUNCATED_OUTPUT}"
    if fits(clipped, limits):
        return clipped
    # MAX_CHARS is smaller than the marker itself
    return utf16_prefix(clipped, limits.max_chars)


def converge_string_budget(text: str, limits: BudgetLimits) -> str:
    """Bring an opaque (non-tree) string within budget.

    Each line is value-clipped first; only if that is not enough does the
    hard clip run.

    Args:
        text: Raw output such as a markup fragment or serialized value.
        limits: Effective limits.

    Returns:
        String of at most MAX_CHARS UTF-16 units.

    """
    value_clipped = "\n".join(clip_value(line, limits) for line in text.split("\n"))
    if fits(value_clipped, limits):
        return value_clipped
    logger.debug("Line clipping left %d units, hard clipping", utf16_len(value_clipped))
    return hard_clip_output(value_clipped, limits)

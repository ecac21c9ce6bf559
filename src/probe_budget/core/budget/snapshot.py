"""Structured snapshot builder.

Produces a bounded JSON envelope instead of a text listing:

    {
      "data": [ ...nodes in wire shape... ],
      "meta": {
        "budget": {...},
        "charCount": 1234,
        "markers": ["STAGE3.1_REMOVE_TEXT"],
        "nodeCount": 42,
        "omitted": true,
        "omittedMatches": 0,
        "truncated": true
      }
    }

Stages 0-2 are shared with the text pipeline; after that the whole envelope
is re-encoded after every ladder step and each step is recorded as a marker
rather than as a render-mode switch. When even the minimal tree does not
fit, data becomes {"preview": <bounded text listing>}. A preview envelope
reports nodeCount 0 since it carries no tree nodes.

Forests nested too deep for the serializer are never encoded; they move on
down the ladder until a depth cap brings them within reach.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from probe_budget.core.budget.config import BudgetContext, BudgetLimits, get_budget_context
from probe_budget.core.budget.formatter import (
    clip_value,
    converge_string_budget,
    fits,
    hard_clip_output,
    utf16_len,
)
from probe_budget.core.budget.pipeline import degrade, prepare_forest, render_with_budget
from probe_budget.core.budget.serializer import MAX_NESTING, safe_stringify
from probe_budget.core.budget.types import ProbeNode, coerce_forest, count_nodes, forest_depth

logger = logging.getLogger(__name__)

PREVIEW_MARKER = "STAGE6_PREVIEW"

# Re-clip rounds for a preview whose JSON escaping overflows the budget
_PREVIEW_ATTEMPTS = 8

# Each tree level nests a node mapping and its children list inside {data: [...]}
_MAX_ENCODABLE_LEVELS = (MAX_NESTING - 4) // 2


def encode_envelope(data: Any, meta: dict[str, Any]) -> str:
    """Encode {data, meta} with meta.charCount set to the envelope's size.

    The size depends on the structure containing it, so the envelope is
    encoded once with charCount=0 to measure it and once more to inject
    the measured value.
    """
    first = safe_stringify({"data": data, "meta": {**meta, "charCount": 0}})
    return safe_stringify({"data": data, "meta": {**meta, "charCount": utf16_len(first)}})


def _is_omission_marker(marker: str) -> bool:
    return "STAGE3" in marker or "STAGE4" in marker or "OMITTED" in marker


def tree_meta(
    *,
    markers: Sequence[str],
    omitted_matches: int,
    node_count: int,
    budget: dict[str, Any],
    has_preview: bool = False,
) -> dict[str, Any]:
    """Build the meta block for a tree snapshot."""
    return {
        "truncated": bool(markers) or has_preview,
        "omitted": omitted_matches > 0 or any(_is_omission_marker(m) for m in markers),
        "omittedMatches": omitted_matches,
        "nodeCount": node_count,
        "markers": list(markers),
        "budget": budget,
    }


class SnapshotBuilder:
    """Builds one bounded snapshot for a validated forest.

    Holds the per-call state (markers so far, budget info) so each ladder
    step only has to say what changed.
    """

    def __init__(self, forest: Sequence[ProbeNode], context: BudgetContext) -> None:
        """Initialize the builder.

        Args:
            forest: Validated roots (see coerce_forest).
            context: Budget context supplying limits and budget info.

        """
        self.forest = forest
        self.limits: BudgetLimits = context.limits
        self.budget = context.info()
        self.markers: list[str] = []
        self.omitted_matches = 0
        self.meta: dict[str, Any] = {}

    def _try_tree(self, roots: list[ProbeNode]) -> str | None:
        depth = forest_depth(roots)
        if depth > _MAX_ENCODABLE_LEVELS:
            logger.debug("Skipping encode of %d-level forest", depth)
            return None
        meta = tree_meta(
            markers=self.markers,
            omitted_matches=self.omitted_matches,
            node_count=count_nodes(roots),
            budget=self.budget,
        )
        serialized = encode_envelope([root.to_dict() for root in roots], meta)
        if fits(serialized, self.limits):
            self.meta = meta
            return serialized
        return None

    def _encode_preview(self, preview: str, markers: list[str]) -> str:
        self.meta = tree_meta(
            markers=markers,
            omitted_matches=self.omitted_matches,
            node_count=0,
            budget=self.budget,
            has_preview=True,
        )
        return encode_envelope({"preview": preview}, self.meta)

    def build(self) -> str:
        """Run the ladder and return the first envelope that fits.

        Returns:
            Encoded envelope of at most MAX_CHARS UTF-16 units.

        """
        prepared = prepare_forest(self.forest, self.limits)
        self.omitted_matches = prepared.omitted_matches
        if prepared.omitted_matches > 0:
            self.markers.append(f"OMITTED_MATCHES:{prepared.omitted_matches}")
        if prepared.structurally_clipped:
            self.markers.append("STAGE1_OMITTED_SUBTREE")
        if prepared.values_clipped:
            self.markers.append("STAGE2_TRUNCATED_VALUES")

        serialized = self._try_tree(prepared.roots)
        if serialized is not None:
            return serialized

        last_stage = ""
        for attempt in degrade(prepared.roots, self.limits):
            # Depth caps replace each other; every other step accumulates
            if attempt.stage == last_stage:
                self.markers[-1] = attempt.marker
            else:
                self.markers.append(attempt.marker)
            last_stage = attempt.stage
            serialized = self._try_tree(attempt.roots)
            if serialized is not None:
                logger.debug("Snapshot fits after stage %s (%s)", attempt.stage, attempt.marker)
                return serialized

        return self._build_preview()

    def _build_preview(self) -> str:
        logger.debug("Snapshot tree does not fit, falling back to text preview")
        markers = [*self.markers, PREVIEW_MARKER]
        preview = render_with_budget(self.forest, self.limits)

        for _ in range(_PREVIEW_ATTEMPTS):
            serialized = self._encode_preview(preview, markers)
            overflow = utf16_len(serialized) - self.limits.max_chars
            if overflow <= 0:
                return serialized
            room = utf16_len(preview) - overflow
            if room <= 0:
                break
            preview = hard_clip_output(preview, self.limits.model_copy(update={"max_chars": room}))

        serialized = self._encode_preview(clip_value(preview, self.limits), [PREVIEW_MARKER])
        if fits(serialized, self.limits):
            return serialized
        # Budget is smaller than an empty envelope
        return converge_string_budget(serialized, self.limits)


def snapshot_tree(
    nodes: Any,
    *,
    context: BudgetContext | None = None,
    api: str = "snapshot_tree",
) -> str:
    """Encode a node or forest as a bounded {data, meta} JSON envelope.

    Args:
        nodes: A ProbeNode, a wire mapping, or a sequence of either.
        context: Budget context; the process-wide one when omitted.
        api: Name recorded in the run statistics.

    Returns:
        JSON text of at most MAX_CHARS UTF-16 units.

    Raises:
        InvalidInputError: If the input is not a well-formed node or forest.

    """
    context = context or get_budget_context()
    forest = coerce_forest(nodes)
    builder = SnapshotBuilder(forest, context)
    output = builder.build()
    context.record_run_from_flags(
        api,
        char_count=utf16_len(output),
        truncated=bool(builder.meta.get("truncated")),
        omitted=bool(builder.meta.get("omitted")),
    )
    return output

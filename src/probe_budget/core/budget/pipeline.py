"""Degradation pipeline for bounded text rendering.

The pipeline turns an unbounded forest into a listing of at most MAX_CHARS
UTF-16 units, dropping the least valuable information first:

    0    keep the first MAX_NODES roots
    1    structural clip to MAX_NODES nodes
    2    clip long values
    --   render; stop if it fits
    3.1  drop text
    3.2  drop kv values, keep keys
    3.3  drop kv
    3.4  drop other/aria attrs
    3.5  fold depth, cap MAX_DEPTH down to 1
    4    first root only, minimal fields
    5    trim trailing lines
    6    hard clip

Stages 3.1-4 are declared once in DETAIL_STAGES / degrade() and shared
with the structured snapshot builder.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import Any, NamedTuple

from probe_budget.core.budget.config import BudgetContext, BudgetLimits, get_budget_context
from probe_budget.core.budget.formatter import (
    FULL_MODE,
    KEYS_ONLY_MODE,
    MINIMAL_MODE,
    NO_KV_MODE,
    NO_TEXT_MODE,
    RenderMode,
    fits,
    hard_clip_output,
    render_forest,
    trim_rendered_lines,
)
from probe_budget.core.budget.transforms import (
    NodeEdit,
    cap_roots,
    clip_forest,
    clip_values,
    drop_kv,
    drop_kv_values,
    drop_other_and_aria,
    drop_text,
    fold_depth,
    keep_first_minimal,
    map_forest,
)
from probe_budget.core.budget.types import ProbeNode, coerce_forest

logger = logging.getLogger(__name__)


class DetailStage(NamedTuple):
    """One field-dropping step of the ladder."""

    stage: str
    marker: str
    edit: NodeEdit
    mode: RenderMode


DETAIL_STAGES: tuple[DetailStage, ...] = (
    DetailStage("3.1", "STAGE3.1_REMOVE_TEXT", drop_text, NO_TEXT_MODE),
    DetailStage("3.2", "STAGE3.2_REMOVE_KV_VALUE", drop_kv_values, KEYS_ONLY_MODE),
    DetailStage("3.3", "STAGE3.3_REMOVE_KV", drop_kv, NO_KV_MODE),
    DetailStage("3.4", "STAGE3.4_REMOVE_OTHER_ARIA", drop_other_and_aria, NO_KV_MODE),
)


class Attempt(NamedTuple):
    """A degraded forest to try, with the stage that produced it."""

    stage: str
    marker: str
    roots: list[ProbeNode]
    mode: RenderMode


class Prepared(NamedTuple):
    """Forest after the unconditional stages 0-2."""

    roots: list[ProbeNode]
    omitted_matches: int
    structurally_clipped: bool
    values_clipped: bool


def prepare_forest(forest: Sequence[ProbeNode], limits: BudgetLimits) -> Prepared:
    """Run stages 0 (root cap), 1 (structural clip) and 2 (value clip)."""
    capped = cap_roots(forest, limits)
    structural = clip_forest(capped.roots, limits)
    values = clip_values(structural.roots, limits)
    return Prepared(values.roots, capped.omitted_matches, structural.changed, values.changed)


def degrade(roots: list[ProbeNode], limits: BudgetLimits) -> Iterator[Attempt]:
    """Yield successively degraded forests, stage 3.1 through stage 4.

    Each attempt builds on the previous one; nothing is ever restored.
    The generator is lazy, so consumers pay only for the stages they need.
    """
    current = roots
    for detail in DETAIL_STAGES:
        current = map_forest(current, detail.edit)
        yield Attempt(detail.stage, detail.marker, current, detail.mode)

    for depth_cap in range(limits.max_depth, 0, -1):
        current = fold_depth(current, depth_cap)
        yield Attempt("3.5", f"STAGE3.5_DEPTH_CAP:{depth_cap}", current, NO_KV_MODE)

    current = keep_first_minimal(current)
    yield Attempt("4", "STAGE4_MINIMAL", current, MINIMAL_MODE)


def render_with_budget(forest: Sequence[ProbeNode], limits: BudgetLimits) -> str:
    """Render a validated forest within MAX_CHARS.

    Args:
        forest: Validated roots (see coerce_forest).
        limits: Effective limits.

    Returns:
        Listing of at most MAX_CHARS UTF-16 units.

    """
    prepared = prepare_forest(forest, limits)
    rendered = render_forest(prepared.roots, FULL_MODE, prepared.omitted_matches)
    if fits(rendered, limits):
        return rendered

    for attempt in degrade(prepared.roots, limits):
        rendered = render_forest(attempt.roots, attempt.mode, prepared.omitted_matches)
        if fits(rendered, limits):
            logger.debug("Output fits after stage %s (%s)", attempt.stage, attempt.marker)
            return rendered

    trimmed = trim_rendered_lines(rendered, limits)
    if fits(trimmed, limits):
        logger.debug("Output fits after line trim")
        return trimmed

    logger.debug("Falling back to hard clip")
    return hard_clip_output(trimmed, limits)


def render_tree(
    nodes: Any,
    *,
    context: BudgetContext | None = None,
    api: str = "render_tree",
) -> str:
    """Render a node or forest as a bounded text listing.

    Args:
        nodes: A ProbeNode, a wire mapping, or a sequence of either.
        context: Budget context; the process-wide one when omitted.
        api: Name recorded in the run statistics.

    Returns:
        Listing of at most MAX_CHARS UTF-16 units.

    Raises:
        InvalidInputError: If the input is not a well-formed node or forest.

    """
    context = context or get_budget_context()
    forest = coerce_forest(nodes)
    output = render_with_budget(forest, context.limits)
    context.record_run_from_output(api, output)
    return output

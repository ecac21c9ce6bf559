"""Bounded output for values that are not trees.

State dumps and rendered markup fragments have no node structure to
degrade, so they go through the defensive serializer and/or the opaque
string convergence instead of the stage ladder.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from probe_budget.core.budget.config import BudgetContext, get_budget_context
from probe_budget.core.budget.formatter import clip_value, converge_string_budget, fits, utf16_len
from probe_budget.core.budget.serializer import safe_stringify, to_serializable
from probe_budget.core.budget.snapshot import encode_envelope

logger = logging.getLogger(__name__)


def count_json_entries(value: Any) -> int:
    """Count containers and scalars in JSON-compatible data; null counts 0."""
    if value is None:
        return 0
    if isinstance(value, list):
        return 1 + sum(count_json_entries(item) for item in value)
    if isinstance(value, dict):
        return 1 + sum(count_json_entries(item) for item in value.values())
    return 1


def render_value(
    value: Any,
    *,
    context: BudgetContext | None = None,
    api: str = "render_value",
) -> str:
    """Serialize an arbitrary value and bring it within budget.

    Args:
        value: Any runtime value, possibly cyclic.
        context: Budget context; the process-wide one when omitted.
        api: Name recorded in the run statistics.

    Returns:
        Indented JSON text, clipped to at most MAX_CHARS UTF-16 units.

    """
    context = context or get_budget_context()
    output = converge_string_budget(safe_stringify(value), context.limits)
    context.record_run_from_output(api, output)
    return output


def snapshot_value(
    value: Any,
    *,
    context: BudgetContext | None = None,
    api: str = "snapshot_value",
) -> str:
    """Encode an arbitrary value as a bounded {data, meta} envelope.

    If the serialized value does not fit, data becomes
    {"preview": <clipped JSON text>} and meta is flagged truncated/omitted.
    """
    context = context or get_budget_context()
    limits = context.limits
    budget = context.info()
    data = to_serializable(value)

    meta: dict[str, Any] = {
        "truncated": False,
        "omitted": False,
        "nodeCount": count_json_entries(data),
        "budget": budget,
    }
    output = encode_envelope(data, meta)
    if not fits(output, limits):
        logger.debug("Value snapshot exceeds budget, falling back to preview")
        text = json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False)
        preview = clip_value(converge_string_budget(text, limits), limits)
        meta = {"truncated": True, "omitted": True, "nodeCount": 1, "budget": budget}
        output = encode_envelope({"preview": preview}, meta)
        if not fits(output, limits):
            output = converge_string_budget(output, limits)

    context.record_run_from_flags(
        api,
        char_count=utf16_len(output),
        truncated=meta["truncated"],
        omitted=meta["omitted"],
    )
    return output


def render_fragments(
    fragments: Sequence[str],
    *,
    context: BudgetContext | None = None,
    api: str = "render_fragments",
) -> str:
    """Join opaque text fragments (e.g. outerHTML of matched elements) within budget.

    Keeps the first MAX_NODES fragments, clips each to VALUE_MAX_CHARS, and
    appends an OMITTED_MATCHES trailer for the rest.

    Args:
        fragments: Fragments in output order.
        context: Budget context; the process-wide one when omitted.
        api: Name recorded in the run statistics.

    Returns:
        Newline-joined fragments of at most MAX_CHARS UTF-16 units.

    """
    context = context or get_budget_context()
    limits = context.limits
    if isinstance(fragments, str):
        fragments = [fragments]
    if not fragments:
        context.record_run_from_output(api, "")
        return ""

    kept = list(fragments[: limits.max_nodes])
    omitted = len(fragments) - len(kept)
    output = "\n".join(clip_value(str(fragment), limits) for fragment in kept)
    if omitted > 0:
        output = f"{output}\n…(OMITTED_MATCHES, omitted={omitted})"

    output = converge_string_budget(output, limits)
    context.record_run_from_output(api, output)
    return output

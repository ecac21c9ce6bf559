"""Tests for bounded value and fragment output."""

import json
from collections.abc import Callable

from probe_budget.core.budget.config import BudgetContext
from probe_budget.core.budget.formatter import utf16_len
from probe_budget.core.budget.inspection import (
    count_json_entries,
    render_fragments,
    render_value,
    snapshot_value,
)


class TestCountJsonEntries:
    """Test entry counting for value snapshots."""

    def test_counts(self) -> None:
        """Containers and scalars count one each; null counts nothing."""
        assert count_json_entries(None) == 0
        assert count_json_entries("x") == 1
        assert count_json_entries({"a": [1, 2], "b": None}) == 4


class TestRenderValue:
    """Test render_value."""

    def test_cyclic_state(self, context: BudgetContext) -> None:
        """Cycles are marked and the result is JSON."""
        state: dict = {"count": 1}
        state["self"] = state
        output = render_value(state, context=context)
        assert json.loads(output) == {"count": 1, "self": "[Circular->$]"}
        assert context.last_run_stats is not None
        assert context.last_run_stats.api == "render_value"
        assert context.last_run_stats.truncated is False

    def test_long_values_clipped(self, context: BudgetContext) -> None:
        """Long serialized lines are value-clipped."""
        output = render_value({"blob": "z" * 500}, context=context)
        assert "…(TRUNCATED,len=" in output
        assert context.last_run_stats is not None
        assert context.last_run_stats.truncated is True

    def test_bounded(self, make_context: Callable[..., BudgetContext]) -> None:
        """Large values are hard clipped to MAX_CHARS."""
        output = render_value([f"item-{i}" for i in range(1000)], context=make_context(MAX_CHARS=300))
        assert utf16_len(output) <= 300


class TestSnapshotValue:
    """Test snapshot_value."""

    def test_fits(self, context: BudgetContext) -> None:
        """A small value is emitted as data with an untruncated meta."""
        output = snapshot_value({"a": [1, 2], "b": None}, context=context)
        envelope = json.loads(output)
        assert envelope["data"] == {"a": [1, 2], "b": None}
        meta = envelope["meta"]
        assert meta["truncated"] is False
        assert meta["omitted"] is False
        assert meta["nodeCount"] == 4
        assert meta["charCount"] > 0

    def test_preview_when_too_large(self, make_context: Callable[..., BudgetContext]) -> None:
        """Oversized values fall back to a clipped JSON preview."""
        context = make_context(MAX_CHARS=2000)
        output = snapshot_value(["x" * 50 for _ in range(500)], context=context)
        assert utf16_len(output) <= 2000
        envelope = json.loads(output)
        assert set(envelope["data"]) == {"preview"}
        assert "…(TRUNCATED,len=" in envelope["data"]["preview"]
        assert envelope["meta"]["truncated"] is True
        assert envelope["meta"]["nodeCount"] == 1
        assert context.last_run_stats is not None
        assert context.last_run_stats.omitted is True

    def test_tiny_budget(self, make_context: Callable[..., BudgetContext]) -> None:
        """Budgets below the envelope size still hold."""
        output = snapshot_value({"k": "v" * 100}, context=make_context(MAX_CHARS=50))
        assert utf16_len(output) <= 50


class TestRenderFragments:
    """Test render_fragments."""

    def test_joins_and_clips(self, context: BudgetContext) -> None:
        """Fragments are newline-joined and individually clipped."""
        output = render_fragments(["<a>1</a>", "<b>" + "x" * 300 + "</b>"], context=context)
        first, second = output.split("\n")
        assert first == "<a>1</a>"
        assert second.endswith("…(TRUNCATED,len=307)")

    def test_single_string(self, context: BudgetContext) -> None:
        """A bare string is treated as one fragment."""
        assert render_fragments("<p>hi</p>", context=context) == "<p>hi</p>"

    def test_empty(self, context: BudgetContext) -> None:
        """No fragments yields an empty string and still records stats."""
        assert render_fragments([], context=context) == ""
        assert context.last_run_stats is not None
        assert context.last_run_stats.char_count == 0

    def test_fragment_cap(self, make_context: Callable[..., BudgetContext]) -> None:
        """Fragments beyond MAX_NODES are reported as omitted matches."""
        context = make_context(MAX_NODES=3)
        output = render_fragments([f"<li>{i}</li>" for i in range(5)], context=context)
        assert output.split("\n") == [
            "<li>0</li>",
            "<li>1</li>",
            "<li>2</li>",
            "…(OMITTED_MATCHES, omitted=2)",
        ]
        assert context.last_run_stats is not None
        assert context.last_run_stats.omitted is True

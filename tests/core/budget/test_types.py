"""Tests for the node model and input validation."""

import pytest

from probe_budget.core.budget.types import (
    NodeKV,
    OmittedSubtree,
    ProbeNode,
    coerce_forest,
    count_nodes,
    forest_depth,
    make_placeholder,
)
from probe_budget.core.exceptions import InvalidInputError


class TestProbeNode:
    """Test ProbeNode helpers."""

    def test_to_dict_omits_absent_fields(self) -> None:
        """Only present fields appear in the wire shape."""
        node = ProbeNode(id="(@/a)", label="a", kv=[NodeKV("role"), NodeKV("x", "1")])
        assert node.to_dict() == {
            "id": "(@/a)",
            "label": "a",
            "kv": [{"k": "role"}, {"k": "x", "v": "1"}],
        }

    def test_shallow_clone_is_independent(self) -> None:
        """Mutating a clone's maps does not affect the original."""
        node = ProbeNode(id="1", label="a", data_attrs={"x": "1"}, children=[ProbeNode("2", "b")])
        clone = node.shallow_clone()
        clone.data_attrs["x"] = "2"  # type: ignore[index]
        assert node.data_attrs == {"x": "1"}
        assert clone.children is None

    def test_make_placeholder(self) -> None:
        """Placeholders carry the reason and count in id and label."""
        node = make_placeholder("maxNodes", 7)
        assert node.is_placeholder
        assert node.id == "(@omitted:maxNodes:7)"
        assert node.label == "…(OMITTED_SUBTREE, reason=maxNodes, omittedChildren=7)"
        assert node.to_dict()["omittedSubtree"] == {"reason": "maxNodes", "omittedChildren": 7}

    def test_count_nodes_deep_chain(self) -> None:
        """Counting a deep chain does not recurse."""
        root = ProbeNode("0", "n")
        current = root
        for i in range(1, 5000):
            child = ProbeNode(str(i), "n")
            current.children = [child]
            current = child
        assert count_nodes([root]) == 5000

    def test_forest_depth(self) -> None:
        """Depth counts levels across every root."""
        shallow = ProbeNode("a", "a")
        deep = ProbeNode("b", "b", children=[ProbeNode("c", "c", children=[ProbeNode("d", "d")])])
        assert forest_depth([]) == 0
        assert forest_depth([shallow]) == 1
        assert forest_depth([shallow, deep]) == 3

    def test_to_dict_keeps_child_order(self) -> None:
        """Children are converted in their original order."""
        node = ProbeNode("1", "ul", children=[ProbeNode(str(i), "li") for i in range(3)])
        assert [child["id"] for child in node.to_dict()["children"]] == ["0", "1", "2"]

    def test_to_dict_deep_chain(self) -> None:
        """Converting a chain far deeper than the recursion limit succeeds."""
        root = ProbeNode("0", "n")
        current = root
        for i in range(1, 3000):
            child = ProbeNode(str(i), "n")
            current.children = [child]
            current = child
        assert forest_depth([root]) == 3000

        converted = root.to_dict()
        levels = 0
        while converted is not None:
            levels += 1
            assert converted["id"] == str(levels - 1)
            converted = converted["children"][0] if "children" in converted else None
        assert levels == 3000


class TestCoerceForest:
    """Test validation and copying of caller input."""

    def test_single_mapping_becomes_forest(self) -> None:
        """A single node is wrapped in a list."""
        forest = coerce_forest({"id": "(@/a)", "label": "a", "children": [{"id": "b", "label": "b"}]})
        assert len(forest) == 1
        assert forest[0].children is not None
        assert forest[0].children[0].id == "b"

    def test_mixed_sequence(self) -> None:
        """Sequences may mix ProbeNode instances and mappings."""
        forest = coerce_forest([ProbeNode("1", "a"), {"id": "2", "label": "b"}])
        assert [root.id for root in forest] == ["1", "2"]

    def test_empty_forest(self) -> None:
        """An empty list is a valid forest."""
        assert coerce_forest([]) == []

    def test_input_not_mutated(self) -> None:
        """The returned forest shares no nodes with the input."""
        child = ProbeNode("2", "b", text="hello")
        root = ProbeNode("1", "a", children=[child])
        forest = coerce_forest(root)
        forest[0].children[0].text = None  # type: ignore[index]
        assert child.text == "hello"
        assert forest[0] is not root

    def test_omitted_subtree_mapping_parsed(self) -> None:
        """Wire-shape placeholders are accepted."""
        forest = coerce_forest(
            {"id": "p", "label": "p", "omittedSubtree": {"reason": "depth", "omittedChildren": 3}}
        )
        assert forest[0].omitted_subtree == OmittedSubtree("depth", 3)

    @pytest.mark.parametrize("value", [None, 42, "nodes", b"nodes", 1.5])
    def test_rejects_non_forest(self, value: object) -> None:
        """Top-level values that are neither node nor sequence are rejected."""
        with pytest.raises(InvalidInputError) as exc_info:
            coerce_forest(value)
        assert exc_info.value.path == "$"

    @pytest.mark.parametrize(
        ("node", "path"),
        [
            ({"label": "a"}, "$[0].id"),
            ({"id": "a", "label": 3}, "$[0].label"),
            ({"id": "a", "label": "a", "text": 5}, "$[0].text"),
            ({"id": "a", "label": "a", "children": "x"}, "$[0].children"),
            ({"id": "a", "label": "a", "kv": [{"k": 1}]}, "$[0].kv[0].k"),
            ({"id": "a", "label": "a", "kv": [{"k": "x", "v": 2}]}, "$[0].kv[0].v"),
            ({"id": "a", "label": "a", "dataAttrs": {"x": 1}}, "$[0].dataAttrs.x"),
            (
                {"id": "a", "label": "a", "omittedSubtree": {"reason": "nope", "omittedChildren": 1}},
                "$[0].omittedSubtree.reason",
            ),
        ],
    )
    def test_reports_offending_path(self, node: dict, path: str) -> None:
        """Malformed fields raise with the path of the bad value."""
        with pytest.raises(InvalidInputError) as exc_info:
            coerce_forest([node])
        assert exc_info.value.path == path

    def test_nested_child_path(self) -> None:
        """Child paths follow the children index chain."""
        tree = {"id": "a", "label": "a", "children": [{"id": "b", "label": "b"}, {"id": "c"}]}
        with pytest.raises(InvalidInputError) as exc_info:
            coerce_forest(tree)
        assert exc_info.value.path == "$.children[1].label"

    def test_rejects_cycle(self) -> None:
        """A node that contains itself is rejected."""
        root: dict = {"id": "a", "label": "a", "children": []}
        root["children"].append({"id": "b", "label": "b", "children": [root]})
        with pytest.raises(InvalidInputError, match="Cyclic"):
            coerce_forest(root)

    def test_shared_node_is_not_a_cycle(self) -> None:
        """The same leaf under two parents is copied twice."""
        leaf = {"id": "x", "label": "x"}
        forest = coerce_forest({"id": "a", "label": "a", "children": [leaf, leaf]})
        assert count_nodes(forest) == 3

    def test_placeholder_with_children_rejected(self) -> None:
        """Placeholders must be terminal."""
        node = {
            "id": "p",
            "label": "p",
            "omittedSubtree": {"reason": "maxNodes", "omittedChildren": 1},
            "children": [{"id": "c", "label": "c"}],
        }
        with pytest.raises(InvalidInputError, match="Placeholder"):
            coerce_forest(node)

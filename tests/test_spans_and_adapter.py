# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Tests for the linear span model, patch records and the schema adapter.
"""

import logging

import pytest

from span_mirror.errors import MalformedPathError, SchemaMappingError
from span_mirror.model.basic_schema import basic_schema_adapter
from span_mirror.model.patches import (
    DelPatch,
    JoinBlockPatch,
    MarkPatch,
    MarkRange,
    PutPatch,
    SplicePatch,
    SplitBlockPatch,
    char_index,
    patch_from_dict,
    path_is_prefix_of,
    require_index,
)
from span_mirror.model.schema_adapter import SchemaAdapter, link_from_linear, link_from_tree
from span_mirror.model.spans import (
    BlockMarker,
    BlockSpan,
    TextSpan,
    normalize_spans,
    span_from_dict,
    spans_from_json,
    spans_length,
    spans_to_json,
)


@pytest.fixture
def adapter():
    return basic_schema_adapter


class TestSpans:
    """Span values and their JSON shape"""

    def test_json_shape(self):
        data = [
            {"type": "block", "value": {"type": "heading", "parents": [], "attrs": {"level": 2}, "isEmbed": False}},
            {"type": "text", "value": "Title", "marks": {"strong": True}},
            {"type": "text", "value": " plain"},
        ]
        spans = spans_from_json(data)
        assert isinstance(spans[0], BlockSpan)
        assert spans[1] == TextSpan("Title", {"strong": True})
        assert spans_to_json(spans) == data

    def test_unknown_span_type(self):
        with pytest.raises(ValueError):
            span_from_dict({"type": "image", "value": "x"})

    def test_normalize_merges_equal_marks(self):
        spans = [TextSpan("a"), TextSpan(""), TextSpan("b"), TextSpan("c", {"em": True}), TextSpan("d", {"em": True})]
        assert normalize_spans(spans) == [TextSpan("ab"), TextSpan("cd", {"em": True})]

    def test_length_counts_blocks_once(self):
        spans = [BlockSpan({"type": "paragraph"}), TextSpan("hello"), BlockSpan({"type": "paragraph"})]
        assert spans_length(spans) == 7


class TestBlockMarker:
    """Normalized view of block values"""

    def test_canonical_value(self):
        marker = BlockMarker.from_value({"type": "ordered-list-item", "parents": ["blockquote"], "attrs": {}})
        assert marker.parents == ("blockquote",)
        assert marker.to_value() == {
            "type": "ordered-list-item",
            "parents": ["blockquote"],
            "attrs": {},
            "isEmbed": False,
        }

    def test_malformed_values_fall_back(self):
        marker = BlockMarker.from_value({"type": 3, "parents": "nope", "attrs": []})
        assert marker.type == "paragraph"
        assert marker.parents == ()
        assert marker.attrs == {}
        assert BlockMarker.from_value(None).type == "paragraph"


class TestPatches:
    """Patch records and path helpers"""

    def test_from_dict(self):
        assert patch_from_dict({"action": "splice", "path": ["text", 3], "value": "ab"}) == SplicePatch(["text", 3], "ab")
        assert patch_from_dict({"action": "del", "path": ["text", 1]}) == DelPatch(["text", 1], 1)
        assert patch_from_dict({"action": "put", "path": ["text", 0, "type"], "value": "heading"}) == PutPatch(
            ["text", 0, "type"], "heading"
        )
        assert patch_from_dict({"action": "joinBlock", "path": ["text", 4]}) == JoinBlockPatch(["text", 4])
        mark = patch_from_dict({
            "action": "mark",
            "path": ["text"],
            "marks": [{"name": "em", "value": True, "start": 1, "end": 3}],
        })
        assert mark == MarkPatch(["text"], [MarkRange("em", True, 1, 3)])

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            patch_from_dict({"action": "move", "path": ["text", 0]})

    def test_to_dict(self):
        patch = SplitBlockPatch(["text", 2], {"type": "paragraph"})
        assert patch.to_dict() == {"action": "splitBlock", "path": ["text", 2], "value": {"type": "paragraph"}}

    def test_char_index(self):
        assert char_index(["text"], ["text", 3]) == 3
        assert char_index(["text"], ["text", 3, "attrs"]) is None
        assert char_index(["text"], ["other", 3]) is None
        assert char_index(["text"], ["text", True]) is None
        assert path_is_prefix_of(["text"], ["text", 3, "type"])

    def test_require_index(self):
        with pytest.raises(MalformedPathError) as exc_info:
            require_index(["text"], ["text", "type"])
        assert exc_info.value.path == ["text", "type"]


class TestSchemaAdapter:
    """Block and mark lookups of the basic schema"""

    def test_reserved_attrs_are_added(self, adapter):
        paragraph = adapter.schema.nodes["paragraph"]
        assert paragraph.default_attrs == {"isAmgBlock": False, "unknownAttrs": None, "unknownBlock": None}
        assert "isAmgBlock" in adapter.schema.nodes["heading"].attrs
        assert adapter.unknown_leaf.name == "unknownLeaf"
        assert adapter.unknown_mark.name == "unknownMark"

    def test_nodes_for_block(self, adapter):
        outer, content = adapter.nodes_for_block("ordered-list-item", False)
        assert (outer.name, content.name) == ("ordered_list", "list_item")
        outer, content = adapter.nodes_for_block("heading", False)
        assert outer is None and content.name == "heading"
        assert adapter.nodes_for_block("callout", False) == (None, adapter.unknown_textblock)
        assert adapter.nodes_for_block("widget", True) == (None, adapter.unknown_leaf)
        assert adapter.is_known_block("image")
        assert not adapter.is_known_block("callout")

    def test_mapping_for_node_prefers_parent(self, adapter):
        nodes = adapter.schema.nodes
        assert adapter.mapping_for_node(nodes["list_item"], nodes["bullet_list"]).block_name == "unordered-list-item"
        assert adapter.mapping_for_node(nodes["list_item"], nodes["ordered_list"]).block_name == "ordered-list-item"
        assert adapter.mapping_for_node(nodes["ordered_list"], nodes["doc"]) is None

    def test_attrs_from_block(self, adapter):
        block = {"type": "heading", "parents": [], "attrs": {"level": 2, "color": "red"}, "isEmbed": False}
        assert adapter.attrs_from_block(block, False) == {
            "isAmgBlock": True,
            "level": 2,
            "unknownAttrs": {"color": "red"},
        }
        unknown = {"type": "callout", "parents": [], "attrs": {}}
        assert adapter.attrs_from_block(unknown, True) == {"isAmgBlock": True, "unknownBlock": unknown}

    def test_block_attrs_from_node(self, adapter):
        heading = adapter.schema.node("heading", {"level": 3, "unknownAttrs": {"color": "red"}})
        mapping = adapter.mapping_for_node(heading.type, None)
        assert adapter.block_attrs_from_node(mapping, heading) == {"color": "red", "level": 3}

    def test_marks_round_trip_through_unknown_mark(self, adapter):
        marks = adapter.tree_marks_from_linear({"strong": True, "bold": True, "em": None})
        assert sorted(mark.type.name for mark in marks) == ["strong", "unknownMark"]
        assert adapter.linear_marks_from_tree(marks) == {"strong": True, "bold": True}

    def test_reserved_attr_in_schema_is_rejected(self):
        with pytest.raises(SchemaMappingError):
            SchemaAdapter({
                "nodes": {
                    "doc": {"content": "paragraph+"},
                    "paragraph": {
                        "content": "text*",
                        "attrs": {"isAmgBlock": {"default": False}},
                        "linear": {"block": "paragraph", "unknown_block": True},
                    },
                    "text": {},
                },
            })

    def test_unknown_block_textblock_is_required(self):
        with pytest.raises(SchemaMappingError):
            SchemaAdapter({
                "nodes": {
                    "doc": {"content": "paragraph+"},
                    "paragraph": {"content": "text*", "linear": {"block": "paragraph"}},
                    "text": {},
                },
            })


class TestLinkParsers:
    """Link marks are stored as compact JSON strings"""

    def test_round_trip(self, adapter):
        value = '{"href":"https://example.com","title":null}'
        mark = adapter.schema.mark("link", link_from_linear(value))
        assert mark.attrs == {"href": "https://example.com", "title": None}
        assert link_from_tree(mark) == value

    def test_invalid_json_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert link_from_linear("{not json") == {"href": "", "title": None}
        assert "Failed to parse link mark" in caplog.text

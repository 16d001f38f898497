# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Tests for replaying editor transactions on a linear document.
"""

import pytest
from prosemirror.transform import AddMarkStep

from span_mirror.model.basic_schema import basic_schema_adapter
from span_mirror.model.spans import BlockSpan, TextSpan
from span_mirror.model.traversal import doc_from_spans, spans_from_node
from span_mirror.model.tree_to_linear import (
    JoinBlock,
    Splice,
    SplitBlock,
    UpdateBlock,
    apply_add_mark_steps,
    diff_spans,
    tree_to_linear,
)
from span_mirror.replica.document import LinearDocument
from span_mirror.tree import EditorState

TEXT = ["text"]


def block(block_type, parents=(), attrs=None):
    return BlockSpan({"type": block_type, "parents": list(parents), "attrs": dict(attrs or {}), "isEmbed": False})


@pytest.fixture
def adapter():
    return basic_schema_adapter


def replay(adapter, spans, edit):
    """Apply ``edit`` to a transaction and replay its steps on a replica of ``spans``"""
    document = LinearDocument.from_spans(spans)
    state = EditorState.create(adapter.schema, doc_from_spans(adapter, spans))
    tr = edit(state.tr)
    results = []
    document.change(
        lambda draft: results.append(tree_to_linear(adapter, draft.spans(TEXT), tr.steps, draft, tr.before, TEXT))
    )
    assert results[0].eq(tr.doc)
    return document, tr


class RecordingDraft:
    def __init__(self):
        self.calls = []

    def mark(self, path, start, end, name, value, expand):
        self.calls.append((start, end, name, value, expand))


class TestTextEdits:
    """Text insertion and deletion"""

    def test_insert_text(self, adapter):
        document, tr = replay(adapter, [block("paragraph"), TextSpan("hello")], lambda tr: tr.insert_text("!", 6))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("hello!")]
        assert document.spans(TEXT) == spans_from_node(adapter, tr.doc)

    def test_delete_inside_textblock(self, adapter):
        document, _ = replay(adapter, [block("paragraph"), TextSpan("hello")], lambda tr: tr.delete(2, 4))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("hlo")]

    def test_stored_marks_are_applied(self, adapter):
        strong = adapter.schema.mark("strong")

        def edit(tr):
            tr.set_stored_marks([strong])
            return tr.insert_text("!", 6)

        document, tr = replay(adapter, [block("paragraph"), TextSpan("hello")], edit)
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("hello"), TextSpan("!", {"strong": True})]
        assert document.spans(TEXT) == spans_from_node(adapter, tr.doc)

    def test_inherited_mark_is_removed(self, adapter):
        schema = adapter.schema
        document, tr = replay(
            adapter,
            [block("paragraph"), TextSpan("bold", {"strong": True})],
            lambda tr: tr.insert(5, schema.text("x")),
        )
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("bold", {"strong": True}), TextSpan("x")]
        assert document.spans(TEXT) == spans_from_node(adapter, tr.doc)


class TestMarkEdits:
    """Add-mark and remove-mark steps"""

    def test_add_mark(self, adapter):
        strong = adapter.schema.mark("strong")
        document, tr = replay(adapter, [block("paragraph"), TextSpan("hello")], lambda tr: tr.add_mark(1, 3, strong))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("he", {"strong": True}), TextSpan("llo")]
        assert document.spans(TEXT) == spans_from_node(adapter, tr.doc)

    def test_remove_mark(self, adapter):
        strong_type = adapter.schema.marks["strong"]
        document, _ = replay(
            adapter,
            [block("paragraph"), TextSpan("hello", {"strong": True})],
            lambda tr: tr.remove_mark(1, 3, strong_type),
        )
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("he"), TextSpan("llo", {"strong": True})]

    def test_remove_unknown_mark(self, adapter):
        document, _ = replay(
            adapter,
            [block("paragraph"), TextSpan("x", {"bold": True})],
            lambda tr: tr.remove_mark(1, 2, adapter.unknown_mark),
        )
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("x")]

    def test_mark_across_blocks(self, adapter):
        em = adapter.schema.mark("em")
        spans = [block("paragraph"), TextSpan("ab"), block("paragraph"), TextSpan("cd")]
        document, tr = replay(adapter, spans, lambda tr: tr.add_mark(1, 7, em))
        assert document.spans(TEXT) == [
            block("paragraph"),
            TextSpan("ab", {"em": True}),
            block("paragraph"),
            TextSpan("cd", {"em": True}),
        ]
        assert document.spans(TEXT) == spans_from_node(adapter, tr.doc)

    def test_marks_separated_by_blocks_are_grouped(self, adapter):
        em = adapter.schema.mark("em")
        spans = [block("paragraph"), TextSpan("ab"), block("paragraph"), TextSpan("cd")]
        draft = RecordingDraft()
        apply_add_mark_steps(adapter, spans, [AddMarkStep(1, 3, em), AddMarkStep(5, 7, em)], draft, TEXT)
        assert draft.calls == [(1, 6, "em", True, "both")]

    def test_link_marks_do_not_expand(self, adapter):
        link = adapter.schema.mark("link", {"href": "https://example.com"})
        draft = RecordingDraft()
        apply_add_mark_steps(adapter, [block("paragraph"), TextSpan("hello")], [AddMarkStep(1, 3, link)], draft, TEXT)
        assert draft.calls == [(1, 3, "link", '{"href":"https://example.com","title":null}', "none")]


class TestStructuralEdits:
    """Steps that change the block structure"""

    def test_split_paragraph(self, adapter):
        document, tr = replay(adapter, [block("paragraph"), TextSpan("hello")], lambda tr: tr.split(3))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("he"), block("paragraph"), TextSpan("llo")]
        assert document.spans(TEXT) == spans_from_node(adapter, tr.doc)

    def test_join_paragraphs(self, adapter):
        spans = [block("paragraph"), TextSpan("ab"), block("paragraph"), TextSpan("cd")]
        document, tr = replay(adapter, spans, lambda tr: tr.delete(3, 5))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("abcd")]
        assert document.spans(TEXT) == spans_from_node(adapter, tr.doc)

    def test_insert_list_items(self, adapter):
        schema = adapter.schema

        def item(text):
            return schema.node("list_item", None, [schema.node("paragraph", None, [schema.text(text)])])

        document, tr = replay(
            adapter,
            [block("ordered-list-item"), TextSpan("item 1")],
            lambda tr: tr.insert(11, [item("item 2"), item("item 3")]),
        )
        assert document.spans(TEXT) == [
            block("ordered-list-item"),
            TextSpan("item 1"),
            block("ordered-list-item"),
            TextSpan("item 2"),
            block("ordered-list-item"),
            TextSpan("item 3"),
        ]


class TestDiffSpans:
    """Operations recovered from two span sequences"""

    def test_inserted_blocks(self):
        item = block("ordered-list-item").value
        ops = diff_spans(
            [block("ordered-list-item"), TextSpan("item 1")],
            [
                block("ordered-list-item"),
                TextSpan("item 1"),
                block("ordered-list-item"),
                TextSpan("item 2"),
                block("ordered-list-item"),
                TextSpan("item 3"),
            ],
        )
        assert ops == [
            SplitBlock(7, item),
            Splice(8, 0, "item 2", {}),
            SplitBlock(14, item),
            Splice(15, 0, "item 3", {}),
        ]

    def test_changed_block_is_updated(self):
        heading = block("heading", attrs={"level": 1}).value
        ops = diff_spans([block("paragraph"), TextSpan("x")], [BlockSpan(heading), TextSpan("x")])
        assert ops == [UpdateBlock(0, heading)]

    def test_removed_block_is_joined(self):
        ops = diff_spans(
            [block("paragraph"), TextSpan("ab"), block("paragraph"), TextSpan("cd")],
            [block("paragraph"), TextSpan("abcd")],
        )
        assert ops == [JoinBlock(3)]

    def test_marked_insertion(self):
        ops = diff_spans([TextSpan("abc")], [TextSpan("a"), TextSpan("X", {"em": True}), TextSpan("bc")])
        assert ops == [Splice(1, 0, "X", {"em": True})]

    def test_equal(self):
        assert diff_spans([block("paragraph"), TextSpan("x")], [block("paragraph"), TextSpan("x")]) == []

# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Tests for the Loro-backed linear document replica.
"""

import pytest
from loro import ExportMode

from span_mirror.constants import BLOCK_MARK_KEY, BLOCK_MARKER_CHAR
from span_mirror.errors import InvalidIndexError, MalformedPathError
from span_mirror.model.patches import DelPatch, InsertPatch, MarkPatch, MarkRange, PutPatch, SplicePatch
from span_mirror.model.spans import BlockSpan, TextSpan
from span_mirror.replica import ChangeEvent, LinearDocument

TEXT = ["text"]


def block(block_type, parents=(), attrs=None):
    return BlockSpan({"type": block_type, "parents": list(parents), "attrs": dict(attrs or {}), "isEmbed": False})


@pytest.fixture
def document():
    return LinearDocument.from_spans([block("paragraph"), TextSpan("hello")])


@pytest.fixture
def events(document):
    received = []
    document.subscribe(received.append)
    return received


class TestChanges:
    """Committing changes and reading them back"""

    def test_heads_advance(self, document):
        before = document.get_heads()
        heads = document.change(lambda draft: draft.splice(TEXT, 6, 0, "!"))
        assert heads != before
        assert document.get_heads() == heads
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("hello!")]

    def test_noop_change_keeps_heads(self, document, events):
        heads = document.get_heads()
        assert document.change(lambda draft: draft.splice(TEXT, 1, 0, "")) == heads
        assert events == []

    def test_view_of_older_heads(self, document):
        heads = document.get_heads()
        document.change(lambda draft: draft.splice(TEXT, 1, 5))
        assert document.spans(TEXT) == [block("paragraph")]
        assert document.spans(TEXT, heads=heads) == [block("paragraph"), TextSpan("hello")]
        with pytest.raises(KeyError):
            document.view(LinearDocument.from_spans([TextSpan("x")]).get_heads())
        with pytest.raises(KeyError):
            document.view("not heads")

    def test_block_operations(self, document):
        document.change(lambda draft: draft.split_block(TEXT, 3, {"type": "paragraph"}))
        assert document.spans(TEXT) == [
            block("paragraph"),
            TextSpan("he"),
            BlockSpan({"type": "paragraph"}),
            TextSpan("llo"),
        ]
        document.change(lambda draft: draft.update_block(TEXT, 3, {"type": "heading"}))
        assert document.spans(TEXT)[2] == BlockSpan({"type": "heading"})
        document.change(lambda draft: draft.join_block(TEXT, 3))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("hello")]

    def test_empty_path_is_rejected(self, document):
        with pytest.raises(MalformedPathError):
            document.change(lambda draft: draft.splice([], 0, 0, "x"))

    def test_index_out_of_range(self, document):
        heads = document.get_heads()
        with pytest.raises(InvalidIndexError):
            document.change(lambda draft: draft.splice(TEXT, 10, 0, "x"))
        with pytest.raises(InvalidIndexError):
            document.change(lambda draft: draft.join_block(TEXT, 1))
        assert document.get_heads() == heads

    def test_failed_change_is_not_committed(self, document):
        def edit(draft):
            draft.splice(TEXT, 1, 0, "x")
            draft.update_block(TEXT, 2, {"type": "heading"})

        with pytest.raises(InvalidIndexError):
            document.change(edit)
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("hello")]


class TestMarks:
    """Mark ranges and their expansion"""

    def test_mark_ranges(self, document):
        document.change(lambda draft: draft.mark(TEXT, 1, 3, "em", True))
        assert document.marks(TEXT) == [MarkRange("em", True, 1, 3)]
        assert document.marks_at(TEXT, 1) == {"em": True}
        assert document.marks_at(TEXT, 3) == {}

    def test_blocks_are_not_marked(self, document):
        document.change(lambda draft: draft.mark(TEXT, 0, 6, "em", True))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("hello", {"em": True})]

    def test_default_expansion_is_after(self, document):
        document.change(lambda draft: draft.mark(TEXT, 1, 6, "strong", True))
        document.change(lambda draft: draft.splice(TEXT, 6, 0, "!"))
        document.change(lambda draft: draft.splice(TEXT, 1, 0, ">"))
        assert document.spans(TEXT) == [
            block("paragraph"),
            TextSpan(">"),
            TextSpan("hello!", {"strong": True}),
        ]

    def test_before_expansion(self, document):
        document.change(lambda draft: draft.mark(TEXT, 1, 6, "strong", True, "before"))
        document.change(lambda draft: draft.splice(TEXT, 6, 0, "!"))
        document.change(lambda draft: draft.splice(TEXT, 1, 0, ">"))
        assert document.spans(TEXT) == [
            block("paragraph"),
            TextSpan(">hello", {"strong": True}),
            TextSpan("!"),
        ]

    def test_no_expansion(self, document):
        document.change(lambda draft: draft.mark(TEXT, 1, 6, "link", "x", "none"))
        document.change(lambda draft: draft.splice(TEXT, 6, 0, "!"))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("hello", {"link": "x"}), TextSpan("!")]

    def test_explicit_marks_replace_inherited(self, document):
        document.change(lambda draft: draft.mark(TEXT, 1, 6, "strong", True))
        document.change(lambda draft: draft.splice(TEXT, 6, 0, "!", {}))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("hello", {"strong": True}), TextSpan("!")]

    def test_none_value_unmarks(self, document):
        document.change(lambda draft: draft.mark(TEXT, 1, 6, "em", True))
        document.change(lambda draft: draft.mark(TEXT, 1, 3, "em", None))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("he"), TextSpan("llo", {"em": True})]

    def test_unknown_expansion(self, document):
        with pytest.raises(ValueError):
            document.change(lambda draft: draft.mark(TEXT, 1, 2, "em", True, "sideways"))


class TestPatches:
    """Patches delivered to subscribers"""

    def test_splice_event(self, document, events):
        before = document.get_heads()
        after = document.change(lambda draft: draft.splice(TEXT, 6, 0, "!"))
        assert events == [ChangeEvent(before, after, [SplicePatch(["text", 6], "!", None)])]

    def test_delete(self, document, events):
        document.change(lambda draft: draft.splice(TEXT, 2, 3))
        assert events[0].patches == [DelPatch(["text", 2], 3)]

    def test_inserted_block(self, document, events):
        document.change(lambda draft: draft.split_block(TEXT, 3, {"type": "heading", "attrs": {"level": 1}}))
        assert events[0].patches == [
            InsertPatch(["text", 3], [{}]),
            PutPatch(["text", 3, "attrs"], {"level": 1}),
            PutPatch(["text", 3, "type"], "heading"),
        ]

    def test_inserted_text_and_blocks(self, document, events):
        def edit(draft):
            draft.splice(TEXT, 6, 0, "ab", {"em": True})
            draft.split_block(TEXT, 7, {"type": "paragraph"})

        document.change(edit)
        assert events[0].patches == [
            SplicePatch(["text", 6], "a", {"em": True}),
            InsertPatch(["text", 7], [{}]),
            PutPatch(["text", 7, "type"], "paragraph"),
            SplicePatch(["text", 8], "b", {"em": True}),
        ]

    def test_updated_block(self, document, events):
        document.change(lambda draft: draft.update_block(TEXT, 0, {"type": "heading", "parents": []}))
        assert events[0].patches == [
            PutPatch(["text", 0, "type"], "heading"),
            DelPatch(["text", 0, "attrs"]),
            DelPatch(["text", 0, "isEmbed"]),
        ]

    def test_mark_patch_comes_last(self, document, events):
        def edit(draft):
            draft.mark(TEXT, 1, 3, "em", True)
            draft.splice(TEXT, 6, 0, "!")

        document.change(edit)
        assert events[0].patches == [
            SplicePatch(["text", 6], "!", None),
            MarkPatch(["text"], [MarkRange("em", True, 1, 3)]),
        ]

    def test_removed_mark(self, document, events):
        document.change(lambda draft: draft.mark(TEXT, 1, 6, "em", True))
        document.change(lambda draft: draft.unmark(TEXT, 2, 4, "em"))
        assert events[1].patches == [MarkPatch(["text"], [MarkRange("em", None, 2, 4)])]

    def test_unsubscribe(self, document):
        received = []
        document.subscribe(received.append)
        document.unsubscribe(received.append)
        document.change(lambda draft: draft.splice(TEXT, 6, 0, "!"))
        assert received == []


class TestLoroBacking:
    """The replica state lives in Loro containers"""

    def test_texts_are_loro_texts(self, document):
        text = document.doc.get_text("text")
        assert text.to_string() == BLOCK_MARKER_CHAR + "hello"
        assert document.paths() == [TEXT]

    def test_block_value_is_a_style(self, document):
        delta = document.doc.get_text("text").to_delta()
        assert delta[0].attributes[BLOCK_MARK_KEY]["type"] == "paragraph"

    def test_typed_text_does_not_become_a_block(self, document):
        document.change(lambda draft: draft.splice(TEXT, 1, 0, "x"))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("xhello")]

    def test_other_paths(self, document):
        document.change(lambda draft: draft.splice(["notes", 0], 0, 0, "n"))
        assert document.spans(["notes", 0]) == [TextSpan("n")]
        assert sorted(document.paths(), key=str) == sorted([TEXT, ["notes", 0]], key=str)

    def test_diff_matches_event_patches(self, document, events):
        before = document.get_heads()

        def edit(draft):
            draft.split_block(TEXT, 3, {"type": "heading", "attrs": {"level": 2}})
            draft.mark(TEXT, 1, 3, "em", True)

        after = document.change(edit)
        assert document.diff(before, after) == events[0].patches

    def test_diff_with_unknown_heads(self, document):
        with pytest.raises(KeyError):
            document.diff(document.get_heads(), LinearDocument.from_spans([TextSpan("x")]).get_heads())

    def test_imported_updates_reach_subscribers(self, document, events):
        remote = document.fork()
        remote.change(lambda draft: draft.splice(TEXT, 6, 0, " world"))
        before = document.get_heads()
        after = document.import_updates(remote.doc.export(ExportMode.Snapshot()))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan("hello world")]
        assert events == [ChangeEvent(before, after, [SplicePatch(["text", 6], " world", None)])]

    def test_concurrent_edits_merge(self, document):
        remote = document.fork()
        remote.change(lambda draft: draft.splice(TEXT, 1, 0, ">"))
        document.change(lambda draft: draft.splice(TEXT, 6, 0, "!"))
        document.import_updates(remote.doc.export(ExportMode.Snapshot()))
        assert document.spans(TEXT) == [block("paragraph"), TextSpan(">hello!")]

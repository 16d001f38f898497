# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Patch-to-Tree Converter
=======================

Turns the patches a replica reports between two heads into steps on an
editor transaction.

ARCHITECTURE:
- Patches are first grouped: runs of text patches (splice, del, mark) are
  handled one at a time with index translation, while all patches touching
  one block marker (its insertion and the puts filling its value) are
  handled together.
- Text patches map to small steps: a text insertion, a range deletion, or
  a mark change over the translated range.
- Block changes rebuild the tree from the patched spans and replace only
  the range where the rebuilt tree differs from the transaction document.
- The span list is patched after every patch so each index is translated
  against the document as left by the patches before it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from prosemirror.model import Fragment, Node, ReplaceError, Slice
from prosemirror.transform import ReplaceStep, TransformError

from ..constants import UNKNOWN_MARKS_ATTR
from ..errors import InvalidIndexError
from ..tree.state import Transaction
from .maintain_spans import find_block_at_index, patch_spans
from .patches import (
    DelPatch,
    MarkPatch,
    MarkRange,
    Patch,
    Prop,
    SplicePatch,
    char_index,
    path_is_prefix_of,
    paths_equal,
)
from .positions import splice_index_to_tree_index
from .schema_adapter import SchemaAdapter
from .spans import BlockSpan, Span
from .traversal import doc_from_spans

logger = logging.getLogger(__name__)


@dataclass
class TextPatches:
    patches: List[Patch] = field(default_factory=list)


@dataclass
class BlockPatches:
    index: int
    patches: List[Patch] = field(default_factory=list)


class Diff(NamedTuple):
    start: int
    end_a: int
    end_b: int


def gather_patches(text_path: Sequence[Prop], patches: Sequence[Patch]) -> List[Any]:
    """Group patches under ``text_path`` into text runs and per-block runs"""
    result: List[Any] = []
    current: Optional[Any] = None

    def flush():
        nonlocal current
        if current is not None and current.patches:
            result.append(current)
        current = None

    for patch in patches:
        if not path_is_prefix_of(text_path, patch.path):
            continue
        if paths_equal(text_path, patch.path):
            if not isinstance(patch, MarkPatch):
                continue
            if not isinstance(current, TextPatches):
                flush()
                current = TextPatches()
            current.patches.append(patch)
        elif len(patch.path) == len(text_path) + 1:
            index = char_index(text_path, patch.path)
            if index is None:
                continue
            if isinstance(patch, (SplicePatch, DelPatch)):
                if not isinstance(current, TextPatches):
                    flush()
                    current = TextPatches()
                current.patches.append(patch)
            else:
                flush()
                current = BlockPatches(index, [patch])
        else:
            index = patch.path[len(text_path)]
            if not isinstance(index, int) or isinstance(index, bool):
                continue
            if isinstance(current, BlockPatches) and current.index == index:
                current.patches.append(patch)
            else:
                flush()
                current = BlockPatches(index, [patch])
    flush()
    return result


def patch_to_tree(
    adapter: SchemaAdapter,
    spans: List[Span],
    patches: Sequence[Patch],
    path: Sequence[Prop],
    tr: Transaction,
) -> Transaction:
    """Add the steps for ``patches`` to ``tr``.

    Args:
        adapter: Schema adapter of the editor
        spans: Spans of the text at ``path`` before the patches. The list is
            patched in place and ends up matching the document after them.
        patches: Patches reported by the replica, in order
        path: Path of the text sequence being mirrored
        tr: Transaction whose document matches ``spans``

    Returns:
        The same transaction, with steps added
    """
    for group in gather_patches(path, patches):
        if isinstance(group, BlockPatches):
            logger.debug(f"Block change at {group.index} with {len(group.patches)} patches")
            handle_block_change(adapter, path, spans, group.patches, tr)
            continue
        for patch in group.patches:
            logger.debug(f"Applying {patch.action} patch at {patch.path}")
            if isinstance(patch, SplicePatch):
                index = char_index(path, patch.path)
                if index is not None and _precedes_block(spans, index):
                    handle_block_change(adapter, path, spans, [patch], tr)
                else:
                    handle_splice(adapter, spans, patch, path, tr)
                    patch_spans(path, spans, patch)
            elif isinstance(patch, DelPatch):
                index = char_index(path, patch.path)
                if index is not None and _deletes_block(spans, index, patch.length):
                    handle_block_change(adapter, path, spans, [patch], tr)
                else:
                    handle_delete(adapter, spans, patch, path, tr)
                    patch_spans(path, spans, patch)
            elif isinstance(patch, MarkPatch):
                handle_mark(adapter, spans, patch, tr)
                patch_spans(path, spans, patch)
    return tr


def _deletes_block(spans: List[Span], index: int, length: int) -> bool:
    end = index + max(length, 1)
    offset = 0
    for span in spans:
        if offset >= end:
            break
        if isinstance(span, BlockSpan):
            if offset >= index:
                return True
            offset += 1
        else:
            offset += len(span.value)
    return False


def _precedes_block(spans: List[Span], index: int) -> bool:
    """Text spliced at ``index`` lands before a leading block marker"""
    return index == 0 and find_block_at_index(spans, 0) is not None


def _tree_index(adapter: SchemaAdapter, spans: List[Span], index: int) -> int:
    tree_index = splice_index_to_tree_index(adapter, spans, index)
    if tree_index is None:
        raise InvalidIndexError(f"No tree position for linear index {index}")
    return tree_index


def handle_splice(adapter: SchemaAdapter, spans: List[Span], patch: SplicePatch, path: Sequence[Prop], tr: Transaction):
    index = char_index(path, patch.path)
    if index is None or not patch.value:
        return
    tree_index = _tree_index(adapter, spans, index)
    marks = adapter.tree_marks_from_linear(patch.marks) if patch.marks is not None else None
    text = adapter.schema.text(patch.value, marks)
    tr.step(ReplaceStep(tree_index, tree_index, Slice(Fragment.from_(text), 0, 0)))


def handle_delete(adapter: SchemaAdapter, spans: List[Span], patch: DelPatch, path: Sequence[Prop], tr: Transaction):
    index = char_index(path, patch.path)
    if index is None:
        return
    start = _tree_index(adapter, spans, index)
    tr.delete(start, start + max(patch.length, 1))


def handle_mark(adapter: SchemaAdapter, spans: List[Span], patch: MarkPatch, tr: Transaction):
    for mark in patch.marks:
        start = _tree_index(adapter, spans, mark.start)
        end = _tree_index(adapter, spans, mark.end)
        if start >= end:
            continue
        mapping = adapter.mark_mapping_for_name(mark.name)
        if mapping is None:
            _set_unknown_mark(adapter, tr, start, end, mark)
        elif mark.value is None:
            tr.remove_mark(start, end, mapping.mark_type)
        else:
            for tree_mark in adapter.tree_marks_from_linear({mark.name: mark.value}):
                tr.add_mark(start, end, tree_mark)


def _set_unknown_mark(adapter: SchemaAdapter, tr: Transaction, start: int, end: int, mark: MarkRange):
    """Set or clear one key of the unknown mark on every text node in the range"""
    unknown_type = adapter.unknown_mark
    segments: List[Any] = []

    def visit(node: Node, pos: int, _parent, _index):
        if not node.is_text:
            return None
        current = unknown_type.is_in_set(node.marks)
        values: Dict[str, Any] = dict(current.attrs.get(UNKNOWN_MARKS_ATTR) or {}) if current else {}
        if mark.value is None:
            values.pop(mark.name, None)
        else:
            values[mark.name] = mark.value
        segments.append((max(pos, start), min(pos + node.node_size, end), values))
        return None

    tr.doc.nodes_between(start, end, visit)
    for seg_start, seg_end, values in segments:
        tr.remove_mark(seg_start, seg_end, unknown_type)
        if values:
            tr.add_mark(seg_start, seg_end, unknown_type.create({UNKNOWN_MARKS_ATTR: values}))


def handle_block_change(
    adapter: SchemaAdapter,
    path: Sequence[Prop],
    spans: List[Span],
    patches: Sequence[Patch],
    tr: Transaction,
):
    """Patch the spans, rebuild the tree and replace the range that changed"""
    for patch in patches:
        patch_spans(path, spans, patch)
    doc_after = doc_from_spans(adapter, spans)
    change = find_diff(tr.doc.content, doc_after.content)
    if change is None:
        return

    try:
        _replace_changed_range(tr, doc_after, change)
    except (TransformError, ReplaceError) as e:
        logger.debug(f"Range replace failed ({e}), replacing the whole document content")
        tr.replace(0, tr.doc.content.size, doc_after.slice(0, doc_after.content.size))


def _replace_changed_range(tr: Transaction, doc_after: Node, change: Diff):
    resolved_from = doc_after.resolve(change.start)
    resolved_to = doc_after.resolve(change.end_b)
    resolved_from_a = tr.doc.resolve(change.start)
    inline_change = (
        resolved_from.same_parent(resolved_to)
        and resolved_from.parent.inline_content
        and resolved_from_a.end() >= change.end_a
    )
    if inline_change:
        if resolved_from.pos == resolved_to.pos:
            tr.delete(change.start, change.end_a)
            return
        child = resolved_from.parent.maybe_child(resolved_from.index())
        same_text_node = resolved_from.index() == resolved_to.index() - (0 if resolved_to.text_offset else 1)
        if child is not None and child.is_text and same_text_node:
            text = resolved_from.parent.text_between(resolved_from.parent_offset, resolved_to.parent_offset)
            tr.replace_with(change.start, change.end_a, doc_after.type.schema.text(text, child.marks))
            return
    tr.replace(change.start, change.end_a, doc_after.slice(change.start, change.end_b))


def find_diff(a: Fragment, b: Fragment) -> Optional[Diff]:
    """The range where two fragments differ, or None when they are equal"""
    start = a.find_diff_start(b)
    if start is None:
        return None
    end = a.find_diff_end(b)
    if end is None:
        return None
    end_a, end_b = end["a"], end["b"]
    if end_a < start and a.size < b.size:
        end_b = start + (end_b - end_a)
        end_a = start
    elif end_b < start:
        end_a = start + (end_a - end_b)
        end_b = start
    return Diff(start, end_a, end_b)

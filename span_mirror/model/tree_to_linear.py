# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Tree-Edit-to-Linear Converter
=============================

Replays the steps of an editor transaction against a linear document draft.

ARCHITECTURE:
- Add-mark steps are collected and flushed as a batch, so a mark applied
  across several blocks becomes one linear mark wherever the ranges are
  separated only by block markers.
- A replace step inserting a single text node, or deleting inside one
  textblock, becomes a splice followed by mark reconciliation.
- Every other replace and replace-around step is applied to the tree, the
  result is flattened to spans and ``diff_spans`` recovers the intent as
  splice, split-block, join-block and update-block operations.
- Remove-mark steps become unmark operations.
- The spans are re-read from the draft after every step, and the tree is
  advanced by every step, so each step is translated against the state it
  was created for.
"""

import json
import logging
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from prosemirror.model import Mark, Node
from prosemirror.transform import AddMarkStep, RemoveMarkStep, ReplaceStep, Step, TransformError

from ..constants import EXPAND_BOTH, EXPAND_NONE, UNKNOWN_MARKS_ATTR
from .patches import Prop
from .positions import tree_range_to_linear_range
from .schema_adapter import SchemaAdapter
from .spans import BlockMarker, BlockSpan, Span
from .traversal import spans_from_node

logger = logging.getLogger(__name__)


@dataclass
class Splice:
    index: int
    delete: int = 0
    text: str = ""
    marks: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SplitBlock:
    index: int
    value: Dict[str, Any]


@dataclass
class JoinBlock:
    index: int


@dataclass
class UpdateBlock:
    index: int
    value: Dict[str, Any]


BlockOp = Union[Splice, SplitBlock, JoinBlock, UpdateBlock]


@dataclass
class _PendingMark:
    name: str
    value: Any
    expand: str
    start: int
    end: int


def tree_to_linear(
    adapter: SchemaAdapter,
    spans: List[Span],
    steps: Sequence[Step],
    draft: Any,
    tree_doc: Node,
    path: Sequence[Prop],
) -> Node:
    """Apply the linear equivalent of ``steps`` to ``draft``.

    Args:
        adapter: Schema adapter of the editor
        spans: Spans of the text at ``path`` before the first step
        steps: Steps of the transaction, in order
        draft: Draft of the linear document being changed
        tree_doc: The tree the first step applies to
        path: Path of the text sequence being mirrored

    Returns:
        The tree after all steps
    """
    pending_marks: List[AddMarkStep] = []

    def flush_marks():
        if pending_marks:
            apply_add_mark_steps(adapter, spans, pending_marks, draft, path)
            pending_marks.clear()

    for step in steps:
        logger.debug(f"Translating {type(step).__name__} step")
        if isinstance(step, AddMarkStep):
            pending_marks.append(step)
        else:
            flush_marks()
            if isinstance(step, ReplaceStep):
                replace_step(adapter, spans, step, draft, path, tree_doc)
            elif isinstance(step, RemoveMarkStep):
                remove_mark_step(adapter, spans, step, draft, path)
            else:
                replace_around_step(adapter, step, draft, path, tree_doc)
            spans = draft.spans(path)
        tree_doc = _apply(step, tree_doc)
    flush_marks()
    return tree_doc


def _apply(step: Step, doc: Node) -> Node:
    result = step.apply(doc)
    if result.failed:
        raise TransformError(f"Could not apply step to document: {result.failed}")
    return result.doc


def replace_step(adapter: SchemaAdapter, spans: List[Span], step: ReplaceStep, draft: Any, path: Sequence[Prop], tree_doc: Node):
    content = step.slice.content
    single_text = content.child_count == 1 and content.first_child.is_text
    if single_text or (not step.slice.size and _inside_one_textblock(tree_doc, step.from_, step.to)):
        start, end = tree_range_to_linear_range(adapter, spans, step.from_, step.to)
        if start > end:
            start, end = end, start
        text = content.first_child.text if single_text else ""
        draft.splice(path, start, end - start, text)
        if single_text:
            reconcile_marks(adapter, draft, path, start, len(text), content.first_child.marks)
        return
    replace_around_step(adapter, step, draft, path, tree_doc)


def _inside_one_textblock(doc: Node, start: int, end: int) -> bool:
    resolved_start = doc.resolve(start)
    resolved_end = doc.resolve(end)
    return resolved_start.same_parent(resolved_end) and resolved_start.parent.inline_content


def replace_around_step(adapter: SchemaAdapter, step: Step, draft: Any, path: Sequence[Prop], tree_doc: Node):
    """Flatten the tree after ``step`` and apply the span difference"""
    applied = _apply(step, tree_doc)
    new_spans = spans_from_node(adapter, applied)
    ops = diff_spans(_canonical_blocks(adapter, draft.spans(path)), new_spans)
    logger.debug(f"Structural {type(step).__name__} step produced {len(ops)} operations")
    apply_ops(draft, path, ops)


def _canonical_blocks(adapter: SchemaAdapter, spans: List[Span]) -> List[Span]:
    """Known block values in the shape the traversal writes them"""
    result: List[Span] = []
    for span in spans:
        if isinstance(span, BlockSpan):
            marker = BlockMarker.from_value(span.value)
            if adapter.is_known_block(marker.type):
                span = BlockSpan(marker.to_value())
        result.append(span)
    return result


def apply_add_mark_steps(adapter: SchemaAdapter, spans: List[Span], steps: Sequence[AddMarkStep], draft: Any, path: Sequence[Prop]):
    is_block = _block_flags(spans)
    grouped: List[_PendingMark] = []
    for step in steps:
        start, end = tree_range_to_linear_range(adapter, spans, step.from_, step.to)
        for name, value, expand in _linear_marks(adapter, step.mark):
            mark = _PendingMark(name, value, expand, start, end)
            last = _last_matching(grouped, mark)
            between = range(last.end, min(mark.start, len(is_block))) if last is not None else range(0)
            if last is not None and last.end <= mark.start and all(is_block[i] for i in between):
                last.end = mark.end
                continue
            grouped.append(mark)
    for mark in grouped:
        if mark.start < mark.end:
            draft.mark(path, mark.start, mark.end, mark.name, mark.value, mark.expand)


def _last_matching(grouped: List[_PendingMark], mark: _PendingMark) -> Optional[_PendingMark]:
    for candidate in reversed(grouped):
        if candidate.name == mark.name:
            if candidate.value == mark.value and candidate.expand == mark.expand:
                return candidate
            return None
    return None


def _block_flags(spans: Sequence[Span]) -> List[bool]:
    flags: List[bool] = []
    for span in spans:
        if isinstance(span, BlockSpan):
            flags.append(True)
        else:
            flags.extend([False] * len(span.value))
    return flags


def _is_inclusive(mark: Mark) -> bool:
    return mark.type.spec.get("inclusive", True) is not False


def _linear_marks(adapter: SchemaAdapter, mark: Mark) -> List[Tuple[str, Any, str]]:
    expand = EXPAND_BOTH if _is_inclusive(mark) else EXPAND_NONE
    return [(name, value, expand) for name, value in adapter.linear_marks_from_tree([mark]).items()]


def remove_mark_step(adapter: SchemaAdapter, spans: List[Span], step: RemoveMarkStep, draft: Any, path: Sequence[Prop]):
    start, end = tree_range_to_linear_range(adapter, spans, step.from_, step.to)
    expand = EXPAND_BOTH if _is_inclusive(step.mark) else EXPAND_NONE
    if step.mark.type is adapter.unknown_mark:
        names = list((step.mark.attrs.get(UNKNOWN_MARKS_ATTR) or {}).keys())
    else:
        name = adapter.linear_mark_name(step.mark.type)
        names = [name] if name is not None else []
    for name in names:
        draft.unmark(path, start, end, name, expand)


def reconcile_marks(adapter: SchemaAdapter, draft: Any, path: Sequence[Prop], index: int, length: int, marks: Sequence[Mark]):
    """Make the linear marks of freshly spliced text equal the tree marks"""
    if not length:
        return
    current = draft.marks_at(path, index)
    wanted = adapter.linear_marks_from_tree(marks)
    for name, value in wanted.items():
        if name not in current or current[name] != value:
            draft.mark(path, index, index + length, name, value, EXPAND_BOTH)
    for name in current:
        if name in wanted:
            continue
        if adapter.mark_mapping_for_name(name) is None:
            continue
        draft.unmark(path, index, index + length, name, EXPAND_BOTH)


# Span difference


_Token = Tuple[str, Any]


def _tokens(spans: Sequence[Span]) -> List[_Token]:
    tokens: List[_Token] = []
    for span in spans:
        if isinstance(span, BlockSpan):
            tokens.append(("block", span.value))
        else:
            tokens.extend(("char", (char, span.marks)) for char in span.value)
    return tokens


def _token_key(token: _Token) -> str:
    kind, payload = token
    if kind == "block":
        return f"block:{_stable(payload)}"
    char, marks = payload
    return f"char:{char}:{_stable(marks)}"


def _stable(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _segments(tokens: Sequence[_Token]) -> List[Tuple[Optional[Dict[str, Any]], List[_Token]]]:
    """Split a token run into (block or None, following characters)"""
    segments: List[Tuple[Optional[Dict[str, Any]], List[_Token]]] = []
    for token in tokens:
        if token[0] == "block":
            segments.append((token[1], []))
        else:
            if not segments:
                segments.append((None, []))
            segments[-1][1].append(token)
    return segments


def diff_spans(old: Sequence[Span], new: Sequence[Span]) -> List[BlockOp]:
    """Operations turning ``old`` into ``new``, indexed for in-order application.

    Identical units anchor the alignment. Inside a changed region whose
    block structure lines up, markers are paired positionally and become
    updates; otherwise the region is joined away and split back in.
    """
    old_tokens = _tokens(old)
    new_tokens = _tokens(new)
    matcher = SequenceMatcher(
        None,
        [_token_key(token) for token in old_tokens],
        [_token_key(token) for token in new_tokens],
        autojunk=False,
    )
    ops: List[BlockOp] = []
    position = 0
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            position += i2 - i1
        elif tag == "delete":
            position = _delete_tokens(ops, position, old_tokens[i1:i2])
        elif tag == "insert":
            position = _insert_tokens(ops, position, new_tokens[j1:j2])
        else:
            position = _replace_tokens(ops, position, old_tokens[i1:i2], new_tokens[j1:j2])
    return ops


def _delete_tokens(ops: List[BlockOp], position: int, tokens: Sequence[_Token]) -> int:
    chars = 0
    for token in tokens:
        if token[0] == "block":
            if chars:
                ops.append(Splice(position, chars))
                chars = 0
            ops.append(JoinBlock(position))
        else:
            chars += 1
    if chars:
        ops.append(Splice(position, chars))
    return position


def _insert_tokens(ops: List[BlockOp], position: int, tokens: Sequence[_Token]) -> int:
    run: List[str] = []
    run_marks: Dict[str, Any] = {}

    def flush():
        nonlocal position
        if run:
            ops.append(Splice(position, 0, "".join(run), dict(run_marks)))
            position += len(run)
            run.clear()

    for kind, payload in tokens:
        if kind == "block":
            flush()
            ops.append(SplitBlock(position, payload))
            position += 1
        else:
            char, marks = payload
            if run and marks != run_marks:
                flush()
            if not run:
                run_marks = marks
            run.append(char)
    flush()
    return position


def _replace_tokens(ops: List[BlockOp], position: int, old: Sequence[_Token], new: Sequence[_Token]) -> int:
    old_segments = _segments(old)
    new_segments = _segments(new)
    same_shape = len(old_segments) == len(new_segments) and all(
        (a[0] is None) == (b[0] is None) for a, b in zip(old_segments, new_segments)
    )
    if not same_shape:
        position = _delete_tokens(ops, position, old)
        return _insert_tokens(ops, position, new)

    for (old_block, old_chars), (new_block, new_chars) in zip(old_segments, new_segments):
        if old_block is not None:
            if old_block != new_block:
                ops.append(UpdateBlock(position, new_block))
            position += 1
        if old_chars:
            ops.append(Splice(position, len(old_chars)))
        position = _insert_tokens(ops, position, new_chars)
    return position


def apply_ops(draft: Any, path: Sequence[Prop], ops: Sequence[BlockOp]):
    for op in ops:
        if isinstance(op, Splice):
            draft.splice(path, op.index, op.delete, op.text, op.marks)
        elif isinstance(op, SplitBlock):
            draft.split_block(path, op.index, op.value)
        elif isinstance(op, JoinBlock):
            draft.join_block(path, op.index)
        elif isinstance(op, UpdateBlock):
            draft.update_block(path, op.index, op.value)

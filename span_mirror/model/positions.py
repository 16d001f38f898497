# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Index translation between the linear document and the tree.

Both index spaces are derived from the same traversal event stream. Every
event advances the linear offset, the tree offset, or both:

- open and close tags (other than the root) advance the tree offset by 1
- leaf nodes advance the tree offset by 1
- text advances both offsets by its length
- block markers advance the linear offset by 1

The linear offset starts at -1 so that after an event it names the index of
the last linear unit consumed.
"""

import logging
from typing import Iterable, Iterator, List, NamedTuple, Optional

from .schema_adapter import SchemaAdapter
from .spans import BlockMarker, BlockSpan, Span, TextSpan
from .traversal import EventType, RenderRole, TraversalEvent, traverse_spans

logger = logging.getLogger(__name__)


class Indexes(NamedTuple):
    linear: int
    tree: int


class IndexedEvent(NamedTuple):
    event: TraversalEvent
    before: Indexes
    after: Indexes


class LinearRange(NamedTuple):
    start: int
    end: int


class BlockAtIndex(NamedTuple):
    index: int
    block: BlockMarker


def events_with_index_changes(events: Iterable[TraversalEvent], root_tag: str = "doc") -> Iterator[IndexedEvent]:
    """Annotate each event with the linear and tree offsets before and after it"""
    tree_offset = 0
    linear_offset = -1
    for event in events:
        before = Indexes(linear_offset, tree_offset)
        if event.type in (EventType.OPEN_TAG, EventType.CLOSE_TAG):
            if event.tag != root_tag:
                tree_offset += 1
        elif event.type is EventType.LEAF_NODE:
            tree_offset += 1
        elif event.type is EventType.TEXT:
            linear_offset += len(event.text)
            tree_offset += len(event.text)
        elif event.type is EventType.BLOCK:
            linear_offset += 1
        yield IndexedEvent(event, before, Indexes(linear_offset, tree_offset))


def _indexed(adapter: SchemaAdapter, spans: List[Span]) -> Iterator[IndexedEvent]:
    return events_with_index_changes(traverse_spans(adapter, spans), adapter.schema.top_node_type.name)


def splice_index_to_tree_index(adapter: SchemaAdapter, spans: List[Span], target: int) -> Optional[int]:
    """Translate a linear insertion index into a tree position where text can go.

    Args:
        adapter: Schema adapter used to build the event stream
        spans: Span sequence of the linear document
        target: Linear index at which text is being inserted

    Returns:
        The tree position, or None when the document has no position that
        can hold text.
    """
    max_insertable: Optional[int] = None
    nodes = adapter.schema.nodes

    for state in _indexed(adapter, spans):
        if state.before.linear >= target and max_insertable is not None:
            return max_insertable
        event = state.event
        if event.type is EventType.OPEN_TAG:
            node_type = nodes.get(event.tag)
            if node_type is not None and node_type.is_textblock:
                max_insertable = state.after.tree
        elif event.type is EventType.LEAF_NODE:
            max_insertable = state.after.tree
        elif event.type is EventType.TEXT:
            max_insertable = state.after.tree
            if state.after.linear >= target and state.before.linear + len(event.text) >= target:
                return state.before.tree + (target - state.before.linear) - 1
    return max_insertable


def block_index_to_tree_index(adapter: SchemaAdapter, spans: List[Span], target: int) -> Optional[int]:
    """Tree position of the start of the block containing linear index ``target``"""
    last_block_start: Optional[int] = None
    is_first_tag = True
    default_name = adapter.schema.top_node_type.content_match.default_type.name

    for state in _indexed(adapter, spans):
        event = state.event
        if event.type is EventType.OPEN_TAG:
            if event.role is RenderRole.EXPLICIT:
                last_block_start = state.after.tree
            elif event.tag == default_name and is_first_tag:
                # Text before the first marker lives in the leading render-only block
                last_block_start = state.after.tree
            is_first_tag = False
        elif event.type is EventType.BLOCK:
            if state.after.linear == target:
                return state.after.tree + 1
        if state.after.linear >= target:
            return last_block_start
    return last_block_start


def tree_range_to_linear_range(adapter: SchemaAdapter, spans: List[Span], start: int, end: int) -> LinearRange:
    """Translate a tree range into the linear range it covers"""
    linear_start: Optional[int] = 0 if start == 0 else None
    linear_end: Optional[int] = None
    max_tree_seen: Optional[int] = None
    max_linear_seen: Optional[int] = None
    events = _indexed(adapter, spans)

    while max_tree_seen is None or max_tree_seen <= end or linear_start is None or linear_end is None:
        state = next(events, None)
        if state is None:
            break
        max_tree_seen = state.after.tree
        max_linear_seen = state.after.linear
        event = state.event

        if linear_start is None:
            if state.after.tree < start:
                continue
            if event.type is EventType.TEXT:
                if state.before.tree > start:
                    # Start fell between nodes; the first text after it begins the range
                    linear_start = max(state.before.linear, 0) + 1
                elif state.before.tree + len(event.text) > start:
                    linear_start = state.before.linear + (start - state.before.tree) + 1
                else:
                    linear_start = max(state.after.linear, 0) + 1
            elif state.after.tree >= start:
                linear_start = state.after.linear + 1

        if linear_end is None:
            if state.after.tree < end:
                continue
            if event.type is EventType.TEXT:
                if state.before.tree >= end:
                    linear_end = state.before.linear + 1
                elif state.before.tree + len(event.text) > end:
                    linear_end = state.before.linear + (end - state.before.tree) + 1
            elif state.before.tree >= end:
                linear_end = state.before.linear + 1

    if linear_start is not None:
        if linear_end is None:
            linear_end = max_linear_seen + 1 if max_linear_seen else linear_start
        return LinearRange(linear_start, linear_end)
    end_of_doc = max_linear_seen + 1 if max_linear_seen else 0
    return LinearRange(end_of_doc, end_of_doc)


def block_at_index(spans: List[Span], target: int) -> Optional[BlockAtIndex]:
    """The block marker governing linear index ``target``, if any"""
    index = 0
    found: Optional[BlockAtIndex] = None
    for span in spans:
        if index > target:
            return found
        if isinstance(span, TextSpan):
            if index + len(span.value) > target:
                return found
            index += len(span.value)
        elif isinstance(span, BlockSpan):
            found = BlockAtIndex(index, BlockMarker.from_value(span.value))
            index += 1
    return found

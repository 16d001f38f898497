# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Span Traversal Engine
=====================

Converts between a span sequence and a tree through one canonical stream of
structural events. Building a tree from spans and flattening a tree back to
spans both go through this stream, so both directions agree on which nodes
are stored as block markers and which are inferred from the schema.

ARCHITECTURE:
- ``traverse_spans`` walks spans left to right with a stack of open node
  types. Block markers open the wrappers their parents require, render-only
  wrappers are synthesized wherever the schema needs them, and trailing
  required content is filled when frames close.
- ``traverse_node`` walks a tree depth first with an explicit work stack and
  decides for every node whether it corresponds to a stored block marker
  (explicit) or was inferred (render-only).
- ``doc_from_spans`` and ``spans_from_node`` materialize the two directions.

EVENT ROLES:
- explicit: the node corresponds to a block span in the linear document
- render-only: the node exists only to satisfy schema content rules and is
  never written back as a span
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from prosemirror.model import ContentMatch, Fragment, Node, NodeType

from ..constants import IS_EXPLICIT_ATTR, UNKNOWN_BLOCK_ATTR
from ..errors import MirrorError, SchemaMappingError
from .schema_adapter import NodeMapping, SchemaAdapter
from .spans import BlockMarker, BlockSpan, Span, TextSpan, normalize_spans

logger = logging.getLogger(__name__)


class EventType(Enum):
    OPEN_TAG = "openTag"
    CLOSE_TAG = "closeTag"
    LEAF_NODE = "leafNode"
    TEXT = "text"
    BLOCK = "block"


class RenderRole(Enum):
    EXPLICIT = "explicit"
    RENDER_ONLY = "render-only"


@dataclass
class TraversalEvent:
    type: EventType
    tag: Optional[str] = None
    role: Optional[RenderRole] = None
    text: Optional[str] = None
    marks: Dict[str, Any] = field(default_factory=dict)
    block: Optional[Dict[str, Any]] = None
    is_unknown: bool = False

    @classmethod
    def open_tag(cls, tag: str, role: RenderRole) -> "TraversalEvent":
        return cls(EventType.OPEN_TAG, tag=tag, role=role)

    @classmethod
    def close_tag(cls, tag: str, role: RenderRole) -> "TraversalEvent":
        return cls(EventType.CLOSE_TAG, tag=tag, role=role)

    @classmethod
    def leaf_node(cls, tag: str, role: RenderRole) -> "TraversalEvent":
        return cls(EventType.LEAF_NODE, tag=tag, role=role)

    @classmethod
    def text_event(cls, text: str, marks: Optional[Dict[str, Any]] = None) -> "TraversalEvent":
        return cls(EventType.TEXT, text=text, marks=dict(marks or {}))

    @classmethod
    def block_event(cls, block: Dict[str, Any], is_unknown: bool = False) -> "TraversalEvent":
        return cls(EventType.BLOCK, block=block, is_unknown=is_unknown)

    def to_dict(self) -> Dict[str, Any]:
        if self.type is EventType.TEXT:
            return {"type": self.type.value, "text": self.text, "marks": dict(self.marks)}
        if self.type is EventType.BLOCK:
            return {"type": self.type.value, "block": copy.deepcopy(self.block), "isUnknown": self.is_unknown}
        return {"type": self.type.value, "tag": self.tag, "role": self.role.value}

    def __str__(self) -> str:
        if self.type is EventType.TEXT:
            return f"text {self.text!r} {self.marks}" if self.marks else f"text {self.text!r}"
        if self.type is EventType.BLOCK:
            marker = "unknown block" if self.is_unknown else "block"
            return f"{marker} {self.block}"
        return f"{self.type.value} {self.tag} ({self.role.value})"


# Spans to events


@dataclass
class _Frame:
    node_type: NodeType
    role: RenderRole
    last_match: ContentMatch


class _TraverseState:
    """Stack of open node types while walking spans"""

    def __init__(self, adapter: SchemaAdapter):
        self.adapter = adapter
        self.schema = adapter.schema
        self.stack: List[_Frame] = []
        self.top_match = self.schema.top_node_type.content_match

    @property
    def current_match(self) -> ContentMatch:
        if self.stack:
            return self.stack[-1].last_match
        return self.top_match

    @current_match.setter
    def current_match(self, match: Optional[ContentMatch]):
        if match is None:
            raise SchemaMappingError("Span sequence does not fit the schema content rules")
        if self.stack:
            self.stack[-1].last_match = match
        else:
            self.top_match = match

    def new_block(self, value: Dict[str, Any]) -> Iterator[TraversalEvent]:
        marker = BlockMarker.from_value(value)
        is_unknown = not self.adapter.is_known_block(marker.type)
        event = _block_event(marker, value, is_unknown)
        outer, content = self.adapter.nodes_for_block(marker.type, marker.is_embed)

        if marker.is_embed or content.is_leaf:
            yield from self._place(content)
            self.current_match = self.current_match.match_type(content)
            yield event
            yield TraversalEvent.leaf_node(content.name, RenderRole.EXPLICIT)
            return

        new_outer = self._outer_node_types(marker, outer)
        shared = 0
        while shared < len(new_outer) and shared < len(self.stack):
            if self.stack[shared].node_type is not new_outer[shared]:
                break
            shared += 1
        to_close = self.stack[shared:]
        del self.stack[shared:]
        for frame in reversed(to_close):
            yield from self._finish_frame(frame)
            yield TraversalEvent.close_tag(frame.node_type.name, frame.role)

        for node_type in new_outer[shared:]:
            yield from self._fill_before(node_type)
            yield self._push(node_type, RenderRole.RENDER_ONLY)

        yield from self._fill_before(content)
        yield event
        yield self._push(content, RenderRole.EXPLICIT)

    def new_text(self, text: str, marks: Dict[str, Any]) -> Iterator[TraversalEvent]:
        text_type = self.schema.nodes["text"]
        yield from self._place(text_type)
        self.current_match = self.current_match.match_type(text_type)
        yield TraversalEvent.text_event(text, marks)

    def finish(self) -> Iterator[TraversalEvent]:
        while self.stack:
            yield from self._close_top()

    def _place(self, node_type: NodeType) -> Iterator[TraversalEvent]:
        """Open the render-only wrappers needed for ``node_type``, closing frames that cannot hold it"""
        while True:
            wrapping = self.current_match.find_wrapping(node_type)
            if wrapping is not None:
                for wrapper in wrapping:
                    yield self._push(wrapper, RenderRole.RENDER_ONLY)
                return
            if not self.stack:
                raise SchemaMappingError(f"No place for {node_type.name} in the document")
            logger.debug(f"Closing {self.stack[-1].node_type.name} to place {node_type.name}")
            yield from self._close_top()

    def _close_top(self) -> Iterator[TraversalEvent]:
        frame = self.stack.pop()
        yield from self._finish_frame(frame)
        yield TraversalEvent.close_tag(frame.node_type.name, frame.role)

    def _push(self, node_type: NodeType, role: RenderRole) -> TraversalEvent:
        self.current_match = self.current_match.match_type(node_type)
        self.stack.append(_Frame(node_type, role, node_type.content_match))
        return TraversalEvent.open_tag(node_type.name, role)

    def _fill_before(self, node_type: NodeType) -> Iterator[TraversalEvent]:
        placeholder = Node(node_type, node_type.default_attrs or {}, Fragment.empty, [])
        fill = self.current_match.fill_before(Fragment.from_(placeholder))
        if fill is not None and fill.child_count:
            yield from _emit_fragment(fill)
            self.current_match = self.current_match.match_fragment(fill)

    def _finish_frame(self, frame: _Frame) -> Iterator[TraversalEvent]:
        fill = frame.last_match.fill_before(Fragment.empty, True)
        if fill is not None:
            yield from _emit_fragment(fill)

    def _outer_node_types(self, marker: BlockMarker, outer: Optional[NodeType]) -> List[NodeType]:
        result: List[NodeType] = []
        for parent in marker.parents:
            parent_outer, parent_content = self.adapter.nodes_for_block(parent, False)
            if parent_outer is not None:
                result.append(parent_outer)
            result.append(parent_content)
        if outer is not None:
            result.append(outer)
        return result


def _emit_fragment(fragment: Fragment) -> Iterator[TraversalEvent]:
    to_process: List[Any] = list(reversed(fragment.content))
    while to_process:
        item = to_process.pop()
        if isinstance(item, TraversalEvent):
            yield item
        elif item.is_text:
            yield TraversalEvent.text_event(item.text)
        elif item.is_leaf:
            yield TraversalEvent.leaf_node(item.type.name, RenderRole.RENDER_ONLY)
        else:
            yield TraversalEvent.open_tag(item.type.name, RenderRole.RENDER_ONLY)
            to_process.append(TraversalEvent.close_tag(item.type.name, RenderRole.RENDER_ONLY))
            to_process.extend(reversed(item.content.content))


def _block_event(marker: BlockMarker, value: Dict[str, Any], is_unknown: bool) -> TraversalEvent:
    if is_unknown:
        return TraversalEvent.block_event(copy.deepcopy(value), True)
    return TraversalEvent.block_event(marker.to_value(), False)


def traverse_spans(adapter: SchemaAdapter, spans: Iterable[Span]) -> Iterator[TraversalEvent]:
    """Yield the event stream for a span sequence.

    Args:
        adapter: Schema adapter deciding which node types blocks map to
        spans: The span sequence, in document order

    Yields:
        Balanced traversal events. An empty sequence yields a single
        render-only empty default textblock.
    """
    spans = list(spans)
    if not spans:
        default = adapter.schema.top_node_type.content_match.default_type
        yield TraversalEvent.open_tag(default.name, RenderRole.RENDER_ONLY)
        yield TraversalEvent.close_tag(default.name, RenderRole.RENDER_ONLY)
        return
    state = _TraverseState(adapter)
    for span in spans:
        if isinstance(span, BlockSpan):
            yield from state.new_block(span.value)
        else:
            yield from state.new_text(span.value, span.marks)
    yield from state.finish()


@dataclass
class _PendingNode:
    tag: str
    attrs: Dict[str, Any]
    children: List[Node] = field(default_factory=list)


def doc_from_spans(adapter: SchemaAdapter, spans: Iterable[Span]) -> Node:
    """Build the tree document for a span sequence"""
    schema = adapter.schema
    stack = [_PendingNode(schema.top_node_type.name, {})]
    next_attrs: Optional[Dict[str, Any]] = None

    for event in traverse_spans(adapter, spans):
        if event.type is EventType.OPEN_TAG:
            stack.append(_PendingNode(event.tag, next_attrs or {}))
        elif event.type is EventType.CLOSE_TAG:
            pending = stack.pop()
            stack[-1].children.append(schema.node(pending.tag, pending.attrs, pending.children))
        elif event.type is EventType.LEAF_NODE:
            stack[-1].children.append(schema.node(event.tag, next_attrs or {}))
        elif event.type is EventType.TEXT:
            stack[-1].children.append(schema.text(event.text, adapter.tree_marks_from_linear(event.marks)))

        if event.type is EventType.BLOCK:
            next_attrs = adapter.attrs_from_block(event.block, event.is_unknown)
        else:
            next_attrs = None

    if len(stack) != 1:
        raise MirrorError(f"Unbalanced traversal, {len(stack)} frames left open")
    root = stack[0]
    return schema.node(root.tag, root.attrs, root.children)


# Tree to events


def traverse_node(adapter: SchemaAdapter, node: Node) -> Iterator[TraversalEvent]:
    """Yield the event stream for a tree, deciding which nodes are explicit blocks"""
    to_process: List[Any] = [(node, 0)]
    node_path: List[Tuple[Node, RenderRole]] = []

    while to_process:
        item = to_process.pop()
        if isinstance(item, TraversalEvent):
            if item.type is EventType.CLOSE_TAG:
                node_path.pop()
            yield item
            continue

        current, index = item
        if current.is_text:
            yield TraversalEvent.text_event(current.text, adapter.linear_marks_from_tree(current.marks))
            continue

        found = _block_for_node(adapter, current, node_path, index)
        role = RenderRole.EXPLICIT if found is not None else RenderRole.RENDER_ONLY
        if found is not None:
            block, is_unknown = found
            yield TraversalEvent.block_event(block, is_unknown)

        if current.is_leaf:
            yield TraversalEvent.leaf_node(current.type.name, role)
        else:
            yield TraversalEvent.open_tag(current.type.name, role)
            node_path.append((current, role))
            to_process.append(TraversalEvent.close_tag(current.type.name, role))
            for child_index in range(current.child_count - 1, -1, -1):
                to_process.append((current.child(child_index), child_index))


def _block_for_node(
    adapter: SchemaAdapter,
    node: Node,
    node_path: List[Tuple[Node, RenderRole]],
    index_in_parent: int,
) -> Optional[Tuple[Dict[str, Any], bool]]:
    parent = node_path[-1][0] if node_path else None
    mapping = adapter.mapping_for_node(node.type, parent.type if parent is not None else None)
    unknown_block = node.attrs.get(UNKNOWN_BLOCK_ATTR)

    if mapping is None:
        if node.attrs.get(IS_EXPLICIT_ATTR):
            if unknown_block is not None:
                return copy.deepcopy(unknown_block), True
            raise SchemaMappingError(f"No mapping found for explicit block node {node.type.name}")
        return None

    if node.attrs.get(IS_EXPLICIT_ATTR) or mapping.is_embed:
        if unknown_block is not None:
            return copy.deepcopy(unknown_block), True
        return _build_block(adapter, mapping, node, node_path), False

    explicit = _find_explicit_children(node)
    if explicit is not None:
        content_before_first, first = explicit
        default_content = node.type.content_match.fill_before(Fragment.from_(first))
        if default_content is not None and default_content.eq(content_before_first):
            return None

    if node.is_textblock:
        parent_type = parent.type if parent is not None else adapter.schema.top_node_type
        is_text_wrapper = parent_type.content_match.default_type is node.type and index_in_parent == 0
        if not is_text_wrapper:
            return _build_block(adapter, mapping, node, node_path), False
        if node.content.size:
            return None
        next_sibling = parent.maybe_child(index_in_parent + 1) if parent is not None else None
        if next_sibling is None:
            return None
        fill = parent_type.content_match.fill_before(Fragment.from_(next_sibling))
        if fill is not None and fill.eq(Fragment.from_(node)):
            return None
        return _build_block(adapter, mapping, node, node_path), False

    if any(child.is_textblock for child in node.content.content):
        return _build_block(adapter, mapping, node, node_path), False
    return None


def _find_explicit_children(node: Node) -> Optional[Tuple[Fragment, Node]]:
    """Content before the first child that is or contains an explicit block, and that child"""
    before: List[Node] = []
    for child in node.content.content:
        if _has_explicit(child):
            return Fragment.from_array(before), child
        before.append(child)
    return None


def _has_explicit(node: Node) -> bool:
    if node.attrs.get(IS_EXPLICIT_ATTR):
        return True
    found = [False]

    def visit(descendant: Node, _pos, _parent, _index):
        if found[0]:
            return False
        if descendant.attrs.get(IS_EXPLICIT_ATTR):
            found[0] = True
            return False
        return None

    node.descendants(visit)
    return found[0]


def _build_block(
    adapter: SchemaAdapter,
    mapping: NodeMapping,
    node: Node,
    node_path: List[Tuple[Node, RenderRole]],
) -> Dict[str, Any]:
    return {
        "type": mapping.block_name,
        "parents": _find_parents(adapter, node_path),
        "attrs": adapter.block_attrs_from_node(mapping, node),
        "isEmbed": mapping.is_embed,
    }


def _find_parents(adapter: SchemaAdapter, node_path: List[Tuple[Node, RenderRole]]) -> List[str]:
    entries = list(node_path)
    # A trailing render-only textblock is rebuilt from the schema
    if entries and entries[-1][1] is RenderRole.RENDER_ONLY and entries[-1][0].is_textblock:
        entries.pop()
    parents: List[str] = []
    for position, (ancestor, _role) in enumerate(entries):
        parent_type = entries[position - 1][0].type if position > 0 else None
        mapping = adapter.mapping_for_node(ancestor.type, parent_type)
        if mapping is not None:
            parents.append(mapping.block_name)
    return parents


def spans_from_node(adapter: SchemaAdapter, node: Node) -> List[Span]:
    """Flatten a tree to its normalized span sequence"""
    result: List[Span] = []
    for event in traverse_node(adapter, node):
        if event.type is EventType.BLOCK:
            value = copy.deepcopy(event.block)
            if not event.is_unknown and isinstance(value.get("attrs"), dict):
                value["attrs"].pop(IS_EXPLICIT_ATTR, None)
            result.append(BlockSpan(value))
        elif event.type is EventType.TEXT:
            result.append(TextSpan(event.text, dict(event.marks)))
    return normalize_spans(result)


def format_index_table(adapter: SchemaAdapter, events: Iterable[TraversalEvent]) -> str:
    """Render events with their linear and tree indexes as a text table"""
    from .positions import events_with_index_changes

    rows = [("linear", "tree", "event")]
    for indexed in events_with_index_changes(events, adapter.schema.top_node_type.name):
        rows.append((
            f"{indexed.before.linear}->{indexed.after.linear}",
            f"{indexed.before.tree}->{indexed.after.tree}",
            str(indexed.event),
        ))
    linear_width = max(len(row[0]) for row in rows)
    tree_width = max(len(row[1]) for row in rows)
    return "\n".join(f"{row[0]:<{linear_width}}  {row[1]:<{tree_width}}  {row[2]}" for row in rows)

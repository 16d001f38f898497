# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Schema Adapter
==============

Maps block type names and mark names of the linear document onto node and
mark types of the tree schema, and back.

ARCHITECTURE:
- The adapter is built from a schema description whose node and mark specs
  may carry a ``"linear"`` entry describing how they map to the linear model
- It adds the reserved round-trip attributes to every node type, plus an
  ``unknownLeaf`` node and an ``unknownMark`` mark used to carry content whose
  names it does not know
- The resulting mappings are immutable records; every lookup is a pure
  function of its arguments

NODE MAPPING ENTRY (``"linear"`` key of a node spec):
    block          block type name, or {"within": {outer_node: block_name}}
    unknown_block  this textblock carries unknown non-embed blocks
    is_embed       the node is a leaf embedded inline in text
    attr_parsers   AttrParsers converting attributes in both directions

MARK MAPPING ENTRY (``"linear"`` key of a mark spec):
    mark_name      mark name in the linear model
    parsers        MarkParsers converting values in both directions
"""

import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from prosemirror.model import Mark, MarkType, Node, NodeType, Schema

from ..constants import (
    IS_EXPLICIT_ATTR,
    RESERVED_ATTRS,
    UNKNOWN_ATTRS_ATTR,
    UNKNOWN_BLOCK_ATTR,
    UNKNOWN_LEAF_NODE,
    UNKNOWN_MARK,
    UNKNOWN_MARKS_ATTR,
)
from ..errors import SchemaMappingError
from .spans import BlockMarker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttrParsers:
    from_linear: Callable[[BlockMarker], Dict[str, Any]]
    from_tree: Callable[[Node], Dict[str, Any]]


@dataclass(frozen=True)
class MarkParsers:
    from_linear: Callable[[Any], Dict[str, Any]]
    from_tree: Callable[[Mark], Any]


def _simple_mark_from_linear(_value: Any) -> Dict[str, Any]:
    return {}


def _simple_mark_from_tree(_mark: Mark) -> Any:
    return True


SIMPLE_MARK_PARSERS = MarkParsers(_simple_mark_from_linear, _simple_mark_from_tree)


@dataclass(frozen=True)
class NodeMapping:
    block_name: str
    outer: Optional[NodeType]
    content: NodeType
    attr_parsers: Optional[AttrParsers] = None
    is_embed: bool = False


@dataclass(frozen=True)
class MarkMapping:
    mark_name: str
    mark_type: MarkType
    parsers: MarkParsers = SIMPLE_MARK_PARSERS


def _check_reserved(owner: str, attrs: Dict[str, Any]):
    for name in attrs:
        if name in RESERVED_ATTRS:
            raise SchemaMappingError(f"{owner} declares reserved attribute '{name}'")


class SchemaAdapter:
    """Bidirectional lookup between linear names and tree types"""

    def __init__(self, spec: Dict[str, Any]):
        node_specs: Dict[str, Dict[str, Any]] = {}
        node_linear: Dict[str, Dict[str, Any]] = {}
        unknown_textblock_name: Optional[str] = None

        for name, raw_spec in spec["nodes"].items():
            node_spec = dict(raw_spec)
            linear = node_spec.pop("linear", None)
            attrs = dict(node_spec.get("attrs") or {})
            _check_reserved(f"Node type '{name}'", attrs)
            if name != "text":
                attrs[IS_EXPLICIT_ATTR] = {"default": False}
                attrs[UNKNOWN_ATTRS_ATTR] = {"default": None}
            if linear:
                node_linear[name] = linear
                if linear.get("unknown_block"):
                    unknown_textblock_name = name
                    attrs[UNKNOWN_BLOCK_ATTR] = {"default": None}
            if attrs:
                node_spec["attrs"] = attrs
            node_specs[name] = node_spec

        if unknown_textblock_name is None:
            raise SchemaMappingError("No node type is flagged as the unknown block textblock")

        node_specs[UNKNOWN_LEAF_NODE] = {
            "inline": True,
            "group": "inline",
            "attrs": {
                IS_EXPLICIT_ATTR: {"default": True},
                UNKNOWN_BLOCK_ATTR: {"default": None},
                UNKNOWN_ATTRS_ATTR: {"default": None},
            },
        }

        mark_specs: Dict[str, Dict[str, Any]] = {}
        mark_linear: Dict[str, Dict[str, Any]] = {}
        for name, raw_spec in spec.get("marks", {}).items():
            mark_spec = dict(raw_spec)
            linear = mark_spec.pop("linear", None)
            _check_reserved(f"Mark type '{name}'", mark_spec.get("attrs") or {})
            if linear:
                mark_linear[name] = linear
            mark_specs[name] = mark_spec
        mark_specs[UNKNOWN_MARK] = {"attrs": {UNKNOWN_MARKS_ATTR: {"default": None}}}

        schema_spec = {"nodes": node_specs, "marks": mark_specs}
        if "topNode" in spec:
            schema_spec["topNode"] = spec["topNode"]
        self.schema = Schema(schema_spec)

        node_mappings: List[NodeMapping] = []
        for name, linear in node_linear.items():
            content = self.schema.nodes[name]
            block = linear.get("block")
            parsers = linear.get("attr_parsers")
            is_embed = bool(linear.get("is_embed"))
            if isinstance(block, dict):
                for outer_name, block_name in block.get("within", {}).items():
                    node_mappings.append(
                        NodeMapping(block_name, self.schema.nodes[outer_name], content, parsers, is_embed)
                    )
            elif isinstance(block, str):
                node_mappings.append(NodeMapping(block, None, content, parsers, is_embed))
        self.node_mappings: Tuple[NodeMapping, ...] = tuple(node_mappings)

        self.mark_mappings: Tuple[MarkMapping, ...] = tuple(
            MarkMapping(linear.get("mark_name", name), self.schema.marks[name], linear.get("parsers") or SIMPLE_MARK_PARSERS)
            for name, linear in mark_linear.items()
        )

        self.unknown_textblock: NodeType = self.schema.nodes[unknown_textblock_name]
        self.unknown_leaf: NodeType = self.schema.nodes[UNKNOWN_LEAF_NODE]
        self.unknown_mark: MarkType = self.schema.marks[UNKNOWN_MARK]

    # Block lookups

    def mapping_for_block(self, block_type: str) -> Optional[NodeMapping]:
        for mapping in self.node_mappings:
            if mapping.block_name == block_type:
                return mapping
        return None

    def is_known_block(self, block_type: str) -> bool:
        return self.mapping_for_block(block_type) is not None

    def nodes_for_block(self, block_type: str, is_embed: bool) -> Tuple[Optional[NodeType], NodeType]:
        """Return ``(outer, content)`` node types for a block type"""
        mapping = self.mapping_for_block(block_type)
        if mapping is None:
            return None, self.unknown_leaf if is_embed else self.unknown_textblock
        return mapping.outer, mapping.content

    def mapping_for_node(self, node_type: NodeType, parent_type: Optional[NodeType]) -> Optional[NodeMapping]:
        """The mapping for a node, preferring one whose outer type is the parent"""
        candidates = [mapping for mapping in self.node_mappings if mapping.content is node_type]
        if not candidates:
            return None
        if parent_type is not None:
            for mapping in candidates:
                if mapping.outer is parent_type:
                    return mapping
        return candidates[0]

    def attrs_from_block(self, block: Dict[str, Any], is_unknown: bool) -> Dict[str, Any]:
        """Node attributes for the content node of a block event"""
        if is_unknown:
            return {IS_EXPLICIT_ATTR: True, UNKNOWN_BLOCK_ATTR: copy.deepcopy(block)}
        marker = BlockMarker.from_value(block)
        mapping = self.mapping_for_block(marker.type)
        parsed: Dict[str, Any] = {}
        if mapping is not None and mapping.attr_parsers is not None:
            parsed = mapping.attr_parsers.from_linear(marker)
        attrs: Dict[str, Any] = {IS_EXPLICIT_ATTR: True, **parsed}
        leftovers = {key: copy.deepcopy(value) for key, value in marker.attrs.items() if key not in parsed}
        if leftovers:
            attrs[UNKNOWN_ATTRS_ATTR] = leftovers
        return attrs

    def block_attrs_from_node(self, mapping: NodeMapping, node: Node) -> Dict[str, Any]:
        """Block attributes for a node: unconsumed attributes plus parsed ones"""
        attrs = copy.deepcopy(node.attrs.get(UNKNOWN_ATTRS_ATTR) or {})
        if mapping.attr_parsers is not None:
            attrs.update(mapping.attr_parsers.from_tree(node))
        return attrs

    # Mark lookups

    def mark_mapping_for_name(self, mark_name: str) -> Optional[MarkMapping]:
        for mapping in self.mark_mappings:
            if mapping.mark_name == mark_name:
                return mapping
        return None

    def mark_mapping_for_type(self, mark_type: MarkType) -> Optional[MarkMapping]:
        for mapping in self.mark_mappings:
            if mapping.mark_type is mark_type:
                return mapping
        return None

    def tree_marks_from_linear(self, marks: Optional[Dict[str, Any]]) -> List[Mark]:
        """Tree marks for a linear mark set; unknown names go into one unknownMark"""
        result: List[Mark] = []
        unknown: Dict[str, Any] = {}
        for name, value in (marks or {}).items():
            if value is None:
                continue
            mapping = self.mark_mapping_for_name(name)
            if mapping is None:
                unknown[name] = copy.deepcopy(value)
            else:
                result.append(mapping.mark_type.create(mapping.parsers.from_linear(value)))
        if unknown:
            result.append(self.unknown_mark.create({UNKNOWN_MARKS_ATTR: unknown}))
        return Mark.set_from(result)

    def linear_marks_from_tree(self, marks: Sequence[Mark]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for mark in marks:
            mapping = self.mark_mapping_for_type(mark.type)
            if mapping is not None:
                result[mapping.mark_name] = mapping.parsers.from_tree(mark)
            elif mark.type is self.unknown_mark:
                for name, value in (mark.attrs.get(UNKNOWN_MARKS_ATTR) or {}).items():
                    result[name] = copy.deepcopy(value)
        return result

    def linear_mark_name(self, mark_type: MarkType) -> Optional[str]:
        mapping = self.mark_mapping_for_type(mark_type)
        return mapping.mark_name if mapping is not None else None


def link_from_linear(value: Any) -> Dict[str, Any]:
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
            if isinstance(parsed, dict):
                return {"href": parsed.get("href") or "", "title": parsed.get("title")}
            logger.warning(f"Link mark value is not an object: {value!r}")
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse link mark {value!r}: {e}")
    return {"href": "", "title": None}


def link_from_tree(mark: Mark) -> str:
    return json.dumps({"href": mark.attrs.get("href"), "title": mark.attrs.get("title")}, separators=(",", ":"))


LINK_PARSERS = MarkParsers(link_from_linear, link_from_tree)

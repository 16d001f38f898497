# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""Basic rich-text schema with its linear mappings"""

from typing import Any, Dict

from prosemirror.model import Node

from .schema_adapter import LINK_PARSERS, AttrParsers, SchemaAdapter
from .spans import BlockMarker


def _heading_from_linear(block: BlockMarker) -> Dict[str, Any]:
    if "level" in block.attrs:
        return {"level": block.attrs["level"]}
    return {}


def _heading_from_tree(node: Node) -> Dict[str, Any]:
    return {"level": node.attrs["level"]}


def _image_from_linear(block: BlockMarker) -> Dict[str, Any]:
    src = block.attrs.get("src")
    attrs: Dict[str, Any] = {"src": str(src) if src else None}
    for name in ("alt", "title"):
        if name in block.attrs:
            attrs[name] = block.attrs[name]
    return attrs


def _image_from_tree(node: Node) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {"src": node.attrs["src"]}
    for name in ("alt", "title"):
        if node.attrs.get(name) is not None:
            attrs[name] = node.attrs[name]
    return attrs


BASIC_SCHEMA_SPEC: Dict[str, Any] = {
    "nodes": {
        "doc": {"content": "block+"},
        "paragraph": {
            "content": "inline*",
            "group": "block",
            "linear": {"block": "paragraph", "unknown_block": True},
        },
        "blockquote": {
            "content": "block+",
            "group": "block",
            "defining": True,
            "linear": {"block": "blockquote"},
        },
        "horizontal_rule": {"group": "block"},
        "heading": {
            "attrs": {"level": {"default": 1}},
            "content": "inline*",
            "group": "block",
            "defining": True,
            "linear": {
                "block": "heading",
                "attr_parsers": AttrParsers(_heading_from_linear, _heading_from_tree),
            },
        },
        "code_block": {
            "content": "text*",
            "marks": "",
            "group": "block",
            "code": True,
            "defining": True,
            "linear": {"block": "code-block"},
        },
        "text": {"group": "inline"},
        "image": {
            "inline": True,
            "attrs": {
                "src": {},
                "alt": {"default": None},
                "title": {"default": None},
            },
            "group": "inline",
            "draggable": True,
            "linear": {
                "block": "image",
                "is_embed": True,
                "attr_parsers": AttrParsers(_image_from_linear, _image_from_tree),
            },
        },
        "ordered_list": {
            "group": "block",
            "content": "list_item+",
            "attrs": {"order": {"default": 1}},
        },
        "bullet_list": {
            "content": "list_item+",
            "group": "block",
        },
        "list_item": {
            "content": "paragraph block*",
            "defining": True,
            "linear": {
                "block": {
                    "within": {
                        "ordered_list": "ordered-list-item",
                        "bullet_list": "unordered-list-item",
                    },
                },
            },
        },
        "aside": {
            "content": "block+",
            "group": "block",
            "defining": True,
            "linear": {"block": "aside"},
        },
    },
    "marks": {
        "link": {
            "attrs": {"href": {}, "title": {"default": None}},
            "inclusive": False,
            "linear": {"mark_name": "link", "parsers": LINK_PARSERS},
        },
        "em": {"linear": {"mark_name": "em"}},
        "strong": {"linear": {"mark_name": "strong"}},
        "code": {"linear": {"mark_name": "code"}},
    },
}

basic_schema_adapter = SchemaAdapter(BASIC_SCHEMA_SPEC)
basic_schema = basic_schema_adapter.schema

# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Span data model of the linear document.

A linear document is an ordered list of spans. A text span holds a run of
characters sharing one set of marks; a block span is a single marker token
whose value describes the block that starts at that point:

    {"type": "ordered-list-item", "parents": ["blockquote"], "attrs": {}, "isEmbed": False}

Block values are kept exactly as the replica stores them so that keys this
package does not understand survive a round trip. ``BlockMarker`` is the
normalized read-only view used by the traversal.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Iterable, List, Tuple, Union

from ..constants import DEFAULT_BLOCK_TYPE


@dataclass
class TextSpan:
    value: str
    marks: Dict[str, Any] = field(default_factory=dict)

    type: ClassVar[str] = "text"


@dataclass
class BlockSpan:
    value: Dict[str, Any]

    type: ClassVar[str] = "block"


Span = Union[TextSpan, BlockSpan]


@dataclass(frozen=True)
class BlockMarker:
    """Normalized view of a block span value"""

    type: str
    parents: Tuple[str, ...] = ()
    attrs: Dict[str, Any] = field(default_factory=dict)
    is_embed: bool = False

    @classmethod
    def from_value(cls, value: Any) -> "BlockMarker":
        if not isinstance(value, dict):
            value = {}
        block_type = value.get("type")
        if not isinstance(block_type, str):
            block_type = DEFAULT_BLOCK_TYPE
        parents = value.get("parents")
        if not isinstance(parents, list) or not all(isinstance(parent, str) for parent in parents):
            parents = []
        attrs = value.get("attrs")
        attrs = dict(attrs) if isinstance(attrs, dict) else {}
        return cls(block_type, tuple(parents), attrs, bool(value.get("isEmbed")))

    def to_value(self) -> Dict[str, Any]:
        """Canonical replica value for this block"""
        return {
            "type": self.type,
            "parents": list(self.parents),
            "attrs": copy.deepcopy(self.attrs),
            "isEmbed": self.is_embed,
        }


def span_from_dict(data: Dict[str, Any]) -> Span:
    """Build a span from its JSON shape"""
    if data.get("type") == "block":
        value = data.get("value")
        return BlockSpan(copy.deepcopy(value) if isinstance(value, dict) else {})
    if data.get("type") == "text":
        return TextSpan(data.get("value", ""), dict(data.get("marks") or {}))
    raise ValueError(f"Unknown span type: {data.get('type')!r}")


def span_to_dict(span: Span) -> Dict[str, Any]:
    if isinstance(span, BlockSpan):
        return {"type": "block", "value": copy.deepcopy(span.value)}
    result: Dict[str, Any] = {"type": "text", "value": span.value}
    if span.marks:
        result["marks"] = dict(span.marks)
    return result


def spans_from_json(data: Iterable[Dict[str, Any]]) -> List[Span]:
    return [span_from_dict(item) for item in data]


def spans_to_json(spans: Iterable[Span]) -> List[Dict[str, Any]]:
    return [span_to_dict(span) for span in spans]


def normalize_spans(spans: Iterable[Span]) -> List[Span]:
    """Merge adjacent text with equal marks and drop empty text"""
    result: List[Span] = []
    for span in spans:
        if isinstance(span, TextSpan):
            if not span.value:
                continue
            previous = result[-1] if result else None
            if isinstance(previous, TextSpan) and previous.marks == span.marks:
                result[-1] = TextSpan(previous.value + span.value, previous.marks)
                continue
            result.append(TextSpan(span.value, dict(span.marks)))
        else:
            result.append(span)
    return result


def span_length(span: Span) -> int:
    return len(span.value) if isinstance(span, TextSpan) else 1


def spans_length(spans: Iterable[Span]) -> int:
    """Length of the linear index space covered by ``spans``"""
    return sum(span_length(span) for span in spans)

# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Patches describing changes to a linear document.

A patch addresses a location by ``path``, a list of property keys and list
indices into the replica's native structure. For a text sequence stored at
``["text"]``:

- ``["text"]`` addresses the sequence itself (mark patches)
- ``["text", 5]`` addresses the unit at linear index 5 (splice, insert, del)
- ``["text", 5, "attrs", "level"]`` addresses a key inside the block value
  of the marker at index 5 (put, insert, splice, del)
"""

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Union

from ..errors import MalformedPathError

Prop = Union[str, int]


class _PatchBase:
    action: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["action"] = self.action
        return result


@dataclass
class SplicePatch(_PatchBase):
    """Text inserted at the index ending ``path``. ``marks`` of None means no marks."""

    path: List[Prop]
    value: str
    marks: Optional[Dict[str, Any]] = None

    action: ClassVar[str] = "splice"


@dataclass
class InsertPatch(_PatchBase):
    path: List[Prop]
    values: List[Any]

    action: ClassVar[str] = "insert"


@dataclass
class DelPatch(_PatchBase):
    path: List[Prop]
    length: int = 1

    action: ClassVar[str] = "del"


@dataclass
class PutPatch(_PatchBase):
    path: List[Prop]
    value: Any

    action: ClassVar[str] = "put"


@dataclass
class MarkRange:
    name: str
    value: Any
    start: int
    end: int


@dataclass
class MarkPatch(_PatchBase):
    """Mark ranges over the sequence at ``path``. A None value removes the mark."""

    path: List[Prop]
    marks: List[MarkRange] = field(default_factory=list)

    action: ClassVar[str] = "mark"


@dataclass
class SplitBlockPatch(_PatchBase):
    path: List[Prop]
    value: Dict[str, Any]

    action: ClassVar[str] = "splitBlock"


@dataclass
class UpdateBlockPatch(_PatchBase):
    path: List[Prop]
    value: Dict[str, Any]

    action: ClassVar[str] = "updateBlock"


@dataclass
class JoinBlockPatch(_PatchBase):
    path: List[Prop]

    action: ClassVar[str] = "joinBlock"


Patch = Union[
    SplicePatch,
    InsertPatch,
    DelPatch,
    PutPatch,
    MarkPatch,
    SplitBlockPatch,
    UpdateBlockPatch,
    JoinBlockPatch,
]

BLOCK_ACTIONS = (SplitBlockPatch, UpdateBlockPatch, JoinBlockPatch)


def patch_from_dict(data: Dict[str, Any]) -> Patch:
    """Build a patch from its JSON shape"""
    action = data.get("action")
    path = list(data.get("path", []))
    if action == "splice":
        return SplicePatch(path, data.get("value", ""), data.get("marks"))
    if action == "insert":
        return InsertPatch(path, list(data.get("values", [])))
    if action == "del":
        return DelPatch(path, data.get("length") or 1)
    if action == "put":
        return PutPatch(path, data.get("value"))
    if action == "mark":
        marks = [MarkRange(m["name"], m.get("value"), m["start"], m["end"]) for m in data.get("marks", [])]
        return MarkPatch(path, marks)
    if action == "splitBlock":
        return SplitBlockPatch(path, dict(data.get("value") or {}))
    if action == "updateBlock":
        return UpdateBlockPatch(path, dict(data.get("value") or {}))
    if action == "joinBlock":
        return JoinBlockPatch(path)
    raise ValueError(f"Unknown patch action: {action!r}")


def paths_equal(left: Sequence[Prop], right: Sequence[Prop]) -> bool:
    return list(left) == list(right)


def path_is_prefix_of(prefix: Sequence[Prop], path: Sequence[Prop]) -> bool:
    if len(prefix) > len(path):
        return False
    return all(a == b for a, b in zip(prefix, path))


def char_index(text_path: Sequence[Prop], candidate: Sequence[Prop]) -> Optional[int]:
    """Index of the unit addressed by ``candidate`` when it is ``text_path + [index]``"""
    if len(candidate) != len(text_path) + 1 or not path_is_prefix_of(text_path, candidate):
        return None
    index = candidate[-1]
    if isinstance(index, int) and not isinstance(index, bool):
        return index
    return None


def require_index(text_path: Sequence[Prop], candidate: Sequence[Prop]) -> int:
    index = char_index(text_path, candidate)
    if index is None:
        raise MalformedPathError(path=list(candidate))
    return index

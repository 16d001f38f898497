# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Span Patcher
============

Applies one linear-document patch straight to a span list, without going
through the tree. The result must equal the spans read back from the
replica after the same patch, which makes this module the reference the
other converters are checked against.

Patches addressing a unit of the text (``path == at_path + [index]``) are
applied on an expanded list of units, one per character or block marker,
and the list is folded back into normalized spans. Patches addressing a key
inside a block value edit that value in place.
"""

import copy
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from ..errors import MalformedPathError
from .patches import (
    DelPatch,
    InsertPatch,
    JoinBlockPatch,
    MarkPatch,
    Patch,
    Prop,
    PutPatch,
    SplicePatch,
    SplitBlockPatch,
    UpdateBlockPatch,
    char_index,
    path_is_prefix_of,
    paths_equal,
)
from .spans import BlockSpan, Span, TextSpan, normalize_spans

logger = logging.getLogger(__name__)


class _Char:
    __slots__ = ("char", "marks")

    def __init__(self, char: str, marks: Dict[str, Any]):
        self.char = char
        self.marks = marks


class _Block:
    __slots__ = ("value",)

    def __init__(self, value: Dict[str, Any]):
        self.value = value


_Unit = Union[_Char, _Block]


def _to_units(spans: Sequence[Span]) -> List[_Unit]:
    units: List[_Unit] = []
    for span in spans:
        if isinstance(span, TextSpan):
            units.extend(_Char(char, dict(span.marks)) for char in span.value)
        else:
            units.append(_Block(span.value))
    return units


def _from_units(units: Sequence[_Unit]) -> List[Span]:
    result: List[Span] = []
    for unit in units:
        if isinstance(unit, _Block):
            result.append(BlockSpan(unit.value))
        else:
            result.append(TextSpan(unit.char, unit.marks))
    return normalize_spans(result)


def patch_spans(at_path: Sequence[Prop], spans: List[Span], patch: Patch) -> List[Span]:
    """Apply ``patch`` to ``spans`` in place and return the list.

    Patches whose path does not start with ``at_path`` are ignored.

    Raises:
        MalformedPathError: The patch path does not resolve to a unit or a
            key inside a block value.
    """
    if isinstance(patch, MarkPatch):
        if paths_equal(patch.path, at_path):
            units = _to_units(spans)
            _apply_marks(units, patch)
            spans[:] = _from_units(units)
        return spans

    if not path_is_prefix_of(at_path, patch.path) or paths_equal(patch.path, at_path):
        return spans

    if len(patch.path) == len(at_path) + 1:
        index = char_index(at_path, patch.path)
        if index is None:
            raise MalformedPathError(path=list(patch.path))
        units = _to_units(spans)
        _apply_unit_patch(units, index, patch)
        spans[:] = _from_units(units)
        return spans

    index = patch.path[len(at_path)]
    if not isinstance(index, int) or isinstance(index, bool):
        raise MalformedPathError(path=list(patch.path))
    block = find_block_at_index(spans, index)
    if block is None:
        raise MalformedPathError(f"No block at index {index}", path=list(patch.path))
    apply_block_patch(at_path, patch, block)
    return spans


def _apply_unit_patch(units: List[_Unit], index: int, patch: Patch):
    if index < 0 or index > len(units):
        raise MalformedPathError(f"Index {index} is outside the text", path=list(patch.path))

    if isinstance(patch, SplicePatch):
        marks = dict(patch.marks or {})
        units[index:index] = [_Char(char, dict(marks)) for char in patch.value]
    elif isinstance(patch, InsertPatch):
        inserted: List[_Unit] = []
        for value in patch.values:
            if isinstance(value, dict):
                inserted.append(_Block(copy.deepcopy(value)))
            elif isinstance(value, str):
                inserted.extend(_Char(char, {}) for char in value)
            else:
                raise MalformedPathError(f"Cannot insert {value!r} into text", path=list(patch.path))
        units[index:index] = inserted
    elif isinstance(patch, DelPatch):
        del units[index:index + max(patch.length, 1)]
    elif isinstance(patch, SplitBlockPatch):
        units.insert(index, _Block(copy.deepcopy(patch.value)))
    elif isinstance(patch, UpdateBlockPatch):
        _require_block(units, index, patch).value = copy.deepcopy(patch.value)
    elif isinstance(patch, JoinBlockPatch):
        _require_block(units, index, patch)
        del units[index]
    else:
        raise MalformedPathError(f"Unsupported {patch.action} patch on text", path=list(patch.path))


def _require_block(units: List[_Unit], index: int, patch: Patch) -> _Block:
    unit = units[index] if index < len(units) else None
    if not isinstance(unit, _Block):
        raise MalformedPathError(f"No block marker at index {index}", path=list(patch.path))
    return unit


def _apply_marks(units: List[_Unit], patch: MarkPatch):
    for mark in patch.marks:
        for unit in units[max(mark.start, 0):max(mark.end, 0)]:
            if isinstance(unit, _Block):
                continue
            if mark.value is None:
                unit.marks.pop(mark.name, None)
            else:
                unit.marks[mark.name] = copy.deepcopy(mark.value)


def find_block_at_index(spans: Sequence[Span], index: int) -> Optional[Dict[str, Any]]:
    """The value of the block marker at linear index ``index``"""
    offset = 0
    for span in spans:
        if isinstance(span, TextSpan):
            offset += len(span.value)
            if offset > index:
                return None
        else:
            if offset == index:
                return span.value
            offset += 1
    return None


def apply_block_patch(parent_path: Sequence[Prop], patch: Patch, block: Dict[str, Any]):
    """Apply a patch addressing a key inside ``block`` (path below the marker index)"""
    path_in_block = list(patch.path[len(parent_path) + 1:])
    if not path_in_block:
        raise MalformedPathError(path=list(patch.path))

    if isinstance(patch, PutPatch):
        target = resolve_target(block, path_in_block[:-1], patch.path)
        _set_key(target, path_in_block[-1], copy.deepcopy(patch.value), patch.path)
    elif isinstance(patch, InsertPatch):
        sequence, at = _sequence_at(block, path_in_block, patch.path)
        if not isinstance(sequence, list):
            raise MalformedPathError("Insert target is not a list", path=list(patch.path))
        sequence[at:at] = copy.deepcopy(patch.values)
    elif isinstance(patch, SplicePatch):
        if len(path_in_block) < 2:
            raise MalformedPathError(path=list(patch.path))
        container = resolve_target(block, path_in_block[:-2], patch.path)
        prop, at = path_in_block[-2], path_in_block[-1]
        before = _get_key(container, prop, patch.path)
        if not isinstance(before, str) or not isinstance(at, int):
            raise MalformedPathError("Splice target is not a string", path=list(patch.path))
        _set_key(container, prop, before[:at] + patch.value + before[at:], patch.path)
    elif isinstance(patch, DelPatch):
        target = resolve_target(block, path_in_block[:-1], patch.path)
        key = path_in_block[-1]
        if isinstance(target, list) and isinstance(key, int):
            del target[key:key + max(patch.length, 1)]
        elif isinstance(target, dict):
            target.pop(key, None)
        else:
            raise MalformedPathError(path=list(patch.path))
    else:
        raise MalformedPathError(f"Unsupported {patch.action} patch inside a block", path=list(patch.path))


def _sequence_at(block: Dict[str, Any], path_in_block: List[Prop], full_path: Sequence[Prop]):
    if len(path_in_block) < 2 or not isinstance(path_in_block[-1], int):
        raise MalformedPathError(path=list(full_path))
    container = resolve_target(block, path_in_block[:-2], full_path)
    return _get_key(container, path_in_block[-2], full_path), path_in_block[-1]


def resolve_target(block: Any, path: Sequence[Prop], full_path: Optional[Sequence[Prop]] = None) -> Any:
    """Follow ``path`` from ``block`` and return the object it names"""
    target = block
    for prop in path:
        target = _get_key(target, prop, full_path if full_path is not None else path)
        if not isinstance(target, (dict, list)):
            raise MalformedPathError(f"Path step {prop!r} is not a container", path=list(full_path or path))
    return target


def _get_key(target: Any, key: Prop, full_path: Sequence[Prop]) -> Any:
    if isinstance(target, dict) and isinstance(key, str):
        if key not in target:
            raise MalformedPathError(f"Missing key {key!r}", path=list(full_path))
        return target[key]
    if isinstance(target, list) and isinstance(key, int) and 0 <= key < len(target):
        return target[key]
    raise MalformedPathError(path=list(full_path))


def _set_key(target: Any, key: Prop, value: Any, full_path: Sequence[Prop]):
    if isinstance(target, dict) and isinstance(key, str):
        target[key] = value
    elif isinstance(target, list) and isinstance(key, int) and 0 <= key <= len(target):
        if key == len(target):
            target.append(value)
        else:
            target[key] = value
    else:
        raise MalformedPathError(path=list(full_path))

# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Loro Linear Document Replica
============================

A linear document backed by a ``LoroDoc``, with the surface the mirror
engine needs from a replication layer: spans, patches between two heads,
heads, views of past states and atomic changes.

ARCHITECTURE:
- Each text sequence (addressed by a path such as ``["text"]``) is a root
  ``LoroText``. The root map ``spanMirrorPaths`` records which path every
  text container holds.
- A block marker is one ``\\ufffc`` character carrying the block value as
  the ``spanMirrorBlock`` style. That style never expands, so typed text
  does not pick it up.
- Character marks are Loro styles. Each mark name is configured with the
  expansion it was last written with; names never configured expand after.
- Heads are the hex encoding of the oplog frontiers. ``view(heads)`` forks
  the document at those frontiers.
- Text deltas, from commit events or from ``LoroDoc.diff``, are projected
  into splice/insert/del/put patches followed by a single mark patch.

CHANGE FLOW:
1. ``change(fn)`` hands a ``TextDraft`` to ``fn``; the draft edits the
   Loro containers directly
2. The transaction is committed and the subscription collects the
   container diffs it produced
3. Subscribers receive a ``ChangeEvent`` with the projected patches

A change that raises is reverted to the heads it started from and the
exception propagates.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from loro import (
    ContainerID,
    Diff,
    ExpandType,
    Frontiers,
    LoroDoc,
    LoroText,
    Ordering,
    StyleConfigMap,
    TextDelta,
)

from ..constants import (
    BLOCK_MARK_KEY,
    BLOCK_MARKER_CHAR,
    DEFAULT_TEXT_PATH,
    EXPAND_AFTER,
    EXPAND_BEFORE,
    EXPAND_BOTH,
    EXPAND_NONE,
    PATHS_CONTAINER,
)
from ..errors import InvalidIndexError, MalformedPathError
from ..model.patches import (
    DelPatch,
    InsertPatch,
    MarkPatch,
    MarkRange,
    Patch,
    Prop,
    PutPatch,
    SplicePatch,
)
from ..model.spans import BlockSpan, Span, TextSpan, normalize_spans

logger = logging.getLogger(__name__)

Heads = str

EXPAND_TYPES = {
    EXPAND_BEFORE: ExpandType.Before,
    EXPAND_AFTER: ExpandType.After,
    EXPAND_BOTH: ExpandType.Both,
    EXPAND_NONE: ExpandType.Null,
}


@dataclass(frozen=True)
class Unit:
    """One position of a text: a character or a block marker"""

    char: Optional[str] = None
    block: Optional[Dict[str, Any]] = None
    marks: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_block(self) -> bool:
        return self.block is not None


@dataclass
class ChangeEvent:
    """Payload delivered to subscribers after a change is committed"""

    before: Heads
    after: Heads
    patches: List[Patch]


def container_name(path: Sequence[Prop]) -> str:
    """Name of the root text container holding ``path``"""
    if not path:
        raise MalformedPathError("Empty text path", path=list(path))
    if len(path) == 1 and isinstance(path[0], str) and path[0] and "/" not in path[0]:
        return path[0]
    return "path:" + json.dumps(list(path)).replace("/", "\\u002f")


def encode_heads(frontiers: Frontiers) -> Heads:
    return frontiers.encode().hex()


def decode_heads(heads: Heads) -> Frontiers:
    return Frontiers.decode(bytes.fromhex(heads))


def units_from_delta(delta: Sequence[Any]) -> List[Unit]:
    units: List[Unit] = []
    for item in delta:
        if not isinstance(item, TextDelta.Insert):
            continue
        attributes = item.attributes or {}
        block = attributes.get(BLOCK_MARK_KEY)
        marks = {name: value for name, value in attributes.items() if name != BLOCK_MARK_KEY and value is not None}
        for char in item.insert:
            if block is not None and char == BLOCK_MARKER_CHAR:
                units.append(Unit(block=copy.deepcopy(block)))
            else:
                units.append(Unit(char=char, marks=copy.deepcopy(marks)))
    return units


def spans_from_units(units: Sequence[Unit]) -> List[Span]:
    result: List[Span] = []
    for unit in units:
        if unit.is_block:
            result.append(BlockSpan(copy.deepcopy(unit.block)))
        else:
            result.append(TextSpan(unit.char, copy.deepcopy(unit.marks)))
    return normalize_spans(result)


def mark_ranges(units: Sequence[Unit]) -> List[MarkRange]:
    """Maximal runs of equal mark values over character units"""
    result: List[MarkRange] = []
    open_ranges: Dict[str, MarkRange] = {}
    for index, unit in enumerate(units):
        current = {} if unit.is_block else unit.marks
        for name in list(open_ranges):
            if name not in current or current[name] != open_ranges[name].value:
                result.append(open_ranges.pop(name))
        for name, value in current.items():
            if name in open_ranges:
                open_ranges[name].end = index + 1
            else:
                open_ranges[name] = MarkRange(name, copy.deepcopy(value), index, index + 1)
    result.extend(open_ranges.values())
    result.sort(key=lambda mark: (mark.start, mark.name))
    return result


def _text_runs(units: Sequence[Unit], start: int, end: int) -> List[Tuple[int, int]]:
    """(start, end) of the character runs inside [start, end), skipping block markers"""
    runs: List[Tuple[int, int]] = []
    for index in range(start, end):
        if units[index].is_block:
            continue
        if runs and runs[-1][1] == index:
            runs[-1] = (runs[-1][0], index + 1)
        else:
            runs.append((index, index + 1))
    return runs


class DocView:
    """Read access to the texts of one Loro document state"""

    def __init__(self, doc: LoroDoc):
        self.doc = doc

    def _text(self, path: Sequence[Prop]) -> LoroText:
        return self.doc.get_text(container_name(path))

    def units(self, path: Sequence[Prop] = DEFAULT_TEXT_PATH) -> List[Unit]:
        return units_from_delta(self._text(path).to_delta())

    def spans(self, path: Sequence[Prop] = DEFAULT_TEXT_PATH) -> List[Span]:
        return spans_from_units(self.units(path))

    def marks(self, path: Sequence[Prop] = DEFAULT_TEXT_PATH) -> List[MarkRange]:
        return mark_ranges(self.units(path))

    def marks_at(self, path: Sequence[Prop], index: int) -> Dict[str, Any]:
        units = self.units(path)
        if index < 0 or index >= len(units) or units[index].is_block:
            return {}
        return copy.deepcopy(units[index].marks)

    def length(self, path: Sequence[Prop] = DEFAULT_TEXT_PATH) -> int:
        return self._text(path).len_unicode

    def path_names(self) -> Dict[str, List[Prop]]:
        value = self.doc.get_map(PATHS_CONTAINER).get_value()
        return {name: list(path) for name, path in (value or {}).items()}

    def paths(self) -> List[List[Prop]]:
        return list(self.path_names().values())


class TextDraft(DocView):
    """Working handle passed to a change function; edits go straight to the Loro texts"""

    def __init__(self, document: "LinearDocument"):
        super().__init__(document.doc)
        self._document = document

    def _writable(self, path: Sequence[Prop]) -> LoroText:
        name = container_name(path)
        paths = self.doc.get_map(PATHS_CONTAINER)
        if name not in paths:
            paths.insert(name, list(path))
        return self.doc.get_text(name)

    def _check_range(self, length: int, start: int, end: int):
        if start < 0 or end < start or end > length:
            raise InvalidIndexError(f"Range [{start}, {end}) is outside a text of length {length}")

    def splice(
        self,
        path: Sequence[Prop],
        index: int,
        delete: int = 0,
        text: str = "",
        marks: Optional[Dict[str, Any]] = None,
    ):
        """Delete ``delete`` units at ``index`` and insert ``text`` there.

        With ``marks`` of None the new characters inherit expanding marks
        from their neighbours; otherwise they carry exactly ``marks``.
        """
        self._check_range(self.length(path), index, index + delete)
        if not delete and not text:
            return
        loro_text = self._writable(path)
        if delete:
            loro_text.delete(index, delete)
        if text:
            loro_text.insert(index, text)
            if marks is not None:
                self._set_marks(path, loro_text, index, index + len(text), marks)

    def _set_marks(self, path: Sequence[Prop], loro_text: LoroText, start: int, end: int, marks: Dict[str, Any]):
        present = set()
        for unit in self.units(path)[start:end]:
            present.update(unit.marks)
        for name in present:
            if name not in marks:
                loro_text.unmark(start, end, name)
        for name, value in marks.items():
            if value is None:
                continue
            self._document.configure_mark(name)
            loro_text.mark(start, end, name, copy.deepcopy(value))

    def split_block(self, path: Sequence[Prop], index: int, value: Dict[str, Any]):
        self._check_range(self.length(path), index, index)
        loro_text = self._writable(path)
        loro_text.insert(index, BLOCK_MARKER_CHAR)
        loro_text.mark(index, index + 1, BLOCK_MARK_KEY, copy.deepcopy(value))
        inherited = self.units(path)[index].marks
        for name in inherited:
            loro_text.unmark(index, index + 1, name)

    def _check_block(self, path: Sequence[Prop], index: int):
        units = self.units(path)
        if index < 0 or index >= len(units) or not units[index].is_block:
            raise InvalidIndexError(f"No block marker at index {index}")

    def join_block(self, path: Sequence[Prop], index: int):
        self._check_block(path, index)
        self._writable(path).delete(index, 1)

    def update_block(self, path: Sequence[Prop], index: int, value: Dict[str, Any]):
        self._check_block(path, index)
        self._writable(path).mark(index, index + 1, BLOCK_MARK_KEY, copy.deepcopy(value))

    def mark(self, path: Sequence[Prop], start: int, end: int, name: str, value: Any, expand: str = EXPAND_AFTER):
        if expand not in EXPAND_TYPES:
            raise ValueError(f"Unknown mark expansion: {expand!r}")
        if name == BLOCK_MARK_KEY:
            raise ValueError(f"Mark name {name!r} is reserved for block markers")
        if value is None:
            self.unmark(path, start, end, name, expand)
            return
        units = self.units(path)
        self._check_range(len(units), start, end)
        runs = _text_runs(units, start, end)
        if not runs:
            return
        self._document.configure_mark(name, expand)
        loro_text = self._writable(path)
        for run_start, run_end in runs:
            loro_text.mark(run_start, run_end, name, copy.deepcopy(value))

    def unmark(self, path: Sequence[Prop], start: int, end: int, name: str, expand: str = EXPAND_NONE):
        units = self.units(path)
        self._check_range(len(units), start, end)
        marked = [index for index in range(start, end) if not units[index].is_block and name in units[index].marks]
        if not marked:
            return
        loro_text = self._writable(path)
        for run_start, run_end in _text_runs(units, marked[0], marked[-1] + 1):
            loro_text.unmark(run_start, run_end, name)

    def set_spans(self, path: Sequence[Prop], spans: Sequence[Span]):
        """Replace the whole text with ``spans``"""
        loro_text = self._writable(path)
        if loro_text.len_unicode:
            loro_text.delete(0, loro_text.len_unicode)
        index = 0
        for span in normalize_spans(list(spans)):
            if isinstance(span, BlockSpan):
                self.split_block(path, index, span.value)
                index += 1
            else:
                self.splice(path, index, 0, span.value, span.marks)
                index += len(span.value)


class LinearDocument:
    """A replicated linear document backed by a ``LoroDoc``.

    Example::

        document = LinearDocument.from_spans([TextSpan("hello")])
        document.change(lambda draft: draft.splice(["text"], 5, 0, " world"))
        document.spans(["text"])
    """

    def __init__(self, doc: Optional[LoroDoc] = None):
        self.doc = doc if doc is not None else LoroDoc()
        self._styles: Dict[str, str] = {}
        self._listeners: List[Callable[[ChangeEvent], None]] = []
        self._pending: List[Tuple[Any, Any]] = []
        self._apply_styles()
        self._subscription = self.doc.subscribe_root(self._handle_doc_change)

    @classmethod
    def from_spans(cls, spans: Sequence[Span], path: Sequence[Prop] = DEFAULT_TEXT_PATH) -> "LinearDocument":
        document = cls()
        document.change(lambda draft: draft.set_spans(path, spans))
        return document

    def _apply_styles(self):
        config = StyleConfigMap()
        for name, expand in self._styles.items():
            config.insert(name, EXPAND_TYPES[expand])
        config.insert(BLOCK_MARK_KEY, ExpandType.Null)
        self.doc.config_text_style(config)
        self.doc.config_default_text_style(ExpandType.After)

    def configure_mark(self, name: str, expand: Optional[str] = None):
        """Set how ``name`` expands; without ``expand`` keep the current setting"""
        if expand is None:
            if name in self._styles:
                return
            expand = EXPAND_AFTER
        if self._styles.get(name) == expand:
            return
        self._styles[name] = expand
        self._apply_styles()

    def _handle_doc_change(self, diff_event):
        for container_diff in diff_event.events:
            self._pending.append((container_diff.target, container_diff.diff))

    def get_heads(self) -> Heads:
        return encode_heads(self.doc.oplog_frontiers)

    def _frontiers(self, heads: Heads) -> Frontiers:
        try:
            frontiers = decode_heads(heads)
        except Exception as e:
            raise KeyError(f"Invalid heads {heads!r}: {e}")
        if self.doc.cmp_with_frontiers(frontiers) == Ordering.Less:
            raise KeyError(f"Unknown heads: {heads}")
        return frontiers

    def view(self, heads: Heads) -> DocView:
        """A read-only view of the document at ``heads``.

        Raises:
            KeyError: The heads are not part of this document's history
        """
        return DocView(self.doc.fork_at(self._frontiers(heads)))

    @property
    def current(self) -> DocView:
        return DocView(self.doc)

    def paths(self) -> List[List[Prop]]:
        return self.current.paths()

    def spans(self, path: Sequence[Prop] = DEFAULT_TEXT_PATH, heads: Optional[Heads] = None) -> List[Span]:
        snapshot = self.current if heads is None else self.view(heads)
        return snapshot.spans(path)

    def marks(self, path: Sequence[Prop] = DEFAULT_TEXT_PATH) -> List[MarkRange]:
        return self.current.marks(path)

    def marks_at(self, path: Sequence[Prop], index: int) -> Dict[str, Any]:
        return self.current.marks_at(path, index)

    def length(self, path: Sequence[Prop] = DEFAULT_TEXT_PATH) -> int:
        return self.current.length(path)

    def change(self, fn: Callable[[TextDraft], Any]) -> Heads:
        """Run ``fn`` on a draft and commit the result atomically.

        Subscribers are notified after the commit. A change that does not
        modify anything creates no new heads.
        """
        before = self.get_heads()
        self.doc.commit()
        self._pending.clear()
        try:
            fn(TextDraft(self))
        except Exception:
            self.doc.commit()
            if self.get_heads() != before:
                logger.warning(f"Change failed, reverting to {before}")
                self.doc.revert_to(decode_heads(before))
                self.doc.commit()
            self._pending.clear()
            raise
        self.doc.commit()
        return self._publish(before)

    def import_updates(self, data: bytes) -> Heads:
        """Merge updates or a snapshot exported by another replica"""
        before = self.get_heads()
        self.doc.commit()
        self._pending.clear()
        status = self.doc.import_(data)
        logger.debug(f"Imported {len(data)} bytes, pending {status.pending}")
        return self._publish(before)

    def fork(self) -> "LinearDocument":
        """A new replica sharing this document's history"""
        document = LinearDocument(self.doc.fork())
        for name, expand in self._styles.items():
            document.configure_mark(name, expand)
        return document

    def _publish(self, before: Heads) -> Heads:
        after = self.get_heads()
        pending = list(self._pending)
        self._pending.clear()
        if after == before:
            return before
        logger.debug(f"Committed change {before} -> {after}")
        if self._listeners:
            if pending:
                patches = self._patches_from_diffs(pending, self.view(before))
            else:
                patches = self.diff(before, after)
            event = ChangeEvent(before, after, patches)
            for listener in list(self._listeners):
                listener(event)
        return after

    def subscribe(self, listener: Callable[[ChangeEvent], None]):
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[ChangeEvent], None]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def diff(self, before: Heads, after: Heads) -> List[Patch]:
        """Patches turning the document at ``before`` into the one at ``after``"""
        old = self.view(before)
        batch = self.doc.diff(self._frontiers(before), self._frontiers(after))
        return self._patches_from_diffs(batch.get_diff(), old)

    def _patches_from_diffs(self, diffs: Sequence[Tuple[Any, Any]], old: DocView) -> List[Patch]:
        names = self.current.path_names()
        patches: List[Patch] = []
        for target, diff in diffs:
            if not isinstance(target, ContainerID.Root) or not isinstance(diff, Diff.Text):
                continue
            path = names.get(target.name)
            if path is None:
                continue
            patches.extend(patches_from_delta(path, diff.diff, old.units(path)))
        return patches


def patches_from_delta(path: List[Prop], delta: Sequence[Any], old: Sequence[Unit]) -> List[Patch]:
    """Structural patches followed by one mark patch, in application order"""
    patches: List[Patch] = []
    mark_changes: List[MarkRange] = []
    position = 0
    old_index = 0

    for item in delta:
        if isinstance(item, TextDelta.Retain):
            if item.attributes:
                for offset in range(item.retain):
                    unit = old[old_index + offset]
                    if unit.is_block:
                        value = item.attributes.get(BLOCK_MARK_KEY)
                        if value is not None:
                            patches.extend(_block_value_patches(path + [position + offset], unit.block, value))
                    else:
                        mark_changes.extend(_mark_changes(position + offset, unit.marks, item.attributes))
            position += item.retain
            old_index += item.retain
        elif isinstance(item, TextDelta.Insert):
            patches.extend(_insert_patches(path, position, item.insert, item.attributes or {}))
            position += len(item.insert)
        elif isinstance(item, TextDelta.Delete):
            patches.append(DelPatch(path + [position], item.delete))
            old_index += item.delete

    if mark_changes:
        patches.append(MarkPatch(list(path), _merge_mark_changes(mark_changes)))
    return patches


def _insert_patches(path: List[Prop], position: int, text: str, attributes: Dict[str, Any]) -> List[Patch]:
    patches: List[Patch] = []
    block = attributes.get(BLOCK_MARK_KEY)
    if block is not None and all(char == BLOCK_MARKER_CHAR for char in text):
        for offset in range(len(text)):
            patches.append(InsertPatch(path + [position + offset], [{}]))
            for key, value in sorted(block.items()):
                patches.append(PutPatch(path + [position + offset, key], copy.deepcopy(value)))
        return patches
    marks = {name: copy.deepcopy(value) for name, value in attributes.items() if name != BLOCK_MARK_KEY and value is not None}
    patches.append(SplicePatch(path + [position], text, marks or None))
    return patches


def _block_value_patches(path: List[Prop], old: Dict[str, Any], new: Dict[str, Any]) -> List[Patch]:
    patches: List[Patch] = []
    for key, value in sorted(new.items()):
        if key not in old or old[key] != value:
            patches.append(PutPatch(path + [key], copy.deepcopy(value)))
    for key in sorted(old):
        if key not in new:
            patches.append(DelPatch(path + [key]))
    return patches


def _mark_changes(position: int, old: Dict[str, Any], attributes: Dict[str, Any]) -> List[MarkRange]:
    changes: List[MarkRange] = []
    for name, value in attributes.items():
        if name == BLOCK_MARK_KEY:
            continue
        if value is None:
            if name in old:
                changes.append(MarkRange(name, None, position, position + 1))
        elif old.get(name) != value:
            changes.append(MarkRange(name, copy.deepcopy(value), position, position + 1))
    return changes


def _merge_mark_changes(changes: List[MarkRange]) -> List[MarkRange]:
    merged: List[MarkRange] = []
    last_for_name: Dict[str, MarkRange] = {}
    for change in changes:
        previous = last_for_name.get(change.name)
        if previous is not None and previous.end == change.start and previous.value == change.value:
            previous.end = change.end
            continue
        merged.append(change)
        last_for_name[change.name] = change
    return merged

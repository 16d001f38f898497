# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Synchronization Controller
==========================

Keeps an editor session and a linear document replica in step.

LIFECYCLE:
- ``initialize()`` builds the first tree from the replica and records the
  heads it was built from
- ``attach(session)`` routes the session's dispatched transactions through
  ``intercept`` and subscribes to replica changes
- ``detach()`` undoes both

EDIT CYCLE:
1. A local transaction arrives while IDLE. Its steps are replayed on the
   replica inside one change. The controller is APPLYING while the change
   commits, so the replica's change notification for it is discarded.
2. The patches of that change are converted back into a predicted tree
   transaction. When the prediction disagrees with what the editor
   produced, the range that differs from a fresh rebuild is replaced and
   the selection restored where possible.
3. A remote change notification arriving while IDLE is converted into a
   tree transaction and applied, tagged so it stays out of undo history.

The re-entrancy guard is a flag, not a counter: edits dispatched while a
change is being applied are dropped, not queued.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Sequence

from prosemirror.model import Node, ReplaceError
from prosemirror.transform import TransformError

from ..constants import DEFAULT_TEXT_PATH
from ..errors import DivergenceError, InvalidIndexError, SelectionMappingError
from ..tree.state import EditorSession, EditorState, TextSelection, Transaction
from .patch_to_tree import find_diff, patch_to_tree
from .patches import Patch, Prop
from .schema_adapter import SchemaAdapter
from .tree_to_linear import tree_to_linear
from .traversal import doc_from_spans

if TYPE_CHECKING:
    from ..replica.document import ChangeEvent, Heads, LinearDocument

logger = logging.getLogger(__name__)

ADD_TO_HISTORY_META = "addToHistory"
SYNC_META = "spanMirrorSync"


class SyncState(Enum):
    IDLE = "idle"
    APPLYING = "applying"


class SyncController:
    """Mirrors one text sequence of a replica into an editor session"""

    def __init__(self, adapter: SchemaAdapter, handle: "LinearDocument", path: Sequence[Prop] = DEFAULT_TEXT_PATH):
        self.adapter = adapter
        self.handle = handle
        self.path: List[Prop] = list(path)
        self.state = SyncState.IDLE
        self._heads: Optional["Heads"] = None
        self._session: Optional[EditorSession] = None

    @property
    def schema(self):
        return self.adapter.schema

    @property
    def heads(self) -> Optional["Heads"]:
        """Heads of the replica state the editor last reflected"""
        return self._heads

    def initialize(self) -> Node:
        spans = self.handle.spans(self.path)
        self._heads = self.handle.get_heads()
        return doc_from_spans(self.adapter, spans)

    def create_state(self) -> EditorState:
        return EditorState.create(self.schema, self.initialize())

    def attach(self, session: EditorSession):
        if self._session is not None:
            self.detach()
        if self._heads is None:
            self._heads = self.handle.get_heads()
        self._session = session
        session.dispatch_transaction = self.intercept
        self.handle.subscribe(self._on_change)
        logger.info(f"Sync controller attached to {self.path} at heads {self._heads}")

    def detach(self):
        if self._session is None:
            return
        self.handle.unsubscribe(self._on_change)
        if self._session.dispatch_transaction == self.intercept:
            self._session.dispatch_transaction = None
        self._session = None
        logger.info(f"Sync controller detached from {self.path}")

    def _on_change(self, event: "ChangeEvent"):
        if self.state is SyncState.APPLYING:
            logger.debug(f"Discarding echo of local change {event.after}")
            return
        if self._session is None:
            return
        new_state = self.reconcile_patch(event.before, event.after, event.patches, self._session.state)
        self._session.update_state(new_state)

    def reconcile_patch(self, before: "Heads", after: "Heads", patches: Sequence[Patch], state: EditorState) -> EditorState:
        """Apply replica patches between ``before`` and ``after`` to the editor state"""
        if self.state is SyncState.APPLYING:
            return state
        if self._heads is not None and after == self._heads:
            logger.debug(f"Heads {after} already reconciled")
            return state
        if self._heads is not None and before != self._heads:
            logger.debug(f"Patches start at {before}, reconciling from {self._heads} instead")
            before = self._heads
            patches = self.handle.diff(before, after)

        spans = self.handle.view(before).spans(self.path)
        tr = state.tr
        tr.set_meta(ADD_TO_HISTORY_META, False)
        tr.set_meta(SYNC_META, True)
        patch_to_tree(self.adapter, spans, patches, self.path, tr)
        self._heads = after
        logger.debug(f"Reconciled {len(patches)} patches, now at {after}")
        return state.apply(tr)

    def intercept(self, tr: Transaction, state: EditorState) -> EditorState:
        """Replay a local transaction on the replica and return the next editor state"""
        if self.state is SyncState.APPLYING:
            logger.warning("Dropping edit dispatched while a change is being applied")
            return state
        if not tr.doc_changed:
            return state.apply(tr)

        heads_before = self.handle.get_heads()
        if self._heads is not None and heads_before != self._heads:
            logger.warning(f"Editor reflects {self._heads} but the replica is at {heads_before}")
        spans_before = self.handle.spans(self.path)

        self.state = SyncState.APPLYING
        try:
            heads_after = self.handle.change(
                lambda draft: tree_to_linear(self.adapter, draft.spans(self.path), tr.steps, draft, tr.before, self.path)
            )
        finally:
            self.state = SyncState.IDLE

        new_state = state.apply(tr)
        self._heads = heads_after
        if heads_after == heads_before:
            return new_state

        predicted = state.tr
        try:
            patch_to_tree(self.adapter, list(spans_before), self.handle.diff(heads_before, heads_after), self.path, predicted)
        except (InvalidIndexError, IndexError, TransformError, ReplaceError, ValueError) as e:
            logger.warning(f"Could not predict the tree for {heads_after}: {e}")
            return self._repair(new_state, e)
        try:
            self._check_divergence(new_state.doc, predicted.doc)
        except DivergenceError as e:
            new_state = self._repair(new_state, e)
        return new_state

    def _check_divergence(self, actual: Node, predicted: Node):
        change = find_diff(actual.content, predicted.content)
        if change is not None:
            raise DivergenceError(change.start, change.end_a, change.end_b)

    def _repair(self, state: EditorState, error: Exception) -> EditorState:
        rebuilt = doc_from_spans(self.adapter, self.handle.spans(self.path))
        change = find_diff(state.doc.content, rebuilt.content)
        if change is None:
            logger.debug(f"Prediction differed ({error}) but the tree matches a rebuild")
            return state

        logger.warning(f"Editor diverged from the replica between {change.start} and {change.end_a}, repairing")

        tr = state.tr
        try:
            tr.replace(change.start, change.end_a, rebuilt.slice(change.start, change.end_b))
        except (ReplaceError, TransformError, ValueError) as e:
            logger.debug(f"Range repair failed ({e}), replacing the whole document content")
            tr = state.tr
            tr.replace(0, state.doc.content.size, rebuilt.slice(0, rebuilt.content.size))
        try:
            tr.set_selection(TextSelection.from_json(tr.doc, state.selection.to_json()))
        except SelectionMappingError as e:
            logger.warning(f"Could not restore selection after repair: {e}")
        tr.set_stored_marks(state.stored_marks)
        tr.set_meta(ADD_TO_HISTORY_META, False)
        tr.set_meta(SYNC_META, True)
        return state.apply(tr)

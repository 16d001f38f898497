# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Editor state, transactions and the dispatch surface of an editing session.

``EditorSession`` is what a synchronization layer plugs into: it exposes a
``dispatch_transaction`` hook that intercepts every dispatched transaction,
and ``dispatch`` as the entry point for applying external transactions.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from prosemirror.model import Mark, Node, Schema
from prosemirror.transform import Mapping, Step, Transform

from ..errors import SelectionMappingError

logger = logging.getLogger(__name__)


class TextSelection:
    """A selection between an anchor and a head position"""

    def __init__(self, anchor: int, head: Optional[int] = None):
        self.anchor = anchor
        self.head = anchor if head is None else head

    @property
    def from_(self) -> int:
        return min(self.anchor, self.head)

    @property
    def to(self) -> int:
        return max(self.anchor, self.head)

    @property
    def empty(self) -> bool:
        return self.anchor == self.head

    def map(self, doc: Node, mapping: Mapping) -> "TextSelection":
        size = doc.content.size
        anchor = max(0, min(mapping.map(self.anchor), size))
        head = max(0, min(mapping.map(self.head), size))
        return TextSelection(anchor, head)

    def eq(self, other: "TextSelection") -> bool:
        return self.anchor == other.anchor and self.head == other.head

    def to_json(self) -> Dict[str, Any]:
        return {"type": "text", "anchor": self.anchor, "head": self.head}

    @classmethod
    def from_json(cls, doc: Node, json_data: Dict[str, Any]) -> "TextSelection":
        anchor = json_data.get("anchor")
        head = json_data.get("head")
        size = doc.content.size
        if not isinstance(anchor, int) or not isinstance(head, int):
            raise SelectionMappingError("Invalid input for TextSelection.from_json")
        if not (0 <= anchor <= size and 0 <= head <= size):
            raise SelectionMappingError(f"Selection {anchor}-{head} outside of document (size {size})")
        return cls(anchor, head)

    @classmethod
    def at_start(cls, doc: Node) -> "TextSelection":
        found: List[int] = []

        def visit(node: Node, pos: int, _parent, _index):
            if found:
                return False
            if node.is_textblock:
                found.append(pos + 1)
                return False
            return None

        doc.descendants(visit)
        return cls(found[0] if found else 0)

    def __repr__(self) -> str:
        return f"TextSelection({self.anchor}, {self.head})"


class Transaction(Transform):
    """A transform that also tracks selection, stored marks and metadata"""

    def __init__(self, state: "EditorState"):
        super().__init__(state.doc)
        self.schema = state.schema
        self.selection = state.selection
        self.stored_marks: Optional[List[Mark]] = state.stored_marks
        self.meta: Dict[str, Any] = {}

    def add_step(self, step: Step, doc: Node):
        super().add_step(step, doc)
        step_mapping = Mapping([step.get_map()])
        self.selection = self.selection.map(doc, step_mapping)
        self.stored_marks = None

    def set_selection(self, selection: TextSelection) -> "Transaction":
        self.selection = selection
        return self

    def set_stored_marks(self, marks: Optional[List[Mark]]) -> "Transaction":
        self.stored_marks = marks
        return self

    def set_meta(self, key: str, value: Any) -> "Transaction":
        self.meta[key] = value
        return self

    def get_meta(self, key: str) -> Any:
        return self.meta.get(key)

    def insert_text(self, text: str, start: Optional[int] = None, end: Optional[int] = None) -> "Transaction":
        """Insert text, replacing the selection when no range is given"""
        if start is None:
            start, end = self.selection.from_, self.selection.to
        elif end is None:
            end = start
        if not text:
            return self.delete(start, end)
        marks = self.stored_marks
        if marks is None:
            marks = self.doc.resolve(start).marks()
        self.replace_with(start, end, self.schema.text(text, marks))
        position = start + len(text)
        self.selection = TextSelection(position)
        return self


class EditorState:
    """An immutable editor state: document, selection and stored marks"""

    def __init__(self, schema: Schema, doc: Node, selection: TextSelection, stored_marks: Optional[List[Mark]] = None):
        self.schema = schema
        self.doc = doc
        self.selection = selection
        self.stored_marks = stored_marks

    @classmethod
    def create(cls, schema: Schema, doc: Node, selection: Optional[TextSelection] = None) -> "EditorState":
        return cls(schema, doc, selection or TextSelection.at_start(doc))

    @property
    def tr(self) -> Transaction:
        return Transaction(self)

    def apply(self, tr: Transaction) -> "EditorState":
        if tr.before is not self.doc:
            raise ValueError("Applying a mismatched transaction")
        return EditorState(self.schema, tr.doc, tr.selection, tr.stored_marks)


class EditorSession:
    """The dispatch surface of an editor.

    When ``dispatch_transaction`` is set, dispatched transactions are handed
    to it together with the current state and it returns the next state.
    """

    def __init__(self, state: EditorState):
        self.state = state
        self.dispatch_transaction: Optional[Callable[[Transaction, EditorState], EditorState]] = None

    def dispatch(self, tr: Transaction):
        if self.dispatch_transaction is not None:
            new_state = self.dispatch_transaction(tr, self.state)
        else:
            new_state = self.state.apply(tr)
        self.update_state(new_state)

    def update_state(self, state: EditorState):
        logger.debug(f"Session updated, document size {state.doc.content.size}")
        self.state = state

# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""Mapping between linear span documents and schema-constrained trees"""

from .basic_schema import BASIC_SCHEMA_SPEC, basic_schema, basic_schema_adapter
from .maintain_spans import patch_spans
from .patch_to_tree import patch_to_tree
from .patches import (
    DelPatch,
    InsertPatch,
    JoinBlockPatch,
    MarkPatch,
    MarkRange,
    PutPatch,
    SplicePatch,
    SplitBlockPatch,
    UpdateBlockPatch,
    patch_from_dict,
)
from .positions import (
    block_at_index,
    block_index_to_tree_index,
    events_with_index_changes,
    splice_index_to_tree_index,
    tree_range_to_linear_range,
)
from .schema_adapter import SchemaAdapter
from .spans import BlockMarker, BlockSpan, TextSpan, normalize_spans, spans_from_json, spans_to_json
from .sync import SyncController, SyncState
from .traversal import (
    EventType,
    RenderRole,
    TraversalEvent,
    doc_from_spans,
    spans_from_node,
    traverse_node,
    traverse_spans,
)
from .tree_to_linear import diff_spans, tree_to_linear

__all__ = [
    "BASIC_SCHEMA_SPEC",
    "BlockMarker",
    "BlockSpan",
    "DelPatch",
    "EventType",
    "InsertPatch",
    "JoinBlockPatch",
    "MarkPatch",
    "MarkRange",
    "PutPatch",
    "RenderRole",
    "SchemaAdapter",
    "SplicePatch",
    "SplitBlockPatch",
    "SyncController",
    "SyncState",
    "TextSpan",
    "TraversalEvent",
    "UpdateBlockPatch",
    "basic_schema",
    "basic_schema_adapter",
    "block_at_index",
    "block_index_to_tree_index",
    "diff_spans",
    "doc_from_spans",
    "events_with_index_changes",
    "normalize_spans",
    "patch_from_dict",
    "patch_spans",
    "patch_to_tree",
    "splice_index_to_tree_index",
    "spans_from_json",
    "spans_from_node",
    "spans_to_json",
    "traverse_node",
    "traverse_spans",
    "tree_range_to_linear_range",
    "tree_to_linear",
]

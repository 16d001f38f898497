# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Span Mirror - bidirectional mapping between linear rich-text documents and
schema-constrained editor trees
"""

from .model import SchemaAdapter, SyncController, basic_schema_adapter, doc_from_spans, spans_from_node
from .replica import LinearDocument

__version__ = "0.1.0"

__all__ = [
    "LinearDocument",
    "SchemaAdapter",
    "SyncController",
    "basic_schema_adapter",
    "doc_from_spans",
    "spans_from_node",
]

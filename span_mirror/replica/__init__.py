# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""Loro-backed linear document replica and its snapshots"""

from .document import ChangeEvent, DocView, LinearDocument, TextDraft
from .snapshot import export_snapshot, import_snapshot, load_snapshot, save_snapshot

__all__ = [
    "ChangeEvent",
    "DocView",
    "LinearDocument",
    "TextDraft",
    "export_snapshot",
    "import_snapshot",
    "load_snapshot",
    "save_snapshot",
]

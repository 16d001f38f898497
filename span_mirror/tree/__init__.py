# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

from .state import EditorSession, EditorState, TextSelection, Transaction

__all__ = [
    "EditorSession",
    "EditorState",
    "TextSelection",
    "Transaction",
]

# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Error taxonomy for span-mirror.

Unknown block types and unknown mark names are never errors: they are carried
through as opaque payloads. The exceptions below describe genuinely broken
input or state.
"""

from typing import Optional


class MirrorError(Exception):
    """Base class for all span-mirror errors"""


class SchemaMappingError(MirrorError):
    """A node flagged as an explicit block has no mapping and no unknown payload"""


class MalformedPathError(MirrorError, ValueError):
    """A patch path does not resolve to the number or object it should"""

    def __init__(self, message: str = "Invalid path", path: Optional[list] = None):
        super().__init__(message if path is None else f"{message}: {path!r}")
        self.path = path


class InvalidIndexError(MirrorError, IndexError):
    """A linear index could not be translated into a tree position"""


class DivergenceError(MirrorError):
    """The incrementally updated tree disagrees with a full rebuild from spans"""

    def __init__(self, start: int, end_a: int, end_b: int):
        super().__init__(f"Tree diverged from spans between {start} and {end_a}/{end_b}")
        self.start = start
        self.end_a = end_a
        self.end_b = end_b


class SelectionMappingError(MirrorError, IndexError):
    """A selection could not be restored onto a document"""

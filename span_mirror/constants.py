# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""Shared names and defaults"""

# Reserved node attributes, never declared by a schema description
IS_EXPLICIT_ATTR = "isAmgBlock"
UNKNOWN_BLOCK_ATTR = "unknownBlock"
UNKNOWN_ATTRS_ATTR = "unknownAttrs"
UNKNOWN_PARENT_BLOCK_ATTR = "unknownParentBlock"

RESERVED_ATTRS = (
    IS_EXPLICIT_ATTR,
    UNKNOWN_BLOCK_ATTR,
    UNKNOWN_ATTRS_ATTR,
    UNKNOWN_PARENT_BLOCK_ATTR,
)

UNKNOWN_LEAF_NODE = "unknownLeaf"
UNKNOWN_MARK = "unknownMark"
UNKNOWN_MARKS_ATTR = "unknownMarks"

DEFAULT_BLOCK_TYPE = "paragraph"

# Path of the text sequence inside a replicated document
DEFAULT_TEXT_PATH = ["text"]

# Mark expansion behaviours understood by the replica
EXPAND_BEFORE = "before"
EXPAND_AFTER = "after"
EXPAND_BOTH = "both"
EXPAND_NONE = "none"
EXPAND_VALUES = (EXPAND_BEFORE, EXPAND_AFTER, EXPAND_BOTH, EXPAND_NONE)

# Loro document layout
# Root map from text container names to the paths they hold
PATHS_CONTAINER = "spanMirrorPaths"
# A block marker is this character carrying the block value under BLOCK_MARK_KEY
BLOCK_MARKER_CHAR = "\ufffc"
BLOCK_MARK_KEY = "spanMirrorBlock"

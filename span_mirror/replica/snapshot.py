# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Loro snapshots of a linear document.

A linear document is a ``LoroDoc``, so its snapshot is the document's own
``ExportMode.Snapshot()`` export: the full history, including the text
containers and the ``spanMirrorPaths`` map naming them. Mark expansion
settings are local configuration and are not persisted; restored marks
expand the default way until they are written again.
"""

import logging

from loro import ExportMode, LoroDoc

from ..constants import PATHS_CONTAINER
from .document import LinearDocument

logger = logging.getLogger(__name__)


def export_snapshot(document: LinearDocument) -> bytes:
    """Export ``document`` as a Loro snapshot"""
    document.doc.commit()
    snapshot = document.doc.export(ExportMode.Snapshot())
    logger.info(f"Exported snapshot with {len(document.paths())} texts ({len(snapshot)} bytes)")
    return snapshot


def import_snapshot(data: bytes) -> LinearDocument:
    """Restore a linear document from a Loro snapshot.

    Raises:
        ValueError: The data is not a Loro snapshot of a span-mirror document
    """
    if not data:
        raise ValueError("Empty snapshot")
    doc = LoroDoc()
    try:
        doc.import_(data)
    except Exception as e:
        raise ValueError(f"Invalid snapshot: {e}")
    if doc.get_map(PATHS_CONTAINER).is_empty():
        raise ValueError("Snapshot does not hold a span-mirror document")
    document = LinearDocument(doc)
    logger.info(f"Imported snapshot with {len(document.paths())} texts ({len(data)} bytes)")
    return document


def save_snapshot(document: LinearDocument, file_path: str) -> None:
    snapshot = export_snapshot(document)
    with open(file_path, "wb") as f:
        f.write(snapshot)
    logger.info(f"Saved snapshot to {file_path}")


def load_snapshot(file_path: str) -> LinearDocument:
    with open(file_path, "rb") as f:
        data = f.read()
    document = import_snapshot(data)
    logger.info(f"Loaded snapshot from {file_path}")
    return document

"""Filesystem receipt store, for single-machine setups and tests."""

from __future__ import annotations

import logging
from pathlib import Path

from chatledger.storage.base import ReceiptStore

logger = logging.getLogger(__name__)


class LocalReceiptStore(ReceiptStore):
    """Write receipts below a root directory.

    Args:
        root: Base directory. Created on first write.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def put(self, path: str, content: bytes, mime_type: str) -> str:
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise ValueError(f"Storage path escapes receipt root: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        logger.debug("Stored %s (%s, %d bytes)", path, mime_type, len(content))
        return target.as_uri()

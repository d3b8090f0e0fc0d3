"""Receipt object storage interface.

Backends store receipt bytes under a logical path of the form
`{project_id}/{uuid}-{filename}` (or `{project_id}/inbox/...` for
unassigned receipts) and return a URL that is saved on the expense.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from uuid import uuid4


class ReceiptStore(ABC):
    @abstractmethod
    def put(self, path: str, content: bytes, mime_type: str) -> str:
        """Store content at path and return a URL for it."""


def receipt_path(project_id: str, filename: str, inbox: bool = False) -> str:
    """Collision-free storage path for an exported file."""
    prefix = f"{project_id}/inbox" if inbox else project_id
    return f"{prefix}/{uuid4()}-{filename}"

"""Google Drive receipt store.

Auth: service account key file. Scope: drive.file (only files the
service account created). Every receipt is uploaded into one folder; the
logical storage path becomes the Drive file name so it stays unique.
"""

from __future__ import annotations

import io
import logging

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseUpload

from chatledger.storage.base import ReceiptStore

logger = logging.getLogger(__name__)

DRIVE_SCOPE = ["https://www.googleapis.com/auth/drive.file"]


class DriveReceiptStore(ReceiptStore):
    """Upload receipts to a Google Drive folder.

    Args:
        service_account_file: Path to service account JSON key file.
        folder_id: Drive folder that receives the uploads.
    """

    def __init__(self, service_account_file: str, folder_id: str):
        self.service_account_file = service_account_file
        self.folder_id = folder_id
        self._service = None

    @property
    def service(self):
        """Lazy-initialize the Drive API service."""
        if self._service is None:
            credentials = service_account.Credentials.from_service_account_file(
                self.service_account_file,
                scopes=DRIVE_SCOPE,
            )
            self._service = build("drive", "v3", credentials=credentials)
        return self._service

    def put(self, path: str, content: bytes, mime_type: str) -> str:
        """Upload content and return its webViewLink.

        Errors from the Drive API propagate; the import pipeline counts
        them per row.
        """
        metadata = {
            "name": path.replace("/", "_"),
            "parents": [self.folder_id],
            "appProperties": {"storage_path": path},
        }
        media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type)
        result = self.service.files().create(
            body=metadata,
            media_body=media,
            fields="id, webViewLink",
        ).execute()
        link = result.get("webViewLink") or f"https://drive.google.com/file/d/{result['id']}/view"
        logger.info("Uploaded %s to Drive: %s", path, link)
        return link

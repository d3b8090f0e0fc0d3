"""Export bundle loader: `_chat.txt` plus media from a WhatsApp export.

Accepts either the `.zip` produced by "Export chat → Attach media" or a
bare `.txt` transcript. Media entries are kept in archive order, keyed by
basename, so the receipt matcher's "first unused image" rule is stable.
"""

from __future__ import annotations

import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from chatledger.parsers.base import (
    AUDIO_EXTENSIONS,
    IMAGE_EXTENSIONS,
    VIDEO_EXTENSIONS,
)

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".zip", ".txt"}

MEDIA_EXTENSIONS = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS | AUDIO_EXTENSIONS | {".pdf"}

MIME_TYPES = {
    ".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".png": "image/png",
    ".webp": "image/webp", ".gif": "image/gif", ".heic": "image/heic",
    ".mp4": "video/mp4", ".mov": "video/quicktime", ".3gp": "video/3gpp",
    ".mkv": "video/x-matroska",
    ".mp3": "audio/mpeg", ".ogg": "audio/ogg", ".opus": "audio/opus",
    ".wav": "audio/wav", ".m4a": "audio/mp4", ".aac": "audio/aac",
    ".pdf": "application/pdf",
}


class ExportFormatError(Exception):
    """Raised when an export cannot be read (user-facing validation error)."""


@dataclass
class ExportBundle:
    """Transcript text plus named media files from one export."""
    chat_text: str
    source_name: str
    media_files: dict[str, bytes] = field(default_factory=dict)


def mime_type_for(filename: str) -> str:
    return MIME_TYPES.get(Path(filename).suffix.lower(), "application/octet-stream")


def _is_chat_entry(basename: str) -> bool:
    lower = basename.lower()
    return lower.endswith("_chat.txt") or ("chat" in lower and lower.endswith(".txt"))


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.warning("Transcript is not valid UTF-8, replacing undecodable bytes")
        return data.decode("utf-8", errors="replace")


def load_export(path: Path) -> ExportBundle:
    """Read an export from disk.

    Raises:
        ExportFormatError: Unknown extension, unreadable archive, or an
            archive without a chat text entry.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise ExportFormatError(f"Unsupported export type: {path.suffix or path.name}")

    if suffix == ".txt":
        try:
            return ExportBundle(chat_text=_decode(path.read_bytes()), source_name=path.name)
        except OSError as e:
            raise ExportFormatError(f"Cannot read transcript {path.name}: {e}") from e

    try:
        archive = zipfile.ZipFile(path)
    except (OSError, zipfile.BadZipFile) as e:
        raise ExportFormatError(f"Not a valid WhatsApp export ZIP: {path.name}") from e

    chat_text: str | None = None
    media: dict[str, bytes] = {}
    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            basename = PurePosixPath(info.filename).name
            if not basename or basename.startswith("."):
                continue
            if chat_text is None and _is_chat_entry(basename):
                chat_text = _decode(archive.read(info))
            elif Path(basename).suffix.lower() in MEDIA_EXTENSIONS:
                media[basename] = archive.read(info)

    if chat_text is None:
        raise ExportFormatError(
            f"No chat text file found in {path.name}. Expected _chat.txt."
        )

    logger.info("Loaded %s: %d media file(s)", path.name, len(media))
    return ExportBundle(chat_text=chat_text, source_name=path.name, media_files=media)

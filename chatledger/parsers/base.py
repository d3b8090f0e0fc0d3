"""Base parser: message data structures and shared utility functions."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

# Media kinds
IMAGE = "image"
VIDEO = "video"
AUDIO = "audio"
DOCUMENT = "document"

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".heic"}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".3gp", ".mkv"}
AUDIO_EXTENSIONS = {".mp3", ".ogg", ".opus", ".wav", ".m4a", ".aac"}

# BOM, zero-width space/joiners, LRM/RLM, bidi embeddings and isolates
_CONTROL_MARKS_RE = re.compile("[\ufeff\u200b-\u200f\u202a-\u202e\u2066-\u2069]")


@dataclass(frozen=True)
class Text:
    """Body variant: plain user text."""


@dataclass(frozen=True)
class Media:
    """Body variant: a media emission, optionally naming its attached file."""
    kind: str              # image, video, audio, document
    filename: str | None = None


@dataclass(frozen=True)
class ParsedMessage:
    """One logical chat entry: a header line plus folded continuation lines."""
    timestamp: datetime
    sender: str            # display name exactly as exported
    text: str              # full body, attachment tags included
    notes: str             # body with attachment tags / omission markers stripped
    body: Text | Media = field(default_factory=Text)
    hash: str = ""

    @property
    def is_media(self) -> bool:
        return isinstance(self.body, Media)

    @property
    def media_type(self) -> str | None:
        return self.body.kind if isinstance(self.body, Media) else None

    @property
    def attached_filename(self) -> str | None:
        return self.body.filename if isinstance(self.body, Media) else None


@dataclass(frozen=True)
class MediaEvent:
    """A media emission indexed separately for proximity search."""
    timestamp: datetime
    sender: str
    media_type: str
    attached_filename: str | None = None


@dataclass
class ParseResult:
    messages: list[ParsedMessage] = field(default_factory=list)
    media_events: list[MediaEvent] = field(default_factory=list)


def strip_control_marks(raw: str) -> str:
    """Remove BOM and bidi/zero-width marks, normalize line endings."""
    text = _CONTROL_MARKS_RE.sub("", raw)
    return text.replace("\r\n", "\n").replace("\r", "\n")


def media_kind_for_filename(filename: str) -> str:
    """Bucket a filename into image/video/audio/document by extension."""
    suffix = Path(filename).suffix.lower()
    if suffix in IMAGE_EXTENSIONS:
        return IMAGE
    if suffix in VIDEO_EXTENSIONS:
        return VIDEO
    if suffix in AUDIO_EXTENSIONS:
        return AUDIO
    return DOCUMENT


def compute_message_hash(timestamp: datetime, sender: str, text: str) -> str:
    """Natural dedup key: SHA256(iso_timestamp|sender|text)."""
    key = f"{timestamp.isoformat()}|{sender}|{text}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def compute_file_hash(file_path: Path) -> str:
    """SHA256 of entire file contents."""
    h = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def unique_senders(messages: list[ParsedMessage]) -> list[str]:
    """Sender names in order of first appearance."""
    return list(dict.fromkeys(m.sender for m in messages))

"""WhatsApp chat export parser.

Turns a `_chat.txt` export into ordered ParsedMessage records plus a
parallel list of MediaEvents. Two header grammars are recognised:

    [2025-10-08, 22:07:34] Ahmed: message         (iOS, ISO date, 24h)
    8/10/25, 10:07 PM - Ahmed: message             (Android, D/M/YY, 12h)

Lines without a header are continuations of the open message. The parser
never raises on malformed content: unparseable headers degrade to
continuation lines and an empty result means "no messages found".
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from chatledger.parsers.base import (
    AUDIO,
    DOCUMENT,
    IMAGE,
    VIDEO,
    Media,
    MediaEvent,
    ParsedMessage,
    ParseResult,
    Text,
    compute_message_hash,
    media_kind_for_filename,
    strip_control_marks,
)

logger = logging.getLogger(__name__)

# [YYYY-MM-DD, HH:MM:SS] rest
_ISO_HEADER_RE = re.compile(
    r"^\[(\d{4})-(\d{1,2})-(\d{1,2}),\s*(\d{1,2}):(\d{2}):(\d{2})\]\s*(.*)$"
)

# D/M/YY, H:MM[:SS] [AM|PM] - rest
_SLASH_HEADER_RE = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{2}|\d{4}),\s*(\d{1,2}):(\d{2})(?::(\d{2}))?"
    r"(?:\s*([AaPp])\.?\s?[Mm]\.?)?\s+-\s+(.*)$"
)

# Body phrases that mark WhatsApp system notices, not user content
SYSTEM_PATTERNS = (
    "messages and calls are end-to-end encrypted",
    "this message was deleted",
    "you deleted this message",
    "waiting for this message",
    "security code changed",
    "joined using this group",
    "left this group",
    "changed the group",
    "changed this group",
    "changed the subject",
    "added you",
    "removed you",
    "الرسائل والمكالمات مشفرة",
    "تم حذف هذه الرسالة",
    "لقد حذفت هذه الرسالة",
    "في انتظار هذه الرسالة",
)

# Group creation notices are the whole body and end with the quoted group name
_GROUP_CREATED_RE = re.compile(
    r"(?:.+\s)?(?:created group|أنشأت? المجموعة)\s*[\"“«][^\"”»]*[\"”»]",
    re.IGNORECASE,
)

_OMITTED_RE = re.compile(
    r"<?\b(image|video|audio|sticker|document|GIF|media)\s*omitted>?",
    re.IGNORECASE,
)
_ATTACHED_RE = re.compile(r"<attached:\s*([^>]+?)\s*>", re.IGNORECASE)
_FILE_ATTACHED_RE = re.compile(r"(\S+\.\w{2,5})\s*\(file attached\)", re.IGNORECASE)

_OMITTED_KINDS = {
    "image": IMAGE,
    "sticker": IMAGE,
    "video": VIDEO,
    "gif": VIDEO,
    "audio": AUDIO,
    "document": DOCUMENT,
    "media": DOCUMENT,
}


class WhatsAppTranscriptParser:
    """Parse raw transcript text into messages and media events.

    Attributes:
        skipped_count: Entries dropped during the last parse() call (system
            notices, empty bodies, orphan continuation lines).
    """

    def __init__(self):
        self.skipped_count: int = 0

    def detect(self, raw_text: str) -> bool:
        """Return True if the text contains at least one header line."""
        for line in strip_control_marks(raw_text).split("\n"):
            if parse_header(line) is not None:
                return True
        return False

    def parse(self, raw_text: str) -> ParseResult:
        self.skipped_count = 0
        result = ParseResult()
        current: tuple[datetime, str, list[str]] | None = None

        for line in strip_control_marks(raw_text).split("\n"):
            header = parse_header(line)
            if header is None:
                if current is not None:
                    current[2].append(line)
                elif line.strip():
                    self.skipped_count += 1
                continue

            if current is not None:
                self._flush(current, result)
            timestamp, sender, body = header
            if sender is None:
                # Timestamped system line ("X added Y"): closes the open message
                self.skipped_count += 1
                current = None
            else:
                current = (timestamp, sender, [body])

        if current is not None:
            self._flush(current, result)

        logger.debug(
            "Parsed %d messages (%d media), skipped %d entries",
            len(result.messages), len(result.media_events), self.skipped_count,
        )
        return result

    def _flush(
        self, current: tuple[datetime, str, list[str]], result: ParseResult,
    ) -> None:
        timestamp, sender, lines = current
        text = "\n".join(lines).strip()
        if not text or is_system_notice(text):
            self.skipped_count += 1
            return

        body = classify_body(text)
        message = ParsedMessage(
            timestamp=timestamp,
            sender=sender,
            text=text,
            notes=strip_media_markers(text),
            body=body,
            hash=compute_message_hash(timestamp, sender, text),
        )
        result.messages.append(message)
        if isinstance(body, Media):
            result.media_events.append(MediaEvent(
                timestamp=timestamp,
                sender=sender,
                media_type=body.kind,
                attached_filename=body.filename,
            ))


def parse_chat(raw_text: str) -> ParseResult:
    """Convenience wrapper around WhatsAppTranscriptParser.parse()."""
    return WhatsAppTranscriptParser().parse(raw_text)


def parse_header(line: str) -> tuple[datetime, str | None, str] | None:
    """Match a header line in either grammar.

    Returns (timestamp, sender, body), with sender None for a timestamped
    system line that carries no "Sender:" part. Returns None when the line
    is not a header, including headers whose date fails calendar resolution.
    """
    match = _ISO_HEADER_RE.match(line)
    if match:
        year, month, day, hour, minute, second, rest = match.groups()
        timestamp = _resolve(int(year), int(month), int(day),
                             int(hour), int(minute), int(second))
    else:
        match = _SLASH_HEADER_RE.match(line)
        if not match:
            return None
        day, month, year, hour, minute, second, meridiem, rest = match.groups()
        hour_24 = to_24_hour(int(hour), meridiem)
        if hour_24 is None:
            return None
        full_year = int(year) + 2000 if len(year) == 2 else int(year)
        timestamp = _resolve(full_year, int(month), int(day),
                             hour_24, int(minute), int(second or 0))

    if timestamp is None:
        return None

    sender, sep, body = rest.partition(":")
    sender = sender.strip()
    if not sep or not sender:
        return timestamp, None, rest.strip()
    return timestamp, sender, body.strip()


def to_24_hour(hour: int, meridiem: str | None) -> int | None:
    """12 AM -> 0, 12 PM -> 12, PM adds 12. No meridiem means 24h input."""
    if meridiem is None:
        return hour
    if not 1 <= hour <= 12:
        return None
    if meridiem.upper() == "A":
        return 0 if hour == 12 else hour
    return hour if hour == 12 else hour + 12


def _resolve(year, month, day, hour, minute, second) -> datetime | None:
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None


def is_system_notice(text: str) -> bool:
    if _GROUP_CREATED_RE.fullmatch(text.strip()):
        return True
    lower = text.lower()
    return any(p in lower for p in SYSTEM_PATTERNS)


def classify_body(text: str) -> Text | Media:
    """Tag a body as Media (with kind and optional filename) or Text."""
    attached = _ATTACHED_RE.search(text) or _FILE_ATTACHED_RE.search(text)
    if attached:
        filename = attached.group(1).strip()
        return Media(kind=media_kind_for_filename(filename), filename=filename)

    omitted = _OMITTED_RE.search(text)
    if omitted:
        return Media(kind=_OMITTED_KINDS[omitted.group(1).lower()])
    return Text()


def strip_media_markers(text: str) -> str:
    """Remove attachment tags and "X omitted" markers, leaving user notes."""
    text = _ATTACHED_RE.sub("", text)
    text = _FILE_ATTACHED_RE.sub("", text)
    text = _OMITTED_RE.sub("", text)
    return text.strip()

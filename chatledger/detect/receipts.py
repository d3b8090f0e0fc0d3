"""Receipt matching: link exported image files to detected expenses.

Two passes over the candidates, in input order:

1. Explicit reference: the candidate's own message names an attached file
   that is present in the export. Bound at high confidence.
2. Proximity: the nearest image event (no explicit filename) sent by the
   same partner within MATCH_WINDOW of the candidate. Within HIGH_WINDOW the
   match is high confidence, otherwise medium. The file bound is the first
   unused image in the export: raw filenames carry no reliable timestamp.

Each filename is bound at most once per run. Unmatched candidates map to
None so callers can route them to manual review.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from chatledger.detect.expenses import ExpenseCandidate
from chatledger.parsers.base import IMAGE, MediaEvent, media_kind_for_filename

logger = logging.getLogger(__name__)

MATCH_WINDOW = timedelta(minutes=5)
HIGH_WINDOW = timedelta(minutes=2)

HIGH = "high"
MEDIUM = "medium"


@dataclass(frozen=True)
class ReceiptMatch:
    """A proposed association between a candidate and an export file."""
    filename: str
    confidence: str           # high or medium
    event: MediaEvent | None = None
    match_type: str = "explicit"   # explicit, proximity


class ReceiptMatcher:
    """Match expense candidates to image files from the same export.

    Args:
        window: Maximum time between candidate and image event.
        high_window: Time within which a proximity match is high confidence.
    """

    def __init__(
        self,
        window: timedelta = MATCH_WINDOW,
        high_window: timedelta = HIGH_WINDOW,
    ):
        self.window = window
        self.high_window = high_window

    def match(
        self,
        candidates: list[ExpenseCandidate],
        media_events: list[MediaEvent],
        available_files: list[str],
        sender_to_partner: dict[str, str],
    ) -> dict[int, ReceiptMatch | None]:
        """Return {candidate index: ReceiptMatch or None} for every candidate.

        Args:
            candidates: Detected expenses, in review order.
            media_events: Media events from the same transcript.
            available_files: Filenames present in the export, in archive order.
            sender_to_partner: WhatsApp display name → partner id. Two names
                mapped to one partner count as the same party.
        """
        available = set(available_files)
        consumed: set[str] = set()
        matches: dict[int, ReceiptMatch | None] = {i: None for i in range(len(candidates))}

        # Pass 1: explicit attachment reference
        for idx, cand in enumerate(candidates):
            filename = cand.message.attached_filename
            if filename and filename in available and filename not in consumed:
                event = _event_for_file(media_events, filename)
                matches[idx] = ReceiptMatch(
                    filename=filename, confidence=HIGH,
                    event=event, match_type="explicit",
                )
                consumed.add(filename)

        # Pass 2: same-partner image events near the candidate's timestamp
        image_events = [
            e for e in media_events
            if e.media_type == IMAGE and not e.attached_filename
        ]
        for idx, cand in enumerate(candidates):
            if matches[idx] is not None:
                continue
            partner = sender_to_partner.get(cand.message.sender)
            if partner is None:
                continue

            best: MediaEvent | None = None
            best_delta: timedelta | None = None
            for event in image_events:
                if sender_to_partner.get(event.sender) != partner:
                    continue
                delta = abs(event.timestamp - cand.message.timestamp)
                if delta > self.window:
                    continue
                if best_delta is None or delta < best_delta:
                    best, best_delta = event, delta

            if best is None:
                continue

            filename = _first_unused_image(available_files, consumed)
            if filename is None:
                logger.debug("No unused image left for candidate %d", idx)
                continue

            confidence = HIGH if best_delta <= self.high_window else MEDIUM
            matches[idx] = ReceiptMatch(
                filename=filename, confidence=confidence,
                event=best, match_type="proximity",
            )
            consumed.add(filename)

        matched = sum(1 for m in matches.values() if m is not None)
        logger.info("Matched %d of %d candidate(s) to receipts", matched, len(candidates))
        return matches


def unconsumed_files(
    available_files: list[str], matches: dict[int, ReceiptMatch | None],
) -> list[str]:
    """Files not bound by any match, in export order."""
    used = {m.filename for m in matches.values() if m is not None}
    return [f for f in available_files if f not in used]


def _first_unused_image(available_files: list[str], consumed: set[str]) -> str | None:
    for filename in available_files:
        if filename not in consumed and media_kind_for_filename(filename) == IMAGE:
            return filename
    return None


def _event_for_file(media_events: list[MediaEvent], filename: str) -> MediaEvent | None:
    for event in media_events:
        if event.attached_filename == filename:
            return event
    return None

"""Tests for detect.receipts — explicit and proximity receipt matching."""

from datetime import datetime, timedelta

from chatledger.detect.expenses import ExpenseCandidate
from chatledger.detect.receipts import (
    HIGH,
    MEDIUM,
    ReceiptMatcher,
    unconsumed_files,
)
from chatledger.parsers.base import IMAGE, VIDEO, Media, MediaEvent, ParsedMessage, Text

T0 = datetime(2024, 1, 15, 10, 30)
PARTNERS = {"Ahmed": "ahmed", "Ahmed Work": "ahmed", "Mona": "mona"}


def _candidate(sender="Ahmed", ts=T0, filename=None, amount=500.0):
    body = Media(kind=IMAGE, filename=filename) if filename else Text()
    message = ParsedMessage(
        timestamp=ts, sender=sender, text=f"{amount} EGP",
        notes=f"{amount} EGP", body=body,
    )
    return ExpenseCandidate(message=message, amount=amount, has_currency_hint=True)


def _image(sender="Ahmed", offset=timedelta(0), media_type=IMAGE, filename=None):
    return MediaEvent(
        timestamp=T0 + offset, sender=sender,
        media_type=media_type, attached_filename=filename,
    )


class TestExplicitMatch:
    def test_attached_file_in_export(self):
        cand = _candidate(filename="a.jpg")
        event = _image(filename="a.jpg")
        matches = ReceiptMatcher().match([cand], [event], ["a.jpg"], PARTNERS)
        assert matches[0].filename == "a.jpg"
        assert matches[0].confidence == HIGH
        assert matches[0].match_type == "explicit"
        assert matches[0].event == event

    def test_attached_file_missing_from_export(self):
        cand = _candidate(filename="gone.jpg")
        matches = ReceiptMatcher().match([cand], [], ["other.jpg"], PARTNERS)
        assert matches == {0: None}

    def test_explicit_wins_before_proximity(self):
        explicit = _candidate(filename="b.jpg", ts=T0 + timedelta(seconds=30))
        nearby = _candidate(ts=T0)
        events = [_image(offset=timedelta(seconds=10))]
        matches = ReceiptMatcher().match(
            [nearby, explicit], events, ["b.jpg", "c.jpg"], PARTNERS,
        )
        assert matches[1].filename == "b.jpg"
        assert matches[0].filename == "c.jpg"
        assert matches[0].match_type == "proximity"


class TestProximityMatch:
    def test_within_high_window(self):
        matches = ReceiptMatcher().match(
            [_candidate()], [_image(offset=timedelta(seconds=90))], ["a.jpg"], PARTNERS,
        )
        assert matches[0].filename == "a.jpg"
        assert matches[0].confidence == HIGH
        assert matches[0].match_type == "proximity"

    def test_before_candidate_counts(self):
        matches = ReceiptMatcher().match(
            [_candidate()], [_image(offset=-timedelta(seconds=60))], ["a.jpg"], PARTNERS,
        )
        assert matches[0].confidence == HIGH

    def test_within_window_is_medium(self):
        matches = ReceiptMatcher().match(
            [_candidate()], [_image(offset=timedelta(minutes=3))], ["a.jpg"], PARTNERS,
        )
        assert matches[0].confidence == MEDIUM

    def test_outside_window_rejected(self):
        matches = ReceiptMatcher().match(
            [_candidate()], [_image(offset=timedelta(minutes=6))], ["a.jpg"], PARTNERS,
        )
        assert matches[0] is None

    def test_custom_window(self):
        matcher = ReceiptMatcher(window=timedelta(minutes=10), high_window=timedelta(minutes=1))
        matches = matcher.match(
            [_candidate()], [_image(offset=timedelta(minutes=6))], ["a.jpg"], PARTNERS,
        )
        assert matches[0].confidence == MEDIUM

    def test_different_partner_rejected(self):
        matches = ReceiptMatcher().match(
            [_candidate()], [_image(sender="Mona")], ["a.jpg"], PARTNERS,
        )
        assert matches[0] is None

    def test_alias_of_same_partner_accepted(self):
        matches = ReceiptMatcher().match(
            [_candidate()], [_image(sender="Ahmed Work")], ["a.jpg"], PARTNERS,
        )
        assert matches[0].filename == "a.jpg"

    def test_unmapped_sender_rejected(self):
        matches = ReceiptMatcher().match(
            [_candidate(sender="Stranger")], [_image(sender="Stranger")], ["a.jpg"], PARTNERS,
        )
        assert matches[0] is None

    def test_non_image_events_ignored(self):
        matches = ReceiptMatcher().match(
            [_candidate()], [_image(media_type=VIDEO)], ["a.jpg"], PARTNERS,
        )
        assert matches[0] is None

    def test_skips_non_image_files(self):
        matches = ReceiptMatcher().match(
            [_candidate()], [_image()], ["invoice.pdf", "clip.mp4", "b.jpg"], PARTNERS,
        )
        assert matches[0].filename == "b.jpg"

    def test_no_files_left(self):
        matches = ReceiptMatcher().match(
            [_candidate()], [_image()], [], PARTNERS,
        )
        assert matches[0] is None

    def test_nearest_event_decides_confidence(self):
        events = [
            _image(offset=timedelta(minutes=4)),
            _image(offset=timedelta(seconds=20)),
        ]
        matches = ReceiptMatcher().match([_candidate()], events, ["a.jpg"], PARTNERS)
        assert matches[0].confidence == HIGH
        assert matches[0].event == events[1]


class TestEachFileOnce:
    def test_single_file_bound_once(self):
        cands = [_candidate(), _candidate(ts=T0 + timedelta(seconds=30), amount=700.0)]
        matches = ReceiptMatcher().match(cands, [_image()], ["a.jpg"], PARTNERS)
        assert matches[0].filename == "a.jpg"
        assert matches[1] is None

    def test_files_assigned_in_export_order(self):
        cands = [_candidate(), _candidate(ts=T0 + timedelta(seconds=30), amount=700.0)]
        matches = ReceiptMatcher().match(cands, [_image()], ["a.jpg", "b.jpg"], PARTNERS)
        assert [matches[0].filename, matches[1].filename] == ["a.jpg", "b.jpg"]

    def test_every_candidate_has_entry(self):
        cands = [_candidate(sender="Nobody"), _candidate(sender="Nobody")]
        assert ReceiptMatcher().match(cands, [], [], PARTNERS) == {0: None, 1: None}


class TestUnconsumedFiles:
    def test_returns_unused_in_order(self):
        matches = ReceiptMatcher().match(
            [_candidate(filename="b.jpg")], [], ["a.jpg", "b.jpg", "c.pdf"], PARTNERS,
        )
        assert unconsumed_files(["a.jpg", "b.jpg", "c.pdf"], matches) == ["a.jpg", "c.pdf"]

"""Tests for parsers.base: hashing and input cleanup."""

from datetime import datetime

from chatledger.parsers.base import (
    DOCUMENT,
    IMAGE,
    VIDEO,
    ParsedMessage,
    compute_file_hash,
    compute_message_hash,
    media_kind_for_filename,
    strip_control_marks,
    unique_senders,
)

TS = datetime(2024, 1, 15, 10, 30)


def _msg(sender: str) -> ParsedMessage:
    return ParsedMessage(timestamp=TS, sender=sender, text="x", notes="x")


class TestComputeMessageHash:
    def test_deterministic(self):
        assert compute_message_hash(TS, "Ahmed", "500 EGP") == compute_message_hash(TS, "Ahmed", "500 EGP")

    def test_sha256_hex(self):
        h = compute_message_hash(TS, "Ahmed", "500 EGP")
        assert len(h) == 64
        int(h, 16)

    def test_differs_on_any_field(self):
        base = compute_message_hash(TS, "Ahmed", "500 EGP")
        other_ts = compute_message_hash(datetime(2024, 1, 15, 10, 31), "Ahmed", "500 EGP")
        other_sender = compute_message_hash(TS, "Mona", "500 EGP")
        other_text = compute_message_hash(TS, "Ahmed", "501 EGP")
        assert len({base, other_ts, other_sender, other_text}) == 4


class TestComputeFileHash:
    def test_same_content_same_hash(self, tmp_path):
        a = tmp_path / "a.txt"
        b = tmp_path / "b.txt"
        a.write_bytes(b"chat")
        b.write_bytes(b"chat")
        assert compute_file_hash(a) == compute_file_hash(b)


class TestMediaKind:
    def test_buckets(self):
        assert media_kind_for_filename("IMG-1.JPG") == IMAGE
        assert media_kind_for_filename("clip.mp4") == VIDEO
        assert media_kind_for_filename("invoice.pdf") == DOCUMENT
        assert media_kind_for_filename("noext") == DOCUMENT


class TestStripControlMarks:
    def test_removes_bom_and_bidi(self):
        assert strip_control_marks("\ufeffa\u200eb\u202bc\u2066d") == "abcd"

    def test_normalizes_line_endings(self):
        assert strip_control_marks("a\r\nb\rc") == "a\nb\nc"


class TestUniqueSenders:
    def test_first_appearance_order(self):
        msgs = [_msg("Mona"), _msg("Ahmed"), _msg("Mona"), _msg("Karim")]
        assert unique_senders(msgs) == ["Mona", "Ahmed", "Karim"]

    def test_empty(self):
        assert unique_senders([]) == []

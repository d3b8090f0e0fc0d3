"""Tests for parsers.archive — loading .zip and .txt exports."""

import zipfile

import pytest

from chatledger.parsers.archive import (
    ExportFormatError,
    load_export,
    mime_type_for,
)

CHAT = "[2024-01-15, 10:30:00] Ahmed: Paid 1500 EGP\n"


def _make_zip(path, entries: dict[str, bytes]):
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return path


class TestLoadZip:
    def test_chat_and_media(self, tmp_path):
        path = _make_zip(tmp_path / "WhatsApp Chat - Villa.zip", {
            "_chat.txt": CHAT.encode("utf-8"),
            "00000012-PHOTO-2024-01-15-10-31-00.jpg": b"jpeg-bytes",
            "invoice.pdf": b"pdf-bytes",
        })
        bundle = load_export(path)
        assert bundle.chat_text == CHAT
        assert bundle.source_name == "WhatsApp Chat - Villa.zip"
        assert bundle.media_files == {
            "00000012-PHOTO-2024-01-15-10-31-00.jpg": b"jpeg-bytes",
            "invoice.pdf": b"pdf-bytes",
        }

    def test_media_keyed_by_basename_in_archive_order(self, tmp_path):
        path = _make_zip(tmp_path / "export.zip", {
            "Villa/_chat.txt": CHAT.encode("utf-8"),
            "Villa/b.jpg": b"b",
            "Villa/a.jpg": b"a",
        })
        bundle = load_export(path)
        assert list(bundle.media_files) == ["b.jpg", "a.jpg"]

    def test_skips_hidden_and_non_media(self, tmp_path):
        path = _make_zip(tmp_path / "export.zip", {
            "_chat.txt": CHAT.encode("utf-8"),
            ".DS_Store": b"junk",
            "contact.vcf": b"vcard",
        })
        assert load_export(path).media_files == {}

    def test_bom_stripped(self, tmp_path):
        path = _make_zip(tmp_path / "export.zip", {
            "_chat.txt": CHAT.encode("utf-8-sig"),
        })
        assert load_export(path).chat_text == CHAT

    def test_missing_chat_entry(self, tmp_path):
        path = _make_zip(tmp_path / "export.zip", {"a.jpg": b"a"})
        with pytest.raises(ExportFormatError, match="No chat text file"):
            load_export(path)

    def test_corrupt_zip(self, tmp_path):
        path = tmp_path / "broken.zip"
        path.write_bytes(b"not a zip at all")
        with pytest.raises(ExportFormatError, match="Not a valid"):
            load_export(path)


class TestLoadTxt:
    def test_plain_transcript(self, tmp_path):
        path = tmp_path / "WhatsApp Chat with Villa.txt"
        path.write_text(CHAT, encoding="utf-8")
        bundle = load_export(path)
        assert bundle.chat_text == CHAT
        assert bundle.media_files == {}

    def test_invalid_utf8_replaced(self, tmp_path):
        path = tmp_path / "chat.txt"
        path.write_bytes(b"[2024-01-15, 10:30:00] Ahmed: \xff\xfe ok\n")
        assert "ok" in load_export(path).chat_text

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "chat.rar"
        path.write_bytes(b"x")
        with pytest.raises(ExportFormatError, match="Unsupported"):
            load_export(path)


class TestMimeType:
    def test_known_types(self):
        assert mime_type_for("a.JPG") == "image/jpeg"
        assert mime_type_for("a.pdf") == "application/pdf"

    def test_unknown_type(self):
        assert mime_type_for("a.xyz") == "application/octet-stream"

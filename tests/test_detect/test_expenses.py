"""Tests for detect.expenses — amount extraction and candidate flags."""

from datetime import datetime

import pytest

from chatledger.detect.expenses import (
    ExpenseDetector,
    extract_amounts,
    has_currency_hint,
    is_total_line,
    normalize_digits,
)
from chatledger.parsers.base import IMAGE, Media, ParsedMessage


def _msg(text: str, notes: str | None = None) -> ParsedMessage:
    return ParsedMessage(
        timestamp=datetime(2024, 1, 15, 10, 30),
        sender="Ahmed",
        text=text,
        notes=text if notes is None else notes,
    )


@pytest.fixture
def detector():
    return ExpenseDetector(min_amount=10, strict_currency=True)


class TestNormalizeDigits:
    def test_arabic_indic(self):
        assert normalize_digits("١٢٥٠") == "1250"

    def test_extended_arabic_indic(self):
        assert normalize_digits("۳۵۰") == "350"

    def test_separators(self):
        assert normalize_digits("1,250") == "1250"
        assert normalize_digits("١٬٢٥٠٫٥") == "1250.5"


class TestExtractAmounts:
    def test_plain_numbers_in_order(self):
        assert extract_amounts("12.5 and 3") == [12.5, 3.0]

    def test_thousands_separator(self):
        assert extract_amounts("paid 1,500 EGP") == [1500.0]

    def test_k_multiplier(self):
        assert extract_amounts("cement 5k LE") == [5000.0]
        assert extract_amounts("2.5K") == [2500.0]

    def test_k_inside_word_ignored(self):
        assert extract_amounts("3 kilos") == [3.0]

    def test_arabic_digits(self):
        assert extract_amounts("دفعت ١٢٥٠ جنيه") == [1250.0]

    def test_no_numbers(self):
        assert extract_amounts("no money here") == []

    @pytest.mark.parametrize("text", [
        "paid 500 EGP deposit, delivery on 20/01/2024",
        "paid 500 EGP, delivery 2024-01-20",
        "500 EGP, due 20.1.24",
        "500 EGP by 20/1",
        "plumber at 10:30, 500 EGP",
        "500 EGP at 9:05:12 PM",
        "دفعت ٥٠٠ جنيه يوم ٢٠/٠١/٢٠٢٤",
    ])
    def test_dates_and_times_skipped(self, text):
        assert extract_amounts(text) == [500.0]


class TestHints:
    @pytest.mark.parametrize("text", [
        "500 EGP", "500 egp", "500 LE", "500 L.E", "500 pounds",
        "500 جنيه", "500 جم", "500 ج.م",
    ])
    def test_currency_hint(self, text):
        assert has_currency_hint(text)

    def test_no_currency_hint(self):
        assert not has_currency_hint("bought 2 bags for 350")

    @pytest.mark.parametrize("text", [
        "Total 1200", "grand total: 900", "subtotal 50", "الإجمالي 500", "المجموع 70",
    ])
    def test_total_line(self, text):
        assert is_total_line(text)

    def test_totally_is_not_total(self):
        assert not is_total_line("totally worth 500 EGP")


class TestExpenseDetector:
    def test_clear_expense(self, detector):
        candidate = detector.classify(_msg("Paid 1,500 EGP for tiles"))
        assert candidate.amount == 1500.0
        assert candidate.has_currency_hint
        assert not candidate.needs_review
        assert not candidate.excluded
        assert not candidate.is_total_line

    def test_delivery_date_not_taken_as_amount(self, detector):
        candidate = detector.classify(_msg("paid 500 EGP deposit, delivery on 20/01/2024"))
        assert candidate.amount == 500.0
        assert candidate.amounts_found == [500.0]
        assert not candidate.needs_review

    def test_arabic_expense(self, detector):
        candidate = detector.classify(_msg("دفعت ١٢٥٠ جنيه للسباك"))
        assert candidate.amount == 1250.0
        assert not candidate.needs_review

    def test_total_line_with_two_amounts(self, detector):
        candidate = detector.classify(_msg("الإجمالي 500 جنيه، دفعت 300 جنيه"))
        assert candidate.amount == 500.0
        assert candidate.amounts_found == [500.0, 300.0]
        assert candidate.needs_review
        assert candidate.is_total_line
        assert candidate.excluded

    def test_small_numbers_dropped(self, detector):
        assert detector.classify(_msg("need 2 bags and 3 tiles")) is None

    def test_small_number_ignored_next_to_amount(self, detector):
        candidate = detector.classify(_msg("2 bags cement 350 EGP"))
        assert candidate.amount == 350.0
        assert candidate.amounts_found == [350.0]
        assert not candidate.needs_review

    def test_min_amount_inclusive(self, detector):
        assert detector.classify(_msg("10 EGP tip")).amount == 10.0

    def test_no_currency_strict(self, detector):
        candidate = detector.classify(_msg("bought 2 bags for 350"))
        assert candidate.amount == 350.0
        assert candidate.needs_review
        assert candidate.excluded

    def test_no_currency_lenient(self):
        detector = ExpenseDetector(min_amount=10, strict_currency=False)
        candidate = detector.classify(_msg("bought 2 bags for 350"))
        assert candidate.needs_review
        assert not candidate.excluded

    def test_total_excluded_even_when_lenient(self):
        detector = ExpenseDetector(strict_currency=False)
        assert detector.classify(_msg("Total 1200 EGP")).excluded

    def test_pure_media_message_skipped(self, detector):
        message = ParsedMessage(
            timestamp=datetime(2024, 1, 15, 10, 30),
            sender="Ahmed",
            text="<attached: 1.jpg>",
            notes="",
            body=Media(kind=IMAGE, filename="1.jpg"),
        )
        assert detector.classify(message) is None

    def test_caption_on_media_detected(self, detector):
        message = _msg("<attached: 1.jpg> tiles 800 LE", notes="tiles 800 LE")
        assert detector.classify(message).amount == 800.0

    def test_detect_filters_and_keeps_order(self, detector):
        messages = [
            _msg("hello"),
            _msg("paid 300 EGP"),
            _msg("2 bags"),
            _msg("plumber 450 جنيه"),
        ]
        candidates = detector.detect(messages)
        assert [c.amount for c in candidates] == [300.0, 450.0]

"""Expense detection: pick monetary amounts out of free chat text.

Heuristic, bilingual (Arabic/English) extraction:
1. Find numerals (Western or Arabic-Indic digits, thousands separators,
   one decimal point, optional k/K multiplier)
2. Drop small numbers (item counts like "2 bags")
3. Look for currency and total/subtotal vocabulary
4. Choose the largest remaining number as the amount

Ambiguity is encoded in flags (needs_review, excluded) for the review
step, never resolved by dropping the message.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from chatledger.parsers.base import ParsedMessage

logger = logging.getLogger(__name__)

DEFAULT_MIN_AMOUNT = 10.0

_DIGIT = "[0-9٠-٩۰-۹]"

_NUMBER_RE = re.compile(
    rf"{_DIGIT}+"
    rf"(?:[,،٬]{_DIGIT}{{3}}(?!{_DIGIT}))*"
    rf"(?:[.٫]{_DIGIT}+)?"
    r"(?:([kK])(?![^\W\d_]))?"
)

# Dates (20/01/2024, 2024-01-20, 20.1.24, 20/1) and clock times (10:30,
# 9:05:12); their digits are never amounts.
_DATE_TIME_RE = re.compile(
    rf"(?<!{_DIGIT}){_DIGIT}{{1,4}}[/.\-]{_DIGIT}{{1,2}}[/.\-]{_DIGIT}{{2,4}}(?!{_DIGIT})"
    rf"|(?<!{_DIGIT}){_DIGIT}{{1,2}}/{_DIGIT}{{1,2}}(?!{_DIGIT}|/)"
    rf"|(?<!{_DIGIT}){_DIGIT}{{1,2}}:{_DIGIT}{{2}}(?::{_DIGIT}{{2}})?(?!{_DIGIT})"
)

# Arabic-Indic (U+0660..) and Extended Arabic-Indic (U+06F0..) → ASCII
_DIGIT_TABLE = str.maketrans(
    "٠١٢٣٤٥٦٧٨٩"
    "۰۱۲۳۴۵۶۷۸۹"
    "٫",
    "01234567890123456789.",
    ",،٬",
)

_CURRENCY_PATTERNS = (
    re.compile(r"جنيه|جنية|ج\.\s?م"),
    re.compile(r"(?<![^\W\d_])جم(?![^\W\d_])"),
    re.compile(r"(?<![A-Za-z])EGP(?![A-Za-z])", re.IGNORECASE),
    re.compile(r"(?<![A-Za-z])L\.?E\b\.?"),
    re.compile(r"\bpounds?\b", re.IGNORECASE),
)

_TOTAL_RE = re.compile(
    r"\b(?:grand\s+total|sub-?\s?total|total)\b"
    r"|الإجمالي|الاجمالي|إجمالي|اجمالي|الإجمالى|الاجمالى|المجموع|مجموع",
    re.IGNORECASE,
)


@dataclass
class ExpenseCandidate:
    """A message classified as a probable expense.

    amount, category and excluded may be edited during review; the
    remaining fields describe what the detector saw.
    """
    message: ParsedMessage
    amount: float
    needs_review: bool = False
    is_total_line: bool = False
    excluded: bool = False
    has_currency_hint: bool = False
    category: str | None = None
    amounts_found: list[float] = field(default_factory=list)


def normalize_digits(text: str) -> str:
    """Map Arabic-Indic digits to ASCII and drop thousands separators."""
    return text.translate(_DIGIT_TABLE)


def extract_amounts(text: str) -> list[float]:
    """All numerals in text as floats, in order of appearance.

    Numbers that are part of a date or a clock time are skipped.
    """
    amounts = []
    for match in _NUMBER_RE.finditer(_DATE_TIME_RE.sub(" ", text)):
        raw = match.group(0)
        multiplier = 1000 if match.group(1) else 1
        if multiplier != 1:
            raw = raw[:-1]
        try:
            value = float(normalize_digits(raw))
        except ValueError:
            continue
        amounts.append(value * multiplier)
    return amounts


def has_currency_hint(text: str) -> bool:
    return any(p.search(text) for p in _CURRENCY_PATTERNS)


def is_total_line(text: str) -> bool:
    return _TOTAL_RE.search(text) is not None


class ExpenseDetector:
    """Classify parsed messages as expense candidates.

    Args:
        min_amount: Numbers below this are item counts, not money.
        strict_currency: Also exclude (by default) candidates without a
            currency word. Total lines are always excluded by default.
    """

    def __init__(
        self,
        min_amount: float = DEFAULT_MIN_AMOUNT,
        strict_currency: bool = True,
    ):
        self.min_amount = min_amount
        self.strict_currency = strict_currency

    def detect(self, messages: list[ParsedMessage]) -> list[ExpenseCandidate]:
        candidates = []
        for message in messages:
            candidate = self.classify(message)
            if candidate is not None:
                candidates.append(candidate)
        logger.info(
            "Detected %d expense candidate(s) in %d message(s)",
            len(candidates), len(messages),
        )
        return candidates

    def classify(self, message: ParsedMessage) -> ExpenseCandidate | None:
        """Return a candidate for one message, or None if it has no amount."""
        text = message.notes
        if not text:
            # Pure media message
            return None

        significant = [
            a for a in extract_amounts(text)
            if a > 0 and a >= self.min_amount
        ]
        if not significant:
            return None

        currency = has_currency_hint(text)
        total = is_total_line(text)
        needs_review = len(significant) > 1 or not currency
        excluded = total or (self.strict_currency and not currency)

        return ExpenseCandidate(
            message=message,
            amount=max(significant),
            needs_review=needs_review,
            is_total_line=total,
            excluded=excluded,
            has_currency_hint=currency,
            amounts_found=significant,
        )

"""Google Sheets push: unidirectional SQLite → Sheets sync.

Transforms expenses, partner balances and the settlement plan into sheet
rows, batches writes to respect the Google Sheets API quota
(50 writes/minute), and rebuilds all tabs of one project at a time.

The gspread spreadsheet is injected via constructor for testability:
tests pass a mock, production passes the real authenticated client.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass

from gspread.exceptions import WorksheetNotFound
from gspread.utils import ValidationConditionType

from chatledger.database.models import Expense
from chatledger.database.queries import get_partner_balances
from chatledger.database.repository import Repository
from chatledger.settle.solver import PartnerBalance, Settlement, settle

logger = logging.getLogger(__name__)


# ── Sheet column schemas ─────────────────────────────────

EXPENSE_HEADERS = [
    "id", "date", "amount", "paid_by", "category", "notes",
    "receipt_urls", "missing_receipt", "needs_review",
    "is_fund_transfer", "source", "import_run_id",
]

PARTNER_HEADERS = [
    "partner", "expenses_paid", "funds_sent", "total_contribution",
    "equal_share", "balance",
]

SETTLEMENT_HEADERS = ["from", "to", "amount"]

# Sheet tab names
SHEET_EXPENSES = "Expenses"
SHEET_PARTNERS = "Partners"
SHEET_SETTLEMENT = "Settlement"

# Expenses!E = category
CATEGORY_COLUMN = "E"

# Rate limiting
MAX_WRITES_PER_MINUTE = 50
BATCH_SIZE = 100


# ── Data transformation ──────────────────────────────────


def _val(v: object) -> str | float | int:
    """Convert a value for Sheets: None → empty string, else pass through."""
    if v is None:
        return ""
    return v


def expense_to_row(expense: Expense, partner_names: dict[str, str]) -> list:
    """Convert an Expense dataclass to a Sheets row."""
    paid_by = partner_names.get(expense.paid_by_partner_id, expense.paid_by_partner_id)
    return [
        expense.id,
        expense.date,
        expense.amount,
        _val(paid_by),
        _val(expense.category),
        _val(expense.notes),
        "\n".join(expense.receipt_urls),
        expense.missing_receipt,
        expense.needs_review,
        expense.is_fund_transfer,
        expense.source,
        _val(expense.import_run_id),
    ]


def balance_to_row(balance: PartnerBalance) -> list:
    return [
        balance.name,
        round(balance.expenses_paid, 2),
        round(balance.funds_sent, 2),
        round(balance.total_contribution, 2),
        round(balance.equal_share, 2),
        round(balance.balance, 2),
    ]


def settlement_to_row(s: Settlement) -> list:
    return [s.from_partner, s.to_partner, s.amount]


# ── Batch result ─────────────────────────────────────────


@dataclass
class PushResult:
    """Result of a push operation."""
    sheet: str
    rows_pushed: int
    api_calls: int


# ── SheetsPush ───────────────────────────────────────────


class SheetsPush:
    """Unidirectional SQLite → Google Sheets sync with batching and rate limiting.

    Args:
        spreadsheet: A gspread.Spreadsheet instance (or mock).
    """

    def __init__(self, spreadsheet: object):
        self.spreadsheet = spreadsheet
        self.pending_appends: dict[str, list[list]] = {}
        self.pending_clears: set[str] = set()
        self._write_times: deque[float] = deque()

    # ── Queue operations ─────────────────────────────────

    def queue_append(self, sheet_name: str, rows: list[list]) -> None:
        """Queue rows for append to a sheet. Call flush() to execute."""
        self.pending_appends.setdefault(sheet_name, []).extend(rows)

    def queue_clear(self, sheet_name: str) -> None:
        """Queue a sheet for clearing (used by full_rebuild)."""
        self.pending_clears.add(sheet_name)

    # ── Rate limiting ────────────────────────────────────

    def _wait_for_rate_limit(self) -> None:
        """Sleep if we're approaching the write rate limit."""
        now = time.monotonic()
        cutoff = now - 60.0
        while self._write_times and self._write_times[0] <= cutoff:
            self._write_times.popleft()

        if len(self._write_times) >= MAX_WRITES_PER_MINUTE:
            sleep_until = self._write_times[0] + 60.0
            time.sleep(sleep_until - now)

    def _record_write(self) -> None:
        self._write_times.append(time.monotonic())

    def _worksheet(self, sheet_name: str):
        """Return the named tab, creating it on first push."""
        try:
            return self.spreadsheet.worksheet(sheet_name)
        except WorksheetNotFound:
            logger.info("Creating sheet tab '%s'", sheet_name)
            self._wait_for_rate_limit()
            ws = self.spreadsheet.add_worksheet(title=sheet_name, rows=1000, cols=20)
            self._record_write()
            return ws

    # ── Flush ────────────────────────────────────────────

    def flush(self) -> list[PushResult]:
        """Execute all pending operations with rate limiting and batching.

        Returns a list of PushResult for each sheet that was written to.
        Continues processing remaining sheets if one fails.
        """
        results: list[PushResult] = []
        errors: list[str] = []

        for sheet_name in sorted(self.pending_clears):
            try:
                ws = self._worksheet(sheet_name)
                self._wait_for_rate_limit()
                ws.clear()
                self._record_write()
                self.pending_clears.discard(sheet_name)
            except Exception as e:
                logger.error("Failed to clear sheet '%s': %s", sheet_name, e)
                errors.append(f"clear:{sheet_name}")

        for sheet_name, rows in list(self.pending_appends.items()):
            if not rows:
                del self.pending_appends[sheet_name]
                continue
            try:
                ws = self._worksheet(sheet_name)
                api_calls = 0
                for i in range(0, len(rows), BATCH_SIZE):
                    chunk = rows[i : i + BATCH_SIZE]
                    self._wait_for_rate_limit()
                    ws.append_rows(chunk, value_input_option="RAW")
                    self._record_write()
                    api_calls += 1
                results.append(PushResult(
                    sheet=sheet_name,
                    rows_pushed=len(rows),
                    api_calls=api_calls,
                ))
                del self.pending_appends[sheet_name]
            except Exception as e:
                logger.error("Failed to push to sheet '%s': %s", sheet_name, e)
                errors.append(f"push:{sheet_name}")

        if errors:
            logger.warning("Sheets push completed with %d error(s): %s", len(errors), errors)

        return results

    # ── High-level push methods ──────────────────────────

    def full_rebuild(
        self, repo: Repository, project_id: str,
        categories: list[str] | None = None,
    ) -> list[PushResult]:
        """Truncate all tabs and re-push one project's data from SQLite.

        Header rows are counted in rows_pushed.
        """
        for name in (SHEET_EXPENSES, SHEET_PARTNERS, SHEET_SETTLEMENT):
            self.queue_clear(name)

        self.queue_append(SHEET_EXPENSES, [EXPENSE_HEADERS])
        self.queue_append(SHEET_PARTNERS, [PARTNER_HEADERS])
        self.queue_append(SHEET_SETTLEMENT, [SETTLEMENT_HEADERS])

        partner_names = {
            r["id"]: r["name"]
            for r in repo.conn.execute(
                "SELECT id, name FROM partners WHERE project_id = ?", (project_id,),
            ).fetchall()
        }
        expenses = repo.get_expenses(project_id)
        self.queue_append(
            SHEET_EXPENSES, [expense_to_row(e, partner_names) for e in expenses],
        )

        balances = get_partner_balances(repo.conn, project_id)
        self.queue_append(SHEET_PARTNERS, [balance_to_row(b) for b in balances])
        self.queue_append(
            SHEET_SETTLEMENT, [settlement_to_row(s) for s in settle(balances)],
        )

        results = self.flush()

        if categories:
            self._apply_category_validation(categories)

        return results

    # ── Data validation ──────────────────────────────────

    def _apply_category_validation(self, categories: list[str]) -> None:
        """Dropdown of configured categories on the Expenses category column.

        Safe across clear()+append_rows() cycles since clear() only removes
        values, not validation rules.
        """
        rng = f"{CATEGORY_COLUMN}2:{CATEGORY_COLUMN}100000"
        try:
            ws = self._worksheet(SHEET_EXPENSES)
            ws.add_validation(
                rng,
                ValidationConditionType.one_of_list,
                categories,
                showCustomUi=True,
                strict=False,
            )
            logger.info("Applied category validation to %s!%s", SHEET_EXPENSES, rng)
        except Exception as e:
            logger.warning("Failed to apply validation to %s: %s", SHEET_EXPENSES, e)

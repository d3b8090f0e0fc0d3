"""Tests for sheets.push — row conversion, batching and full rebuild."""

from unittest.mock import MagicMock, call, patch

import pytest
from gspread.exceptions import WorksheetNotFound
from gspread.utils import ValidationConditionType

from chatledger.database.models import Expense
from chatledger.database.repository import Repository
from chatledger.settle.solver import PartnerBalance, Settlement
from chatledger.sheets.push import (
    BATCH_SIZE,
    EXPENSE_HEADERS,
    MAX_WRITES_PER_MINUTE,
    PARTNER_HEADERS,
    SETTLEMENT_HEADERS,
    SHEET_EXPENSES,
    SHEET_PARTNERS,
    SHEET_SETTLEMENT,
    SheetsPush,
    balance_to_row,
    expense_to_row,
    settlement_to_row,
)
from tests.conftest import MIGRATIONS_DIR, PROJECT_ID, PROJECTS


@pytest.fixture
def repo():
    r = Repository(":memory:")
    r.apply_migrations(MIGRATIONS_DIR)
    r.sync_projects(PROJECTS)
    yield r
    r.close()


@pytest.fixture
def spreadsheet():
    ss = MagicMock()
    worksheets: dict[str, MagicMock] = {}

    def worksheet(name):
        return worksheets.setdefault(name, MagicMock(name=name))

    ss.worksheet.side_effect = worksheet
    ss.tabs = worksheets
    return ss


# ── Row conversion ────────────────────────────────────────


class TestRows:
    def test_expense_row_matches_headers(self):
        expense = Expense(
            project_id=PROJECT_ID, date="2024-01-15", amount=500.0,
            paid_by_partner_id="ahmed", category=None, notes="tiles",
            receipt_urls=["u1", "u2"],
        )
        row = expense_to_row(expense, {"ahmed": "Ahmed"})
        assert len(row) == len(EXPENSE_HEADERS)
        assert row[:6] == [expense.id, "2024-01-15", 500.0, "Ahmed", "", "tiles"]
        assert row[6] == "u1\nu2"
        assert row[-1] == ""

    def test_unknown_partner_falls_back_to_id(self):
        expense = Expense(project_id=PROJECT_ID, date="2024-01-15", amount=1.0,
                          paid_by_partner_id="ghost")
        assert expense_to_row(expense, {})[3] == "ghost"

    def test_balance_row_rounded(self):
        b = PartnerBalance(name="Mona", balance=-33.3333, total_contribution=66.6667,
                           equal_share=100.0, expenses_paid=66.6667)
        row = balance_to_row(b)
        assert len(row) == len(PARTNER_HEADERS)
        assert row == ["Mona", 66.67, 0.0, 66.67, 100.0, -33.33]

    def test_settlement_row(self):
        row = settlement_to_row(Settlement("Mona", "Ahmed", 100.0))
        assert row == ["Mona", "Ahmed", 100.0]
        assert len(row) == len(SETTLEMENT_HEADERS)


# ── Flush ─────────────────────────────────────────────────


class TestFlush:
    def test_batches_rows(self, spreadsheet):
        push = SheetsPush(spreadsheet)
        push.queue_append(SHEET_EXPENSES, [[i] for i in range(BATCH_SIZE * 2 + 50)])
        results = push.flush()
        assert results[0].rows_pushed == BATCH_SIZE * 2 + 50
        assert results[0].api_calls == 3
        assert spreadsheet.tabs[SHEET_EXPENSES].append_rows.call_count == 3
        assert push.pending_appends == {}

    def test_clears_before_appends(self, spreadsheet):
        push = SheetsPush(spreadsheet)
        push.queue_clear(SHEET_PARTNERS)
        push.queue_append(SHEET_PARTNERS, [["x"]])
        push.flush()
        ws = spreadsheet.tabs[SHEET_PARTNERS]
        assert [c[0] for c in ws.method_calls] == ["clear", "append_rows"]
        assert push.pending_clears == set()

    def test_creates_missing_tab(self):
        spreadsheet = MagicMock()
        spreadsheet.worksheet.side_effect = WorksheetNotFound(SHEET_SETTLEMENT)
        push = SheetsPush(spreadsheet)
        push.queue_append(SHEET_SETTLEMENT, [["a", "b", 1]])
        push.flush()
        spreadsheet.add_worksheet.assert_called_once_with(title=SHEET_SETTLEMENT, rows=1000, cols=20)
        spreadsheet.add_worksheet.return_value.append_rows.assert_called_once()

    def test_failed_sheet_does_not_block_others(self, spreadsheet):
        push = SheetsPush(spreadsheet)
        spreadsheet.worksheet(SHEET_EXPENSES).append_rows.side_effect = RuntimeError("boom")
        push.queue_append(SHEET_EXPENSES, [["x"]])
        push.queue_append(SHEET_PARTNERS, [["y"]])
        results = push.flush()
        assert [r.sheet for r in results] == [SHEET_PARTNERS]
        assert SHEET_EXPENSES in push.pending_appends

    def test_empty_queue_is_noop(self, spreadsheet):
        push = SheetsPush(spreadsheet)
        push.queue_append(SHEET_EXPENSES, [])
        assert push.flush() == []
        spreadsheet.worksheet.assert_not_called()


class TestRateLimit:
    @patch("chatledger.sheets.push.time")
    def test_sleeps_when_quota_used(self, mock_time, spreadsheet):
        mock_time.monotonic.return_value = 100.0
        push = SheetsPush(spreadsheet)
        push._write_times.extend([90.0] * MAX_WRITES_PER_MINUTE)
        push._wait_for_rate_limit()
        mock_time.sleep.assert_called_once_with(50.0)

    @patch("chatledger.sheets.push.time")
    def test_old_writes_expire(self, mock_time, spreadsheet):
        mock_time.monotonic.return_value = 200.0
        push = SheetsPush(spreadsheet)
        push._write_times.extend([100.0] * MAX_WRITES_PER_MINUTE)
        push._wait_for_rate_limit()
        mock_time.sleep.assert_not_called()
        assert len(push._write_times) == 0


# ── Full rebuild ──────────────────────────────────────────


class TestFullRebuild:
    def test_rebuilds_all_tabs(self, repo, spreadsheet):
        repo.insert_expense(Expense(project_id=PROJECT_ID, date="2024-01-15",
                                    amount=900.0, paid_by_partner_id="ahmed"))
        push = SheetsPush(spreadsheet)
        results = push.full_rebuild(repo, PROJECT_ID)

        by_sheet = {r.sheet: r.rows_pushed for r in results}
        assert by_sheet == {SHEET_EXPENSES: 2, SHEET_PARTNERS: 4, SHEET_SETTLEMENT: 3}

        for name in (SHEET_EXPENSES, SHEET_PARTNERS, SHEET_SETTLEMENT):
            spreadsheet.tabs[name].clear.assert_called_once()

        settlement_rows = spreadsheet.tabs[SHEET_SETTLEMENT].append_rows.call_args.args[0]
        assert settlement_rows == [
            SETTLEMENT_HEADERS,
            ["Mona", "Ahmed", 300.0],
            ["Karim", "Ahmed", 300.0],
        ]
        expense_rows = spreadsheet.tabs[SHEET_EXPENSES].append_rows.call_args.args[0]
        assert expense_rows[0] == EXPENSE_HEADERS
        assert expense_rows[1][3] == "Ahmed"

    def test_category_validation(self, repo, spreadsheet):
        push = SheetsPush(spreadsheet)
        push.full_rebuild(repo, PROJECT_ID, categories=["Furniture", "Plumbing"])
        spreadsheet.tabs[SHEET_EXPENSES].add_validation.assert_called_once_with(
            "E2:E100000",
            ValidationConditionType.one_of_list,
            ["Furniture", "Plumbing"],
            showCustomUi=True,
            strict=False,
        )

    def test_no_validation_without_categories(self, repo, spreadsheet):
        SheetsPush(spreadsheet).full_rebuild(repo, PROJECT_ID)
        spreadsheet.tabs[SHEET_EXPENSES].add_validation.assert_not_called()

    def test_validation_failure_logged_not_raised(self, repo, spreadsheet):
        spreadsheet.worksheet(SHEET_EXPENSES).add_validation.side_effect = RuntimeError("api")
        results = SheetsPush(spreadsheet).full_rebuild(repo, PROJECT_ID, categories=["Other"])
        assert len(results) == 3

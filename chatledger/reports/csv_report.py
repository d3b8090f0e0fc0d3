"""Project report as one sectioned CSV file.

Sections, each preceded by a `=== NAME ===` line and separated by a blank
row: expenses, partner summary, settlement, category breakdown, totals.
"""

from __future__ import annotations

import csv
import io

from chatledger.database.queries import get_category_totals, get_partner_balances
from chatledger.database.repository import Repository
from chatledger.settle.solver import settle


def _money(v: float) -> str:
    return f"{v:.2f}"


def _pct(part: float, whole: float) -> str:
    return f"{part / whole * 100:.1f}%" if whole > 0 else "0.0%"


def build_report_csv(repo: Repository, project_id: str) -> str:
    project = repo.get_project(project_id)
    if project is None:
        raise ValueError(f"Unknown project: {project_id}")
    currency = project.currency

    partner_names = {
        r["id"]: r["name"]
        for r in repo.conn.execute(
            "SELECT id, name FROM partners WHERE project_id = ?", (project_id,),
        ).fetchall()
    }
    expenses = repo.get_expenses(project_id)
    actual = [e for e in expenses if not e.is_fund_transfer]
    transfers = [e for e in expenses if e.is_fund_transfer]
    total_spend = sum(e.amount for e in actual)
    balances = get_partner_balances(repo.conn, project_id)

    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")

    w.writerow(["=== EXPENSES ==="])
    w.writerow([
        "Date", f"Amount ({currency})", "Paid By", "Category", "Notes",
        "Has Receipt", "Needs Review", "Source", "Type",
    ])
    for e in expenses:
        w.writerow([
            e.date,
            _money(e.amount),
            partner_names.get(e.paid_by_partner_id, "Unknown"),
            e.category or "",
            e.notes or "",
            "No" if e.missing_receipt else "Yes",
            "Yes" if e.needs_review else "No",
            e.source,
            "Fund Transfer" if e.is_fund_transfer else "Expense",
        ])

    w.writerow([])
    w.writerow(["=== PARTNER SUMMARY ==="])
    w.writerow([
        "Partner", "Expenses Paid", "Funds Sent", "Total In",
        "Equal Share", "Balance", "Ownership %",
    ])
    for b in balances:
        w.writerow([
            b.name,
            _money(b.expenses_paid),
            _money(b.funds_sent),
            _money(b.total_contribution),
            _money(b.equal_share),
            _money(b.balance),
            _pct(b.total_contribution, total_spend),
        ])

    w.writerow([])
    w.writerow(["=== SETTLEMENT ==="])
    w.writerow(["From", "To", f"Amount ({currency})"])
    for s in settle(balances):
        w.writerow([s.from_partner, s.to_partner, _money(s.amount)])

    w.writerow([])
    w.writerow(["=== CATEGORY BREAKDOWN ==="])
    w.writerow(["Category", f"Total ({currency})", "% of Spend"])
    for row in get_category_totals(repo.conn, project_id):
        w.writerow([
            row["category"] or "Uncategorized",
            _money(row["total"]),
            _pct(row["total"], total_spend),
        ])

    w.writerow([])
    w.writerow(["=== TOTALS ==="])
    w.writerow(["Total Expenses", _money(total_spend)])
    w.writerow(["Total Fund Transfers", _money(sum(e.amount for e in transfers))])
    w.writerow(["Expense Count", len(actual)])
    w.writerow(["Fund Transfer Count", len(transfers)])
    w.writerow(["Partners", len(balances)])
    w.writerow(["Project", project.name])

    return buf.getvalue()

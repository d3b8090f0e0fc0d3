"""Aggregate queries that span multiple tables.

These go beyond single-table CRUD and compute partner balances and
reporting totals for a project.
"""

from __future__ import annotations

import sqlite3

from chatledger.settle.solver import PartnerBalance


def get_partner_balances(
    conn: sqlite3.Connection, project_id: str,
) -> list[PartnerBalance]:
    """Balance of every active partner against an equal split.

    Fund transfers (money sent into the shared pot) count as a
    contribution but not as spend.
    """
    partners = conn.execute(
        "SELECT id, name FROM partners"
        " WHERE project_id = ? AND active = 1 ORDER BY rowid",
        (project_id,),
    ).fetchall()

    totals = {
        r["paid_by_partner_id"]: (r["paid"], r["funds"])
        for r in conn.execute(
            "SELECT paid_by_partner_id,"
            "  COALESCE(SUM(CASE WHEN is_fund_transfer = 0 THEN amount END), 0) AS paid,"
            "  COALESCE(SUM(CASE WHEN is_fund_transfer = 1 THEN amount END), 0) AS funds"
            " FROM expenses WHERE project_id = ?"
            " GROUP BY paid_by_partner_id",
            (project_id,),
        ).fetchall()
    }

    total_spend = conn.execute(
        "SELECT COALESCE(SUM(amount), 0) FROM expenses"
        " WHERE project_id = ? AND is_fund_transfer = 0",
        (project_id,),
    ).fetchone()[0]
    equal_share = total_spend / max(len(partners), 1)

    balances = []
    for p in partners:
        paid, funds = totals.get(p["id"], (0.0, 0.0))
        contribution = paid + funds
        balances.append(PartnerBalance(
            name=p["name"],
            partner_id=p["id"],
            expenses_paid=paid,
            funds_sent=funds,
            total_contribution=contribution,
            equal_share=equal_share,
            balance=contribution - equal_share,
        ))
    return balances


def get_status_counts(conn: sqlite3.Connection, project_id: str) -> dict[str, int]:
    """Counts for the status report: expenses, review, receipts, inbox."""
    row = conn.execute(
        "SELECT COUNT(*) AS total,"
        "  COALESCE(SUM(needs_review), 0) AS needs_review,"
        "  COALESCE(SUM(missing_receipt), 0) AS missing_receipt,"
        "  COALESCE(SUM(amount), 0) AS total_amount"
        " FROM expenses WHERE project_id = ? AND is_fund_transfer = 0",
        (project_id,),
    ).fetchone()
    inbox = conn.execute(
        "SELECT COUNT(*) FROM receipt_inbox"
        " WHERE project_id = ? AND assigned_expense_id IS NULL",
        (project_id,),
    ).fetchone()[0]
    runs = conn.execute(
        "SELECT COUNT(*) FROM import_runs WHERE project_id = ?",
        (project_id,),
    ).fetchone()[0]
    return {
        "expenses": row["total"],
        "needs_review": row["needs_review"],
        "missing_receipt": row["missing_receipt"],
        "total_amount": row["total_amount"],
        "inbox": inbox,
        "import_runs": runs,
    }


def get_category_totals(
    conn: sqlite3.Connection, project_id: str,
) -> list[dict]:
    """Spend per category, largest first. Uncategorized rows group under None."""
    rows = conn.execute(
        "SELECT category, COUNT(*) AS cnt, SUM(amount) AS total"
        " FROM expenses WHERE project_id = ? AND is_fund_transfer = 0"
        " GROUP BY category ORDER BY total DESC",
        (project_id,),
    ).fetchall()
    return [
        {"category": r["category"], "count": r["cnt"], "total": r["total"]}
        for r in rows
    ]

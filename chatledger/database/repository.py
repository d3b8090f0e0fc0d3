"""Repository: CRUD operations against SQLite using raw SQL.

All methods take/return dataclass instances from models.py.
Connection management uses a single connection with WAL mode and
foreign keys enabled.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from .models import (
    AuditEntry,
    Expense,
    ImportRun,
    InboxItem,
    MessageHash,
    Partner,
    Project,
    SenderMapping,
    _now,
)

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_CHUNK_SIZE = 500


class DuplicateHashError(Exception):
    """Raised when a message hash was already recorded for the project."""

    def __init__(self, message_hash: str, existing_expense_id: str | None = None):
        self.message_hash = message_hash
        self.existing_expense_id = existing_expense_id
        super().__init__(f"Message hash '{message_hash}' already imported")


class Repository:
    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ── Migrations ──────────────────────────────────────────

    def apply_migrations(self, migrations_dir: Path = MIGRATIONS_DIR):
        """Apply all pending SQL migrations in order.

        Each migration runs in a transaction: if the SQL fails, the
        schema_version row is not inserted, allowing retry on next startup.
        """
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version ("
            "  version INTEGER PRIMARY KEY,"
            "  description TEXT,"
            "  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
            ")"
        )
        self.conn.commit()

        row = self.conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        current = row[0] or 0

        for sql_file in sorted(Path(migrations_dir).glob("*.sql")):
            version = int(sql_file.name.split("_")[0])
            if version <= current:
                continue
            try:
                self.conn.execute("BEGIN")
                # executescript auto-commits, so statements are split manually
                for statement in sql_file.read_text().split(";"):
                    statement = statement.strip()
                    if statement:
                        self.conn.execute(statement)
                self.conn.execute(
                    "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                    (version, sql_file.stem),
                )
                self.conn.commit()
                logger.info("Applied migration %s", sql_file.name)
            except Exception:
                self.conn.rollback()
                raise

    # ── Projects & Partners ─────────────────────────────────

    def sync_projects(self, projects: list[dict]):
        """Upsert projects and partners from projects.yaml.

        Partners missing from the config are marked inactive, never deleted:
        existing expenses still reference them.
        """
        try:
            self.conn.execute("BEGIN")
            for proj in projects:
                self.conn.execute(
                    "INSERT INTO projects (id, name, currency, created_at)"
                    " VALUES (?, ?, ?, ?)"
                    " ON CONFLICT(id) DO UPDATE SET"
                    "  name = excluded.name, currency = excluded.currency",
                    (proj["id"], proj.get("name", proj["id"]),
                     proj.get("currency", "EGP"), _now()),
                )
                partner_ids = []
                for p in proj.get("partners", []):
                    pid = p.get("id") or p["name"]
                    partner_ids.append(pid)
                    self.conn.execute(
                        "INSERT INTO partners (id, project_id, name, active, created_at)"
                        " VALUES (?, ?, ?, 1, ?)"
                        " ON CONFLICT(project_id, id) DO UPDATE SET"
                        "  name = excluded.name, active = 1",
                        (pid, proj["id"], p["name"], _now()),
                    )
                sql = "UPDATE partners SET active = 0 WHERE project_id = ?"
                if partner_ids:
                    sql += f" AND id NOT IN ({','.join('?' * len(partner_ids))})"
                self.conn.execute(sql, [proj["id"], *partner_ids])
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def get_project(self, project_id: str) -> Project | None:
        row = self.conn.execute(
            "SELECT * FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        return self._row_to_project(row) if row else None

    def list_projects(self) -> list[Project]:
        rows = self.conn.execute("SELECT * FROM projects ORDER BY name").fetchall()
        return [self._row_to_project(r) for r in rows]

    def insert_partner(self, partner: Partner) -> Partner:
        self.conn.execute(
            "INSERT INTO partners (id, project_id, name, active, created_at)"
            " VALUES (?, ?, ?, ?, ?)",
            (partner.id, partner.project_id, partner.name,
             int(partner.active), partner.created_at),
        )
        self.conn.commit()
        return partner

    def get_active_partners(self, project_id: str) -> list[Partner]:
        rows = self.conn.execute(
            "SELECT * FROM partners WHERE project_id = ? AND active = 1"
            " ORDER BY rowid",
            (project_id,),
        ).fetchall()
        return [self._row_to_partner(r) for r in rows]

    def get_partner(self, project_id: str, partner_id: str) -> Partner | None:
        row = self.conn.execute(
            "SELECT * FROM partners WHERE project_id = ? AND id = ?",
            (project_id, partner_id),
        ).fetchone()
        return self._row_to_partner(row) if row else None

    # ── Sender Mappings ─────────────────────────────────────

    def get_sender_mappings(self, project_id: str) -> dict[str, SenderMapping]:
        rows = self.conn.execute(
            "SELECT * FROM sender_mappings WHERE project_id = ?"
            " ORDER BY whatsapp_name",
            (project_id,),
        ).fetchall()
        return {r["whatsapp_name"]: self._row_to_sender_mapping(r) for r in rows}

    def upsert_sender_mapping(self, mapping: SenderMapping) -> SenderMapping:
        self.conn.execute(
            "INSERT INTO sender_mappings"
            " (id, project_id, whatsapp_name, partner_id, ignored, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?)"
            " ON CONFLICT(project_id, whatsapp_name) DO UPDATE SET"
            "  partner_id = excluded.partner_id,"
            "  ignored = excluded.ignored,"
            "  updated_at = excluded.updated_at",
            (mapping.id, mapping.project_id, mapping.whatsapp_name,
             mapping.partner_id, int(mapping.ignored), _now()),
        )
        self.conn.commit()
        return mapping

    # ── Import Runs ─────────────────────────────────────────

    def insert_import_run(self, run: ImportRun) -> ImportRun:
        self.conn.execute(
            "INSERT INTO import_runs"
            " (id, project_id, file_name, file_hash, messages_parsed,"
            "  candidates_found, duplicates_skipped, expenses_imported,"
            "  receipts_matched, receipts_unmatched, errors, status,"
            "  error_message, created_at, completed_at)"
            " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
            (run.id, run.project_id, run.file_name, run.file_hash,
             run.messages_parsed, run.candidates_found,
             run.duplicates_skipped, run.expenses_imported,
             run.receipts_matched, run.receipts_unmatched, run.errors,
             run.status, run.error_message, run.created_at,
             run.completed_at),
        )
        self.conn.commit()
        return run

    _RUN_UPDATE_COLS = frozenset({
        "messages_parsed", "candidates_found", "duplicates_skipped",
        "expenses_imported", "receipts_matched", "receipts_unmatched",
        "errors", "error_message", "completed_at",
    })

    def update_import_run(self, run_id: str, status: str, **kwargs):
        # Reject unknown column names to prevent silent bugs
        unknown = set(kwargs.keys()) - self._RUN_UPDATE_COLS
        if unknown:
            raise ValueError(f"Unknown columns for update_import_run: {unknown}")

        sets = ["status = ?"]
        vals: list = [status]
        for col in sorted(kwargs):
            sets.append(f"{col} = ?")
            vals.append(kwargs[col])
        vals.append(run_id)
        self.conn.execute(
            f"UPDATE import_runs SET {', '.join(sets)} WHERE id = ?", vals
        )
        self.conn.commit()

    def get_import_run(self, run_id: str) -> ImportRun | None:
        row = self.conn.execute(
            "SELECT * FROM import_runs WHERE id = ?", (run_id,)
        ).fetchone()
        return self._row_to_import_run(row) if row else None

    def get_import_runs(self, project_id: str, limit: int = 20) -> list[ImportRun]:
        rows = self.conn.execute(
            "SELECT * FROM import_runs WHERE project_id = ?"
            " ORDER BY created_at DESC LIMIT ?",
            (project_id, limit),
        ).fetchall()
        return [self._row_to_import_run(r) for r in rows]

    # ── Message Hashes ──────────────────────────────────────

    def get_seen_hashes(self, project_id: str, hashes: list[str]) -> set[str]:
        """Return the subset of hashes already recorded for the project.

        Chunked to stay within SQLite's variable limit.
        """
        seen: set[str] = set()
        unique = list(dict.fromkeys(hashes))
        for i in range(0, len(unique), _CHUNK_SIZE):
            chunk = unique[i : i + _CHUNK_SIZE]
            ph = ",".join("?" * len(chunk))
            rows = self.conn.execute(
                f"SELECT message_hash FROM import_message_hashes"
                f" WHERE project_id = ? AND message_hash IN ({ph})",
                [project_id, *chunk],
            ).fetchall()
            seen.update(r["message_hash"] for r in rows)
        return seen

    def get_message_hash(self, project_id: str, message_hash: str) -> MessageHash | None:
        row = self.conn.execute(
            "SELECT * FROM import_message_hashes"
            " WHERE project_id = ? AND message_hash = ?",
            (project_id, message_hash),
        ).fetchone()
        return self._row_to_message_hash(row) if row else None

    def insert_message_hash(self, mh: MessageHash) -> MessageHash:
        """Record a message hash.

        Raises:
            DuplicateHashError: If the hash is already recorded for the project.
        """
        try:
            self._insert_message_hash(mh)
            self.conn.commit()
            return mh
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            if "UNIQUE constraint failed" in str(e):
                raise self._duplicate_hash(mh) from e
            raise

    def _insert_message_hash(self, mh: MessageHash):
        self.conn.execute(
            "INSERT INTO import_message_hashes"
            " (id, project_id, message_hash, expense_id, import_run_id, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (mh.id, mh.project_id, mh.message_hash, mh.expense_id,
             mh.import_run_id, mh.created_at),
        )

    def _duplicate_hash(self, mh: MessageHash) -> DuplicateHashError:
        existing = self.get_message_hash(mh.project_id, mh.message_hash)
        return DuplicateHashError(
            mh.message_hash, existing.expense_id if existing else None,
        )

    # ── Expenses ────────────────────────────────────────────

    _EXPENSE_COLS = (
        "id, project_id, date, amount, paid_by_partner_id, category, notes,"
        " receipt_urls, missing_receipt, needs_review, is_fund_transfer,"
        " source, import_run_id, created_at, updated_at"
    )

    def insert_expense(self, expense: Expense) -> Expense:
        self._insert_expense(expense)
        self.conn.commit()
        return expense

    def insert_expense_with_hash(self, expense: Expense, mh: MessageHash) -> Expense:
        """Insert an expense and its source-message hash atomically.

        Raises:
            DuplicateHashError: If the hash was recorded by a concurrent
                import; the expense is not inserted.
        """
        mh.expense_id = expense.id
        try:
            self.conn.execute("BEGIN")
            self._insert_expense(expense)
            self._insert_message_hash(mh)
            self.conn.commit()
            return expense
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            if "import_message_hashes" in str(e):
                raise self._duplicate_hash(mh) from e
            raise
        except Exception:
            self.conn.rollback()
            raise

    def _insert_expense(self, e: Expense):
        self.conn.execute(
            f"INSERT INTO expenses ({self._EXPENSE_COLS})"
            " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
            (e.id, e.project_id, e.date, e.amount, e.paid_by_partner_id,
             e.category, e.notes, json.dumps(e.receipt_urls),
             int(e.missing_receipt), int(e.needs_review),
             int(e.is_fund_transfer), e.source, e.import_run_id,
             e.created_at, e.updated_at),
        )

    def get_expense(self, expense_id: str) -> Expense | None:
        row = self.conn.execute(
            "SELECT * FROM expenses WHERE id = ?", (expense_id,)
        ).fetchone()
        return self._row_to_expense(row) if row else None

    def get_expenses(
        self, project_id: str, needs_review: bool | None = None,
        missing_receipt: bool | None = None, month: str | None = None,
        partner_id: str | None = None, category: str | None = None,
    ) -> list[Expense]:
        """Project expenses by date, optionally filtered.

        month is "YYYY-MM" and matches on the expense date prefix.
        """
        sql = "SELECT * FROM expenses WHERE project_id = ?"
        params: list = [project_id]
        if needs_review is not None:
            sql += " AND needs_review = ?"
            params.append(int(needs_review))
        if missing_receipt is not None:
            sql += " AND missing_receipt = ?"
            params.append(int(missing_receipt))
        if month is not None:
            sql += " AND substr(date, 1, 7) = ?"
            params.append(month)
        if partner_id is not None:
            sql += " AND paid_by_partner_id = ?"
            params.append(partner_id)
        if category is not None:
            sql += " AND category = ?"
            params.append(category)
        sql += " ORDER BY date, rowid"
        rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_expense(r) for r in rows]

    _EXPENSE_UPDATE_COLS = frozenset({
        "date", "amount", "paid_by_partner_id", "category", "notes",
        "receipt_urls", "missing_receipt", "needs_review", "is_fund_transfer",
    })

    def update_expense(
        self, expense_id: str, note: str | None = None, **changes,
    ) -> Expense:
        """Update expense fields, writing one audit_log row per changed field.

        Raises:
            ValueError: Unknown column or unknown expense id.
        """
        unknown = set(changes.keys()) - self._EXPENSE_UPDATE_COLS
        if unknown:
            raise ValueError(f"Unknown columns for update_expense: {unknown}")
        expense = self.get_expense(expense_id)
        if expense is None:
            raise ValueError(f"Unknown expense: {expense_id}")

        try:
            self.conn.execute("BEGIN")
            self._write_expense_changes(expense, changes, note)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_expense(expense_id)

    def _write_expense_changes(self, expense: Expense, changes: dict, note: str | None):
        diffs = {
            col: (getattr(expense, col), val)
            for col, val in sorted(changes.items())
            if getattr(expense, col) != val
        }
        if not diffs:
            return

        sets = ["updated_at = ?"]
        vals: list = [_now()]
        for col, (_, new) in diffs.items():
            sets.append(f"{col} = ?")
            vals.append(self._to_column(col, new))
        vals.append(expense.id)
        self.conn.execute(
            f"UPDATE expenses SET {', '.join(sets)} WHERE id = ?", vals
        )
        for col, (old, new) in diffs.items():
            self._insert_audit(AuditEntry(
                entity_type="expense", entity_id=expense.id,
                field_changed=col,
                old_value=self._audit_value(old),
                new_value=self._audit_value(new),
                note=note,
            ))

    @staticmethod
    def _to_column(col: str, value):
        if col == "receipt_urls":
            return json.dumps(value)
        if isinstance(value, bool):
            return int(value)
        return value

    @staticmethod
    def _audit_value(value) -> str | None:
        if value is None:
            return None
        if isinstance(value, list):
            return json.dumps(value)
        return str(value)

    # ── Receipt Inbox ───────────────────────────────────────

    def insert_inbox_item(self, item: InboxItem) -> InboxItem:
        self.conn.execute(
            "INSERT INTO receipt_inbox"
            " (id, project_id, storage_path, url, original_filename,"
            "  whatsapp_sender, timestamp, import_run_id,"
            "  assigned_expense_id, created_at)"
            " VALUES (?,?,?,?,?,?,?,?,?,?)",
            (item.id, item.project_id, item.storage_path, item.url,
             item.original_filename, item.whatsapp_sender, item.timestamp,
             item.import_run_id, item.assigned_expense_id, item.created_at),
        )
        self.conn.commit()
        return item

    def get_inbox_item(self, item_id: str) -> InboxItem | None:
        row = self.conn.execute(
            "SELECT * FROM receipt_inbox WHERE id = ?", (item_id,)
        ).fetchone()
        return self._row_to_inbox_item(row) if row else None

    def get_unassigned_inbox(self, project_id: str) -> list[InboxItem]:
        rows = self.conn.execute(
            "SELECT * FROM receipt_inbox"
            " WHERE project_id = ? AND assigned_expense_id IS NULL"
            " ORDER BY timestamp, rowid",
            (project_id,),
        ).fetchall()
        return [self._row_to_inbox_item(r) for r in rows]

    def get_inbox_filenames(self, project_id: str) -> set[str]:
        """Original filenames already in the inbox, assigned or not."""
        rows = self.conn.execute(
            "SELECT original_filename FROM receipt_inbox WHERE project_id = ?",
            (project_id,),
        ).fetchall()
        return {r["original_filename"] for r in rows}

    def assign_inbox_item(
        self, item_id: str, expense_id: str, project_id: str | None = None,
    ) -> Expense:
        """Attach an inbox receipt to an expense of the same project.

        The receipt URL is appended to the expense's receipt_urls and the
        missing_receipt flag cleared. When project_id is given, the item
        must belong to it.

        Raises:
            ValueError: Unknown item or expense, item already assigned, or
                item and expense in different projects.
        """
        item = self.get_inbox_item(item_id)
        if item is None:
            raise ValueError(f"Unknown inbox item: {item_id}")
        if project_id is not None and item.project_id != project_id:
            raise ValueError(
                f"Inbox item {item_id} belongs to project {item.project_id}, not {project_id}"
            )
        if item.assigned_expense_id:
            raise ValueError(
                f"Inbox item {item_id} already assigned to {item.assigned_expense_id}"
            )
        expense = self.get_expense(expense_id)
        if expense is None:
            raise ValueError(f"Unknown expense: {expense_id}")
        if expense.project_id != item.project_id:
            raise ValueError(
                f"Expense {expense_id} belongs to project {expense.project_id},"
                f" inbox item {item_id} to {item.project_id}"
            )

        url = item.url or item.storage_path
        try:
            self.conn.execute("BEGIN")
            self._write_expense_changes(
                expense,
                {"receipt_urls": [*expense.receipt_urls, url], "missing_receipt": False},
                note=f"receipt {item.original_filename} assigned from inbox",
            )
            self.conn.execute(
                "UPDATE receipt_inbox SET assigned_expense_id = ? WHERE id = ?",
                (expense_id, item_id),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_expense(expense_id)

    # ── Audit Log ───────────────────────────────────────────

    def _insert_audit(self, entry: AuditEntry):
        self.conn.execute(
            "INSERT INTO audit_log"
            " (id, entity_type, entity_id, field_changed, old_value,"
            "  new_value, note, changed_at)"
            " VALUES (?,?,?,?,?,?,?,?)",
            (entry.id, entry.entity_type, entry.entity_id,
             entry.field_changed, entry.old_value, entry.new_value,
             entry.note, entry.changed_at),
        )

    def get_audit_log(self, entity_id: str) -> list[AuditEntry]:
        rows = self.conn.execute(
            "SELECT * FROM audit_log WHERE entity_id = ?"
            " ORDER BY changed_at, rowid",
            (entity_id,),
        ).fetchall()
        return [
            AuditEntry(
                id=r["id"], entity_type=r["entity_type"],
                entity_id=r["entity_id"], field_changed=r["field_changed"],
                old_value=r["old_value"], new_value=r["new_value"],
                note=r["note"], changed_at=r["changed_at"],
            )
            for r in rows
        ]

    # ── Row Converters ──────────────────────────────────────

    @staticmethod
    def _row_to_project(row: sqlite3.Row) -> Project:
        return Project(
            id=row["id"], name=row["name"], currency=row["currency"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_partner(row: sqlite3.Row) -> Partner:
        return Partner(
            id=row["id"], project_id=row["project_id"], name=row["name"],
            active=bool(row["active"]), created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_sender_mapping(row: sqlite3.Row) -> SenderMapping:
        return SenderMapping(
            id=row["id"], project_id=row["project_id"],
            whatsapp_name=row["whatsapp_name"],
            partner_id=row["partner_id"], ignored=bool(row["ignored"]),
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_import_run(row: sqlite3.Row) -> ImportRun:
        return ImportRun(
            id=row["id"], project_id=row["project_id"],
            file_name=row["file_name"], file_hash=row["file_hash"],
            messages_parsed=row["messages_parsed"],
            candidates_found=row["candidates_found"],
            duplicates_skipped=row["duplicates_skipped"],
            expenses_imported=row["expenses_imported"],
            receipts_matched=row["receipts_matched"],
            receipts_unmatched=row["receipts_unmatched"],
            errors=row["errors"], status=row["status"],
            error_message=row["error_message"],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )

    @staticmethod
    def _row_to_message_hash(row: sqlite3.Row) -> MessageHash:
        return MessageHash(
            id=row["id"], project_id=row["project_id"],
            message_hash=row["message_hash"], expense_id=row["expense_id"],
            import_run_id=row["import_run_id"], created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_expense(row: sqlite3.Row) -> Expense:
        return Expense(
            id=row["id"], project_id=row["project_id"],
            date=row["date"], amount=row["amount"],
            paid_by_partner_id=row["paid_by_partner_id"],
            category=row["category"], notes=row["notes"],
            receipt_urls=json.loads(row["receipt_urls"] or "[]"),
            missing_receipt=bool(row["missing_receipt"]),
            needs_review=bool(row["needs_review"]),
            is_fund_transfer=bool(row["is_fund_transfer"]),
            source=row["source"], import_run_id=row["import_run_id"],
            created_at=row["created_at"], updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_inbox_item(row: sqlite3.Row) -> InboxItem:
        return InboxItem(
            id=row["id"], project_id=row["project_id"],
            storage_path=row["storage_path"], url=row["url"],
            original_filename=row["original_filename"],
            whatsapp_sender=row["whatsapp_sender"],
            timestamp=row["timestamp"],
            import_run_id=row["import_run_id"],
            assigned_expense_id=row["assigned_expense_id"],
            created_at=row["created_at"],
        )

"""Dataclass models matching the SQLite schema.

Each dataclass corresponds to one table. Fields match column names exactly.
All primary keys are TEXT (UUID strings generated via uuid4()).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4


def _new_id() -> str:
    return str(uuid4())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Project:
    id: str
    name: str
    currency: str = "EGP"
    created_at: str = field(default_factory=_now)


@dataclass
class Partner:
    project_id: str
    name: str
    id: str = field(default_factory=_new_id)
    active: bool = True
    created_at: str = field(default_factory=_now)


@dataclass
class SenderMapping:
    project_id: str
    whatsapp_name: str
    id: str = field(default_factory=_new_id)
    partner_id: str | None = None
    ignored: bool = False
    updated_at: str = field(default_factory=_now)


@dataclass
class ImportRun:
    project_id: str
    file_name: str
    id: str = field(default_factory=_new_id)
    file_hash: str | None = None
    messages_parsed: int = 0
    candidates_found: int = 0
    duplicates_skipped: int = 0
    expenses_imported: int = 0
    receipts_matched: int = 0
    receipts_unmatched: int = 0
    errors: int = 0
    status: str = "pending"
    error_message: str | None = None
    created_at: str = field(default_factory=_now)
    completed_at: str | None = None


@dataclass
class Expense:
    project_id: str
    date: str
    amount: float
    id: str = field(default_factory=_new_id)
    paid_by_partner_id: str | None = None
    category: str | None = None
    notes: str | None = None
    receipt_urls: list[str] = field(default_factory=list)
    missing_receipt: bool = True
    needs_review: bool = False
    is_fund_transfer: bool = False
    source: str = "whatsapp"
    import_run_id: str | None = None
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)


@dataclass
class MessageHash:
    project_id: str
    message_hash: str
    id: str = field(default_factory=_new_id)
    expense_id: str | None = None
    import_run_id: str | None = None
    created_at: str = field(default_factory=_now)


@dataclass
class InboxItem:
    project_id: str
    storage_path: str
    original_filename: str
    id: str = field(default_factory=_new_id)
    url: str | None = None
    whatsapp_sender: str | None = None
    timestamp: str | None = None
    import_run_id: str | None = None
    assigned_expense_id: str | None = None
    created_at: str = field(default_factory=_now)


@dataclass
class AuditEntry:
    entity_type: str
    entity_id: str
    field_changed: str
    id: str = field(default_factory=_new_id)
    old_value: str | None = None
    new_value: str | None = None
    note: str | None = None
    changed_at: str = field(default_factory=_now)

"""CLI entry point for ChatLedger.

Commands:
    chatledger import [--file PATH] [--dry-run] [--include N] [--exclude N]
                      [--set-amount N=AMOUNT] [--set-category N=CATEGORY]
                                          Import one export or all pending
    chatledger watch                      Start file watcher daemon
    chatledger status                     Expense, review and inbox counts
    chatledger review                     List expenses needing review
    chatledger settle                     Partner balances and transfers
    chatledger export [--output PATH]     Write the CSV report
    chatledger push                       Force full Sheets rebuild
    chatledger senders list               Show WhatsApp sender mappings
    chatledger senders map NAME PARTNER   Map a sender to a partner
    chatledger senders ignore NAME        Ignore a sender's messages
    chatledger inbox list                 Show unassigned receipts
    chatledger inbox assign ITEM EXPENSE  Attach an inbox receipt
    chatledger imports [--limit N]        Import history
    chatledger expense add --amount X --paid-by P [--date D] [--category C]
                           [--notes T] [--fund-transfer] [--receipt PATH]
                                          Record a manual expense
    chatledger expense list [--month YYYY-MM] [--partner P] [--category C]
                            [--needs-review | --no-needs-review] [--missing-receipt]
                                          List expenses
    chatledger expense edit ID [...]      Edit an expense (audited)

All commands accept --project; it defaults to CHATLEDGER_PROJECT, then
the config's default project.
"""

from __future__ import annotations

import argparse
import logging
import os
import re
import sys
import time
from pathlib import Path

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging based on CHATLEDGER_LOG_LEVEL env var."""
    level = os.environ.get("CHATLEDGER_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _get_config():
    """Load application config from config directory."""
    from chatledger.config import Config

    config_dir = os.environ.get("CHATLEDGER_CONFIG_DIR", "config")
    return Config(config_dir=config_dir)


def _get_repo():
    """Create a Repository connected to the configured database."""
    from chatledger.database.repository import Repository

    db_path = os.environ.get("CHATLEDGER_DB_PATH", "chatledger.db")
    return Repository(db_path=db_path)


def _get_migrations_dir() -> Path:
    from chatledger.database.repository import MIGRATIONS_DIR

    return Path(os.environ.get("CHATLEDGER_MIGRATIONS_DIR", MIGRATIONS_DIR))


def _open_repo(config):
    """Repository with migrations applied and projects synced from config."""
    repo = _get_repo()
    repo.apply_migrations(_get_migrations_dir())
    repo.sync_projects(config.projects)
    return repo


def _get_project(args: argparse.Namespace, config) -> str | None:
    return (
        getattr(args, "project", None)
        or os.environ.get("CHATLEDGER_PROJECT")
        or config.default_project
    )


def _get_spreadsheet():
    """Open the Google Sheets spreadsheet if configured.

    Returns a gspread.Spreadsheet instance, or None if not configured.
    """
    spreadsheet_id = os.environ.get("CHATLEDGER_SPREADSHEET_ID")
    credentials_path = os.environ.get("CHATLEDGER_CREDENTIALS")

    if not spreadsheet_id or not credentials_path:
        return None

    try:
        import gspread
        from google.oauth2.service_account import Credentials

        scopes = [
            "https://www.googleapis.com/auth/spreadsheets",
            "https://www.googleapis.com/auth/drive",
        ]
        creds = Credentials.from_service_account_file(credentials_path, scopes=scopes)
        gc = gspread.authorize(creds)
        return gc.open_by_key(spreadsheet_id)
    except Exception as e:
        logger.warning("Sheets not available: %s", e)
        return None


def _get_sheets():
    """Create a SheetsPush if credentials and spreadsheet ID are configured.

    Returns None if not configured (sheets push will be skipped).
    """
    spreadsheet = _get_spreadsheet()
    if spreadsheet is None:
        return None

    from chatledger.sheets.push import SheetsPush

    return SheetsPush(spreadsheet)


def _get_store():
    """Receipt store: Google Drive when a folder is configured, else local disk."""
    folder_id = os.environ.get("CHATLEDGER_DRIVE_FOLDER")
    credentials_path = os.environ.get("CHATLEDGER_CREDENTIALS")
    if folder_id and credentials_path:
        from chatledger.storage.drive import DriveReceiptStore

        return DriveReceiptStore(credentials_path, folder_id)

    from chatledger.storage.local import LocalReceiptStore

    return LocalReceiptStore(Path(os.environ.get("CHATLEDGER_RECEIPTS_DIR", "receipts")))


def _get_watch_dir() -> Path:
    """Get the watch directory from env or default."""
    return Path(os.environ.get("CHATLEDGER_WATCH_DIR", "import"))


def _partner_names(repo, project_id: str) -> dict[str, str]:
    return {p.id: p.name for p in repo.get_active_partners(project_id)}


def _resolve_partner(names: dict[str, str], value: str) -> str | None:
    """Partner id for an id or a case-insensitive display name."""
    if value in names:
        return value
    return {v.lower(): k for k, v in names.items()}.get(value.lower())


def _parse_assignments(values: list[str] | None, flag: str) -> list[tuple[int, str]]:
    """Split repeated `N=VALUE` options."""
    pairs = []
    for raw in values or []:
        index, sep, value = raw.partition("=")
        if not sep or not index.strip().isdigit():
            raise ValueError(f"{flag} expects N=VALUE, got '{raw}'")
        pairs.append((int(index), value.strip()))
    return pairs


# ── Command handlers ─────────────────────────────────────


def _apply_review_edits(preview, args: argparse.Namespace) -> None:
    for index in args.include or []:
        preview.include(index)
    for index in args.exclude or []:
        preview.exclude(index)
    for index, value in _parse_assignments(args.set_amount, "--set-amount"):
        preview.set_amount(index, float(value))
    for index, value in _parse_assignments(args.set_category, "--set-category"):
        preview.set_category(index, value or None)


def _print_preview(preview, partner_names: dict[str, str]) -> None:
    print(
        f"{preview.file_name}: {preview.messages_parsed} messages,"
        f" {len(preview.rows)} candidates, {len(preview.included_rows)} included,"
        f" {preview.duplicate_count} already imported"
    )
    print("-" * 96)
    for i, row in enumerate(preview.rows):
        if row.duplicate:
            mark = "dup"
        else:
            mark = "[x]" if row.included else "[ ]"
        flags = []
        if row.candidate.needs_review:
            flags.append("review")
        if row.candidate.is_total_line:
            flags.append("total")
        if not row.candidate.has_currency_hint:
            flags.append("no-currency")
        receipt = f"{row.receipt.filename} ({row.receipt.confidence})" if row.receipt else "-"
        notes = row.message.notes.replace("\n", " ")
        print(
            f"  {i:>3} {mark} {row.message.timestamp:%Y-%m-%d %H:%M}"
            f"  {partner_names.get(row.partner_id, row.partner_id or '?'):<10}"
            f"  {row.amount:>10.2f}  {(row.category or ''):<14}"
            f"  {notes[:30]:<30}  {receipt}  {','.join(flags)}"
        )
    if preview.unmapped_senders:
        print(
            "\nUnmapped senders (messages skipped): "
            + ", ".join(preview.unmapped_senders)
            + "\nMap them with: chatledger senders map NAME PARTNER"
        )
    from chatledger.parsers.base import IMAGE, media_kind_for_filename

    image_files = [f for f in preview.unmatched_files if media_kind_for_filename(f) == IMAGE]
    if image_files:
        print(f"\n{len(image_files)} unmatched image(s) will go to the receipt inbox")


def cmd_import(args: argparse.Namespace) -> int:
    """Import WhatsApp export(s) via the ImportPipeline."""
    from chatledger.parsers.archive import SUPPORTED_EXTENSIONS, ExportFormatError
    from chatledger.watcher.observer import ImportPipeline

    config = _get_config()
    project_id = _get_project(args, config)
    if project_id is None:
        print("Error: No project given. Use --project or set default_project in rules.yaml.")
        return 1

    repo = _open_repo(config)
    pipeline = ImportPipeline(
        repo=repo, config=config, store=_get_store(), sheets=_get_sheets(),
    )

    try:
        if args.file:
            filepath = args.file.resolve()
            if not filepath.exists():
                print(f"Error: File not found: {filepath}")
                return 1
            if filepath.suffix.lower() not in SUPPORTED_EXTENSIONS:
                print(f"Error: Unsupported file type: {filepath.suffix}")
                return 1

            try:
                preview = pipeline.preview(filepath, project_id)
                _apply_review_edits(preview, args)
            except (ExportFormatError, ValueError, IndexError) as e:
                print(f"Error: {e}")
                return 1

            _print_preview(preview, _partner_names(repo, project_id))
            if args.dry_run:
                print("\nDry run: nothing was written.")
                return 0

            result = pipeline.commit(preview)
            print(
                f"\n{result.file_name}: {result.status}"
                f" (imported={result.imported_count}, receipts={result.receipts_matched},"
                f" inbox={result.inbox_count}, errors={result.error_count})"
            )
            return 0 if result.status != "error" and not result.error_count else 1

        # Batch: process all supported files in watch dir
        watch_dir = _get_watch_dir()
        if not watch_dir.exists():
            print(f"Watch directory not found: {watch_dir}")
            return 1

        files = [
            f for f in sorted(watch_dir.iterdir())
            if f.is_file() and f.suffix.lower() in SUPPORTED_EXTENSIONS
        ]
        if not files:
            print("No pending files found.")
            return 0

        total_new = 0
        total_dup = 0
        errors = 0
        for filepath in files:
            result = pipeline.process_file(filepath, project_id)
            print(
                f"  {result.file_name}: {result.status}"
                f" (imported={result.imported_count}, dup={result.duplicate_count})"
            )
            total_new += result.imported_count
            total_dup += result.duplicate_count
            if result.status == "error":
                errors += 1

        print(f"\nProcessed {len(files)} files: {total_new} imported, {total_dup} duplicates, {errors} errors")
        return 1 if errors else 0
    finally:
        repo.close()


def cmd_watch(args: argparse.Namespace) -> int:
    """Start the file watcher daemon."""
    from chatledger.watcher.observer import FileWatcher, ImportPipeline

    config = _get_config()
    repo = _open_repo(config)
    pipeline = ImportPipeline(
        repo=repo, config=config, store=_get_store(), sheets=_get_sheets(),
    )
    watcher = FileWatcher(
        watch_dir=_get_watch_dir(),
        pipeline=pipeline,
        project_id=_get_project(args, config),
    )

    print(f"Watching {watcher.watch_dir} for WhatsApp exports... (Ctrl+C to stop)")
    watcher.start()

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopping watcher...")
    finally:
        watcher.stop()
        repo.close()

    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Display project status counts."""
    from chatledger.database.queries import get_status_counts

    config = _get_config()
    project_id = _get_project(args, config)
    repo = _open_repo(config)
    try:
        project = repo.get_project(project_id) if project_id else None
        if project is None:
            print(f"Error: Unknown project: {project_id}")
            return 1
        counts = get_status_counts(repo.conn, project_id)

        print(f"ChatLedger Status: {project.name}")
        print("=" * 40)
        print(f"  Expenses:            {counts['expenses']:,}")
        print(f"  Total spend:         {counts['total_amount']:,.2f} {project.currency}")
        print(f"  Needs review:        {counts['needs_review']:,}")
        print(f"  Missing receipt:     {counts['missing_receipt']:,}")
        print(f"  Receipts in inbox:   {counts['inbox']:,}")
        print(f"  Import runs:         {counts['import_runs']:,}")

        runs = repo.get_import_runs(project_id, limit=1)
        if runs:
            last = runs[0]
            print(
                f"\n  Last import: {last.file_name} ({last.status},"
                f" {last.expenses_imported} imported) at {last.created_at[:19]}"
            )
        return 0
    finally:
        repo.close()


def cmd_review(args: argparse.Namespace) -> int:
    """List expenses flagged for review or missing a receipt."""
    config = _get_config()
    project_id = _get_project(args, config)
    repo = _open_repo(config)
    try:
        names = _partner_names(repo, project_id)
        flagged = repo.get_expenses(project_id, needs_review=True)
        missing = [
            e for e in repo.get_expenses(project_id, missing_receipt=True)
            if not e.needs_review
        ]
        if not flagged and not missing:
            print("No expenses pending review.")
            return 0

        for title, expenses in (("Needs review", flagged), ("Missing receipt", missing)):
            if not expenses:
                continue
            print(f"{title} ({len(expenses)}):")
            print("-" * 80)
            for e in expenses:
                print(
                    f"  {e.id[:8]}  {e.date}  {e.amount:>10.2f}"
                    f"  {names.get(e.paid_by_partner_id, '?'):<10}"
                    f"  {(e.notes or '').replace(chr(10), ' ')[:40]}"
                )
            print()
        return 0
    finally:
        repo.close()


def cmd_settle(args: argparse.Namespace) -> int:
    """Show partner balances and the transfers that settle them."""
    from chatledger.database.queries import get_partner_balances
    from chatledger.settle.solver import settle

    config = _get_config()
    project_id = _get_project(args, config)
    repo = _open_repo(config)
    try:
        balances = get_partner_balances(repo.conn, project_id)
        if not balances:
            print("No active partners.")
            return 1

        print(f"{'Partner':<14}{'Paid':>12}{'Funds':>12}{'Share':>12}{'Balance':>12}")
        print("-" * 62)
        for b in balances:
            print(
                f"{b.name:<14}{b.expenses_paid:>12.2f}{b.funds_sent:>12.2f}"
                f"{b.equal_share:>12.2f}{b.balance:>+12.2f}"
            )

        settlements = settle(balances)
        print()
        if not settlements:
            print("All settled.")
        for s in settlements:
            print(f"  {s.from_partner} pays {s.to_partner}: {s.amount:,.2f}")
        return 0
    finally:
        repo.close()


def cmd_export(args: argparse.Namespace) -> int:
    """Write the sectioned CSV report."""
    from chatledger.reports.csv_report import build_report_csv

    config = _get_config()
    project_id = _get_project(args, config)
    repo = _open_repo(config)
    try:
        try:
            csv_text = build_report_csv(repo, project_id)
        except ValueError as e:
            print(f"Error: {e}")
            return 1
        if args.output:
            args.output.write_text(csv_text, encoding="utf-8-sig")
            print(f"Wrote {args.output}")
        else:
            sys.stdout.write(csv_text)
        return 0
    finally:
        repo.close()


def cmd_push(args: argparse.Namespace) -> int:
    """Force a full Google Sheets rebuild."""
    sheets = _get_sheets()
    if sheets is None:
        print("Error: Sheets not configured. Set CHATLEDGER_SPREADSHEET_ID and CHATLEDGER_CREDENTIALS.")
        return 1

    config = _get_config()
    project_id = _get_project(args, config)
    repo = _open_repo(config)
    try:
        print("Rebuilding all sheets from SQLite...")
        results = sheets.full_rebuild(repo, project_id, categories=config.categories)
        total_rows = sum(r.rows_pushed for r in results)
        print(f"Done. Pushed {total_rows} rows across {len(results)} sheets.")
        return 0
    finally:
        repo.close()


def cmd_senders(args: argparse.Namespace) -> int:
    """List or change WhatsApp sender mappings."""
    from chatledger.database.models import SenderMapping

    config = _get_config()
    project_id = _get_project(args, config)
    repo = _open_repo(config)
    try:
        names = _partner_names(repo, project_id)
        mappings = repo.get_sender_mappings(project_id)

        if args.senders_command == "list" or args.senders_command is None:
            if not mappings:
                print("No sender mappings yet. They are created on the first import.")
                return 0
            for name, m in mappings.items():
                target = "(ignored)" if m.ignored else names.get(m.partner_id, "(unmapped)")
                print(f"  {name:<30} → {target}")
            return 0

        if args.senders_command == "map":
            partner_id = _resolve_partner(names, args.partner)
            if partner_id is None:
                print(f"Error: Unknown partner '{args.partner}'. Partners: {', '.join(names.values())}")
                return 1
            repo.upsert_sender_mapping(SenderMapping(
                project_id=project_id, whatsapp_name=args.name, partner_id=partner_id,
            ))
            print(f"Mapped '{args.name}' to {names[partner_id]}.")
            return 0

        if args.senders_command == "ignore":
            repo.upsert_sender_mapping(SenderMapping(
                project_id=project_id, whatsapp_name=args.name, ignored=True,
            ))
            print(f"Ignoring messages from '{args.name}'.")
            return 0

        print(f"Unknown senders command: {args.senders_command}")
        return 1
    finally:
        repo.close()


def cmd_inbox(args: argparse.Namespace) -> int:
    """List unassigned receipts or attach one to an expense."""
    config = _get_config()
    project_id = _get_project(args, config)
    repo = _open_repo(config)
    try:
        if args.inbox_command == "assign":
            try:
                expense = repo.assign_inbox_item(args.item_id, args.expense_id, project_id=project_id)
            except ValueError as e:
                print(f"Error: {e}")
                return 1
            print(f"Attached receipt to expense {expense.id} ({len(expense.receipt_urls)} receipt(s)).")
            return 0

        items = repo.get_unassigned_inbox(project_id)
        if not items:
            print("Receipt inbox is empty.")
            return 0
        print(f"Unassigned receipts ({len(items)}):")
        for item in items:
            print(
                f"  {item.id}  {(item.timestamp or '')[:16]:<16}"
                f"  {(item.whatsapp_sender or '?'):<20}  {item.original_filename}"
            )
        return 0
    finally:
        repo.close()


def cmd_imports(args: argparse.Namespace) -> int:
    """Show import history, newest first."""
    config = _get_config()
    project_id = _get_project(args, config)
    repo = _open_repo(config)
    try:
        runs = repo.get_import_runs(project_id, limit=args.limit)
        if not runs:
            print("No imports yet.")
            return 0

        print(
            f"{'Date':<17}  {'File':<30}  {'Status':<10}"
            f"{'Imported':>9}{'Dup':>6}{'Receipts':>9}{'Inbox':>7}{'Errors':>7}"
        )
        print("-" * 98)
        for run in runs:
            print(
                f"{run.created_at[:16].replace('T', ' '):<17}  {run.file_name[:30]:<30}"
                f"  {run.status:<10}{run.expenses_imported:>9}{run.duplicates_skipped:>6}"
                f"{run.receipts_matched:>9}{run.receipts_unmatched:>7}{run.errors:>7}"
            )
            if run.error_message:
                print(f"    {run.error_message}")
        return 0
    finally:
        repo.close()


def _expense_add(args: argparse.Namespace, repo, project_id: str) -> int:
    from datetime import date

    from chatledger.database.models import Expense
    from chatledger.parsers.archive import mime_type_for
    from chatledger.storage.base import receipt_path

    if repo.get_project(project_id) is None:
        print(f"Error: Unknown project: {project_id}")
        return 1
    if args.amount <= 0:
        print("Error: Amount must be positive.")
        return 1
    try:
        expense_date = date.fromisoformat(args.date) if args.date else date.today()
    except ValueError:
        print(f"Error: Invalid date '{args.date}', expected YYYY-MM-DD.")
        return 1

    names = _partner_names(repo, project_id)
    partner_id = _resolve_partner(names, args.paid_by)
    if partner_id is None:
        print(f"Error: Unknown partner '{args.paid_by}'. Partners: {', '.join(names.values())}")
        return 1

    receipts = args.receipt or []
    for path in receipts:
        if not path.is_file():
            print(f"Error: Receipt not found: {path}")
            return 1

    urls = []
    if receipts:
        store = _get_store()
        for path in receipts:
            urls.append(store.put(
                receipt_path(project_id, path.name), path.read_bytes(), mime_type_for(path.name),
            ))

    expense = repo.insert_expense(Expense(
        project_id=project_id,
        date=expense_date.isoformat(),
        amount=args.amount,
        paid_by_partner_id=partner_id,
        category=args.category or None,
        notes=args.notes or None,
        receipt_urls=urls,
        missing_receipt=not urls,
        is_fund_transfer=args.fund_transfer,
        source="manual",
    ))
    kind = "fund transfer" if expense.is_fund_transfer else "expense"
    print(
        f"Added {kind} {expense.id}: {expense.amount:,.2f} paid by {names[partner_id]}"
        f" on {expense.date} ({len(urls)} receipt(s))"
    )
    return 0


def _expense_list(args: argparse.Namespace, repo, project_id: str) -> int:
    if args.month is not None and not re.fullmatch(r"\d{4}-(0[1-9]|1[0-2])", args.month):
        print(f"Error: Invalid month '{args.month}', expected YYYY-MM.")
        return 1

    names = _partner_names(repo, project_id)
    partner_id = None
    if args.partner is not None:
        partner_id = _resolve_partner(names, args.partner)
        if partner_id is None:
            print(f"Error: Unknown partner '{args.partner}'.")
            return 1

    expenses = repo.get_expenses(
        project_id,
        needs_review=args.needs_review,
        missing_receipt=True if args.missing_receipt else None,
        month=args.month,
        partner_id=partner_id,
        category=args.category,
    )
    if not expenses:
        print("No matching expenses.")
        return 0

    for e in expenses:
        flags = []
        if e.needs_review:
            flags.append("review")
        if e.missing_receipt:
            flags.append("no-receipt")
        if e.is_fund_transfer:
            flags.append("fund")
        print(
            f"  {e.id}  {e.date}  {e.amount:>10.2f}"
            f"  {names.get(e.paid_by_partner_id, '?'):<10}  {(e.category or ''):<14}"
            f"  {(e.notes or '').replace(chr(10), ' ')[:30]:<30}  {','.join(flags)}"
        )
    total = sum(e.amount for e in expenses if not e.is_fund_transfer)
    print(f"\n{len(expenses)} expense(s), {total:,.2f} spent")
    return 0


def _expense_edit(args: argparse.Namespace, repo, project_id: str) -> int:
    changes: dict = {}
    if args.amount is not None:
        if args.amount <= 0:
            print("Error: Amount must be positive.")
            return 1
        changes["amount"] = args.amount
    if args.category is not None:
        changes["category"] = args.category or None
    if args.notes is not None:
        changes["notes"] = args.notes
    if args.date is not None:
        changes["date"] = args.date
    if args.paid_by is not None:
        partner_id = _resolve_partner(_partner_names(repo, project_id), args.paid_by)
        if partner_id is None:
            print(f"Error: Unknown partner '{args.paid_by}'.")
            return 1
        changes["paid_by_partner_id"] = partner_id
    if args.fund_transfer is not None:
        changes["is_fund_transfer"] = args.fund_transfer
    if args.reviewed:
        changes["needs_review"] = False

    if not changes:
        print("Nothing to change.")
        return 1
    existing = repo.get_expense(args.expense_id)
    if existing is not None and existing.project_id != project_id:
        print(f"Error: Expense {args.expense_id} belongs to project {existing.project_id}.")
        return 1
    try:
        expense = repo.update_expense(args.expense_id, note=args.note, **changes)
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    print(f"Updated expense {expense.id}: {', '.join(sorted(changes))}")
    return 0


_EXPENSE_COMMANDS = {
    "add": _expense_add,
    "list": _expense_list,
    "edit": _expense_edit,
}


def cmd_expense(args: argparse.Namespace) -> int:
    """Add, list or edit expenses; edits are written to the audit log."""
    config = _get_config()
    project_id = _get_project(args, config)
    repo = _open_repo(config)
    try:
        return _EXPENSE_COMMANDS[args.expense_command](args, repo, project_id)
    finally:
        repo.close()


# ── Main entry point ─────────────────────────────────────


_COMMANDS = {
    "import": cmd_import,
    "watch": cmd_watch,
    "status": cmd_status,
    "review": cmd_review,
    "settle": cmd_settle,
    "export": cmd_export,
    "push": cmd_push,
    "senders": cmd_senders,
    "inbox": cmd_inbox,
    "imports": cmd_imports,
    "expense": cmd_expense,
}


def main(argv: list[str] | None = None):
    _setup_logging()

    parser = argparse.ArgumentParser(
        prog="chatledger",
        description="ChatLedger shared project expenses from WhatsApp chats",
    )
    parser.add_argument("--project", help="Project id (default: CHATLEDGER_PROJECT or config default)")
    subparsers = parser.add_subparsers(dest="command")

    # import
    import_p = subparsers.add_parser("import", help="Import WhatsApp export(s)")
    import_p.add_argument("--file", type=Path, help="Specific .zip or .txt export to import")
    import_p.add_argument("--dry-run", action="store_true", help="Preview only, write nothing")
    import_p.add_argument("--include", type=int, action="append", metavar="N",
                          help="Include preview row N")
    import_p.add_argument("--exclude", type=int, action="append", metavar="N",
                          help="Exclude preview row N")
    import_p.add_argument("--set-amount", action="append", metavar="N=AMOUNT",
                          help="Override the amount of preview row N")
    import_p.add_argument("--set-category", action="append", metavar="N=CATEGORY",
                          help="Set the category of preview row N")

    subparsers.add_parser("watch", help="Start file watcher daemon")
    subparsers.add_parser("status", help="Show expense, review and inbox counts")
    subparsers.add_parser("review", help="List expenses needing review")
    subparsers.add_parser("settle", help="Show partner balances and settlement transfers")

    export_p = subparsers.add_parser("export", help="Write the CSV report")
    export_p.add_argument("--output", type=Path, help="Output file (default: stdout)")

    subparsers.add_parser("push", help="Force full Sheets rebuild")

    # senders
    senders_p = subparsers.add_parser("senders", help="Manage WhatsApp sender mappings")
    senders_sub = senders_p.add_subparsers(dest="senders_command")
    senders_sub.add_parser("list", help="Show sender mappings")
    map_p = senders_sub.add_parser("map", help="Map a sender to a partner")
    map_p.add_argument("name", help="WhatsApp display name")
    map_p.add_argument("partner", help="Partner id or name")
    ignore_p = senders_sub.add_parser("ignore", help="Ignore a sender")
    ignore_p.add_argument("name", help="WhatsApp display name")

    # inbox
    inbox_p = subparsers.add_parser("inbox", help="Unassigned receipt inbox")
    inbox_sub = inbox_p.add_subparsers(dest="inbox_command")
    inbox_sub.add_parser("list", help="Show unassigned receipts")
    assign_p = inbox_sub.add_parser("assign", help="Attach a receipt to an expense")
    assign_p.add_argument("item_id", help="Inbox item id")
    assign_p.add_argument("expense_id", help="Expense id")

    imports_p = subparsers.add_parser("imports", help="Show import history")
    imports_p.add_argument("--limit", type=int, default=20, help="Number of runs (default: 20)")

    # expense
    expense_p = subparsers.add_parser("expense", help="Add, list or edit expenses")
    expense_sub = expense_p.add_subparsers(dest="expense_command", required=True)

    add_p = expense_sub.add_parser("add", help="Record a manual expense or fund transfer")
    add_p.add_argument("--amount", type=float, required=True)
    add_p.add_argument("--paid-by", required=True, help="Partner id or name")
    add_p.add_argument("--date", help="YYYY-MM-DD (default: today)")
    add_p.add_argument("--category")
    add_p.add_argument("--notes")
    add_p.add_argument("--fund-transfer", action="store_true",
                       help="Money sent into the shared pot, not spend")
    add_p.add_argument("--receipt", type=Path, action="append", metavar="PATH",
                       help="Receipt file to upload (repeatable)")

    list_p = expense_sub.add_parser("list", help="List expenses")
    list_p.add_argument("--month", help="YYYY-MM")
    list_p.add_argument("--partner", help="Partner id or name")
    list_p.add_argument("--category")
    list_p.add_argument("--needs-review", action=argparse.BooleanOptionalAction, default=None,
                        help="Only flagged (or, with --no-needs-review, only reviewed) expenses")
    list_p.add_argument("--missing-receipt", action="store_true",
                        help="Only expenses without a receipt")

    edit_p = expense_sub.add_parser("edit", help="Edit an expense")
    edit_p.add_argument("expense_id", help="Expense id")
    edit_p.add_argument("--amount", type=float)
    edit_p.add_argument("--category")
    edit_p.add_argument("--notes")
    edit_p.add_argument("--date", help="YYYY-MM-DD")
    edit_p.add_argument("--paid-by", help="Partner id or name")
    edit_p.add_argument("--fund-transfer", action=argparse.BooleanOptionalAction, default=None)
    edit_p.add_argument("--reviewed", action="store_true", help="Clear the needs-review flag")
    edit_p.add_argument("--note", help="Reason recorded in the audit log")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()

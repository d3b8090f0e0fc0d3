"""File watcher: PollingObserver + ImportPipeline orchestration.

Watches a drop folder for WhatsApp exports (.zip, .txt), waits for file
stability (size+mtime stable for 10s), validates file completeness, then
runs the import pipeline:
  load → parse → map senders → detect → dedup → match receipts
  → preview → commit → push

The pipeline is split in two so a human can review: preview() computes
everything and writes nothing; commit() persists the reviewed preview.

Uses PollingObserver as primary (not fallback) due to NAS/Docker volume
unreliability with inotify. 30-second polling interval.
"""

from __future__ import annotations

import logging
import time
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEventHandler

from chatledger.config import Config
from chatledger.database.dedup import Deduplicator
from chatledger.database.models import (
    Expense,
    ImportRun,
    InboxItem,
    MessageHash,
    SenderMapping,
)
from chatledger.database.repository import DuplicateHashError
from chatledger.detect.expenses import ExpenseCandidate, ExpenseDetector
from chatledger.detect.receipts import ReceiptMatch, ReceiptMatcher, unconsumed_files
from chatledger.detect.senders import (
    SenderAssignment,
    resolve_sender_mapping,
    sender_to_partner,
)
from chatledger.parsers.archive import (
    SUPPORTED_EXTENSIONS,
    ExportBundle,
    ExportFormatError,
    load_export,
    mime_type_for,
)
from chatledger.parsers.base import (
    IMAGE,
    MediaEvent,
    compute_file_hash,
    media_kind_for_filename,
    unique_senders,
)
from chatledger.parsers.whatsapp import WhatsAppTranscriptParser
from chatledger.storage.base import ReceiptStore, receipt_path

if TYPE_CHECKING:
    from chatledger.database.repository import Repository
    from chatledger.sheets.push import SheetsPush

logger = logging.getLogger(__name__)

# Default stability check parameters
DEFAULT_STABILITY_SECONDS = 10
DEFAULT_CHECK_INTERVAL = 2.0

# Default polling interval for PollingObserver
DEFAULT_POLL_INTERVAL = 30


class FileStabilityError(Exception):
    """Raised when a file fails post-stability validation."""


# ── Preview & result types ───────────────────────────────


@dataclass
class PreviewRow:
    """One detected expense as presented for review.

    amount, category and included are editable; everything else
    describes what detection found.
    """
    candidate: ExpenseCandidate
    partner_id: str | None
    receipt: ReceiptMatch | None = None
    duplicate: bool = False
    included: bool = False
    amount: float = 0.0
    category: str | None = None

    @property
    def message(self):
        return self.candidate.message


@dataclass
class ImportPreview:
    """Everything an import would do, computed without writing."""
    project_id: str
    file_name: str
    file_hash: str
    bundle: ExportBundle
    senders: dict[str, SenderAssignment]
    rows: list[PreviewRow] = field(default_factory=list)
    media_events: list[MediaEvent] = field(default_factory=list)
    unmatched_files: list[str] = field(default_factory=list)
    messages_parsed: int = 0
    skipped_count: int = 0

    @property
    def included_rows(self) -> list[PreviewRow]:
        return [r for r in self.rows if r.included]

    @property
    def duplicate_count(self) -> int:
        return sum(1 for r in self.rows if r.duplicate)

    @property
    def unmapped_senders(self) -> list[str]:
        return [
            s for s, a in self.senders.items()
            if a.partner_id is None and not a.ignored
        ]

    def _row(self, index: int) -> PreviewRow:
        if not 0 <= index < len(self.rows):
            raise IndexError(f"No preview row {index} (have {len(self.rows)})")
        return self.rows[index]

    def include(self, index: int) -> None:
        """Include a row.

        Raises:
            ValueError: The row is a duplicate or its sender is unmapped.
        """
        row = self._row(index)
        if row.duplicate:
            raise ValueError(f"Row {index} was already imported")
        if row.partner_id is None:
            raise ValueError(f"Row {index} has no partner mapping")
        row.included = True

    def exclude(self, index: int) -> None:
        self._row(index).included = False

    def set_amount(self, index: int, amount: float) -> None:
        if amount <= 0:
            raise ValueError(f"Amount must be positive, got {amount}")
        self._row(index).amount = amount

    def set_category(self, index: int, category: str | None) -> None:
        self._row(index).category = category


@dataclass
class ImportResult:
    """Result of importing a single export."""
    file_name: str
    status: str  # "success", "error"
    run_id: str | None = None
    messages_parsed: int = 0
    candidates_found: int = 0
    duplicate_count: int = 0
    imported_count: int = 0
    receipts_matched: int = 0
    receipts_unmatched: int = 0
    inbox_count: int = 0
    error_count: int = 0
    error_message: str | None = None


# ── File stability & validation ──────────────────────────


def wait_for_stable(
    filepath: Path,
    stability_seconds: int = DEFAULT_STABILITY_SECONDS,
    check_interval: float = DEFAULT_CHECK_INTERVAL,
    max_wait: float = 300.0,
) -> None:
    """Wait until file size and mtime are stable for stability_seconds.

    Raises:
        TimeoutError: If file doesn't stabilize within max_wait.
    """
    prev_size = -1
    prev_mtime = -1.0
    stable_since: float | None = None
    start = time.monotonic()

    while True:
        if time.monotonic() - start > max_wait:
            raise TimeoutError(
                f"File did not stabilize within {max_wait}s: {filepath}"
            )

        stat = filepath.stat()
        if stat.st_size == prev_size and stat.st_mtime == prev_mtime:
            if stable_since is None:
                stable_since = time.monotonic()
            elif time.monotonic() - stable_since >= stability_seconds:
                return
        else:
            stable_since = None

        prev_size = stat.st_size
        prev_mtime = stat.st_mtime
        time.sleep(check_interval)


def validate_file_completeness(filepath: Path) -> None:
    """Post-stability validation: ensure file content is complete.

    - ZIP files: central directory readable, entries pass CRC check
    - TXT files: non-empty

    Raises:
        FileStabilityError: If file appears incomplete.
    """
    suffix = filepath.suffix.lower()

    if suffix == ".zip":
        try:
            with zipfile.ZipFile(filepath) as archive:
                bad = archive.testzip()
        except (OSError, zipfile.BadZipFile) as e:
            raise FileStabilityError(f"Incomplete ZIP file: {filepath}") from e
        if bad is not None:
            raise FileStabilityError(f"Corrupt entry {bad} in ZIP file: {filepath}")

    elif suffix == ".txt":
        if filepath.stat().st_size == 0:
            raise FileStabilityError(f"Empty transcript file: {filepath}")


# ── Import pipeline ──────────────────────────────────────


class ImportPipeline:
    """Orchestrate: load → parse → detect → dedup → match → commit → push.

    Args:
        repo: Database repository.
        config: Application config.
        store: Receipt storage backend.
        sheets: Optional SheetsPush for Google Sheets sync.
    """

    def __init__(
        self,
        repo: Repository,
        config: Config,
        store: ReceiptStore,
        sheets: SheetsPush | None = None,
    ):
        self.repo = repo
        self.config = config
        self.store = store
        self.sheets = sheets
        self.dedup = Deduplicator(repo)
        self.detector = ExpenseDetector(
            min_amount=config.min_amount,
            strict_currency=config.strict_currency,
        )
        self.matcher = ReceiptMatcher(
            window=config.match_window,
            high_window=config.high_confidence_window,
        )

    def preview(self, filepath: Path, project_id: str) -> ImportPreview:
        """Compute the import of one export without writing anything.

        Raises:
            ExportFormatError: Unreadable export, or no messages found.
            ValueError: Unknown project.
        """
        filepath = Path(filepath)
        if self.repo.get_project(project_id) is None:
            raise ValueError(f"Unknown project: {project_id}")

        bundle = load_export(filepath)
        parser = WhatsAppTranscriptParser()
        parsed = parser.parse(bundle.chat_text)
        if not parsed.messages:
            raise ExportFormatError(f"No messages found in {filepath.name}")

        # Step 1: sender mapping (stored mappings win)
        partners = self.repo.get_active_partners(project_id)
        stored = {
            name: SenderAssignment(partner_id=m.partner_id, ignored=m.ignored)
            for name, m in self.repo.get_sender_mappings(project_id).items()
        }
        senders = resolve_sender_mapping(
            unique_senders(parsed.messages), partners, stored,
            aliases=self.config.partner_aliases(project_id),
        )
        active = sender_to_partner(senders)

        # Step 2: detect over mapped, non-ignored senders only
        messages = [m for m in parsed.messages if m.sender in active]
        candidates = self.detector.detect(messages)

        # Step 3: dedup against earlier runs
        seen = self.dedup.check(project_id, candidates)
        duplicate_ids = {id(c) for c in seen.duplicates}

        # Step 4: receipt matching
        available = list(bundle.media_files)
        matches = self.matcher.match(candidates, parsed.media_events, available, active)

        rows = []
        for idx, cand in enumerate(candidates):
            partner_id = active.get(cand.message.sender)
            duplicate = id(cand) in duplicate_ids
            rows.append(PreviewRow(
                candidate=cand,
                partner_id=partner_id,
                receipt=matches[idx],
                duplicate=duplicate,
                included=not cand.excluded and not duplicate and partner_id is not None,
                amount=cand.amount,
                category=cand.category,
            ))

        preview = ImportPreview(
            project_id=project_id,
            file_name=filepath.name,
            file_hash=compute_file_hash(filepath),
            bundle=bundle,
            senders=senders,
            rows=rows,
            media_events=parsed.media_events,
            unmatched_files=unconsumed_files(available, matches),
            messages_parsed=len(parsed.messages),
            skipped_count=parser.skipped_count,
        )
        logger.info(
            "Preview of %s: %d message(s), %d candidate(s), %d included, %d duplicate(s)",
            preview.file_name, preview.messages_parsed, len(rows),
            len(preview.included_rows), preview.duplicate_count,
        )
        return preview

    def commit(self, preview: ImportPreview) -> ImportResult:
        """Persist a reviewed preview.

        Failure of one row is logged and counted; the other rows are still
        imported. Run statistics are stored on the import run.
        """
        project_id = preview.project_id
        for name, assignment in preview.senders.items():
            self.repo.upsert_sender_mapping(SenderMapping(
                project_id=project_id,
                whatsapp_name=name,
                partner_id=assignment.partner_id,
                ignored=assignment.ignored,
            ))

        run = ImportRun(
            project_id=project_id,
            file_name=preview.file_name,
            file_hash=preview.file_hash,
            messages_parsed=preview.messages_parsed,
            candidates_found=len(preview.rows),
            duplicates_skipped=preview.duplicate_count,
            status="running",
        )
        self.repo.insert_import_run(run)

        result = ImportResult(
            file_name=preview.file_name,
            status="success",
            run_id=run.id,
            messages_parsed=preview.messages_parsed,
            candidates_found=len(preview.rows),
            duplicate_count=preview.duplicate_count,
        )
        # Files bound to a row that is not imported now (duplicates and
        # excluded rows) stay out of the inbox.
        used_files = {r.receipt.filename for r in preview.rows if r.receipt}

        for row in preview.included_rows:
            try:
                self._import_row(row, preview.bundle.media_files, run, result)
            except DuplicateHashError:
                logger.info("Message already imported by another run: %s", row.message.hash)
                result.duplicate_count += 1
            except Exception:
                logger.exception(
                    "Failed to import expense from %s at %s",
                    row.message.sender, row.message.timestamp,
                )
                result.error_count += 1

        self._route_to_inbox(preview, run, used_files, result)
        result.receipts_unmatched += result.inbox_count

        self.repo.update_import_run(
            run.id, "completed",
            duplicates_skipped=result.duplicate_count,
            expenses_imported=result.imported_count,
            receipts_matched=result.receipts_matched,
            receipts_unmatched=result.receipts_unmatched,
            errors=result.error_count,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )

        if self.sheets is not None:
            try:
                self.sheets.full_rebuild(
                    self.repo, project_id, categories=self.config.categories,
                )
            except Exception:
                logger.exception("Sheets push failed for %s", preview.file_name)

        logger.info(
            "Imported %s: %d expense(s), %d receipt(s), %d to inbox, %d error(s)",
            preview.file_name, result.imported_count, result.receipts_matched,
            result.inbox_count, result.error_count,
        )
        return result

    def _import_row(
        self, row: PreviewRow, media_files: dict[str, bytes],
        run: ImportRun, result: ImportResult,
    ) -> None:
        message = row.message
        urls: list[str] = []
        if row.receipt is not None and row.receipt.filename in media_files:
            filename = row.receipt.filename
            urls.append(self.store.put(
                receipt_path(run.project_id, filename),
                media_files[filename],
                mime_type_for(filename),
            ))

        expense = Expense(
            project_id=run.project_id,
            date=message.timestamp.date().isoformat(),
            amount=row.amount,
            paid_by_partner_id=row.partner_id,
            category=row.category,
            notes=message.notes or message.text,
            receipt_urls=urls,
            missing_receipt=not urls,
            needs_review=row.candidate.needs_review,
            import_run_id=run.id,
        )
        self.repo.insert_expense_with_hash(expense, MessageHash(
            project_id=run.project_id,
            message_hash=message.hash,
            import_run_id=run.id,
        ))
        result.imported_count += 1
        if urls:
            result.receipts_matched += 1
        else:
            result.receipts_unmatched += 1

    def _route_to_inbox(
        self, preview: ImportPreview, run: ImportRun,
        used_files: set[str], result: ImportResult,
    ) -> None:
        """Upload image files no expense claimed to the receipt inbox."""
        already = self.repo.get_inbox_filenames(run.project_id)
        for filename, content in preview.bundle.media_files.items():
            if filename in used_files or filename in already:
                continue
            if media_kind_for_filename(filename) != IMAGE:
                continue
            event = next(
                (e for e in preview.media_events if e.attached_filename == filename),
                None,
            )
            try:
                path = receipt_path(run.project_id, filename, inbox=True)
                url = self.store.put(path, content, mime_type_for(filename))
                self.repo.insert_inbox_item(InboxItem(
                    project_id=run.project_id,
                    storage_path=path,
                    url=url,
                    original_filename=filename,
                    whatsapp_sender=event.sender if event else None,
                    timestamp=event.timestamp.isoformat() if event else None,
                    import_run_id=run.id,
                ))
                result.inbox_count += 1
            except Exception:
                logger.exception("Failed to store inbox receipt %s", filename)
                result.error_count += 1

    def process_file(self, filepath: Path, project_id: str | None = None) -> ImportResult:
        """Preview then commit with the default selections.

        Returns an error result instead of raising for unreadable exports.
        """
        filepath = Path(filepath)
        project_id = project_id or self.config.default_project
        if filepath.suffix.lower() not in SUPPORTED_EXTENSIONS:
            return ImportResult(
                file_name=filepath.name,
                status="error",
                error_message=f"Unsupported file extension: {filepath.suffix}",
            )
        if project_id is None:
            return ImportResult(
                file_name=filepath.name,
                status="error",
                error_message="No project given and no default_project configured",
            )
        try:
            preview = self.preview(filepath, project_id)
        except (ExportFormatError, ValueError) as e:
            logger.error("Cannot import %s: %s", filepath.name, e)
            return ImportResult(
                file_name=filepath.name, status="error", error_message=str(e),
            )
        return self.commit(preview)


# ── File watcher ─────────────────────────────────────────


class FileWatcher(FileSystemEventHandler):
    """Watch a drop folder for new exports using PollingObserver.

    Primary watcher (not fallback). 30-second polling interval.
    Processes files sequentially to avoid database contention.

    Args:
        watch_dir: Directory to watch for new files.
        pipeline: ImportPipeline to process files.
        project_id: Project that dropped exports belong to.
        stability_seconds: Seconds of stability before processing.
        check_interval: Seconds between stability checks.
    """

    def __init__(
        self,
        watch_dir: Path,
        pipeline: ImportPipeline,
        project_id: str | None = None,
        stability_seconds: int = DEFAULT_STABILITY_SECONDS,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
    ):
        self.watch_dir = Path(watch_dir)
        self.pipeline = pipeline
        self.project_id = project_id
        self.stability_seconds = stability_seconds
        self.check_interval = check_interval
        self._observer = None

    def start(self) -> None:
        """Start watching the drop folder."""
        from watchdog.observers.polling import PollingObserver

        if not self.watch_dir.exists():
            self.watch_dir.mkdir(parents=True, exist_ok=True)

        self._observer = PollingObserver(timeout=DEFAULT_POLL_INTERVAL)
        self._observer.schedule(self, str(self.watch_dir), recursive=False)
        self._observer.start()
        logger.info("Watching %s for new WhatsApp exports", self.watch_dir)

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
            logger.info("File watcher stopped")

    def on_created(self, event) -> None:
        if event.is_directory:
            return

        filepath = Path(event.src_path)
        if filepath.suffix.lower() not in SUPPORTED_EXTENSIONS:
            return

        logger.info("New export detected: %s", filepath.name)
        self._process_file(filepath)

    def _process_file(self, filepath: Path) -> ImportResult | None:
        """Wait for stability, validate, then import."""
        try:
            wait_for_stable(
                filepath,
                stability_seconds=self.stability_seconds,
                check_interval=self.check_interval,
            )
            validate_file_completeness(filepath)

            result = self.pipeline.process_file(filepath, self.project_id)
            logger.info(
                "Import result for %s: %s (imported=%d, dup=%d, inbox=%d)",
                filepath.name, result.status,
                result.imported_count, result.duplicate_count, result.inbox_count,
            )
            return result

        except (FileStabilityError, TimeoutError) as e:
            logger.error("File validation failed: %s", e)
            return ImportResult(
                file_name=filepath.name, status="error", error_message=str(e),
            )
        except Exception as e:
            logger.exception("Unexpected error processing %s", filepath.name)
            return ImportResult(
                file_name=filepath.name, status="error", error_message=str(e),
            )

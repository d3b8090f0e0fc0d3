"""Message-level deduplication for repeated imports of the same chat.

A re-exported chat contains every earlier message again, so whole-file
hashes say nothing useful. Each candidate is keyed by its message hash
(SHA256 of timestamp|sender|text) and checked against the hashes
recorded by earlier import runs of the same project.

Recording happens only when an expense is actually imported; a preview
or dry-run never writes to the seen-hash store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from chatledger.database.repository import Repository
from chatledger.detect.expenses import ExpenseCandidate

logger = logging.getLogger(__name__)


@dataclass
class DedupPartition:
    """Candidates split into new and already-imported, each in input order."""
    new: list[ExpenseCandidate] = field(default_factory=list)
    duplicates: list[ExpenseCandidate] = field(default_factory=list)


def partition(
    candidates: list[ExpenseCandidate], seen_hashes: set[str],
) -> DedupPartition:
    """Split candidates by membership of their message hash in seen_hashes.

    A hash repeated within the batch is a duplicate after its first
    occurrence.
    """
    result = DedupPartition()
    batch: set[str] = set()
    for cand in candidates:
        h = cand.message.hash
        if h in seen_hashes or h in batch:
            result.duplicates.append(cand)
        else:
            result.new.append(cand)
            batch.add(h)
    return result


class Deduplicator:
    """Check candidates against the seen-hash store of one project."""

    def __init__(self, repo: Repository):
        self.repo = repo

    def check(self, project_id: str, candidates: list[ExpenseCandidate]) -> DedupPartition:
        seen = self.repo.get_seen_hashes(
            project_id, [c.message.hash for c in candidates],
        )
        result = partition(candidates, seen)
        if result.duplicates:
            logger.info(
                "Skipping %d already-imported message(s) for project %s",
                len(result.duplicates), project_id,
            )
        return result

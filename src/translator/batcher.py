"""Partitioning of subtitle entries into contiguous translation batches."""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from common.subtitle_parser import SubtitleEntry
from translator.errors import SegmentCountMismatchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Batch:
    """
    An ordered, contiguous, non-empty run of subtitle entries.

    index is the 1-based number of the batch produced by the initial split.
    Sub-batches created by adaptive splitting keep their parent's index and
    record their 1-based position in path.
    """

    index: int
    entries: Tuple[SubtitleEntry, ...]
    path: Tuple[int, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.entries:
            raise ValueError("Batch must contain at least one entry")

    @property
    def label(self) -> str:
        """Human readable batch label, e.g. '3' or '3.2.1'."""
        return ".".join(str(part) for part in (self.index, *self.path))

    @property
    def size(self) -> int:
        return len(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def apply_translations(self, translations: Sequence[str]) -> List[SubtitleEntry]:
        """
        Merge translated text back into the batch entries.

        Args:
            translations: One translated text per entry, in order

        Returns:
            New entries with translated text and original id/timing

        Raises:
            SegmentCountMismatchError: If counts differ (no partial acceptance)
        """
        if len(translations) != len(self.entries):
            raise SegmentCountMismatchError(
                expected_count=len(self.entries),
                actual_count=len(translations),
                batch_label=self.label,
            )
        return [
            entry.with_text(text) for entry, text in zip(self.entries, translations)
        ]


def _partition(entries: Sequence[SubtitleEntry], count: int) -> List[List[SubtitleEntry]]:
    """
    Split entries into min(count, len(entries)) contiguous runs.

    The first len(entries) % count runs get one extra entry.
    """
    if count < 1:
        raise ValueError(f"count must be at least 1, got {count}")

    total = len(entries)
    if total == 0:
        return []

    effective = min(count, total)
    base_size, remainder = divmod(total, effective)

    parts = []
    start = 0
    for position in range(effective):
        size = base_size + (1 if position < remainder else 0)
        parts.append(list(entries[start : start + size]))
        start += size
    return parts


def split_into_batches(entries: Sequence[SubtitleEntry], count: int) -> List[Batch]:
    """
    Partition entries into near-equal contiguous batches.

    Args:
        entries: Parsed subtitle entries in file order
        count: Requested number of batches (must be positive); capped at
            the number of entries

    Returns:
        List of Batch objects numbered from 1

    Raises:
        ValueError: If count is less than 1 or entries is None
    """
    if entries is None:
        raise ValueError("Entries list cannot be None")

    batches = [
        Batch(index=position, entries=tuple(part))
        for position, part in enumerate(_partition(entries, count), start=1)
    ]

    logger.info(
        f"Split {len(entries)} entries into {len(batches)} batches "
        f"(sizes: {[batch.size for batch in batches]})"
    )
    return batches


def resplit_batch(batch: Batch, count: int = 2) -> List[Batch]:
    """
    Split one batch into smaller sub-batches for adaptive recovery.

    Args:
        batch: Batch to split
        count: Number of sub-batches (capped at the batch size)

    Returns:
        Sub-batches covering the same entries in the same order

    Raises:
        ValueError: If count is less than 1
    """
    sub_batches = [
        Batch(index=batch.index, entries=tuple(part), path=(*batch.path, position))
        for position, part in enumerate(_partition(batch.entries, count), start=1)
    ]

    logger.info(
        f"✂️  Re-split batch {batch.label} ({batch.size} entries) into "
        f"{len(sub_batches)} sub-batches (sizes: {[b.size for b in sub_batches]})"
    )
    return sub_batches

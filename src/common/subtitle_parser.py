"""SRT subtitle parser and formatter for translation workflows."""

import logging
import re
from dataclasses import dataclass, replace
from typing import List

logger = logging.getLogger(__name__)

# Interior line-break convention for multi-line subtitle text
TEXT_LINE_SEPARATOR = "\n"

# One or more blank (whitespace-only) lines separate SRT blocks
BLOCK_SEPARATOR_PATTERN = re.compile(r"\n[ \t]*\n\s*")

# id, timing and at least one text line
MIN_BLOCK_LINES = 3


@dataclass(frozen=True)
class SubtitleEntry:
    """
    A single subtitle entry.

    sequence_id and timing are opaque: they are kept exactly as read,
    trailing whitespace included, and never parsed, so unusual numbering
    or timestamp formats survive a translation round trip. Only text is
    translated.
    """

    sequence_id: str
    timing: str
    text: str

    def with_text(self, text: str) -> "SubtitleEntry":
        """Return a copy with new text and the same id/timing."""
        return replace(self, text=text)

    def __str__(self) -> str:
        """Format entry as SRT block."""
        return f"{self.sequence_id}\n{self.timing}\n{self.text}\n"


class SRTParser:
    """Parser for SRT subtitle files."""

    @staticmethod
    def parse(content: str) -> List[SubtitleEntry]:
        """
        Parse SRT content into subtitle entries.

        Blocks with fewer than three lines are skipped and logged; a
        malformed block never fails the whole parse.

        Args:
            content: Raw SRT file content

        Returns:
            List of SubtitleEntry objects in file order
        """
        # Remove BOM (Byte Order Mark) if present (common in UTF-8 files)
        if content.startswith("\ufeff"):
            content = content[1:]

        content = content.replace("\r\n", "\n").replace("\r", "\n").strip()
        if not content:
            logger.info("Parsed 0 subtitle entries (empty content)")
            return []

        entries = []
        skipped = 0
        for block in BLOCK_SEPARATOR_PATTERN.split(content):
            lines = block.split("\n")
            if len(lines) < MIN_BLOCK_LINES:
                skipped += 1
                logger.warning(f"Skipping malformed subtitle block: {block!r}")
                continue

            entries.append(
                SubtitleEntry(
                    sequence_id=lines[0],
                    timing=lines[1],
                    text=TEXT_LINE_SEPARATOR.join(line.rstrip() for line in lines[2:]),
                )
            )

        if skipped:
            logger.info(
                f"Parsed {len(entries)} subtitle entries ({skipped} malformed blocks skipped)"
            )
        else:
            logger.info(f"Parsed {len(entries)} subtitle entries")
        return entries

    @staticmethod
    def format(entries: List[SubtitleEntry]) -> str:
        """
        Format subtitle entries back to SRT text.

        Each entry is emitted as id, timing and text followed by a blank
        line; trailing whitespace of the whole document is trimmed.

        Args:
            entries: List of SubtitleEntry objects

        Returns:
            Formatted SRT content string
        """
        return "".join(f"{entry}\n" for entry in entries).rstrip()


def extract_text_for_translation(entries: List[SubtitleEntry]) -> List[str]:
    """
    Extract text from entries for batch translation.

    Args:
        entries: List of subtitle entries

    Returns:
        List of text strings to translate

    Raises:
        ValueError: If entries list is None
    """
    if entries is None:
        raise ValueError("Entries list cannot be None")

    return [entry.text for entry in entries]

"""
LRC lyric parsing and timestamp formatting.

LRC text carries one lyric line per text line, prefixed with a bracketed
``[MM:SS.CC]`` marker (``[MM:SS:CC]`` is accepted too). Parsed entries are
``(text, timestamp_ms)`` tuples, the same shape the SYLT frame stores.
"""

import re
import logging
from typing import Iterable, List, Tuple

logger = logging.getLogger(__name__)

LyricEntry = Tuple[str, int]

# Exactly two digits per field; the remainder of the line is the lyric text
LRC_LINE = re.compile(r'^\[(\d{2}):(\d{2})[.:](\d{2})\](.*)$')


def parse_lrc(text: str) -> List[LyricEntry]:
    """
    Parse LRC text into (lyric_text, timestamp_ms) entries.

    Lines without a leading marker are skipped. Entries with empty text are
    kept, players use them as pauses.

    Args:
        text: LRC content, possibly with blank lines or comments mixed in

    Returns:
        Entries sorted ascending by timestamp; equal timestamps keep input order

    Examples:
        >>> parse_lrc("[00:01.40]Hello\\n[00:00.50]World")
        [('World', 500), ('Hello', 1400)]
    """
    if not text:
        return []

    entries = []
    skipped = 0
    for line in text.splitlines():
        match = LRC_LINE.match(line)
        if not match:
            skipped += 1
            continue
        minutes, seconds, centis = (int(g) for g in match.group(1, 2, 3))
        timestamp = minutes * 60000 + seconds * 1000 + centis * 10
        entries.append((match.group(4).strip(), timestamp))

    if skipped:
        logger.debug(f"Skipped {skipped} line(s) without an LRC timestamp")

    # sorted() is stable, ties stay in input order
    return sorted(entries, key=lambda entry: entry[1])


def format_lrc_timestamp(timestamp_ms: int) -> str:
    """
    Format milliseconds as an LRC ``[MM:SS.CC]`` marker.

    Minutes are not wrapped, so values past 99 minutes widen the field.
    """
    total_seconds = timestamp_ms // 1000
    minutes = total_seconds // 60
    seconds = total_seconds % 60
    centis = (timestamp_ms % 1000) // 10
    return f"[{minutes:02d}:{seconds:02d}.{centis:02d}]"


def entries_to_lrc(entries: Iterable[LyricEntry]) -> str:
    """Render entries back to LRC text, one line per entry in the given order."""
    return "\n".join(f"{format_lrc_timestamp(ts)}{text}" for text, ts in entries)

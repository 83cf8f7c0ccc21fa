"""
Cue Parser — SubRip text to an ordered, immutable list of timed cues.

Accepts raw bytes (as read from disk or produced by an ffmpeg demux),
detects the text encoding from its byte-order mark and tolerates
malformed blocks: a block that cannot be parsed is dropped, the rest
of the document is still returned.
"""

import codecs
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# 0:01:05,500 --> 00:01:07.250   (1-2 digit hours, comma or period)
TIMESTAMP_RE = re.compile(
    r"(\d{1,2}):(\d{2}):(\d{2})[,.](\d{3})\s*-->\s*"
    r"(\d{1,2}):(\d{2}):(\d{2})[,.](\d{3})"
)
TAG_RE = re.compile(r"<[^>]+>")
INDEX_RE = re.compile(r"[0-9]+")

# Longest prefixes first: the UTF-32LE BOM starts with the UTF-16LE one.
_BOMS: Tuple[Tuple[bytes, str], ...] = (
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)


@dataclass(frozen=True)
class Cue:
    """A single timed subtitle entry."""
    index: int
    start_ms: int
    end_ms: int
    text: str

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    def is_active_at(self, time_ms: int) -> bool:
        return self.start_ms <= time_ms <= self.end_ms

    def __repr__(self):
        return (f"Cue#{self.index}({self.start_ms}–{self.end_ms}ms, "
                f"'{self.text[:40]}')")


def timestamp_to_ms(hours: int, minutes: int, seconds: int, millis: int) -> int:
    return hours * 3_600_000 + minutes * 60_000 + seconds * 1000 + millis


def parse_timing_line(line: str) -> Optional[Tuple[int, int]]:
    """
    Parse a SubRip timing line.

    Returns:
        (start_ms, end_ms), or None if the line is not a timing line.

    Example:
        >>> parse_timing_line("00:01:05,500 --> 00:01:07,000")
        (65500, 67000)
    """
    match = TIMESTAMP_RE.search(line)
    if not match:
        return None
    g = [int(x) for x in match.groups()]
    return timestamp_to_ms(*g[:4]), timestamp_to_ms(*g[4:])


def detect_encoding(data: bytes) -> Tuple[str, int]:
    """Return (codec name, BOM length) for the given raw bytes."""
    for bom, encoding in _BOMS:
        if data.startswith(bom):
            return encoding, len(bom)
    return "utf-8", 0


def decode_text(data: bytes) -> str:
    encoding, skip = detect_encoding(data)
    return data[skip:].decode(encoding, errors="replace")


def strip_tags(text: str) -> str:
    return TAG_RE.sub("", text)


def _parse_block(block: str) -> Optional[Cue]:
    lines = block.split("\n")
    if len(lines) < 2:
        return None

    timing_at = -1
    timing = None
    for i, line in enumerate(lines[:3]):
        timing = parse_timing_line(line)
        if timing is not None:
            timing_at = i
            break
    if timing is None:
        return None

    start_ms, end_ms = timing
    if end_ms < start_ms:
        return None

    index = 0
    if timing_at > 0:
        candidate = lines[timing_at - 1].strip()
        if INDEX_RE.fullmatch(candidate):
            index = int(candidate)

    text_lines = [strip_tags(line).strip() for line in lines[timing_at + 1:]]
    text_lines = [line for line in text_lines if line]
    text = "\n".join(text_lines)
    if not text:
        return None

    return Cue(index=index, start_ms=start_ms, end_ms=end_ms, text=text)


def parse(data: Union[bytes, str]) -> List[Cue]:
    """
    Parse a SubRip document.

    Args:
        data: Raw file bytes (BOM-detected) or an already decoded string.

    Returns:
        Cues sorted by start time. Never raises for bad input; an
        undecodable or empty document yields an empty list.
    """
    try:
        text = data if isinstance(data, str) else decode_text(data)
    except (UnicodeDecodeError, LookupError) as e:
        logger.warning(f"Could not decode subtitle data: {e}")
        return []

    text = text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")

    cues: List[Cue] = []
    dropped = 0
    for block in re.split(r"\n[ \t]*\n", text):
        block = block.strip()
        if not block:
            continue
        cue = _parse_block(block)
        if cue is None:
            dropped += 1
            continue
        cues.append(cue)

    cues.sort(key=lambda c: c.start_ms)
    if dropped:
        logger.debug(f"Skipped {dropped} malformed subtitle block(s)")
    return cues


def parse_file(path: Union[str, Path]) -> List[Cue]:
    """Parse a subtitle file from disk; missing/unreadable files give []."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.warning(f"Cannot read subtitle file {path}: {e}")
        return []
    cues = parse(data)
    logger.info(f"Parsed {len(cues)} cues from {path.name}")
    return cues

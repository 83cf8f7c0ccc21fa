"""
SRT Writer — Standard SubRip subtitle file generator.

Writes Cue lists (e.g. an embedded track extracted by the TrackExtractor)
back to .srt files with sequential indices, HH:MM:SS,mmm timestamps and
UTF-8 encoding.
"""

import logging
from pathlib import Path
from typing import List, Sequence

from .cues import Cue

logger = logging.getLogger(__name__)


class SRTWriter:
    """
    Writes cues to a standard SRT (SubRip) file.

    SRT format:
        1
        00:00:01,200 --> 00:00:04,800
        Hello everyone, welcome to the show.

        2
        00:00:05,100 --> 00:00:06,300
        (Audience clapping)
    """

    def write(self, cues: Sequence[Cue], output_path: Path):
        """
        Write cues to an SRT file.

        Args:
            cues: Cue objects, sorted by start time.
            output_path: Path for the output .srt file.
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w", encoding="utf-8") as f:
            for i, cue in enumerate(cues):
                # Re-index sequentially (source indices may be 0 or gapped)
                f.write(f"{i + 1}\n")
                f.write(
                    f"{self.format_timestamp(cue.start_ms)} --> "
                    f"{self.format_timestamp(cue.end_ms)}\n"
                )
                f.write(f"{cue.text}\n")
                f.write("\n")

        logger.info(f"SRT written: {len(cues)} cues → {output_path}")

    @staticmethod
    def format_timestamp(ms: int) -> str:
        """
        Convert milliseconds to SRT timestamp format: HH:MM:SS,mmm

        Args:
            ms: Time in milliseconds (e.g., 125340)

        Returns:
            Formatted timestamp string (e.g., "00:02:05,340")
        """
        ms = max(0, int(ms))
        hours, rem = divmod(ms, 3_600_000)
        minutes, rem = divmod(rem, 60_000)
        secs, millis = divmod(rem, 1000)
        return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"

    def write_preview(self, cues: Sequence[Cue], max_entries: int = 10) -> str:
        """
        Generate a text preview of the cues.

        Args:
            cues: Cue objects.
            max_entries: Maximum entries to include in preview.

        Returns:
            Formatted string preview.
        """
        lines: List[str] = []
        shown = min(len(cues), max_entries)

        for cue in cues[:shown]:
            ts_start = self.format_timestamp(cue.start_ms)
            ts_end = self.format_timestamp(cue.end_ms)
            text_preview = cue.text.replace("\n", " / ")[:80]
            if len(cue.text) > 80:
                text_preview += "..."
            lines.append(f"  [{ts_start} → {ts_end}] {text_preview}")

        if len(cues) > shown:
            lines.append(f"  ... and {len(cues) - shown} more entries")

        return "\n".join(lines)

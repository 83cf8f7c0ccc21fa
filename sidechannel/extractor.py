"""
Track Extractor — demux one embedded subtitle stream to SRT and parse it.

The stream is converted by ffmpeg into a temporary .srt file which is
handed to the Cue Parser and removed on every exit path.
"""

import logging
import tempfile
import threading
import uuid
from pathlib import Path
from typing import List, Optional

from . import cues as cue_parser
from .cues import Cue
from .errors import (
    ErrorKind,
    Result,
    SideChannelError,
)
from .tools import ToolRunner, remove_temp_file

logger = logging.getLogger(__name__)


class TrackExtractor:
    """Extracts embedded subtitle streams using FFmpeg."""

    def __init__(
        self,
        ffmpeg: Optional[str],
        runner: ToolRunner,
        timeout: float = 30.0,
        temp_dir: Optional[Path] = None,
    ):
        self.ffmpeg = ffmpeg
        self.runner = runner
        self.timeout = timeout
        self.temp_dir = Path(temp_dir) if temp_dir else Path(tempfile.gettempdir())

    @property
    def available(self) -> bool:
        return self.ffmpeg is not None

    def build_command(self, video_path: str, subtitle_index: int, output: Path) -> List[str]:
        return [
            self.ffmpeg,
            "-y",
            "-i", str(video_path),
            "-map", f"0:s:{subtitle_index}",   # Nth subtitle stream only
            "-c:s", "srt",
            "-loglevel", "error",
            str(output),
        ]

    def extract_result(
        self,
        video_path: str,
        subtitle_index: int,
        cancel: Optional[threading.Event] = None,
    ) -> Result[List[Cue]]:
        """
        Extract subtitle stream `subtitle_index` (zero-based among the
        subtitle streams) of `video_path` into cues.
        """
        if not self.available:
            return Result.fail(ErrorKind.TOOL_UNAVAILABLE, "ffmpeg not available")
        if not video_path or not Path(video_path).is_file():
            return Result.fail(ErrorKind.NOT_READY, f"no such video: {video_path}")

        output = self.temp_dir / f"sidechannel_sub_{uuid.uuid4().hex}.srt"
        cmd = self.build_command(video_path, subtitle_index, output)
        logger.info(f"Extracting subtitle stream {subtitle_index} from {Path(video_path).name}")

        try:
            result = self.runner.run(cmd, timeout=self.timeout, cancel=cancel)
            if not result.ok:
                logger.warning(
                    f"FFmpeg subtitle extraction failed: {result.stderr_text().strip()}"
                )
            if not output.is_file():
                return Result.fail(ErrorKind.MALFORMED_INPUT, "no subtitle output written")
            cues = cue_parser.parse_file(output)
        except SideChannelError as e:
            logger.warning(f"Subtitle extraction aborted ({e.kind.value}): {e}")
            return Result.from_error(e)
        finally:
            remove_temp_file(output)

        logger.info(f"Extracted {len(cues)} cues from stream {subtitle_index}")
        return Result.ok(cues)

    def extract_track(
        self,
        video_path: str,
        subtitle_index: int,
        cancel: Optional[threading.Event] = None,
    ) -> List[Cue]:
        """Cues of the selected stream; [] on any failure."""
        return self.extract_result(video_path, subtitle_index, cancel).unwrap_or([])

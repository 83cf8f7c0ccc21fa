"""
Media Side-Channel — Thumbnails and Subtitles for a Video Player

Background services built on ffmpeg / ffprobe subprocesses:
  - tools: tool discovery and the deadline-bounded subprocess runner
  - cues: SubRip parsing with BOM-based encoding detection
  - timeline: active-cue lookup
  - probe: embedded subtitle track discovery (ffprobe, ffmpeg fallback)
  - extractor: embedded subtitle stream extraction
  - thumbnails: seek-preview frame generation and caching
  - sync: subtitle slots, position and hover drivers
  - srt_writer: SRT file output
  - session: MediaSideChannel, the owner of all of the above
"""

from .cues import Cue
from .errors import ErrorKind, Result
from .probe import SubtitleTrack
from .session import MediaSideChannel, VideoContext
from .thumbnails import Thumbnail

__all__ = [
    "Cue",
    "ErrorKind",
    "MediaSideChannel",
    "Result",
    "SubtitleTrack",
    "Thumbnail",
    "VideoContext",
]

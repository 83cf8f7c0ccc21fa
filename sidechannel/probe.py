"""
Track Prober — enumerate subtitle streams embedded in a video container.

Two strategies are tried in order:
  1. FFprobeStrategy: structured JSON stream listing from ffprobe.
  2. FFmpegStderrStrategy: line scan of `ffmpeg -i` diagnostic output,
     used when ffprobe is not installed.

Both return tracks in discovery order, each with a zero-based
subtitle-local index (what `-map 0:s:N` expects) next to the
container's global stream index.
"""

import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from .errors import (
    MalformedInputError,
    Result,
    SideChannelError,
    ToolUnavailableError,
)
from .tools import ToolRunner

logger = logging.getLogger(__name__)

NO_EMBEDDED_LABEL = "(no embedded subtitles)"

LANGUAGE_NAMES: Dict[str, str] = {
    "eng": "English", "en": "English",
    "rus": "Русский", "ru": "Русский",
    "ukr": "Українська", "uk": "Українська",
    "spa": "Español", "es": "Español",
    "fra": "Français", "fre": "Français", "fr": "Français",
    "deu": "Deutsch", "ger": "Deutsch", "de": "Deutsch",
    "ita": "Italiano", "it": "Italiano",
    "por": "Português", "pt": "Português",
    "jpn": "日本語", "ja": "日本語",
    "kor": "한국어", "ko": "한국어",
    "chi": "中文", "zho": "中文", "zh": "中文",
    "ara": "العربية", "ar": "العربية",
    "hin": "हिन्दी", "hi": "हिन्दी",
    "tur": "Türkçe", "tr": "Türkçe",
    "pol": "Polski", "pl": "Polski",
    "nld": "Nederlands", "dut": "Nederlands", "nl": "Nederlands",
    "swe": "Svenska", "sv": "Svenska",
    "nor": "Norsk", "no": "Norsk",
    "fin": "Suomi", "fi": "Suomi",
    "dan": "Dansk", "da": "Dansk",
    "ces": "Čeština", "cze": "Čeština", "cs": "Čeština",
    "hun": "Magyar", "hu": "Magyar",
    "ron": "Română", "rum": "Română", "ro": "Română",
    "bul": "Български", "bg": "Български",
    "ell": "Ελληνικά", "gre": "Ελληνικά", "el": "Ελληνικά",
    "heb": "עברית", "he": "עברית",
    "tha": "ไทย", "th": "ไทย",
    "vie": "Tiếng Việt", "vi": "Tiếng Việt",
    "ind": "Bahasa Indonesia", "id": "Bahasa Indonesia",
    "msa": "Bahasa Melayu", "may": "Bahasa Melayu", "ms": "Bahasa Melayu",
    "und": "Unknown",
}


def language_name(code: str) -> str:
    """Readable name for an ISO 639 code; unknown codes come back upper-cased."""
    if not code:
        return ""
    return LANGUAGE_NAMES.get(code.lower(), code.upper())


@dataclass(frozen=True)
class SubtitleTrack:
    """One embedded subtitle stream."""
    stream_index: int        # zero-based among subtitle streams
    language: str = ""
    title: str = ""
    codec: str = ""
    global_index: int = -1   # container stream index, -1 if unknown

    @property
    def display_name(self) -> str:
        lang = language_name(self.language)
        if self.title:
            # Titles like "English [SDH]" already say what they are
            if any(mark in self.title for mark in "[("):
                return self.title
            if lang and lang.lower() not in self.title.lower():
                return f"{self.title} [{lang}]"
            return self.title
        if lang:
            return f"{lang} (Track {self.stream_index + 1})"
        return f"Track {self.stream_index + 1}"


class ProbeStrategy:
    """Interface for one way of listing subtitle streams."""

    name = "base"

    def available(self) -> bool:
        raise NotImplementedError

    def probe(
        self,
        video_path: str,
        timeout: float,
        cancel: Optional[threading.Event] = None,
    ) -> List[SubtitleTrack]:
        raise NotImplementedError


# ── Structured strategy (ffprobe JSON) ──────────────────────────


def _iter_json_objects(text: str) -> Iterator[str]:
    """Yield top-level {...} spans of a JSON array body, string-aware."""
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start >= 0:
                yield text[start:i + 1]
                start = -1


def _stream_dicts(output: str) -> List[Dict[str, Any]]:
    """
    Extract the stream objects from ffprobe's JSON.

    A well-formed document is loaded directly. If it is truncated or
    otherwise broken, every complete object inside the "streams" array
    is parsed on its own and broken objects are skipped.
    """
    if not output or '"streams"' not in output:
        return []
    try:
        doc = json.loads(output)
        streams = doc.get("streams") if isinstance(doc, dict) else None
        if not isinstance(streams, list):
            return []
        return [s for s in streams if isinstance(s, dict)]
    except json.JSONDecodeError:
        logger.debug("ffprobe JSON malformed, scanning stream objects")

    body = output[output.index('"streams"'):]
    bracket = body.find("[")
    if bracket < 0:
        return []
    streams = []
    for obj in _iter_json_objects(body[bracket + 1:]):
        try:
            value = json.loads(obj)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            streams.append(value)
    return streams


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def parse_ffprobe_streams(output: str) -> List[SubtitleTrack]:
    """Turn ffprobe `-show_streams -print_format json` output into tracks."""
    tracks: List[SubtitleTrack] = []
    for stream in _stream_dicts(output):
        if stream.get("codec_type") != "subtitle":
            continue
        tags = stream.get("tags")
        if not isinstance(tags, dict):
            tags = {}
        global_index = stream.get("index")
        tracks.append(SubtitleTrack(
            stream_index=len(tracks),
            language=_as_text(tags.get("language", stream.get("language"))),
            title=_as_text(tags.get("title", stream.get("title"))),
            codec=_as_text(stream.get("codec_name")),
            global_index=global_index if isinstance(global_index, int) else -1,
        ))
    return tracks


class FFprobeStrategy(ProbeStrategy):
    name = "ffprobe"

    def __init__(self, ffprobe: Optional[str], runner: ToolRunner):
        self.ffprobe = ffprobe
        self.runner = runner

    def available(self) -> bool:
        return bool(self.ffprobe)

    def probe(self, video_path, timeout, cancel=None):
        if not self.ffprobe:
            raise ToolUnavailableError("ffprobe not available")
        cmd = [
            self.ffprobe,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-select_streams", "s",
            str(video_path),
        ]
        result = self.runner.run(cmd, timeout=timeout, cancel=cancel)
        return parse_ffprobe_streams(result.stdout_text())


# ── Fallback strategy (ffmpeg -i diagnostics) ───────────────────

STREAM_HEADER_RE = re.compile(r"Stream #(\d+):(\d+)")
STREAM_LANG_RE = re.compile(r"Stream #\d+:\d+(?:\[[^\]]*\])?\((\w+)\)")
SUBTITLE_CODEC_RE = re.compile(r"Subtitle:\s*(\w+)")


def parse_ffmpeg_stderr(output: str) -> List[SubtitleTrack]:
    """
    Line-scan `ffmpeg -i` diagnostics for subtitle streams.

        Stream #0:2(eng): Subtitle: subrip (default)
          Metadata:
            title           : English [SDH]

    A track ends at the next Stream header; its title comes from a
    Metadata block directly under the header.
    """
    tracks: List[SubtitleTrack] = []
    current: Optional[Dict[str, Any]] = None
    in_metadata = False

    def flush():
        if current is not None:
            tracks.append(SubtitleTrack(stream_index=len(tracks), **current))

    for raw in output.split("\n"):
        line = raw.strip()
        if line.startswith("Stream #"):
            flush()
            current = None
            in_metadata = False
            if "Subtitle:" not in line:
                continue
            header = STREAM_HEADER_RE.search(line)
            lang = STREAM_LANG_RE.search(line)
            codec = SUBTITLE_CODEC_RE.search(line)
            current = {
                "language": lang.group(1) if lang else "",
                "codec": codec.group(1) if codec else "",
                "title": "",
                "global_index": int(header.group(2)) if header else -1,
            }
        elif current is None:
            continue
        elif line.startswith("Metadata:"):
            in_metadata = True
        elif in_metadata:
            key, sep, value = line.partition(":")
            if not sep:
                in_metadata = False
                continue
            if key.strip().lower() == "title" and value.strip():
                current["title"] = value.strip()
        elif line and not raw.startswith((" ", "\t")):
            # Back at top level (e.g. "At least one output file...")
            flush()
            current = None
    flush()
    return tracks


class FFmpegStderrStrategy(ProbeStrategy):
    name = "ffmpeg-stderr"

    def __init__(self, ffmpeg: Optional[str], runner: ToolRunner):
        self.ffmpeg = ffmpeg
        self.runner = runner

    def available(self) -> bool:
        return bool(self.ffmpeg)

    def probe(self, video_path, timeout, cancel=None):
        if not self.ffmpeg:
            raise ToolUnavailableError("ffmpeg not available")
        # Exits non-zero ("At least one output file must be specified");
        # the stream listing on stderr is all we need.
        cmd = [self.ffmpeg, "-hide_banner", "-i", str(video_path)]
        result = self.runner.run(cmd, timeout=timeout, cancel=cancel)
        return parse_ffmpeg_stderr(result.stderr_text())


# ── Prober ──────────────────────────────────────────────────────


class TrackProber:
    """Runs probe strategies in order and returns the first answer."""

    def __init__(self, strategies: List[ProbeStrategy], timeout: float = 10.0):
        self.strategies = strategies
        self.timeout = timeout

    def probe_result(
        self,
        video_path: str,
        cancel: Optional[threading.Event] = None,
    ) -> Result[List[SubtitleTrack]]:
        usable = [s for s in self.strategies if s.available()]
        if not usable:
            return Result.fail(
                ToolUnavailableError.kind, "no probing tool available"
            )
        try:
            strategy = usable[0]
            tracks = strategy.probe(video_path, self.timeout, cancel)
        except SideChannelError as e:
            logger.warning(f"Track probe failed ({e.kind.value}): {e}")
            return Result.from_error(e)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Track probe output unreadable: {e}")
            return Result.from_error(MalformedInputError(str(e)))

        logger.info(
            f"Found {len(tracks)} subtitle track(s) via {strategy.name}: "
            f"{[t.display_name for t in tracks]}"
        )
        return Result.ok(tracks)

    def probe_tracks(
        self,
        video_path: str,
        cancel: Optional[threading.Event] = None,
    ) -> List[SubtitleTrack]:
        """Subtitle tracks of `video_path`; [] on any failure."""
        return self.probe_result(video_path, cancel).unwrap_or([])

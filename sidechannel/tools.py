"""
Tool Runner — locating, validating and running ffmpeg / ffprobe.

Every subprocess in the subsystem goes through ToolRunner.run(), which
enforces a deadline, honours a cancellation Event and kills the child
process instead of waiting for it when either fires.
"""

import logging
import os
import shutil
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import ToolCancelledError, ToolTimeoutError, ToolUnavailableError

logger = logging.getLogger(__name__)

_EXE = ".exe" if sys.platform == "win32" else ""
POLL_INTERVAL = 0.05


@dataclass
class ToolResult:
    """Exit status and captured output of a finished subprocess."""
    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")

    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")


class LinkedCancel:
    """Cancellation signal that is set as soon as any of its sources is."""

    def __init__(self, *events: Optional[threading.Event]):
        self._events = [e for e in events if e is not None]

    def is_set(self) -> bool:
        return any(e.is_set() for e in self._events)


class ToolRunner:
    """Runs external tools with a deadline and a cancellation signal."""

    def run(
        self,
        cmd: Sequence[str],
        timeout: float,
        cancel=None,
    ) -> ToolResult:
        """
        Run `cmd` to completion.

        Raises:
            ToolUnavailableError: the executable could not be started.
            ToolTimeoutError: the deadline passed; the process was killed.
            ToolCancelledError: `cancel` was set; the process was killed.

        `cancel` is a threading.Event or anything else with is_set().
        """
        logger.debug(f"Running: {' '.join(str(c) for c in cmd)}")
        kwargs = {}
        if os.name == "nt":
            kwargs["creationflags"] = getattr(subprocess, "CREATE_NO_WINDOW", 0)

        try:
            proc = subprocess.Popen(
                [str(c) for c in cmd],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **kwargs,
            )
        except OSError as e:
            raise ToolUnavailableError(f"Cannot start {cmd[0]}: {e}")

        deadline = time.monotonic() + timeout
        while True:
            if cancel is not None and cancel.is_set():
                self._kill(proc)
                raise ToolCancelledError(f"{Path(cmd[0]).name} cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._kill(proc)
                raise ToolTimeoutError(
                    f"{Path(cmd[0]).name} timed out after {timeout:.1f}s"
                )
            try:
                # communicate() may be retried after TimeoutExpired without
                # losing output.
                stdout, stderr = proc.communicate(
                    timeout=min(POLL_INTERVAL, remaining)
                )
                return ToolResult(proc.returncode, stdout or b"", stderr or b"")
            except subprocess.TimeoutExpired:
                continue

    @staticmethod
    def _kill(proc: subprocess.Popen):
        try:
            proc.kill()
        except OSError:
            pass
        try:
            proc.communicate(timeout=2.0)
        except subprocess.TimeoutExpired:
            logger.warning(f"Process {proc.pid} did not exit after kill")


# ── Tool discovery ──────────────────────────────────────────────


def _app_dir() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent.parent


def candidate_paths(name: str, configured: Optional[str] = None) -> List[str]:
    """Places to look for `name`, most specific first."""
    candidates: List[str] = []
    if configured:
        candidates.append(configured)
    app = _app_dir()
    candidates.append(str(app / "ffmpeg" / f"{name}{_EXE}"))
    candidates.append(str(app / f"{name}{_EXE}"))
    if sys.platform == "win32":
        candidates += [
            rf"C:\ffmpeg\bin\{name}.exe",
            rf"C:\Program Files\ffmpeg\bin\{name}.exe",
        ]
    found = shutil.which(name)
    if found:
        candidates.append(found)

    unique, seen = [], set()
    for c in candidates:
        if c not in seen:
            seen.add(c)
            unique.append(c)
    return unique


def validate_tool(path: str, runner: ToolRunner, timeout: float = 2.0) -> bool:
    """True when `path -version` exits cleanly within `timeout`."""
    if os.sep in path or (os.altsep and os.altsep in path):
        if not Path(path).is_file():
            return False
    try:
        result = runner.run([path, "-version"], timeout=timeout)
    except (ToolUnavailableError, ToolTimeoutError, ToolCancelledError):
        return False
    if not result.ok:
        return False
    version_line = result.stdout_text().split("\n")[0]
    logger.debug(f"Validated {path}: {version_line}")
    return True


@dataclass
class ToolPaths:
    """Validated tool locations; None means unavailable for the session."""
    ffmpeg: Optional[str] = None
    ffprobe: Optional[str] = None

    @property
    def ffmpeg_available(self) -> bool:
        return self.ffmpeg is not None

    @property
    def ffprobe_available(self) -> bool:
        return self.ffprobe is not None


def locate_tools(
    runner: ToolRunner,
    ffmpeg_path: Optional[str] = None,
    ffprobe_path: Optional[str] = None,
    validate_timeout: float = 2.0,
) -> ToolPaths:
    """
    Find and validate ffmpeg and ffprobe once, at startup.

    ffprobe is looked up next to the ffmpeg that was found before the
    usual candidate list.
    """
    paths = ToolPaths()
    for candidate in candidate_paths("ffmpeg", ffmpeg_path):
        if validate_tool(candidate, runner, validate_timeout):
            paths.ffmpeg = candidate
            break

    probe_candidates = candidate_paths("ffprobe", ffprobe_path)
    if paths.ffmpeg and (os.sep in paths.ffmpeg):
        sibling = str(Path(paths.ffmpeg).parent / f"ffprobe{_EXE}")
        probe_candidates.insert(1 if ffprobe_path else 0, sibling)
    for candidate in probe_candidates:
        if validate_tool(candidate, runner, validate_timeout):
            paths.ffprobe = candidate
            break

    if paths.ffmpeg:
        logger.info(f"FFmpeg found: {paths.ffmpeg}")
    else:
        logger.warning(
            "FFmpeg not found. Thumbnails and embedded subtitles disabled.\n"
            "Download: https://ffmpeg.org/download.html"
        )
    if paths.ffprobe:
        logger.info(f"FFprobe found: {paths.ffprobe}")
    else:
        logger.info("FFprobe not found — track probing falls back to ffmpeg")
    return paths


def remove_temp_file(path: Path) -> bool:
    """Delete a temp file; failures are logged and ignored."""
    try:
        path.unlink(missing_ok=True)
        return True
    except OSError as e:
        logger.warning(f"Could not remove temp file {path}: {e}")
        return False


def format_ffmpeg_time(ms: int) -> str:
    """
    Milliseconds to ffmpeg's HH:MM:SS.mmm.

    Example:
        >>> format_ffmpeg_time(3_723_004)
        '01:02:03.004'
    """
    ms = max(0, int(ms))
    hours, rem = divmod(ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def probe_duration_ms(
    ffprobe: str,
    video_path: str,
    runner: ToolRunner,
    timeout: float = 10.0,
) -> int:
    """Get the media duration in milliseconds using ffprobe (0 if unknown)."""
    cmd = [
        ffprobe,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(video_path),
    ]
    result = runner.run(cmd, timeout=timeout)
    if not result.ok:
        logger.warning(f"ffprobe duration failed: {result.stderr_text().strip()}")
        return 0
    try:
        return int(float(result.stdout_text().strip()) * 1000)
    except ValueError:
        return 0

"""
Thumbnail Cache + Generator — seek-bar preview frames via FFmpeg.

Frames are cached per 10-second bucket. Only one ffmpeg decode runs at a
time; a request that finds the generator busy gets None immediately
instead of queueing, so hovering never stalls the player UI.

Seeking strategy:
  1. Combined seek: fast input seek to (target - 15s), then a precise
     output seek of 15s. Used when target > 15s.
  2. Output-only seek: decodes from the start of the file. Slower but
     works for containers where combined seeking fails.
"""

import logging
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import (
    BusyError,
    ErrorKind,
    NotReadyError,
    Result,
    SideChannelError,
    ToolTimeoutError,
)
from .tools import LinkedCancel, ToolRunner, format_ffmpeg_time, remove_temp_file

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 10_000
DEFAULT_MAX_CACHE_SIZE = 60
DEFAULT_PRE_SEEK_MS = 15_000


def bucket_key(time_ms: int, interval_ms: int = DEFAULT_INTERVAL_MS) -> int:
    """
    Quantize a timestamp to its cache bucket.

    Example:
        >>> bucket_key(125_000)
        120000
    """
    return (int(time_ms) // interval_ms) * interval_ms


@dataclass(frozen=True, eq=False)
class Thumbnail:
    """A decoded preview frame (read-only HxWx3 uint8 RGB array)."""
    bucket_key: int
    image: np.ndarray

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    def to_pil(self) -> Image.Image:
        return Image.fromarray(self.image)


# ═══════════════════════════════════════════════════════════════
#  Thumbnail Cache — write-once per bucket, cleared per video
# ═══════════════════════════════════════════════════════════════

class ThumbnailCache:
    """
    Bounded bucket → Thumbnail store.

    Not an LRU: once full, new frames are simply not cached. The whole
    cache is cleared when the video changes.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_CACHE_SIZE):
        self.max_size = max_size
        self._entries: Dict[int, Thumbnail] = {}
        self._lock = threading.Lock()

    def get(self, key: int) -> Optional[Thumbnail]:
        with self._lock:
            return self._entries.get(key)

    def put_if_absent(self, thumb: Thumbnail) -> bool:
        """Insert unless the key exists or the cache is full. True if stored."""
        with self._lock:
            if thumb.bucket_key in self._entries:
                return False
            if len(self._entries) >= self.max_size:
                return False
            self._entries[thumb.bucket_key] = thumb
            return True

    def has(self, key: int) -> bool:
        with self._lock:
            return key in self._entries

    def keys(self) -> List[int]:
        with self._lock:
            return sorted(self._entries)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)


# ═══════════════════════════════════════════════════════════════
#  Thumbnail Generator — one frame per ffmpeg call
# ═══════════════════════════════════════════════════════════════

class ThumbnailGenerator:
    """Decodes a single frame near a timestamp with a two-phase seek."""

    def __init__(
        self,
        ffmpeg: str,
        runner: ToolRunner,
        temp_dir: Path,
        width: int = 200,
        height: int = 112,
        quality: int = 5,
        pre_seek_ms: int = DEFAULT_PRE_SEEK_MS,
    ):
        self.ffmpeg = ffmpeg
        self.runner = runner
        self.temp_dir = Path(temp_dir)
        self.width = width
        self.height = height
        self.quality = quality
        self.pre_seek_ms = pre_seek_ms

    def build_command(
        self, video_path: str, time_ms: int, output: Path, combined: bool
    ) -> List[str]:
        """ffmpeg arguments for one frame at `time_ms`."""
        if combined:
            seek_args = [
                "-ss", format_ffmpeg_time(time_ms - self.pre_seek_ms),  # fast, keyframe
                "-i", str(video_path),
                "-ss", format_ffmpeg_time(self.pre_seek_ms),            # precise
            ]
        else:
            seek_args = [
                "-i", str(video_path),
                "-ss", format_ffmpeg_time(time_ms),
            ]
        return [
            self.ffmpeg,
            *seek_args,
            "-vframes", "1",
            "-s", f"{self.width}x{self.height}",
            "-q:v", str(self.quality),
            "-loglevel", "error",
            "-y",
            str(output),
        ]

    def generate(
        self,
        video_path: str,
        time_ms: int,
        timeout: float,
        cancel=None,
    ) -> Optional[np.ndarray]:
        """
        Decode the frame at `time_ms`.

        Args:
            video_path: Input video.
            time_ms: Target position.
            timeout: Overall deadline for both attempts, in seconds.
            cancel: Optional cancellation signal (anything with is_set()).

        Returns:
            Read-only RGB array, or None if neither seek strategy produced
            a frame.

        Raises:
            ToolTimeoutError: the deadline passed.
            ToolCancelledError: `cancel` fired.
        """
        output = self.temp_dir / f"thumb_{uuid.uuid4().hex}.jpg"
        deadline = time.monotonic() + timeout
        attempts = [True, False] if time_ms > self.pre_seek_ms else [False]

        try:
            for combined in attempts:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ToolTimeoutError(f"thumbnail at {time_ms}ms timed out")
                remove_temp_file(output)

                cmd = self.build_command(video_path, time_ms, output, combined)
                result = self.runner.run(cmd, timeout=remaining, cancel=cancel)
                frame = self._load_frame(output)
                if frame is not None:
                    return frame

                mode = "combined" if combined else "output-only"
                logger.debug(
                    f"{mode} seek produced no frame at {time_ms}ms "
                    f"(exit {result.returncode})"
                )
            return None
        finally:
            remove_temp_file(output)

    @staticmethod
    def _load_frame(path: Path) -> Optional[np.ndarray]:
        try:
            if not path.is_file() or path.stat().st_size == 0:
                return None
            with Image.open(path) as img:
                frame = np.array(img.convert("RGB"), dtype=np.uint8)
        except (OSError, UnidentifiedImageError) as e:
            logger.debug(f"Unreadable thumbnail output {path.name}: {e}")
            return None
        frame.setflags(write=False)
        return frame


# ═══════════════════════════════════════════════════════════════
#  Thumbnail Service — cache + single-flight generation
# ═══════════════════════════════════════════════════════════════

class ThumbnailService:
    """
    Serves preview frames for the current video.

    Usage:
        service = ThumbnailService(ffmpeg_path, ToolRunner())
        service.set_video("movie.mkv", 600_000)
        thumb = service.get_thumbnail(300_000)   # None on miss/busy/failure
    """

    def __init__(
        self,
        ffmpeg: Optional[str],
        runner: ToolRunner,
        config=None,
    ):
        self.interval_ms = getattr(config, "interval_ms", DEFAULT_INTERVAL_MS)
        self.generation_timeout = getattr(config, "generation_timeout", 3.0)
        self.guard_wait = getattr(config, "guard_wait", 0.05)

        self.ffmpeg = ffmpeg
        self.cache = ThumbnailCache(getattr(config, "max_cache_size", DEFAULT_MAX_CACHE_SIZE))
        self.temp_dir = self._make_temp_dir(getattr(config, "temp_dir", None))
        self.generator = ThumbnailGenerator(
            ffmpeg or "ffmpeg",
            runner,
            self.temp_dir,
            width=getattr(config, "width", 200),
            height=getattr(config, "height", 112),
            quality=getattr(config, "quality", 5),
            pre_seek_ms=getattr(config, "pre_seek_ms", DEFAULT_PRE_SEEK_MS),
        )

        self._guard = threading.Lock()
        self._state_lock = threading.Lock()
        self._video_path: Optional[str] = None
        self._duration_ms = 0
        self._epoch = 0
        self._video_cancel = threading.Event()
        self._enabled = getattr(config, "enabled", True)
        self._disposed = False

        if ffmpeg is None:
            logger.info("Thumbnails disabled: FFmpeg not available")

    @staticmethod
    def _make_temp_dir(configured: Optional[str]) -> Path:
        path = Path(configured) if configured else (
            Path(tempfile.gettempdir()) / "sidechannel" / "thumbnails"
        )
        try:
            path.mkdir(parents=True, exist_ok=True)
            return path
        except OSError as e:
            logger.warning(f"Cannot create thumbnail dir {path}: {e}")
            return Path(tempfile.gettempdir())

    # ── Public API ──────────────────────────────────────────

    @property
    def is_enabled(self) -> bool:
        return self._enabled and self.ffmpeg is not None and not self._disposed

    def set_video(self, video_path: Optional[str], duration_ms: int):
        """
        Switch to a new video (or update the duration of the current one).

        A path change clears the cache and cancels in-flight generation;
        their results are discarded.
        """
        with self._state_lock:
            if video_path != self._video_path:
                self._video_cancel.set()
                self._video_cancel = threading.Event()
                self._epoch += 1
                self._video_path = video_path
                self._duration_ms = duration_ms
                self.cache.clear()
                logger.debug(f"Thumbnail video set: {video_path} ({duration_ms}ms)")
            elif duration_ms != self._duration_ms:
                self._duration_ms = duration_ms

    def set_enabled(self, enabled: bool):
        self._enabled = enabled
        if not enabled:
            self.cache.clear()

    def get_thumbnail_result(
        self,
        time_ms: int,
        cancel: Optional[threading.Event] = None,
    ) -> Result[Thumbnail]:
        if not self.is_enabled:
            kind = ErrorKind.TOOL_UNAVAILABLE if self.ffmpeg is None else ErrorKind.NOT_READY
            return Result.fail(kind, "thumbnails disabled")

        with self._state_lock:
            video_path = self._video_path
            duration_ms = self._duration_ms
            epoch = self._epoch
            video_cancel = self._video_cancel

        try:
            if not video_path or not Path(video_path).is_file():
                raise NotReadyError("no video loaded")
            if duration_ms <= 0:
                raise NotReadyError("video duration unknown")

            key = bucket_key(time_ms, self.interval_ms)
            cached = self.cache.get(key)
            if cached is not None:
                return Result.ok(cached)

            if not self._guard.acquire(timeout=self.guard_wait):
                raise BusyError("generation already in flight")
            try:
                cached = self.cache.get(key)
                if cached is not None:
                    return Result.ok(cached)
                return self._generate(video_path, key, epoch, cancel, video_cancel)
            finally:
                self._guard.release()
        except SideChannelError as e:
            if e.kind not in (ErrorKind.BUSY, ErrorKind.NOT_READY):
                logger.debug(f"Thumbnail at {time_ms}ms unavailable: {e}")
            return Result.from_error(e)

    def get_thumbnail(
        self,
        time_ms: int,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[Thumbnail]:
        """Preview frame for `time_ms`, or None. Never blocks on a busy generator."""
        return self.get_thumbnail_result(time_ms, cancel).unwrap_or(None)

    def clear_cache(self):
        self.cache.clear()

    def dispose(self):
        """Stop serving frames and remove leftover temp images."""
        if self._disposed:
            return
        self._disposed = True
        self._video_cancel.set()
        self.cache.clear()
        try:
            for leftover in self.temp_dir.glob("thumb_*.jpg"):
                remove_temp_file(leftover)
        except OSError as e:
            logger.warning(f"Could not clean thumbnail dir {self.temp_dir}: {e}")

    # ── Internal ────────────────────────────────────────────

    def _generate(
        self,
        video_path: str,
        key: int,
        epoch: int,
        cancel: Optional[threading.Event],
        video_cancel: threading.Event,
    ) -> Result[Thumbnail]:
        signal = LinkedCancel(cancel, video_cancel)
        if signal.is_set():
            return Result.fail(ErrorKind.CANCELLED)

        started = time.monotonic()
        frame = self.generator.generate(
            video_path, key, self.generation_timeout, cancel=signal
        )
        if frame is None:
            return Result.fail(ErrorKind.MALFORMED_INPUT, f"no frame at {key}ms")

        if epoch != self._epoch or video_cancel.is_set():
            logger.debug(f"Discarding thumbnail {key}ms from previous video")
            return Result.fail(ErrorKind.CANCELLED, "video changed")

        thumb = Thumbnail(bucket_key=key, image=frame)
        if cancel is None or not cancel.is_set():
            stored = self.cache.put_if_absent(thumb)
            logger.debug(
                f"Thumbnail {key}ms generated in {time.monotonic() - started:.2f}s"
                f"{'' if stored else ' (not cached)'}"
            )
        return Result.ok(thumb)

"""
Media Side-Channel — owner of the per-video state and the background work.

Wires together:
  1. Tool discovery (once per session)
  2. Thumbnail service (seek-bar previews)
  3. Track prober + extractor (embedded subtitles)
  4. Subtitle slots + synchronization drivers
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from . import cues as cue_parser
from .cues import Cue
from .errors import ErrorKind, Result, SideChannelError
from .extractor import TrackExtractor
from .probe import (
    NO_EMBEDDED_LABEL,
    FFmpegStderrStrategy,
    FFprobeStrategy,
    SubtitleTrack,
    TrackProber,
)
from .sync import (
    CueChangedCallback,
    HoverDriver,
    PositionDriver,
    SubtitleSlot,
    time_from_ratio,
)
from .thumbnails import Thumbnail, ThumbnailService
from .tools import (
    LinkedCancel,
    ToolPaths,
    ToolRunner,
    locate_tools,
    probe_duration_ms,
)

logger = logging.getLogger(__name__)

PRIMARY = "primary"
SECONDARY = "secondary"


@dataclass(frozen=True)
class VideoContext:
    """The video currently loaded in the player."""
    path: str
    duration_ms: int = 0


def _done(value) -> Future:
    future: Future = Future()
    future.set_result(value)
    return future


class MediaSideChannel:
    """
    Thumbnails and subtitles for whatever the player is showing.

    Usage:
        channel = MediaSideChannel(config, on_cue_changed=show_cue)
        channel.start()
        channel.load_video("movie.mkv", 600_000)
        tracks = channel.probe_tracks().result().unwrap_or([])
        channel.select_track("primary", 0)
        ...
        channel.shutdown()
    """

    def __init__(
        self,
        config=None,
        runner: Optional[ToolRunner] = None,
        tools: Optional[ToolPaths] = None,
        on_cue_changed: Optional[CueChangedCallback] = None,
        on_hover_time: Optional[Callable[[int], None]] = None,
        on_thumbnail: Optional[Callable[[int, Thumbnail], None]] = None,
        position_source: Optional[Callable[[], Optional[int]]] = None,
        max_workers: int = 4,
    ):
        tools_cfg = getattr(config, "tools", None)
        subs_cfg = getattr(config, "subtitles", None)
        sync_cfg = getattr(config, "sync", None)

        self.runner = runner or ToolRunner()
        if tools is None:
            tools = locate_tools(
                self.runner,
                ffmpeg_path=getattr(tools_cfg, "ffmpeg_path", None),
                ffprobe_path=getattr(tools_cfg, "ffprobe_path", None),
                validate_timeout=getattr(tools_cfg, "validate_timeout", 2.0),
            )
        self.tools = tools
        self.probe_timeout = getattr(subs_cfg, "probe_timeout", 10.0)

        self.thumbnails = ThumbnailService(
            tools.ffmpeg, self.runner, getattr(config, "thumbnails", None)
        )
        self.prober = TrackProber(
            [
                FFprobeStrategy(tools.ffprobe, self.runner),
                FFmpegStderrStrategy(tools.ffmpeg, self.runner),
            ],
            timeout=self.probe_timeout,
        )
        self.extractor = TrackExtractor(
            tools.ffmpeg,
            self.runner,
            timeout=getattr(subs_cfg, "extract_timeout", 30.0),
        )

        self.slots: Dict[str, SubtitleSlot] = {
            PRIMARY: SubtitleSlot(PRIMARY),
            SECONDARY: SubtitleSlot(SECONDARY),
        }
        self.position_driver = PositionDriver(
            list(self.slots.values()),
            on_cue_changed=on_cue_changed,
            position_source=position_source,
            tick_interval=getattr(sync_cfg, "tick_interval", 0.1),
            epsilon_ms=getattr(sync_cfg, "position_epsilon_ms", 10),
            seek_tolerance_ms=getattr(sync_cfg, "seek_tolerance_ms", 2000),
        )
        self.hover_driver = HoverDriver(
            self.request_thumbnail,
            on_time=on_hover_time,
            on_thumbnail=on_thumbnail,
            debounce=getattr(sync_cfg, "hover_debounce", 0.15),
        )

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="sidechannel"
        )
        self._lock = threading.Lock()
        self._video: Optional[VideoContext] = None
        self._video_cancel = threading.Event()
        self._slot_cancel: Dict[str, threading.Event] = {
            name: threading.Event() for name in self.slots
        }
        self._closed = False

    # ── Video context ───────────────────────────────────────

    @property
    def video(self) -> Optional[VideoContext]:
        return self._video

    def load_video(self, path: str, duration_ms: Optional[int] = None) -> VideoContext:
        """
        Switch to a new video.

        Clears the thumbnail cache, both subtitle slots and the position
        state. If `duration_ms` is None it is probed in the background.
        """
        context = VideoContext(str(path), int(duration_ms or 0))
        with self._lock:
            self._video_cancel.set()
            self._video_cancel = threading.Event()
            self._video = context
            video_cancel = self._video_cancel

        for name in self.slots:
            self._cancel_slot_load(name)
            self.slots[name].clear()
        self.hover_driver.leave()
        self.position_driver.reset()
        self.thumbnails.set_video(context.path, context.duration_ms)
        logger.info(f"Video loaded: {Path(context.path).name} ({context.duration_ms}ms)")

        if duration_ms is None and self.tools.ffprobe_available:
            self._submit(self._probe_duration, context, video_cancel)
        return context

    def update_duration(self, duration_ms: int, video_cancel: Optional[threading.Event] = None) -> bool:
        """
        The playback engine learned the duration of the current video.

        With `video_cancel`, the update only applies if that video is still
        the current one. Returns False when nothing was updated.
        """
        with self._lock:
            if self._video is None:
                return False
            if video_cancel is not None and video_cancel is not self._video_cancel:
                return False
            self._video = VideoContext(self._video.path, int(duration_ms))
            context = self._video
            self.thumbnails.set_video(context.path, context.duration_ms)
        return True

    def _probe_duration(self, context: VideoContext, video_cancel: threading.Event):
        try:
            duration = probe_duration_ms(
                self.tools.ffprobe, context.path, self.runner,
                timeout=self.probe_timeout,
            )
        except SideChannelError as e:
            logger.warning(f"Duration probe failed ({e.kind.value}): {e}")
            return
        if duration <= 0:
            return
        if self.update_duration(duration, video_cancel):
            logger.debug(f"Probed duration: {duration}ms")

    # ── Subtitle tracks ─────────────────────────────────────

    def probe_tracks(
        self, cancel: Optional[threading.Event] = None
    ) -> "Future[Result[List[SubtitleTrack]]]":
        """List the embedded subtitle tracks of the current video."""
        context = self._video
        if context is None:
            return _done(Result.fail(ErrorKind.NOT_READY, "no video loaded"))
        return self._submit(self.prober.probe_result, context.path, cancel)

    @staticmethod
    def track_menu_labels(tracks: List[SubtitleTrack]) -> List[str]:
        if not tracks:
            return [NO_EMBEDDED_LABEL]
        return [t.display_name for t in tracks]

    def select_track(
        self,
        slot: str,
        subtitle_index: Optional[int],
        label: str = "",
        cancel: Optional[threading.Event] = None,
    ) -> "Future[Result[List[Cue]]]":
        """
        Load embedded track `subtitle_index` into `slot`.

        None disables the slot without running an extraction.
        """
        target = self.slots[slot]
        if subtitle_index is None:
            self._cancel_slot_load(slot)
            target.clear()
            return _done(Result.ok([]))

        context = self._video
        if context is None:
            return _done(Result.fail(ErrorKind.NOT_READY, "no video loaded"))

        video_cancel = self._video_cancel
        slot_cancel = self._cancel_slot_load(slot)
        token = target.begin_load(label or f"Track {subtitle_index + 1}")

        def run() -> Result[List[Cue]]:
            result = self.extractor.extract_result(
                context.path, subtitle_index, cancel=LinkedCancel(cancel, slot_cancel)
            )
            if video_cancel.is_set():
                return Result.fail(ErrorKind.CANCELLED, "video changed")
            target.finish_load(token, result.value or [], ok=result.is_ok)
            return result

        return self._submit(run)

    def load_file(self, slot: str, path: str) -> "Future[Result[List[Cue]]]":
        """Load an external subtitle file into `slot`."""
        target = self.slots[slot]
        self._cancel_slot_load(slot)
        token = target.begin_load(Path(path).name)

        def run() -> Result[List[Cue]]:
            if not Path(path).is_file():
                target.finish_load(token, [], ok=False)
                return Result.fail(ErrorKind.NOT_READY, f"no such file: {path}")
            loaded = cue_parser.parse_file(path)
            target.finish_load(token, loaded)
            logger.info(f"Loaded {len(loaded)} cues from {Path(path).name} into {slot}")
            return Result.ok(loaded)

        return self._submit(run)

    def _cancel_slot_load(self, slot: str) -> threading.Event:
        with self._lock:
            self._slot_cancel[slot].set()
            fresh = threading.Event()
            self._slot_cancel[slot] = fresh
            return fresh

    # ── Thumbnails ──────────────────────────────────────────

    def request_thumbnail(
        self, time_ms: int, cancel: Optional[threading.Event] = None
    ) -> "Future[Optional[Thumbnail]]":
        if self._closed:
            return _done(None)
        return self._submit(self.thumbnails.get_thumbnail, time_ms, cancel)

    def hover(self, ratio: float) -> int:
        """Seek-bar hover at x-ratio `ratio`; returns the hovered time."""
        context = self._video
        return self.hover_driver.hover(ratio, context.duration_ms if context else 0)

    def hover_leave(self):
        self.hover_driver.leave()

    # ── Playback position ───────────────────────────────────

    def seek_time_from_ratio(self, ratio: float) -> int:
        context = self._video
        return time_from_ratio(ratio, context.duration_ms if context else 0)

    def begin_seek(self, target_ms: int):
        self.position_driver.begin_seek(target_ms)

    def report_position(self, position_ms: int) -> bool:
        return self.position_driver.report_position(position_ms)

    # ── Lifecycle ───────────────────────────────────────────

    def start(self):
        self.position_driver.start()

    def shutdown(self):
        """Stop the drivers, cancel background work and clean up."""
        if self._closed:
            return
        self._closed = True
        self.hover_driver.shutdown()
        self.position_driver.stop()
        with self._lock:
            self._video_cancel.set()
            for event in self._slot_cancel.values():
                event.set()
        self._executor.shutdown(wait=True, cancel_futures=True)
        self.thumbnails.dispose()
        logger.info("Media side-channel shut down")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.shutdown()

    def _submit(self, fn, *args) -> Future:
        if self._closed:
            return _done(Result.fail(ErrorKind.NOT_READY, "shut down"))
        return self._executor.submit(fn, *args)


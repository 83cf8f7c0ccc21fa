"""
Synchronization Drivers — push subtitle and preview state to the UI.

  - SubtitleSlot: one subtitle lane (primary / secondary) holding an
    immutable cue tuple that is swapped wholesale on track change.
  - PositionDriver: ticks every ~100ms, locates the active cue in each
    slot and reports only changes.
  - HoverDriver: debounces seek-bar hover so a thumbnail is requested
    once the pointer rests, not once per pixel of movement.
"""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .cues import Cue
from .timeline import count_overlaps, find_active, is_sorted

logger = logging.getLogger(__name__)

CueChangedCallback = Callable[[str, Optional[Cue]], None]


class SlotStatus(Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class SubtitleSlot:
    """
    A subtitle lane. Readers always see a complete cue tuple: loads
    build a new tuple and swap it in with a single assignment.
    """

    def __init__(self, name: str):
        self.name = name
        self._cues: Tuple[Cue, ...] = ()
        self._label = ""
        self._status = SlotStatus.EMPTY
        self._version = 0
        self._load_token = 0
        self._lock = threading.Lock()

    @property
    def cues(self) -> Tuple[Cue, ...]:
        return self._cues

    @property
    def status(self) -> SlotStatus:
        return self._status

    @property
    def version(self) -> int:
        """Incremented whenever the cue list is replaced."""
        return self._version

    @property
    def label(self) -> str:
        if self._status is SlotStatus.LOADING:
            return f"{self._label} (loading...)"
        if self._status is SlotStatus.ERROR:
            return f"{self._label} (error)"
        return self._label or "(none)"

    def find_active(self, time_ms: int) -> Optional[Cue]:
        return find_active(self._cues, time_ms)

    def begin_load(self, label: str) -> int:
        """Mark the slot as loading; returns a token for finish_load()."""
        with self._lock:
            self._load_token += 1
            self._label = label
            self._status = SlotStatus.LOADING
            return self._load_token

    def finish_load(self, token: int, cues: Sequence[Cue], ok: bool = True) -> bool:
        """
        Install the result of load `token`. Ignored (returns False) when a
        newer load or a clear() superseded it.
        """
        with self._lock:
            if token != self._load_token:
                logger.debug(f"Slot {self.name}: dropping superseded load #{token}")
                return False
            if ok:
                self._swap(cues)
                self._status = SlotStatus.READY
            else:
                self._status = SlotStatus.ERROR
            return True

    def install(self, cues: Sequence[Cue], label: str = ""):
        with self._lock:
            self._load_token += 1
            self._label = label
            self._swap(cues)
            self._status = SlotStatus.READY

    def clear(self):
        with self._lock:
            self._load_token += 1
            self._label = ""
            self._swap(())
            self._status = SlotStatus.EMPTY

    def _swap(self, cues: Sequence[Cue]):
        ordered = tuple(cues)
        if not is_sorted(ordered):
            logger.warning(f"Slot {self.name}: cues out of order, sorting")
            ordered = tuple(sorted(ordered, key=lambda c: c.start_ms))
        overlaps = count_overlaps(ordered)
        if overlaps:
            logger.warning(
                f"Slot {self.name}: {overlaps} overlapping cue(s); "
                f"active-cue lookup is best-effort"
            )
        self._cues = ordered
        self._version += 1


@dataclass(frozen=True)
class PendingSeekGuard:
    """Ignore stale position reports until playback nears the seek target."""
    target_ms: int
    tolerance_ms: int = 2000

    def satisfied_by(self, position_ms: int) -> bool:
        return abs(position_ms - self.target_ms) < self.tolerance_ms


# ═══════════════════════════════════════════════════════════════
#  Position Driver
# ═══════════════════════════════════════════════════════════════

class PositionDriver:
    """
    Periodically maps the playback position to active cues.

    Usage:
        driver = PositionDriver(slots, on_cue_changed)
        driver.start()
        # from the playback engine:
        driver.report_position(ms)
        # on user seek:
        driver.begin_seek(target_ms)
    """

    def __init__(
        self,
        slots: Sequence[SubtitleSlot],
        on_cue_changed: Optional[CueChangedCallback] = None,
        position_source: Optional[Callable[[], Optional[int]]] = None,
        tick_interval: float = 0.1,
        epsilon_ms: int = 10,
        seek_tolerance_ms: int = 2000,
    ):
        self.slots = list(slots)
        self.on_cue_changed = on_cue_changed
        self.position_source = position_source
        self.tick_interval = tick_interval
        self.epsilon_ms = epsilon_ms
        self.seek_tolerance_ms = seek_tolerance_ms

        self._lock = threading.Lock()
        self._position: Optional[int] = None
        self._last_position: Optional[int] = None
        self._seek_guard: Optional[PendingSeekGuard] = None
        self._displayed: Dict[str, Optional[Cue]] = {s.name: None for s in self.slots}
        self._versions: Dict[str, int] = {s.name: -1 for s in self.slots}

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ── Position input ──────────────────────────────────────

    @property
    def position(self) -> Optional[int]:
        with self._lock:
            return self._position

    @property
    def seek_guard(self) -> Optional[PendingSeekGuard]:
        with self._lock:
            return self._seek_guard

    def begin_seek(self, target_ms: int):
        """A user seek: jump to the target and hold off stale reports."""
        with self._lock:
            self._seek_guard = PendingSeekGuard(int(target_ms), self.seek_tolerance_ms)
            self._position = int(target_ms)

    def report_position(self, position_ms: int) -> bool:
        """Feed a playback position. Returns False if it was suppressed."""
        with self._lock:
            return self._accept(int(position_ms))

    def _accept(self, position_ms: int) -> bool:
        guard = self._seek_guard
        if guard is not None:
            if not guard.satisfied_by(position_ms):
                return False
            self._seek_guard = None
        self._position = position_ms
        return True

    def reset(self) -> List[Tuple[str, Optional[Cue]]]:
        """
        Forget position and displayed cues (new video).

        Every slot still showing a cue is told it is now empty.
        """
        with self._lock:
            self._position = None
            self._last_position = None
            self._seek_guard = None
            changes = [
                (name, None) for name, cue in self._displayed.items() if cue is not None
            ]
            for name in self._displayed:
                self._displayed[name] = None
                self._versions[name] = -1

        for name, cue in changes:
            if self.on_cue_changed is not None:
                self.on_cue_changed(name, cue)
        return changes

    # ── Tick ────────────────────────────────────────────────

    def tick(self) -> List[Tuple[str, Optional[Cue]]]:
        """
        One driver step.

        Returns:
            The (slot name, cue) transitions emitted during this tick.
        """
        if self.position_source is not None:
            polled = self.position_source()
            if polled is not None:
                self.report_position(polled)

        with self._lock:
            position = self._position
            if position is None:
                return []
            moved = (
                self._last_position is None
                or abs(position - self._last_position) >= self.epsilon_ms
            )
            reloaded = any(self._versions[s.name] != s.version for s in self.slots)
            if not moved and not reloaded:
                return []
            self._last_position = position

            changes = []
            for slot in self.slots:
                self._versions[slot.name] = slot.version
                cue = slot.find_active(position)
                if cue != self._displayed[slot.name]:
                    self._displayed[slot.name] = cue
                    changes.append((slot.name, cue))

        for name, cue in changes:
            if self.on_cue_changed is not None:
                self.on_cue_changed(name, cue)
        return changes

    # ── Thread control ──────────────────────────────────────

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="sync-position", daemon=True
        )
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
        self._thread = None

    def _run(self):
        logger.debug("Position driver started")
        while not self._stop.wait(self.tick_interval):
            try:
                self.tick()
            except Exception:
                logger.exception("Position driver tick failed")
        logger.debug("Position driver stopped")


# ═══════════════════════════════════════════════════════════════
#  Hover Driver
# ═══════════════════════════════════════════════════════════════

def time_from_ratio(ratio: float, duration_ms: int) -> int:
    """Seek-bar x-ratio (clamped to 0..1) to a timestamp."""
    ratio = max(0.0, min(1.0, ratio))
    return int(ratio * duration_ms)


class HoverDriver:
    """
    Debounced seek-bar hover.

    Every move publishes the hovered time immediately; the thumbnail is
    only requested once the pointer has rested for `debounce` seconds.
    A newer request cancels the previous one.
    """

    def __init__(
        self,
        request_thumbnail: Callable[[int, threading.Event], Future],
        on_time: Optional[Callable[[int], None]] = None,
        on_thumbnail: Optional[Callable[[int, object], None]] = None,
        debounce: float = 0.15,
    ):
        self.request_thumbnail = request_thumbnail
        self.on_time = on_time
        self.on_thumbnail = on_thumbnail
        self.debounce = debounce

        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending_ms = -1
        self._cancel: Optional[threading.Event] = None
        self.last_request: Optional[Future] = None

    @property
    def pending_ms(self) -> int:
        return self._pending_ms

    def hover(self, ratio: float, duration_ms: int) -> int:
        """Pointer moved to `ratio` of the seek bar. Returns the hovered time."""
        time_ms = time_from_ratio(ratio, duration_ms)
        self.hover_time(time_ms)
        return time_ms

    def hover_time(self, time_ms: int):
        if self.on_time is not None:
            self.on_time(time_ms)
        with self._lock:
            self._pending_ms = time_ms
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def leave(self):
        """Pointer left the seek bar: drop the pending and in-flight request."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending_ms = -1
            if self._cancel is not None:
                self._cancel.set()
                self._cancel = None

    shutdown = leave

    def _fire(self):
        with self._lock:
            self._timer = None
            time_ms = self._pending_ms
            if time_ms < 0:
                return
            if self._cancel is not None:
                self._cancel.set()
            cancel = threading.Event()
            self._cancel = cancel

        future = self.request_thumbnail(time_ms, cancel)
        self.last_request = future
        future.add_done_callback(
            lambda f: self._deliver(time_ms, cancel, f)
        )

    def _deliver(self, time_ms: int, cancel: threading.Event, future: Future):
        if cancel.is_set() or future.cancelled():
            return
        if future.exception() is not None:
            logger.warning(f"Thumbnail request failed: {future.exception()}")
            return
        thumb = future.result()
        if thumb is not None and self.on_thumbnail is not None:
            self.on_thumbnail(time_ms, thumb)

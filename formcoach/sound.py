"""
Sound cue dispatcher: dedup policy (per rep, per exercise, per active form error),
a midway dwell deadline, and a serial playback queue so clips never overlap.
"""
from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

SOUND_FILES = {
    # global
    "starting": "starting.mp3",
    "midway": "midway.mp3",
    "encourage": "encourage.mp3",
    # exercise-specific
    "squat.form": "squat.form.mp3",
    "bicep-curl.form": "bicep-curl.form.mp3",
    "front-kick.form": "front-kick.form.mp3",
    "overhead-press.form1": "overhead-press.form1.mp3",
    "overhead-press.form2": "overhead-press.form2.mp3",
    "lateral-raise.form1": "lateral-raise.form1.mp3",
    "lateral-raise.form2": "lateral-raise.form2.mp3",
}
DEFAULT_SOUNDS_DIR = os.path.join(os.path.dirname(__file__), "..", "sounds")
# Seconds a user may dwell mid-rep before the "midway" cue plays.
MIDWAY_DWELL_SEC = 4.0
# Every Nth rep plays the "encourage" cue.
ENCOURAGE_EVERY_REPS = 5
_POLL_SEC = 0.02


class SoundBackend(Protocol):
    def play(self, key: str, path: str) -> None:
        """Play one clip, returning once it has finished."""


class NullBackend:
    """Silent backend; remembers what would have played."""

    def __init__(self) -> None:
        self.played: list[str] = []

    def play(self, key: str, path: str) -> None:
        self.played.append(key)


class PygameBackend:
    """pygame mixer playback. Missing clips are skipped with a warning."""

    def __init__(self) -> None:
        import pygame

        self._pygame = pygame
        pygame.mixer.init()
        self._cache: dict[str, object] = {}

    def _load(self, path: str):
        sound = self._cache.get(path)
        if sound is None:
            sound = self._pygame.mixer.Sound(path)
            self._cache[path] = sound
        return sound

    def play(self, key: str, path: str) -> None:
        if not os.path.isfile(path):
            logger.warning("sound: missing clip for %s at %s", key, path)
            return
        channel = self._load(path).play()
        while channel is not None and channel.get_busy():
            time.sleep(_POLL_SEC)


@dataclass
class _QueueItem:
    key: str
    path: str
    done: threading.Event = field(default_factory=threading.Event)


@dataclass
class _MidwayState:
    deadline: Optional[float] = None
    played_this_rep: bool = False


class SoundDispatcher:
    """
    Owns the audio cues of one workout session.

    play() enqueues a cue unless suppressed:
      form_error        -- key already active for this exercise (until clear_form_error)
      once_per_rep      -- key already played this rep (until mark_rep/reset_rep)
      once_per_exercise -- key already played this exercise session (until reset_exercise)
    One worker thread drains the queue; each clip finishes (or fails) before the next starts.
    """

    def __init__(
        self,
        backend: Optional[SoundBackend] = None,
        sounds_dir: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        dwell_sec: float = MIDWAY_DWELL_SEC,
        autostart: bool = True,
    ):
        self.backend = backend if backend is not None else NullBackend()
        base = sounds_dir or DEFAULT_SOUNDS_DIR
        self.sounds = {key: os.path.join(base, name) for key, name in SOUND_FILES.items()}
        self.clock = clock
        self.dwell_sec = dwell_sec
        self.autostart = autostart

        self._queue: queue.Queue[Optional[_QueueItem]] = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._worker_lock = threading.Lock()

        self._session_played: set[str] = set()
        self._rep_played: dict[str, set[str]] = {}
        self._exercise_played: dict[str, set[str]] = {}
        self._active_errors: dict[str, set[str]] = {}
        self._midway: dict[str, _MidwayState] = {}

    # -- enqueueing ---------------------------------------------------------

    def play(
        self,
        key: str,
        exercise: Optional[str] = None,
        once_per_rep: bool = False,
        once_per_exercise: bool = False,
        form_error: bool = False,
    ) -> bool:
        """Queue a cue. Returns False when the key is unknown or suppressed."""
        path = self.sounds.get(key)
        if path is None:
            logger.debug("sound: unknown key %s", key)
            return False

        if form_error and exercise:
            active = self._active_errors.setdefault(exercise, set())
            if key in active:
                return False
            active.add(key)

        if once_per_rep and exercise:
            rep_set = self._rep_played.setdefault(exercise, set())
            if key in rep_set:
                return False
            rep_set.add(key)

        if once_per_exercise and exercise:
            ex_set = self._exercise_played.setdefault(exercise, set())
            if key in ex_set:
                return False
            ex_set.add(key)

        self._queue.put(_QueueItem(key=key, path=path))
        if self.autostart:
            self._ensure_worker()
        return True

    def play_once(self, key: str) -> bool:
        """Play a cue at most once for the whole session."""
        if key in self._session_played:
            return False
        self._session_played.add(key)
        return self.play(key)

    def clear_form_error(self, key: str, exercise: str) -> None:
        active = self._active_errors.get(exercise)
        if active:
            active.discard(key)

    def is_form_error_active(self, key: str, exercise: str) -> bool:
        return key in self._active_errors.get(exercise, ())

    # -- rep lifecycle --------------------------------------------------------

    def mark_rep(self, exercise: str, rep_count: int) -> None:
        """Called after a rep is counted: encourage every Nth rep, then start a fresh rep."""
        if rep_count > 0 and rep_count % ENCOURAGE_EVERY_REPS == 0:
            self.play("encourage")
        self.reset_rep(exercise)

    def midway_maybe_play(self, exercise: str, now: Optional[float] = None) -> None:
        """Arm the dwell deadline on the first call of a rep; tick() fires the cue."""
        if not exercise:
            return
        now = self.clock() if now is None else now
        state = self._midway.setdefault(exercise, _MidwayState())
        if state.deadline is None and not state.played_this_rep:
            state.deadline = now + self.dwell_sec

    def tick(self, now: Optional[float] = None) -> None:
        now = self.clock() if now is None else now
        for exercise, state in self._midway.items():
            if state.deadline is None or state.played_this_rep or now < state.deadline:
                continue
            state.played_this_rep = True
            state.deadline = None
            self.play("midway", exercise, once_per_rep=True)

    def midway_deadline(self, exercise: str) -> Optional[float]:
        state = self._midway.get(exercise)
        return state.deadline if state else None

    # -- resets ---------------------------------------------------------------

    def reset_rep(self, exercise: str) -> None:
        if not exercise:
            return
        rep_set = self._rep_played.get(exercise)
        if rep_set:
            rep_set.clear()
        self._midway[exercise] = _MidwayState()

    def reset_exercise(self, exercise: str) -> None:
        if not exercise:
            return
        self._rep_played.pop(exercise, None)
        self._exercise_played.pop(exercise, None)
        self._active_errors.pop(exercise, None)
        self._midway.pop(exercise, None)

    def reset_session(self) -> None:
        self.stop_all()
        self._session_played.clear()
        self._rep_played.clear()
        self._exercise_played.clear()
        self._active_errors.clear()

    def stop_all(self) -> None:
        """Drop queued cues and disarm every dwell deadline. A clip already playing finishes."""
        dropped = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                item.done.set()
                dropped += 1
        if dropped:
            logger.debug("sound: dropped %s queued cues", dropped)
        for exercise in list(self._midway):
            self._midway[exercise] = _MidwayState()

    # -- playback -------------------------------------------------------------

    def pending(self) -> list[str]:
        with self._queue.mutex:
            return [item.key for item in self._queue.queue if item is not None]

    def drain(self) -> int:
        """Play everything queued on the calling thread. Returns the number of cues handled."""
        handled = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return handled
            if item is None:
                continue
            self._play_item(item)
            handled += 1

    def _play_item(self, item: _QueueItem) -> None:
        try:
            self.backend.play(item.key, item.path)
        except Exception as e:
            logger.warning("sound: playback failed for %s: %s", item.key, e)
        finally:
            item.done.set()

    def _ensure_worker(self) -> None:
        with self._worker_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._run, name="sound_queue", daemon=True)
            self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            self._play_item(item)

    def close(self, timeout: float = 1.0) -> None:
        """Stop the playback worker after the current clip."""
        self.stop_all()
        worker = self._worker
        if worker is not None and worker.is_alive():
            self._queue.put(None)
            worker.join(timeout)
        self._worker = None

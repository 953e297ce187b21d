"""
ExerciseDetector: one detector per supported exercise behind a single
detect(exercise, frame) entry point, sharing one feedback gate and sound dispatcher.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, Sequence

from .exercises import (
    BicepCurlDetector,
    FrontKickDetector,
    LateralRaiseDetector,
    OverheadPressDetector,
    SquatDetector,
)
from .feedback import AddFeedback, FeedbackGate
from .pose import Frame, parse_frame
from .reps import RepDetector
from .sound import SoundDispatcher

logger = logging.getLogger(__name__)

DETECTOR_CLASSES: dict[str, type[RepDetector]] = {
    cls.key: cls
    for cls in (
        SquatDetector,
        BicepCurlDetector,
        FrontKickDetector,
        OverheadPressDetector,
        LateralRaiseDetector,
    )
}
EXERCISES = tuple(DETECTOR_CLASSES)

# Menu ids used by clients, mapped to detector keys.
EXERCISE_ALIASES = {
    "bicep-curl": "bicepCurl",
    "front-kick": "frontKick",
    "overhead-press": "overheadPress",
    "lateral-raise": "lateralRaise",
}


def normalize_exercise_key(exercise: Optional[str]) -> Optional[str]:
    """Detector key for an exercise id or alias; None when unsupported."""
    if not exercise:
        return None
    key = EXERCISE_ALIASES.get(exercise, exercise)
    return key if key in DETECTOR_CLASSES else None


class ExerciseDetector:
    """
    Rep counting and form feedback for all exercises of one workout session.
    Unknown exercise keys are never an error: detect() ignores the frame and
    get_rep_count() reports 0.
    """

    def __init__(
        self,
        add_feedback: AddFeedback,
        sound: Optional[SoundDispatcher] = None,
        clock: Callable[[], float] = time.monotonic,
        gate: Optional[FeedbackGate] = None,
        **detector_kwargs,
    ):
        self.add_feedback = add_feedback
        self.sound = sound
        self.clock = clock
        self.gate = gate if gate is not None else FeedbackGate(clock=clock)
        self.detectors: dict[str, RepDetector] = {
            key: cls(add_feedback, sound=sound, gate=self.gate, clock=clock, **detector_kwargs)
            for key, cls in DETECTOR_CLASSES.items()
        }
        self.current_exercise: Optional[str] = None

    def get(self, exercise: Optional[str]) -> Optional[RepDetector]:
        key = normalize_exercise_key(exercise)
        return self.detectors.get(key) if key else None

    def reset(self, exercise: Optional[str]) -> None:
        """Select an exercise and clear its counters, smoothing and sound scope."""
        old_key = normalize_exercise_key(self.current_exercise)
        new_key = normalize_exercise_key(exercise)
        if self.sound is not None and old_key and old_key != new_key:
            self.sound.reset_exercise(old_key)
        self.current_exercise = exercise
        detector = self.get(exercise)
        if detector is None:
            logger.debug("reset: unknown exercise %r", exercise)
            return
        detector.reset()
        if self.sound is not None:
            self.sound.reset_exercise(detector.key)
        logger.info("reset: %s", detector.key)

    def get_rep_count(self, exercise: Optional[str]) -> int:
        detector = self.get(exercise)
        return detector.rep_count if detector is not None else 0

    def state(self, exercise: Optional[str]) -> Optional[dict]:
        detector = self.get(exercise)
        return detector.state.snapshot() if detector is not None else None

    def detect(self, exercise: Optional[str], frame: Optional[Sequence[Any]]) -> Optional[str]:
        """
        Run one frame through the exercise's detector; returns the stable stage or None.
        The frame may hold parsed Landmarks or raw {x, y, z, visibility, presence} entries.
        """
        detector = self.get(exercise)
        if detector is None:
            return None
        frame = parse_frame(frame)
        if frame is None:
            return None
        return detector.detect(frame)

    def detect_squat(self, frame: Frame) -> Optional[str]:
        return self.detect("squat", frame)

    def detect_bicep_curl(self, frame: Frame) -> Optional[str]:
        return self.detect("bicepCurl", frame)

    def detect_front_kick(self, frame: Frame) -> Optional[str]:
        return self.detect("frontKick", frame)

    def detect_overhead_press(self, frame: Frame) -> Optional[str]:
        return self.detect("overheadPress", frame)

    def detect_lateral_raise(self, frame: Frame) -> Optional[str]:
        return self.detect("lateralRaise", frame)

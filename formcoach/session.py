"""
Workout session: per-frame pipeline from parsed landmarks to rep counts,
feedback and sound cues, plus rest detection and an end-of-session summary.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, Sequence

import numpy as np

from .detector import ExerciseDetector, normalize_exercise_key
from .feedback import SUCCESS, FeedbackLog
from .pose import Frame, parse_frame
from .smoothing import LANDMARK_SMOOTH_ALPHA, LandmarkSmoother
from .sound import SoundDispatcher

logger = logging.getLogger(__name__)

# Summed per-landmark displacement below which a frame counts as still.
REST_MOVEMENT_THRESHOLD = 0.01
# Still frames (about 1 s at 30 fps) after which the user is resting.
REST_FRAMES = 30


def _xy_array(frame: Frame) -> np.ndarray:
    """(N, 2) array of landmark x/y; missing landmarks are NaN."""
    return np.array(
        [(p.x, p.y) if p is not None else (np.nan, np.nan) for p in frame],
        dtype=np.float64,
    )


class RestDetector:
    """Counts consecutive near-still frames; resting once the count exceeds REST_FRAMES."""

    def __init__(self, threshold: float = REST_MOVEMENT_THRESHOLD, frames: int = REST_FRAMES):
        self.threshold = threshold
        self.frames = frames
        self.still_frames = 0
        self._last: Optional[np.ndarray] = None

    def update(self, frame: Frame) -> bool:
        current = _xy_array(frame)
        movement = 0.0
        last = self._last
        if last is not None:
            n = min(len(last), len(current))
            step = np.linalg.norm(current[:n] - last[:n], axis=1)
            movement = float(np.nansum(step))
        self._last = current
        if movement < self.threshold:
            self.still_frames += 1
        else:
            self.still_frames = 0
        return self.still_frames > self.frames

    @property
    def resting(self) -> bool:
        return self.still_frames > self.frames

    def reset(self) -> None:
        self.still_frames = 0
        self._last = None


class WorkoutSession:
    """
    One workout: a current exercise, an ExerciseDetector, a FeedbackLog and a
    SoundDispatcher. Frames are only analysed between start() and stop().
    """

    def __init__(
        self,
        exercise: Optional[str] = None,
        sound: Optional[SoundDispatcher] = None,
        feedback: Optional[FeedbackLog] = None,
        clock: Callable[[], float] = time.monotonic,
        smooth_alpha: float = LANDMARK_SMOOTH_ALPHA,
        **detector_kwargs,
    ):
        self.clock = clock
        self.exercise = exercise
        self.sound = sound
        self.feedback = feedback if feedback is not None else FeedbackLog(clock=clock)
        self.detector = ExerciseDetector(self.feedback, sound=sound, clock=clock, **detector_kwargs)
        self.smoother = LandmarkSmoother(smooth_alpha)
        self.rest = RestDetector()
        self.smoothed: Optional[Frame] = None
        self.started = False
        self.started_at: Optional[float] = None
        self.stopped_at: Optional[float] = None
        self.frames_seen = 0
        self.frames_with_pose = 0

    def start(self) -> None:
        """Begin the workout: reset the current exercise and cue the start."""
        self.started = True
        self.started_at = self.clock()
        self.stopped_at = None
        self.detector.reset(self.exercise)
        if self.sound is not None:
            self.sound.play_once("starting")
        self.feedback.add("Go!", SUCCESS)
        logger.info("session: started %s", self.exercise)

    def switch(self, exercise: Optional[str]) -> None:
        """Move to another exercise; its counters and sound scope start fresh."""
        if self.sound is not None:
            self.sound.stop_all()
            key = normalize_exercise_key(self.exercise)
            if key:
                self.sound.reset_exercise(key)
        self.exercise = exercise
        self.detector.reset(exercise)
        logger.info("session: switched to %s", exercise)

    def process(self, raw_frame: Optional[Sequence[Any]]) -> dict:
        """Analyse one frame. None or an empty list means no pose was found."""
        self.frames_seen += 1
        frame = parse_frame(raw_frame)
        if frame is None:
            self.smoother.reset()
            self.smoothed = None
        else:
            self.frames_with_pose += 1
            self.smoothed = self.smoother.smooth(frame)
            self.rest.update(frame)
            if self.started:
                self.detector.detect(self.exercise, frame)
        if self.sound is not None:
            self.sound.tick()
        return self.state()

    def state(self) -> dict:
        detector_state = self.detector.state(self.exercise) or {}
        latest = self.feedback.latest()
        return {
            "exercise": self.exercise,
            "started": self.started,
            "rep_count": self.detector.get_rep_count(self.exercise),
            "stage": detector_state.get("stage"),
            "rep_state": detector_state.get("rep_state"),
            "resting": self.rest.resting,
            "pose_detected": self.smoothed is not None,
            "keypoints": self.keypoints(),
            "feedback": latest.to_dict() if latest else None,
        }

    def keypoints(self) -> Optional[list]:
        """Smoothed landmark positions for drawing; None while no pose is tracked."""
        if self.smoothed is None:
            return None
        return [[round(p.x, 4), round(p.y, 4)] if p is not None else None for p in self.smoothed]

    def stop(self) -> dict:
        self.started = False
        self.stopped_at = self.clock()
        if self.sound is not None:
            self.sound.stop_all()
        summary = self.summary()
        logger.info(
            "session: stopped, reps=%s accuracy=%s%%",
            summary["rep_counts"],
            summary["accuracy"],
        )
        return summary

    def summary(self) -> dict:
        rep_counts = {
            key: detector.rep_count
            for key, detector in self.detector.detectors.items()
            if detector.rep_count > 0
        }
        if self.started_at is None:
            duration = 0.0
        else:
            end = self.stopped_at if self.stopped_at is not None else self.clock()
            duration = round(end - self.started_at, 3)
        return {
            "exercise": self.exercise,
            "rep_counts": rep_counts,
            "total_reps": sum(rep_counts.values()),
            "positive_feedback": self.feedback.positive,
            "negative_feedback": self.feedback.negative,
            "accuracy": self.feedback.accuracy,
            "duration_sec": duration,
            "frames": self.frames_seen,
            "frames_with_pose": self.frames_with_pose,
            "recent_feedback": [e.to_dict() for e in self.feedback.events],
        }

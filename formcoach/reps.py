"""
Shared rep-detection machinery: stage stability debounce, rep state,
form-error debounce and feedback emission. Exercise detectors in
exercises.py subclass RepDetector and implement detect().
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .feedback import ERROR, INFO, SUCCESS, AddFeedback, FeedbackGate
from .geometry import AngleSmoother
from .pose import Frame
from .sound import ENCOURAGE_EVERY_REPS, SoundDispatcher

logger = logging.getLogger(__name__)

# Consecutive frames a new stage must persist before it is accepted.
STABLE_FRAMES = 3
# Consecutive frames a form error must persist before it is reported.
FORM_ERROR_STABLE_FRAMES = 5
# Default visibility/presence needed on every required joint.
VISIBILITY_THRESHOLD = 0.5
# Weight of the newest raw angle in the per-detector angle EMA.
ANGLE_SMOOTH_ALPHA = 0.6


@dataclass
class DetectorState:
    """Mutable per-exercise state. rep_count only grows until reset()."""

    stage: str
    prev_stage: str
    rep_state: str
    candidate_stage: str = ""
    stable_frames: int = 0
    rep_count: int = 0
    rep_stable: int = 0
    midway_flag: bool = False

    @classmethod
    def initial(cls, stage: str, rep_state: Optional[str] = None) -> "DetectorState":
        return cls(
            stage=stage,
            prev_stage=stage,
            rep_state=rep_state or stage,
            candidate_stage=stage,
        )

    def snapshot(self) -> dict:
        return {
            "stage": self.stage,
            "prev_stage": self.prev_stage,
            "rep_state": self.rep_state,
            "stable_frames": self.stable_frames,
            "rep_count": self.rep_count,
            "midway_flag": self.midway_flag,
        }


class FormErrorDebouncer:
    """Reports an error only after it holds for required_frames consecutive frames."""

    def __init__(self, required_frames: int = FORM_ERROR_STABLE_FRAMES):
        self.required_frames = required_frames
        self.frames = 0

    def update(self, has_error: bool) -> bool:
        if not has_error:
            self.frames = 0
            return False
        self.frames += 1
        return self.frames >= self.required_frames

    def reset(self) -> None:
        self.frames = 0


class RepDetector:
    """
    Common per-frame pipeline for one exercise:
    visibility gate -> smoothed angles -> stage -> stability debounce ->
    rep state machine -> midway encouragement -> form checks.
    """

    key = ""
    initial_stage = ""
    initial_rep_state: Optional[str] = None
    visibility_threshold = VISIBILITY_THRESHOLD
    required_stable_frames = STABLE_FRAMES
    angle_alpha = ANGLE_SMOOTH_ALPHA
    rep_label = "Rep"

    def __init__(
        self,
        add_feedback: AddFeedback,
        sound: Optional[SoundDispatcher] = None,
        gate: Optional[FeedbackGate] = None,
        clock: Callable[[], float] = time.monotonic,
        required_stable_frames: Optional[int] = None,
        visibility_threshold: Optional[float] = None,
    ):
        self.add_feedback = add_feedback
        self.sound = sound
        self.clock = clock
        self.gate = gate if gate is not None else FeedbackGate(clock=clock)
        if required_stable_frames is not None:
            self.required_stable_frames = required_stable_frames
        if visibility_threshold is not None:
            self.visibility_threshold = visibility_threshold
        self.angles = AngleSmoother(self.angle_alpha)
        self.state = DetectorState.initial(self.initial_stage, self.initial_rep_state)

    @property
    def rep_count(self) -> int:
        return self.state.rep_count

    def reset(self) -> None:
        self.state = DetectorState.initial(self.initial_stage, self.initial_rep_state)
        self.angles.reset()
        for debouncer in self.form_errors():
            debouncer.reset()
        self.reset_extra()

    def reset_extra(self) -> None:
        """Hook for exercise-specific state."""

    def form_errors(self) -> list[FormErrorDebouncer]:
        return [v for v in vars(self).values() if isinstance(v, FormErrorDebouncer)]

    def detect(self, frame: Frame) -> Optional[str]:
        """Process one frame. Returns the accepted stage, or None if the frame was skipped or unstable."""
        raise NotImplementedError

    def classify(self, *angles: float) -> str:
        raise NotImplementedError

    # -- pipeline helpers -----------------------------------------------------

    def smooth(self, name: str, raw: float, alpha: Optional[float] = None) -> float:
        return self.angles.smooth(name, raw, self.angle_alpha if alpha is None else alpha)

    def update_stability(self, new_stage: str) -> bool:
        """
        Count consecutive frames of new_stage; accept it as the stage once it has
        persisted for required_stable_frames. Returns True while the stage is stable.
        Flickering back to the accepted stage resumes it without a new count.
        """
        st = self.state
        if new_stage != st.candidate_stage:
            st.candidate_stage = new_stage
            st.stable_frames = self.required_stable_frames if new_stage == st.stage else 1
        else:
            st.stable_frames += 1
        if st.stable_frames < self.required_stable_frames:
            return False
        if st.stage != new_stage:
            st.prev_stage = st.stage
            st.stage = new_stage
        return True

    def count_rep(self) -> int:
        st = self.state
        st.rep_count += 1
        self.add_feedback(f"{self.rep_label} {st.rep_count} complete!", SUCCESS)
        if self.sound is not None:
            self.sound.mark_rep(self.key, st.rep_count)
        self.gate.mark("rep")
        st.midway_flag = False
        logger.info("%s: rep %s (stage=%s)", self.key, st.rep_count, st.stage)
        if st.rep_count % ENCOURAGE_EVERY_REPS == 0 and self.gate.can_give("encourage"):
            self.add_feedback("Keep it up!", INFO)
            self.gate.mark("encourage")
        return st.rep_count

    def maybe_midway(self, message: str) -> bool:
        """Emit the mid-rep encouragement once per rep."""
        st = self.state
        if st.midway_flag or not self.gate.can_give("encourage"):
            return False
        self.add_feedback(message, INFO)
        if self.sound is not None:
            self.sound.midway_maybe_play(self.key)
        self.gate.mark("encourage")
        st.midway_flag = True
        return True

    def report_form_error(self, message: str, sound_key: Optional[str] = None) -> bool:
        """Emit a correction if the form cooldown allows; the sound plays once per error onset."""
        if not self.gate.can_give("form"):
            return False
        self.add_feedback(message, ERROR)
        if sound_key and self.sound is not None:
            self.sound.play(sound_key, self.key, form_error=True)
        self.gate.mark("form")
        return True

    def clear_form_sound(self, *sound_keys: str) -> None:
        if self.sound is None:
            return
        for sound_key in sound_keys:
            self.sound.clear_form_error(sound_key, self.key)

    def check_form(
        self,
        debouncer: FormErrorDebouncer,
        has_error: bool,
        message: str,
        sound_key: Optional[str] = None,
        clear_sound: bool = True,
    ) -> bool:
        """Debounce one error condition and report it; resolving the condition re-arms its sound."""
        if debouncer.update(has_error):
            return self.report_form_error(message, sound_key)
        if not has_error and sound_key and clear_sound:
            self.clear_form_sound(sound_key)
        return False

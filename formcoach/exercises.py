"""
Exercise detectors: squat, bicep curl, front kick, overhead press, lateral raise.
Each maps smoothed joint angles to a pose stage, debounces it, advances a rep
state machine and runs its form checks. Angles in degrees, points normalized.
"""
from __future__ import annotations

import logging
from typing import Optional

from .geometry import angle_at, pick_dominant_side
from .pose import SIDE_JOINTS, Frame, LandmarkIdx, all_visible, get_landmark
from .reps import FormErrorDebouncer, RepDetector

logger = logging.getLogger(__name__)

# Squat: knee-angle stage boundaries (stage is the first whose bound is exceeded).
SQUAT_KNEE_STAGES = (
    (150.0, "standing"),
    (135.0, "descending"),
    (115.0, "halfway"),
    (100.0, "deep"),
)
# Hip drop / torso length boundaries used once a standing hip height is known.
SQUAT_HIP_DROP_STAGES = (
    (0.05, "standing"),
    (0.15, "descending"),
    (0.25, "halfway"),
    (0.35, "deep"),
)
SQUAT_STANDING_KNEE = 150.0
SQUAT_DEPTH_STAGES = ("halfway", "deep", "bottom")
# Horizontal shoulder-hip offset (normalized) that counts as chest falling forward.
SQUAT_MAX_LEAN_X = 0.2

CURL_STAGES = (
    (160.0, "extended"),
    (120.0, "curling"),
    (90.0, "halfway"),
    (50.0, "almost"),
)
CURL_TOP_ELBOW = 75.0
CURL_TOP_ARM_TORSO = 45.0
CURL_BOTTOM_ELBOW = (170.0, 185.0)
CURL_BOTTOM_ARM_TORSO = 55.0
CURL_MAX_ELBOW_DRIFT_X = 0.15
CURL_RAISED_ELBOW = 145.0
CURL_RAISED_ARM_TORSO = 50.0

KICK_VISIBILITY = 0.35
KICK_STABLE_FRAMES = 1
KICK_STANDING_LEG = 145.0
KICK_CHAMBER = (45.0, 95.0)
# Leg angle an extension must reach to count as a kick.
KICK_MIN_EXTENSION = 115.0
KICK_LEG_BENT = 100.0
KICK_MIN_HIP = 90.0
KICK_REP_COOLDOWN_SEC = 0.3
# Degrees one leg must be more bent than the other to be taken as the kicking leg.
KICK_SIDE_BEND_MARGIN = 10.0
KICK_ANGLE_ALPHA = 0.7

PRESS_GROUND_SHOULDER = 50.0
PRESS_RACK = (60.0, 125.0)
PRESS_LOCKOUT = 165.0
PRESS_RACK_APPROACH = (55.0, 130.0)
PRESS_NARROW_ELBOW = 55.0
PRESS_WIDE_ELBOW = 130.0

RAISE_STAGES = (
    (30.0, "down"),
    (60.0, "raising"),
    (75.0, "mid-range"),
)
RAISE_CHECK_MIN_SHOULDER = 70.0
RAISE_MAX_SHOULDER = 125.0
RAISE_MIN_ELBOW = 140.0
RAISE_BENT_ELBOW_FRAMES = 8


def _stage_above(value: float, bounds: tuple, last: str) -> str:
    for bound, stage in bounds:
        if value > bound:
            return stage
    return last


def _stage_below(value: float, bounds: tuple, last: str) -> str:
    for bound, stage in bounds:
        if value < bound:
            return stage
    return last


class SquatDetector(RepDetector):
    """
    Knee angle drives the stage; once a standing hip height is known, frames
    classified as descending are re-staged by hip drop relative to torso length.
    Rep: standing -> reached_depth -> standing.
    """

    key = "squat"
    initial_stage = "standing"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.chest_lean = FormErrorDebouncer()
        self.standing_hip_y: Optional[float] = None

    def reset_extra(self) -> None:
        self.standing_hip_y = None

    def classify(self, knee_angle: float) -> str:
        return _stage_above(knee_angle, SQUAT_KNEE_STAGES, "bottom")

    def classify_hip_drop(self, hip_y: float, shoulder_y: float) -> str:
        hip_drop = abs(hip_y - self.standing_hip_y)
        torso_len = abs(shoulder_y - hip_y)
        normalized = hip_drop / torso_len if torso_len > 0 else 0.0
        return _stage_below(normalized, SQUAT_HIP_DROP_STAGES, "bottom")

    def detect(self, frame: Frame) -> Optional[str]:
        joints = SIDE_JOINTS[pick_dominant_side(frame)]
        shoulder = get_landmark(frame, joints["shoulder"])
        hip = get_landmark(frame, joints["hip"])
        knee = get_landmark(frame, joints["knee"])
        ankle = get_landmark(frame, joints["ankle"])
        if not all_visible((hip, knee, ankle, shoulder), self.visibility_threshold):
            return None

        knee_angle = self.smooth("knee", angle_at(hip, knee, ankle))

        new_stage = self.classify(knee_angle)
        if self.standing_hip_y is None and knee_angle > SQUAT_STANDING_KNEE:
            self.standing_hip_y = hip.y
            logger.info("squat: calibrated standing hip y=%.3f", hip.y)
        if new_stage == "descending" and self.standing_hip_y is not None:
            new_stage = self.classify_hip_drop(hip.y, shoulder.y)

        if not self.update_stability(new_stage):
            return None

        st = self.state
        if st.rep_state == "standing":
            if new_stage in SQUAT_DEPTH_STAGES:
                st.rep_state = "reached_depth"
        elif st.rep_state == "reached_depth" and new_stage == "standing":
            st.rep_state = "standing"
            self.count_rep()

        if new_stage in ("halfway", "deep"):
            self.maybe_midway("Almost there!")

        lean_x = abs(shoulder.x - hip.x)
        has_lean = new_stage in ("deep", "bottom") and lean_x > SQUAT_MAX_LEAN_X
        self.check_form(self.chest_lean, has_lean, "Keep chest up!", "squat.form")
        return new_stage


class BicepCurlDetector(RepDetector):
    """
    Right arm. The rep machine needs both elbow flexion and a tucked upper arm
    on each edge so leaning back cannot pass for curling.
    """

    key = "bicepCurl"
    initial_stage = "extended"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.elbow_drift = FormErrorDebouncer()
        self.elbow_raised = FormErrorDebouncer()

    def classify(self, elbow_angle: float) -> str:
        return _stage_above(elbow_angle, CURL_STAGES, "contracted")

    def _advance_rep(self, elbow_angle: float, arm_torso_angle: float) -> None:
        st = self.state
        if st.rep_state == "extended":
            reached = elbow_angle < CURL_TOP_ELBOW and arm_torso_angle < CURL_TOP_ARM_TORSO
        else:
            lo, hi = CURL_BOTTOM_ELBOW
            reached = lo <= elbow_angle <= hi and arm_torso_angle < CURL_BOTTOM_ARM_TORSO
        if not reached:
            st.rep_stable = 0
            return
        st.rep_stable += 1
        if st.rep_stable < self.required_stable_frames:
            return
        st.rep_stable = 0
        if st.rep_state == "extended":
            st.rep_state = "contracted"
        else:
            st.rep_state = "extended"
            self.count_rep()

    def detect(self, frame: Frame) -> Optional[str]:
        shoulder = get_landmark(frame, LandmarkIdx.RIGHT_SHOULDER)
        elbow = get_landmark(frame, LandmarkIdx.RIGHT_ELBOW)
        wrist = get_landmark(frame, LandmarkIdx.RIGHT_WRIST)
        hip = get_landmark(frame, LandmarkIdx.RIGHT_HIP)
        if not all_visible((shoulder, elbow, wrist, hip), self.visibility_threshold):
            return None

        elbow_angle = self.smooth("elbow", angle_at(shoulder, elbow, wrist))
        arm_torso_angle = self.smooth("torso_arm", angle_at(hip, shoulder, elbow))

        new_stage = self.classify(elbow_angle)
        if not self.update_stability(new_stage):
            return None

        self._advance_rep(elbow_angle, arm_torso_angle)

        if new_stage in ("halfway", "almost"):
            self.maybe_midway("Keep going!")

        has_drift = abs(shoulder.x - elbow.x) > CURL_MAX_ELBOW_DRIFT_X
        has_raised = elbow_angle < CURL_RAISED_ELBOW and arm_torso_angle > CURL_RAISED_ARM_TORSO
        self.check_form(self.elbow_drift, has_drift, "Keep elbow stable!", "bicep-curl.form", clear_sound=False)
        self.check_form(self.elbow_raised, has_raised, "Keep your elbow down!", "bicep-curl.form", clear_sound=False)
        if not has_drift and not has_raised:
            self.clear_form_sound("bicep-curl.form")
        return new_stage


class FrontKickDetector(RepDetector):
    """
    Single leg, whichever is kicking. Rep: standing -> chambered -> extended ->
    chambered or standing, at most one per KICK_REP_COOLDOWN_SEC. An extension
    that retracts before reaching KICK_MIN_EXTENSION is corrected, not counted.
    """

    key = "frontKick"
    initial_stage = "standing"
    rep_label = "Kick"
    visibility_threshold = KICK_VISIBILITY
    required_stable_frames = KICK_STABLE_FRAMES
    angle_alpha = KICK_ANGLE_ALPHA

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.hip_too_high = FormErrorDebouncer()
        self.leg_not_extended = FormErrorDebouncer()
        self.side: Optional[str] = None
        self.last_rep_time: Optional[float] = None
        self.extension_peak: Optional[float] = None

    def reset_extra(self) -> None:
        self.side = None
        self.last_rep_time = None
        self.extension_peak = None

    def classify(self, leg_angle: float) -> str:
        if leg_angle > KICK_STANDING_LEG:
            return "standing"
        if leg_angle <= KICK_CHAMBER[1]:
            return "chambered"
        if leg_angle < KICK_MIN_EXTENSION:
            return "extending"
        return "extended"

    @staticmethod
    def _leg(frame: Frame, side: str):
        joints = SIDE_JOINTS[side]
        pts = tuple(get_landmark(frame, joints[name]) for name in ("shoulder", "hip", "knee", "ankle"))
        return pts if all(p is not None for p in pts) else None

    def _choose_side(self, legs: dict) -> str:
        current = self.side
        if current is not None and legs[current] is not None and self.state.rep_state != "standing":
            if all_visible(legs[current], self.visibility_threshold):
                return current
        if legs["left"] is None:
            return "right"
        if legs["right"] is None:
            return "left"
        bend = {side: angle_at(pts[1], pts[2], pts[3]) for side, pts in legs.items()}
        if abs(bend["left"] - bend["right"]) > KICK_SIDE_BEND_MARGIN:
            return "left" if bend["left"] < bend["right"] else "right"
        if current is not None:
            return current
        return pick_dominant_side(frame_from_legs(legs))

    def _in_chamber(self, leg_angle: float) -> bool:
        lo, hi = KICK_CHAMBER
        return lo <= leg_angle <= hi

    def _advance_rep(self, new_stage: str, leg_angle: float) -> None:
        st = self.state
        required = self.required_stable_frames
        if st.rep_state == "standing":
            if self._in_chamber(leg_angle):
                st.rep_stable += 1
                if st.rep_stable >= required:
                    st.rep_state = "chambered"
                    st.rep_stable = 0
                    self.extension_peak = None
            else:
                st.rep_stable = 0
        elif st.rep_state == "chambered":
            if leg_angle >= KICK_MIN_EXTENSION:
                st.rep_stable += 1
                if st.rep_stable >= required:
                    st.rep_state = "extended"
                    st.rep_stable = 0
                    self.extension_peak = None
                return
            st.rep_stable = 0
            if new_stage == "extending":
                self.extension_peak = max(self.extension_peak or 0.0, leg_angle)
            elif new_stage == "chambered" and self.extension_peak is not None:
                logger.info("frontKick: incomplete kick (peak %.1f deg)", self.extension_peak)
                self.extension_peak = None
                self.report_form_error("Extend your leg fully for a proper kick!", "front-kick.form")
        elif st.rep_state == "extended":
            if self._in_chamber(leg_angle) or leg_angle > KICK_STANDING_LEG:
                st.rep_stable += 1
                if st.rep_stable < required:
                    return
                st.rep_stable = 0
                now = self.clock()
                if self.last_rep_time is not None and now - self.last_rep_time < KICK_REP_COOLDOWN_SEC:
                    logger.debug("frontKick: return too soon after last kick, ignoring")
                    st.rep_state = "standing"
                    return
                self.last_rep_time = now
                st.rep_state = "standing" if leg_angle > KICK_STANDING_LEG else "chambered"
                self.count_rep()
            else:
                st.rep_stable = 0

    def detect(self, frame: Frame) -> Optional[str]:
        legs = {side: self._leg(frame, side) for side in ("left", "right")}
        if legs["left"] is None and legs["right"] is None:
            return None
        side = self._choose_side(legs)
        shoulder, hip, knee, ankle = legs[side]
        if not all_visible((hip, knee, ankle, shoulder), self.visibility_threshold):
            return None

        st = self.state
        if side != self.side:
            if self.side is not None:
                logger.debug("frontKick: switching side %s -> %s", self.side, side)
                st.rep_state = "standing"
            st.rep_stable = 0
            self.extension_peak = None
            self.side = side

        leg_angle = self.smooth(f"leg.{side}", angle_at(hip, knee, ankle))
        hip_angle = self.smooth(f"hip.{side}", angle_at(shoulder, hip, knee))

        new_stage = self.classify(leg_angle)
        if not self.update_stability(new_stage):
            return None

        self._advance_rep(new_stage, leg_angle)

        if new_stage in ("extending", "extended"):
            self.check_form(
                self.hip_too_high,
                hip_angle < KICK_MIN_HIP,
                "Don't raise your leg too high, protect your lower back!",
            )
            not_extended = leg_angle < KICK_LEG_BENT and st.rep_state == "extended"
            self.check_form(
                self.leg_not_extended,
                not_extended,
                "Extend your leg fully for a proper kick!",
                "front-kick.form",
            )
        else:
            self.hip_too_high.reset()
            self.leg_not_extended.reset()
            self.clear_form_sound("front-kick.form")

        if new_stage in ("extending", "extended"):
            self.maybe_midway("Push through!")
        return new_stage


def frame_from_legs(legs: dict) -> Frame:
    """Sparse frame holding only the leg joints, for visibility-based side picking."""
    frame: Frame = [None] * (LandmarkIdx.RIGHT_FOOT_INDEX + 1)
    for side, pts in legs.items():
        if pts is None:
            continue
        joints = SIDE_JOINTS[side]
        for name, p in zip(("shoulder", "hip", "knee", "ankle"), pts):
            frame[joints[name]] = p
    return frame


def _arm_points(frame: Frame):
    return (
        get_landmark(frame, LandmarkIdx.LEFT_SHOULDER),
        get_landmark(frame, LandmarkIdx.LEFT_ELBOW),
        get_landmark(frame, LandmarkIdx.LEFT_WRIST),
        get_landmark(frame, LandmarkIdx.LEFT_HIP),
        get_landmark(frame, LandmarkIdx.RIGHT_SHOULDER),
        get_landmark(frame, LandmarkIdx.RIGHT_ELBOW),
        get_landmark(frame, LandmarkIdx.RIGHT_WRIST),
        get_landmark(frame, LandmarkIdx.RIGHT_HIP),
    )


class OverheadPressDetector(RepDetector):
    """
    Bilateral: a frame is ground, rack or lockout only when both arms agree,
    otherwise transition. Rep: rack -> lockout -> rack.
    """

    key = "overheadPress"
    initial_stage = "start"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.narrow_elbows = FormErrorDebouncer()
        self.wide_elbows = FormErrorDebouncer()

    @staticmethod
    def arm_stage(elbow_angle: float, shoulder_angle: float) -> str:
        lo, hi = PRESS_RACK
        if shoulder_angle < PRESS_GROUND_SHOULDER:
            return "ground"
        if lo <= elbow_angle <= hi and lo <= shoulder_angle <= hi:
            return "rack"
        if elbow_angle > PRESS_LOCKOUT and shoulder_angle > PRESS_LOCKOUT:
            return "lockout"
        return "transition"

    def classify(self, left_elbow: float, left_shoulder: float, right_elbow: float, right_shoulder: float) -> str:
        left = self.arm_stage(left_elbow, left_shoulder)
        right = self.arm_stage(right_elbow, right_shoulder)
        return left if left == right else "transition"

    def detect(self, frame: Frame) -> Optional[str]:
        pts = _arm_points(frame)
        if not all_visible(pts, self.visibility_threshold):
            return None
        l_sh, l_el, l_wr, l_hip, r_sh, r_el, r_wr, r_hip = pts

        left_elbow = self.smooth("left_elbow", angle_at(l_wr, l_el, l_sh))
        left_shoulder = self.smooth("left_shoulder", angle_at(l_el, l_sh, l_hip))
        right_elbow = self.smooth("right_elbow", angle_at(r_wr, r_el, r_sh))
        right_shoulder = self.smooth("right_shoulder", angle_at(r_el, r_sh, r_hip))

        new_stage = self.classify(left_elbow, left_shoulder, right_elbow, right_shoulder)
        if not self.update_stability(new_stage):
            return None

        st = self.state
        if st.rep_state in ("start", "ground"):
            if new_stage == "rack":
                st.rep_state = "rack"
        elif st.rep_state == "rack":
            if new_stage == "lockout":
                st.rep_state = "lockout"
                self.maybe_midway("Good lockout!")
        elif st.rep_state == "lockout":
            if new_stage == "rack":
                st.rep_state = "rack"
                self.count_rep()
            elif new_stage == "ground":
                st.rep_state = "ground"
                st.midway_flag = False

        lo, hi = PRESS_RACK_APPROACH
        approaching_rack = lo < left_shoulder < hi or lo < right_shoulder < hi
        if new_stage == "transition" and approaching_rack:
            avg_elbow = (left_elbow + right_elbow) / 2.0
            narrow = avg_elbow < PRESS_NARROW_ELBOW
            wide = avg_elbow > PRESS_WIDE_ELBOW
            self.check_form(self.narrow_elbows, narrow, "Elbows are too narrow.", "overhead-press.form1", clear_sound=False)
            self.check_form(self.wide_elbows, wide, "Elbows are too wide.", "overhead-press.form1", clear_sound=False)
            if not narrow and not wide:
                self.clear_form_sound("overhead-press.form1")
        else:
            self.narrow_elbows.reset()
            self.wide_elbows.reset()
            self.clear_form_sound("overhead-press.form1")
        return new_stage


class LateralRaiseDetector(RepDetector):
    """
    Average shoulder abduction of both arms drives the stage. Rep: down -> raised -> down.
    Form is only judged at the top of the raise.
    """

    key = "lateralRaise"
    initial_stage = "down"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.too_high = FormErrorDebouncer()
        self.bent_elbows = FormErrorDebouncer(RAISE_BENT_ELBOW_FRAMES)

    def classify(self, avg_shoulder_angle: float) -> str:
        return _stage_below(avg_shoulder_angle, RAISE_STAGES, "raised")

    def detect(self, frame: Frame) -> Optional[str]:
        pts = _arm_points(frame)
        if not all_visible(pts, self.visibility_threshold):
            return None
        l_sh, l_el, l_wr, l_hip, r_sh, r_el, r_wr, r_hip = pts

        left_shoulder = self.smooth("left_shoulder", angle_at(l_hip, l_sh, l_wr))
        left_elbow = self.smooth("left_elbow", angle_at(l_sh, l_el, l_wr))
        right_shoulder = self.smooth("right_shoulder", angle_at(r_hip, r_sh, r_wr))
        right_elbow = self.smooth("right_elbow", angle_at(r_sh, r_el, r_wr))
        avg_shoulder = (left_shoulder + right_shoulder) / 2.0

        new_stage = self.classify(avg_shoulder)
        if not self.update_stability(new_stage):
            return None

        st = self.state
        if st.rep_state == "down":
            if new_stage == "raised":
                st.rep_state = "raised"
        elif st.rep_state == "raised" and new_stage == "down":
            st.rep_state = "down"
            self.count_rep()

        if new_stage in ("mid-range", "raised"):
            self.maybe_midway("Almost there!")

        if new_stage == "raised" and avg_shoulder >= RAISE_CHECK_MIN_SHOULDER:
            avg_elbow = (left_elbow + right_elbow) / 2.0
            self.check_form(
                self.too_high,
                avg_shoulder > RAISE_MAX_SHOULDER,
                "Don't raise arms above shoulder level!",
                "lateral-raise.form1",
            )
            self.check_form(
                self.bent_elbows,
                avg_elbow < RAISE_MIN_ELBOW,
                "Keep your elbows straight!",
                "lateral-raise.form2",
            )
        else:
            self.too_high.reset()
            self.bent_elbows.reset()
            self.clear_form_sound("lateral-raise.form1", "lateral-raise.form2")
        return new_stage

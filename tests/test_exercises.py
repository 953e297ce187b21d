from __future__ import annotations

import random

import pytest

from conftest import arm_frame, feed, hold, leg_frame
from formcoach.exercises import (
    BicepCurlDetector,
    FrontKickDetector,
    LateralRaiseDetector,
    OverheadPressDetector,
    SquatDetector,
)
from formcoach.feedback import ERROR, INFO, SUCCESS
from formcoach.sound import SoundDispatcher


def make(cls, sink, clock, sound=None, **kwargs):
    return cls(sink, sound=sound, clock=clock, **kwargs)


# -- squat -------------------------------------------------------------------


def test_squat_classify_boundaries(sink, clock):
    det = make(SquatDetector, sink, clock)
    assert det.classify(170) == "standing"
    assert det.classify(140) == "descending"
    assert det.classify(120) == "halfway"
    assert det.classify(105) == "deep"
    assert det.classify(95) == "bottom"
    assert det.classify(150) == "descending"


def test_squat_full_cycle_counts_one_rep(sink, clock):
    det = make(SquatDetector, sink, clock)
    frames = []
    for angle in (160, 140, 120, 95, 160):
        frames += hold(leg_frame(angle), 8)
    feed(det, frames, clock)

    assert det.rep_count == 1
    successes = sink.messages(SUCCESS)
    assert len(successes) == 1
    assert "Rep 1" in successes[0]
    assert det.state.stage == "standing"
    assert det.state.rep_state == "standing"


def test_squat_partial_descent_does_not_count(sink, clock):
    det = make(SquatDetector, sink, clock)
    frames = hold(leg_frame(165), 8) + hold(leg_frame(140), 8) + hold(leg_frame(165), 8)
    feed(det, frames, clock)
    assert det.rep_count == 0
    assert sink.messages(SUCCESS) == []


def test_squat_calibrates_standing_hip_and_reset_clears_it(sink, clock):
    det = make(SquatDetector, sink, clock)
    feed(det, hold(leg_frame(170), 3), clock)
    assert det.standing_hip_y == pytest.approx(0.5)
    det.reset()
    assert det.standing_hip_y is None


def test_squat_hip_drop_restages_descending_frames(sink, clock):
    det = make(SquatDetector, sink, clock)
    det.standing_hip_y = 0.5
    # torso 0.3 long, hip dropped 0.06 -> normalized 0.2 -> halfway
    assert det.classify_hip_drop(0.56, 0.26) == "halfway"
    assert det.classify_hip_drop(0.51, 0.21) == "standing"
    assert det.classify_hip_drop(0.62, 0.32) == "bottom"


def test_squat_chest_lean_reported_once_with_sound(sink, clock):
    sound = SoundDispatcher(autostart=False)
    det = make(SquatDetector, sink, clock, sound=sound)
    frames = hold(leg_frame(160), 8) + hold(leg_frame(95, lean=0.25), 12)
    feed(det, frames, clock)

    assert sink.messages(ERROR) == ["Keep chest up!"]
    assert sound.pending().count("squat.form") == 1
    assert sound.is_form_error_active("squat.form", "squat")


def test_squat_midway_once_per_rep(sink, clock):
    det = make(SquatDetector, sink, clock)
    frames = hold(leg_frame(160), 8) + hold(leg_frame(120), 20) + hold(leg_frame(105), 20)
    feed(det, frames, clock)
    assert sink.messages(INFO).count("Almost there!") == 1


# -- bicep curl --------------------------------------------------------------


def test_bicep_curl_cycle(sink, clock):
    det = make(BicepCurlDetector, sink, clock)
    frames = hold(arm_frame(10, 180), 8) + hold(arm_frame(10, 40), 10) + hold(arm_frame(10, 180), 10)
    feed(det, frames, clock)
    assert det.rep_count == 1
    assert sink.messages(SUCCESS) == ["Rep 1 complete!"]


def test_bicep_curl_with_arm_swung_forward_is_not_a_rep(sink, clock):
    det = make(BicepCurlDetector, sink, clock)
    # elbow flexes but the upper arm leaves the torso: the top edge is never reached
    frames = hold(arm_frame(10, 180), 8) + hold(arm_frame(60, 40), 10) + hold(arm_frame(10, 180), 10)
    feed(det, frames, clock)
    assert det.rep_count == 0
    assert det.state.rep_state == "extended"


def test_bicep_curl_raised_elbow_warning(sink, clock):
    det = make(BicepCurlDetector, sink, clock)
    frames = hold(arm_frame(10, 180), 8) + hold(arm_frame(70, 100), 12)
    feed(det, frames, clock)
    assert "Keep your elbow down!" in sink.messages(ERROR)


# -- front kick --------------------------------------------------------------


def test_front_kick_counts_full_kick(sink, clock):
    det = make(FrontKickDetector, sink, clock)
    frames = []
    for angle in (160, 80, 130, 80):
        frames += hold(leg_frame(angle, other_knee=180), 6)
    feed(det, frames, clock)

    assert det.side == "right"
    assert det.rep_count == 1
    assert sink.messages(SUCCESS) == ["Kick 1 complete!"]


def test_front_kick_incomplete_extension_is_corrected_not_counted(sink, clock):
    sound = SoundDispatcher(autostart=False)
    det = make(FrontKickDetector, sink, clock, sound=sound)
    frames = []
    for angle in (160, 80, 105, 80):
        frames += hold(leg_frame(angle, other_knee=180), 6)
    stages = feed(det, frames, clock)

    assert "extended" not in stages
    assert det.state.rep_state != "extended"
    assert det.rep_count == 0
    assert "Extend your leg fully for a proper kick!" in sink.messages(ERROR)
    assert "front-kick.form" in sound.pending()


def test_front_kick_tracks_bent_left_leg(sink, clock):
    det = make(FrontKickDetector, sink, clock)
    feed(det, hold(leg_frame(80, other_knee=180, side="left"), 3), clock)
    assert det.side == "left"
    assert det.state.rep_state == "chambered"


def test_front_kick_second_kick_inside_cooldown_is_ignored(sink, clock):
    det = make(FrontKickDetector, sink, clock)
    frames = []
    for angle in (160, 80, 130, 80, 130, 80):
        frames += hold(leg_frame(angle, other_knee=180), 2)
    # no clock advance: every return lands inside the 300 ms window
    feed(det, frames)
    assert det.rep_count == 1


def test_front_kick_uses_lower_visibility_threshold(sink, clock):
    kick = make(FrontKickDetector, sink, clock)
    squat = make(SquatDetector, sink, clock)
    frame = leg_frame(160, other_knee=180, vis=0.4)
    assert kick.detect(frame) == "standing"
    assert squat.detect(frame) is None


# -- overhead press ----------------------------------------------------------


def test_overhead_press_cycle(sink, clock):
    det = make(OverheadPressDetector, sink, clock)
    frames = hold(arm_frame(90, 90), 10) + hold(arm_frame(180, 180), 10) + hold(arm_frame(90, 90), 10)
    feed(det, frames, clock)
    assert det.rep_count == 1
    assert "Good lockout!" in sink.messages(INFO)
    assert det.state.rep_state == "rack"


def test_overhead_press_asymmetric_lockout_is_transition(sink, clock):
    det = make(OverheadPressDetector, sink, clock)
    frames = hold(arm_frame(90, 90), 10) + hold(arm_frame(180, 180, right_shoulder=90, right_elbow=90), 10)
    stages = feed(det, frames, clock)
    assert stages[-1] == "transition"
    assert "lockout" not in stages
    assert det.rep_count == 0


def test_overhead_press_dropping_from_lockout_abandons_rep(sink, clock):
    det = make(OverheadPressDetector, sink, clock)
    frames = (
        hold(arm_frame(90, 90), 10)
        + hold(arm_frame(180, 180), 10)
        + hold(arm_frame(20, 180), 10)
        + hold(arm_frame(90, 90), 10)
    )
    feed(det, frames, clock)
    assert det.rep_count == 0
    assert det.state.rep_state == "rack"


def test_overhead_press_classify_requires_both_arms():
    assert OverheadPressDetector.arm_stage(90, 90) == "rack"
    assert OverheadPressDetector.arm_stage(170, 170) == "lockout"
    assert OverheadPressDetector.arm_stage(90, 30) == "ground"
    assert OverheadPressDetector.arm_stage(140, 100) == "transition"


# -- lateral raise -----------------------------------------------------------


def test_lateral_raise_cycle(sink, clock):
    det = make(LateralRaiseDetector, sink, clock)
    frames = hold(arm_frame(10, 180), 8) + hold(arm_frame(90, 180), 10) + hold(arm_frame(10, 180), 10)
    feed(det, frames, clock)
    assert det.rep_count == 1
    assert "Almost there!" in sink.messages(INFO)


def test_lateral_raise_too_high(sink, clock):
    sound = SoundDispatcher(autostart=False)
    det = make(LateralRaiseDetector, sink, clock, sound=sound)
    frames = hold(arm_frame(10, 180), 8) + hold(arm_frame(140, 180), 12)
    feed(det, frames, clock)
    assert sink.messages(ERROR) == ["Don't raise arms above shoulder level!"]
    assert "lateral-raise.form1" in sound.pending()


def test_lateral_raise_bent_elbows_needs_eight_frames(sink, clock):
    det = make(LateralRaiseDetector, sink, clock)
    assert det.bent_elbows.required_frames == 8
    assert det.too_high.required_frames == 5
    frames = hold(arm_frame(10, 180), 8) + hold(arm_frame(90, 120), 20)
    feed(det, frames, clock)
    assert "Keep your elbows straight!" in sink.messages(ERROR)


# -- shared properties -------------------------------------------------------


def test_stage_flicker_shorter_than_stable_frames_is_ignored(sink, clock):
    det = make(SquatDetector, sink, clock)
    det.angle_alpha = 1.0
    feed(det, hold(leg_frame(165), 5), clock)
    stages = feed(det, [leg_frame(120), leg_frame(120), leg_frame(165)] * 4, clock)

    assert "halfway" not in stages
    assert det.state.stage == "standing"
    assert det.state.rep_state == "standing"
    feed(det, hold(leg_frame(120), 3), clock)
    assert det.state.stage == "halfway"
    assert det.state.prev_stage == "standing"


def test_flicker_back_to_accepted_stage_resumes_at_once(sink, clock):
    det = make(SquatDetector, sink, clock)
    det.angle_alpha = 1.0
    feed(det, hold(leg_frame(165), 5), clock)
    assert feed(det, [leg_frame(120), leg_frame(165)], clock) == [None, "standing"]
    assert det.state.stage == "standing"
    assert feed(det, [leg_frame(120)] * 3, clock) == [None, None, "halfway"]


def test_low_visibility_frame_leaves_state_untouched(sink, clock):
    det = make(SquatDetector, sink, clock)
    feed(det, hold(leg_frame(160), 4) + hold(leg_frame(120), 2), clock)
    before = det.state.snapshot()
    angles_before = {k: det.angles.get(k) for k in det.angles.keys()}
    events_before = list(sink.events)

    assert det.detect(leg_frame(95, vis=0.3)) is None
    assert det.state.snapshot() == before
    assert {k: det.angles.get(k) for k in det.angles.keys()} == angles_before
    assert sink.events == events_before


def test_missing_joint_skips_frame(sink, clock):
    det = make(BicepCurlDetector, sink, clock)
    frame = arm_frame(10, 180)
    frame[14] = None
    assert det.detect(frame) is None
    assert det.angles.keys() == []


@pytest.mark.parametrize(
    "cls, initial",
    [
        (SquatDetector, "standing"),
        (BicepCurlDetector, "extended"),
        (FrontKickDetector, "standing"),
        (OverheadPressDetector, "start"),
        (LateralRaiseDetector, "down"),
    ],
)
def test_reset_is_idempotent(cls, initial, sink, clock):
    det = make(cls, sink, clock)
    feed(det, hold(leg_frame(100), 5) + hold(arm_frame(90, 90), 5), clock)
    det.reset()
    once = det.state.snapshot()
    det.reset()
    assert det.state.snapshot() == once
    assert once["rep_count"] == 0
    assert once["stage"] == initial
    assert once["prev_stage"] == initial
    assert det.angles.keys() == []
    assert all(d.frames == 0 for d in det.form_errors())


def test_rep_count_is_monotonic_under_noise(sink, clock):
    rng = random.Random(7)
    det = make(SquatDetector, sink, clock)
    last = 0
    for _ in range(600):
        clock.advance(1 / 30)
        det.detect(leg_frame(rng.uniform(80, 180)))
        assert det.rep_count in (last, last + 1)
        last = det.rep_count


def test_every_fifth_rep_adds_encouragement(sink, clock):
    det = make(SquatDetector, sink, clock)
    for _ in range(5):
        frames = hold(leg_frame(165), 8) + hold(leg_frame(95), 8)
        feed(det, frames, clock)
        clock.advance(1.0)
    feed(det, hold(leg_frame(165), 8), clock)
    assert det.rep_count == 5
    assert sink.messages(INFO).count("Keep it up!") == 1

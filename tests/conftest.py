"""
Synthetic pose builders. Joints are placed so the detector angles come out
exactly as requested: legs hang from a hip at y=0.5, arms from shoulders at y=0.3.
"""
from __future__ import annotations

import math
from typing import Iterable, Optional

import pytest

from formcoach.pose import NUM_LANDMARKS, Landmark, LandmarkIdx as L

THIGH = 0.2
SHIN = 0.2
UPPER_ARM = 0.15
FOREARM = 0.12
FPS = 30.0


class FakeClock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FeedbackSink:
    """add_feedback stand-in that records every call."""

    def __init__(self):
        self.events: list[tuple[str, str]] = []

    def __call__(self, message: str, category: str) -> None:
        self.events.append((message, category))

    def messages(self, category: Optional[str] = None) -> list[str]:
        return [m for m, c in self.events if category is None or c == category]


def _point(x: float, y: float, vis: float = 1.0) -> Landmark:
    return Landmark(x=x, y=y, z=0.0, visibility=vis, presence=1.0)


def blank_frame(vis: float = 1.0) -> list:
    return [_point(0.5, 0.5, vis) for _ in range(NUM_LANDMARKS)]


def _place_leg(frame: list, side: str, knee_angle: float, vis: float, lean: float) -> None:
    x = 0.45 if side == "left" else 0.55
    idx = {
        "left": (L.LEFT_SHOULDER, L.LEFT_HIP, L.LEFT_KNEE, L.LEFT_ANKLE),
        "right": (L.RIGHT_SHOULDER, L.RIGHT_HIP, L.RIGHT_KNEE, L.RIGHT_ANKLE),
    }[side]
    theta = math.radians(knee_angle)
    hip = (x, 0.5)
    knee = (x, 0.5 + THIGH)
    ankle = (knee[0] + SHIN * math.sin(theta), knee[1] - SHIN * math.cos(theta))
    frame[idx[0]] = _point(x + lean, 0.2, vis)
    frame[idx[1]] = _point(*hip, vis)
    frame[idx[2]] = _point(*knee, vis)
    frame[idx[3]] = _point(*ankle, vis)


def leg_frame(
    knee_angle: float,
    other_knee: Optional[float] = None,
    side: str = "right",
    vis: float = 1.0,
    lean: float = 0.0,
) -> list:
    """Both legs; `side` gets knee_angle, the other leg other_knee (default: same)."""
    frame = blank_frame()
    other = "left" if side == "right" else "right"
    _place_leg(frame, side, knee_angle, vis, lean)
    _place_leg(frame, other, knee_angle if other_knee is None else other_knee, vis, lean)
    return frame


def _rotate(vx: float, vy: float, degrees: float) -> tuple[float, float]:
    r = math.radians(degrees)
    return (vx * math.cos(r) - vy * math.sin(r), vx * math.sin(r) + vy * math.cos(r))


def _place_arm(frame: list, side: str, shoulder_angle: float, elbow_angle: float, vis: float) -> None:
    sx = -1.0 if side == "left" else 1.0
    idx = {
        "left": (L.LEFT_SHOULDER, L.LEFT_ELBOW, L.LEFT_WRIST, L.LEFT_HIP),
        "right": (L.RIGHT_SHOULDER, L.RIGHT_ELBOW, L.RIGHT_WRIST, L.RIGHT_HIP),
    }[side]
    shoulder = (0.5 + sx * 0.1, 0.3)
    a = math.radians(shoulder_angle)
    d1 = (sx * math.sin(a), math.cos(a))
    elbow = (shoulder[0] + UPPER_ARM * d1[0], shoulder[1] + UPPER_ARM * d1[1])
    d2 = _rotate(-d1[0], -d1[1], sx * elbow_angle)
    wrist = (elbow[0] + FOREARM * d2[0], elbow[1] + FOREARM * d2[1])
    frame[idx[0]] = _point(*shoulder, vis)
    frame[idx[1]] = _point(*elbow, vis)
    frame[idx[2]] = _point(*wrist, vis)
    frame[idx[3]] = _point(shoulder[0], 0.6, vis)


def arm_frame(
    left_shoulder: float,
    left_elbow: float,
    right_shoulder: Optional[float] = None,
    right_elbow: Optional[float] = None,
    vis: float = 1.0,
) -> list:
    """
    Both arms. shoulder angle = elbow-shoulder-hip (abduction / arm-to-torso),
    elbow angle = shoulder-elbow-wrist. Right arm mirrors the left by default.
    """
    frame = blank_frame()
    _place_arm(frame, "left", left_shoulder, left_elbow, vis)
    _place_arm(
        frame,
        "right",
        left_shoulder if right_shoulder is None else right_shoulder,
        left_elbow if right_elbow is None else right_elbow,
        vis,
    )
    return frame


def hold(frame: list, n: int) -> list:
    return [frame] * n


def feed(detector, frames: Iterable[list], clock: Optional[FakeClock] = None) -> list:
    """Run frames through detector.detect, one frame period apart; returns the stages."""
    stages = []
    for frame in frames:
        if clock is not None:
            clock.advance(1.0 / FPS)
        stages.append(detector.detect(frame))
    return stages


def as_dicts(frame: list) -> list:
    return [
        None if p is None else {"x": p.x, "y": p.y, "z": p.z, "visibility": p.visibility, "presence": p.presence}
        for p in frame
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> FeedbackSink:
    return FeedbackSink()

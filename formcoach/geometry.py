"""
Joint angles, torso tilt, keyed angle smoothing and limb side selection.
All angles are in degrees; points are normalized image coordinates (y grows downward).
"""
from __future__ import annotations

import math
from typing import Optional, Sequence

from .pose import Landmark, SIDE_JOINTS, landmark_visibility


def angle_at(a: Landmark, b: Landmark, c: Landmark) -> float:
    """Interior angle at b for the rays b->a and b->c, folded to [0, 180]."""
    radians = math.atan2(c.y - b.y, c.x - b.x) - math.atan2(a.y - b.y, a.x - b.x)
    angle = abs(math.degrees(radians))
    if angle > 180.0:
        angle = 360.0 - angle
    return angle


def torso_tilt_angle(shoulder: Landmark, hip: Landmark) -> float:
    """Angle of the hip->shoulder vector against the image y axis. 180 = upright."""
    dx = shoulder.x - hip.x
    dy = shoulder.y - hip.y
    return abs(math.degrees(math.atan2(dx, dy)))


def torso_angle_to_floor(shoulder: Landmark, hip: Landmark) -> float:
    """Angle of the hip->shoulder vector against the horizontal. 90 = upright."""
    dx = shoulder.x - hip.x
    dy = hip.y - shoulder.y
    return abs(math.degrees(math.atan2(dy, dx)))


class AngleSmoother:
    """
    Keyed EMA registry: each key keeps its own filter state.
    new = alpha * raw + (1 - alpha) * previous; the first value for a key passes through.
    """

    def __init__(self, default_alpha: float = 0.5):
        self.default_alpha = default_alpha
        self._values: dict[str, float] = {}

    def smooth(self, key: str, raw: float, alpha: Optional[float] = None) -> float:
        a = self.default_alpha if alpha is None else alpha
        prev = self._values.get(key)
        value = raw if prev is None else a * raw + (1 - a) * prev
        self._values[key] = value
        return value

    def get(self, key: str) -> Optional[float]:
        return self._values.get(key)

    def keys(self) -> list[str]:
        return list(self._values)

    def reset(self) -> None:
        self._values.clear()


def side_visibility(landmarks: Sequence[Optional[Landmark]], side: str) -> float:
    """Summed visibility of shoulder, hip, knee and ankle on one side."""
    return sum(landmark_visibility(landmarks, idx) for idx in SIDE_JOINTS[side].values())


def pick_dominant_side(landmarks: Sequence[Optional[Landmark]]) -> str:
    """'left' or 'right', whichever side's key joints are more visible. Ties favour right."""
    left = side_visibility(landmarks, "left")
    right = side_visibility(landmarks, "right")
    return "right" if right >= left else "left"

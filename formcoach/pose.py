"""
Pose landmark records. Frames are lists of 33 landmarks in MediaPipe Pose
order with normalized image coordinates (x, y in 0..1, z relative depth).
Inference happens upstream; this module only parses what arrives.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional, Sequence

logger = logging.getLogger(__name__)

NUM_LANDMARKS = 33


# MediaPipe Pose landmark indices (same as PoseLandmark)
class LandmarkIdx:
    NOSE = 0
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


# Joint indices of one body side, used by single-limb exercises.
SIDE_JOINTS = {
    "left": {
        "shoulder": LandmarkIdx.LEFT_SHOULDER,
        "hip": LandmarkIdx.LEFT_HIP,
        "knee": LandmarkIdx.LEFT_KNEE,
        "ankle": LandmarkIdx.LEFT_ANKLE,
    },
    "right": {
        "shoulder": LandmarkIdx.RIGHT_SHOULDER,
        "hip": LandmarkIdx.RIGHT_HIP,
        "knee": LandmarkIdx.RIGHT_KNEE,
        "ankle": LandmarkIdx.RIGHT_ANKLE,
    },
}


@dataclass(frozen=True)
class Landmark:
    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = None
    presence: Optional[float] = None

    def confidence(self) -> float:
        """Lower of visibility and presence; an absent score counts as fully visible."""
        vis = 1.0 if self.visibility is None else self.visibility
        pres = 1.0 if self.presence is None else self.presence
        return min(vis, pres)

    def is_visible(self, threshold: float) -> bool:
        return self.confidence() >= threshold


Frame = list[Optional[Landmark]]


def _opt_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_landmark(raw: Any) -> Optional[Landmark]:
    """
    Build a Landmark from a dict, an (x, y[, z[, vis[, presence]]]) sequence,
    or any object exposing x/y attributes (MediaPipe NormalizedLandmark).
    Returns None when x or y is missing, not numeric or not finite (NaN, inf).
    """
    if raw is None:
        return None
    if isinstance(raw, Landmark):
        return raw
    if isinstance(raw, dict):
        x = _opt_float(raw.get("x"))
        y = _opt_float(raw.get("y"))
        z = _opt_float(raw.get("z"))
        vis = _opt_float(raw.get("visibility"))
        pres = _opt_float(raw.get("presence"))
    elif isinstance(raw, (list, tuple)):
        vals = [_opt_float(v) for v in raw]
        if len(vals) < 2:
            return None
        vals += [None] * (5 - len(vals))
        x, y, z, vis, pres = vals[:5]
    else:
        x = _opt_float(getattr(raw, "x", None))
        y = _opt_float(getattr(raw, "y", None))
        z = _opt_float(getattr(raw, "z", None))
        vis = _opt_float(getattr(raw, "visibility", None))
        pres = _opt_float(getattr(raw, "presence", None))
    if x is None or y is None:
        return None
    return Landmark(x=x, y=y, z=z or 0.0, visibility=vis, presence=pres)


def parse_frame(raw_frame: Optional[Sequence[Any]]) -> Optional[Frame]:
    """Parse one frame of landmarks; None or an empty frame means no pose."""
    if not raw_frame:
        return None
    if not isinstance(raw_frame, (list, tuple)):
        logger.debug("parse_frame: expected a landmark list, got %s", type(raw_frame).__name__)
        return None
    frame = [parse_landmark(item) for item in raw_frame]
    if not any(lm is not None for lm in frame):
        logger.debug("parse_frame: no usable landmarks in %s entries", len(frame))
        return None
    return frame


def get_landmark(frame: Optional[Sequence[Optional[Landmark]]], idx: int) -> Optional[Landmark]:
    if not frame or idx >= len(frame):
        return None
    return frame[idx]


def all_visible(points: Sequence[Optional[Landmark]], threshold: float) -> bool:
    """True when every point exists and meets the confidence threshold."""
    return all(p is not None and p.is_visible(threshold) for p in points)


def landmark_visibility(frame: Optional[Sequence[Optional[Landmark]]], idx: int) -> float:
    """Visibility score used for side selection: missing point 0, unscored point 1."""
    p = get_landmark(frame, idx)
    if p is None:
        return 0.0
    return 1.0 if p.visibility is None else p.visibility

"""
EMA smoothing of landmark frames to suppress detector jitter.
"""
from __future__ import annotations

from typing import Optional

from .pose import Frame, Landmark

# Weight of the newest frame; lower = smoother but laggier.
LANDMARK_SMOOTH_ALPHA = 0.3


class LandmarkSmoother:
    """
    One-step EMA per landmark: smoothed = alpha * raw + (1 - alpha) * previous.
    x, y and z are filtered; visibility and presence pass through unchanged.
    Call reset() whenever tracking is lost so a new pose is not blended with a stale one.
    """

    def __init__(self, alpha: float = LANDMARK_SMOOTH_ALPHA):
        self.alpha = max(0.0, min(1.0, alpha))
        self._baseline: Optional[Frame] = None

    @property
    def initialized(self) -> bool:
        return self._baseline is not None

    def smooth(self, landmarks: Optional[Frame]) -> Optional[Frame]:
        if not landmarks:
            self.reset()
            return landmarks

        if self._baseline is None:
            self._baseline = list(landmarks)
            return landmarks

        prev_frame = self._baseline
        a = self.alpha
        out: Frame = []
        for i, curr in enumerate(landmarks):
            prev = prev_frame[i] if i < len(prev_frame) else None
            if curr is None or prev is None:
                out.append(curr)
                continue
            out.append(
                Landmark(
                    x=a * curr.x + (1 - a) * prev.x,
                    y=a * curr.y + (1 - a) * prev.y,
                    z=a * curr.z + (1 - a) * prev.z,
                    visibility=curr.visibility,
                    presence=curr.presence,
                )
            )
        self._baseline = out
        return out

    def reset(self) -> None:
        self._baseline = None

    def set_alpha(self, alpha: float) -> None:
        self.alpha = max(0.0, min(1.0, alpha))

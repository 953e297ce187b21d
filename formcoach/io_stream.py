"""
Frame generator for recorded landmark files.
Yields (landmarks, frame_idx, fps) so a replay drives a session like a live feed.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Generator, Optional

logger = logging.getLogger(__name__)

DEFAULT_FPS = 30.0


def load_landmark_file(path: str) -> dict:
    """
    Read {"fps": F, "frames": [{"frame": i, "landmarks": [...]}, ...]}.
    A bare list of frames is accepted as well.
    """
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, list):
        data = {"frames": data}
    if not isinstance(data, dict) or not isinstance(data.get("frames"), list):
        raise ValueError(f"Not a landmark recording: {path}")
    return data


def _frame_landmarks(entry: Any) -> Optional[list]:
    if isinstance(entry, dict):
        landmarks = entry.get("landmarks")
        if landmarks is None:
            landmarks = entry.get("keypoints")
        return landmarks
    if isinstance(entry, list):
        return entry
    return None


def landmark_frames(
    path: str,
    fps: Optional[float] = None,
) -> Generator[tuple[Optional[list], int, float], None, None]:
    """
    Yield frames from a landmark recording.
    Yields: (landmarks or None, frame_idx, fps).
    Gaps in the recorded frame numbers are replayed as frames without a pose.
    """
    data = load_landmark_file(path)
    fps = float(fps or data.get("fps") or data.get("fps_est") or DEFAULT_FPS)
    idx = 0
    for entry in data["frames"]:
        recorded = entry.get("frame") if isinstance(entry, dict) else None
        if isinstance(recorded, int) and recorded > idx:
            logger.debug("landmark_frames: %s missing frames before %s", recorded - idx, recorded)
            while idx < recorded:
                yield (None, idx, fps)
                idx += 1
        yield (_frame_landmarks(entry), idx, fps)
        idx += 1

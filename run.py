#!/usr/bin/env python3
"""
Replay a recorded landmark file through a workout session.
Usage:
  python run.py --landmarks path/to/landmarks.json --exercise squat [--fps 30] [--sounds DIR]
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

# Run from project root so formcoach is importable
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv

from formcoach.detector import EXERCISE_ALIASES, EXERCISES, normalize_exercise_key
from formcoach.io_stream import landmark_frames
from formcoach.session import WorkoutSession
from formcoach.sound import NullBackend, PygameBackend, SoundDispatcher

logger = logging.getLogger("formcoach.run")


class ReplayClock:
    """Clock that follows the recording's frame timestamps instead of wall time."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def build_sound(sounds_dir: Optional[str] = None, audio: bool = False) -> SoundDispatcher:
    """Dispatcher for a replay: real playback only when audio is enabled."""
    sounds_dir = sounds_dir or os.environ.get("FORMCOACH_SOUNDS_DIR") or None
    if audio:
        return SoundDispatcher(backend=PygameBackend(), sounds_dir=sounds_dir)
    return SoundDispatcher(backend=NullBackend(), sounds_dir=sounds_dir, autostart=False)


def run_replay(
    landmarks_path: str,
    exercise: str,
    output_dir: str = "outputs",
    fps: Optional[float] = None,
    sound: Optional[SoundDispatcher] = None,
) -> dict:
    """Process a landmark recording: session -> metrics JSON. Returns the summary."""
    os.makedirs(output_dir, exist_ok=True)
    clock = ReplayClock()
    sound = sound if sound is not None else build_sound()
    sound.clock = clock
    session = WorkoutSession(exercise, sound=sound, clock=clock)
    session.start()
    fps_used = fps or 0.0
    for landmarks, frame_idx, fps_used in landmark_frames(landmarks_path, fps=fps):
        clock.now = frame_idx / fps_used
        session.process(landmarks)
        if not sound.autostart:
            sound.drain()
    summary = session.stop()
    summary["fps"] = fps_used
    summary["sounds"] = list(getattr(sound.backend, "played", []))
    sound.close()

    key = normalize_exercise_key(exercise) or exercise
    metrics_path = os.path.join(output_dir, f"{key}_metrics.json")
    with open(metrics_path, "w") as f:
        json.dump(summary, f, indent=2)
    summary["metrics_path"] = metrics_path
    logger.info("replay: %s frames from %s -> %s", summary["frames"], landmarks_path, metrics_path)
    return summary


def main(argv: Optional[list[str]] = None) -> None:
    _root = Path(__file__).resolve().parent
    load_dotenv()
    load_dotenv(_root / ".env")
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    choices = sorted(set(EXERCISES) | set(EXERCISE_ALIASES))
    ap = argparse.ArgumentParser(description="Rep counting and form feedback over recorded pose landmarks")
    ap.add_argument("--landmarks", type=str, required=True, help="Path to landmark JSON recording")
    ap.add_argument("--exercise", type=str, required=True, help=f"Exercise key ({', '.join(choices)})")
    ap.add_argument("--fps", type=float, default=None, help="Override the recording's frame rate")
    ap.add_argument("--output-dir", type=str, default="outputs", help="Output directory")
    ap.add_argument("--sounds", type=str, default=None, help="Sound clip directory (default FORMCOACH_SOUNDS_DIR)")
    args = ap.parse_args(argv)

    if normalize_exercise_key(args.exercise) is None:
        print(f"Error: unknown exercise {args.exercise!r}; choose one of {', '.join(choices)}", file=sys.stderr)
        sys.exit(1)
    if not os.path.isfile(args.landmarks):
        print(f"Error: landmark file not found: {args.landmarks}", file=sys.stderr)
        sys.exit(1)
    if args.fps is not None and args.fps <= 0:
        print("Error: --fps must be positive", file=sys.stderr)
        sys.exit(1)

    audio = os.environ.get("FORMCOACH_AUDIO", "0") == "1"
    sound = build_sound(args.sounds, audio=audio)
    try:
        summary = run_replay(args.landmarks, args.exercise, output_dir=args.output_dir, fps=args.fps, sound=sound)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Replay done. Reps: {summary['total_reps']}. Accuracy: {summary['accuracy']}%. Metrics: {summary['metrics_path']}")


if __name__ == "__main__":
    main()

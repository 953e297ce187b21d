from __future__ import annotations

import json

import pytest

import run
from conftest import as_dicts, hold, leg_frame


def write_recording(path, angles=(160, 140, 120, 95, 160), frames_per_step=8, fps=30):
    frames = []
    for angle in angles:
        frames += hold(leg_frame(angle), frames_per_step)
    data = {"fps": fps, "frames": [{"frame": i, "landmarks": as_dicts(f)} for i, f in enumerate(frames)]}
    path.write_text(json.dumps(data))
    return path


def test_run_replay_writes_metrics(tmp_path):
    rec = write_recording(tmp_path / "squat.json")
    out = tmp_path / "out"
    summary = run.run_replay(str(rec), "squat", output_dir=str(out))
    assert summary["total_reps"] == 1
    assert summary["fps"] == 30.0
    assert "starting" in summary["sounds"]

    metrics = json.loads((out / "squat_metrics.json").read_text())
    assert metrics["rep_counts"] == {"squat": 1}
    assert metrics["frames"] == 40


def test_main_accepts_alias(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("FORMCOACH_AUDIO", raising=False)
    rec = write_recording(tmp_path / "kick.json", angles=(160, 80, 130, 80), frames_per_step=6)
    run.main(["--landmarks", str(rec), "--exercise", "front-kick", "--output-dir", str(tmp_path)])
    assert "Reps: 1" in capsys.readouterr().out
    assert (tmp_path / "frontKick_metrics.json").exists()


def test_main_missing_file_exits_1(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        run.main(["--landmarks", str(tmp_path / "nope.json"), "--exercise", "squat"])
    assert exc.value.code == 1
    assert "not found" in capsys.readouterr().err


def test_main_unknown_exercise_exits_1(tmp_path, capsys):
    rec = write_recording(tmp_path / "squat.json")
    with pytest.raises(SystemExit) as exc:
        run.main(["--landmarks", str(rec), "--exercise", "yoga"])
    assert exc.value.code == 1
    assert "unknown exercise" in capsys.readouterr().err


def test_main_rejects_non_recording(tmp_path, capsys):
    bad = tmp_path / "bad.json"
    bad.write_text("{}")
    with pytest.raises(SystemExit) as exc:
        run.main(["--landmarks", str(bad), "--exercise", "squat", "--output-dir", str(tmp_path)])
    assert exc.value.code == 1

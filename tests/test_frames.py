"""Tests for frame budget, timestamp sampling and extraction."""

import os
import threading
import time
from unittest.mock import MagicMock

import pytest

from evidence_worker.errors import ExtractionPartialFailure, ExtractionTotalFailure
from evidence_worker.pipeline import frames
from evidence_worker.pipeline.frames import (
    frame_budget,
    sample_frames,
    sample_timestamps,
    usable_window,
)


@pytest.mark.parametrize(
    "duration,expected",
    [
        (5, 10),
        (12, 10),
        (29.9, 10),
        (30, 15),
        (59, 15),
        (60, 25),
        (150, 35),
        (200, 45),
        (450, 60),
        (600, 80),
        (3600, 80),
    ],
)
def test_frame_budget_steps(duration, expected):
    assert frame_budget(duration) == expected


def test_frame_budget_is_monotonic_and_capped():
    durations = [d / 2 for d in range(1, 2400)]
    budgets = [frame_budget(d) for d in durations]
    assert budgets == sorted(budgets)
    assert max(budgets) == 80
    assert all(frame_budget(d) == 80 for d in (600, 601, 10_000))


def test_usable_window_trims_edges():
    assert usable_window(12) == pytest.approx((0.6, 11.4))
    assert usable_window(100) == pytest.approx((1.0, 99.0))
    start, end = usable_window(2)
    assert start == pytest.approx(0.1)
    assert end == pytest.approx(1.9)


def test_short_recording_timestamps():
    timestamps = sample_timestamps(12, frame_budget(12))
    assert len(timestamps) == 10
    assert timestamps[0] == pytest.approx(0.6)
    assert timestamps[1] == 1.0
    assert timestamps[-1] == 11.0


@pytest.mark.parametrize("duration", [0.5, 3, 12, 45, 119, 299, 900])
def test_timestamps_increase_within_window(duration):
    timestamps = sample_timestamps(duration, frame_budget(duration))
    start, end = usable_window(duration)

    assert timestamps
    assert len(timestamps) <= frame_budget(duration)
    assert all(b > a for a, b in zip(timestamps, timestamps[1:]))
    assert all(start <= t <= end for t in timestamps)
    assert len({int(t) for t in timestamps}) == len(timestamps)


def test_same_second_candidates_collapse():
    # 3s recording with a budget of 10 only spans three whole seconds
    assert len(sample_timestamps(3, 10)) <= 3


def test_no_timestamps_for_empty_recording():
    assert sample_timestamps(0, 10) == []


def _fake_ffmpeg_writing(payload):
    chain = MagicMock()

    def run(**kwargs):
        path = chain.output.call_args[0][0]
        with open(path, "wb") as f:
            f.write(payload)

    chain.output.return_value.overwrite_output.return_value.run.side_effect = run
    return MagicMock(return_value=chain)


def test_extract_frame_writes_file(tmp_path, monkeypatch):
    monkeypatch.setattr("ffmpeg.input", _fake_ffmpeg_writing(b"x" * 5000))
    out = str(tmp_path / "frame.jpg")

    assert frames.extract_frame("video.mp4", 2.0, out) == out
    assert os.path.getsize(out) == 5000


def test_extract_frame_rejects_tiny_output(tmp_path, monkeypatch):
    monkeypatch.setattr("ffmpeg.input", _fake_ffmpeg_writing(b"x" * 200))
    out = str(tmp_path / "frame.jpg")

    with pytest.raises(ExtractionPartialFailure):
        frames.extract_frame("video.mp4", 2.0, out, min_bytes=1000)
    assert not os.path.exists(out)


def test_sample_frames_tolerates_partial_failures(tmp_path, monkeypatch):
    def fake_extract(video_path, timestamp, frame_path, size, min_bytes):
        if int(timestamp) in (1, 7):
            raise ExtractionPartialFailure(timestamp, "decode error")
        with open(frame_path, "wb") as f:
            f.write(b"x" * 2000)
        return frame_path

    monkeypatch.setattr(frames, "extract_frame", fake_extract)

    result = sample_frames("video.mp4", 12, str(tmp_path), max_concurrent=2)

    assert len(result) == 8
    assert [f.index for f in result] == list(range(8))
    assert all(b.timestamp > a.timestamp for a, b in zip(result, result[1:]))
    assert 1.0 not in [f.timestamp for f in result]
    assert all(os.path.exists(f.path) for f in result)


def test_sample_frames_bounds_concurrent_extractions(tmp_path, monkeypatch):
    lock = threading.Lock()
    running = {"now": 0, "peak": 0}

    def slow_extract(video_path, timestamp, frame_path, size, min_bytes):
        with lock:
            running["now"] += 1
            running["peak"] = max(running["peak"], running["now"])
        time.sleep(0.05)
        with open(frame_path, "wb") as f:
            f.write(b"x" * 2000)
        with lock:
            running["now"] -= 1
        return frame_path

    monkeypatch.setattr(frames, "extract_frame", slow_extract)

    result = sample_frames("video.mp4", 12, str(tmp_path), max_concurrent=3)

    assert len(result) == 10
    assert 1 < running["peak"] <= 3


def test_sample_frames_total_failure(tmp_path, monkeypatch):
    def always_fail(video_path, timestamp, frame_path, size, min_bytes):
        raise ExtractionPartialFailure(timestamp, "corrupt")

    monkeypatch.setattr(frames, "extract_frame", always_fail)

    with pytest.raises(ExtractionTotalFailure):
        sample_frames("video.mp4", 12, str(tmp_path))


def test_validate_frame_file(tmp_path, make_frame):
    frame = make_frame(1.0)
    assert frames.validate_frame_file(frame.path)

    broken = tmp_path / "broken.jpg"
    broken.write_bytes(b"not a jpeg")
    assert not frames.validate_frame_file(str(broken))
    assert not frames.validate_frame_file(str(tmp_path / "missing.jpg"))

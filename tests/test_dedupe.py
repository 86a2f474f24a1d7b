"""Tests for duplicate & freeze filtering and volume capping."""

import math
import shutil

import pytest

from evidence_worker.models import FrameSample
from evidence_worker.pipeline.dedupe import cap_frames, filter_duplicates, frame_similarity


def _copies(frame, timestamps, tmp_path):
    """Byte-identical copies of a frame at later timestamps."""
    copies = []
    for i, ts in enumerate(timestamps):
        path = tmp_path / f"dup_{frame.index}_{i:03d}.jpg"
        shutil.copyfile(frame.path, path)
        copies.append(FrameSample(index=100 + i, timestamp=float(ts), path=str(path)))
    return copies


def test_identical_images_are_fully_similar(make_frame, tmp_path):
    frame = make_frame(1.0)
    copy = _copies(frame, [2.0], tmp_path)[0]
    assert frame_similarity(frame.path, copy.path) == pytest.approx(100.0)


def test_different_colors_score_low(make_frame):
    red = make_frame(1.0, color=(200, 40, 40))
    blue = make_frame(2.0, color=(40, 40, 200))
    assert frame_similarity(red.path, blue.path) < 80


def test_size_mismatch_short_circuits(make_frame, noise_array):
    flat = make_frame(1.0, color=(120, 120, 120))
    noisy = make_frame(2.0, array=noise_array)
    assert frame_similarity(flat.path, noisy.path) == 0.0


def test_missing_file_scores_zero(make_frame, tmp_path):
    frame = make_frame(1.0)
    assert frame_similarity(frame.path, str(tmp_path / "nope.jpg")) == 0.0


def test_distinct_frames_all_retained(distinct_frames):
    frames = distinct_frames(8)
    stats = filter_duplicates(frames)
    assert [f.timestamp for f in stats.unique] == [f.timestamp for f in frames]
    assert stats.removed == 0
    assert stats.freezes == 0


def test_first_frame_always_kept(make_frame, tmp_path):
    first = make_frame(1.0)
    frames = [first] + _copies(first, [2, 3], tmp_path)
    stats = filter_duplicates(frames)
    assert stats.unique[0] is first
    assert len(stats.unique) <= len(frames)


def test_single_and_empty_input():
    assert filter_duplicates([]).unique == []
    only = FrameSample(index=0, timestamp=1.0, path="unused.jpg")
    assert filter_duplicates([only]).unique == [only]


def test_freeze_between_retained_frames(distinct_frames, tmp_path):
    a, b = distinct_frames(2, start=2.0, step=10.0)
    duplicates = _copies(a, [3.5, 5.0, 6.5], tmp_path)

    stats = filter_duplicates([a] + duplicates + [b])

    assert stats.unique == [a, b]
    assert stats.removed == 3
    assert stats.freezes == 1
    # 6.5 - 2.0 = 4.5, rounded half up
    assert a.frozen_duration == 5
    assert b.frozen_duration is None


def test_short_duplicate_run_is_not_a_freeze(distinct_frames, tmp_path):
    a, b = distinct_frames(2, start=1.0, step=5.0)
    duplicates = _copies(a, [2.0, 3.0], tmp_path)

    stats = filter_duplicates([a] + duplicates + [b])

    assert stats.removed == 2
    assert stats.freezes == 0
    assert a.frozen_duration is None


def test_open_streak_at_end_marks_last_retained(distinct_frames, tmp_path):
    a, b = distinct_frames(2, start=1.0, step=1.0)
    duplicates = _copies(b, [4.0, 6.0, 9.0, 12.0], tmp_path)

    stats = filter_duplicates([a, b] + duplicates)

    assert stats.unique == [a, b]
    assert stats.freezes == 1
    assert b.frozen_duration == 10
    assert a.frozen_duration is None


def test_stuck_spinner_collapses_to_one_frame(make_frame, tmp_path):
    spinner = make_frame(1.0, color=(230, 230, 235))
    duplicates = _copies(spinner, [1.0 + 1.5 * i for i in range(1, 40)], tmp_path)

    stats = filter_duplicates([spinner] + duplicates)

    assert stats.unique == [spinner]
    assert stats.removed == 39
    assert stats.freezes == 1
    # last duplicate at 59.5s, stuck from 1.0s
    assert spinner.frozen_duration == 59


def _samples(n):
    return [FrameSample(index=i, timestamp=float(i + 1), path=f"f{i}.jpg") for i in range(n)]


@pytest.mark.parametrize("n", [1, 3, 49, 50, 51, 99, 100, 120, 247])
def test_cap_never_exceeds_limit(n):
    unique = _samples(n)
    selected = cap_frames(unique, unique)

    assert len(selected) <= 50
    if n > 50:
        k = math.ceil(n / 50)
        assert selected == unique[::k]
        assert len(selected) == math.ceil(n / k)
    else:
        assert selected == unique


def test_cap_falls_back_to_raw_frames():
    raw = _samples(30)
    selected = cap_frames(raw[:2], raw)
    assert selected == raw[:20]


def test_cap_keeps_small_set_when_raw_is_small():
    raw = _samples(2)
    assert cap_frames(raw[:1], raw) == raw[:1]

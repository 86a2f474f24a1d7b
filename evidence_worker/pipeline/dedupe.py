"""
Duplicate & freeze filtering and volume capping.

Consecutive near-identical frames are collapsed onto the last retained
frame; a long enough run of them is recorded as a freeze on that frame.
"""

import os
import math
import logging
from typing import List

import numpy as np

from ..models import FilterStats, FrameSample
from .classify import load_grid
from .util import round_half_up

logger = logging.getLogger("evidence_worker")


MAX_SIZE_DIFF = 0.15


def frame_similarity(path_a: str, path_b: str) -> float:
    """
    Approximate visual similarity of two images on a 0-100 scale.

    Images whose encoded sizes differ by more than 15% are treated as
    different without decoding. Otherwise both are shrunk to a 32x32 grid
    and the mean absolute channel difference is converted to a percentage.
    Unreadable images score 0.
    """
    try:
        size_a = os.path.getsize(path_a)
        size_b = os.path.getsize(path_b)
        largest = max(size_a, size_b)
        if largest == 0:
            return 0.0
        if abs(size_a - size_b) / largest > MAX_SIZE_DIFF:
            return 0.0

        grid_a = load_grid(path_a)
        grid_b = load_grid(path_b)
        avg_diff = float(np.abs(grid_a - grid_b).mean())
        return 100.0 - (avg_diff / 255.0) * 100.0

    except Exception as e:
        logger.debug(f"Similarity check failed for {path_a} vs {path_b}: {str(e)}")
        return 0.0


def filter_duplicates(
    frames: List[FrameSample],
    threshold: float = 92.0,
    min_streak: int = 3
) -> FilterStats:
    """
    Collapse consecutive near-duplicate frames and tag freezes.

    Each candidate is compared only with the most recently retained frame.
    When a run of at least min_streak duplicates ends (or the input ends),
    the retained frame before the run gets frozen_duration set to the time
    from itself to the last duplicate, rounded to whole seconds.

    Args:
        frames: frames ordered by timestamp
        threshold: similarity at or above which a candidate is a duplicate
        min_streak: shortest duplicate run that counts as a freeze

    Returns:
        FilterStats with unique frames, duplicates removed and freeze events
    """
    if len(frames) <= 1:
        return FilterStats(unique=list(frames))

    unique = [frames[0]]
    removed = 0
    freezes = 0
    streak = 0
    last_duplicate = None

    for candidate in frames[1:]:
        retained = unique[-1]
        similarity = frame_similarity(retained.path, candidate.path)

        if similarity >= threshold:
            removed += 1
            streak += 1
            last_duplicate = candidate
            continue

        if streak >= min_streak:
            _mark_freeze(retained, last_duplicate)
            freezes += 1
        unique.append(candidate)
        streak = 0
        last_duplicate = None

    if streak >= min_streak:
        _mark_freeze(unique[-1], last_duplicate)
        freezes += 1

    logger.info(f"Dedup: {len(unique)} unique, {removed} duplicates removed, {freezes} freezes")
    return FilterStats(unique=unique, removed=removed, freezes=freezes)


def _mark_freeze(retained: FrameSample, last_duplicate: FrameSample) -> None:
    retained.frozen_duration = round_half_up(last_duplicate.timestamp - retained.timestamp)
    logger.info(f"Screen frozen for {retained.frozen_duration}s at ~{retained.timestamp:.0f}s")


def cap_frames(
    unique: List[FrameSample],
    raw: List[FrameSample],
    max_frames: int = 50,
    min_frames: int = 3,
    raw_fallback: int = 20
) -> List[FrameSample]:
    """
    Limit the frames sent to inference.

    Oversized sets are reduced to every k-th frame with k = ceil(n / max_frames).
    If fewer than min_frames survive while raw extraction had at least that
    many, the earliest raw frames are used instead.
    """
    selected = list(unique)
    if len(selected) > max_frames:
        step = math.ceil(len(selected) / max_frames)
        selected = selected[::step]
        logger.info(f"Capped {len(unique)} unique frames to {len(selected)} (every {step})")

    if len(selected) < min_frames and len(raw) >= min_frames:
        limit = min(len(raw), raw_fallback, max_frames)
        logger.warning(f"Too few unique frames ({len(selected)}), using first {limit} raw frames instead")
        selected = list(raw[:limit])

    return selected

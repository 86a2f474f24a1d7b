import os
import math
import time
import asyncio
import ffmpeg
import logging
from typing import List, Tuple
from PIL import Image

from ..errors import ExtractionPartialFailure, ExtractionTotalFailure
from ..models import FrameSample
from .util import get_frames_dir

logger = logging.getLogger("evidence_worker")


# (upper duration bound in seconds, frames to extract)
FRAME_BUDGET_STEPS = [
    (30, 10),
    (60, 15),
    (120, 25),
    (180, 35),
    (300, 45),
    (600, 60),
]
MAX_FRAME_BUDGET = 80


def frame_budget(duration: float) -> int:
    """Number of frames to extract for a recording of the given duration"""
    for bound, count in FRAME_BUDGET_STEPS:
        if duration < bound:
            return count
    return MAX_FRAME_BUDGET


def usable_window(duration: float) -> Tuple[float, float]:
    """Trimmed time range that skips the first and last ~5% of the recording"""
    start = min(1.0, duration * 0.05)
    end = max(duration - 1.0, duration * 0.95)
    return start, end


def sample_timestamps(duration: float, count: int) -> List[float]:
    """
    Evenly spaced timestamps across the usable window, one per whole second.

    Candidates landing in the same second collapse to one. A floored
    candidate that would fall before the window start is clamped to it.
    """
    if duration <= 0 or count <= 0:
        return []

    start, end = usable_window(duration)
    span = end - start

    if count == 1:
        candidates = [start + span / 2]
    else:
        candidates = [start + (i / (count - 1)) * span for i in range(count)]

    timestamps = []
    seen_seconds = set()
    for candidate in candidates:
        second = math.floor(candidate)
        if second in seen_seconds:
            continue
        seen_seconds.add(second)
        timestamps.append(max(float(second), start))

    return sorted(timestamps)


def extract_frame(video_path: str, timestamp: float, frame_path: str,
                  size: str = "360x640", min_bytes: int = 1000) -> str:
    """
    Extract one reduced-resolution still at a timestamp.

    Raises:
        ExtractionPartialFailure: if ffmpeg fails or the output is missing or implausibly small
    """
    try:
        (
            ffmpeg
            .input(video_path, ss=timestamp)
            .output(frame_path, vframes=1, s=size, format='image2', vcodec='mjpeg', **{'q:v': 3})
            .overwrite_output()
            .run(quiet=True)
        )
    except ffmpeg.Error as e:
        stderr = e.stderr.decode(errors="replace").strip() if e.stderr else str(e)
        raise ExtractionPartialFailure(timestamp, stderr.splitlines()[-1] if stderr else "ffmpeg error") from e

    if not os.path.exists(frame_path):
        raise ExtractionPartialFailure(timestamp, "no output file")

    size_bytes = os.path.getsize(frame_path)
    if size_bytes <= min_bytes:
        os.remove(frame_path)
        raise ExtractionPartialFailure(timestamp, f"output too small ({size_bytes} bytes)")

    return frame_path


async def extract_frames_parallel(
    video_path: str,
    timestamps: List[float],
    frames_dir: str,
    size: str = "360x640",
    min_bytes: int = 1000,
    max_concurrent: int = 4
) -> List[FrameSample]:
    """
    Extract frames for all timestamps with bounded concurrency.

    Each ffmpeg call runs in a worker thread; at most max_concurrent run
    at once. Failed timestamps are dropped.
    """
    semaphore = asyncio.Semaphore(max_concurrent)

    async def extract_async(timestamp: float, idx: int) -> Tuple[float, str]:
        frame_path = os.path.join(frames_dir, f"frame_{idx:03d}.jpg")
        async with semaphore:
            await asyncio.to_thread(extract_frame, video_path, timestamp, frame_path, size, min_bytes)
        return timestamp, frame_path

    tasks = [extract_async(t, i) for i, t in enumerate(timestamps)]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    extracted = []
    failed = 0
    for result in results:
        if isinstance(result, ExtractionPartialFailure):
            failed += 1
            logger.warning(f"Skipping frame: {result}")
        elif isinstance(result, Exception):
            failed += 1
            logger.warning(f"Skipping frame after unexpected error: {str(result)}")
        else:
            extracted.append(result)

    if failed:
        logger.info(f"{failed}/{len(timestamps)} timestamps failed to extract")

    extracted.sort(key=lambda item: item[0])
    return [
        FrameSample(index=i, timestamp=timestamp, path=path)
        for i, (timestamp, path) in enumerate(extracted)
    ]


def sample_frames(
    video_path: str,
    duration: float,
    workspace: str,
    size: str = "360x640",
    min_bytes: int = 1000,
    max_concurrent: int = 4
) -> List[FrameSample]:
    """
    Extract the frame budget for a recording, sorted by timestamp.

    Raises:
        ExtractionTotalFailure: if not a single frame could be extracted
    """
    start_time = time.time()
    budget = frame_budget(duration)
    timestamps = sample_timestamps(duration, budget)
    frames_dir = get_frames_dir(workspace)

    logger.info(f"FRAMES: {duration:.1f}s recording -> budget {budget}, {len(timestamps)} unique timestamps")

    frames = asyncio.run(
        extract_frames_parallel(video_path, timestamps, frames_dir, size, min_bytes, max_concurrent)
    )

    elapsed = time.time() - start_time
    logger.info(f"FRAMES: Extracted {len(frames)}/{len(timestamps)} frames in {elapsed:.2f}s")

    if not frames:
        raise ExtractionTotalFailure(f"No frames extracted from {len(timestamps)} timestamps")

    return frames


def validate_frame_file(frame_path: str) -> bool:
    """Validate that frame file exists and is readable"""
    if not os.path.exists(frame_path):
        return False

    try:
        with Image.open(frame_path) as img:
            img.verify()
        return True
    except Exception:
        return False

import os
import ffmpeg
import logging
from typing import Dict, Any

from ..errors import ProbeError

logger = logging.getLogger("evidence_worker")


def probe_duration(video_path: str) -> float:
    """
    Get recording duration in seconds.

    Reads the container duration first and falls back to the first
    video stream's duration.

    Raises:
        ProbeError: if the file cannot be probed or has no usable duration
    """
    if not os.path.exists(video_path):
        raise ProbeError(f"Video file not found: {video_path}")

    try:
        probe = ffmpeg.probe(video_path)
    except ffmpeg.Error as e:
        stderr = e.stderr.decode(errors="replace") if e.stderr else str(e)
        raise ProbeError(f"FFprobe failed for {video_path}: {stderr.strip()}") from e
    except Exception as e:
        raise ProbeError(f"Error probing {video_path}: {str(e)}") from e

    duration = _read_duration(probe)
    if duration <= 0:
        raise ProbeError(f"Unreadable or zero duration for {video_path}")

    logger.info(f"PROBE: {video_path} duration {duration:.2f}s")
    return duration


def _read_duration(probe: Dict[str, Any]) -> float:
    """Pick the duration out of ffprobe output, 0.0 if none is usable"""
    candidates = [probe.get('format', {}).get('duration')]
    candidates.extend(
        stream.get('duration')
        for stream in probe.get('streams', [])
        if stream.get('codec_type') == 'video'
    )

    for value in candidates:
        try:
            duration = float(value)
        except (TypeError, ValueError):
            continue
        if duration > 0:
            return duration

    return 0.0

import os
import re
import shutil
import tempfile
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger("evidence_worker")


DEFAULT_FRAMES_DIR = "frames"
DEFAULT_VIDEO_NAME = "video.mp4"


@contextmanager
def job_workspace(job_id: str, base_dir: Optional[str] = None) -> Iterator[str]:
    """
    Scoped temporary workspace for one job.

    The directory and everything in it is removed when the block exits,
    whether it exits normally or by exception.
    """
    if base_dir:
        ensure_dir(base_dir)
    workspace = tempfile.mkdtemp(prefix=f"bug-{clean_filename(str(job_id))}-", dir=base_dir)
    logger.debug(f"Created workspace {workspace} for job {job_id}")
    try:
        yield workspace
    finally:
        shutil.rmtree(workspace, ignore_errors=True)
        if os.path.exists(workspace):
            logger.error(f"Workspace {workspace} for job {job_id} could not be removed")
        else:
            logger.info(f"CLEANUP: Removed workspace for job {job_id}")


def get_frames_dir(workspace: str) -> str:
    """Get frames directory inside a job workspace"""
    frames_dir = os.path.join(workspace, DEFAULT_FRAMES_DIR)
    os.makedirs(frames_dir, exist_ok=True)
    return frames_dir


def format_timecode(seconds: float) -> str:
    """Format seconds as m:ss"""
    minutes = int(seconds // 60)
    secs = round_half_up(seconds % 60)
    if secs == 60:
        minutes, secs = minutes + 1, 0
    return f"{minutes}:{secs:02d}"


def format_duration(seconds: float) -> str:
    """Format seconds as 'Xm Ys'"""
    minutes = int(seconds // 60)
    secs = round_half_up(seconds % 60)
    if secs == 60:
        minutes, secs = minutes + 1, 0
    return f"{minutes}m {secs}s"


def round_half_up(value: float) -> int:
    """Round a non-negative number to the nearest integer, halves rounding up"""
    return int(value + 0.5)


def ensure_dir(path: str):
    """Ensure directory exists"""
    os.makedirs(path, exist_ok=True)


def get_file_size_mb(file_path: str) -> float:
    """Get file size in MB"""
    try:
        size_bytes = os.path.getsize(file_path)
        return size_bytes / (1024 * 1024)
    except OSError:
        return 0.0


def clean_filename(filename: str) -> str:
    """Clean filename for safe filesystem usage"""
    # Remove or replace unsafe characters
    filename = re.sub(r'[<>:"/\\|?*\s]', '_', filename)
    # Remove multiple underscores
    filename = re.sub(r'_+', '_', filename)
    # Remove leading/trailing underscores and dots
    filename = filename.strip('_.')
    return filename or 'unnamed'

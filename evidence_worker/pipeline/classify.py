import logging
from typing import List, Tuple

import numpy as np
from PIL import Image

from ..models import FrameLabel, FrameSample

logger = logging.getLogger("evidence_worker")


GRID_SIZE = 32
DARK_PIXEL_BRIGHTNESS = 20
WHITE_PIXEL_BRIGHTNESS = 240
SCREEN_FRACTION = 0.9
NEARLY_BLACK_AVERAGE = 15


def load_grid(image_path: str, size: int = GRID_SIZE) -> np.ndarray:
    """Load an image as a size x size RGB float array"""
    with Image.open(image_path) as img:
        small = img.convert("RGB").resize((size, size), Image.BILINEAR)
        return np.asarray(small, dtype=np.float32)


def classify_grid(grid: np.ndarray) -> FrameLabel:
    """Label an RGB grid by its brightness distribution"""
    brightness = grid.mean(axis=2)
    dark_ratio = float((brightness < DARK_PIXEL_BRIGHTNESS).mean())
    white_ratio = float((brightness > WHITE_PIXEL_BRIGHTNESS).mean())

    if dark_ratio > SCREEN_FRACTION:
        return FrameLabel.BLACK_SCREEN
    if white_ratio > SCREEN_FRACTION:
        return FrameLabel.WHITE_SCREEN
    if float(brightness.mean()) < NEARLY_BLACK_AVERAGE:
        return FrameLabel.NEARLY_BLACK
    return FrameLabel.NORMAL


def classify_frame(image_path: str) -> FrameLabel:
    """
    Classify a frame as normal, black, nearly black or white.

    An image that cannot be decoded is treated as normal.
    """
    try:
        return classify_grid(load_grid(image_path))
    except Exception as e:
        logger.warning(f"Could not classify {image_path}: {str(e)}")
        return FrameLabel.NORMAL


def drop_dark_frames(frames: List[FrameSample]) -> Tuple[List[FrameSample], int]:
    """
    Label every frame and remove black / nearly black ones.

    White screens are kept; they are often blank-loading bugs.

    Returns:
        Tuple of (remaining frames, number of dark frames removed)
    """
    kept = []
    white = 0
    for frame in frames:
        frame.label = classify_frame(frame.path)
        if frame.label.is_dark:
            continue
        if frame.label == FrameLabel.WHITE_SCREEN:
            white += 1
        kept.append(frame)

    removed = len(frames) - len(kept)
    if removed:
        logger.info(f"Removed {removed} black/dark screens")
    if white:
        logger.info(f"{white} white/blank screens detected")

    return kept, removed

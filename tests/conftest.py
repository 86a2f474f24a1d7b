"""Pytest configuration and fixtures."""

from types import SimpleNamespace

import numpy as np
import pytest
from PIL import Image

from evidence_worker.config import WorkerConfig
from evidence_worker.models import FrameSample, RecordingJob


# Consecutive entries are far apart in every channel pair
PALETTE = [
    (200, 40, 40),
    (40, 200, 40),
    (40, 40, 200),
    (200, 200, 40),
    (200, 40, 200),
    (40, 200, 200),
]


def write_jpeg(path, color=(120, 120, 120), size=(90, 160), array=None):
    """Write a solid-color (or array) JPEG and return its path as str."""
    if array is None:
        img = Image.new("RGB", size, color)
    else:
        img = Image.fromarray(array.astype(np.uint8), "RGB")
    img.save(str(path), "JPEG", quality=90)
    return str(path)


@pytest.fixture
def make_frame(tmp_path):
    """Factory for FrameSample objects backed by real JPEG files."""
    counter = {"n": 0}

    def _make(timestamp, color=(120, 120, 120), array=None, index=None):
        n = counter["n"]
        counter["n"] += 1
        path = write_jpeg(tmp_path / f"frame_{n:03d}.jpg", color=color, array=array)
        return FrameSample(index=n if index is None else index, timestamp=float(timestamp), path=path)

    return _make


@pytest.fixture
def distinct_frames(make_frame):
    """Factory for a run of visually distinct frames, one second apart."""

    def _make(count, start=1.0, step=1.0):
        return [
            make_frame(start + i * step, color=PALETTE[i % len(PALETTE)])
            for i in range(count)
        ]

    return _make


@pytest.fixture
def noise_array():
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(160, 90, 3))


@pytest.fixture
def config(tmp_path):
    """Worker configuration pointing its workspaces at a temp dir."""
    cfg = WorkerConfig()
    cfg.OPENAI_API_KEY = "test-key"
    cfg.INFERENCE_BACKENDS = ["model-a", "model-b", "model-c"]
    cfg.WORK_DIR = str(tmp_path / "work")
    return cfg


@pytest.fixture
def job():
    return RecordingJob(
        id="42",
        video_locator="https://cdn.example.com/recordings/42.mp4",
        access_token="secret-token",
        device_stats='{"batteryStart": 90, "batteryEnd": 85, "batteryDrain": 5, "deviceModel": "Pixel 7"}',
        bug_description="Checkout spinner never finishes",
        test_instructions="Add an item to the cart and pay",
        app_name="ShopFast",
    )


def completion(text):
    """Shape of an OpenAI chat completion response."""
    message = SimpleNamespace(content=text)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])

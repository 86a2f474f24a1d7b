"""Tests for downloading recordings into the job workspace."""

import os
import threading
from unittest.mock import MagicMock

import pytest
import requests

from evidence_worker.errors import AcquisitionError, JobCancelled
from evidence_worker.pipeline import acquire
from evidence_worker.pipeline.acquire import acquire_video, is_url


class FakeResponse:
    def __init__(self, status_code=200, chunks=(b"video-bytes",)):
        self.status_code = status_code
        self._chunks = list(chunks)

    def iter_content(self, chunk_size=None):
        return iter(self._chunks)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def fake_get(monkeypatch):
    mock = MagicMock(return_value=FakeResponse())
    monkeypatch.setattr(acquire.requests, "get", mock)
    return mock


def test_is_url():
    assert is_url("https://cdn.example.com/a.mp4")
    assert is_url("HTTP://cdn.example.com/a.mp4")
    assert not is_url("recordings/bug-1/video.mp4")


def test_downloads_url_with_bearer_token(tmp_path, fake_get):
    path = acquire_video("https://cdn.example.com/a.mp4", str(tmp_path), access_token="tok")

    assert path == os.path.join(str(tmp_path), "video.mp4")
    with open(path, "rb") as f:
        assert f.read() == b"video-bytes"
    assert fake_get.call_args.kwargs["headers"] == {"Authorization": "Bearer tok"}
    assert fake_get.call_args.kwargs["stream"] is True


def test_no_auth_header_without_token(tmp_path, fake_get):
    acquire_video("https://cdn.example.com/a.mp4", str(tmp_path))
    assert fake_get.call_args.kwargs["headers"] == {}


def test_non_200_status(tmp_path, fake_get):
    fake_get.return_value = FakeResponse(status_code=403)

    with pytest.raises(AcquisitionError, match="HTTP 403") as excinfo:
        acquire_video("https://cdn.example.com/a.mp4", str(tmp_path))
    assert excinfo.value.status_code == 403


def test_transport_error_is_wrapped(tmp_path, fake_get):
    fake_get.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(AcquisitionError, match="connection refused"):
        acquire_video("https://cdn.example.com/a.mp4", str(tmp_path))


def test_empty_download_fails(tmp_path, fake_get):
    fake_get.return_value = FakeResponse(chunks=[])

    with pytest.raises(AcquisitionError, match="empty"):
        acquire_video("https://cdn.example.com/a.mp4", str(tmp_path))


def test_size_limit(tmp_path, fake_get):
    fake_get.return_value = FakeResponse(chunks=[b"x" * (600 * 1024)] * 2)

    with pytest.raises(AcquisitionError, match="1MB limit"):
        acquire_video("https://cdn.example.com/a.mp4", str(tmp_path), max_mb=1)


def test_cancelled_download(tmp_path, fake_get):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(JobCancelled):
        acquire_video("https://cdn.example.com/a.mp4", str(tmp_path), cancel_event=cancel)


def test_storage_key_uses_object_store(tmp_path):
    def download(key, dest):
        with open(dest, "wb") as f:
            f.write(b"from-bucket")

    store = MagicMock()
    store.download.side_effect = download

    path = acquire_video("recordings/bug-1.mp4", str(tmp_path), object_store=store)

    store.download.assert_called_once_with("recordings/bug-1.mp4", path)
    assert os.path.getsize(path) == len(b"from-bucket")


def test_storage_key_without_store(tmp_path):
    with pytest.raises(AcquisitionError):
        acquire_video("recordings/bug-1.mp4", str(tmp_path))


def test_missing_locator(tmp_path):
    with pytest.raises(AcquisitionError):
        acquire_video("", str(tmp_path))

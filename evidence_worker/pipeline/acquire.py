"""
Recording acquisition.

Fetches the submitted recording into the job workspace, either over HTTP(S)
or from the object store when the locator is a storage key.
"""

import os
import time
import logging
import threading
from typing import Optional

import requests

from ..errors import AcquisitionError, JobCancelled
from .util import DEFAULT_VIDEO_NAME, get_file_size_mb

logger = logging.getLogger("evidence_worker")

CHUNK_SIZE = 1024 * 1024
CONNECT_TIMEOUT_SEC = 10


def is_url(locator: str) -> bool:
    return locator.lower().startswith(("http://", "https://"))


def acquire_video(
    locator: str,
    workspace: str,
    access_token: Optional[str] = None,
    object_store=None,
    timeout: float = 300.0,
    max_mb: int = 500,
    cancel_event: Optional[threading.Event] = None
) -> str:
    """
    Download a recording into the workspace.

    Args:
        locator: http(s) URL or object-store key
        workspace: job workspace directory
        access_token: optional bearer credential for URL downloads
        object_store: ObjectStore used for storage keys
        timeout: overall deadline in seconds
        max_mb: refuse recordings larger than this
        cancel_event: aborts the download when set

    Returns:
        Path of the downloaded file
    """
    if not locator:
        raise AcquisitionError("Recording has no video locator")

    dest_path = os.path.join(workspace, DEFAULT_VIDEO_NAME)

    if is_url(locator):
        download_url(locator, dest_path, access_token, timeout, max_mb, cancel_event)
    else:
        if object_store is None:
            raise AcquisitionError(f"No object store configured to fetch key {locator}")
        try:
            object_store.download(locator, dest_path)
        except AcquisitionError:
            raise
        except Exception as e:
            raise AcquisitionError(f"Failed to fetch {locator} from object store: {str(e)}") from e

    if not os.path.exists(dest_path) or os.path.getsize(dest_path) == 0:
        raise AcquisitionError("Downloaded recording is empty")

    logger.info(f"ACQUIRE: Downloaded {get_file_size_mb(dest_path):.1f}MB to {dest_path}")
    return dest_path


def download_url(
    url: str,
    dest_path: str,
    access_token: Optional[str] = None,
    timeout: float = 300.0,
    max_mb: int = 500,
    cancel_event: Optional[threading.Event] = None
) -> None:
    """Stream a URL to disk, enforcing status, size and deadline"""
    headers = {}
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"

    deadline = time.monotonic() + timeout
    max_bytes = max_mb * 1024 * 1024
    written = 0

    try:
        with requests.get(url, headers=headers, stream=True, timeout=(CONNECT_TIMEOUT_SEC, timeout)) as resp:
            if resp.status_code != 200:
                raise AcquisitionError(
                    f"Video download failed: HTTP {resp.status_code}",
                    status_code=resp.status_code
                )

            with open(dest_path, "wb") as handle:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if cancel_event is not None and cancel_event.is_set():
                        raise JobCancelled("acquiring")
                    if time.monotonic() > deadline:
                        raise AcquisitionError(f"Video download exceeded {timeout:.0f}s deadline")
                    if not chunk:
                        continue
                    written += len(chunk)
                    if written > max_bytes:
                        raise AcquisitionError(f"Recording exceeds {max_mb}MB limit")
                    handle.write(chunk)

    except requests.RequestException as e:
        raise AcquisitionError(f"Video download failed: {str(e)}") from e

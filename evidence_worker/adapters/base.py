"""
Abstract base classes for job sources, result storage and object storage.

Defines the interface that all adapters must implement, enabling
easy swapping between different job sources (Postgres polling, webhook
push) and storage backends.
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Tuple

from ..models import AnalysisResult, FrameRecord, RecordingJob


class JobSourceAdapter(ABC):
    """Abstract base class for job source adapters"""

    def connect(self) -> None:
        """Open connections; no-op by default"""

    def close(self) -> None:
        """Release connections; no-op by default"""

    @abstractmethod
    def claim_job(self) -> Optional[RecordingJob]:
        """
        Atomically claim a pending recording job.

        Returns:
            RecordingJob with its bug-report context if available, None otherwise
        """
        pass

    @abstractmethod
    def complete_job(self, job_id: str) -> None:
        """
        Mark a job as completed.

        Args:
            job_id: ID of the job to complete
        """
        pass

    @abstractmethod
    def fail_job(self, job_id: str, error: str, retry: bool = False) -> None:
        """
        Mark a job as failed.

        Args:
            job_id: ID of the failed job
            error: Error message describing the failure
            retry: put the job back in the queue instead of failing it permanently
        """
        pass

    @abstractmethod
    def get_pending_jobs(self) -> List[RecordingJob]:
        """
        Get list of pending jobs (for monitoring/debugging).

        Returns:
            List of pending jobs
        """
        pass


class ResultStoreAdapter(ABC):
    """Abstract base class for writing analysis results back onto the bug report"""

    def connect(self) -> None:
        """Open connections; no-op by default"""

    def close(self) -> None:
        """Release connections; no-op by default"""

    @abstractmethod
    def save_analysis(self, job_id: str, result: AnalysisResult) -> None:
        """
        Store the public report, internal verdict and model on the bug report.

        Args:
            job_id: bug-report job ID
            result: successful analysis result
        """
        pass

    @abstractmethod
    def save_frame(self, job_id: str, record: FrameRecord) -> None:
        """
        Record one persisted frame under the job.

        Args:
            job_id: bug-report job ID
            record: uploaded frame with its storage locator
        """
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        """
        Get storage statistics for monitoring.

        Returns:
            Dictionary with statistics
        """
        pass


class ObjectStore(ABC):
    """Abstract base class for durable blob storage"""

    def connect(self) -> None:
        """Create clients; no-op by default"""

    def close(self) -> None:
        """Release clients; no-op by default"""

    @abstractmethod
    def upload_frame(self, job_id: str, sequence: int, data: bytes) -> Tuple[str, Optional[str]]:
        """
        Upload one frame image.

        Args:
            job_id: bug-report job ID
            sequence: 1-based frame number
            data: JPEG bytes

        Returns:
            Tuple of (storage key, public URL or None)
        """
        pass

    @abstractmethod
    def download(self, key: str, dest_path: str) -> None:
        """
        Download an object to a local file.

        Args:
            key: storage key of the object
            dest_path: local destination path
        """
        pass

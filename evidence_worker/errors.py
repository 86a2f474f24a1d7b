"""
Exception hierarchy for the recording analysis pipeline.

Every stage raises one of these; the job driver is the only place that
turns them into a failed AnalysisResult.
"""

from typing import Optional


class AnalysisError(Exception):
    """Base exception for all pipeline errors"""
    pass


class ConfigError(AnalysisError):
    """Raised when required configuration is missing or invalid"""
    pass


class AcquisitionError(AnalysisError):
    """Raised when the recording cannot be downloaded or fetched from storage"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProbeError(AnalysisError):
    """Raised when the video duration cannot be read"""
    pass


class ExtractionPartialFailure(AnalysisError):
    """Raised when a single timestamp could not be extracted (tolerated)"""

    def __init__(self, timestamp: float, reason: str):
        super().__init__(f"Frame at {timestamp:.1f}s failed: {reason}")
        self.timestamp = timestamp
        self.reason = reason


class ExtractionTotalFailure(AnalysisError):
    """Raised when no usable frame was produced for the whole recording"""
    pass


class InferenceBackendError(AnalysisError):
    """Raised when one inference backend fails (tolerated, next backend is tried)"""

    def __init__(self, backend: str, message: str):
        super().__init__(f"{backend}: {message}")
        self.backend = backend


class InferenceExhausted(AnalysisError):
    """Raised when every configured inference backend failed"""

    def __init__(self, last_error: str, attempted: Optional[list] = None):
        super().__init__(f"All inference backends failed. Last error: {last_error}")
        self.last_error = last_error
        self.attempted = attempted or []


class PersistenceError(AnalysisError):
    """Raised when the report or a frame record could not be written"""
    pass


class JobCancelled(AnalysisError):
    """Raised when a job is cancelled between stages"""

    def __init__(self, stage: str):
        super().__init__(f"Job cancelled during {stage}")
        self.stage = stage

"""
Domain models for the evidence worker.

Defines the core data structures used throughout the system,
providing type safety and clear interfaces between components.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List
from datetime import datetime


class FrameLabel(str, Enum):
    """Brightness classification of an extracted frame"""
    NORMAL = "normal"
    BLACK_SCREEN = "black_screen"
    WHITE_SCREEN = "white_screen"
    NEARLY_BLACK = "nearly_black"

    @property
    def is_dark(self) -> bool:
        return self in (FrameLabel.BLACK_SCREEN, FrameLabel.NEARLY_BLACK)


class GapSeverity(str, Enum):
    """Severity of the gap between two consecutive timeline frames"""
    NONE = "none"
    SLOW = "slow"
    VERY_SLOW = "very_slow"


class JobStage(str, Enum):
    """Stages a recording job moves through"""
    ACQUIRING = "acquiring"
    PROBING = "probing"
    SAMPLING = "sampling"
    CLASSIFYING_FILTERING = "classifying_filtering"
    CAPPING = "capping"
    PROMPTING = "prompting"
    INFERRING = "inferring"
    PARTITIONING = "partitioning"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RecordingJob:
    """One request to analyze a submitted bug-report recording"""
    id: str
    video_locator: str
    access_token: Optional[str] = None
    device_stats: Optional[str] = None
    bug_description: Optional[str] = None
    test_instructions: Optional[str] = None
    app_name: Optional[str] = None
    attempts: int = 0
    created_at: Optional[datetime] = None


@dataclass
class FrameSample:
    """A still extracted from the recording"""
    index: int
    timestamp: float
    path: str
    label: FrameLabel = FrameLabel.NORMAL
    frozen_duration: Optional[int] = None


@dataclass
class FilterStats:
    """Output of the duplicate & freeze filter"""
    unique: List[FrameSample]
    removed: int = 0
    freezes: int = 0


@dataclass
class TimelineEntry:
    """One frame of the timeline with the gap since the previous frame"""
    position: int
    frame: FrameSample
    gap: Optional[float] = None
    severity: GapSeverity = GapSeverity.NONE


@dataclass
class Timeline:
    """Ordered frames plus timing aggregates"""
    entries: List[TimelineEntry]
    duration: float
    average_gap: float = 0.0
    slow_count: int = 0
    very_slow_count: int = 0
    frozen_count: int = 0

    @property
    def unique_screens(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class FrameRecord:
    """A frame persisted to the object store and recorded under the job"""
    sequence: int
    timestamp: float
    frozen_duration: Optional[int]
    label: str
    storage_key: str
    url: Optional[str] = None


@dataclass(frozen=True)
class AnalysisResult:
    """Terminal output of a recording job"""
    success: bool
    report: str = ""
    internal_verdict: str = ""
    model: Optional[str] = None
    frames: List[FrameRecord] = field(default_factory=list)
    error: Optional[str] = None
    text_only: bool = False
    metrics: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: str, metrics: Optional[Dict[str, Any]] = None) -> 'AnalysisResult':
        return cls(success=False, error=error, metrics=metrics or {})

"""
Configuration management for the evidence worker.

Centralizes all configuration loading from environment variables
and provides type-safe access to configuration values. A WorkerConfig
instance is handed to every component that needs settings; nothing
reads the environment after startup.
"""

import os
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

from .errors import ConfigError


DEFAULT_BACKENDS = "gpt-4o,gpt-4o-mini,gpt-4.1-mini"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class WorkerConfig:
    """Configuration for the evidence worker"""

    # Job source settings
    JOB_SOURCE_TYPE: str = "postgres"  # postgres, webhook
    JOB_SOURCE_CONFIG: Dict[str, Any] = field(default_factory=dict)

    # Result storage settings
    STORAGE_TYPE: str = "postgres"
    STORAGE_CONFIG: Dict[str, Any] = field(default_factory=dict)

    # Object store for frame uploads and storage-key recordings
    OBJECT_STORE_CONFIG: Dict[str, Any] = field(default_factory=dict)

    # Inference settings
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None
    INFERENCE_BACKENDS: List[str] = field(default_factory=lambda: DEFAULT_BACKENDS.split(","))
    INFERENCE_TIMEOUT_SEC: float = 120.0
    INFERENCE_TEMPERATURE: float = 0.2

    # Frame sampling settings
    FRAME_SIZE: str = "360x640"
    MIN_FRAME_BYTES: int = 1000
    EXTRACT_MAX_CONCURRENT: int = 4

    # Dedup / capping settings
    SIMILARITY_THRESHOLD: float = 92.0
    FREEZE_MIN_STREAK: int = 3
    MAX_FRAMES_TO_SEND: int = 50
    MIN_FRAMES_TO_SEND: int = 3
    RAW_FALLBACK_FRAMES: int = 20

    # Acquisition settings
    DOWNLOAD_TIMEOUT_SEC: float = 300.0
    MAX_VIDEO_MB: int = 500

    # Worker loop settings
    WORK_DIR: Optional[str] = None
    MAX_CONCURRENT_JOBS: int = 2
    POLL_INTERVAL_MS: int = 1500
    MAX_ATTEMPTS: int = 3
    BACKOFF_MULTIPLIER: float = 1.5
    MAX_BACKOFF_MS: int = 12000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "/app/data/evidence_worker"

    # HTTP server
    ENABLE_HTTP_SERVER: bool = False
    HTTP_PORT: int = 8000

    @classmethod
    def from_env(cls) -> 'WorkerConfig':
        """Load configuration from environment variables"""
        config = cls()

        # Job source / storage configuration
        config.JOB_SOURCE_TYPE = os.getenv("JOB_SOURCE_TYPE", "postgres")
        config.JOB_SOURCE_CONFIG = cls._parse_job_source_config()
        config.STORAGE_TYPE = os.getenv("STORAGE_TYPE", "postgres")
        config.STORAGE_CONFIG = cls._parse_storage_config()
        config.OBJECT_STORE_CONFIG = cls._parse_object_store_config()

        # Inference
        config.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
        config.OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
        config.INFERENCE_BACKENDS = _env_list("INFERENCE_BACKENDS", DEFAULT_BACKENDS)
        config.INFERENCE_TIMEOUT_SEC = float(os.getenv("INFERENCE_TIMEOUT_SEC", "120"))
        config.INFERENCE_TEMPERATURE = float(os.getenv("INFERENCE_TEMPERATURE", "0.2"))

        # Frame sampling
        config.FRAME_SIZE = os.getenv("FRAME_SIZE", "360x640")
        config.MIN_FRAME_BYTES = int(os.getenv("MIN_FRAME_BYTES", "1000"))
        config.EXTRACT_MAX_CONCURRENT = int(os.getenv("EXTRACT_MAX_CONCURRENT", "4"))

        # Dedup / capping
        config.SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "92"))
        config.FREEZE_MIN_STREAK = int(os.getenv("FREEZE_MIN_STREAK", "3"))
        config.MAX_FRAMES_TO_SEND = int(os.getenv("MAX_FRAMES_TO_SEND", "50"))
        config.MIN_FRAMES_TO_SEND = int(os.getenv("MIN_FRAMES_TO_SEND", "3"))
        config.RAW_FALLBACK_FRAMES = int(os.getenv("RAW_FALLBACK_FRAMES", "20"))

        # Acquisition
        config.DOWNLOAD_TIMEOUT_SEC = float(os.getenv("DOWNLOAD_TIMEOUT_SEC", "300"))
        config.MAX_VIDEO_MB = int(os.getenv("MAX_VIDEO_MB", "500"))

        # Worker loop
        config.WORK_DIR = os.getenv("WORK_DIR") or None
        config.MAX_CONCURRENT_JOBS = int(os.getenv("MAX_CONCURRENT_JOBS", "2"))
        config.POLL_INTERVAL_MS = int(os.getenv("WORKER_POLL_MS", "1500"))
        config.MAX_ATTEMPTS = int(os.getenv("WORKER_MAX_ATTEMPTS", "3"))
        config.BACKOFF_MULTIPLIER = float(os.getenv("WORKER_BACKOFF_MULTIPLIER", "1.5"))
        config.MAX_BACKOFF_MS = int(os.getenv("WORKER_MAX_BACKOFF_MS", "12000"))

        # Logging
        config.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        config.LOG_DIR = os.getenv("LOG_DIR", "/app/data/evidence_worker")

        # HTTP server
        config.ENABLE_HTTP_SERVER = _env_bool("WORKER_DEV_HTTP", "false")
        config.HTTP_PORT = int(os.getenv("WORKER_HTTP_PORT", "8000"))

        return config

    @classmethod
    def _parse_job_source_config(cls) -> Dict[str, Any]:
        """Parse job source specific configuration"""
        job_source_type = os.getenv("JOB_SOURCE_TYPE", "postgres")

        if job_source_type == "postgres":
            return {
                "database_url": os.getenv("DATABASE_URL"),
                "connection_pool_size": int(os.getenv("POSTGRES_POOL_SIZE", "5")),
                "connection_timeout": int(os.getenv("POSTGRES_TIMEOUT", "10"))
            }
        elif job_source_type == "webhook":
            return {
                "database_url": os.getenv("DATABASE_URL"),
                "secret": os.getenv("WEBHOOK_SECRET"),
                "port": int(os.getenv("WEBHOOK_PORT", "8080"))
            }
        else:
            return {}

    @classmethod
    def _parse_storage_config(cls) -> Dict[str, Any]:
        """Parse result storage configuration"""
        return {
            "database_url": os.getenv("DATABASE_URL"),
            "connection_pool_size": int(os.getenv("POSTGRES_POOL_SIZE", "5")),
            "connection_timeout": int(os.getenv("POSTGRES_TIMEOUT", "10"))
        }

    @classmethod
    def _parse_object_store_config(cls) -> Dict[str, Any]:
        """Parse S3-compatible object store configuration"""
        return {
            "bucket": os.getenv("S3_BUCKET"),
            "recordings_bucket": os.getenv("S3_RECORDINGS_BUCKET") or os.getenv("S3_BUCKET"),
            "endpoint_url": os.getenv("S3_ENDPOINT_URL") or None,
            "region": os.getenv("S3_REGION", "us-east-1"),
            "prefix": os.getenv("S3_PREFIX", "ai-frames/"),
            "public_base_url": os.getenv("S3_PUBLIC_BASE_URL") or None
        }

    def validate(self) -> None:
        """Validate configuration and raise ConfigError for missing required values"""
        required_vars = []

        if self.JOB_SOURCE_TYPE not in ("postgres", "webhook"):
            raise ConfigError(f"Unsupported job source type: {self.JOB_SOURCE_TYPE}")

        if not self.JOB_SOURCE_CONFIG.get("database_url") or not self.STORAGE_CONFIG.get("database_url"):
            required_vars.append("DATABASE_URL")

        if not self.OBJECT_STORE_CONFIG.get("bucket"):
            required_vars.append("S3_BUCKET")

        if not self.OPENAI_API_KEY:
            required_vars.append("OPENAI_API_KEY")

        if required_vars:
            raise ConfigError(f"Missing required environment variables: {', '.join(required_vars)}")

        if not self.INFERENCE_BACKENDS:
            raise ConfigError("INFERENCE_BACKENDS must name at least one model")

        if not 0 < self.SIMILARITY_THRESHOLD <= 100:
            raise ConfigError(f"SIMILARITY_THRESHOLD must be in (0, 100], got {self.SIMILARITY_THRESHOLD}")

        if self.MAX_FRAMES_TO_SEND < 1:
            raise ConfigError("MAX_FRAMES_TO_SEND must be positive")

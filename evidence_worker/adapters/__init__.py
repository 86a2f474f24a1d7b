"""
Adapter pattern implementations for job sources and storage backends.

This module provides abstract base classes and concrete implementations
for job sources (Postgres queue, webhooks), result storage (Postgres)
and frame/recording object storage (S3-compatible).
"""

from .base import JobSourceAdapter, ResultStoreAdapter, ObjectStore
from .postgres_adapter import PostgresJobSourceAdapter, PostgresResultStore
from .s3_adapter import S3ObjectStore
from .webhook_adapter import WebhookJobSourceAdapter

__all__ = [
    'JobSourceAdapter',
    'ResultStoreAdapter',
    'ObjectStore',
    'PostgresJobSourceAdapter',
    'PostgresResultStore',
    'S3ObjectStore',
    'WebhookJobSourceAdapter'
]

"""
S3-compatible object store adapter.

Uploads persisted frames and fetches recordings referenced by storage key.
Works against AWS S3 or any S3-compatible endpoint (e.g. Backblaze B2)
via endpoint_url.
"""

import boto3
import logging
from typing import Optional, Tuple
from botocore.exceptions import BotoCoreError, ClientError

from .base import ObjectStore
from ..errors import AcquisitionError, PersistenceError

logger = logging.getLogger("evidence_worker")


class S3ObjectStore(ObjectStore):
    """AWS S3 implementation of the object store"""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        prefix: str = "ai-frames/",
        endpoint_url: Optional[str] = None,
        recordings_bucket: Optional[str] = None,
        public_base_url: Optional[str] = None
    ):
        self.bucket = bucket
        self.recordings_bucket = recordings_bucket or bucket
        self.region = region
        self.prefix = prefix
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.s3 = None

    def connect(self):
        """Initialize S3 client"""
        try:
            self.s3 = boto3.client('s3', region_name=self.region, endpoint_url=self.endpoint_url)
            logger.info(f"S3 object store connected to bucket: {self.bucket}")
        except Exception as e:
            logger.error(f"Failed to connect to S3: {e}")
            raise

    def frame_key(self, job_id: str, sequence: int) -> str:
        return f"{self.prefix}bug-{job_id}/frame-{sequence:03d}.jpg"

    def upload_frame(self, job_id: str, sequence: int, data: bytes) -> Tuple[str, Optional[str]]:
        """Upload a frame JPEG and return its key and public URL"""
        key = self.frame_key(job_id, sequence)
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType='image/jpeg'
            )
        except (ClientError, BotoCoreError) as e:
            raise PersistenceError(f"Error uploading frame {sequence} for bug {job_id}: {e}") from e

        url = f"{self.public_base_url}/{key}" if self.public_base_url else None
        logger.debug(f"Uploaded frame {key} ({len(data) // 1024}KB)")
        return key, url

    def download(self, key: str, dest_path: str) -> None:
        """Download a recording by key"""
        try:
            self.s3.download_file(self.recordings_bucket, key, dest_path)
            logger.info(f"Fetched {key} from bucket {self.recordings_bucket}")
        except ClientError as e:
            status = e.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
            raise AcquisitionError(f"Video download failed: HTTP {status} for key {key}", status_code=status) from e
        except BotoCoreError as e:
            raise AcquisitionError(f"Video download failed for key {key}: {e}") from e

    def close(self):
        """Close S3 connection"""
        self.s3 = None
        logger.info("S3 object store connection closed")

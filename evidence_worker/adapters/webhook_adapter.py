"""
Webhook adapter for push-based job notifications.

The API layer calls POST /webhook/analyze when a bug report with a
recording is submitted or an admin re-triggers analysis.
"""

import hmac
import json
import logging
from typing import Optional, Any, List, Callable
from fastapi import FastAPI, HTTPException, Header
from pydantic import BaseModel, Field
import uvicorn
from threading import Thread

from .base import JobSourceAdapter
from ..models import RecordingJob

logger = logging.getLogger("evidence_worker")


class AnalyzeRequest(BaseModel):
    """Webhook payload; only bug_id is required when a job loader is configured"""
    bug_id: str = Field(description="Bug report to analyze")
    video_url: Optional[str] = Field(default=None, description="Recording URL or storage key")
    access_token: Optional[str] = None
    device_stats: Optional[Any] = None
    bug_description: Optional[str] = None
    test_instructions: Optional[str] = None
    app_name: Optional[str] = None


class WebhookJobSourceAdapter(JobSourceAdapter):
    """Webhook implementation of job source adapter for push-based notifications"""

    def __init__(
        self,
        secret: Optional[str] = None,
        port: int = 8080,
        job_loader: Optional[Callable[[str], Optional[RecordingJob]]] = None
    ):
        self.secret = secret
        self.port = port
        self.job_loader = job_loader
        self.app = None
        self.server_thread = None
        self.running = False
        self.job_callback: Optional[Callable[[RecordingJob], None]] = None

    def connect(self):
        """Initialize webhook app"""
        self.app = FastAPI(title="Evidence Worker Webhook")
        self._setup_routes()
        logger.info(f"Webhook job source initialized on port {self.port}")

    def build_job(self, request: AnalyzeRequest) -> RecordingJob:
        """Turn a webhook payload into a RecordingJob, loading missing context by bug id"""
        job = self.job_loader(request.bug_id) if self.job_loader else None

        if job is None:
            if not request.video_url:
                raise ValueError(f"No recording known for bug {request.bug_id}")
            job = RecordingJob(id=request.bug_id, video_locator=request.video_url)

        if request.video_url:
            job.video_locator = request.video_url
        if request.access_token:
            job.access_token = request.access_token
        if request.device_stats is not None:
            job.device_stats = request.device_stats if isinstance(request.device_stats, str) else json.dumps(request.device_stats)
        for name in ("bug_description", "test_instructions", "app_name"):
            value = getattr(request, name)
            if value is not None:
                setattr(job, name, value)

        return job

    def _setup_routes(self):
        """Setup webhook routes"""

        @self.app.post("/webhook/analyze")
        async def receive_job(request: AnalyzeRequest, x_webhook_secret: Optional[str] = Header(default=None)):
            """Receive an analysis request"""
            if self.secret and not hmac.compare_digest(x_webhook_secret or "", self.secret):
                raise HTTPException(status_code=401, detail="Invalid webhook secret")

            try:
                job = self.build_job(request)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

            logger.info(f"Received webhook job for bug {job.id}")

            if self.job_callback:
                self.job_callback(job)

            return {"status": "received", "job_id": job.id}

        @self.app.get("/webhook/health")
        async def health_check():
            """Health check endpoint"""
            return {"status": "healthy", "adapter": "webhook"}

    def start_server(self, job_callback: Callable[[RecordingJob], None]):
        """Start the webhook server"""
        if self.running:
            return

        self.job_callback = job_callback

        def run_server():
            try:
                uvicorn.run(
                    self.app,
                    host="0.0.0.0",
                    port=self.port,
                    log_level="warning"
                )
            except Exception as e:
                logger.error(f"Webhook server error: {e}")

        self.server_thread = Thread(target=run_server, daemon=True)
        self.server_thread.start()
        self.running = True

        logger.info(f"Webhook server started on port {self.port}")

    def claim_job(self) -> Optional[RecordingJob]:
        """Not applicable for push-based webhook adapter"""
        return None

    def complete_job(self, job_id: str) -> None:
        logger.info(f"Job for bug {job_id} completed")

    def fail_job(self, job_id: str, error: str, retry: bool = False) -> None:
        logger.error(f"Job for bug {job_id} failed: {error}")

    def get_pending_jobs(self) -> List[RecordingJob]:
        """Get pending jobs (not supported for webhook)"""
        return []

    def close(self):
        """Stop webhook server"""
        self.running = False
        logger.info("Webhook job source closed")

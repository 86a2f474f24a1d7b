import logging
from typing import Optional
from fastapi import FastAPI, HTTPException
import uvicorn
from threading import Thread

logger = logging.getLogger("evidence_worker")


class HealthServer:
    def __init__(self, service, port: int = 8000):
        self.service = service
        self.port = port
        self.app = FastAPI(title="Evidence Worker Health API")
        self.setup_routes()
        self.server_thread = None
        self.running = False

    def setup_routes(self):
        """Setup API routes"""

        @self.app.get("/healthz")
        async def health_check():
            """Health check endpoint"""
            try:
                # Round-trip to the result database
                self.service.result_store.get_stats()
                return {"ok": True, "status": "healthy", "running": self.service.running}
            except Exception as e:
                logger.error(f"Health check failed: {str(e)}")
                raise HTTPException(status_code=503, detail=f"Database connection failed: {str(e)}")

        @self.app.get("/jobs/peek")
        async def peek_jobs():
            """Peek at pending jobs (dev only)"""
            try:
                jobs = self.service.job_source.get_pending_jobs()
                return {
                    "pending_jobs": len(jobs),
                    "jobs": [
                        {
                            "bug_id": job.id,
                            "attempts": job.attempts,
                            "created_at": job.created_at.isoformat() if job.created_at else None,
                            "video_locator": job.video_locator
                        }
                        for job in jobs
                    ]
                }
            except Exception as e:
                logger.error(f"Error peeking jobs: {str(e)}")
                raise HTTPException(status_code=500, detail=f"Error fetching jobs: {str(e)}")

        @self.app.get("/stats")
        async def get_stats():
            """Get worker and storage statistics"""
            try:
                stats = self.service.get_stats()
                stats["storage"] = self.service.result_store.get_stats()
                return stats
            except Exception as e:
                logger.error(f"Error getting stats: {str(e)}")
                raise HTTPException(status_code=500, detail=f"Error fetching stats: {str(e)}")

        @self.app.post("/jobs/{job_id}/cancel")
        async def cancel_job(job_id: str):
            """Stop a running job at its next stage"""
            orchestrator = self.service.orchestrator
            if orchestrator is None or not orchestrator.cancel(job_id):
                raise HTTPException(status_code=404, detail=f"Job {job_id} is not running")
            return {"cancelled": job_id}

    def start(self):
        """Start the HTTP server in a background thread"""
        if self.running:
            return

        def run_server():
            try:
                uvicorn.run(
                    self.app,
                    host="0.0.0.0",
                    port=self.port,
                    log_level="warning",  # Reduce uvicorn logging
                    access_log=False
                )
            except Exception as e:
                logger.error(f"HTTP server error: {str(e)}")

        self.server_thread = Thread(target=run_server, daemon=True)
        self.server_thread.start()
        self.running = True

        logger.info(f"Health server started on port {self.port}")

    def stop(self):
        """Stop the HTTP server"""
        self.running = False
        logger.info("Health server stopped")


def start_health_server(service) -> Optional[HealthServer]:
    """Start the health server if enabled"""
    if service.config.ENABLE_HTTP_SERVER:
        server = HealthServer(service, service.config.HTTP_PORT)
        server.start()
        return server
    return None

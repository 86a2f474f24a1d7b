"""
Main worker service.

Wires configuration, adapters and the pipeline orchestrator together and
runs either a polling loop over the Postgres job queue or a webhook server
for push-triggered analysis. Jobs run on a bounded thread pool.
"""

import signal
import sys
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Dict, Any, Set

from .config import WorkerConfig
from .models import RecordingJob
from .adapters.base import JobSourceAdapter, ObjectStore, ResultStoreAdapter
from .adapters.postgres_adapter import PostgresJobSourceAdapter, PostgresResultStore
from .adapters.s3_adapter import S3ObjectStore
from .adapters.webhook_adapter import WebhookJobSourceAdapter
from .orchestrator import PipelineOrchestrator
from .logging_setup import setup_logging, log_exception
from .http_server import start_health_server

logger = logging.getLogger("evidence_worker")


class WorkerService:
    """Main worker service with adapter-based architecture"""

    def __init__(self, config: Optional[WorkerConfig] = None):
        self.config = config or WorkerConfig.from_env()
        self.job_source: Optional[JobSourceAdapter] = None
        self.context_source: Optional[PostgresJobSourceAdapter] = None
        self.result_store: Optional[ResultStoreAdapter] = None
        self.object_store: Optional[ObjectStore] = None
        self.orchestrator: Optional[PipelineOrchestrator] = None
        self.executor: Optional[ThreadPoolExecutor] = None
        self.health_server = None
        self.running = False
        self.backoff_interval = self.config.POLL_INTERVAL_MS
        self.max_backoff = self.config.MAX_BACKOFF_MS
        self._in_flight: Set[Future] = set()
        self._in_flight_lock = threading.Lock()
        self._stopped = threading.Event()

    def initialize(self):
        """Initialize worker with adapters based on configuration"""
        try:
            # Setup logging
            setup_logging(self.config.LOG_LEVEL, self.config.LOG_DIR)

            # Validate configuration
            self.config.validate()

            # Initialize adapters
            self._initialize_adapters()

            # Initialize orchestrator
            self.orchestrator = PipelineOrchestrator(
                self.config, self.job_source, self.result_store, self.object_store
            )
            self.executor = ThreadPoolExecutor(
                max_workers=self.config.MAX_CONCURRENT_JOBS,
                thread_name_prefix="analysis"
            )

            # Start health server if enabled
            self.health_server = start_health_server(self)

            logger.info(f"Worker service initialized ({self.config.MAX_CONCURRENT_JOBS} concurrent jobs)")

        except Exception as e:
            log_exception(logger, f"Failed to initialize worker service: {e}")
            raise

    def _initialize_adapters(self):
        """Initialize job source, result store and object store"""

        # Initialize job source adapter
        self.job_source = self._create_job_source_adapter()
        self.job_source.connect()

        # Initialize result storage
        self.result_store = self._create_result_store()
        self.result_store.connect()

        # Initialize object store
        self.object_store = self._create_object_store()
        self.object_store.connect()

        logger.info(f"Initialized adapters: {self.config.JOB_SOURCE_TYPE} job source, {self.config.STORAGE_TYPE} storage")

    def _create_job_source_adapter(self) -> JobSourceAdapter:
        """Create job source adapter based on configuration"""
        config = self.config.JOB_SOURCE_CONFIG

        if self.config.JOB_SOURCE_TYPE == "postgres":
            return PostgresJobSourceAdapter(
                database_url=config["database_url"],
                pool_size=config.get("connection_pool_size", 5),
                timeout=config.get("connection_timeout", 10)
            )

        elif self.config.JOB_SOURCE_TYPE == "webhook":
            # Webhook payloads carry the bug id; context comes from the database
            self.context_source = PostgresJobSourceAdapter(database_url=config["database_url"], pool_size=2)
            self.context_source.connect()
            return WebhookJobSourceAdapter(
                secret=config.get("secret"),
                port=config.get("port", 8080),
                job_loader=self.context_source.fetch_job
            )

        else:
            raise ValueError(f"Unsupported job source type: {self.config.JOB_SOURCE_TYPE}")

    def _create_result_store(self) -> ResultStoreAdapter:
        """Create result store based on configuration"""
        if self.config.STORAGE_TYPE != "postgres":
            raise ValueError(f"Unsupported storage type: {self.config.STORAGE_TYPE}")

        config = self.config.STORAGE_CONFIG
        return PostgresResultStore(
            database_url=config["database_url"],
            pool_size=config.get("connection_pool_size", 5),
            timeout=config.get("connection_timeout", 10)
        )

    def _create_object_store(self) -> ObjectStore:
        config = self.config.OBJECT_STORE_CONFIG
        return S3ObjectStore(
            bucket=config["bucket"],
            region=config.get("region", "us-east-1"),
            prefix=config.get("prefix", "ai-frames/"),
            endpoint_url=config.get("endpoint_url"),
            recordings_bucket=config.get("recordings_bucket"),
            public_base_url=config.get("public_base_url")
        )

    def start(self):
        """Start the worker service"""
        if self.running:
            logger.warning("Worker service is already running")
            return

        self.running = True
        self._stopped.clear()
        logger.info("Worker service started")

        if self.config.JOB_SOURCE_TYPE == "webhook":
            # Start webhook server for push-based processing
            self._start_webhook_server()
            self._stopped.wait()
        else:
            # Start polling loop for pull-based processing
            self._start_polling_loop()

    def _start_polling_loop(self):
        """Start the polling loop for pull-based job sources"""
        logger.info("Worker started, polling for jobs...")

        while self.running:
            try:
                claimed = self.run_once()

                if not claimed:
                    # No job or no free slot, use exponential backoff
                    self._stopped.wait(self.backoff_interval / 1000.0)
                    self.backoff_interval = min(
                        self.backoff_interval * self.config.BACKOFF_MULTIPLIER,
                        self.max_backoff
                    )
                else:
                    self.backoff_interval = self.config.POLL_INTERVAL_MS

            except KeyboardInterrupt:
                logger.info("Received interrupt signal, shutting down...")
                break
            except Exception as e:
                log_exception(logger, f"Unexpected error in worker loop: {str(e)}")
                self._stopped.wait(self.backoff_interval / 1000.0)
                self.backoff_interval = min(
                    self.backoff_interval * self.config.BACKOFF_MULTIPLIER,
                    self.max_backoff
                )

        logger.info("Worker polling loop stopped")

    def _start_webhook_server(self):
        """Start webhook server for push-based job processing"""
        if not isinstance(self.job_source, WebhookJobSourceAdapter):
            raise ValueError("Webhook adapter not configured")

        self.job_source.start_server(self.submit)

    def has_capacity(self) -> bool:
        with self._in_flight_lock:
            return len(self._in_flight) < self.config.MAX_CONCURRENT_JOBS

    def submit(self, job: RecordingJob) -> Future:
        """Queue a job on the worker pool"""
        future = self.executor.submit(self._run_job, job)
        with self._in_flight_lock:
            self._in_flight.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(future)

    def _run_job(self, job: RecordingJob) -> None:
        try:
            result = self.orchestrator.execute_pipeline(job)
            if result.success:
                logger.info(f"Job {job.id} completed successfully")
            else:
                logger.error(f"Job {job.id} failed: {result.error}")
        except Exception as e:
            log_exception(logger, f"Error processing job {job.id}: {e}")

    def run_once(self) -> bool:
        """
        Run one iteration of the worker loop.

        Returns:
            True if a job was claimed and submitted, False otherwise
        """
        if not self.has_capacity():
            return False

        try:
            job = self.job_source.claim_job()
            if not job:
                return False

            self.submit(job)
            return True

        except Exception as e:
            log_exception(logger, f"Error in worker loop: {str(e)}")
            return False

    def request_stop(self):
        """Make start() return; safe to call from a signal handler"""
        self.running = False
        self._stopped.set()

    def stop(self):
        """Stop the worker service"""
        if not self.running and self.executor is None:
            return

        self.running = False
        self._stopped.set()

        # Let running jobs finish and clean their workspaces
        if self.executor:
            self.executor.shutdown(wait=True)
            self.executor = None

        # Stop health server
        if self.health_server:
            self.health_server.stop()

        # Close adapters
        for adapter in (self.job_source, self.context_source, self.result_store, self.object_store):
            if adapter:
                adapter.close()

        logger.info("Worker service stopped")

    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics"""
        stats = {
            'running': self.running,
            'config': {
                'job_source_type': self.config.JOB_SOURCE_TYPE,
                'storage_type': self.config.STORAGE_TYPE,
                'inference_backends': self.config.INFERENCE_BACKENDS,
                'max_frames_to_send': self.config.MAX_FRAMES_TO_SEND,
                'max_concurrent_jobs': self.config.MAX_CONCURRENT_JOBS,
                'poll_interval_ms': self.config.POLL_INTERVAL_MS
            }
        }

        if self.orchestrator:
            stats['orchestrator'] = self.orchestrator.get_stats()

        return stats

    def reset_stats(self):
        """Reset worker statistics"""
        if self.orchestrator:
            self.orchestrator.reset_stats()
        logger.info("Worker statistics reset")


def main():
    """Main entry point"""
    worker = WorkerService()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        worker.request_stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        worker.initialize()
        worker.start()
    except Exception as e:
        log_exception(logger, f"Worker failed to start: {str(e)}")
        sys.exit(1)
    finally:
        worker.stop()


if __name__ == "__main__":
    main()

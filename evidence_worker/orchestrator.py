"""
Pipeline orchestration and execution management.

Runs jobs through RecordingAnalyzer, writes job status back to the job
source, decides on retries and keeps running statistics. One orchestrator
is shared by all worker threads.
"""

import time
import logging
import threading
from typing import Optional, Dict, Any
from datetime import datetime

from .models import AnalysisResult, RecordingJob
from .adapters.base import JobSourceAdapter, ObjectStore, ResultStoreAdapter
from .processor import RecordingAnalyzer
from .config import WorkerConfig
from .logging_setup import log_exception

logger = logging.getLogger("evidence_worker")


class PipelineOrchestrator:
    """Manages pipeline execution flow and coordination"""

    def __init__(
        self,
        config: WorkerConfig,
        job_source: JobSourceAdapter,
        result_store: Optional[ResultStoreAdapter] = None,
        object_store: Optional[ObjectStore] = None,
        analyzer: Optional[RecordingAnalyzer] = None
    ):
        self.config = config
        self.job_source = job_source
        self.analyzer = analyzer or RecordingAnalyzer(config, result_store, object_store)
        self._lock = threading.Lock()
        self._active: Dict[str, threading.Event] = {}
        self.stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, Any]:
        return {
            'jobs_succeeded': 0,
            'jobs_failed': 0,
            'text_only_jobs': 0,
            'total_processing_time': 0.0,
            'models': {},
            'start_time': datetime.now()
        }

    def execute_pipeline(self, job: RecordingJob) -> AnalysisResult:
        """
        Analyze one job and report its outcome to the job source.

        Args:
            job: RecordingJob to analyze

        Returns:
            AnalysisResult from the analyzer
        """
        start_time = time.time()
        cancel_event = threading.Event()
        with self._lock:
            already_running = job.id in self._active
            if not already_running:
                self._active[job.id] = cancel_event

        if already_running:
            # the running execution owns the job status
            logger.warning(f"Job {job.id} is already running, ignoring duplicate")
            return AnalysisResult.failure(f"Job {job.id} is already running")

        try:
            logger.info(f"Executing pipeline for job {job.id} (attempt {job.attempts + 1})")
            result = self.analyzer.process(job, cancel_event=cancel_event)

            if result.success:
                self.job_source.complete_job(job.id)
                logger.info(f"Pipeline completed successfully for job {job.id} using {result.model}")
            else:
                self._handle_failure(job, result.error)

            self._record(result, time.time() - start_time)
            return result

        except Exception as e:
            error_msg = f"Unexpected error in pipeline execution: {str(e)}"
            log_exception(logger, error_msg)

            self._handle_failure(job, error_msg)
            result = AnalysisResult.failure(error_msg, {'processing_time_sec': time.time() - start_time})
            self._record(result, time.time() - start_time)
            return result

        finally:
            with self._lock:
                self._active.pop(job.id, None)

    def cancel(self, job_id: str) -> bool:
        """Ask a running job to stop at its next stage boundary"""
        with self._lock:
            event = self._active.get(job_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    def active_jobs(self) -> list:
        with self._lock:
            return list(self._active)

    def _handle_failure(self, job: RecordingJob, error: Optional[str]) -> None:
        """
        Mark a failed job, putting it back in the queue while attempts remain.

        Args:
            job: Failed job
            error: Error message
        """
        attempt = job.attempts + 1
        try:
            if attempt < self.config.MAX_ATTEMPTS:
                logger.warning(f"Job {job.id} failed (attempt {attempt}/{self.config.MAX_ATTEMPTS}): {error}")
                self.job_source.fail_job(job.id, f"Attempt {attempt} failed: {error}", retry=True)
            else:
                logger.error(f"Job {job.id} failed permanently after {attempt} attempts: {error}")
                self.job_source.fail_job(job.id, f"Permanent failure after {attempt} attempts: {error}")

        except Exception as e:
            log_exception(logger, f"Error handling job failure for {job.id}: {e}")

    def _record(self, result: AnalysisResult, processing_time: float) -> None:
        with self._lock:
            self.stats['total_processing_time'] += processing_time
            if result.success:
                self.stats['jobs_succeeded'] += 1
                if result.text_only:
                    self.stats['text_only_jobs'] += 1
                models = self.stats['models']
                models[result.model] = models.get(result.model, 0) + 1
            else:
                self.stats['jobs_failed'] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics"""
        with self._lock:
            stats = dict(self.stats)
            stats['models'] = dict(self.stats['models'])
            active = len(self._active)

        processed = stats['jobs_succeeded'] + stats['jobs_failed']
        uptime = (datetime.now() - stats['start_time']).total_seconds()

        return {
            'jobs_processed': processed,
            'jobs_succeeded': stats['jobs_succeeded'],
            'jobs_failed': stats['jobs_failed'],
            'text_only_jobs': stats['text_only_jobs'],
            'active_jobs': active,
            'models': stats['models'],
            'total_processing_time': stats['total_processing_time'],
            'average_processing_time': stats['total_processing_time'] / processed if processed else 0,
            'success_rate': stats['jobs_succeeded'] / processed if processed else 0,
            'uptime_seconds': uptime
        }

    def reset_stats(self) -> None:
        """Reset orchestrator statistics"""
        with self._lock:
            self.stats = self._empty_stats()
        logger.info("Orchestrator statistics reset")

"""
Recording analysis pipeline.

Runs one bug-report recording through acquisition, sampling, filtering,
prompting, inference and persistence inside a scoped workspace, and always
hands back a terminal AnalysisResult.
"""

import time
import logging
import threading
from typing import Dict, Any, List, Optional

from .models import AnalysisResult, FrameRecord, FrameSample, JobStage, RecordingJob
from .adapters.base import ObjectStore, ResultStoreAdapter
from .config import WorkerConfig
from .errors import AnalysisError, ExtractionTotalFailure, JobCancelled, PersistenceError
from .pipeline.acquire import acquire_video
from .pipeline.probe import probe_duration
from .pipeline.frames import sample_frames, validate_frame_file
from .pipeline.classify import drop_dark_frames
from .pipeline.dedupe import filter_duplicates, cap_frames
from .pipeline.timeline import build_timeline
from .pipeline.prompts import ALL_FRAMES_DARK, NO_FRAMES_EXTRACTED, build_visual_prompt, build_text_only_prompt
from .pipeline.inference import InferenceOrchestrator
from .pipeline.report import partition_report, parse_verdict
from .pipeline.util import job_workspace
from .logging_setup import log_exception

logger = logging.getLogger("evidence_worker")


class RecordingAnalyzer:
    """Handles recording analysis pipeline execution"""

    def __init__(
        self,
        config: WorkerConfig,
        result_store: Optional[ResultStoreAdapter] = None,
        object_store: Optional[ObjectStore] = None,
        inference: Optional[InferenceOrchestrator] = None
    ):
        self.config = config
        self.result_store = result_store
        self.object_store = object_store
        self.inference = inference or InferenceOrchestrator.from_config(config)

    def process(self, job: RecordingJob, cancel_event: Optional[threading.Event] = None) -> AnalysisResult:
        """
        Analyze a single recording through the complete pipeline.

        Args:
            job: RecordingJob with the video locator and bug-report context
            cancel_event: when set, the job stops at the next stage boundary

        Returns:
            AnalysisResult; errors never escape this method
        """
        start_time = time.time()
        metrics: Dict[str, Any] = {}
        stage = JobStage.ACQUIRING

        def enter(next_stage: JobStage) -> None:
            nonlocal stage
            stage = next_stage
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelled(stage.value)
            logger.debug(f"Job {job.id} -> {stage.value}")

        try:
            with job_workspace(job.id, self.config.WORK_DIR) as workspace:
                logger.info(f"Processing job {job.id} for recording {job.video_locator}")

                # Step 1: Fetch the recording
                enter(JobStage.ACQUIRING)
                video_path = acquire_video(
                    job.video_locator,
                    workspace,
                    access_token=job.access_token,
                    object_store=self.object_store,
                    timeout=self.config.DOWNLOAD_TIMEOUT_SEC,
                    max_mb=self.config.MAX_VIDEO_MB,
                    cancel_event=cancel_event
                )

                # Step 2: Read duration
                enter(JobStage.PROBING)
                duration = probe_duration(video_path)
                metrics['duration_sec'] = duration
                logger.info(f"PROBE: Recording for job {job.id} is {duration:.1f}s")

                # Step 3: Extract stills
                enter(JobStage.SAMPLING)
                try:
                    raw_frames = sample_frames(
                        video_path,
                        duration,
                        workspace,
                        size=self.config.FRAME_SIZE,
                        min_bytes=self.config.MIN_FRAME_BYTES,
                        max_concurrent=self.config.EXTRACT_MAX_CONCURRENT
                    )
                except ExtractionTotalFailure as e:
                    logger.warning(f"FRAMES: {e}; falling back to text-only analysis for job {job.id}")
                    raw_frames = []
                metrics['frames_extracted'] = len(raw_frames)

                selected: List[FrameSample] = []
                if raw_frames:
                    # Step 4: Drop dark frames, collapse duplicates
                    enter(JobStage.CLASSIFYING_FILTERING)
                    visible, dark_removed = drop_dark_frames(raw_frames)
                    stats = filter_duplicates(
                        visible,
                        threshold=self.config.SIMILARITY_THRESHOLD,
                        min_streak=self.config.FREEZE_MIN_STREAK
                    )
                    metrics.update({
                        'dark_removed': dark_removed,
                        'duplicates_removed': stats.removed,
                        'freeze_events': stats.freezes,
                        'unique_frames': len(stats.unique)
                    })

                    # Step 5: Cap inference volume
                    enter(JobStage.CAPPING)
                    selected = cap_frames(
                        stats.unique,
                        raw_frames,
                        max_frames=self.config.MAX_FRAMES_TO_SEND,
                        min_frames=self.config.MIN_FRAMES_TO_SEND,
                        raw_fallback=self.config.RAW_FALLBACK_FRAMES
                    )

                # Step 6: Build the prompt
                enter(JobStage.PROMPTING)
                text_only = not selected
                if text_only:
                    prompt = build_text_only_prompt(
                        duration,
                        bug_description=job.bug_description,
                        device_stats=job.device_stats,
                        test_instructions=job.test_instructions,
                        app_name=job.app_name,
                        reason=ALL_FRAMES_DARK if raw_frames else NO_FRAMES_EXTRACTED
                    )
                else:
                    timeline = build_timeline(selected, duration)
                    prompt = build_visual_prompt(
                        timeline,
                        bug_description=job.bug_description,
                        device_stats=job.device_stats,
                        test_instructions=job.test_instructions,
                        app_name=job.app_name,
                        duplicates_removed=metrics['duplicates_removed'],
                        dark_removed=metrics['dark_removed'],
                        freeze_events=metrics['freeze_events']
                    )
                metrics['frames_sent'] = len(selected)
                logger.info(f"PROMPT: Job {job.id} {'text-only' if text_only else 'visual'} prompt, {len(selected)} frames")

                # Step 7: Run inference
                enter(JobStage.INFERRING)
                outcome = self.inference.run(
                    prompt,
                    image_paths=[frame.path for frame in selected] or None,
                    job_id=job.id,
                    cancel_event=cancel_event
                )
                metrics['backend_attempts'] = outcome.attempts

                # Step 8: Split public and internal sections
                enter(JobStage.PARTITIONING)
                report, internal = partition_report(outcome.text)
                metrics['verdict'] = parse_verdict(internal)

                # Step 9: Persist
                enter(JobStage.PERSISTING)
                result = AnalysisResult(
                    success=True,
                    report=report,
                    internal_verdict=internal,
                    model=outcome.backend,
                    text_only=text_only,
                    metrics=metrics
                )
                result = self._persist(job, result, selected)

            metrics['processing_time_sec'] = time.time() - start_time
            logger.info(f"READY: Job {job.id} analyzed by {result.model} in {metrics['processing_time_sec']:.2f}s")
            return result

        except Exception as e:
            error_msg = str(e) or e.__class__.__name__
            if isinstance(e, AnalysisError):
                logger.error(f"Pipeline failed for job {job.id} during {stage.value}: {error_msg}")
            else:
                log_exception(logger, f"Pipeline failed for job {job.id} during {stage.value}: {error_msg}")

            metrics['processing_time_sec'] = time.time() - start_time
            metrics['failed_stage'] = stage.value
            return AnalysisResult.failure(error_msg, metrics)

    def _persist(self, job: RecordingJob, result: AnalysisResult, frames: List[FrameSample]) -> AnalysisResult:
        """Write report and frames; failures are logged and recorded in metrics only"""
        if self.result_store is None:
            logger.warning(f"No result store configured, job {job.id} result not persisted")
            return result

        try:
            self.result_store.save_analysis(job.id, result)
        except Exception as e:
            logger.error(f"PERSIST: Failed to save analysis for job {job.id}: {e}")
            result.metrics['persistence_error'] = str(e)
            return result

        records = []
        if frames and self.object_store is not None:
            records = self._persist_frames(job.id, frames, result.metrics)

        result.metrics['frames_persisted'] = len(records)
        logger.info(f"PERSIST: Saved analysis and {len(records)} frames for job {job.id}")
        return AnalysisResult(
            success=result.success,
            report=result.report,
            internal_verdict=result.internal_verdict,
            model=result.model,
            frames=records,
            text_only=result.text_only,
            metrics=result.metrics
        )

    def _persist_frames(self, job_id: str, frames: List[FrameSample], metrics: Dict[str, Any]) -> List[FrameRecord]:
        """Upload each frame and record it; a failed frame is skipped"""
        records = []
        for sequence, frame in enumerate(frames, start=1):
            if not validate_frame_file(frame.path):
                logger.warning(f"Skipping unreadable frame {frame.path}")
                continue

            try:
                with open(frame.path, 'rb') as f:
                    data = f.read()
                key, url = self.object_store.upload_frame(job_id, sequence, data)
                record = FrameRecord(
                    sequence=sequence,
                    timestamp=frame.timestamp,
                    frozen_duration=frame.frozen_duration,
                    label=frame.label.value,
                    storage_key=key,
                    url=url
                )
                self.result_store.save_frame(job_id, record)
            except Exception as e:
                error = e if isinstance(e, PersistenceError) else PersistenceError(
                    f"Failed to persist frame {sequence} for job {job_id}: {e}"
                )
                logger.error(f"PERSIST: {error}")
                metrics['persistence_error'] = str(error)
                continue

            records.append(record)

        return records

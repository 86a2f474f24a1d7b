"""Tests for job status write-back, retries and statistics."""

import threading
from unittest.mock import MagicMock

import pytest

from evidence_worker.models import AnalysisResult, RecordingJob
from evidence_worker.orchestrator import PipelineOrchestrator


@pytest.fixture
def job_source():
    return MagicMock()


def _orchestrator(config, job_source, *results):
    analyzer = MagicMock()
    analyzer.process.side_effect = list(results)
    return PipelineOrchestrator(config, job_source, analyzer=analyzer)


def test_success_completes_job(config, job, job_source):
    ok = AnalysisResult(success=True, report="r", model="model-a")
    orchestrator = _orchestrator(config, job_source, ok)

    assert orchestrator.execute_pipeline(job) is ok
    job_source.complete_job.assert_called_once_with("42")
    job_source.fail_job.assert_not_called()

    stats = orchestrator.get_stats()
    assert stats["jobs_succeeded"] == 1
    assert stats["models"] == {"model-a": 1}
    assert stats["success_rate"] == 1.0


def test_failure_is_retried_while_attempts_remain(config, job, job_source):
    orchestrator = _orchestrator(config, job_source, AnalysisResult.failure("Video download failed: HTTP 503"))

    orchestrator.execute_pipeline(job)

    args, kwargs = job_source.fail_job.call_args
    assert args[0] == "42"
    assert "HTTP 503" in args[1]
    assert kwargs == {"retry": True}


def test_last_attempt_fails_permanently(config, job_source):
    job = RecordingJob(id="9", video_locator="recordings/9.mp4", attempts=config.MAX_ATTEMPTS - 1)
    orchestrator = _orchestrator(config, job_source, AnalysisResult.failure("boom"))

    orchestrator.execute_pipeline(job)

    args, kwargs = job_source.fail_job.call_args
    assert args[1].startswith("Permanent failure")
    assert kwargs == {}
    assert orchestrator.get_stats()["jobs_failed"] == 1


def test_analyzer_crash_is_contained(config, job, job_source):
    orchestrator = _orchestrator(config, job_source, RuntimeError("segfault in ffmpeg"))

    result = orchestrator.execute_pipeline(job)

    assert result.success is False
    assert "segfault in ffmpeg" in result.error
    job_source.fail_job.assert_called_once()


def test_cancel_reaches_running_job(config, job, job_source):
    started = threading.Event()
    seen = {}

    def slow_process(recording, cancel_event=None):
        seen["event"] = cancel_event
        started.set()
        cancel_event.wait(5)
        return AnalysisResult.failure("Job cancelled during inferring")

    analyzer = MagicMock()
    analyzer.process.side_effect = slow_process
    orchestrator = PipelineOrchestrator(config, job_source, analyzer=analyzer)

    worker = threading.Thread(target=orchestrator.execute_pipeline, args=(job,))
    worker.start()
    assert started.wait(5)
    assert orchestrator.active_jobs() == ["42"]
    assert orchestrator.cancel("42") is True
    worker.join(5)

    assert seen["event"].is_set()
    assert orchestrator.active_jobs() == []
    assert orchestrator.cancel("42") is False


def test_reset_stats(config, job, job_source):
    orchestrator = _orchestrator(config, job_source, AnalysisResult(success=True, model="m", text_only=True))
    orchestrator.execute_pipeline(job)
    assert orchestrator.get_stats()["text_only_jobs"] == 1

    orchestrator.reset_stats()
    assert orchestrator.get_stats()["jobs_processed"] == 0


def test_duplicate_run_of_active_job_is_rejected(config, job, job_source):
    started = threading.Event()

    def slow_process(recording, cancel_event=None):
        started.set()
        cancel_event.wait(5)
        return AnalysisResult.failure("Job cancelled during inferring")

    analyzer = MagicMock()
    analyzer.process.side_effect = slow_process
    orchestrator = PipelineOrchestrator(config, job_source, analyzer=analyzer)

    worker = threading.Thread(target=orchestrator.execute_pipeline, args=(job,))
    worker.start()
    assert started.wait(5)

    duplicate = orchestrator.execute_pipeline(job)

    assert duplicate.success is False
    assert "already running" in duplicate.error
    assert analyzer.process.call_count == 1
    job_source.fail_job.assert_not_called()

    assert orchestrator.cancel("42") is True
    worker.join(5)
    assert orchestrator.active_jobs() == []
    assert orchestrator.get_stats()["jobs_processed"] == 1

"""
Postgres adapter implementations for job source and result storage.

Jobs live in an ai_analysis_jobs queue keyed by bug id; the bug-report
context comes from the bugs and tests tables, and results are written
back onto bugs and ai_frames.
"""

import json
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool
from typing import Optional, Dict, Any, List
import logging

from .base import JobSourceAdapter, ResultStoreAdapter
from ..errors import PersistenceError
from ..models import AnalysisResult, FrameRecord, RecordingJob
from ..logging_setup import log_exception

logger = logging.getLogger("evidence_worker")


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS ai_analysis_jobs (
        bug_id INTEGER PRIMARY KEY REFERENCES bugs(id) ON DELETE CASCADE,
        status TEXT NOT NULL DEFAULT 'pending',
        attempts INTEGER NOT NULL DEFAULT 0,
        error TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    """,
    "ALTER TABLE bugs ADD COLUMN IF NOT EXISTS ai_analysis TEXT;",
    "ALTER TABLE bugs ADD COLUMN IF NOT EXISTS ai_model TEXT;",
    "ALTER TABLE bugs ADD COLUMN IF NOT EXISTS ai_internal_verdict TEXT;",
    "ALTER TABLE bugs ADD COLUMN IF NOT EXISTS ai_analyzed_at TIMESTAMPTZ;",
    """
    CREATE TABLE IF NOT EXISTS ai_frames (
        id SERIAL PRIMARY KEY,
        bug_id INTEGER REFERENCES bugs(id) ON DELETE CASCADE,
        frame_number INTEGER NOT NULL,
        frame_url TEXT,
        frame_path TEXT NOT NULL,
        timestamp_seconds REAL,
        frame_type TEXT DEFAULT 'normal',
        frozen_duration INTEGER,
        UNIQUE (bug_id, frame_number)
    );
    """,
]

JOB_CONTEXT_QUERY = """
    SELECT b.id, b.recording_url, b.recording_path, b.recording_storage,
           b.device_stats, b.bug_description,
           t.app_name, t.instructions AS test_instructions
    FROM bugs b
    LEFT JOIN tests t ON t.id = b.test_id
    WHERE b.id = %s
"""


def _open_pool(database_url: str, pool_size: int, timeout: int, application_name: str) -> ConnectionPool:
    return ConnectionPool(
        database_url,
        min_size=1,
        max_size=pool_size,
        kwargs={
            "connect_timeout": timeout,
            "application_name": application_name
        }
    )


def row_to_job(row: Dict[str, Any], attempts: int = 0, created_at=None) -> RecordingJob:
    """Build a RecordingJob from a bugs/tests row"""
    if row.get('recording_storage') == 'b2' and row.get('recording_path'):
        locator = row['recording_path']
    else:
        locator = row.get('recording_url') or row.get('recording_path') or ""

    device_stats = row.get('device_stats')
    if device_stats is not None and not isinstance(device_stats, str):
        device_stats = json.dumps(device_stats)

    return RecordingJob(
        id=str(row['id']),
        video_locator=locator,
        device_stats=device_stats,
        bug_description=row.get('bug_description'),
        test_instructions=row.get('test_instructions'),
        app_name=row.get('app_name'),
        attempts=attempts,
        created_at=created_at
    )


class PostgresJobSourceAdapter(JobSourceAdapter):
    """Postgres implementation of job source adapter"""

    def __init__(self, database_url: str, pool_size: int = 5, timeout: int = 10):
        self.database_url = database_url
        self.pool_size = pool_size
        self.timeout = timeout
        self.pool = None

    def connect(self):
        """Initialize connection pool"""
        try:
            self.pool = _open_pool(self.database_url, self.pool_size, self.timeout, "evidence_worker")
            logger.info("Postgres job source connection pool initialized")
            self._bootstrap_schema()
        except Exception as e:
            log_exception(logger, f"Failed to connect to Postgres job source: {e}")
            raise

    def _bootstrap_schema(self):
        """Create the job queue and result columns if they are missing"""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                for statement in SCHEMA_STATEMENTS:
                    cur.execute(statement)
                conn.commit()
                logger.info("Postgres job source schema validated")

    def claim_job(self) -> Optional[RecordingJob]:
        """Atomically claim the oldest pending job"""
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute("""
                    WITH j AS (
                        SELECT bug_id
                        FROM ai_analysis_jobs
                        WHERE status = 'pending'
                        ORDER BY created_at
                        FOR UPDATE SKIP LOCKED
                        LIMIT 1
                    )
                    UPDATE ai_analysis_jobs
                    SET status = 'processing', attempts = attempts + 1, updated_at = NOW()
                    FROM j
                    WHERE ai_analysis_jobs.bug_id = j.bug_id
                    RETURNING ai_analysis_jobs.bug_id, ai_analysis_jobs.attempts, ai_analysis_jobs.created_at;
                """)
                claimed = cur.fetchone()
                if not claimed:
                    return None

                cur.execute(JOB_CONTEXT_QUERY, (claimed['bug_id'],))
                row = cur.fetchone()
                if not row:
                    cur.execute(
                        "UPDATE ai_analysis_jobs SET status = 'failed', error = %s WHERE bug_id = %s",
                        ("Bug report no longer exists", claimed['bug_id'])
                    )
                    conn.commit()
                    logger.warning(f"Dropped job for missing bug {claimed['bug_id']}")
                    return None

                conn.commit()
                logger.info(f"Claimed analysis job for bug {claimed['bug_id']} (attempt {claimed['attempts']})")
                # RecordingJob.attempts counts earlier attempts only
                return row_to_job(row, attempts=claimed['attempts'] - 1, created_at=claimed['created_at'])

    def fetch_job(self, bug_id: str) -> Optional[RecordingJob]:
        """Load the bug-report context for a job id without claiming it"""
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(JOB_CONTEXT_QUERY, (bug_id,))
                row = cur.fetchone()
                return row_to_job(row) if row else None

    def complete_job(self, job_id: str) -> None:
        """Mark job as done"""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE ai_analysis_jobs SET status = 'done', error = NULL, updated_at = NOW() WHERE bug_id = %s",
                    (job_id,)
                )
                conn.commit()
                logger.info(f"Job for bug {job_id} completed")

    def fail_job(self, job_id: str, error: str, retry: bool = False) -> None:
        """Mark job as failed, or back to pending when it will be retried"""
        status = 'pending' if retry else 'failed'
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE ai_analysis_jobs SET status = %s, error = %s, updated_at = NOW() WHERE bug_id = %s",
                    (status, error, job_id)
                )
                conn.commit()
                logger.error(f"Job for bug {job_id} {'will retry' if retry else 'failed'}: {error}")

    def get_pending_jobs(self) -> List[RecordingJob]:
        """Get pending jobs for monitoring"""
        with self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute("""
                    SELECT j.attempts, j.created_at, b.id, b.recording_url, b.recording_path,
                           b.recording_storage, b.device_stats, b.bug_description,
                           t.app_name, t.instructions AS test_instructions
                    FROM ai_analysis_jobs j
                    JOIN bugs b ON b.id = j.bug_id
                    LEFT JOIN tests t ON t.id = b.test_id
                    WHERE j.status = 'pending'
                    ORDER BY j.created_at
                    LIMIT 10
                """)
                return [
                    row_to_job(row, attempts=row['attempts'], created_at=row['created_at'])
                    for row in cur.fetchall()
                ]

    def close(self):
        """Close connection pool"""
        if self.pool:
            self.pool.close()
            logger.info("Postgres job source connection pool closed")


class PostgresResultStore(ResultStoreAdapter):
    """Writes analysis results onto bugs and ai_frames"""

    def __init__(self, database_url: str, pool_size: int = 5, timeout: int = 10):
        self.database_url = database_url
        self.pool_size = pool_size
        self.timeout = timeout
        self.pool = None

    def connect(self):
        """Initialize connection pool"""
        try:
            self.pool = _open_pool(self.database_url, self.pool_size, self.timeout, "evidence_worker_storage")
            logger.info("Postgres result store connection pool initialized")
        except Exception as e:
            log_exception(logger, f"Failed to connect to Postgres result store: {e}")
            raise

    def save_analysis(self, job_id: str, result: AnalysisResult) -> None:
        """Write report, internal verdict and model onto the bug"""
        model = f"{result.model} (text-only)" if result.text_only else result.model
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("""
                        UPDATE bugs
                        SET ai_analysis = %s, ai_internal_verdict = %s, ai_model = %s, ai_analyzed_at = NOW()
                        WHERE id = %s
                    """, (result.report, result.internal_verdict or None, model, job_id))
                    if cur.rowcount == 0:
                        raise PersistenceError(f"Bug {job_id} not found")
                    # frames from an earlier analysis of this bug are replaced
                    cur.execute("DELETE FROM ai_frames WHERE bug_id = %s", (job_id,))
                    conn.commit()
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to save analysis for bug {job_id}: {e}") from e

        logger.info(f"Saved analysis for bug {job_id} ({model})")

    def save_frame(self, job_id: str, record: FrameRecord) -> None:
        """Insert (or replace) one ai_frames row"""
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("""
                        INSERT INTO ai_frames
                            (bug_id, frame_number, frame_url, frame_path, timestamp_seconds, frame_type, frozen_duration)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        ON CONFLICT (bug_id, frame_number) DO UPDATE
                        SET frame_url = EXCLUDED.frame_url, frame_path = EXCLUDED.frame_path,
                            timestamp_seconds = EXCLUDED.timestamp_seconds, frame_type = EXCLUDED.frame_type,
                            frozen_duration = EXCLUDED.frozen_duration
                    """, (
                        job_id, record.sequence, record.url, record.storage_key,
                        record.timestamp, record.label, record.frozen_duration
                    ))
                    conn.commit()
        except psycopg.Error as e:
            raise PersistenceError(f"Failed to save frame {record.sequence} for bug {job_id}: {e}") from e

    def get_stats(self) -> Dict[str, Any]:
        """Get storage statistics for monitoring"""
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT status, COUNT(*) as count
                    FROM ai_analysis_jobs
                    GROUP BY status
                """)
                job_counts = {row[0]: row[1] for row in cur.fetchall()}

                cur.execute("""
                    SELECT
                        COUNT(*) FILTER (WHERE ai_analysis IS NOT NULL) AS analyzed_bugs,
                        (SELECT COUNT(*) FROM ai_frames) AS total_frames
                    FROM bugs
                """)
                stats_row = cur.fetchone()

                return {
                    "jobs": job_counts,
                    "processing": {
                        "analyzed_bugs": stats_row[0] or 0,
                        "total_frames": stats_row[1] or 0
                    }
                }

    def close(self):
        """Close connection pool"""
        if self.pool:
            self.pool.close()
            logger.info("Postgres result store connection pool closed")

# job manager keeps the in-memory job map and mirrors it to the job store
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .exceptions import JobNotFoundError, JobNotReadyError, JobStoreError
from .job_store import JobStore
from .models import JobState, NotesJob, NotesRequest, TERMINAL_STATES

logger = logging.getLogger(__name__)

# progress percentage shown for each state
PROGRESS_MAPPING: Dict[JobState, int] = {
    JobState.RECEIVED: 5,
    JobState.VALIDATING_INPUT: 10,
    JobState.FETCH_SYLLABUS: 15,
    JobState.SYLLABUS_NOT_FOUND: 15,
    JobState.EXTRACT_TOPICS: 25,
    JobState.SCRAPE_RESOURCES: 35,
    JobState.INDEX_EMBED: 45,
    JobState.RETRIEVE_CONTEXT: 55,
    JobState.GENERATE_CONTENT: 75,
    JobState.QC_CHECKS: 85,
    JobState.NEEDS_RETRY: 60,
    JobState.HUMAN_REVIEW: 50,
    JobState.COMPILE_PDF: 95,
    JobState.COMPLETED: 100,
    JobState.FAILED: 0,
}

# user facing message for each state
STATE_MESSAGES: Dict[JobState, str] = {
    JobState.RECEIVED: "Job received and queued for processing",
    JobState.VALIDATING_INPUT: "Validating input parameters",
    JobState.FETCH_SYLLABUS: "Fetching official syllabus documents",
    JobState.SYLLABUS_NOT_FOUND: "Syllabus not found - awaiting user confirmation",
    JobState.EXTRACT_TOPICS: "Extracting topics from syllabus",
    JobState.SCRAPE_RESOURCES: "Gathering educational resources",
    JobState.INDEX_EMBED: "Processing and indexing content",
    JobState.RETRIEVE_CONTEXT: "Retrieving relevant context for topics",
    JobState.GENERATE_CONTENT: "Generating comprehensive notes content",
    JobState.QC_CHECKS: "Performing quality checks",
    JobState.NEEDS_RETRY: "Retrying content generation",
    JobState.HUMAN_REVIEW: "Awaiting human review",
    JobState.COMPILE_PDF: "Compiling final PDF document",
    JobState.COMPLETED: "Notes generation completed successfully",
    JobState.FAILED: "Job failed - please try again",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobManager:
    """Tracks notes jobs by id.

    The in-memory map is the source of truth while the process runs. When a
    store is configured every change is mirrored to it; creating a job fails
    if the record cannot be written, later updates only log store errors.
    """

    def __init__(self, store: Optional[JobStore] = None):
        self.store = store
        self._jobs: Dict[str, NotesJob] = {}
        self._lock = threading.RLock()

    def create_job(self, request: NotesRequest) -> str:
        job_id = str(uuid.uuid4())
        now = utc_now_iso()

        job = NotesJob(
            job_id=job_id,
            user_id=request.user_id,
            class_grade=request.class_grade,
            board=request.board,
            subject=request.subject,
            chapter=request.chapter,
            state=JobState.RECEIVED,
            progress_percent=0,
            message="Job created and queued",
            created_at=now,
            updated_at=now,
        )

        with self._lock:
            self._jobs[job_id] = job

        if self.store is not None:
            try:
                self.store.save_job(job)
            except JobStoreError:
                with self._lock:
                    self._jobs.pop(job_id, None)
                logger.error(f"Failed to store job {job_id}", exc_info=True)
                raise

        logger.info(
            f"Job created: {job_id} ({request.board} class {request.class_grade} "
            f"{request.subject} - {request.chapter})"
        )
        return job_id

    def update_job_state(
        self,
        job_id: str,
        state: JobState,
        progress: int,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        **fields: Any,
    ) -> NotesJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)

            job.state = state
            job.progress_percent = progress
            job.message = message
            job.updated_at = utc_now_iso()

            if metadata:
                job.metadata = {**job.metadata, **metadata}
            if error_message:
                job.error_message = error_message
            for name, value in fields.items():
                setattr(job, name, value)

            snapshot = job.model_copy(deep=True)

        self._persist(snapshot)
        logger.info(f"Job updated: {job_id} -> {state.value} ({progress}%) {message}")
        return snapshot

    def transition(self, job_id: str, expected: JobState, state: JobState) -> NotesJob:
        """Move a job from expected to state atomically, JobNotReadyError if it moved on already"""
        # loads jobs that so far only exist in the store
        if self.get_job(job_id) is None:
            raise JobNotFoundError(job_id)

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.state != expected:
                raise JobNotReadyError(job_id, job.state.value, expected.value)
            return self.update_job_state(job_id, state, PROGRESS_MAPPING[state], STATE_MESSAGES[state])

    def get_job(self, job_id: str) -> Optional[NotesJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                return job.model_copy(deep=True)

        if self.store is None:
            return None

        try:
            job = self.store.load_job(job_id)
        except (JobStoreError, ValueError) as e:
            logger.error(f"Failed to fetch job {job_id}: {e}")
            return None

        if job is not None:
            with self._lock:
                self._jobs.setdefault(job_id, job)
            return job.model_copy(deep=True)
        return None

    def get_jobs_by_user(self, user_id: str) -> List[NotesJob]:
        jobs: Dict[str, NotesJob] = {}
        if self.store is not None:
            for job in self.store.list_jobs():
                if job.user_id == user_id:
                    jobs[job.job_id] = job

        # memory wins over what is on disk
        with self._lock:
            for job in self._jobs.values():
                if job.user_id == user_id:
                    jobs[job.job_id] = job.model_copy(deep=True)

        return sorted(jobs.values(), key=lambda job: job.created_at, reverse=True)

    def mark_job_completed(
        self,
        job_id: str,
        pdf_url: str,
        quality_score: float,
        metadata: Dict[str, Any],
    ) -> NotesJob:
        return self.update_job_state(
            job_id,
            JobState.COMPLETED,
            100,
            STATE_MESSAGES[JobState.COMPLETED],
            {**metadata, "quality_score": quality_score},
            pdf_url=pdf_url,
            quality_score=quality_score,
        )

    def mark_job_failed(self, job_id: str, error_message: str) -> NotesJob:
        return self.update_job_state(
            job_id,
            JobState.FAILED,
            0,
            "Job failed",
            error_message=error_message,
        )

    def get_progress_mapping(self) -> Dict[JobState, int]:
        return dict(PROGRESS_MAPPING)

    def get_state_message(self, state: JobState) -> str:
        return STATE_MESSAGES[state]

    def cleanup_old_jobs(self, older_than_days: int = 7) -> List[str]:
        """Remove finished jobs created before the cutoff, returns the removed job ids"""
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)

        def is_expired(job: NotesJob) -> bool:
            return job.state in TERMINAL_STATES and datetime.fromisoformat(job.created_at) < cutoff

        expired: Dict[str, None] = {}
        with self._lock:
            for job_id, job in list(self._jobs.items()):
                if is_expired(job):
                    del self._jobs[job_id]
                    expired[job_id] = None

        if self.store is not None:
            try:
                for job in self.store.list_jobs():
                    if job.job_id in expired or is_expired(job):
                        self.store.delete_job(job.job_id)
                        expired[job.job_id] = None
            except JobStoreError as e:
                logger.error(f"Failed to cleanup old jobs: {e}")

        logger.info(f"Cleaned up {len(expired)} jobs older than {older_than_days} days")
        return list(expired)

    def _persist(self, job: NotesJob):
        if self.store is None:
            return
        try:
            self.store.save_job(job)
        except JobStoreError as e:
            logger.error(f"Failed to update job {job.job_id} in store: {e}")

# notes orchestrator walks a job through syllabus lookup, retrieval, generation, qc and pdf compilation
import difflib
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import Settings, get_settings
from .exceptions import (
    ChapterNotFoundError, InputValidationError, JobNotFoundError, JobNotReadyError, NotesError,
)
from .job_manager import JobManager
from .job_store import JobStore
from .llm_service import LLMService
from .models import (
    BoardConfig, ChapterData, ChunkMetadata, JobMetadata, JobState, JobStatusResponse,
    NotesJob, NotesPackage, NotesRequest, QualityCheckResult, SyllabusData, TopicPage,
)
from .pdf_generator import PDFGenerator
from .pdf_scraper import PDFScraper
from .quality_checker import QualityChecker, count_words
from .vector_database import VectorDatabase

logger = logging.getLogger(__name__)

# runner(func, *args) executes a pipeline step, inline by default
Runner = Callable[..., Any]


def run_inline(func: Callable[..., Any], *args: Any) -> None:
    func(*args)


def find_chapter(syllabus: SyllabusData, chapter_name: str) -> Optional[ChapterData]:
    """Case-insensitive containment match in either direction"""
    wanted = chapter_name.strip().lower()
    if not wanted:
        return None
    for chapter in syllabus.chapters:
        name = chapter.chapter_name.lower()
        if wanted in name or name in wanted:
            return chapter
    return None


def count_package_words(package: NotesPackage) -> int:
    total = 0
    for page in package.pages:
        if page.page_type == "title":
            total += count_words(page.introduction) + count_words(page.why_study) + count_words(page.daily_life_example)
        elif page.page_type == "topic":
            total += count_words(page.definition) + count_words(page.explanation)
            total += count_words(page.example_detailed) + count_words(page.example_short)
            if page.comparison:
                total += count_words(page.comparison)
            for question in page.questions:
                total += count_words(question.q) + count_words(question.a)
    return total


class NotesOrchestrator:
    """Runs the notes generation pipeline for one job at a time per call.

    Every stage moves the job to its state with the progress and message from
    the job manager tables. Any error inside the pipeline ends the job in
    FAILED; SYLLABUS_NOT_FOUND and HUMAN_REVIEW park the job until
    confirm_syllabus or approve_review resumes it.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        job_manager: Optional[JobManager] = None,
        pdf_scraper: Optional[PDFScraper] = None,
        vector_db: Optional[VectorDatabase] = None,
        llm_service: Optional[LLMService] = None,
        quality_checker: Optional[QualityChecker] = None,
        pdf_generator: Optional[PDFGenerator] = None,
    ):
        self.settings = settings or get_settings()

        if job_manager is None:
            store = JobStore(self.settings.DATA_DIR) if self.settings.PERSIST_JOBS else None
            job_manager = JobManager(store)
        self.job_manager = job_manager

        self.pdf_scraper = pdf_scraper or PDFScraper(
            syllabus_dir=self.settings.SYLLABUS_DIR,
            fetch_remote=self.settings.FETCH_REMOTE_SYLLABUS,
            timeout=self.settings.HTTP_TIMEOUT,
        )
        self.vector_db = vector_db or VectorDatabase()
        self.llm_service = llm_service or LLMService(
            provider=self.settings.LLM_PROVIDER,
            base_url=self.settings.OLLAMA_BASE_URL,
            model=self.settings.OLLAMA_MODEL,
        )
        self.quality_checker = quality_checker or QualityChecker()
        self.pdf_generator = pdf_generator or PDFGenerator(str(self.settings.OUTPUT_DIR))

        # generated notes by job id, also written to the job store
        self._notes: Dict[str, NotesPackage] = {}
        self._notes_lock = threading.Lock()

    # ------------------------------------------------------------------
    # entry points
    # ------------------------------------------------------------------

    def generate_notes(self, request: NotesRequest, runner: Optional[Runner] = None) -> str:
        """Create a job and run the pipeline for it, returns the job id"""
        job_id = self.job_manager.create_job(request)
        (runner or run_inline)(self.run_pipeline, job_id, request)
        return job_id

    def run_pipeline(self, job_id: str, request: NotesRequest):
        start_time = time.time()
        logger.info(f"Starting notes pipeline for job {job_id}")
        logger.info("=" * 60)

        def stages():
            self._update_state(job_id, JobState.VALIDATING_INPUT)
            self._validate_input(request)

            self._update_state(job_id, JobState.FETCH_SYLLABUS)
            syllabus = self._fetch_syllabus(request)
            if syllabus is None:
                self._update_state(job_id, JobState.SYLLABUS_NOT_FOUND)
                logger.warning(f"  ! Syllabus not found for job {job_id}, waiting for confirmation")
                return

            self._update_state(job_id, JobState.EXTRACT_TOPICS)
            chapter = self._extract_topics(syllabus, request.chapter)

            self._generate_from_chapter(job_id, request, chapter, syllabus.source_url)

        self._guarded(job_id, stages)
        logger.info(f"Pipeline for job {job_id} finished in {time.time() - start_time:.2f} seconds")
        logger.info("=" * 60)

    def confirm_syllabus(
        self,
        job_id: str,
        topics: List[str],
        chapter_name: Optional[str] = None,
        runner: Optional[Runner] = None,
    ) -> NotesJob:
        """Resume a job parked in SYLLABUS_NOT_FOUND with topics supplied by the user"""
        job = self._require_job(job_id)
        if job.state != JobState.SYLLABUS_NOT_FOUND:
            raise JobNotReadyError(job_id, job.state.value, JobState.SYLLABUS_NOT_FOUND.value)

        topics = [topic.strip() for topic in topics if topic and topic.strip()]
        if not topics:
            raise InputValidationError(["At least one topic is required"])

        request = self._request_for(job)
        chapter = ChapterData(chapter_name=chapter_name or job.chapter, topics=topics)

        # claim the job before handing it to the runner so a second confirmation is rejected
        self.job_manager.transition(job_id, JobState.SYLLABUS_NOT_FOUND, JobState.EXTRACT_TOPICS)
        logger.info(f"Syllabus confirmed for job {job_id} with {len(topics)} topics")

        (runner or run_inline)(
            self._guarded, job_id, lambda: self._generate_from_chapter(job_id, request, chapter, "user_confirmed")
        )
        return self._require_job(job_id)

    def approve_review(self, job_id: str, runner: Optional[Runner] = None) -> NotesJob:
        """Compile the pdf for a job parked in HUMAN_REVIEW"""
        job = self._require_job(job_id)
        if job.state != JobState.HUMAN_REVIEW:
            raise JobNotReadyError(job_id, job.state.value, JobState.HUMAN_REVIEW.value)

        package = self._load_notes(job_id)
        if package is None:
            raise JobNotReadyError(job_id, job.state.value, "generated notes")

        self.job_manager.transition(job_id, JobState.HUMAN_REVIEW, JobState.COMPILE_PDF)
        logger.info(f"Review approved for job {job_id}")
        (runner or run_inline)(self._guarded, job_id, lambda: self._compile(job_id, package))
        return self._require_job(job_id)

    # ------------------------------------------------------------------
    # pipeline stages
    # ------------------------------------------------------------------

    def _guarded(self, job_id: str, stages: Callable[[], None]):
        try:
            stages()
        except NotesError as e:
            error_message = f"{e.message}. {e.detail}" if e.detail else e.message
            logger.error(f"✗ Pipeline failed for job {job_id}: {error_message}")
            self.job_manager.mark_job_failed(job_id, error_message)
        except Exception as e:
            logger.error(f"✗ Pipeline failed for job {job_id}: {e}", exc_info=True)
            self.job_manager.mark_job_failed(job_id, str(e) or e.__class__.__name__)

    def _update_state(self, job_id: str, state: JobState, **kwargs: Any) -> NotesJob:
        progress = self.job_manager.get_progress_mapping()[state]
        message = self.job_manager.get_state_message(state)
        job = self.job_manager.update_job_state(job_id, state, progress, message, **kwargs)

        if self.settings.STEP_DELAY_SECONDS > 0:
            time.sleep(self.settings.STEP_DELAY_SECONDS)
        return job

    def _validate_input(self, request: NotesRequest):
        valid, errors = self.pdf_scraper.validate_input(request.board, request.subject, request.class_grade)
        if not valid:
            raise InputValidationError(errors)
        logger.info(f"  ✓ Input validated: {request.board} class {request.class_grade} {request.subject}")

    def _fetch_syllabus(self, request: NotesRequest) -> Optional[SyllabusData]:
        syllabus = self.pdf_scraper.fetch_syllabus(request.board, request.subject, request.class_grade)
        # a syllabus without chapters cannot be used either
        if syllabus is None or not syllabus.chapters:
            return None
        logger.info(f"  ✓ Fetched syllabus for {request.board} {request.subject} Class {request.class_grade}")
        return syllabus

    def _extract_topics(self, syllabus: SyllabusData, chapter_name: str) -> ChapterData:
        chapter = find_chapter(syllabus, chapter_name)
        if chapter is None:
            names = [ch.chapter_name for ch in syllabus.chapters]
            suggestions = difflib.get_close_matches(chapter_name, names, n=3)
            raise ChapterNotFoundError(chapter_name, suggestions)

        logger.info(f"  ✓ Extracted {len(chapter.topics)} topics for chapter: {chapter.chapter_name}")
        return chapter

    def _generate_from_chapter(self, job_id: str, request: NotesRequest, chapter: ChapterData, syllabus_source: str):
        if not chapter.topics:
            raise ChapterNotFoundError(chapter.chapter_name)

        self._update_state(job_id, JobState.SCRAPE_RESOURCES)
        documents = self._scrape_resources(request.subject, request.chapter, chapter.topics)

        self._update_state(job_id, JobState.INDEX_EMBED)
        self._index_content(documents, request)

        self._update_state(job_id, JobState.RETRIEVE_CONTEXT)
        package = self._generate_content(job_id, request, chapter, syllabus_source)

        quality = self._run_quality_checks(job_id, request, package, chapter.topics)
        package.metadata.quality_score = quality.score

        if not quality.passed and self.settings.HUMAN_REVIEW_ON_QC_FAILURE:
            self._save_notes(package)
            self._update_state(
                job_id,
                JobState.HUMAN_REVIEW,
                metadata={"quality_issues": sorted(set(quality.issues))},
                quality_score=quality.score,
            )
            logger.warning(f"  ! Job {job_id} needs human review (score {quality.score:.2f})")
            return

        if not quality.passed:
            logger.warning(f"  ! Quality check failed for job {job_id}: {sorted(set(quality.issues))}")

        self._update_state(job_id, JobState.COMPILE_PDF)
        self._compile(job_id, package)

    def _scrape_resources(self, subject: str, chapter: str, topics: List[str]) -> List[Tuple[str, str]]:
        results = self.pdf_scraper.scrape_educational_resources(subject, chapter, topics)
        documents = [(result.url, result.content) for result in results if result.success]
        logger.info(f"  ✓ Scraped {len(documents)} educational resources")
        return documents

    def _chunk_metadata(self, request: NotesRequest) -> ChunkMetadata:
        return ChunkMetadata(
            board=request.board,
            class_grade=request.class_grade,
            subject=request.subject,
            chapter=request.chapter,
        )

    def _index_content(self, documents: List[Tuple[str, str]], request: NotesRequest):
        metadata = self._chunk_metadata(request)
        for source, content in documents:
            self.vector_db.index_content(content, source, metadata)

        stats = self.vector_db.get_stats()
        logger.info(f"  ✓ Indexed content: {stats['total_chunks']} chunks from {len(stats['sources'])} sources")

    def _generate_content(
        self,
        job_id: str,
        request: NotesRequest,
        chapter: ChapterData,
        syllabus_source: str,
    ) -> NotesPackage:
        syllabus_context = [f"Chapter: {chapter.chapter_name}", f"Topics: {', '.join(chapter.topics)}"]
        pages: List[Any] = [
            self.llm_service.generate_title_page(
                request.subject, request.class_grade, request.board, request.chapter, syllabus_context
            ),
            self.llm_service.generate_toc(chapter.topics),
        ]

        retrieval_sources: List[str] = []
        for topic in chapter.topics:
            self._update_state(job_id, JobState.GENERATE_CONTENT)
            page, sources = self._generate_topic(topic, request)
            pages.append(page)
            for source in sources:
                if source not in retrieval_sources:
                    retrieval_sources.append(source)

        package = NotesPackage(
            job_id=job_id,
            metadata=JobMetadata(
                subject=request.subject,
                chapter=request.chapter,
                class_grade=request.class_grade,
                board=request.board,
                generated_at=datetime.now(timezone.utc).isoformat(),
                total_topics=len(chapter.topics),
                syllabus_source=syllabus_source,
                retrieval_sources=retrieval_sources,
            ),
            pages=pages,
        )
        package.metadata.total_words = count_package_words(package)

        logger.info(f"  ✓ Generated notes package with {len(pages)} pages ({package.metadata.total_words} words)")
        return package

    def _generate_topic(self, topic: str, request: NotesRequest) -> Tuple[TopicPage, List[str]]:
        # only chunks indexed for this board, class, subject and chapter
        scope = self._chunk_metadata(request).model_dump(by_alias=True, exclude={"page", "chunk_index"})
        context = self.vector_db.search_by_metadata(
            scope,
            query=topic,
            top_k=self.settings.RETRIEVAL_TOP_K,
            threshold=self.settings.RETRIEVAL_THRESHOLD,
        )
        page = self.llm_service.generate_topic_page(topic, context)
        return page, [ctx.source for ctx in context]

    def _run_quality_checks(
        self, job_id: str, request: NotesRequest, package: NotesPackage, topics: List[str]
    ) -> QualityCheckResult:
        self._update_state(job_id, JobState.QC_CHECKS)

        # topic pages follow the title and toc pages in syllabus order
        positions = [index for index, page in enumerate(package.pages) if page.page_type == "topic"]
        results = [
            self.quality_checker.check_topic_page(package.pages[position], topic)
            for position, topic in zip(positions, topics)
        ]

        attempt = 0
        while attempt < self.settings.QC_MAX_RETRIES and not all(result.passed for result in results):
            attempt += 1
            failing = [index for index, result in enumerate(results) if not result.passed]
            self._update_state(job_id, JobState.NEEDS_RETRY, metadata={"qc_attempts": attempt})
            logger.info(f"  Regenerating {len(failing)} topic pages (attempt {attempt})")

            for index in failing:
                page, _ = self._generate_topic(topics[index], request)
                package.pages[positions[index]] = page

            self._update_state(job_id, JobState.QC_CHECKS)
            for index in failing:
                results[index] = self.quality_checker.check_topic_page(package.pages[positions[index]], topics[index])

        package.metadata.total_words = count_package_words(package)
        quality = self.quality_checker.combine_results(results)
        logger.info(f"  {'✓' if quality.passed else '✗'} Quality score {quality.score:.2f} after {attempt} retries")
        return quality

    # expects the job to be in COMPILE_PDF already
    def _compile(self, job_id: str, package: NotesPackage):
        pdf_path = self.pdf_generator.generate_pdf(package)
        package.pdf_path = pdf_path
        self._save_notes(package)

        self.job_manager.mark_job_completed(
            job_id,
            pdf_path,
            package.metadata.quality_score,
            package.metadata.model_dump(mode="json", by_alias=True),
        )
        logger.info(f"✓ SUCCESS! Notes generation completed for job {job_id}")

    # ------------------------------------------------------------------
    # notes records
    # ------------------------------------------------------------------

    def _save_notes(self, package: NotesPackage):
        with self._notes_lock:
            self._notes[package.job_id] = package

        store = self.job_manager.store
        if store is not None:
            store.save_notes(package)

    def _load_notes(self, job_id: str) -> Optional[NotesPackage]:
        with self._notes_lock:
            package = self._notes.get(job_id)
        if package is not None:
            return package.model_copy(deep=True)

        store = self.job_manager.store
        if store is None:
            return None
        return store.load_notes(job_id)

    def _require_job(self, job_id: str) -> NotesJob:
        job = self.job_manager.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _request_for(self, job: NotesJob) -> NotesRequest:
        return NotesRequest(
            class_grade=job.class_grade,
            board=job.board,
            subject=job.subject,
            chapter=job.chapter,
            user_id=job.user_id,
        )

    # ------------------------------------------------------------------
    # queries used by the api and cli
    # ------------------------------------------------------------------

    def get_job_status(self, job_id: str) -> JobStatusResponse:
        job = self._require_job(job_id)
        return JobStatusResponse(
            job_id=job.job_id,
            state=job.state,
            progress_percent=job.progress_percent,
            message=job.message,
            quality_score=job.quality_score,
            pdf_url=job.pdf_url,
            error_message=job.error_message,
        )

    def get_user_jobs(self, user_id: str) -> List[NotesJob]:
        return self.job_manager.get_jobs_by_user(user_id)

    def get_notes(self, job_id: str) -> NotesPackage:
        job = self._require_job(job_id)
        package = self._load_notes(job_id)
        if package is None:
            raise JobNotReadyError(job_id, job.state.value, "generated notes")
        return package

    def download_notes(self, job_id: str) -> str:
        """Path of the compiled pdf, only for completed jobs"""
        job = self._require_job(job_id)
        if job.state != JobState.COMPLETED or not job.pdf_url:
            raise JobNotReadyError(job_id, job.state.value, JobState.COMPLETED.value)
        return job.pdf_url

    def get_board_configs(self) -> List[BoardConfig]:
        return self.pdf_scraper.get_all_boards()

    def get_vector_db_stats(self) -> Dict[str, Any]:
        return self.vector_db.get_stats()

    def cleanup_old_jobs(self, older_than_days: Optional[int] = None) -> int:
        days = self.settings.JOB_RETENTION_DAYS if older_than_days is None else older_than_days
        removed = self.job_manager.cleanup_old_jobs(days)

        with self._notes_lock:
            for job_id in removed:
                self._notes.pop(job_id, None)

        for job_id in removed:
            try:
                self.pdf_generator.delete_pdf(job_id)
            except OSError as e:
                logger.error(f"Failed to delete PDF for job {job_id}: {e}")
        return len(removed)

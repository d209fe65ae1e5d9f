# fastapi web api for study notes generation
from fastapi import FastAPI, HTTPException, BackgroundTasks, Depends
from fastapi.responses import JSONResponse, FileResponse
from fastapi.middleware.cors import CORSMiddleware
import os
import logging
from functools import lru_cache
from typing import List

from .config import get_settings
from .exceptions import NotesError, InputValidationError, JobNotFoundError, JobNotReadyError
from .models import NotesRequest, NotesJob, JobStatusResponse, BoardConfig, ConfirmSyllabusRequest
from .notes_orchestrator import NotesOrchestrator
from .pdf_generator import default_filename

settings = get_settings()

# configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# initialize fastapi application
app = FastAPI(
    title="AI Notes Maker API",
    description="Generate syllabus-aligned study notes for Pakistani board students",
    version=settings.APP_VERSION,
)

# add cors middleware to allow cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache
def get_orchestrator() -> NotesOrchestrator:
    return NotesOrchestrator(settings)


# translate pipeline errors into http errors
def to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, JobNotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    if isinstance(error, JobNotReadyError):
        return HTTPException(status_code=409, detail=error.message)
    if isinstance(error, InputValidationError):
        return HTTPException(status_code=422, detail=error.errors)
    if isinstance(error, NotesError):
        return HTTPException(status_code=400, detail=error.message)
    logger.error(f"Unexpected error: {error}", exc_info=True)
    return HTTPException(status_code=500, detail=str(error))


@app.post("/notes", status_code=202)
async def create_notes(
    request: NotesRequest,
    background_tasks: BackgroundTasks,
    orchestrator: NotesOrchestrator = Depends(get_orchestrator),
):
    """Start a notes generation job, the pipeline runs in the background"""
    try:
        job_id = orchestrator.generate_notes(request, runner=background_tasks.add_task)
        return {
            "job_id": job_id,
            "state": "RECEIVED",
            "message": "Notes generation started",
        }
    except Exception as e:
        raise to_http_error(e)


@app.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str, orchestrator: NotesOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_job_status(job_id)
    except Exception as e:
        raise to_http_error(e)


@app.get("/jobs/{job_id}/notes")
async def get_job_notes(job_id: str, orchestrator: NotesOrchestrator = Depends(get_orchestrator)):
    """Generated notes pages for display"""
    try:
        package = orchestrator.get_notes(job_id)
        return JSONResponse(content=package.model_dump(mode="json", by_alias=True))
    except Exception as e:
        raise to_http_error(e)


@app.get("/jobs/{job_id}/pdf")
async def download_job_pdf(job_id: str, orchestrator: NotesOrchestrator = Depends(get_orchestrator)):
    try:
        pdf_path = orchestrator.download_notes(job_id)
        package = orchestrator.get_notes(job_id)
    except Exception as e:
        raise to_http_error(e)

    if not os.path.exists(pdf_path):
        raise HTTPException(status_code=404, detail="PDF file not found")

    return FileResponse(pdf_path, media_type="application/pdf", filename=default_filename(package))


@app.post("/jobs/{job_id}/confirm-syllabus", status_code=202, response_model=JobStatusResponse)
async def confirm_syllabus(
    job_id: str,
    body: ConfirmSyllabusRequest,
    background_tasks: BackgroundTasks,
    orchestrator: NotesOrchestrator = Depends(get_orchestrator),
):
    """Resume a job whose syllabus was not found using topics from the user"""
    try:
        orchestrator.confirm_syllabus(job_id, body.topics, body.chapter_name, runner=background_tasks.add_task)
        return orchestrator.get_job_status(job_id)
    except Exception as e:
        raise to_http_error(e)


@app.post("/jobs/{job_id}/approve", status_code=202, response_model=JobStatusResponse)
async def approve_review(
    job_id: str,
    background_tasks: BackgroundTasks,
    orchestrator: NotesOrchestrator = Depends(get_orchestrator),
):
    try:
        orchestrator.approve_review(job_id, runner=background_tasks.add_task)
        return orchestrator.get_job_status(job_id)
    except Exception as e:
        raise to_http_error(e)


@app.get("/users/{user_id}/jobs", response_model=List[NotesJob])
async def get_user_jobs(user_id: str, orchestrator: NotesOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_user_jobs(user_id)


@app.get("/boards", response_model=List[BoardConfig])
async def get_boards(orchestrator: NotesOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_board_configs()


@app.get("/vector-db/stats")
async def get_vector_db_stats(orchestrator: NotesOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_vector_db_stats()


@app.get("/api")
async def api_info():
    """API information endpoint"""
    return {
        "message": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "endpoints": {
            "create_notes": "POST /notes",
            "job_status": "GET /jobs/{job_id}",
            "job_notes": "GET /jobs/{job_id}/notes",
            "download_pdf": "GET /jobs/{job_id}/pdf",
            "confirm_syllabus": "POST /jobs/{job_id}/confirm-syllabus",
            "approve_review": "POST /jobs/{job_id}/approve",
            "user_jobs": "GET /users/{user_id}/jobs",
            "boards": "GET /boards",
            "vector_db_stats": "GET /vector-db/stats",
            "health": "GET /health",
        },
    }


@app.get("/health")
async def health_check(orchestrator: NotesOrchestrator = Depends(get_orchestrator)):
    """Health check endpoint"""
    return {"status": "healthy", "service": "notesmaker", "llm_provider": orchestrator.llm_service.provider}

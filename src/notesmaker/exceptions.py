"""
Exception classes shared by the pipeline, the API and the CLI.
"""


class NotesError(Exception):
    """Base exception for all notes generation errors."""
    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class InputValidationError(NotesError):
    """Raised when board, class or subject is not supported."""
    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            message=f"Input validation failed: {', '.join(errors)}",
            detail="Pick a supported board, class and subject.",
        )


class ChapterNotFoundError(NotesError):
    """Raised when the requested chapter is not part of the syllabus."""
    def __init__(self, chapter: str, suggestions: list[str] | None = None):
        self.chapter = chapter
        self.suggestions = suggestions or []
        detail = None
        if self.suggestions:
            detail = f"Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message=f'Chapter "{chapter}" not found in syllabus', detail=detail)


class JobNotFoundError(NotesError):
    """Raised when a job id is unknown."""
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(message=f"Job not found: {job_id}")


class JobNotReadyError(NotesError):
    """Raised when an action needs a job in a different state."""
    def __init__(self, job_id: str, state: str, expected: str):
        self.job_id = job_id
        self.state = state
        super().__init__(
            message=f"Job {job_id} is {state}, expected {expected}",
            detail="Wait for the job to reach the expected state and try again.",
        )


class JobStoreError(NotesError):
    """Raised when a job record cannot be read from or written to disk."""


class LLMServiceError(NotesError):
    """Raised when the configured LLM provider fails."""

# pydantic models for jobs, notes pages and pipeline data
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Dict, Any, Optional, Union, Literal, Annotated
from enum import Enum

# every state a notes job can be in
class JobState(str, Enum):
    RECEIVED = "RECEIVED"
    VALIDATING_INPUT = "VALIDATING_INPUT"
    FETCH_SYLLABUS = "FETCH_SYLLABUS"
    SYLLABUS_NOT_FOUND = "SYLLABUS_NOT_FOUND"
    EXTRACT_TOPICS = "EXTRACT_TOPICS"
    SCRAPE_RESOURCES = "SCRAPE_RESOURCES"
    INDEX_EMBED = "INDEX_EMBED"
    RETRIEVE_CONTEXT = "RETRIEVE_CONTEXT"
    GENERATE_CONTENT = "GENERATE_CONTENT"
    QC_CHECKS = "QC_CHECKS"
    NEEDS_RETRY = "NEEDS_RETRY"
    HUMAN_REVIEW = "HUMAN_REVIEW"
    COMPILE_PDF = "COMPILE_PDF"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

TERMINAL_STATES = (JobState.COMPLETED, JobState.FAILED)

# request coming from the notes form
class NotesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    class_grade: int = Field(..., alias="class")
    board: str
    subject: str
    chapter: str
    user_id: Optional[str] = None

# summary attached to a job once content has been generated
class JobMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subject: str
    chapter: str
    class_grade: int = Field(..., alias="class")
    board: str
    generated_at: str
    total_topics: int = 0
    total_words: int = 0
    quality_score: float = 0.0
    syllabus_source: Optional[str] = None
    retrieval_sources: List[str] = []

# a single generation job tracked through the pipeline
class NotesJob(BaseModel):
    job_id: str
    user_id: Optional[str] = None
    class_grade: int
    board: str
    subject: str
    chapter: str
    state: JobState = JobState.RECEIVED
    progress_percent: int = 0
    message: str = ""
    quality_score: Optional[float] = None
    pdf_url: Optional[str] = None
    created_at: str
    updated_at: str
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = {}

# public view of a job for status polling
class JobStatusResponse(BaseModel):
    job_id: str
    state: JobState
    progress_percent: int
    message: str
    quality_score: Optional[float] = None
    pdf_url: Optional[str] = None
    error_message: Optional[str] = None

# first page of the notes
class TitlePage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page_type: Literal["title"] = "title"
    subject: str
    class_grade: int = Field(..., alias="class")
    board: str
    chapter: str
    introduction: str
    why_study: str
    daily_life_example: str

# table of contents page
class TOCPage(BaseModel):
    page_type: Literal["toc"] = "toc"
    topics: List[str]

# exam style question with answer
class ExamQuestion(BaseModel):
    difficulty: Literal["easy", "medium", "hard"]
    q: str
    a: str

# one page per syllabus topic
class TopicPage(BaseModel):
    page_type: Literal["topic"] = "topic"
    topic_title: str
    definition: str
    explanation: str
    comparison: Optional[str] = None
    example_detailed: str
    example_short: str
    questions: List[ExamQuestion]

NotesPage = Annotated[Union[TitlePage, TOCPage, TopicPage], Field(discriminator="page_type")]

# complete generated notes
class NotesPackage(BaseModel):
    job_id: str
    metadata: JobMetadata
    pages: List[NotesPage]
    pdf_path: Optional[str] = None
    status: Literal["ok", "error"] = "ok"
    missing: List[str] = []

    def topic_pages(self) -> List[TopicPage]:
        return [page for page in self.pages if isinstance(page, TopicPage)]

# chapter entry in a board syllabus
class ChapterData(BaseModel):
    chapter_name: str
    topics: List[str]
    page_reference: Optional[str] = None

# syllabus for one board/class/subject
class SyllabusData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    board: str
    class_grade: int = Field(..., alias="class")
    subject: str
    chapters: List[ChapterData]
    source_url: str
    extracted_at: str

# outcome of scraping one educational resource
class ScrapingResult(BaseModel):
    url: str
    content: str
    title: str
    extracted_at: str
    success: bool
    error: Optional[str] = None

# education board configuration
class BoardConfig(BaseModel):
    name: str
    code: str
    syllabus_urls: Dict[str, str]
    classes: List[int]
    subjects: List[str]

# metadata stored alongside each chunk
class ChunkMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    board: Optional[str] = None
    class_grade: Optional[int] = Field(None, alias="class")
    subject: Optional[str] = None
    chapter: Optional[str] = None
    page: Optional[int] = None
    chunk_index: int = 0

# a piece of scraped text stored in the vector database
class EmbeddingChunk(BaseModel):
    id: str
    content: str
    source: str
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)

# a chunk returned by similarity search
class RetrievedContext(BaseModel):
    content: str
    source: str
    similarity_score: float
    chunk_id: str

# individual quality checks
class QualityChecks(BaseModel):
    presence_check: bool
    length_check: bool
    syllabus_alignment: bool
    answer_check: bool
    safety_check: bool
    readability_score: float

# result of checking a topic page or a whole package
class QualityCheckResult(BaseModel):
    passed: bool
    score: float
    checks: QualityChecks
    missing_sections: List[str] = []
    issues: List[str] = []

# llm prompt configuration
class PromptTemplate(BaseModel):
    system: str
    user: str = ""
    temperature: float
    max_tokens: int

# request body for resuming a job whose syllabus was not found
class ConfirmSyllabusRequest(BaseModel):
    topics: List[str]
    chapter_name: Optional[str] = None

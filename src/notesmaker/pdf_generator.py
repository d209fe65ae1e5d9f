# renders a notes package to an A4 pdf with pymupdf
import fitz  # PyMuPDF
import logging
import math
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Tuple

from .models import NotesPackage, TitlePage, TOCPage, TopicPage

logger = logging.getLogger(__name__)

MARGIN = 56
TOP = 72
BOTTOM = 72
LINE_GAP = 1.35

REGULAR = "helv"
BOLD = "hebo"

ACCENT = (0, 0.39, 0.59)
GREY = (0.4, 0.4, 0.4)

TOC_ROWS_PER_PAGE = 30


def default_filename(package: NotesPackage) -> str:
    metadata = package.metadata
    chapter = re.sub(r"\s+", "_", metadata.chapter.strip())
    return f"{metadata.subject}_Class{metadata.class_grade}_{chapter}.pdf"


def wrap_text(text: str, width: float, fontname: str = REGULAR, fontsize: float = 11) -> List[str]:
    """Greedy word wrap by rendered width, keeps paragraph breaks"""
    lines = []
    for paragraph in text.split("\n"):
        words = paragraph.split()
        if not words:
            lines.append("")
            continue

        current = words[0]
        for word in words[1:]:
            candidate = f"{current} {word}"
            if fitz.get_text_length(candidate, fontname=fontname, fontsize=fontsize) <= width:
                current = candidate
            else:
                lines.append(current)
                current = word
        lines.append(current)
    return lines


# keeps track of the current page and vertical position while writing
class _Cursor:
    def __init__(self, doc: fitz.Document, paper: fitz.Rect):
        self.doc = doc
        self.width = paper.width
        self.height = paper.height
        self.page = None
        self.y = TOP

    @property
    def text_width(self) -> float:
        return self.width - 2 * MARGIN

    def new_page(self) -> int:
        self.page = self.doc.new_page(width=self.width, height=self.height)
        self.y = TOP
        return self.doc.page_count

    def ensure_space(self, needed: float):
        if self.y + needed > self.height - BOTTOM:
            self.new_page()

    def centered(self, text: str, fontsize: float, fontname: str = BOLD, color=(0, 0, 0)):
        length = fitz.get_text_length(text, fontname=fontname, fontsize=fontsize)
        if length > self.text_width:
            # long titles wrap instead of running off the page
            lines = wrap_text(text, self.text_width, fontname, fontsize)
            if len(lines) > 1:
                for line in lines:
                    self.centered(line, fontsize, fontname, color)
                return
        self.ensure_space(fontsize * LINE_GAP)
        x = max(MARGIN, (self.width - length) / 2)
        self.page.insert_text((x, self.y), text, fontname=fontname, fontsize=fontsize, color=color)
        self.y += fontsize * LINE_GAP

    def heading(self, text: str, fontsize: float = 14):
        # keep the heading together with at least two lines of body text
        self.ensure_space(fontsize * LINE_GAP + 3 * 11 * LINE_GAP)
        self.y += 6
        self.page.insert_text((MARGIN, self.y), text, fontname=BOLD, fontsize=fontsize)
        self.y += fontsize * LINE_GAP

    def paragraph(self, text: str, fontsize: float = 11, indent: float = 0, fontname: str = REGULAR):
        for line in wrap_text(text, self.text_width - indent, fontname, fontsize):
            self.ensure_space(fontsize * LINE_GAP)
            if line:
                self.page.insert_text((MARGIN + indent, self.y), line, fontname=fontname, fontsize=fontsize)
            self.y += fontsize * LINE_GAP
        self.y += fontsize * 0.6

    def skip(self, amount: float):
        self.y += amount


class PDFGenerator:
    """Writes notes packages to <output_dir>/<job_id>.pdf"""

    def __init__(self, output_dir: str = "outputs"):
        self.output_dir = Path(output_dir)

    def pdf_path(self, job_id: str) -> Path:
        return self.output_dir / f"{job_id}.pdf"

    def delete_pdf(self, job_id: str) -> bool:
        path = self.pdf_path(job_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Deleted PDF for job {job_id}: {path}")
        return True

    def generate_pdf(self, package: NotesPackage) -> str:
        os.makedirs(self.output_dir, exist_ok=True)
        output_path = self.pdf_path(package.job_id)

        doc = fitz.open()
        try:
            self._render(doc, package)
            doc.save(str(output_path))
            page_count = doc.page_count
        except Exception as e:
            logger.error(f"✗ Failed to generate PDF for job {package.job_id}: {e}")
            raise
        finally:
            doc.close()

        logger.info(f"✓ Generated PDF for job {package.job_id}: {output_path} ({page_count} pages)")
        return str(output_path)

    def _render(self, doc: fitz.Document, package: NotesPackage):
        cursor = _Cursor(doc, fitz.paper_rect("a4"))

        title_pages = [page for page in package.pages if isinstance(page, TitlePage)]
        toc_pages = [page for page in package.pages if isinstance(page, TOCPage)]
        topic_pages = package.topic_pages()

        for page in title_pages:
            cursor.new_page()
            self._add_title_page(cursor, page)

        # reserve the contents pages, they are filled once topic pages are placed
        toc_page_numbers = []
        for page in toc_pages:
            for _ in range(max(1, math.ceil(len(page.topics) / TOC_ROWS_PER_PAGE))):
                toc_page_numbers.append(cursor.new_page())

        topic_start_pages: Dict[str, int] = {}
        for page in topic_pages:
            topic_start_pages.setdefault(page.topic_title, cursor.new_page())
            self._add_topic_page(cursor, page)

        if toc_pages:
            self._add_toc(doc, cursor, toc_pages[0], toc_page_numbers, topic_start_pages)

        self._add_page_numbers_and_footer(doc, package)

    def _add_title_page(self, cursor: _Cursor, page: TitlePage):
        cursor.skip(40)
        cursor.centered(f"{page.subject} - Class {page.class_grade}", 24)
        cursor.centered(page.board, 18)
        cursor.skip(20)
        cursor.centered(page.chapter, 28, color=ACCENT)
        cursor.skip(30)

        cursor.heading("Introduction", 16)
        cursor.paragraph(page.introduction, 12)
        cursor.heading("Why Study This Chapter?", 16)
        cursor.paragraph(page.why_study, 12)
        cursor.heading("Daily Life Example", 16)
        cursor.paragraph(page.daily_life_example, 12)

    def _add_toc(
        self,
        doc: fitz.Document,
        cursor: _Cursor,
        page: TOCPage,
        page_numbers: List[int],
        topic_start_pages: Dict[str, int],
    ):
        rows: List[Tuple[str, str, str]] = [
            (f"{index}.", topic, str(topic_start_pages.get(topic, index + 2)))
            for index, topic in enumerate(page.topics, 1)
        ]

        for offset, page_number in enumerate(page_numbers):
            pdf_page = doc[page_number - 1]
            y = TOP

            if offset == 0:
                title = "Table of Contents"
                length = fitz.get_text_length(title, fontname=BOLD, fontsize=20)
                pdf_page.insert_text(((cursor.width - length) / 2, y), title, fontname=BOLD, fontsize=20)
                y += 40

            chunk = rows[offset * TOC_ROWS_PER_PAGE:(offset + 1) * TOC_ROWS_PER_PAGE]
            for number, topic, reference in chunk:
                pdf_page.insert_text((MARGIN, y), number, fontname=REGULAR, fontsize=13)
                pdf_page.insert_text((MARGIN + 24, y), topic, fontname=REGULAR, fontsize=13)
                ref_length = fitz.get_text_length(reference, fontname=REGULAR, fontsize=13)
                pdf_page.insert_text((cursor.width - MARGIN - ref_length, y), reference, fontname=REGULAR, fontsize=13)
                y += 20

    def _add_topic_page(self, cursor: _Cursor, page: TopicPage):
        cursor.centered(page.topic_title, 18, color=ACCENT)
        cursor.skip(10)

        cursor.heading("Definition:")
        cursor.paragraph(page.definition)

        cursor.heading("Detailed Explanation:")
        cursor.paragraph(page.explanation)

        if page.comparison:
            cursor.heading("Comparison:")
            cursor.paragraph(page.comparison)

        cursor.heading("Detailed Example:")
        cursor.paragraph(page.example_detailed)

        cursor.heading("Quick Example:")
        cursor.paragraph(page.example_short)

        cursor.heading("Practice Questions:")
        for index, question in enumerate(page.questions, 1):
            cursor.paragraph(f"Q{index} ({question.difficulty.upper()}):", fontname=BOLD)
            cursor.paragraph(question.q, indent=14)
            cursor.paragraph("Answer:", indent=14, fontname=BOLD)
            cursor.paragraph(question.a, indent=28)

    def _add_page_numbers_and_footer(self, doc: fitz.Document, package: NotesPackage):
        footer = (
            f"AI Notes Maker — Generated on {self._format_date(package.metadata.generated_at)} "
            f"— Job ID: {package.job_id}"
        )

        for number, page in enumerate(doc, 1):
            width, height = page.rect.width, page.rect.height

            label = f"Page {number}"
            length = fitz.get_text_length(label, fontname=REGULAR, fontsize=10)
            page.insert_text(((width - length) / 2, height - 40), label, fontname=REGULAR, fontsize=10)

            length = fitz.get_text_length(footer, fontname=REGULAR, fontsize=8)
            page.insert_text(((width - length) / 2, height - 24), footer, fontname=REGULAR, fontsize=8, color=GREY)

    def _format_date(self, value: str) -> str:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%d/%m/%Y")
        except ValueError:
            return value

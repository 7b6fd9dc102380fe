"""
Print Export
============
Builds the printable view of a course and renders it to PDF with PyMuPDF.

Document order:
    course header
    for each question (filtered + sorted like the course list):
        heading: Q<number> (or running index), title, year, type
        pages in page_order: image scaled to the text width, then text
        Solutions (optional): per group its title, then its parts in order
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional

import fitz  # PyMuPDF

from . import grouping
from .models import PrintDocument, PrintQuestion
from .storage import UploadStorage

if TYPE_CHECKING:
    from .crud import ArchiveService

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = fitz.paper_size("a4")
MARGIN = 50
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN

FONT = "helv"
FONT_BOLD = "hebo"
BODY_SIZE = 10.5
LINE_SPACING = 1.4


# ─── Document Assembly ───────────────────────────────────────────────────────


def build_print_document(
    service: "ArchiveService",
    course_id: int,
    years: Iterable[str] = (),
    types: Iterable[str] = (),
    tags: Iterable[str] = (),
    sort_by: str = "question_number",
    order: str = "asc",
    include_solutions: bool = True,
) -> PrintDocument:
    """
    Collect a course's questions for printing. A question is kept when its
    year is in ``years`` and its type in ``types`` (empty filter = all) and
    it carries every tag in ``tags``.
    """
    course = service.get_course(course_id)
    years = {str(y) for y in years if str(y).strip()}
    types = {t for t in types if t}
    tags = [t for t in tags if t]

    questions = []
    for q in service.list_questions(course_id, sort_by=sort_by, order=order):
        if years and str(q.get("year")) not in years:
            continue
        if types and q.get("type") not in types:
            continue
        tag_names = {t["name"] for t in q.get("tags", [])}
        if not all(t in tag_names for t in tags):
            continue

        detail = service.get_question(q["id"])
        number = detail.get("question_number")
        questions.append(PrintQuestion(
            id=detail["id"],
            label=f"Q{number}" if number else str(len(questions) + 1),
            title=detail.get("title") or "Untitled Question",
            year=detail.get("year"),
            type=detail.get("type"),
            pages=detail["pages"],
            solution_groups=(
                grouping.group_solutions(detail["solutions"])
                if include_solutions else []
            ),
        ))

    logger.info(
        f"Print document for course {course_id}: {len(questions)} questions, "
        f"solutions={'on' if include_solutions else 'off'}"
    )
    return PrintDocument(
        course=course,
        include_solutions=include_solutions,
        questions=questions,
    )


# ─── Rendering ───────────────────────────────────────────────────────────────


class _Layout:
    """Top-to-bottom flow layout over A4 pages."""

    def __init__(self, doc: fitz.Document):
        self.doc = doc
        self.page = None
        self.y = 0.0
        self.new_page()

    def new_page(self):
        self.page = self.doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        self.y = MARGIN

    def ensure(self, height: float):
        if self.y + height > PAGE_HEIGHT - MARGIN and self.y > MARGIN:
            self.new_page()

    def space(self, height: float):
        self.y += height

    def text(self, text: str, size: float = BODY_SIZE, bold: bool = False, indent: float = 0):
        font = FONT_BOLD if bold else FONT
        width = CONTENT_WIDTH - indent
        line_height = size * LINE_SPACING
        for line in _wrap(text, font, size, width):
            self.ensure(line_height)
            self.page.insert_text(
                fitz.Point(MARGIN + indent, self.y + size),
                line,
                fontname=font,
                fontsize=size,
            )
            self.y += line_height

    def rule(self, width: float = 0.8):
        self.ensure(6)
        self.page.draw_line(
            fitz.Point(MARGIN, self.y),
            fitz.Point(PAGE_WIDTH - MARGIN, self.y),
            width=width,
        )
        self.y += 6

    def image(self, path: Path) -> bool:
        try:
            pix = fitz.Pixmap(str(path))
        except RuntimeError as e:
            logger.warning(f"Skipping unreadable image {path}: {e}")
            return False

        max_height = PAGE_HEIGHT - 2 * MARGIN
        width = min(CONTENT_WIDTH, float(pix.width))
        height = pix.height * width / pix.width
        if height > max_height:
            width = width * max_height / height
            height = max_height

        self.ensure(height)
        rect = fitz.Rect(MARGIN, self.y, MARGIN + width, self.y + height)
        self.page.insert_image(rect, filename=str(path), keep_proportion=True)
        self.y += height + 8
        return True


def _wrap(text: str, font: str, size: float, width: float) -> list[str]:
    lines: list[str] = []
    for paragraph in (text or "").splitlines() or [""]:
        words = paragraph.split()
        if not words:
            lines.append("")
            continue
        current = words[0]
        for word in words[1:]:
            candidate = f"{current} {word}"
            if fitz.get_text_length(candidate, fontname=font, fontsize=size) <= width:
                current = candidate
            else:
                lines.append(current)
                current = word
        lines.append(current)
    return lines


def _render_part(layout: _Layout, part: dict, storage: UploadStorage, indent: float = 0):
    image_path = part.get("image_path")
    if image_path:
        resolved = storage.resolve(image_path)
        if resolved and resolved.is_file():
            layout.image(resolved)
        else:
            logger.warning(f"Image missing from storage, skipped in print: {image_path}")
    if part.get("content"):
        layout.text(part["content"], indent=indent)
        layout.space(6)


def render_pdf(document: PrintDocument, storage: UploadStorage) -> fitz.Document:
    """Lay the print document out as a PyMuPDF document."""
    doc = fitz.open()
    layout = _Layout(doc)

    course = document.course
    layout.text(course.get("title") or "", size=22, bold=True)
    layout.text(
        f"Academic Archive | {course.get('code') or ''} | {date.today().isoformat()}",
        size=9,
    )
    layout.rule(width=2)
    layout.space(12)

    for index, question in enumerate(document.questions):
        if index:
            layout.space(18)
        heading = f"{question.label}  {question.title}"
        meta = "  ".join(str(v) for v in (question.year, question.type) if v)
        layout.text(heading, size=15, bold=True)
        if meta:
            layout.text(meta, size=9)
        layout.rule()

        for page in question.pages:
            _render_part(layout, page, storage)

        if document.include_solutions and question.solution_groups:
            layout.space(8)
            layout.text("Solutions", size=12, bold=True)
            for group in question.solution_groups:
                if group.title:
                    layout.text(group.title, size=11, bold=True, indent=10)
                for part in group.parts:
                    _render_part(layout, part, storage, indent=10)
                layout.space(6)

    doc.set_metadata({
        "title": f"{course.get('code') or ''} {course.get('title') or ''}".strip(),
        "creator": "exam-archive",
    })
    return doc


def render_pdf_bytes(document: PrintDocument, storage: UploadStorage) -> bytes:
    doc = render_pdf(document, storage)
    try:
        return doc.tobytes()
    finally:
        doc.close()


def write_pdf(
    document: PrintDocument,
    storage: UploadStorage,
    output_path: str,
) -> Optional[str]:
    """Render and save to ``output_path``. Returns the path written."""
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    doc = render_pdf(document, storage)
    try:
        doc.save(output_path)
    finally:
        doc.close()
    logger.info(f"Print PDF written: {output_path} ({len(document.questions)} questions)")
    return output_path

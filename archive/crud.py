"""
CRUD Service Layer
==================
High-level operations that coordinate SQLite + the upload folder.
This is the ONLY layer that should be called from API endpoints, the
static exporter and the CLI.

File lifecycle rules:
    - Uploads are written first, then the owning rows are inserted in one
      transaction. If the insert fails, the new files are removed again.
    - Deletes resolve the affected file paths, delete the rows, and only
      then delete the files. Files already gone are skipped.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, ValidationError
from werkzeug.datastructures import FileStorage

from . import grouping
from . import tags as tag_ops
from .database import Database
from .errors import NotFound, ValidationFailed
from .models import (
    CourseCreate,
    CourseOrder,
    CourseUpdate,
    QuestionCreate,
    QuestionUpdate,
)
from .storage import UploadStorage

logger = logging.getLogger(__name__)


def _validate(model_cls: type[BaseModel], data: Mapping[str, Any]):
    try:
        return model_cls.model_validate(dict(data))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationFailed(problems) from e


def _tag_payload(data: Mapping[str, Any]) -> Optional[dict]:
    tags = tag_ops.resolve_tag_input(data.get("tags"))
    return tags.model_dump() if tags is not None else None


class ArchiveService:
    """Operations on one archive (database file + upload folder)."""

    def __init__(self, db: Database, storage: UploadStorage):
        self.db = db
        self.storage = storage

    # ─── Courses ─────────────────────────────────────────────────────────

    def list_courses(self) -> list[dict]:
        return self.db.list_courses()

    def get_course(self, course_id: int) -> dict:
        course = self.db.get_course(course_id)
        if not course:
            raise NotFound("course", course_id)
        return course

    def create_course(self, data: Mapping[str, Any]) -> dict:
        """Create a course. ``code`` and ``title`` are required."""
        payload = _validate(CourseCreate, data)
        course_id = self.db.insert_course(
            payload.code, payload.title, payload.description
        )
        logger.info(f"Course created: id={course_id} {payload.code} - {payload.title}")
        return {
            "id": course_id,
            "code": payload.code,
            "title": payload.title,
            "description": payload.description,
        }

    def update_course(self, course_id: int, data: Mapping[str, Any]) -> bool:
        payload = _validate(CourseUpdate, data)
        fields = payload.model_dump(exclude_unset=True)
        if not self.db.update_course(course_id, **fields):
            raise NotFound("course", course_id)
        logger.info(f"Course updated: id={course_id} fields={sorted(fields)}")
        return True

    def reorder_courses(self, orders: Iterable[Mapping[str, Any]]) -> int:
        """Apply a list of {id, sort_order} in a single transaction."""
        if orders is None:
            raise ValidationFailed("orders: field required")
        try:
            items = [CourseOrder.model_validate(dict(o)) for o in orders]
        except (ValidationError, TypeError, ValueError) as e:
            raise ValidationFailed(f"orders: {e}") from e
        count = self.db.reorder_courses((o.id, o.sort_order) for o in items)
        logger.info(f"Courses reordered: {count} rows")
        return count

    def delete_course(self, course_id: int) -> int:
        """
        Delete a course:
          1. Collect every image path under its questions
          2. Delete from SQLite (cascades to questions/pages/solutions/links)
          3. Delete the image files
        Returns the number of files removed.
        """
        image_paths = self.db.delete_course(course_id)
        if image_paths is None:
            raise NotFound("course", course_id)
        removed = self.storage.delete_files(image_paths)
        logger.info(
            f"Course deleted: id={course_id}, "
            f"{removed}/{len(image_paths)} image files removed"
        )
        return removed

    # ─── Questions: Read ─────────────────────────────────────────────────

    def list_questions(
        self,
        course_id: int,
        search: Optional[str] = None,
        sort_by: Optional[str] = None,
        order: Optional[str] = None,
    ) -> list[dict]:
        return self.db.list_questions(
            course_id,
            search=search or "",
            sort_by=sort_by or "created_at",
            order=order or "desc",
        )

    def get_question(self, question_id: int) -> dict:
        """
        Question detail: columns + tags + pages (legacy fallback applied)
        + flat solutions + solution_groups.
        """
        question = self.db.get_question(question_id)
        if not question:
            raise NotFound("question", question_id)

        question["pages"] = grouping.resolve_pages(question, question["pages"])
        question["solutions"] = grouping.sort_parts(question["solutions"])
        question["solution_groups"] = [
            g.model_dump() for g in grouping.group_solutions(question["solutions"])
        ]
        return question

    def recent_questions(self) -> list[dict]:
        return self.db.recent_questions()

    def unsolved_questions(self) -> list[dict]:
        return self.db.unsolved_questions()

    def list_tags(self) -> list[dict]:
        return self.db.list_tags()

    def get_stats(self) -> dict:
        return self.db.get_stats()

    # ─── Questions: Write ────────────────────────────────────────────────

    def create_question(
        self,
        data: Mapping[str, Any],
        images: Iterable[FileStorage] = (),
    ) -> int:
        """
        Create a question with its pages and tags (one transaction).

        Each uploaded image becomes a page (order 0..N-1); the notes are the
        text of the first page. Without images, non-empty notes become a
        single text page.
        """
        payload = _validate(
            QuestionCreate,
            dict(data, tags=_tag_payload(data)),
        )
        if not self.db.get_course(payload.course_id):
            raise ValidationFailed(f"course_id: course {payload.course_id} does not exist")

        image_paths = self.storage.save_uploads(images)
        values = payload.row_values()
        try:
            with self.db.connection() as conn:
                question_id = self.db.insert_question(conn, values)

                if image_paths or values["notes"]:
                    for part in grouping.plan_parts(0, image_paths, values["notes"]):
                        self.db.insert_page(
                            conn, question_id,
                            part["image_path"], part["content"], part["page_order"],
                        )

                if payload.tags is not None:
                    tag_ops.link_tags(conn, question_id, payload.tags.names())
        except Exception:
            logger.error("Question insert failed, removing saved uploads", exc_info=True)
            self.storage.delete_files(image_paths)
            raise

        logger.info(
            f"Question created: id={question_id} course={payload.course_id} "
            f"pages_from_images={len(image_paths)}"
        )
        return question_id

    def update_question(self, question_id: int, data: Mapping[str, Any]) -> bool:
        """
        Update question fields present in ``data``. When a tag field is
        present the question's tag links are fully replaced.
        """
        payload = _validate(
            QuestionUpdate,
            dict(data, tags=_tag_payload(data)),
        )
        fields = payload.model_dump(exclude_unset=True, exclude={"tags"})
        if "difficulty" in fields and fields["difficulty"] is None:
            fields["difficulty"] = 0

        with self.db.connection() as conn:
            if not self.db.update_question(conn, question_id, **fields):
                raise NotFound("question", question_id)
            if payload.tags is not None:
                tag_ops.replace_tags(conn, question_id, payload.tags.names())

        logger.info(f"Question updated: id={question_id} fields={sorted(fields)}")
        return True

    def delete_question(self, question_id: int) -> int:
        """Delete a question, its rows and all its image files."""
        image_paths = self.db.delete_question(question_id)
        if image_paths is None:
            raise NotFound("question", question_id)
        removed = self.storage.delete_files(image_paths)
        logger.info(f"Question deleted: id={question_id}, {removed} image files removed")
        return removed

    # ─── Pages ───────────────────────────────────────────────────────────

    def add_pages(
        self,
        question_id: int,
        content: Optional[str] = None,
        images: Iterable[FileStorage] = (),
    ) -> list[int]:
        """
        Append pages to a question. N images → N pages after the existing
        ones, the first carrying ``content``; no images → one text page.
        Returns the new page ids.
        """
        self._require_question(question_id)
        image_paths = self.storage.save_uploads(images)
        try:
            with self.db.connection() as conn:
                next_order = self.db.count_pages(conn, question_id)
                page_ids = [
                    self.db.insert_page(
                        conn, question_id,
                        part["image_path"], part["content"], part["page_order"],
                    )
                    for part in grouping.plan_parts(next_order, image_paths, content)
                ]
        except Exception:
            logger.error(
                f"Page insert failed for question {question_id}, removing saved uploads",
                exc_info=True,
            )
            self.storage.delete_files(image_paths)
            raise

        logger.info(f"Pages added to question {question_id}: ids={page_ids}")
        return page_ids

    def update_page(
        self,
        page_id: int,
        content: Optional[str],
        image: Optional[FileStorage] = None,
    ) -> bool:
        """Update page text; a new image replaces (and deletes) the old one."""
        new_path = self.storage.save_upload(image) if image else None
        try:
            found, old_path = self.db.update_page(page_id, content, new_path)
        except Exception:
            self.storage.delete_file(new_path)
            raise
        if not found:
            self.storage.delete_file(new_path)
            raise NotFound("page", page_id)
        if old_path and old_path != new_path:
            self.storage.delete_file(old_path)
        logger.info(f"Page updated: id={page_id} image_replaced={bool(new_path)}")
        return True

    def delete_page(self, page_id: int) -> bool:
        found, image_path = self.db.delete_page(page_id)
        if not found:
            raise NotFound("page", page_id)
        self.storage.delete_file(image_path)
        logger.info(f"Page deleted: id={page_id}")
        return True

    # ─── Solutions ───────────────────────────────────────────────────────

    def add_solution(
        self,
        question_id: int,
        content: Optional[str] = None,
        title: Optional[str] = None,
        images: Iterable[FileStorage] = (),
    ) -> dict:
        """
        Add one logical solution. Every uploaded image becomes a part of a
        fresh group, ordered after all existing solution rows of the
        question; only the first part carries ``content``.
        """
        self._require_question(question_id)
        group_id = grouping.new_group_id()
        title = title or None
        image_paths = self.storage.save_uploads(images)
        try:
            with self.db.connection() as conn:
                next_order = self.db.count_solutions(conn, question_id)
                solution_ids = [
                    self.db.insert_solution(
                        conn, question_id,
                        part["image_path"], part["content"], title,
                        group_id, part["page_order"],
                    )
                    for part in grouping.plan_parts(next_order, image_paths, content)
                ]
        except Exception:
            logger.error(
                f"Solution insert failed for question {question_id}, removing saved uploads",
                exc_info=True,
            )
            self.storage.delete_files(image_paths)
            raise

        logger.info(
            f"Solution added to question {question_id}: group={group_id} "
            f"parts={len(solution_ids)}"
        )
        return {"group_id": group_id, "ids": solution_ids}

    def update_solution(
        self,
        solution_id: int,
        content: Optional[str],
        title: Optional[str],
        image: Optional[FileStorage] = None,
    ) -> bool:
        new_path = self.storage.save_upload(image) if image else None
        try:
            found, old_path = self.db.update_solution(solution_id, content, title, new_path)
        except Exception:
            self.storage.delete_file(new_path)
            raise
        if not found:
            self.storage.delete_file(new_path)
            raise NotFound("solution", solution_id)
        if old_path and old_path != new_path:
            self.storage.delete_file(old_path)
        logger.info(f"Solution updated: id={solution_id} image_replaced={bool(new_path)}")
        return True

    def delete_solution(self, solution_id: int) -> bool:
        found, image_path = self.db.delete_solution(solution_id)
        if not found:
            raise NotFound("solution", solution_id)
        self.storage.delete_file(image_path)
        logger.info(f"Solution deleted: id={solution_id}")
        return True

    # ─── Helpers ─────────────────────────────────────────────────────────

    def _require_question(self, question_id: int):
        with self.db.connection() as conn:
            if not self.db.get_question_row(conn, question_id):
                raise NotFound("question", question_id)

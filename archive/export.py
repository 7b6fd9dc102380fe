"""
Static Export
=============
Flattens the archive into one JSON file per GET endpoint so the UI can be
served read-only from a plain file host (requests get ``.json`` appended).

Output Layout (under the export directory):
    stats.json
    tags.json
    courses.json
    courses/<id>/questions.json
    questions/recent.json
    questions/unsolved.json
    questions/<id>.json

Uploaded images are not copied; publish the uploads/ folder alongside.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, Optional

from .crud import ArchiveService

logger = logging.getLogger(__name__)


def _write_json(export_dir: Path, endpoint: str, data) -> Path:
    path = export_dir / f"{endpoint}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, default=str)
    logger.debug(f"Exported {endpoint}.json")
    return path


def export_static(
    service: ArchiveService,
    export_dir: str,
    progress_callback: Optional[Callable[[str], None]] = None,
) -> list[Path]:
    """
    Write every GET response of the API into ``export_dir``.
    Returns the list of files written.
    """
    out = Path(export_dir)
    out.mkdir(parents=True, exist_ok=True)
    logger.info(f"Exporting archive to static JSON: {out}")

    written: list[Path] = []

    def emit(endpoint: str, data):
        written.append(_write_json(out, endpoint, data))
        if progress_callback:
            progress_callback(endpoint)

    emit("stats", service.get_stats())
    emit("questions/recent", service.recent_questions())
    emit("questions/unsolved", service.unsolved_questions())
    emit("tags", service.list_tags())

    courses = service.list_courses()
    emit("courses", courses)
    for course in courses:
        emit(
            f"courses/{course['id']}/questions",
            service.list_questions(course["id"], sort_by="question_number", order="asc"),
        )

    for question_id in service.db.question_ids():
        emit(f"questions/{question_id}", service.get_question(question_id))

    logger.info(f"Static export completed: {len(written)} files")
    return written

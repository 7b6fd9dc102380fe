"""
Tag Reconciliation
==================
Tags are global, uniquely named (case-sensitive) and shared between
questions. A question's links are written from the submitted tag list:
insert-if-absent, then link. Updates replace the whole link set. Tag
rows themselves are never deleted, even when nothing links to them.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Optional, Union

from .models import CommaSeparatedTags, JsonArrayTags

logger = logging.getLogger(__name__)


def resolve_tag_input(value: Any) -> Optional[Union[JsonArrayTags, CommaSeparatedTags]]:
    """
    Classify submitted tags once, at the request boundary.

    ``None`` means no tag field was sent. Lists and strings holding a JSON
    array become ``JsonArrayTags``; every other string is split on commas.
    Any other value (an object, a number) carries no tags.
    """
    if value is None:
        return None
    if isinstance(value, (JsonArrayTags, CommaSeparatedTags)):
        return value
    if isinstance(value, (list, tuple)):
        return JsonArrayTags(items=list(value))
    if not isinstance(value, str):
        logger.warning(f"Ignoring tag input of type {type(value).__name__}: {value!r}")
        return JsonArrayTags(items=[])

    raw = value
    if raw.lstrip().startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Tag input is not valid JSON, splitting on commas: {raw!r}")
            parsed = None
        if isinstance(parsed, list):
            return JsonArrayTags(items=parsed)
    return CommaSeparatedTags(raw=raw)


def ensure_tag(conn: sqlite3.Connection, name: str) -> int:
    """Return the id of tag ``name``, creating it if absent."""
    conn.execute("INSERT OR IGNORE INTO tags (name) VALUES (?)", (name,))
    row = conn.execute("SELECT id FROM tags WHERE name = ?", (name,)).fetchone()
    return row["id"]


def link_tags(conn: sqlite3.Connection, question_id: int, names: list[str]) -> list[int]:
    """Create missing tags and link them to the question. Returns tag ids."""
    tag_ids = []
    for name in names:
        tag_id = ensure_tag(conn, name)
        conn.execute(
            "INSERT OR IGNORE INTO question_tags (question_id, tag_id) VALUES (?, ?)",
            (question_id, tag_id),
        )
        tag_ids.append(tag_id)
    return tag_ids


def replace_tags(conn: sqlite3.Connection, question_id: int, names: list[str]) -> list[int]:
    """Make the question's links exactly ``names`` (full replace, not a diff)."""
    conn.execute("DELETE FROM question_tags WHERE question_id = ?", (question_id,))
    return link_tags(conn, question_id, names)

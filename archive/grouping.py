"""
Grouping & Ordering
===================
Shapes flat page / solution rows into their display order.

Solutions are stored one row per part. Rows sharing a ``group_id`` form
one logical solution (e.g. "Method 2" spread over three photos). Rows
written before grouping existed have no ``group_id``; each of those is a
group of its own keyed ``legacy-<id>``.

    rows (any order)
        → sort by (page_order, created_at, id)
        → bucket by group key, in first-seen order
        → [SolutionGroup(key, title, parts), ...]

Inserts are planned here too: ``plan_parts`` assigns page_order values and
decides which part carries the submitted text.
"""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

from .models import SolutionGroup

LEGACY_PAGE_ID = "legacy"


def _sort_key(row: dict):
    return (
        row.get("page_order") or 0,
        row.get("created_at") or "",
        row.get("id") or 0,
    )


def group_key(row: dict) -> str:
    """The row's group_id, or ``legacy-<id>`` for ungrouped rows."""
    return row.get("group_id") or f"legacy-{row['id']}"


def sort_parts(rows: Sequence[dict]) -> list[dict]:
    return sorted(rows, key=_sort_key)


def group_solutions(rows: Sequence[dict]) -> list[SolutionGroup]:
    """
    Group a question's solution rows into ordered multi-part solutions.

    A group's title is the title of its first part; groups are emitted in
    the order their earliest part sorts.
    """
    groups: dict[str, SolutionGroup] = {}
    for row in sort_parts(rows):
        key = group_key(row)
        group = groups.get(key)
        if group is None:
            group = SolutionGroup(key=key, title=row.get("title"))
            groups[key] = group
        group.parts.append(row)
    return list(groups.values())


def resolve_pages(question: dict, pages: Sequence[dict]) -> list[dict]:
    """
    Display pages of a question. Questions from before paging existed have
    no page rows; their legacy image/notes become one virtual page.
    """
    if pages:
        return sort_parts(pages)
    if question.get("image_path") or question.get("notes"):
        return [{
            "id": LEGACY_PAGE_ID,
            "question_id": question.get("id"),
            "image_path": question.get("image_path"),
            "content": question.get("notes"),
            "page_order": 0,
        }]
    return []


def new_group_id() -> str:
    return uuid.uuid4().hex


def plan_parts(
    next_order: int,
    image_paths: Sequence[str],
    content: Optional[str],
) -> list[dict]:
    """
    Rows to insert for one upload batch.

    One row per image at successive page_order values starting from
    ``next_order``; only the first carries ``content``. Without images a
    single text-only row is planned.
    """
    if not image_paths:
        return [{"image_path": None, "content": content or "", "page_order": next_order}]
    return [
        {
            "image_path": path,
            "content": (content or "") if index == 0 else "",
            "page_order": next_order + index,
        }
        for index, path in enumerate(image_paths)
    ]

"""
Data Models
===========
Pydantic models for validated request input and derived structures
(solution groups, print documents). Database rows themselves travel as
plain dicts, exactly as sqlite3.Row → dict produces them.
"""

from __future__ import annotations

from datetime import datetime
from enum import IntEnum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, computed_field, field_validator


# ─── Enums ────────────────────────────────────────────────────────────────────


class Difficulty(IntEnum):
    """Question difficulty as stored in questions.difficulty."""
    UNDEFINED = 0
    EASY = 1
    MEDIUM = 3
    HARD = 5


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ─── Course Input ─────────────────────────────────────────────────────────────


class CourseCreate(BaseModel):
    code: str
    title: str
    description: str = ""

    @field_validator("code", "title", mode="before")
    @classmethod
    def _required_text(cls, value):
        if value is None or not str(value).strip():
            raise ValueError("must not be empty")
        return str(value).strip()

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value):
        return value or ""


class CourseUpdate(BaseModel):
    """Partial course update. Only fields present in the request are written."""
    code: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None

    @field_validator("code", "title", mode="before")
    @classmethod
    def _non_empty(cls, value):
        if value is not None and not str(value).strip():
            raise ValueError("must not be empty")
        return str(value).strip() if value is not None else None


class CourseOrder(BaseModel):
    id: int
    sort_order: int


# ─── Tag Input ────────────────────────────────────────────────────────────────


class JsonArrayTags(BaseModel):
    """Tags submitted as a JSON array (or an actual list)."""
    kind: Literal["json_array"] = "json_array"
    items: list[Any] = Field(default_factory=list)

    def names(self) -> list[str]:
        return _unique_names(
            str(item) for item in self.items if item is not None
        )


class CommaSeparatedTags(BaseModel):
    """Tags submitted as a raw ``"a, b, c"`` string."""
    kind: Literal["comma_separated"] = "comma_separated"
    raw: str = ""

    def names(self) -> list[str]:
        return _unique_names(self.raw.split(","))


TagInput = Annotated[
    Union[JsonArrayTags, CommaSeparatedTags],
    Field(discriminator="kind"),
]


def _unique_names(candidates) -> list[str]:
    names: list[str] = []
    for candidate in candidates:
        name = candidate.strip()
        if name and name not in names:
            names.append(name)
    return names


# ─── Question Input ──────────────────────────────────────────────────────────


class QuestionFields(BaseModel):
    """Editable question columns shared by create and update."""
    title: Optional[str] = None
    notes: Optional[str] = None
    references_text: Optional[str] = None
    difficulty: Optional[int] = None
    year: Optional[int] = None
    type: Optional[str] = None
    question_number: Optional[int] = None

    @field_validator("difficulty", "year", "question_number", mode="before")
    @classmethod
    def _blank_int(cls, value):
        return _blank_to_none(value)

    @field_validator("difficulty")
    @classmethod
    def _known_difficulty(cls, value):
        if value is None:
            return value
        allowed = [d.value for d in Difficulty]
        if value not in allowed:
            raise ValueError(f"difficulty must be one of {allowed}")
        return value


class QuestionCreate(QuestionFields):
    course_id: int
    tags: Optional[TagInput] = None

    @field_validator("course_id", mode="before")
    @classmethod
    def _course_required(cls, value):
        if _blank_to_none(value) is None:
            raise ValueError("course_id is required")
        return value

    def row_values(self) -> dict:
        """Column values for the INSERT, with creation defaults applied."""
        return {
            "course_id": self.course_id,
            "title": self.title or "Untitled",
            "notes": self.notes,
            "references_text": self.references_text,
            "difficulty": self.difficulty or Difficulty.UNDEFINED.value,
            "year": self.year or datetime.now().year,
            "type": self.type or None,
            "question_number": self.question_number,
        }


class QuestionUpdate(QuestionFields):
    tags: Optional[TagInput] = None


# ─── Derived Structures ──────────────────────────────────────────────────────


class SolutionGroup(BaseModel):
    """
    One logical solution: every solution row sharing a group key,
    in page_order.
    """
    key: str
    title: Optional[str] = None
    parts: list[dict] = Field(default_factory=list)

    @computed_field
    @property
    def part_count(self) -> int:
        return len(self.parts)


class PrintQuestion(BaseModel):
    """A question as it appears in the printable course view."""
    id: int
    label: str
    title: str
    year: Optional[int] = None
    type: Optional[str] = None
    pages: list[dict] = Field(default_factory=list)
    solution_groups: list[SolutionGroup] = Field(default_factory=list)


class PrintDocument(BaseModel):
    """Printable view of one course."""
    course: dict
    include_solutions: bool = True
    questions: list[PrintQuestion] = Field(default_factory=list)

    @computed_field
    @property
    def image_count(self) -> int:
        count = 0
        for q in self.questions:
            count += sum(1 for p in q.pages if p.get("image_path"))
            if self.include_solutions:
                count += sum(
                    1
                    for g in q.solution_groups
                    for part in g.parts
                    if part.get("image_path")
                )
        return count

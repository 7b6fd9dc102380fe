"""
SQLite Database Layer
=====================
Persistent storage for courses, questions, pages, solutions and tags.

A ``Database`` object owns the path to one SQLite file and hands out
short-lived connections. Every ``with db.connection()`` block is one
transaction: committed on success, rolled back on any exception.

Schema changes are an ordered list of versioned migrations recorded in
``schema_version``. Column-adding steps inspect ``PRAGMA table_info``
first, so a database created by an older release upgrades cleanly.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = ("year", "difficulty", "created_at", "title", "question_number")
DEFAULT_SORT_COLUMN = "created_at"
DASHBOARD_LIMIT = 5

_QUESTION_COLUMNS = {
    "title", "notes", "references_text", "difficulty", "year", "type",
    "question_number",
}
_COURSE_COLUMNS = {"code", "title", "description"}


# ─── Migrations ───────────────────────────────────────────────────────────────


_BASE_TABLES = (
    """CREATE TABLE IF NOT EXISTS courses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        code TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )""",
    """CREATE TABLE IF NOT EXISTS questions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        course_id INTEGER NOT NULL,
        title TEXT,
        image_path TEXT,
        notes TEXT,
        references_text TEXT,
        difficulty INTEGER DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (course_id) REFERENCES courses(id) ON DELETE CASCADE
    )""",
    """CREATE TABLE IF NOT EXISTS solutions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        question_id INTEGER NOT NULL,
        image_path TEXT,
        content TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (question_id) REFERENCES questions(id) ON DELETE CASCADE
    )""",
    """CREATE TABLE IF NOT EXISTS tags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT UNIQUE NOT NULL,
        color TEXT
    )""",
    """CREATE TABLE IF NOT EXISTS question_tags (
        question_id INTEGER,
        tag_id INTEGER,
        PRIMARY KEY (question_id, tag_id),
        FOREIGN KEY (question_id) REFERENCES questions(id) ON DELETE CASCADE,
        FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
    )""",
)

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_questions_course_id ON questions(course_id)",
    "CREATE INDEX IF NOT EXISTS idx_pages_question_order"
    " ON question_pages(question_id, page_order)",
    "CREATE INDEX IF NOT EXISTS idx_solutions_question_order"
    " ON solutions(question_id, page_order)",
    "CREATE INDEX IF NOT EXISTS idx_question_tags_tag_id ON question_tags(tag_id)",
)


def _create_base_tables(conn: sqlite3.Connection):
    # Shape of the very first release; later columns arrive via migrations.
    for statement in _BASE_TABLES:
        conn.execute(statement)


def _add_column(table: str, column: str, ddl: str) -> Callable:
    def apply(conn: sqlite3.Connection):
        cols = {
            row["name"]
            for row in conn.execute(f"PRAGMA table_info({table})").fetchall()
        }
        if column not in cols:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
            logger.info(f"Migrated: added {table}.{column}")
    return apply


def _add_solution_group_id(conn: sqlite3.Connection):
    _add_column("solutions", "group_id", "TEXT")(conn)
    cursor = conn.execute(
        "UPDATE solutions SET group_id = 'legacy-' || id WHERE group_id IS NULL"
    )
    if cursor.rowcount:
        logger.info(f"Migrated: {cursor.rowcount} legacy solutions given own group")


def _create_question_pages(conn: sqlite3.Connection):
    conn.execute("""
        CREATE TABLE IF NOT EXISTS question_pages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            question_id INTEGER NOT NULL,
            image_path TEXT,
            content TEXT,
            page_order INTEGER DEFAULT 0,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (question_id) REFERENCES questions(id) ON DELETE CASCADE
        )
    """)


def _create_indexes(conn: sqlite3.Connection):
    for statement in _INDEXES:
        conn.execute(statement)


MIGRATIONS: list[tuple[int, str, Callable]] = [
    (1, "base tables", _create_base_tables),
    (2, "questions.year", _add_column("questions", "year", "INTEGER")),
    (3, "solutions.page_order",
     _add_column("solutions", "page_order", "INTEGER DEFAULT 0")),
    (4, "courses.sort_order",
     _add_column("courses", "sort_order", "INTEGER DEFAULT 0")),
    (5, "solutions.title", _add_column("solutions", "title", "TEXT")),
    (6, "questions.type", _add_column("questions", "type", "TEXT")),
    (7, "questions.question_number",
     _add_column("questions", "question_number", "INTEGER")),
    (8, "solutions.group_id", _add_solution_group_id),
    (9, "question_pages table", _create_question_pages),
    (10, "indexes", _create_indexes),
]


class Database:
    """Access object for one archive database file."""

    def __init__(self, db_path: str):
        self.db_path = str(db_path)

    # ─── Connection / Schema ─────────────────────────────────────────────

    @contextmanager
    def connection(self):
        """
        Context manager for database connections.
        Ensures proper commit/rollback and connection cleanup.
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init(self) -> list[int]:
        """
        Bring the schema up to date. Safe to call on every start.
        Returns the versions applied by this call.
        """
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initializing database at: {self.db_path}")

        applied = []
        with self.connection() as conn:
            # sqlite3 runs DDL in autocommit unless a transaction is open
            conn.execute("BEGIN")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    description TEXT,
                    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            done = {
                row["version"]
                for row in conn.execute("SELECT version FROM schema_version")
            }
            for version, description, apply in MIGRATIONS:
                if version in done:
                    continue
                apply(conn)
                conn.execute(
                    "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                    (version, description),
                )
                applied.append(version)
                logger.info(f"Applied migration v{version}: {description}")

        logger.info("Database schema initialized successfully")
        return applied

    def schema_version(self) -> int:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT MAX(version) AS v FROM schema_version"
            ).fetchone()
            return row["v"] or 0

    # ─── Course Queries ──────────────────────────────────────────────────

    def list_courses(self) -> list[dict]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM courses ORDER BY sort_order, title"
            ).fetchall()
            return [dict(r) for r in rows]

    def get_course(self, course_id: int) -> Optional[dict]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM courses WHERE id = ?", (course_id,)
            ).fetchone()
            return dict(row) if row else None

    def insert_course(self, code: str, title: str, description: str = "") -> int:
        """Insert a new course. Returns the course_id."""
        with self.connection() as conn:
            cursor = conn.execute(
                "INSERT INTO courses (code, title, description) VALUES (?, ?, ?)",
                (code, title, description),
            )
            return cursor.lastrowid

    def update_course(self, course_id: int, **fields) -> bool:
        """Update course fields. Returns True if row was found."""
        fields = {k: v for k, v in fields.items() if k in _COURSE_COLUMNS}
        with self.connection() as conn:
            if not fields:
                row = conn.execute(
                    "SELECT 1 FROM courses WHERE id = ?", (course_id,)
                ).fetchone()
                return row is not None
            set_clause = ", ".join(f"{k} = ?" for k in fields)
            cursor = conn.execute(
                f"UPDATE courses SET {set_clause} WHERE id = ?",
                list(fields.values()) + [course_id],
            )
            return cursor.rowcount > 0

    def reorder_courses(self, orders: Iterable[tuple[int, int]]) -> int:
        """Apply (course_id, sort_order) pairs in a single transaction."""
        count = 0
        with self.connection() as conn:
            for course_id, sort_order in orders:
                conn.execute(
                    "UPDATE courses SET sort_order = ? WHERE id = ?",
                    (sort_order, course_id),
                )
                count += 1
        return count

    def course_image_paths(self, conn: sqlite3.Connection, course_id: int) -> list[str]:
        """
        All uploaded file paths owned by a course. Walks its questions,
        because the cascading delete does not report which files existed.
        """
        paths = []
        questions = conn.execute(
            "SELECT id FROM questions WHERE course_id = ?", (course_id,)
        ).fetchall()
        for q in questions:
            paths.extend(self.question_image_paths(conn, q["id"]))
        return paths

    def delete_course(self, course_id: int) -> Optional[list[str]]:
        """
        Delete a course and everything under it.
        Returns the image paths that were associated (None if no such course).
        Caller should delete the files from filesystem.
        """
        with self.connection() as conn:
            row = conn.execute(
                "SELECT id FROM courses WHERE id = ?", (course_id,)
            ).fetchone()
            if not row:
                return None
            image_paths = self.course_image_paths(conn, course_id)
            conn.execute("DELETE FROM courses WHERE id = ?", (course_id,))
            return image_paths

    # ─── Question Queries ────────────────────────────────────────────────

    def list_questions(
        self,
        course_id: int,
        search: str = "",
        sort_by: str = DEFAULT_SORT_COLUMN,
        order: str = "desc",
    ) -> list[dict]:
        """
        Questions of a course, each annotated with solution_count,
        thumbnail_path and tags. Unknown sort columns fall back to
        created_at; anything but "asc" sorts descending.
        """
        sort_column = sort_by if sort_by in SORTABLE_COLUMNS else DEFAULT_SORT_COLUMN
        sort_order = "ASC" if (order or "").lower() == "asc" else "DESC"

        query = """
            SELECT q.*,
                (SELECT COUNT(*) FROM solutions s
                 WHERE s.question_id = q.id) AS solution_count,
                (SELECT image_path FROM question_pages qp
                 WHERE qp.question_id = q.id
                   AND qp.image_path IS NOT NULL AND qp.image_path != ''
                 ORDER BY qp.page_order ASC, qp.id ASC
                 LIMIT 1) AS thumbnail_path
            FROM questions q
            WHERE q.course_id = ?
        """
        params: list = [course_id]

        if search:
            term = "%" + _escape_like(search) + "%"
            query += """
              AND (q.title LIKE ? ESCAPE '\\'
                   OR q.notes LIKE ? ESCAPE '\\'
                   OR q.references_text LIKE ? ESCAPE '\\')
            """
            params.extend([term, term, term])

        query += f" ORDER BY q.{sort_column} {sort_order}, q.id {sort_order}"

        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()
            questions = [dict(r) for r in rows]
            for q in questions:
                q["tags"] = self.question_tags(conn, q["id"])
            return questions

    def recent_questions(self, limit: int = DASHBOARD_LIMIT) -> list[dict]:
        with self.connection() as conn:
            rows = conn.execute(
                """SELECT q.*, c.code AS course_code
                   FROM questions q
                   JOIN courses c ON q.course_id = c.id
                   ORDER BY q.created_at DESC, q.id DESC
                   LIMIT ?""",
                (limit,),
            ).fetchall()
            return [dict(r) for r in rows]

    def unsolved_questions(self, limit: int = DASHBOARD_LIMIT) -> list[dict]:
        with self.connection() as conn:
            rows = conn.execute(
                """SELECT q.*, c.code AS course_code
                   FROM questions q
                   JOIN courses c ON q.course_id = c.id
                   WHERE NOT EXISTS (
                       SELECT 1 FROM solutions s WHERE s.question_id = q.id
                   )
                   ORDER BY q.created_at DESC, q.id DESC
                   LIMIT ?""",
                (limit,),
            ).fetchall()
            return [dict(r) for r in rows]

    def question_ids(self) -> list[int]:
        with self.connection() as conn:
            rows = conn.execute("SELECT id FROM questions ORDER BY id").fetchall()
            return [r["id"] for r in rows]

    def get_question_row(self, conn: sqlite3.Connection, question_id: int) -> Optional[dict]:
        row = conn.execute(
            "SELECT * FROM questions WHERE id = ?", (question_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_question(self, question_id: int) -> Optional[dict]:
        """Fetch a question with its tags, pages and flat solution rows."""
        with self.connection() as conn:
            question = self.get_question_row(conn, question_id)
            if not question:
                return None
            question["tags"] = self.question_tags(conn, question_id)
            question["pages"] = self.question_pages(conn, question_id)
            question["solutions"] = self.question_solutions(conn, question_id)
            return question

    def insert_question(self, conn: sqlite3.Connection, values: dict) -> int:
        cursor = conn.execute(
            """INSERT INTO questions
               (course_id, title, image_path, notes, references_text,
                difficulty, year, type, question_number)
               VALUES (?, ?, NULL, ?, ?, ?, ?, ?, ?)""",
            (
                values["course_id"],
                values.get("title"),
                values.get("notes"),
                values.get("references_text"),
                values.get("difficulty", 0),
                values.get("year"),
                values.get("type"),
                values.get("question_number"),
            ),
        )
        return cursor.lastrowid

    def update_question(self, conn: sqlite3.Connection, question_id: int, **fields) -> bool:
        """Update question columns. Returns True if the row exists."""
        fields = {k: v for k, v in fields.items() if k in _QUESTION_COLUMNS}
        if not fields:
            return self.get_question_row(conn, question_id) is not None
        set_clause = ", ".join(f"{k} = ?" for k in fields)
        cursor = conn.execute(
            f"UPDATE questions SET {set_clause} WHERE id = ?",
            list(fields.values()) + [question_id],
        )
        return cursor.rowcount > 0

    def question_image_paths(self, conn: sqlite3.Connection, question_id: int) -> list[str]:
        """Legacy image, page images and solution images of one question."""
        paths = []
        row = conn.execute(
            "SELECT image_path FROM questions WHERE id = ?", (question_id,)
        ).fetchone()
        if row and row["image_path"]:
            paths.append(row["image_path"])
        for table in ("question_pages", "solutions"):
            rows = conn.execute(
                f"SELECT image_path FROM {table} WHERE question_id = ?",
                (question_id,),
            ).fetchall()
            paths.extend(r["image_path"] for r in rows if r["image_path"])
        return paths

    def delete_question(self, question_id: int) -> Optional[list[str]]:
        """
        Delete a question and return list of image paths that were associated
        (None if no such question). Caller should delete the files.
        """
        with self.connection() as conn:
            if not self.get_question_row(conn, question_id):
                return None
            image_paths = self.question_image_paths(conn, question_id)
            # CASCADE will handle pages, solutions and tag links
            conn.execute("DELETE FROM questions WHERE id = ?", (question_id,))
            return image_paths

    # ─── Tags ────────────────────────────────────────────────────────────

    def list_tags(self) -> list[dict]:
        with self.connection() as conn:
            rows = conn.execute("SELECT * FROM tags ORDER BY name").fetchall()
            return [dict(r) for r in rows]

    def question_tags(self, conn: sqlite3.Connection, question_id: int) -> list[dict]:
        rows = conn.execute(
            """SELECT t.* FROM tags t
               JOIN question_tags qt ON qt.tag_id = t.id
               WHERE qt.question_id = ?
               ORDER BY t.name""",
            (question_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    # ─── Pages ───────────────────────────────────────────────────────────

    def question_pages(self, conn: sqlite3.Connection, question_id: int) -> list[dict]:
        rows = conn.execute(
            """SELECT * FROM question_pages
               WHERE question_id = ?
               ORDER BY page_order, id""",
            (question_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def count_pages(self, conn: sqlite3.Connection, question_id: int) -> int:
        row = conn.execute(
            "SELECT COUNT(*) AS cnt FROM question_pages WHERE question_id = ?",
            (question_id,),
        ).fetchone()
        return row["cnt"]

    def insert_page(
        self,
        conn: sqlite3.Connection,
        question_id: int,
        image_path: Optional[str],
        content: Optional[str],
        page_order: int,
    ) -> int:
        cursor = conn.execute(
            """INSERT INTO question_pages
               (question_id, image_path, content, page_order)
               VALUES (?, ?, ?, ?)""",
            (question_id, image_path, content, page_order),
        )
        return cursor.lastrowid

    def get_page(self, page_id: int) -> Optional[dict]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM question_pages WHERE id = ?", (page_id,)
            ).fetchone()
            return dict(row) if row else None

    def update_page(self, page_id: int, content: Optional[str], image_path: Optional[str] = None):
        """
        Update a page's text and, when given, its image.
        Returns (found, old_image_path); the old path is set only when replaced.
        """
        return self._update_part("question_pages", page_id, {"content": content}, image_path)

    def delete_page(self, page_id: int):
        """Delete a page. Returns (found, image_path)."""
        return self._delete_part("question_pages", page_id)

    # ─── Solutions ───────────────────────────────────────────────────────

    def question_solutions(self, conn: sqlite3.Connection, question_id: int) -> list[dict]:
        rows = conn.execute(
            """SELECT * FROM solutions
               WHERE question_id = ?
               ORDER BY page_order, created_at, id""",
            (question_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def count_solutions(self, conn: sqlite3.Connection, question_id: int) -> int:
        row = conn.execute(
            "SELECT COUNT(*) AS cnt FROM solutions WHERE question_id = ?",
            (question_id,),
        ).fetchone()
        return row["cnt"]

    def insert_solution(
        self,
        conn: sqlite3.Connection,
        question_id: int,
        image_path: Optional[str],
        content: str,
        title: Optional[str],
        group_id: str,
        page_order: int,
    ) -> int:
        cursor = conn.execute(
            """INSERT INTO solutions
               (question_id, image_path, content, title, group_id, page_order)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (question_id, image_path, content, title, group_id, page_order),
        )
        return cursor.lastrowid

    def get_solution(self, solution_id: int) -> Optional[dict]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM solutions WHERE id = ?", (solution_id,)
            ).fetchone()
            return dict(row) if row else None

    def update_solution(
        self,
        solution_id: int,
        content: Optional[str],
        title: Optional[str],
        image_path: Optional[str] = None,
    ):
        """Returns (found, old_image_path); the old path is set only when replaced."""
        return self._update_part(
            "solutions", solution_id, {"content": content, "title": title}, image_path
        )

    def delete_solution(self, solution_id: int):
        """Delete a solution part. Returns (found, image_path)."""
        return self._delete_part("solutions", solution_id)

    # ─── Stats ───────────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        with self.connection() as conn:
            courses = conn.execute("SELECT COUNT(*) AS cnt FROM courses").fetchone()
            questions = conn.execute("SELECT COUNT(*) AS cnt FROM questions").fetchone()
            solved = conn.execute(
                "SELECT COUNT(DISTINCT question_id) AS cnt FROM solutions"
            ).fetchone()

        stats = {
            "courses": courses["cnt"],
            "questions": questions["cnt"],
            "solved": solved["cnt"],
        }
        stats["unsolved"] = max(0, stats["questions"] - stats["solved"])
        return stats

    # ─── Helpers ─────────────────────────────────────────────────────────

    def _update_part(self, table: str, row_id: int, fields: dict, image_path: Optional[str]):
        with self.connection() as conn:
            row = conn.execute(
                f"SELECT image_path FROM {table} WHERE id = ?", (row_id,)
            ).fetchone()
            if not row:
                return False, None

            old_path = None
            if image_path:
                fields = dict(fields, image_path=image_path)
                old_path = row["image_path"]

            set_clause = ", ".join(f"{k} = ?" for k in fields)
            conn.execute(
                f"UPDATE {table} SET {set_clause} WHERE id = ?",
                list(fields.values()) + [row_id],
            )
            return True, old_path

    def _delete_part(self, table: str, row_id: int):
        with self.connection() as conn:
            row = conn.execute(
                f"SELECT image_path FROM {table} WHERE id = ?", (row_id,)
            ).fetchone()
            if not row:
                return False, None
            conn.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
            return True, row["image_path"]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

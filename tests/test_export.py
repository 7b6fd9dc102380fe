"""
Test Suite for Export Paths
===========================
Static JSON snapshot, print document assembly / PDF rendering, and the CLI.
"""

from __future__ import annotations

import json

import fitz  # PyMuPDF
import pytest
from click.testing import CliRunner

from archive import cli as cli_module
from archive.export import export_static
from archive.printing import build_print_document, render_pdf_bytes, write_pdf


@pytest.fixture
def populated(service, course_id, make_upload):
    """Three questions: two solved, varied year/type/tags."""
    q1 = service.create_question(
        {"course_id": course_id, "title": "Limits", "question_number": 1,
         "year": 2022, "type": "midterm", "tags": "calc,limits"},
        [make_upload()],
    )
    q2 = service.create_question(
        {"course_id": course_id, "title": "Series", "question_number": 2,
         "year": 2023, "type": "final", "tags": "calc", "notes": "Converges?"},
    )
    q3 = service.create_question(
        {"course_id": course_id, "title": "Untagged", "year": 2022, "type": "midterm"},
    )
    service.add_solution(q1, content="Squeeze theorem", title="Method 1",
                         images=[make_upload(), make_upload()])
    service.add_solution(q1, content="L'Hopital", title="Method 2")
    service.add_solution(q2, content="Ratio test")
    return {"course_id": course_id, "ids": [q1, q2, q3]}


def _pdf_text(data: bytes) -> str:
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        return "".join(page.get_text() for page in doc)
    finally:
        doc.close()


# ═══════════════════════════════════════════════════════════════════════════════
# STATIC EXPORT
# ═══════════════════════════════════════════════════════════════════════════════


class TestStaticExport:
    """Test the per-endpoint JSON snapshot."""

    def test_files_written(self, service, populated, tmp_path):
        out = tmp_path / "api"
        files = export_static(service, str(out))

        q1, q2, q3 = populated["ids"]
        expected = {
            "stats.json", "tags.json", "courses.json",
            "questions/recent.json", "questions/unsolved.json",
            f"courses/{populated['course_id']}/questions.json",
            f"questions/{q1}.json", f"questions/{q2}.json", f"questions/{q3}.json",
        }
        assert {p.relative_to(out).as_posix() for p in files} == expected

    def test_content_matches_service(self, service, populated, tmp_path):
        out = tmp_path / "api"
        export_static(service, str(out))
        q1 = populated["ids"][0]

        stats = json.loads((out / "stats.json").read_text(encoding="utf-8"))
        assert stats == {"courses": 1, "questions": 3, "solved": 2, "unsolved": 1}

        detail = json.loads((out / "questions" / f"{q1}.json").read_text(encoding="utf-8"))
        assert [g["title"] for g in detail["solution_groups"]] == ["Method 1", "Method 2"]
        assert detail["solution_groups"][0]["part_count"] == 2

        listing = json.loads(
            (out / "courses" / str(populated["course_id"]) / "questions.json")
            .read_text(encoding="utf-8")
        )
        assert [q["question_number"] for q in listing] == [None, 1, 2]

    def test_progress_callback(self, service, populated, tmp_path):
        seen = []
        export_static(service, str(tmp_path / "api"), progress_callback=seen.append)
        assert seen[0] == "stats"
        assert f"questions/{populated['ids'][2]}" in seen


# ═══════════════════════════════════════════════════════════════════════════════
# PRINT DOCUMENT
# ═══════════════════════════════════════════════════════════════════════════════


class TestPrintDocument:
    """Test filtering and labelling of the printable view."""

    def test_all_questions(self, service, populated):
        document = build_print_document(service, populated["course_id"])
        assert [q.label for q in document.questions] == ["1", "Q1", "Q2"]
        assert document.image_count == 3

    def test_filters(self, service, populated):
        cid = populated["course_id"]
        q1, q2, q3 = populated["ids"]

        by_year = build_print_document(service, cid, years=["2022"])
        assert [q.id for q in by_year.questions] == [q3, q1]

        by_type = build_print_document(service, cid, types=["final"])
        assert [q.id for q in by_type.questions] == [q2]

        by_tags = build_print_document(service, cid, tags=["calc", "limits"])
        assert [q.id for q in by_tags.questions] == [q1]

    def test_without_solutions(self, service, populated):
        document = build_print_document(service, populated["course_id"],
                                        include_solutions=False)
        assert all(q.solution_groups == [] for q in document.questions)
        assert document.image_count == 1

    def test_render(self, service, populated):
        document = build_print_document(service, populated["course_id"])
        text = _pdf_text(render_pdf_bytes(document, service.storage))
        assert "Calculus I" in text
        assert "MATH101" in text
        assert "Solutions" in text
        assert "Method 2" in text
        assert "Converges?" in text

    def test_render_without_solutions(self, service, populated):
        document = build_print_document(service, populated["course_id"],
                                        include_solutions=False)
        text = _pdf_text(render_pdf_bytes(document, service.storage))
        assert "Series" in text
        assert "Ratio test" not in text

    def test_missing_image_is_skipped(self, service, populated, tmp_path):
        for path in service.storage.upload_dir.iterdir():
            path.unlink()
        document = build_print_document(service, populated["course_id"])
        output = write_pdf(document, service.storage, str(tmp_path / "out" / "c.pdf"))
        assert fitz.open(output).page_count >= 1

    def test_long_text_wraps_onto_more_pages(self, service, course_id):
        service.create_question(
            {"course_id": course_id, "notes": "word " * 4000}
        )
        document = build_print_document(service, course_id)
        doc = fitz.open(stream=render_pdf_bytes(document, service.storage),
                        filetype="pdf")
        assert doc.page_count > 1


# ═══════════════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════════════


class TestCli:
    """Test the click commands against a temporary archive."""

    @pytest.fixture
    def run(self, config, monkeypatch):
        monkeypatch.setattr(cli_module, "setup_logging", lambda *args, **kwargs: None)
        runner = CliRunner()

        def _run(*args):
            return runner.invoke(
                cli_module.cli,
                ["--db", config.db_path, "--uploads", config.upload_dir, *args],
            )
        return _run

    def test_init_db(self, run):
        first = run("init-db")
        assert first.exit_code == 0, first.output
        assert "Applied migrations" in first.output
        second = run("init-db")
        assert "already current" in second.output

    def test_stats_and_courses(self, run, populated):
        result = run("stats")
        assert result.exit_code == 0, result.output
        assert "Questions" in result.output

        result = run("courses")
        assert result.exit_code == 0, result.output
        assert "MATH101" in result.output

    def test_export(self, run, populated, tmp_path):
        out = tmp_path / "static"
        result = run("export-static", "--out", str(out))
        assert result.exit_code == 0, result.output
        assert (out / "courses.json").is_file()

    def test_print(self, run, populated, tmp_path):
        pdf = tmp_path / "calc.pdf"
        result = run("print", str(populated["course_id"]), "-o", str(pdf),
                     "--tag", "calc", "--no-solutions")
        assert result.exit_code == 0, result.output
        assert "Squeeze theorem" not in _pdf_text(pdf.read_bytes())

    def test_print_missing_course(self, run):
        result = run("print", "42")
        assert result.exit_code == 1
        assert "Course not found: 42" in result.output

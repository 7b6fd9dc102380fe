"""
Test Suite for the HTTP API
===========================
Exercises the Flask app through its test client against an isolated
database and upload folder.
"""

from __future__ import annotations

import io
from dataclasses import replace

import fitz  # PyMuPDF
import pytest

from archive.server import create_app


@pytest.fixture
def app(config):
    app = create_app(config)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def course(client):
    resp = client.post("/api/courses", json={"code": "CS101", "title": "Algorithms"})
    assert resp.status_code == 200
    return resp.get_json()


def _images(png_bytes, count):
    return [(io.BytesIO(png_bytes), f"page{i}.png") for i in range(count)]


def _create_question(client, course_id, png_bytes, images=1, **fields):
    data = {"course_id": str(course_id), **fields}
    if images:
        data["images"] = _images(png_bytes, images)
    resp = client.post("/api/questions", data=data, content_type="multipart/form-data")
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["id"]


# ═══════════════════════════════════════════════════════════════════════════════
# COURSE ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCourseEndpoints:
    """Test /api/courses."""

    def test_health(self, client):
        body = client.get("/api/health").get_json()
        assert body["status"] == "healthy"
        assert body["schema_version"] == 10
        assert body["static_mode"] is False

    def test_create_and_list(self, client, course):
        assert course["code"] == "CS101"
        assert [c["id"] for c in client.get("/api/courses").get_json()] == [course["id"]]

    def test_create_missing_title(self, client):
        resp = client.post("/api/courses", json={"code": "X"})
        assert resp.status_code == 400
        assert "title" in resp.get_json()["error"]

    def test_update(self, client, course):
        resp = client.put(f"/api/courses/{course['id']}", json={"description": "Sorting"})
        assert resp.get_json() == {"success": True}
        assert client.get("/api/courses").get_json()[0]["description"] == "Sorting"

    def test_update_without_body(self, client, course):
        assert client.put(f"/api/courses/{course['id']}").status_code == 400

    def test_update_missing(self, client):
        resp = client.put("/api/courses/999", json={"title": "x"})
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Course not found: 999"

    def test_reorder(self, client, course):
        other = client.post("/api/courses", json={"code": "AA", "title": "Aardvarks"}).get_json()
        resp = client.post("/api/courses/reorder", json={"orders": [
            {"id": course["id"], "sort_order": 0},
            {"id": other["id"], "sort_order": 1},
        ]})
        assert resp.status_code == 200
        assert [c["id"] for c in client.get("/api/courses").get_json()] == [
            course["id"], other["id"]
        ]

    def test_reorder_without_orders(self, client):
        assert client.post("/api/courses/reorder", json={}).status_code == 400

    def test_non_object_body_rejected(self, client, course):
        resp = client.post("/api/courses", json=["a"])
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "body: expected a JSON object"
        assert client.post("/api/courses/reorder", json=[1, 2]).status_code == 400
        assert client.put(f"/api/courses/{course['id']}", json="x").status_code == 400

    def test_update_strips_code(self, client, course):
        client.put(f"/api/courses/{course['id']}", json={"code": "  CS102 "})
        assert client.get("/api/courses").get_json()[0]["code"] == "CS102"

    def test_delete(self, client, course, png_bytes):
        _create_question(client, course["id"], png_bytes, images=2)
        resp = client.delete(f"/api/courses/{course['id']}")
        assert resp.get_json() == {"success": True, "files_removed": 2}
        assert client.get("/api/courses").get_json() == []


# ═══════════════════════════════════════════════════════════════════════════════
# QUESTION ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestQuestionEndpoints:
    """Test /api/questions and the course question list."""

    def test_create_multipart(self, client, course, png_bytes):
        qid = _create_question(
            client, course["id"], png_bytes, images=2,
            title="Binary search", notes="Scan of the exam", year="2023",
            difficulty="3", type="final", tags='["search", "arrays"]',
        )
        question = client.get(f"/api/questions/{qid}").get_json()
        assert question["title"] == "Binary search"
        assert question["year"] == 2023
        assert question["type"] == "final"
        assert [t["name"] for t in question["tags"]] == ["arrays", "search"]
        assert [p["page_order"] for p in question["pages"]] == [0, 1]
        assert question["pages"][0]["content"] == "Scan of the exam"
        assert question["solution_groups"] == []

        image = client.get(question["pages"][0]["image_path"])
        assert image.status_code == 200
        assert image.data == png_bytes

    def test_create_json_body(self, client, course):
        resp = client.post("/api/questions", json={
            "course_id": course["id"], "title": "Text only", "tags": "a, b",
        })
        qid = resp.get_json()["id"]
        question = client.get(f"/api/questions/{qid}").get_json()
        assert question["pages"] == []
        assert [t["name"] for t in question["tags"]] == ["a", "b"]

    def test_create_invalid_difficulty(self, client, course):
        resp = client.post("/api/questions", data={"course_id": str(course["id"]),
                                                    "difficulty": "4"})
        assert resp.status_code == 400

    def test_create_without_course(self, client):
        assert client.post("/api/questions", data={"title": "x"}).status_code == 400

    def test_get_missing(self, client):
        assert client.get("/api/questions/123").status_code == 404

    def test_non_object_body_rejected(self, client, course, png_bytes):
        qid = _create_question(client, course["id"], png_bytes)
        assert client.put(f"/api/questions/{qid}", json=["x"]).status_code == 400
        assert client.post("/api/questions", json=5).status_code == 400
        resp = client.post(f"/api/questions/{qid}/solutions", json="text")
        assert resp.status_code == 400

    def test_object_tags_link_nothing(self, client, course):
        qid = client.post("/api/questions", json={
            "course_id": course["id"], "tags": {"a": 1},
        }).get_json()["id"]
        assert client.get(f"/api/questions/{qid}").get_json()["tags"] == []
        assert client.get("/api/tags").get_json() == []

    def test_list_search_and_sort(self, client, course, png_bytes):
        a = _create_question(client, course["id"], png_bytes, title="Integral bounds",
                             year="2019")
        b = _create_question(client, course["id"], png_bytes, images=0, title="Graphs",
                             notes="no integral here", year="2021")
        _create_question(client, course["id"], png_bytes, title="Heaps", year="2020")

        found = client.get(
            f"/api/courses/{course['id']}/questions?search=INTEGRAL&sortBy=year&order=asc"
        ).get_json()
        assert [q["id"] for q in found] == [a, b]
        assert found[0]["thumbnail_path"].startswith("/uploads/")
        assert found[1]["thumbnail_path"] is None

        bogus = client.get(
            f"/api/courses/{course['id']}/questions?sortBy=%3B%20DROP%20TABLE"
        )
        assert bogus.status_code == 200
        assert len(bogus.get_json()) == 3

    def test_update_replaces_tags(self, client, course, png_bytes):
        qid = _create_question(client, course["id"], png_bytes, tags="A,C")
        resp = client.put(f"/api/questions/{qid}", data={"tags": '["A","B"]'},
                          content_type="multipart/form-data")
        assert resp.status_code == 200

        assert [t["name"] for t in client.get(f"/api/questions/{qid}").get_json()["tags"]] \
            == ["A", "B"]
        assert [t["name"] for t in client.get("/api/tags").get_json()] == ["A", "B", "C"]

    def test_update_missing(self, client):
        assert client.put("/api/questions/9", json={"title": "x"}).status_code == 404

    def test_delete(self, client, course, png_bytes):
        qid = _create_question(client, course["id"], png_bytes, images=3)
        resp = client.delete(f"/api/questions/{qid}")
        assert resp.get_json() == {"success": True, "files_removed": 3}
        assert client.get(f"/api/questions/{qid}").status_code == 404

    def test_dashboard(self, client, course, png_bytes):
        qid = _create_question(client, course["id"], png_bytes)
        assert client.get("/api/questions/recent").get_json()[0]["id"] == qid
        assert client.get("/api/questions/unsolved").get_json()[0]["course_code"] == "CS101"
        assert client.get("/api/stats").get_json() == {
            "courses": 1, "questions": 1, "solved": 0, "unsolved": 1,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# PAGE + SOLUTION ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestPartEndpoints:
    """Test page and solution endpoints."""

    def test_add_and_edit_pages(self, client, course, png_bytes):
        qid = _create_question(client, course["id"], png_bytes)
        resp = client.post(
            f"/api/questions/{qid}/pages",
            data={"content": "part b", "images": _images(png_bytes, 2)},
            content_type="multipart/form-data",
        ).get_json()
        assert len(resp["ids"]) == 2

        resp = client.put(f"/api/pages/{resp['id']}", data={"content": "part B"},
                          content_type="multipart/form-data")
        assert resp.status_code == 200

        pages = client.get(f"/api/questions/{qid}").get_json()["pages"]
        assert [(p["page_order"], p["content"]) for p in pages] == [
            (0, ""), (1, "part B"), (2, "")
        ]

        assert client.delete(f"/api/pages/{pages[2]['id']}").status_code == 200
        assert client.delete(f"/api/pages/{pages[2]['id']}").status_code == 404

    def test_multi_image_solution(self, client, course, png_bytes):
        qid = _create_question(client, course["id"], png_bytes)
        resp = client.post(
            f"/api/questions/{qid}/solutions",
            data={"content": "Use induction", "title": "Method 1",
                  "images": _images(png_bytes, 3)},
            content_type="multipart/form-data",
        ).get_json()
        assert resp["success"] is True
        assert len(resp["ids"]) == 3

        groups = client.get(f"/api/questions/{qid}").get_json()["solution_groups"]
        assert len(groups) == 1
        assert groups[0]["key"] == resp["group_id"]
        assert groups[0]["title"] == "Method 1"
        assert [p["content"] for p in groups[0]["parts"]] == ["Use induction", "", ""]

        edit = client.put(f"/api/solutions/{resp['ids'][1]}", json={"content": "step 2"})
        assert edit.status_code == 200
        assert client.delete(f"/api/solutions/{resp['ids'][2]}").status_code == 200
        assert client.delete("/api/solutions/999").status_code == 404

    def test_solution_for_missing_question(self, client):
        assert client.post("/api/questions/5/solutions", json={"content": "x"}).status_code \
            == 404


# ═══════════════════════════════════════════════════════════════════════════════
# PRINT + STATIC MODE
# ═══════════════════════════════════════════════════════════════════════════════


class TestPrintEndpoint:
    """Test the printable PDF."""

    def test_pdf(self, client, course, png_bytes):
        qid = _create_question(client, course["id"], png_bytes, title="Dijkstra",
                               question_number="2", year="2022")
        client.post(f"/api/questions/{qid}/solutions", json={"content": "Relax edges"})

        resp = client.get(f"/api/courses/{course['id']}/print.pdf")
        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"

        doc = fitz.open(stream=resp.data, filetype="pdf")
        text = "".join(page.get_text() for page in doc)
        assert "Algorithms" in text
        assert "Q2" in text
        assert "Relax edges" in text

    def test_pdf_missing_course(self, client):
        assert client.get("/api/courses/77/print.pdf").status_code == 404


class TestStaticMode:
    """Test read-only serving."""

    @pytest.fixture
    def static_client(self, config, client, course):
        return create_app(replace(config, static_mode=True)).test_client()

    def test_reads_allowed(self, static_client, course):
        assert static_client.get("/api/courses").get_json()[0]["id"] == course["id"]
        assert static_client.get("/api/health").get_json()["static_mode"] is True

    @pytest.mark.parametrize("method, url", [
        ("post", "/api/courses"),
        ("put", "/api/courses/1"),
        ("delete", "/api/courses/1"),
        ("post", "/api/questions"),
        ("delete", "/api/solutions/1"),
    ])
    def test_mutations_rejected(self, static_client, method, url):
        resp = getattr(static_client, method)(url, json={"code": "X", "title": "Y"})
        assert resp.status_code == 403
        assert "read-only" in resp.get_json()["error"]

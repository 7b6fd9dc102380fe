"""
HTTP API
========
Flask-based JSON API consumed by the archive web UI.

Endpoints (all under /api):
    GET    /courses                       → Courses by sort_order, title
    POST   /courses                       → Create course
    PUT    /courses/<id>                  → Update course
    DELETE /courses/<id>                  → Delete course + files
    POST   /courses/reorder               → Bulk sort_order update
    GET    /courses/<id>/questions        → Search / sort question list
    GET    /courses/<id>/print.pdf        → Printable PDF of a course
    GET    /questions/<id>                → Question detail (pages, groups)
    POST   /questions                     → Create question (multipart)
    PUT    /questions/<id>                → Update question
    DELETE /questions/<id>                → Delete question + files
    POST   /questions/<id>/pages          → Append pages (multipart)
    PUT    /pages/<id>, DELETE /pages/<id>
    POST   /questions/<id>/solutions      → Add solution group (multipart)
    PUT    /solutions/<id>, DELETE /solutions/<id>
    GET    /tags, /stats, /questions/recent, /questions/unsolved
    GET    /health

Uploaded images are served from /uploads/<filename>.
"""

from __future__ import annotations

import logging
import sqlite3
from io import BytesIO
from typing import Optional

from flask import (
    Blueprint,
    Flask,
    current_app,
    jsonify,
    request,
    send_file,
    send_from_directory,
)
from flask_cors import CORS

from . import __version__
from .config import ArchiveConfig
from .crud import ArchiveService
from .database import Database
from .errors import NotFound, ReadOnlyMode, ValidationFailed
from .printing import build_print_document, render_pdf_bytes
from .storage import UploadStorage

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")

_MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def create_app(
    config: Optional[ArchiveConfig] = None,
    service: Optional[ArchiveService] = None,
) -> Flask:
    """
    Create and configure the Flask app.

    The database and upload storage are built from ``config`` unless an
    already constructed ``service`` is passed in.
    """
    config = config or ArchiveConfig.from_env()

    if service is None:
        database = Database(config.db_path)
        storage = UploadStorage(config.upload_dir)
        service = ArchiveService(database, storage)

    # Initialize persistence layer
    service.storage.init()
    service.db.init()

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.max_content_length
    app.config["STATIC_MODE"] = config.static_mode
    app.extensions["archive"] = service
    app.extensions["archive_config"] = config
    CORS(app)

    app.register_blueprint(api)

    @app.route("/uploads/<path:filename>")
    def serve_uploads(filename):
        """Serve uploaded images."""
        return send_from_directory(str(service.storage.upload_dir), filename)

    _register_error_handlers(app)

    logger.info(
        f"App created: db={config.db_path}, uploads={config.upload_dir}, "
        f"static_mode={config.static_mode}"
    )
    return app


def _service() -> ArchiveService:
    return current_app.extensions["archive"]


def _register_error_handlers(app: Flask):
    @app.errorhandler(ValidationFailed)
    def handle_validation(e):
        logger.warning(f"{request.method} {request.path} rejected: {e}")
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(NotFound)
    def handle_not_found(e):
        logger.warning(f"{request.method} {request.path}: {e}")
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(ReadOnlyMode)
    def handle_read_only(e):
        return jsonify({"error": str(e)}), 403

    @app.errorhandler(sqlite3.Error)
    def handle_storage_error(e):
        logger.error(f"{request.method} {request.path} failed: {e}", exc_info=True)
        return jsonify({"error": "Storage error"}), 500

    @app.errorhandler(OSError)
    def handle_io_error(e):
        logger.error(f"{request.method} {request.path} failed: {e}", exc_info=True)
        return jsonify({"error": "File storage error"}), 500


@api.before_request
def reject_mutations_in_static_mode():
    if current_app.config.get("STATIC_MODE") and request.method in _MUTATING_METHODS:
        raise ReadOnlyMode("Archive is served read-only; mutations are disabled")


def _json_body() -> dict:
    """The JSON request body; anything but an object is rejected."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailed("body: expected a JSON object")
    return data


def _form_data() -> dict:
    """Form fields of a multipart request, or the JSON body."""
    if request.form:
        return request.form.to_dict()
    return _json_body()


def _uploaded_images() -> list:
    files = request.files.getlist("images") + request.files.getlist("image")
    return [f for f in files if f and f.filename]


# ─── Health ───────────────────────────────────────────────────────────────────


@api.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "exam-archive",
        "version": __version__,
        "static_mode": bool(current_app.config.get("STATIC_MODE")),
        "schema_version": _service().db.schema_version(),
    })


# ─── Courses ──────────────────────────────────────────────────────────────────


@api.route("/courses", methods=["GET"])
def list_courses():
    return jsonify(_service().list_courses())


@api.route("/courses", methods=["POST"])
def create_course():
    course = _service().create_course(_json_body())
    return jsonify(course)


@api.route("/courses/reorder", methods=["POST"])
def reorder_courses():
    data = _json_body()
    _service().reorder_courses(data.get("orders"))
    return jsonify({"success": True})


@api.route("/courses/<int:course_id>", methods=["PUT"])
def update_course(course_id: int):
    data = _json_body()
    if not data:
        return jsonify({"error": "No data provided"}), 400
    _service().update_course(course_id, data)
    return jsonify({"success": True})


@api.route("/courses/<int:course_id>", methods=["DELETE"])
def delete_course(course_id: int):
    removed = _service().delete_course(course_id)
    return jsonify({"success": True, "files_removed": removed})


@api.route("/courses/<int:course_id>/questions", methods=["GET"])
def list_course_questions(course_id: int):
    questions = _service().list_questions(
        course_id,
        search=request.args.get("search"),
        sort_by=request.args.get("sortBy"),
        order=request.args.get("order"),
    )
    return jsonify(questions)


@api.route("/courses/<int:course_id>/print.pdf", methods=["GET"])
def print_course(course_id: int):
    """
    Printable PDF of a course. Query: year, type, tag (repeatable),
    sortBy, sortOrder, solutions (0 to leave them out).
    """
    include_solutions = request.args.get("solutions", "1").lower() not in ("0", "false", "no")
    document = build_print_document(
        _service(),
        course_id,
        years=request.args.getlist("year"),
        types=request.args.getlist("type"),
        tags=request.args.getlist("tag"),
        sort_by=request.args.get("sortBy", "question_number"),
        order=request.args.get("sortOrder", "asc"),
        include_solutions=include_solutions,
    )
    pdf = render_pdf_bytes(document, _service().storage)
    return send_file(
        BytesIO(pdf),
        mimetype="application/pdf",
        download_name=f"{document.course.get('code') or course_id}.pdf",
    )


# ─── Questions ────────────────────────────────────────────────────────────────


@api.route("/questions/recent", methods=["GET"])
def recent_questions():
    return jsonify(_service().recent_questions())


@api.route("/questions/unsolved", methods=["GET"])
def unsolved_questions():
    return jsonify(_service().unsolved_questions())


@api.route("/questions/<int:question_id>", methods=["GET"])
def get_question(question_id: int):
    return jsonify(_service().get_question(question_id))


@api.route("/questions", methods=["POST"])
def create_question():
    """
    Create a question.
    Multipart: images[] + course_id, title, notes, references_text, year,
    question_number, difficulty, type, tags (JSON array or comma list).
    """
    question_id = _service().create_question(_form_data(), _uploaded_images())
    return jsonify({"id": question_id, "success": True})


@api.route("/questions/<int:question_id>", methods=["PUT"])
def update_question(question_id: int):
    _service().update_question(question_id, _form_data())
    return jsonify({"success": True})


@api.route("/questions/<int:question_id>", methods=["DELETE"])
def delete_question(question_id: int):
    removed = _service().delete_question(question_id)
    return jsonify({"success": True, "files_removed": removed})


# ─── Pages ────────────────────────────────────────────────────────────────────


@api.route("/questions/<int:question_id>/pages", methods=["POST"])
def add_pages(question_id: int):
    data = _form_data()
    page_ids = _service().add_pages(
        question_id, content=data.get("content"), images=_uploaded_images()
    )
    return jsonify({"id": page_ids[0], "ids": page_ids, "success": True})


@api.route("/pages/<int:page_id>", methods=["PUT"])
def update_page(page_id: int):
    data = _form_data()
    image = request.files.get("image")
    _service().update_page(
        page_id,
        content=data.get("content"),
        image=image if image and image.filename else None,
    )
    return jsonify({"success": True})


@api.route("/pages/<int:page_id>", methods=["DELETE"])
def delete_page(page_id: int):
    _service().delete_page(page_id)
    return jsonify({"success": True})


# ─── Solutions ────────────────────────────────────────────────────────────────


@api.route("/questions/<int:question_id>/solutions", methods=["POST"])
def add_solution(question_id: int):
    """Multipart: images[] + content, title. All images form one solution."""
    data = _form_data()
    result = _service().add_solution(
        question_id,
        content=data.get("content"),
        title=data.get("title"),
        images=_uploaded_images(),
    )
    return jsonify({"success": True, **result})


@api.route("/solutions/<int:solution_id>", methods=["PUT"])
def update_solution(solution_id: int):
    data = _form_data()
    image = request.files.get("image")
    _service().update_solution(
        solution_id,
        content=data.get("content"),
        title=data.get("title"),
        image=image if image and image.filename else None,
    )
    return jsonify({"success": True})


@api.route("/solutions/<int:solution_id>", methods=["DELETE"])
def delete_solution(solution_id: int):
    _service().delete_solution(solution_id)
    return jsonify({"success": True})


# ─── Tags / Stats ─────────────────────────────────────────────────────────────


@api.route("/tags", methods=["GET"])
def list_tags():
    return jsonify(_service().list_tags())


@api.route("/stats", methods=["GET"])
def stats():
    return jsonify(_service().get_stats())


# ─── Run Server ──────────────────────────────────────────────────────────────


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
    config: Optional[ArchiveConfig] = None,
):
    """Start the archive server."""
    app = create_app(config)
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server(debug=True)

"""Shared fixtures: an isolated archive (database + upload folder) per test."""

from __future__ import annotations

import io

import fitz  # PyMuPDF
import pytest
from werkzeug.datastructures import FileStorage

from archive.config import ArchiveConfig
from archive.crud import ArchiveService
from archive.database import Database
from archive.storage import UploadStorage


@pytest.fixture
def png_bytes() -> bytes:
    """A small, valid grey PNG."""
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 40, 20), False)
    pix.clear_with(180)
    return pix.tobytes("png")


@pytest.fixture
def make_upload(png_bytes):
    def _make(name: str = "scan.png") -> FileStorage:
        return FileStorage(stream=io.BytesIO(png_bytes), filename=name)
    return _make


@pytest.fixture
def config(tmp_path) -> ArchiveConfig:
    return ArchiveConfig(
        db_path=str(tmp_path / "archive.sqlite"),
        upload_dir=str(tmp_path / "uploads"),
        export_dir=str(tmp_path / "export" / "api"),
    )


@pytest.fixture
def service(config) -> ArchiveService:
    svc = ArchiveService(Database(config.db_path), UploadStorage(config.upload_dir))
    svc.storage.init()
    svc.db.init()
    return svc


@pytest.fixture
def course_id(service) -> int:
    return service.create_course({"code": "MATH101", "title": "Calculus I"})["id"]

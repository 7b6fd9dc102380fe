"""
Filesystem Storage Manager
===========================
Manages the upload folder holding question and solution images.

Stored rows reference files by their public path ``/uploads/<name>``.
Names are generated (millisecond timestamp + random suffix + original
extension), never the client's filename.

Directory Layout:
    uploads/
    └── 1718031234567-482913377.png
"""

from __future__ import annotations

import logging
import secrets
import time
from pathlib import Path
from typing import Iterable, Optional

from werkzeug.datastructures import FileStorage

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads/"


class UploadStorage:
    """Upload folder for one archive instance."""

    def __init__(self, upload_dir: str):
        self.upload_dir = Path(upload_dir)

    def init(self):
        """Ensure the upload directory exists."""
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Storage initialized: {self.upload_dir}")

    # ─── Saving ──────────────────────────────────────────────────────────

    def save_upload(self, file_obj: FileStorage) -> str:
        """
        Save a Flask/werkzeug file upload under a generated name.
        Returns the public path (``/uploads/<name>``) stored in the database.
        """
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        filename = generate_filename(file_obj.filename or "")
        dest = self.upload_dir / filename
        file_obj.save(str(dest))
        logger.info(f"Upload saved: {filename} (from {file_obj.filename!r})")
        return PUBLIC_PREFIX + filename

    def save_uploads(self, files: Iterable[FileStorage]) -> list[str]:
        """
        Save several uploads in order. If one fails, the ones already
        written are removed before the error propagates.
        """
        saved: list[str] = []
        try:
            for file_obj in files:
                saved.append(self.save_upload(file_obj))
        except OSError:
            self.delete_files(saved)
            raise
        return saved

    # ─── Deletion ────────────────────────────────────────────────────────

    def delete_file(self, image_path: Optional[str]) -> bool:
        """
        Delete a stored file. A path that no longer exists is not an error.
        Returns True if a file was removed.
        """
        if not image_path:
            return False
        path = self.resolve(image_path)
        if path and path.is_file():
            path.unlink()
            logger.info(f"Deleted upload: {image_path}")
            return True
        logger.debug(f"Upload already absent, skipping: {image_path}")
        return False

    def delete_files(self, image_paths: Iterable[Optional[str]]) -> int:
        """Delete multiple files. Returns count of files actually removed."""
        count = 0
        for path in image_paths:
            if self.delete_file(path):
                count += 1
        return count

    # ─── Lookup ──────────────────────────────────────────────────────────

    def resolve(self, image_path: str) -> Optional[Path]:
        """
        Map a stored path (``/uploads/x.png``, ``uploads/x.png`` or a bare
        ``x.png``) to its location inside the upload directory. Paths that
        would escape the directory resolve to None.
        """
        name = image_path
        for prefix in (PUBLIC_PREFIX, PUBLIC_PREFIX.lstrip("/")):
            if name.startswith(prefix):
                name = name[len(prefix):]
                break

        candidate = (self.upload_dir / name).resolve()
        root = self.upload_dir.resolve()
        if root != candidate and root not in candidate.parents:
            logger.warning(f"Rejected upload path outside storage: {image_path}")
            return None
        return candidate

    def exists(self, image_path: Optional[str]) -> bool:
        if not image_path:
            return False
        path = self.resolve(image_path)
        return bool(path and path.is_file())


def generate_filename(original_name: str) -> str:
    """``<ms timestamp>-<random>`` plus the original file's extension."""
    suffix = Path(original_name).suffix.lower()
    return f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{suffix}"

"""
Filesystem helpers for stored donor uploads.
"""

from __future__ import annotations

from pathlib import Path
from uuid import uuid4

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

DEFAULT_UPLOAD_SUBDIR = "import_uploads"


def resolve_upload_directory(app) -> Path:
    """
    Directory holding uploads between submission and processing.

    ``IMPORTER_UPLOAD_DIR`` may be absolute or relative to the instance folder.
    """
    directory = Path(app.config.get("IMPORTER_UPLOAD_DIR") or DEFAULT_UPLOAD_SUBDIR)
    if not directory.is_absolute():
        directory = Path(app.instance_path) / directory
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def measure_upload(file_storage: FileStorage) -> int:
    """Size of an upload in bytes; the stream position is restored."""
    stream = file_storage.stream
    start = stream.tell()
    size = stream.seek(0, 2)
    stream.seek(start)
    return size


def persist_upload(file_storage: FileStorage, app) -> Path:
    """
    Save an upload under a random name and return its path.

    Only the extension of the client filename survives, since the parser picks
    CSV or Excel from it.
    """
    suffix = Path(secure_filename(file_storage.filename or "")).suffix.lower()
    target = resolve_upload_directory(app) / f"{uuid4().hex}{suffix}"
    file_storage.save(target)
    current_app.logger.debug("Stored donor upload at %s", target)
    return target


def cleanup_upload(path: str | Path) -> None:
    """Delete a stored upload. A failed delete is logged, not raised."""
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        current_app.logger.warning("Could not remove donor upload %s: %s", path, exc)

"""
Local disk storage for report media.

Usage:
    from aquasentra.infrastructure.storage import LocalMediaStorage

    storage = LocalMediaStorage()
    stored = await storage.store_uploads(files)
    ...
    storage.cleanup(stored)  # if the report insert fails

Files are written under ``UPLOAD_DIR`` as ``<uuid>-<epoch_ms><ext>``; images
also get a ``thumb-<name>`` JPEG thumbnail. All disk and Pillow work is
blocking and is pushed to the threadpool by ``store_uploads``.
"""
import io
import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError
from starlette.concurrency import run_in_threadpool

from aquasentra.core.config import settings
from aquasentra.core.exceptions import ResourceNotFound, StorageError, ValidationFailed

logger = logging.getLogger(__name__)

THUMBNAIL_PREFIX = "thumb-"
MAX_ORIGINAL_NAME_LENGTH = 255


@dataclass
class StoredMedia:
    filename: str
    original_name: str
    mimetype: str
    size: int
    thumbnail_filename: Optional[str] = None


class LocalMediaStorage:
    """Handles validation, persistence and thumbnailing of uploaded media."""

    def __init__(
        self,
        upload_dir: Optional[str] = None,
        allowed_types: Optional[List[str]] = None,
        max_file_size: Optional[int] = None,
        max_files: Optional[int] = None,
        thumbnail_size: Optional[int] = None,
    ):
        self.upload_dir = Path(upload_dir or settings.UPLOAD_DIR)
        self.allowed_types = allowed_types or settings.ALLOWED_FILE_TYPES
        self.max_file_size = max_file_size or settings.MAX_FILE_SIZE
        self.max_files = max_files or settings.MAX_FILES_PER_REPORT
        self.thumbnail_size = thumbnail_size or settings.THUMBNAIL_SIZE

    def ensure_directory(self) -> None:
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create upload directory {self.upload_dir}: {e}")
            raise StorageError("Upload directory is not writable")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, content: bytes, original_name: str, content_type: str) -> None:
        if content_type not in self.allowed_types:
            raise ValidationFailed(
                f"File type {content_type} not allowed. Allowed types: {', '.join(self.allowed_types)}"
            )
        if len(content) > self.max_file_size:
            raise ValidationFailed(
                f"File too large. Maximum size is {self.max_file_size / (1024 * 1024):g}MB"
            )
        if not original_name or len(original_name) > MAX_ORIGINAL_NAME_LENGTH:
            raise ValidationFailed("File name must be between 1 and 255 characters")

    def check_file_count(self, count: int) -> None:
        if count > self.max_files:
            raise ValidationFailed(f"Too many files. Maximum is {self.max_files} files per report")

    # ------------------------------------------------------------------
    # Blocking operations
    # ------------------------------------------------------------------

    def _generate_name(self, original_name: str) -> str:
        ext = os.path.splitext(original_name)[1].lower()
        return f"{uuid.uuid4()}-{int(time.time() * 1000)}{ext}"

    def _write_thumbnail(self, content: bytes, filename: str) -> str:
        thumb_name = f"{THUMBNAIL_PREFIX}{filename}"
        try:
            with Image.open(io.BytesIO(content)) as img:
                # thumbnail() fits inside the box and never enlarges
                img.thumbnail((self.thumbnail_size, self.thumbnail_size))
                img.convert("RGB").save(self.upload_dir / thumb_name, format="JPEG", quality=80)
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"Could not create thumbnail for {filename}: {e}")
            raise ValidationFailed("Uploaded image could not be processed")
        return thumb_name

    def save(self, content: bytes, original_name: str, content_type: str) -> StoredMedia:
        """Validate and write one file (and its thumbnail). Blocking."""
        self.validate(content, original_name, content_type)
        self.ensure_directory()

        filename = self._generate_name(original_name)
        path = self.upload_dir / filename
        try:
            path.write_bytes(content)
        except OSError as e:
            logger.error(f"Failed to write upload {filename}: {e}")
            raise StorageError("Failed to store uploaded file")

        stored = StoredMedia(
            filename=filename,
            original_name=original_name,
            mimetype=content_type,
            size=len(content),
        )

        if content_type.startswith("image/"):
            try:
                stored.thumbnail_filename = self._write_thumbnail(content, filename)
            except ValidationFailed:
                self.cleanup([stored])
                raise

        logger.info(f"Stored upload {filename} ({stored.size} bytes, {content_type})")
        return stored

    def save_all(self, files: List[tuple]) -> List[StoredMedia]:
        """Save (content, original_name, content_type) tuples; all or nothing. Blocking."""
        self.check_file_count(len(files))
        stored: List[StoredMedia] = []
        try:
            for content, original_name, content_type in files:
                stored.append(self.save(content, original_name, content_type))
        except Exception:
            self.cleanup(stored)
            raise
        return stored

    def cleanup(self, stored: Iterable[StoredMedia]) -> None:
        """Remove stored files and their thumbnails; missing files are ignored."""
        for item in stored:
            for name in (item.filename, item.thumbnail_filename):
                if not name:
                    continue
                try:
                    (self.upload_dir / name).unlink(missing_ok=True)
                except OSError as e:
                    logger.warning(f"Error deleting upload {name}: {e}")

    def resolve(self, filename: str) -> Path:
        """Return the on-disk path of a stored file."""
        if not filename or os.path.basename(filename) != filename or filename.startswith("."):
            raise ResourceNotFound("File not found")
        path = self.upload_dir / filename
        if not path.is_file():
            raise ResourceNotFound("File not found")
        return path

    # ------------------------------------------------------------------
    # Async entry point
    # ------------------------------------------------------------------

    async def store_uploads(self, uploads: List[UploadFile]) -> List[StoredMedia]:
        """Read the uploads and persist them off the event loop."""
        uploads = [u for u in uploads or [] if u is not None and u.filename]
        self.check_file_count(len(uploads))

        files = []
        for upload in uploads:
            content = await upload.read()
            files.append((content, upload.filename, upload.content_type or "application/octet-stream"))

        if not files:
            return []
        return await run_in_threadpool(self.save_all, files)

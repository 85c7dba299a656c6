"""Product image uploads: validation, storage on disk and cleanup."""

from pathlib import Path

from fastapi import UploadFile

from .errors import UploadError
from .logs import get_logger
from .utils import generate_upload_name

log = get_logger("uploads")

ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".avif", ".webp"}
ALLOWED_CONTENT_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/avif",
    "image/webp",
}

PUBLIC_PREFIX = "/uploads/products/"

# Read uploads in 64 KiB chunks so oversized files are rejected early.
_CHUNK = 64 * 1024


class ImageStore:
    """Stores product images under one directory and maps them to public paths."""

    def __init__(self, directory: Path, max_bytes: int = 5 * 1024 * 1024, max_files: int = 5):
        self.directory = Path(directory)
        self.max_bytes = max_bytes
        self.max_files = max_files

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def _check(self, upload: UploadFile) -> str:
        extension = Path(upload.filename or "").suffix.lower()
        if extension not in ALLOWED_EXTENSIONS:
            raise UploadError(
                upload.filename,
                "Only image files are allowed (jpeg, jpg, png, gif, avif, webp)",
            )
        if upload.content_type and upload.content_type.lower() not in ALLOWED_CONTENT_TYPES:
            raise UploadError(upload.filename, f"Unsupported image type: {upload.content_type}")
        return extension

    async def _write(self, upload: UploadFile, target: Path) -> None:
        written = 0
        with open(target, "wb") as f:
            while chunk := await upload.read(_CHUNK):
                written += len(chunk)
                if written > self.max_bytes:
                    raise UploadError(
                        upload.filename,
                        f"File too large: limit is {self.max_bytes // (1024 * 1024)}MB",
                    )
                f.write(chunk)

    async def save(self, uploads: list[UploadFile]) -> list[str]:
        """
        Validate and store uploaded images.

        All-or-nothing: if any file is rejected, files saved so far in this call
        are removed.

        Returns:
            Public paths (``/uploads/products/<name>``) in upload order.

        Raises:
            UploadError: If there are too many files, or one has a bad type or size.
        """
        uploads = [u for u in uploads if u.filename]
        if len(uploads) > self.max_files:
            raise UploadError(None, f"Too many files: at most {self.max_files} images allowed")

        self.ensure_directory()
        saved: list[str] = []
        try:
            for upload in uploads:
                extension = self._check(upload)
                name = generate_upload_name(extension)
                target = self.directory / name
                saved.append(PUBLIC_PREFIX + name)
                await self._write(upload, target)
        except UploadError:
            self.delete(saved)
            raise
        return saved

    def path_for(self, public_path: str) -> Path | None:
        """Filesystem path for a public image path; None if it isn't one of ours."""
        if not public_path.startswith(PUBLIC_PREFIX):
            return None
        name = public_path[len(PUBLIC_PREFIX):]
        if not name or "/" in name or name in (".", ".."):
            return None
        return self.directory / name

    def delete(self, public_paths: list[str]) -> None:
        """Remove stored files. Missing files and foreign paths are skipped."""
        for public_path in public_paths:
            path = self.path_for(public_path)
            if path is None:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                log.warning("image_delete_failed", path=str(path), error=str(e))
